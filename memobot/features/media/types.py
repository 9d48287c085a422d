from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, HttpUrl


class MediaOwner(BaseModel):
    model_config = ConfigDict(frozen=True)

    owner_id: UUID
    context_id: UUID | None = None


class MediaBlobInfo(BaseModel):
    fingerprint: str
    size_bytes: int
    content_type: str
    storage_path: str
    created_at: datetime


class MediaReferenceInfo(BaseModel):
    id: str
    owner_id: str
    context_id: str | None
    original_name: str
    declared_content_type: str | None
    source_url: str | None
    created_at: datetime
    blob: MediaBlobInfo


class StoredMedia(MediaReferenceInfo):
    deduplicated: bool


class MediaStats(BaseModel):
    total_references: int
    unique_blobs: int
    total_logical_size: int
    by_type: dict[str, int]
    dedup_rate: float


class MediaIngestInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source_url: HttpUrl
    owner_id: UUID
    context_id: UUID | None = None
    content_type: str | None = Field(default=None, max_length=255)
    original_name: str | None = Field(default=None, max_length=512)
