from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from memobot.db.base import Base


class MediaBlob(Base):
    __tablename__ = "media_blobs"
    __table_args__ = (
        Index("ix_media_blobs_content_type", "content_type"),
    )

    fingerprint: Mapped[str] = mapped_column(String(64), primary_key=True)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    content_type: Mapped[str] = mapped_column(String(255), nullable=False)
    storage_path: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    references: Mapped[list[MediaReference]] = relationship(
        "MediaReference",
        back_populates="blob",
        passive_deletes="all",
    )


class MediaReference(Base):
    __tablename__ = "media_references"
    __table_args__ = (
        Index("ix_media_references_owner_id_created_at", "owner_id", "created_at"),
        Index("ix_media_references_blob_fingerprint", "blob_fingerprint"),
        Index("ix_media_references_context_id", "context_id"),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    owner_id: Mapped[UUID] = mapped_column(nullable=False)
    context_id: Mapped[UUID | None] = mapped_column(nullable=True)
    original_name: Mapped[str] = mapped_column(String(512), nullable=False)
    declared_content_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    source_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    blob_fingerprint: Mapped[str] = mapped_column(
        ForeignKey("media_blobs.fingerprint", ondelete="RESTRICT"),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    blob: Mapped[MediaBlob] = relationship(back_populates="references", lazy="joined")
