from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

ReminderStatus = Literal["PENDING", "SENT", "CANCELLED"]


class ReminderCreateInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    owner_id: UUID
    memory_id: UUID
    scheduled_for: datetime
    message: str = Field(min_length=1, max_length=1600)


class ReminderPhraseInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    owner_id: UUID
    memory_id: UUID
    phrase: str = Field(min_length=1, max_length=255)
    message: str = Field(min_length=1, max_length=1600)
    timezone: str | None = Field(default=None, max_length=64)


class ReminderCancelInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    owner_id: UUID


class ReminderDetail(BaseModel):
    id: str
    owner_id: str
    memory_id: str
    scheduled_for: datetime
    message: str
    status: ReminderStatus
    failure_reason: str | None = None
    created_at: datetime
    updated_at: datetime


class ReminderStats(BaseModel):
    total: int
    pending: int
    sent: int
    cancelled: int
    upcoming_today: int
    success_rate: float


class CycleReport(BaseModel):
    due: int = 0
    sent: int = 0
    failed: int = 0
    skipped: bool = False
