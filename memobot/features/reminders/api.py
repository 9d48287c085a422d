from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from memobot.db.session import get_db_session
from memobot.features.shared.errors import DomainError, to_http_error

from .scheduler import ReminderScheduler
from .types import (
    CycleReport,
    ReminderCancelInput,
    ReminderCreateInput,
    ReminderDetail,
    ReminderPhraseInput,
    ReminderStats,
    ReminderStatus,
)

router = APIRouter(prefix="/api/reminders", tags=["reminders"])


class ReminderCancelResult(BaseModel):
    cancelled: bool


def get_reminder_scheduler(request: Request) -> ReminderScheduler:
    return request.app.state.reminder_scheduler


def _raise_http_error(exc: Exception) -> None:
    if isinstance(exc, DomainError):
        raise to_http_error(exc) from exc
    raise exc


@router.get("", response_model=list[ReminderDetail])
async def get_reminders(
    owner_id: UUID = Query(...),
    status_filter: ReminderStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    scheduler: ReminderScheduler = Depends(get_reminder_scheduler),
    session: AsyncSession = Depends(get_db_session),
) -> list[ReminderDetail]:
    return await scheduler.list_for_user(session, owner_id=owner_id, status=status_filter, limit=limit)


@router.get("/stats", response_model=ReminderStats)
async def get_reminder_stats(
    owner_id: UUID | None = Query(default=None),
    scheduler: ReminderScheduler = Depends(get_reminder_scheduler),
    session: AsyncSession = Depends(get_db_session),
) -> ReminderStats:
    return await scheduler.stats(session, owner_id=owner_id)


@router.post("", response_model=ReminderDetail, status_code=status.HTTP_201_CREATED)
async def post_reminder(
    payload: ReminderCreateInput,
    scheduler: ReminderScheduler = Depends(get_reminder_scheduler),
    session: AsyncSession = Depends(get_db_session),
) -> ReminderDetail:
    try:
        return await scheduler.create(
            session,
            owner_id=payload.owner_id,
            memory_id=payload.memory_id,
            when=payload.scheduled_for,
            message=payload.message,
        )
    except Exception as exc:
        _raise_http_error(exc)


@router.post("/parse", response_model=ReminderDetail, status_code=status.HTTP_201_CREATED)
async def post_reminder_from_phrase(
    payload: ReminderPhraseInput,
    scheduler: ReminderScheduler = Depends(get_reminder_scheduler),
    session: AsyncSession = Depends(get_db_session),
) -> ReminderDetail:
    try:
        created = await scheduler.create_from_phrase(
            session,
            owner_id=payload.owner_id,
            memory_id=payload.memory_id,
            phrase=payload.phrase,
            message=payload.message,
            user_timezone=payload.timezone,
        )
    except Exception as exc:
        _raise_http_error(exc)
    if created is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Could not understand the time in '{payload.phrase}'.",
        )
    return created


@router.post("/run", response_model=CycleReport)
async def post_reminder_cycle(
    scheduler: ReminderScheduler = Depends(get_reminder_scheduler),
) -> CycleReport:
    return await scheduler.run_cycle()


@router.post("/{reminder_id}/cancel", response_model=ReminderCancelResult)
async def post_reminder_cancel(
    reminder_id: str,
    payload: ReminderCancelInput,
    scheduler: ReminderScheduler = Depends(get_reminder_scheduler),
    session: AsyncSession = Depends(get_db_session),
) -> ReminderCancelResult:
    try:
        cancelled = await scheduler.cancel(session, reminder_id=reminder_id, owner_id=payload.owner_id)
    except Exception as exc:
        _raise_http_error(exc)
    return ReminderCancelResult(cancelled=cancelled)
