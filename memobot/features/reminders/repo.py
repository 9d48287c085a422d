from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from memobot.db.models import REMINDER_STATUS_PENDING, Memory, Reminder, User


async def get_owned_memory(
    session: AsyncSession,
    *,
    memory_id: UUID,
    owner_id: UUID,
) -> Memory | None:
    stmt = select(Memory).where(Memory.id == memory_id, Memory.user_id == owner_id)
    return (await session.execute(stmt)).scalar_one_or_none()


async def get_user(session: AsyncSession, user_id: UUID) -> User | None:
    return await session.get(User, user_id)


async def create_reminder(
    session: AsyncSession,
    *,
    user_id: UUID,
    memory_id: UUID,
    scheduled_for: datetime,
    message: str,
) -> Reminder:
    reminder = Reminder(
        user_id=user_id,
        memory_id=memory_id,
        scheduled_for=scheduled_for,
        message=message,
        status=REMINDER_STATUS_PENDING,
    )
    session.add(reminder)
    await session.commit()
    await session.refresh(reminder)
    return reminder


async def list_reminders(
    session: AsyncSession,
    *,
    user_id: UUID,
    status: str | None,
    limit: int,
) -> list[Reminder]:
    stmt = select(Reminder).where(Reminder.user_id == user_id)
    if status:
        stmt = stmt.where(Reminder.status == status)
    stmt = stmt.order_by(Reminder.scheduled_for.asc(), Reminder.id.asc()).limit(limit)
    return list((await session.execute(stmt)).scalars().all())


async def find_due_reminders(session: AsyncSession, *, now: datetime) -> list[Reminder]:
    stmt = (
        select(Reminder)
        .where(Reminder.status == REMINDER_STATUS_PENDING, Reminder.scheduled_for <= now)
        .options(selectinload(Reminder.user), selectinload(Reminder.memory))
        .order_by(Reminder.scheduled_for.asc(), Reminder.created_at.asc(), Reminder.id.asc())
    )
    return list((await session.execute(stmt)).scalars().all())


async def mark_reminder_status(
    session: AsyncSession,
    *,
    reminder_id: UUID,
    status: str,
    owner_id: UUID | None = None,
    failure_reason: str | None = None,
) -> bool:
    """Move a PENDING reminder to ``status``; False when it was not PENDING (or not owned)."""
    stmt = (
        update(Reminder)
        .where(Reminder.id == reminder_id, Reminder.status == REMINDER_STATUS_PENDING)
        .values(status=status, failure_reason=failure_reason, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    if owner_id is not None:
        stmt = stmt.where(Reminder.user_id == owner_id)
    result = await session.execute(stmt)
    await session.commit()
    return result.rowcount == 1


async def count_by_status(session: AsyncSession, *, user_id: UUID | None) -> dict[str, int]:
    stmt = select(Reminder.status, func.count(Reminder.id)).group_by(Reminder.status)
    if user_id is not None:
        stmt = stmt.where(Reminder.user_id == user_id)
    rows = (await session.execute(stmt)).all()
    return {status: int(count) for status, count in rows}


async def count_pending_between(
    session: AsyncSession,
    *,
    user_id: UUID | None,
    start: datetime,
    end: datetime,
) -> int:
    stmt = select(func.count(Reminder.id)).where(
        Reminder.status == REMINDER_STATUS_PENDING,
        Reminder.scheduled_for >= start,
        Reminder.scheduled_for < end,
    )
    if user_id is not None:
        stmt = stmt.where(Reminder.user_id == user_id)
    return int((await session.execute(stmt)).scalar_one())
