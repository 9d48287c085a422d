from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from memobot.db.models import (
    REMINDER_STATUS_CANCELLED,
    REMINDER_STATUS_PENDING,
    REMINDER_STATUS_SENT,
    Reminder,
)
from memobot.features.messaging import MessagingClient, whatsapp_address
from memobot.features.shared.errors import ValidationError
from memobot.features.shared.ids import parse_uuid
from memobot.features.shared.text_sanitize import log_sanitization_stats, sanitize_text

from . import repo
from .errors import ReminderNotFoundError, ReminderStorageError, ReminderValidationError
from .formatting import format_reminder_message
from .timeparse import TimeExpressionParser
from .types import CycleReport, ReminderDetail, ReminderStats

logger = logging.getLogger(__name__)

_MAX_MESSAGE_LENGTH = 1600
_MAX_LIST_LIMIT = 200


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_detail(row: Reminder) -> ReminderDetail:
    return ReminderDetail(
        id=str(row.id),
        owner_id=str(row.user_id),
        memory_id=str(row.memory_id),
        scheduled_for=row.scheduled_for,
        message=row.message,
        status=row.status,
        failure_reason=row.failure_reason,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


@dataclass(frozen=True)
class _Delivery:
    reminder_id: UUID
    phone_number: str
    body: str


class ReminderScheduler:
    """Persists reminders and delivers the due ones from a polling loop.

    Status only ever moves out of PENDING, and every transition is a
    conditional update, so a cancel racing a delivery resolves to exactly one
    terminal state.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        messaging: MessagingClient,
        parser: TimeExpressionParser,
        *,
        poll_interval_seconds: float = 60,
        default_timezone: str = "UTC",
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.session_factory = session_factory
        self.messaging = messaging
        self.parser = parser
        self.poll_interval_seconds = float(poll_interval_seconds)
        self.default_timezone = default_timezone
        self._clock = clock

        self._stop_event: asyncio.Event | None = None
        self._loop_task: asyncio.Task[None] | None = None
        self._cycle_task: asyncio.Task[CycleReport] | None = None
        self._cycle_running = False
        self.last_cycle_at: datetime | None = None
        self.last_report: CycleReport | None = None

    def now(self) -> datetime:
        return _as_utc(self._clock())

    # Caller-initiated operations.

    async def create(
        self,
        session: AsyncSession,
        *,
        owner_id: UUID | str,
        memory_id: UUID | str,
        when: datetime,
        message: str,
    ) -> ReminderDetail:
        owner = parse_uuid(owner_id, field_name="owner id")
        memory = parse_uuid(memory_id, field_name="memory id")

        cleaned, stats = sanitize_text(message or "", strip=True)
        log_sanitization_stats(logger, location="reminders.message", stats=stats)
        if not cleaned:
            raise ReminderValidationError("Reminder message cannot be empty.")
        if len(cleaned) > _MAX_MESSAGE_LENGTH:
            raise ReminderValidationError(
                f"Reminder message cannot exceed {_MAX_MESSAGE_LENGTH} characters."
            )

        scheduled_for = _as_utc(when)
        if scheduled_for <= self.now():
            raise ReminderValidationError("Reminder time must be in the future.")

        owned = await repo.get_owned_memory(session, memory_id=memory, owner_id=owner)
        if owned is None:
            raise ReminderNotFoundError(f"Memory '{memory}' was not found.")

        try:
            row = await repo.create_reminder(
                session,
                user_id=owner,
                memory_id=memory,
                scheduled_for=scheduled_for,
                message=cleaned,
            )
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.error("Failed to persist reminder for memory %s: %s", memory, exc)
            raise ReminderStorageError(f"Failed to persist reminder: {exc}") from exc
        logger.info("Created reminder %s for %s.", row.id, scheduled_for.isoformat())
        return _to_detail(row)

    async def resolve_timezone(
        self,
        session: AsyncSession,
        *,
        owner_id: UUID,
        user_timezone: str | None,
    ) -> str:
        if user_timezone and user_timezone.strip():
            return user_timezone.strip()
        user = await repo.get_user(session, owner_id)
        if user is not None and user.timezone:
            return user.timezone
        return self.default_timezone

    async def create_from_phrase(
        self,
        session: AsyncSession,
        *,
        owner_id: UUID | str,
        memory_id: UUID | str,
        phrase: str,
        message: str,
        user_timezone: str | None = None,
    ) -> ReminderDetail | None:
        owner = parse_uuid(owner_id, field_name="owner id")
        zone_name = await self.resolve_timezone(session, owner_id=owner, user_timezone=user_timezone)
        when = self.parser.parse(phrase, zone_name, self.now())
        if when is None:
            logger.info("Could not parse reminder time from %r.", phrase[:80])
            return None
        return await self.create(
            session,
            owner_id=owner,
            memory_id=memory_id,
            when=when,
            message=message,
        )

    async def cancel(
        self,
        session: AsyncSession,
        *,
        reminder_id: UUID | str,
        owner_id: UUID | str,
    ) -> bool:
        try:
            reminder = parse_uuid(reminder_id, field_name="reminder id")
            owner = parse_uuid(owner_id, field_name="owner id")
        except ValidationError:
            return False

        try:
            cancelled = await repo.mark_reminder_status(
                session,
                reminder_id=reminder,
                status=REMINDER_STATUS_CANCELLED,
                owner_id=owner,
            )
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.error("Failed to cancel reminder %s: %s", reminder, exc)
            raise ReminderStorageError(f"Failed to cancel reminder: {exc}") from exc
        if cancelled:
            logger.info("Cancelled reminder %s.", reminder)
        else:
            logger.info("Reminder %s was not cancellable (missing, not owned or not pending).", reminder)
        return cancelled

    async def list_for_user(
        self,
        session: AsyncSession,
        *,
        owner_id: UUID | str,
        status: str | None = None,
        limit: int = 50,
    ) -> list[ReminderDetail]:
        owner = parse_uuid(owner_id, field_name="owner id")
        normalized_status = status.strip().upper() if status else None
        safe_limit = max(1, min(limit, _MAX_LIST_LIMIT))
        rows = await repo.list_reminders(
            session,
            user_id=owner,
            status=normalized_status,
            limit=safe_limit,
        )
        return [_to_detail(row) for row in rows]

    async def stats(
        self,
        session: AsyncSession,
        *,
        owner_id: UUID | str | None = None,
    ) -> ReminderStats:
        """Counts by status; ``upcoming_today`` runs from now to the next UTC midnight.

        The day boundary is the UTC calendar day for every caller, including
        per-owner stats, so the figure does not shift with a user's zone.
        """
        owner =parse_uuid(owner_id, field_name="owner id") if owner_id is not None else None
        counts = await repo.count_by_status(session, user_id=owner)
        now = self.now()
        end_of_day = datetime.combine(now.date() + timedelta(days=1), time.min, tzinfo=timezone.utc)
        upcoming_today = await repo.count_pending_between(
            session,
            user_id=owner,
            start=now,
            end=end_of_day,
        )

        total = sum(counts.values())
        sent = counts.get(REMINDER_STATUS_SENT, 0)
        return ReminderStats(
            total=total,
            pending=counts.get(REMINDER_STATUS_PENDING, 0),
            sent=sent,
            cancelled=counts.get(REMINDER_STATUS_CANCELLED, 0),
            upcoming_today=upcoming_today,
            success_rate=sent / total if total else 0.0,
        )

    # Delivery.

    async def run_cycle(self) -> CycleReport:
        """Deliver every due reminder once, in scheduled order."""
        if self._cycle_running:
            logger.warning("Reminder cycle already running; skipping.")
            return CycleReport(skipped=True)

        self._cycle_running = True
        try:
            report = await self._deliver_due()
        finally:
            self._cycle_running = False

        self.last_cycle_at = self.now()
        self.last_report = report
        if report.due:
            logger.info(
                "Reminder cycle finished: due=%d sent=%d failed=%d.",
                report.due,
                report.sent,
                report.failed,
            )
        return report

    async def _deliver_due(self) -> CycleReport:
        async with self.session_factory() as session:
            due = await repo.find_due_reminders(session, now=self.now())
            deliveries = [
                _Delivery(
                    reminder_id=row.id,
                    phone_number=row.user.phone_number,
                    body=format_reminder_message(
                        row.message,
                        memory_content=row.memory.content,
                        memory_type=row.memory.memory_type,
                    ),
                )
                for row in due
            ]

            report = CycleReport(due=len(deliveries))
            for delivery in deliveries:
                if await self._deliver_one(session, delivery):
                    report.sent += 1
                else:
                    report.failed += 1
            return report

    async def _deliver_one(self, session: AsyncSession, delivery: _Delivery) -> bool:
        failure_reason: str | None = None
        try:
            delivered = await self.messaging.send(whatsapp_address(delivery.phone_number), delivery.body)
            if not delivered:
                failure_reason = "Messaging provider rejected the message."
        except Exception as exc:
            failure_reason = f"{type(exc).__name__}: {exc}"

        status = REMINDER_STATUS_SENT if failure_reason is None else REMINDER_STATUS_CANCELLED
        try:
            transitioned = await repo.mark_reminder_status(
                session,
                reminder_id=delivery.reminder_id,
                status=status,
                failure_reason=failure_reason,
            )
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.error("Failed to record status of reminder %s: %s", delivery.reminder_id, exc)
            return False

        if not transitioned:
            logger.info("Reminder %s left PENDING during delivery; status unchanged.", delivery.reminder_id)
            return False
        if failure_reason is not None:
            logger.warning("Reminder %s delivery failed: %s", delivery.reminder_id, failure_reason)
            return False
        logger.info("Delivered reminder %s.", delivery.reminder_id)
        return True

    # Poll loop.

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def tick(self) -> bool:
        """Start a delivery cycle unless the previous one is still in flight."""
        if self._cycle_task is not None and not self._cycle_task.done():
            logger.warning("Previous reminder cycle still running; skipping tick.")
            return False
        self._cycle_task = asyncio.create_task(self._guarded_cycle())
        return True

    async def _guarded_cycle(self) -> CycleReport:
        try:
            return await self.run_cycle()
        except Exception:
            # Database outages end the cycle, not the loop.
            logger.exception("Reminder cycle failed.")
            return CycleReport()

    async def _run_loop(self, stop_event: asyncio.Event) -> None:
        logger.info("Reminder poll loop started (interval=%ss).", self.poll_interval_seconds)
        while not stop_event.is_set():
            self.tick()
            with suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop_event.wait(), timeout=self.poll_interval_seconds)
        logger.info("Reminder poll loop stopped.")

    def start(self) -> None:
        if self.is_running:
            return
        stop_event = asyncio.Event()
        self._stop_event = stop_event
        self._loop_task = asyncio.create_task(self._run_loop(stop_event))

    async def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None
        if self._cycle_task is not None and not self._cycle_task.done():
            await self._cycle_task
        self._cycle_task = None

    def health_check(self) -> dict[str, object]:
        return {
            "running": self.is_running,
            "poll_interval_seconds": self.poll_interval_seconds,
            "last_cycle_at": self.last_cycle_at.isoformat() if self.last_cycle_at else None,
            "last_report": self.last_report.model_dump() if self.last_report else None,
        }


__all__ = ["ReminderScheduler"]
