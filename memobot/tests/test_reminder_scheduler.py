from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from memobot.features.reminders import scheduler as scheduler_module
from memobot.features.reminders.errors import (
    ReminderNotFoundError,
    ReminderStorageError,
    ReminderValidationError,
)
from memobot.features.reminders.scheduler import ReminderScheduler
from memobot.features.reminders.timeparse import TimeExpressionParser
from memobot.features.shared.errors import StorageError, ValidationError

NOW = datetime(2024, 1, 15, 15, 0, tzinfo=timezone.utc)


class _FakeSession:
    def __init__(self):
        self.rollbacks = 0

    async def rollback(self):
        self.rollbacks += 1


class _SessionFactory:
    def __init__(self):
        self.sessions: list[_FakeSession] = []

    def __call__(self):
        factory = self

        class _SessionCM:
            async def __aenter__(self):
                session = _FakeSession()
                factory.sessions.append(session)
                return session

            async def __aexit__(self, _exc_type, _exc, _tb):
                return False

        return _SessionCM()


class _RemindersRepo:
    def __init__(self):
        self.users: dict[object, SimpleNamespace] = {}
        self.memories: dict[object, SimpleNamespace] = {}
        self.reminders: dict[object, SimpleNamespace] = {}

    def add_user(self, *, phone_number: str = "+15550001111", tz: str = "UTC") -> SimpleNamespace:
        user = SimpleNamespace(id=uuid4(), phone_number=phone_number, timezone=tz)
        self.users[user.id] = user
        return user

    def add_memory(self, user, *, content: str = "Buy oat milk", memory_type: str = "TEXT") -> SimpleNamespace:
        memory = SimpleNamespace(id=uuid4(), user_id=user.id, content=content, memory_type=memory_type)
        self.memories[memory.id] = memory
        return memory

    def add_reminder(self, user, memory, *, scheduled_for, message="Check this", status="PENDING"):
        row = SimpleNamespace(
            id=uuid4(),
            user_id=user.id,
            memory_id=memory.id,
            scheduled_for=scheduled_for,
            message=message,
            status=status,
            failure_reason=None,
            created_at=NOW - timedelta(days=1),
            updated_at=NOW - timedelta(days=1),
            user=user,
            memory=memory,
        )
        self.reminders[row.id] = row
        return row

    async def get_owned_memory(self, _session, *, memory_id, owner_id):
        memory = self.memories.get(memory_id)
        if memory is None or memory.user_id != owner_id:
            return None
        return memory

    async def get_user(self, _session, user_id):
        return self.users.get(user_id)

    async def create_reminder(self, _session, *, user_id, memory_id, scheduled_for, message):
        return self.add_reminder(
            self.users[user_id],
            self.memories[memory_id],
            scheduled_for=scheduled_for,
            message=message,
        )

    async def list_reminders(self, _session, *, user_id, status, limit):
        rows = [row for row in self.reminders.values() if row.user_id == user_id]
        if status:
            rows = [row for row in rows if row.status == status]
        rows.sort(key=lambda row: row.scheduled_for)
        return rows[:limit]

    async def find_due_reminders(self, _session, *, now):
        rows = [row for row in self.reminders.values() if row.status == "PENDING" and row.scheduled_for <= now]
        return sorted(rows, key=lambda row: row.scheduled_for)

    async def mark_reminder_status(self, _session, *, reminder_id, status, owner_id=None, failure_reason=None):
        row = self.reminders.get(reminder_id)
        if row is None or row.status != "PENDING":
            return False
        if owner_id is not None and row.user_id != owner_id:
            return False
        row.status = status
        row.failure_reason = failure_reason
        row.updated_at = NOW
        return True

    async def count_by_status(self, _session, *, user_id):
        counts: dict[str, int] = {}
        for row in self.reminders.values():
            if user_id is not None and row.user_id != user_id:
                continue
            counts[row.status] = counts.get(row.status, 0) + 1
        return counts

    async def count_pending_between(self, _session, *, user_id, start, end):
        return sum(
            1
            for row in self.reminders.values()
            if row.status == "PENDING"
            and start <= row.scheduled_for < end
            and (user_id is None or row.user_id == user_id)
        )


class _RecordingMessaging:
    def __init__(self, outcomes: dict[str, object] | None = None):
        self.sent: list[tuple[str, str]] = []
        self.outcomes = outcomes or {}

    async def send(self, recipient: str, body: str) -> bool:
        self.sent.append((recipient, body))
        for marker, outcome in self.outcomes.items():
            if marker in body:
                if isinstance(outcome, Exception):
                    raise outcome
                return bool(outcome)
        return True


def _patch_repo(monkeypatch) -> _RemindersRepo:
    fake = _RemindersRepo()
    for name in (
        "get_owned_memory",
        "get_user",
        "create_reminder",
        "list_reminders",
        "find_due_reminders",
        "mark_reminder_status",
        "count_by_status",
        "count_pending_between",
    ):
        monkeypatch.setattr(scheduler_module.repo, name, getattr(fake, name))
    return fake


def _scheduler(messaging=None, **kwargs) -> ReminderScheduler:
    return ReminderScheduler(
        _SessionFactory(),
        messaging or _RecordingMessaging(),
        TimeExpressionParser(),
        clock=lambda: NOW,
        **kwargs,
    )


def test_create_persists_pending_reminder_with_clean_message(monkeypatch):
    fake = _patch_repo(monkeypatch)
    user = fake.add_user()
    memory = fake.add_memory(user)
    scheduler = _scheduler()

    detail = asyncio.run(
        scheduler.create(
            _FakeSession(),
            owner_id=user.id,
            memory_id=str(memory.id),
            when=NOW + timedelta(hours=1),
            message="  call mom\r\n ",
        )
    )

    assert detail.status == "PENDING"
    assert detail.message == "call mom"
    assert detail.scheduled_for == NOW + timedelta(hours=1)
    assert detail.owner_id == str(user.id)
    assert len(fake.reminders) == 1


def test_create_rejects_past_and_present_times_without_persisting(monkeypatch):
    fake = _patch_repo(monkeypatch)
    user = fake.add_user()
    memory = fake.add_memory(user)
    scheduler = _scheduler()

    for when in (NOW - timedelta(minutes=1), NOW):
        with pytest.raises(ReminderValidationError):
            asyncio.run(
                scheduler.create(_FakeSession(), owner_id=user.id, memory_id=memory.id, when=when, message="late")
            )
    assert fake.reminders == {}


def test_create_validates_message_and_ids(monkeypatch):
    fake = _patch_repo(monkeypatch)
    user = fake.add_user()
    memory = fake.add_memory(user)
    scheduler = _scheduler()
    later = NOW + timedelta(hours=1)

    with pytest.raises(ReminderValidationError):
        asyncio.run(scheduler.create(_FakeSession(), owner_id=user.id, memory_id=memory.id, when=later, message=" \x00 "))
    with pytest.raises(ReminderValidationError):
        asyncio.run(
            scheduler.create(_FakeSession(), owner_id=user.id, memory_id=memory.id, when=later, message="x" * 1601)
        )
    with pytest.raises(ValidationError):
        asyncio.run(scheduler.create(_FakeSession(), owner_id="nope", memory_id=memory.id, when=later, message="x"))
    assert fake.reminders == {}


def test_create_requires_memory_owned_by_caller(monkeypatch):
    fake = _patch_repo(monkeypatch)
    owner = fake.add_user()
    stranger = fake.add_user(phone_number="+15559990000")
    memory = fake.add_memory(owner)
    scheduler = _scheduler()

    with pytest.raises(ReminderNotFoundError):
        asyncio.run(
            scheduler.create(
                _FakeSession(),
                owner_id=stranger.id,
                memory_id=memory.id,
                when=NOW + timedelta(hours=1),
                message="not yours",
            )
        )
    with pytest.raises(ReminderNotFoundError):
        asyncio.run(
            scheduler.create(
                _FakeSession(),
                owner_id=owner.id,
                memory_id=uuid4(),
                when=NOW + timedelta(hours=1),
                message="missing",
            )
        )
    assert fake.reminders == {}


def test_create_from_phrase_uses_stored_user_timezone(monkeypatch):
    fake = _patch_repo(monkeypatch)
    user = fake.add_user(tz="America/New_York")
    memory = fake.add_memory(user)
    scheduler = _scheduler()

    detail = asyncio.run(
        scheduler.create_from_phrase(
            _FakeSession(),
            owner_id=user.id,
            memory_id=memory.id,
            phrase="tomorrow at 3pm",
            message="dentist",
        )
    )

    # 2024-01-16 15:00 in New York is 20:00 UTC.
    assert detail is not None
    assert detail.scheduled_for == datetime(2024, 1, 16, 20, 0, tzinfo=timezone.utc)


def test_create_from_phrase_prefers_explicit_timezone_then_default(monkeypatch):
    fake = _patch_repo(monkeypatch)
    user = fake.add_user(tz="America/New_York")
    memory = fake.add_memory(user)
    scheduler = _scheduler(default_timezone="Europe/Berlin")

    explicit = asyncio.run(
        scheduler.create_from_phrase(
            _FakeSession(),
            owner_id=user.id,
            memory_id=memory.id,
            phrase="tomorrow",
            message="x",
            user_timezone="UTC",
        )
    )
    assert explicit.scheduled_for == datetime(2024, 1, 16, 9, 0, tzinfo=timezone.utc)

    zone = asyncio.run(scheduler.resolve_timezone(_FakeSession(), owner_id=uuid4(), user_timezone=None))
    assert zone == "Europe/Berlin"


def test_create_from_phrase_returns_none_for_unparsable_phrase(monkeypatch):
    fake = _patch_repo(monkeypatch)
    user = fake.add_user()
    memory = fake.add_memory(user)
    scheduler = _scheduler()

    result = asyncio.run(
        scheduler.create_from_phrase(
            _FakeSession(),
            owner_id=user.id,
            memory_id=memory.id,
            phrase="whenever you feel like it",
            message="x",
        )
    )

    assert result is None
    assert fake.reminders == {}


def test_cancel_only_moves_owned_pending_reminders(monkeypatch):
    fake = _patch_repo(monkeypatch)
    user = fake.add_user()
    other = fake.add_user(phone_number="+15559990000")
    memory = fake.add_memory(user)
    pending = fake.add_reminder(user, memory, scheduled_for=NOW + timedelta(hours=1))
    sent = fake.add_reminder(user, memory, scheduled_for=NOW - timedelta(hours=1), status="SENT")
    scheduler = _scheduler()
    session = _FakeSession()

    assert asyncio.run(scheduler.cancel(session, reminder_id=pending.id, owner_id=other.id)) is False
    assert pending.status == "PENDING"

    assert asyncio.run(scheduler.cancel(session, reminder_id=str(pending.id), owner_id=user.id)) is True
    assert pending.status == "CANCELLED"
    assert asyncio.run(scheduler.cancel(session, reminder_id=pending.id, owner_id=user.id)) is False

    assert asyncio.run(scheduler.cancel(session, reminder_id=sent.id, owner_id=user.id)) is False
    assert sent.status == "SENT"

    assert asyncio.run(scheduler.cancel(session, reminder_id="not-a-uuid", owner_id=user.id)) is False
    assert asyncio.run(scheduler.cancel(session, reminder_id=uuid4(), owner_id=user.id)) is False


def test_create_and_cancel_roll_back_and_raise_on_database_errors(monkeypatch):
    fake = _patch_repo(monkeypatch)
    user = fake.add_user()
    memory = fake.add_memory(user)
    pending = fake.add_reminder(user, memory, scheduled_for=NOW + timedelta(hours=1))
    scheduler = _scheduler()

    async def _broken_create(*_args, **_kwargs):
        raise OperationalError("INSERT", {}, Exception("connection lost"))

    async def _broken_update(*_args, **_kwargs):
        raise OperationalError("UPDATE", {}, Exception("connection lost"))

    monkeypatch.setattr(scheduler_module.repo, "create_reminder", _broken_create)
    monkeypatch.setattr(scheduler_module.repo, "mark_reminder_status", _broken_update)

    create_session = _FakeSession()
    with pytest.raises(ReminderStorageError, match="Failed to persist reminder"):
        asyncio.run(
            scheduler.create(
                create_session,
                owner_id=user.id,
                memory_id=memory.id,
                when=NOW + timedelta(hours=2),
                message="call mom",
            )
        )
    assert create_session.rollbacks == 1

    cancel_session = _FakeSession()
    with pytest.raises(StorageError):
        asyncio.run(scheduler.cancel(cancel_session, reminder_id=pending.id, owner_id=user.id))
    assert cancel_session.rollbacks == 1
    assert pending.status == "PENDING"
    assert len(fake.reminders) == 1


def test_run_cycle_delivers_due_reminders_in_scheduled_order(monkeypatch):
    fake = _patch_repo(monkeypatch)
    user = fake.add_user(phone_number="+15550001111")
    memory = fake.add_memory(user, content="Passport is in the blue drawer", memory_type="IMAGE")
    later = fake.add_reminder(user, memory, scheduled_for=NOW - timedelta(minutes=1), message="second")
    earlier = fake.add_reminder(user, memory, scheduled_for=NOW - timedelta(minutes=10), message="first")
    future = fake.add_reminder(user, memory, scheduled_for=NOW + timedelta(minutes=10), message="future")
    messaging = _RecordingMessaging()
    scheduler = _scheduler(messaging)

    report = asyncio.run(scheduler.run_cycle())

    assert report.due == 2
    assert report.sent == 2
    assert report.failed == 0
    assert report.skipped is False
    assert [body.split("\n")[2] for _recipient, body in messaging.sent] == ["\U0001f4dd first", "\U0001f4dd second"]
    assert all(recipient == "whatsapp:+15550001111" for recipient, _body in messaging.sent)
    assert "Passport is in the blue drawer" in messaging.sent[0][1]
    assert earlier.status == "SENT"
    assert later.status == "SENT"
    assert future.status == "PENDING"
    assert scheduler.last_report == report


def test_run_cycle_cancels_failed_deliveries_without_retry(monkeypatch):
    fake = _patch_repo(monkeypatch)
    user = fake.add_user()
    memory = fake.add_memory(user)
    rejected = fake.add_reminder(user, memory, scheduled_for=NOW - timedelta(minutes=3), message="rejected")
    exploded = fake.add_reminder(user, memory, scheduled_for=NOW - timedelta(minutes=2), message="exploded")
    fine = fake.add_reminder(user, memory, scheduled_for=NOW - timedelta(minutes=1), message="fine")
    messaging = _RecordingMessaging({"rejected": False, "exploded": RuntimeError("provider timeout")})
    scheduler = _scheduler(messaging)

    report = asyncio.run(scheduler.run_cycle())

    assert (report.due, report.sent, report.failed) == (3, 1, 2)
    assert rejected.status == "CANCELLED"
    assert rejected.failure_reason
    assert exploded.status == "CANCELLED"
    assert "provider timeout" in exploded.failure_reason
    assert fine.status == "SENT"

    second = asyncio.run(scheduler.run_cycle())
    assert second.due == 0
    assert len(messaging.sent) == 3


def test_run_cycle_does_not_overwrite_concurrent_cancel(monkeypatch):
    fake = _patch_repo(monkeypatch)
    user = fake.add_user()
    memory = fake.add_memory(user)
    row = fake.add_reminder(user, memory, scheduled_for=NOW - timedelta(minutes=1))

    class _CancellingMessaging:
        async def send(self, _recipient, _body):
            row.status = "CANCELLED"
            return True

    report = asyncio.run(_scheduler(_CancellingMessaging()).run_cycle())

    assert report.sent == 0
    assert row.status == "CANCELLED"


@pytest.mark.asyncio
async def test_tick_skips_while_previous_cycle_is_running(monkeypatch):
    fake = _patch_repo(monkeypatch)
    user = fake.add_user()
    memory = fake.add_memory(user)
    row = fake.add_reminder(user, memory, scheduled_for=NOW - timedelta(minutes=1))
    started = asyncio.Event()
    release = asyncio.Event()

    class _BlockingMessaging:
        def __init__(self):
            self.calls = 0

        async def send(self, _recipient, _body):
            self.calls += 1
            started.set()
            await release.wait()
            return True

    messaging = _BlockingMessaging()
    scheduler = _scheduler(messaging)

    assert scheduler.tick() is True
    await asyncio.wait_for(started.wait(), timeout=1)
    assert scheduler.tick() is False
    skipped = await scheduler.run_cycle()
    assert skipped.skipped is True

    release.set()
    await scheduler.stop()

    assert messaging.calls == 1
    assert row.status == "SENT"


@pytest.mark.asyncio
async def test_start_and_stop_poll_loop(monkeypatch):
    fake = _patch_repo(monkeypatch)
    user = fake.add_user()
    memory = fake.add_memory(user)
    row = fake.add_reminder(user, memory, scheduled_for=NOW - timedelta(minutes=1))
    delivered = asyncio.Event()

    class _SignallingMessaging:
        async def send(self, _recipient, _body):
            delivered.set()
            return True

    scheduler = _scheduler(_SignallingMessaging(), poll_interval_seconds=0.01)
    scheduler.start()
    assert scheduler.is_running is True
    await asyncio.wait_for(delivered.wait(), timeout=1)
    await scheduler.stop()

    assert scheduler.is_running is False
    assert row.status == "SENT"
    health = scheduler.health_check()
    assert health["running"] is False
    assert health["last_cycle_at"] == NOW.isoformat()


@pytest.mark.asyncio
async def test_cycle_failure_is_logged_and_loop_survives(monkeypatch, caplog):
    _patch_repo(monkeypatch)
    calls: list[int] = []

    async def _broken_due(_session, *, now):
        calls.append(1)
        raise ConnectionError("database is down")

    monkeypatch.setattr(scheduler_module.repo, "find_due_reminders", _broken_due)
    scheduler = _scheduler(poll_interval_seconds=0.01)

    scheduler.start()
    for _ in range(100):
        if len(calls) >= 2:
            break
        await asyncio.sleep(0.01)
    await scheduler.stop()

    assert len(calls) >= 2
    assert "Reminder cycle failed." in caplog.text


def test_stats_and_list_for_user(monkeypatch):
    fake = _patch_repo(monkeypatch)
    user = fake.add_user()
    other = fake.add_user(phone_number="+15559990000")
    memory = fake.add_memory(user)
    other_memory = fake.add_memory(other)
    fake.add_reminder(user, memory, scheduled_for=NOW + timedelta(hours=2))
    fake.add_reminder(user, memory, scheduled_for=NOW + timedelta(days=2))
    fake.add_reminder(user, memory, scheduled_for=NOW - timedelta(hours=2), status="SENT")
    fake.add_reminder(user, memory, scheduled_for=NOW - timedelta(hours=3), status="CANCELLED")
    fake.add_reminder(other, other_memory, scheduled_for=NOW + timedelta(hours=1))
    scheduler = _scheduler()

    stats = asyncio.run(scheduler.stats(_FakeSession(), owner_id=user.id))
    assert (stats.total, stats.pending, stats.sent, stats.cancelled) == (4, 2, 1, 1)
    assert stats.upcoming_today == 1
    assert stats.success_rate == pytest.approx(0.25)

    overall = asyncio.run(scheduler.stats(_FakeSession()))
    assert overall.total == 5
    assert overall.upcoming_today == 2

    listed = asyncio.run(scheduler.list_for_user(_FakeSession(), owner_id=user.id, status="pending"))
    assert [item.status for item in listed] == ["PENDING", "PENDING"]
    assert listed[0].scheduled_for < listed[1].scheduled_for


def test_stats_with_no_reminders_has_zero_success_rate(monkeypatch):
    _patch_repo(monkeypatch)
    stats = asyncio.run(_scheduler().stats(_FakeSession()))
    assert stats.total == 0
    assert stats.success_rate == 0.0
