from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import ReminderValidationError

DEFAULT_HOUR = 9

_RELATIVE_OFFSET_RE = re.compile(r"\bin\s+(\d{1,4})\s*(hours?|hrs?|minutes?|mins?)\b")
_TOMORROW_RE = re.compile(r"\btomorrow\b")
_NEXT_WEEK_RE = re.compile(r"\bnext\s+week\b")
_CLOCK_AFTER_AT_RE = re.compile(r"\bat\s+(\d{1,2})(?::(\d{2}))?\s*(am|pm)?\b")
_CLOCK_MERIDIEM_RE = re.compile(r"(?:\bat\s+)?\b(\d{1,2})(?::(\d{2}))?\s*(am|pm)\b")
_CLOCK_24H_RE = re.compile(r"\bat\s+(\d{1,2}):(\d{2})\b")


@dataclass(frozen=True)
class Matched:
    instant: datetime


@dataclass(frozen=True)
class _NoMatch:
    pass


NoMatch = _NoMatch()
MatchResult = Matched | _NoMatch


@dataclass(frozen=True)
class ParseContext:
    now: datetime
    zone: ZoneInfo
    default_hour: int

    @property
    def local_now(self) -> datetime:
        return self.now.astimezone(self.zone)


class TimeMatcher(Protocol):
    def match(self, phrase: str, context: ParseContext) -> MatchResult: ...


def _clock_from_groups(hour_text: str, minute_text: str | None, meridiem: str | None) -> time | None:
    hour = int(hour_text)
    minute = int(minute_text) if minute_text else 0
    if minute > 59:
        return None
    if meridiem:
        if not 1 <= hour <= 12:
            return None
        if meridiem == "pm" and hour != 12:
            hour += 12
        elif meridiem == "am" and hour == 12:
            hour = 0
    elif hour > 23:
        return None
    return time(hour, minute)


def _local_instant(day: date, clock: time, zone: ZoneInfo) -> datetime:
    return datetime.combine(day, clock, tzinfo=zone)


class RelativeOffsetMatcher:
    """Relative offsets such as "in N hours" or "in N minutes"."""

    def match(self, phrase: str, context: ParseContext) -> MatchResult:
        found = _RELATIVE_OFFSET_RE.search(phrase)
        if found is None:
            return NoMatch
        amount = int(found.group(1))
        unit = found.group(2)
        delta = timedelta(hours=amount) if unit.startswith("h") else timedelta(minutes=amount)
        # Absolute-timeline arithmetic; adding to a zoned datetime would shift across DST.
        return Matched(context.now.astimezone(timezone.utc) + delta)


class TomorrowMatcher:
    """Next local day, optionally "at H[:MM] [am|pm]"."""

    def match(self, phrase: str, context: ParseContext) -> MatchResult:
        if _TOMORROW_RE.search(phrase) is None:
            return NoMatch
        clock = time(context.default_hour, 0)
        found = _CLOCK_AFTER_AT_RE.search(phrase)
        if found is not None:
            parsed = _clock_from_groups(found.group(1), found.group(2), found.group(3))
            if parsed is None:
                return NoMatch
            clock = parsed
        tomorrow = context.local_now.date() + timedelta(days=1)
        return Matched(_local_instant(tomorrow, clock, context.zone))


class NextWeekMatcher:
    def match(self, phrase: str, context: ParseContext) -> MatchResult:
        if _NEXT_WEEK_RE.search(phrase) is None:
            return NoMatch
        day = context.local_now.date() + timedelta(days=7)
        return Matched(_local_instant(day, time(context.default_hour, 0), context.zone))


class ClockTodayMatcher:
    """A bare clock time; rolls to tomorrow once if already past."""

    def match(self, phrase: str, context: ParseContext) -> MatchResult:
        found = _CLOCK_MERIDIEM_RE.search(phrase) or _CLOCK_24H_RE.search(phrase)
        if found is None:
            return NoMatch
        groups = found.groups()
        meridiem = groups[2] if len(groups) > 2 else None
        clock = _clock_from_groups(groups[0], groups[1], meridiem)
        if clock is None:
            return NoMatch
        today = context.local_now.date()
        candidate = _local_instant(today, clock, context.zone)
        if candidate <= context.now:
            candidate = _local_instant(today + timedelta(days=1), clock, context.zone)
        return Matched(candidate)


DEFAULT_MATCHERS: tuple[TimeMatcher, ...] = (
    RelativeOffsetMatcher(),
    TomorrowMatcher(),
    NextWeekMatcher(),
    ClockTodayMatcher(),
)


def resolve_zone(name: str | None) -> ZoneInfo:
    try:
        return ZoneInfo((name or "UTC").strip() or "UTC")
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ReminderValidationError(f"Unknown timezone '{name}'.") from exc


class TimeExpressionParser:
    """Turns a user time phrase into a UTC instant, or None when nothing matches.

    Matchers run in order and the first match wins. The parser never reads the
    wall clock; ``now`` is always supplied by the caller.
    """

    def __init__(
        self,
        matchers: Sequence[TimeMatcher] = DEFAULT_MATCHERS,
        *,
        default_hour: int = DEFAULT_HOUR,
    ):
        self.matchers = tuple(matchers)
        self.default_hour = default_hour

    def parse(self, phrase: str, user_timezone: str | None, now: datetime) -> datetime | None:
        normalized = " ".join((phrase or "").lower().split())
        if not normalized:
            return None
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        context = ParseContext(now=now, zone=resolve_zone(user_timezone), default_hour=self.default_hour)

        for matcher in self.matchers:
            result = matcher.match(normalized, context)
            if isinstance(result, Matched):
                return result.instant.astimezone(timezone.utc)
        return None


def parse(phrase: str, user_timezone: str | None, now: datetime) -> datetime | None:
    return TimeExpressionParser().parse(phrase, user_timezone, now)
