from __future__ import annotations

from .errors import ReminderNotFoundError, ReminderStorageError, ReminderValidationError
from .scheduler import ReminderScheduler
from .timeparse import TimeExpressionParser
from .types import CycleReport, ReminderDetail, ReminderStats

__all__ = [
    "CycleReport",
    "ReminderDetail",
    "ReminderNotFoundError",
    "ReminderScheduler",
    "ReminderStats",
    "ReminderStorageError",
    "ReminderValidationError",
    "TimeExpressionParser",
]
