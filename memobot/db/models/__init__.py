from .media import MediaBlob, MediaReference
from .memories import Memory, User
from .reminders import (
    REMINDER_STATUS_CANCELLED,
    REMINDER_STATUS_PENDING,
    REMINDER_STATUS_SENT,
    Reminder,
)

__all__ = [
    "MediaBlob",
    "MediaReference",
    "Memory",
    "REMINDER_STATUS_CANCELLED",
    "REMINDER_STATUS_PENDING",
    "REMINDER_STATUS_SENT",
    "Reminder",
    "User",
]
