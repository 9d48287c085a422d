from .base import Base
from .models import MediaBlob, MediaReference, Memory, Reminder, User

__all__ = [
    "Base",
    "MediaBlob",
    "MediaReference",
    "Memory",
    "Reminder",
    "User",
]
