from __future__ import annotations

from memobot.features.shared.errors import NotFoundError, StorageError, ValidationError


class ReminderValidationError(ValidationError):
    pass


class ReminderNotFoundError(NotFoundError):
    pass


class ReminderStorageError(StorageError):
    pass
