from __future__ import annotations

from memobot.features.shared.errors import DomainError, NotFoundError, StorageError, ValidationError


class MediaValidationError(ValidationError):
    pass


class MediaNotFoundError(NotFoundError):
    pass


class MediaStorageError(StorageError):
    pass


class MediaFetchError(DomainError):
    """Download or indirection failure; the whole ingest may be retried."""

    status_code = 502
