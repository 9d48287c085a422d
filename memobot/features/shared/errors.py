from __future__ import annotations

from fastapi import HTTPException


class DomainError(Exception):
    """Base exception for media and reminder operations."""

    status_code = 500


class ValidationError(DomainError):
    """Malformed input rejected before any side effect."""

    status_code = 400


class NotFoundError(DomainError):
    """Referenced entity is missing or not owned by the caller."""

    status_code = 404


class StorageError(DomainError):
    """Persistence failed; nothing partial was left behind."""

    status_code = 500


def to_http_error(exc: DomainError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=str(exc))
