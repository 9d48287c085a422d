from __future__ import annotations

from uuid import UUID

from .errors import ValidationError


def parse_uuid(value: UUID | str, *, field_name: str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value).strip())
    except ValueError as exc:
        raise ValidationError(f"Invalid {field_name}.") from exc
