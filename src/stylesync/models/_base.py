"""Base model for stylesync value objects.

Every model inherits from :class:`SyncBaseModel` which is frozen and rejects
unknown fields, so a value handed to a caller can never be mutated or carry
stray data into a store.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict


def parse_timestamp(value: Any) -> datetime | None:
    """Coerce epoch seconds (or an ISO string) to an aware UTC datetime."""
    if value is None:
        return value
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=UTC)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value)
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    return value


UtcTimestamp = Annotated[datetime, BeforeValidator(parse_timestamp)]
"""Annotated type that coerces epoch seconds and ISO strings to UTC datetimes."""


class SyncBaseModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        validate_default=True,
    )
