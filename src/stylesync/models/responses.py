"""Transport-level response model."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from stylesync._constants import HEADER_DEPRECATED, HEADER_ETAG
from stylesync.models._base import SyncBaseModel


class TransportResponse(SyncBaseModel):
    """What a transport hands back for a completed round-trip."""

    status: int
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = None

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None

    @property
    def etag(self) -> str | None:
        return self.header(HEADER_ETAG)

    @property
    def not_modified(self) -> bool:
        return self.status == 304

    @property
    def deprecated(self) -> bool:
        value = self.header(HEADER_DEPRECATED)
        return value is not None and value.strip().lower() == "true"
