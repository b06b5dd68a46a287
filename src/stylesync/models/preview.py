"""Preview models."""

from __future__ import annotations

from stylesync.models._base import SyncBaseModel


class PreviewResult(SyncBaseModel):
    """Stylesheet produced for a preview request."""

    css: str
    fallback: bool = False


class PreviewStats(SyncBaseModel):
    request_count: int = 0
    cancelled_count: int = 0
    error_count: int = 0
    discarded_count: int = 0
    rate_limited_count: int = 0
    last_update_time: float | None = None
    is_active: bool = False
    generation: int = 0
