"""Pydantic request models for client entrypoints.

These models provide a consistent "validate → normalize → execute" flow.
Identifier models are validated by :class:`stylesync.client.StyleSyncClient`;
:class:`RequestOptions` is consumed by :class:`stylesync.orchestrator.RequestOrchestrator`.
"""

from __future__ import annotations

from pydantic import Field, field_validator

from stylesync.models._base import SyncBaseModel


class RequestOptions(SyncBaseModel):
    """Per-call orchestration options.

    ``None`` fields fall back to the operation's defaults and then to
    :class:`stylesync.config.SyncConfig`.
    """

    cacheable: bool | None = None
    max_retries: int | None = Field(default=None, ge=0)
    timeout: float | None = Field(default=None, gt=0)
    use_fallback: bool | None = None
    skip_cache: bool = False


class ApplyThemeRequest(SyncBaseModel):
    theme_id: str

    @field_validator("theme_id")
    @classmethod
    def _theme_id_non_empty(cls, value: str) -> str:
        theme_id = value.strip()
        if not theme_id:
            raise ValueError("theme_id must be non-empty")
        return theme_id


class BackupIdRequest(SyncBaseModel):
    backup_id: str

    @field_validator("backup_id")
    @classmethod
    def _backup_id_non_empty(cls, value: str) -> str:
        backup_id = value.strip()
        if not backup_id:
            raise ValueError("backup_id must be non-empty")
        return backup_id
