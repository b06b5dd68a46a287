"""Backup snapshot models."""

from __future__ import annotations

import copy
import hashlib
import json
from collections.abc import Mapping
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import Field, field_validator

from stylesync.models._base import SyncBaseModel, UtcTimestamp


class BackupType(StrEnum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"


class RestoreState(StrEnum):
    """States of a restore transaction.

    ``VALIDATING -> REJECTED`` or
    ``VALIDATING -> SNAPSHOTTING_CURRENT -> WRITING_TARGET -> COMMITTED``, or on
    a failed write ``... -> WRITING_TARGET -> ROLLING_BACK -> ROLLED_BACK``.
    """

    VALIDATING = "validating"
    REJECTED = "rejected"
    SNAPSHOTTING_CURRENT = "snapshotting_current"
    WRITING_TARGET = "writing_target"
    COMMITTED = "committed"
    ROLLING_BACK = "rolling_back"
    ROLLED_BACK = "rolled_back"


def settings_checksum(settings: Mapping[str, Any]) -> str:
    """Integrity checksum over a settings snapshot."""
    material = json.dumps(dict(settings), sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.md5(material.encode("utf-8")).hexdigest()  # noqa: S324


def count_settings(settings: Mapping[str, Any]) -> int:
    """Number of settings values; nested collections count their members."""
    count = 0
    for value in settings.values():
        if isinstance(value, (Mapping, list, tuple)):
            count += len(value)
        else:
            count += 1
    return count


class BackupMetadata(SyncBaseModel):
    note: str = ""
    creator_id: str = ""
    tool_version: str
    environment_version: str = ""
    settings_count: int = Field(default=0, ge=0)
    size_bytes: int = Field(default=0, ge=0)
    checksum: str | None = None


class BackupSummary(SyncBaseModel):
    """Index entry for a backup: everything except the settings snapshot."""

    id: str
    timestamp: UtcTimestamp
    type: BackupType
    metadata: BackupMetadata


class Backup(BackupSummary):
    """A point-in-time settings snapshot. Immutable once created."""

    settings: dict[str, Any]

    @field_validator("settings", mode="before")
    @classmethod
    def _copy_settings(cls, value: Any) -> Any:
        if isinstance(value, Mapping):
            return copy.deepcopy(dict(value))
        return value

    def settings_copy(self) -> dict[str, Any]:
        """Deep copy of the snapshot, safe to hand to a store."""
        return copy.deepcopy(self.settings)

    def summary(self) -> BackupSummary:
        return BackupSummary(id=self.id, timestamp=self.timestamp, type=self.type, metadata=self.metadata)

    def to_record(self) -> dict[str, Any]:
        """JSON-compatible record as persisted by a snapshot store."""
        return self.model_dump(mode="json")


class RestoreResult(SyncBaseModel):
    backup_id: str
    pre_restore_backup_id: str
    restored_at: UtcTimestamp
    settings_count: int
    states: tuple[RestoreState, ...]

    @property
    def state(self) -> RestoreState:
        return self.states[-1]


class BackupStatistics(SyncBaseModel):
    total_backups: int
    automatic_backups: int
    manual_backups: int
    total_size_bytes: int
    oldest_backup: UtcTimestamp | None = None
    newest_backup: UtcTimestamp | None = None
    max_automatic_backups: int
    retention_days: int


class BackupExport(SyncBaseModel):
    """Download payload for a single backup."""

    filename: str
    content: str
    mime_type: str = "application/json"
    size: int


def utcnow() -> datetime:
    return datetime.now(UTC)
