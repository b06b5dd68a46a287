"""Storage collaborators for the backup manager.

The manager only talks to the :class:`SettingsStore` and
:class:`SnapshotStore` protocols. The in-memory implementations here back
tests and short-lived sessions; persistent stores implement the same two
protocols.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import Any, Protocol

from stylesync.exceptions import StorageError


class SettingsStore(Protocol):
    """The live settings."""

    def read(self) -> dict[str, Any]:
        ...

    def write(self, settings: Mapping[str, Any]) -> None:
        ...


class SnapshotStore(Protocol):
    """Backup records plus a summary index (records without their settings)."""

    def save(self, record: Mapping[str, Any]) -> None:
        ...

    def load(self, backup_id: str) -> dict[str, Any] | None:
        ...

    def delete(self, backup_id: str) -> bool:
        ...

    def list_summaries(self) -> list[dict[str, Any]]:
        ...


class InMemorySettingsStore:
    def __init__(self, settings: Mapping[str, Any] | None = None) -> None:
        self._settings: dict[str, Any] = copy.deepcopy(dict(settings or {}))
        self.write_count = 0

    def read(self) -> dict[str, Any]:
        return copy.deepcopy(self._settings)

    def write(self, settings: Mapping[str, Any]) -> None:
        if not isinstance(settings, Mapping):
            raise StorageError(f"Settings must be a mapping, got {type(settings).__name__}")
        self._settings = copy.deepcopy(dict(settings))
        self.write_count += 1


class InMemorySnapshotStore:
    """Keeps records and their index side by side; both change together."""

    def __init__(self) -> None:
        self._records: dict[str, dict[str, Any]] = {}
        self._index: list[dict[str, Any]] = []

    def __len__(self) -> int:
        return len(self._records)

    def save(self, record: Mapping[str, Any]) -> None:
        backup_id = record.get("id")
        if not isinstance(backup_id, str) or not backup_id:
            raise StorageError("Backup record has no id")
        stored = copy.deepcopy(dict(record))
        summary = {key: value for key, value in stored.items() if key != "settings"}
        self._index = [item for item in self._index if item["id"] != backup_id]
        self._records[backup_id] = stored
        self._index.append(summary)

    def load(self, backup_id: str) -> dict[str, Any] | None:
        record = self._records.get(backup_id)
        return copy.deepcopy(record) if record is not None else None

    def delete(self, backup_id: str) -> bool:
        if self._records.pop(backup_id, None) is None:
            return False
        self._index = [item for item in self._index if item["id"] != backup_id]
        return True

    def list_summaries(self) -> list[dict[str, Any]]:
        """Index entries in insertion order."""
        return copy.deepcopy(self._index)
