"""Backup & restore of the live settings.

Backups are immutable snapshots. A restore is a small transaction: the live
settings are snapshotted first, then overwritten, and rewritten from that
snapshot if the overwrite fails, so the store is never left half-restored.
"""

from __future__ import annotations

import json
import logging
import secrets
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta
from typing import Any

from pydantic import ValidationError

from stylesync.config import SyncConfig
from stylesync.events import EventBus, NotificationType
from stylesync.exceptions import NotFoundError, StyleSyncError, ValidationFailedError
from stylesync.models.backup import (
    Backup,
    BackupExport,
    BackupMetadata,
    BackupStatistics,
    BackupSummary,
    BackupType,
    RestoreResult,
    RestoreState,
    count_settings,
    settings_checksum,
    utcnow,
)
from stylesync.stores import SettingsStore, SnapshotStore

_logger = logging.getLogger(__name__)

#: Backups written by tool versions older than this are refused on restore.
MIN_RESTORABLE_VERSION = (2, 0, 0)

_ALLOWED_TRANSITIONS: dict[RestoreState, frozenset[RestoreState]] = {
    RestoreState.VALIDATING: frozenset({RestoreState.REJECTED, RestoreState.SNAPSHOTTING_CURRENT}),
    RestoreState.SNAPSHOTTING_CURRENT: frozenset({RestoreState.WRITING_TARGET}),
    RestoreState.WRITING_TARGET: frozenset({RestoreState.COMMITTED, RestoreState.ROLLING_BACK}),
    RestoreState.ROLLING_BACK: frozenset({RestoreState.ROLLED_BACK}),
    RestoreState.REJECTED: frozenset(),
    RestoreState.COMMITTED: frozenset(),
    RestoreState.ROLLED_BACK: frozenset(),
}


def _parse_version(value: str) -> tuple[int, ...] | None:
    parts = value.strip().split(".")
    try:
        return tuple(int(part) for part in parts)
    except ValueError:
        return None


def validate_backup_record(record: Mapping[str, Any]) -> list[str]:
    """Structural problems of a stored backup record; empty when restorable."""
    problems: list[str] = []
    settings = record.get("settings")
    if not isinstance(settings, Mapping):
        problems.append("settings: backup does not contain a settings mapping")
    metadata = record.get("metadata")
    if not isinstance(metadata, Mapping):
        problems.append("metadata: backup does not contain metadata")
        return problems

    version = metadata.get("tool_version")
    if not isinstance(version, str) or not version:
        problems.append("metadata.tool_version: missing")
    else:
        parsed = _parse_version(version)
        if parsed is None:
            problems.append(f"metadata.tool_version: unreadable version {version!r}")
        elif parsed < MIN_RESTORABLE_VERSION:
            problems.append(f"metadata.tool_version: backup version {version} is too old to restore")

    checksum = metadata.get("checksum")
    if checksum and isinstance(settings, Mapping) and settings_checksum(settings) != checksum:
        problems.append("settings: checksum mismatch, backup is corrupted")
    return problems


class RestoreTransaction:
    """State of one restore, advanced through :class:`RestoreState`."""

    def __init__(self, backup_id: str) -> None:
        self.backup_id = backup_id
        self.states: list[RestoreState] = [RestoreState.VALIDATING]
        self.pre_restore_backup_id: str | None = None
        self.error: BaseException | None = None

    @property
    def state(self) -> RestoreState:
        return self.states[-1]

    def advance(self, state: RestoreState) -> None:
        if state not in _ALLOWED_TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid restore transition {self.state} -> {state}")
        _logger.debug("Restore %s: %s -> %s", self.backup_id, self.state, state)
        self.states.append(state)


class BackupManager:
    """Creates, lists, restores and prunes settings backups."""

    def __init__(
        self,
        settings_store: SettingsStore,
        snapshot_store: SnapshotStore,
        config: SyncConfig | None = None,
        *,
        events: EventBus | None = None,
        creator_id: str = "",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._settings_store = settings_store
        self._snapshots = snapshot_store
        self._config = config or SyncConfig()
        self._events = events or EventBus()
        self._creator_id = creator_id
        self._clock = clock
        self._last_restore: RestoreTransaction | None = None

    @property
    def last_restore(self) -> RestoreTransaction | None:
        return self._last_restore

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_backup(
        self,
        type: BackupType | str = BackupType.MANUAL,
        note: str = "",
        *,
        settings: Mapping[str, Any] | None = None,
    ) -> Backup:
        """Snapshot *settings* (the live settings when omitted)."""
        backup = self._write_backup(BackupType(type), note, settings)
        if self._config.auto_cleanup:
            self.cleanup_old_backups()
        return backup

    def create_automatic_backup(self, note: str = "") -> Backup:
        return self.create_backup(BackupType.AUTOMATIC, note)

    def _write_backup(self, type: BackupType, note: str, settings: Mapping[str, Any] | None) -> Backup:
        snapshot = dict(settings) if settings is not None else self._settings_store.read()
        timestamp = self._clock()
        backup_id = f"{int(timestamp.timestamp())}_{secrets.token_hex(4)}"
        size_bytes = len(json.dumps(snapshot, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8"))

        backup = Backup(
            id=backup_id,
            timestamp=timestamp,
            type=type,
            settings=snapshot,
            metadata=BackupMetadata(
                note=note,
                creator_id=self._creator_id,
                tool_version=self._config.tool_version,
                environment_version=self._config.environment_version,
                settings_count=count_settings(snapshot),
                size_bytes=size_bytes,
                checksum=settings_checksum(snapshot),
            ),
        )
        self._snapshots.save(backup.to_record())
        _logger.debug("Created %s backup %s (%d settings)", type, backup_id, backup.metadata.settings_count)
        self._events.emit(NotificationType.BACKUP_CREATED, backup_id=backup_id, backup_type=str(type), note=note)
        return backup

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _summaries(self) -> list[BackupSummary]:
        """Index entries, newest first. Ties keep the most recent insertion first."""
        summaries = [BackupSummary.model_validate(item) for item in reversed(self._snapshots.list_summaries())]
        return sorted(summaries, key=lambda summary: summary.timestamp, reverse=True)

    def list_backups(
        self,
        *,
        type: BackupType | str | None = None,
        limit: int = 0,
        offset: int = 0,
    ) -> list[BackupSummary]:
        """Summaries newest first, optionally filtered by *type* and paginated."""
        summaries = self._summaries()
        if type is not None:
            wanted = BackupType(type)
            summaries = [summary for summary in summaries if summary.type == wanted]
        if offset > 0:
            summaries = summaries[offset:]
        if limit > 0:
            summaries = summaries[:limit]
        return summaries

    def _load_record(self, backup_id: str) -> dict[str, Any]:
        record = self._snapshots.load(backup_id)
        if record is None:
            raise NotFoundError(f"Backup {backup_id} not found", details={"backup_id": backup_id})
        return record

    def _parse_record(self, backup_id: str, record: Mapping[str, Any]) -> Backup:
        try:
            return Backup.model_validate(record)
        except ValidationError as exc:
            raise ValidationFailedError(
                f"Backup {backup_id} is malformed",
                problems=[f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()],
                details={"backup_id": backup_id},
            ) from exc

    def get_backup(self, backup_id: str) -> Backup:
        """Load one backup, verifying its checksum."""
        backup = self._parse_record(backup_id, self._load_record(backup_id))
        checksum = backup.metadata.checksum
        if checksum and settings_checksum(backup.settings) != checksum:
            raise ValidationFailedError(
                f"Backup {backup_id} is corrupted",
                problems=["settings: checksum mismatch, backup is corrupted"],
                details={"backup_id": backup_id},
            )
        return backup

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def restore_backup(self, backup_id: str) -> RestoreResult:
        """Replace the live settings with backup *backup_id*.

        The live settings are snapshotted as an automatic backup first. If
        writing the target fails, that snapshot is written back and the
        original error is raised.

        Raises
        ------
        NotFoundError
            Unknown backup id.
        ValidationFailedError
            The backup is malformed, corrupted or too old. Nothing was
            changed.
        """
        transaction = RestoreTransaction(backup_id)
        self._last_restore = transaction

        try:
            record = self._load_record(backup_id)
            problems = validate_backup_record(record)
            if problems:
                raise ValidationFailedError(
                    f"Backup {backup_id} cannot be restored",
                    problems=problems,
                    details={"backup_id": backup_id},
                )
            target = self._parse_record(backup_id, record)
        except StyleSyncError as exc:
            transaction.advance(RestoreState.REJECTED)
            transaction.error = exc
            self._events.emit(
                NotificationType.BACKUP_RESTORE_FAILED,
                backup_id=backup_id,
                state=str(transaction.state),
                error=str(exc),
            )
            raise

        transaction.advance(RestoreState.SNAPSHOTTING_CURRENT)
        # Held in memory for the rollback; retention may prune the stored copy.
        pre_restore = self._write_backup(BackupType.AUTOMATIC, f"Before restore of backup {backup_id}", None)
        transaction.pre_restore_backup_id = pre_restore.id

        transaction.advance(RestoreState.WRITING_TARGET)
        try:
            self._settings_store.write(target.settings_copy())
        except Exception as exc:
            transaction.error = exc
            transaction.advance(RestoreState.ROLLING_BACK)
            self._roll_back(transaction, pre_restore)
            self._events.emit(
                NotificationType.BACKUP_RESTORE_FAILED,
                backup_id=backup_id,
                pre_restore_backup_id=pre_restore.id,
                state=str(transaction.state),
                error=str(exc),
            )
            raise

        transaction.advance(RestoreState.COMMITTED)
        _logger.info("Restored backup %s (pre-restore backup %s)", backup_id, pre_restore.id)
        self._events.emit(
            NotificationType.BACKUP_RESTORED,
            backup_id=backup_id,
            pre_restore_backup_id=pre_restore.id,
        )
        if self._config.auto_cleanup:
            self.cleanup_old_backups()

        return RestoreResult(
            backup_id=backup_id,
            pre_restore_backup_id=pre_restore.id,
            restored_at=self._clock(),
            settings_count=target.metadata.settings_count,
            states=tuple(transaction.states),
        )

    def _roll_back(self, transaction: RestoreTransaction, pre_restore: Backup) -> None:
        try:
            self._settings_store.write(pre_restore.settings_copy())
        except Exception:
            _logger.exception(
                "Rollback of restore %s failed; live settings may not match backup %s",
                transaction.backup_id,
                pre_restore.id,
            )
            return
        transaction.advance(RestoreState.ROLLED_BACK)
        _logger.warning("Restore of %s failed, live settings rolled back", transaction.backup_id)

    # ------------------------------------------------------------------
    # Deletion & retention
    # ------------------------------------------------------------------

    def delete_backup(self, backup_id: str) -> None:
        if not self._snapshots.delete(backup_id):
            raise NotFoundError(f"Backup {backup_id} not found", details={"backup_id": backup_id})
        _logger.debug("Deleted backup %s", backup_id)
        self._events.emit(NotificationType.BACKUP_DELETED, backup_id=backup_id)

    def cleanup_old_backups(self) -> int:
        """Apply the retention policy to automatic backups.

        Automatic backups older than ``retention_days`` and those beyond the
        newest ``max_automatic_backups`` are deleted. Manual backups are
        never pruned. Returns the number deleted.
        """
        automatic = [summary for summary in self._summaries() if summary.type == BackupType.AUTOMATIC]
        doomed: list[str] = []

        if self._config.retention_days > 0:
            cutoff = self._clock() - timedelta(days=self._config.retention_days)
            doomed.extend(summary.id for summary in automatic if summary.timestamp < cutoff)

        for summary in automatic[self._config.max_automatic_backups :]:
            if summary.id not in doomed:
                doomed.append(summary.id)

        removed = [backup_id for backup_id in doomed if self._snapshots.delete(backup_id)]
        if removed:
            _logger.debug("Retention removed %d automatic backups", len(removed))
            self._events.emit(NotificationType.BACKUPS_CLEANED, count=len(removed), backup_ids=removed)
        return len(removed)

    # ------------------------------------------------------------------
    # Statistics & export
    # ------------------------------------------------------------------

    def get_statistics(self) -> BackupStatistics:
        summaries = self._summaries()
        automatic = sum(1 for summary in summaries if summary.type == BackupType.AUTOMATIC)
        return BackupStatistics(
            total_backups=len(summaries),
            automatic_backups=automatic,
            manual_backups=len(summaries) - automatic,
            total_size_bytes=sum(summary.metadata.size_bytes for summary in summaries),
            oldest_backup=summaries[-1].timestamp if summaries else None,
            newest_backup=summaries[0].timestamp if summaries else None,
            max_automatic_backups=self._config.max_automatic_backups,
            retention_days=self._config.retention_days,
        )

    def export_backup(self, backup_id: str) -> BackupExport:
        """JSON download payload for one backup."""
        backup = self.get_backup(backup_id)
        content = json.dumps(backup.to_record(), indent=2, sort_keys=True)
        stamp = backup.timestamp.strftime("%Y-%m-%d-%H%M%S")
        return BackupExport(
            filename=f"stylesync-backup-{backup.type}-{stamp}.json",
            content=content,
            size=len(content.encode("utf-8")),
        )
