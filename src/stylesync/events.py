"""Notification channel.

The preview debouncer, the backup manager and the orchestrator publish named
notifications here; UI collaborators subscribe to them. A failing listener
never breaks the publisher.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

_logger = logging.getLogger(__name__)


class NotificationType(StrEnum):
    PREVIEW_UPDATED = "preview-updated"
    PREVIEW_ERROR = "preview-error"
    PREVIEW_CLEARED = "preview-cleared"
    BACKUP_CREATED = "backup-created"
    BACKUP_DELETED = "backup-deleted"
    BACKUP_RESTORED = "backup-restored"
    BACKUP_RESTORE_FAILED = "backup-restore-failed"
    BACKUPS_CLEANED = "backups-cleaned"
    API_DEPRECATED = "api-deprecated"
    TRANSPORT_DEMOTED = "transport-demoted"


class Notification(BaseModel):
    """A published notification: ``{type, timestamp, ...fields}``."""

    model_config = ConfigDict(frozen=True)

    type: NotificationType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    def payload(self) -> dict[str, Any]:
        """Flat payload as consumed by UI collaborators."""
        return {"type": str(self.type), "timestamp": self.timestamp.isoformat(), **self.data}


Listener = Callable[[Notification], None]


class EventBus:
    """Synchronous publish/subscribe hub."""

    def __init__(self) -> None:
        self._listeners: list[tuple[NotificationType | None, Listener]] = []
        self._history: list[Notification] = []
        self._history_limit = 100

    def subscribe(self, listener: Listener, type: NotificationType | None = None) -> Callable[[], None]:
        """Register *listener* for *type* (or every type) and return an unsubscribe callable."""
        entry = (type, listener)
        self._listeners.append(entry)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(entry)

        return _unsubscribe

    def emit(self, type: NotificationType, **data: Any) -> Notification:
        notification = Notification(type=type, data=data)
        self._history.append(notification)
        if len(self._history) > self._history_limit:
            del self._history[0]
        for wanted, listener in list(self._listeners):
            if wanted is not None and wanted != type:
                continue
            try:
                listener(notification)
            except Exception:
                _logger.debug("%s listener failed", type, exc_info=True)
        return notification

    @property
    def history(self) -> list[Notification]:
        """Most recent notifications, oldest first."""
        return list(self._history)

    def clear_history(self) -> None:
        self._history.clear()
