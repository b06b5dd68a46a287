"""High-level async client for the settings API."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

import aiohttp

from stylesync._client import backups as _backups
from stylesync._client import settings as _settings
from stylesync._transport import AjaxTransport, RestTransport
from stylesync.config import SyncConfig
from stylesync.events import EventBus, Notification
from stylesync.exceptions import StyleSyncError
from stylesync.models.requests import RequestOptions
from stylesync.orchestrator import RequestOrchestrator
from stylesync.preview import PreviewDebouncer, RemotePreviewGenerator, StyleElement

_logger = logging.getLogger(__name__)


class StyleSyncClient:
    """Async client for the settings API.

    Usage::

        async with StyleSyncClient(config) as client:
            settings = await client.get_settings()
            client.preview({"menu_background": "#1e1e2e"})
    """

    def __init__(
        self,
        config: SyncConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        events: EventBus | None = None,
        on_notification: Callable[[Notification], None] | None = None,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._events = events or EventBus()
        self._orchestrator: RequestOrchestrator | None = None
        self._preview: PreviewDebouncer | None = None
        self._unsubscribe: Callable[[], None] | None = None
        if on_notification is not None:
            self._unsubscribe = self._events.subscribe(on_notification)

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> StyleSyncClient:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        fallback = AjaxTransport(self._config, self._http_session) if self._config.use_fallback else None
        self._orchestrator = RequestOrchestrator(
            self._config,
            RestTransport(self._config, self._http_session),
            fallback,
            events=self._events,
        )
        self._preview = PreviewDebouncer(
            RemotePreviewGenerator(self._orchestrator),
            StyleElement(self._config.preview_style_element_id),
            delay=self._config.preview_debounce,
            events=self._events,
        )
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if self._preview is not None:
            self._preview.cancel()
            self._preview = None
        if self._orchestrator is not None:
            self._orchestrator.clear_pending()
            self._orchestrator = None
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_orchestrator(self) -> RequestOrchestrator:
        if self._orchestrator is None:
            raise StyleSyncError("Client not initialized. Use 'async with StyleSyncClient(...) as client:'")
        return self._orchestrator

    def _require_preview(self) -> PreviewDebouncer:
        if self._preview is None:
            raise StyleSyncError("Client not initialized. Use 'async with StyleSyncClient(...) as client:'")
        return self._preview

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    @property
    def config(self) -> SyncConfig:
        return self._config

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def orchestrator(self) -> RequestOrchestrator:
        return self._require_orchestrator()

    @property
    def previews(self) -> PreviewDebouncer:
        return self._require_preview()

    async def execute(
        self,
        operation_name: str,
        payload: Any = None,
        options: RequestOptions | Mapping[str, Any] | None = None,
    ) -> Any:
        """Run any registered operation through the orchestrator."""
        return await self._require_orchestrator().execute(operation_name, payload, options)

    # ------------------------------------------------------------------
    # Settings & themes
    # ------------------------------------------------------------------

    async def get_settings(self, *, force_refresh: bool = False) -> dict[str, Any]:
        return await _settings.get_settings(self, force_refresh=force_refresh)

    async def save_settings(self, settings: Mapping[str, Any]) -> Any:
        return await _settings.save_settings(self, settings)

    async def update_settings(self, patch: Mapping[str, Any]) -> Any:
        return await _settings.update_settings(self, patch)

    async def reset_settings(self) -> Any:
        return await _settings.reset_settings(self)

    async def get_themes(self) -> list[Any]:
        return await _settings.get_themes(self)

    async def get_theme(self, theme_id: str) -> Any:
        return await _settings.get_theme(self, theme_id)

    async def apply_theme(self, theme_id: str) -> Any:
        return await _settings.apply_theme(self, theme_id)

    # ------------------------------------------------------------------
    # Live preview
    # ------------------------------------------------------------------

    def preview(self, settings_delta: Mapping[str, Any]) -> None:
        """Queue a debounced preview of *settings_delta*."""
        self._require_preview().submit(settings_delta)

    def cancel_preview(self) -> None:
        self._require_preview().cancel()

    def clear_preview(self) -> None:
        self._require_preview().clear()

    # ------------------------------------------------------------------
    # Server-side backups & import/export
    # ------------------------------------------------------------------

    async def list_backups(self, *, limit: int = 0, offset: int = 0) -> list[Any]:
        return await _backups.list_backups(self, limit=limit, offset=offset)

    async def get_backup(self, backup_id: str) -> Any:
        return await _backups.get_backup(self, backup_id)

    async def create_backup(self, note: str = "") -> Any:
        return await _backups.create_backup(self, note)

    async def restore_backup(self, backup_id: str) -> Any:
        return await _backups.restore_backup(self, backup_id)

    async def delete_backup(self, backup_id: str) -> Any:
        return await _backups.delete_backup(self, backup_id)

    async def export_settings(self) -> Any:
        return await _backups.export_settings(self)

    async def import_settings(self, data: Mapping[str, Any], *, create_backup: bool = True) -> Any:
        return await _backups.import_settings(self, data, create_backup=create_backup)

    def close_subscription(self) -> None:
        """Detach the ``on_notification`` callback."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
