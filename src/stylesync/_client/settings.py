"""Internal settings and theme operations for :class:`stylesync.client.StyleSyncClient`.

These functions keep `client.py` small without changing the public API.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from stylesync.models.requests import ApplyThemeRequest, RequestOptions

if TYPE_CHECKING:
    from stylesync.client import StyleSyncClient


async def get_settings(client: StyleSyncClient, *, force_refresh: bool = False) -> dict[str, Any]:
    options = RequestOptions(skip_cache=True) if force_refresh else None
    data = await client._require_orchestrator().execute("get_settings", options=options)
    return dict(data) if isinstance(data, Mapping) else {}


async def save_settings(client: StyleSyncClient, settings: Mapping[str, Any]) -> Any:
    """Replace the stored settings."""
    return await client._require_orchestrator().execute("save_settings", dict(settings))


async def update_settings(client: StyleSyncClient, patch: Mapping[str, Any]) -> Any:
    """Partially update the stored settings."""
    return await client._require_orchestrator().execute("update_settings", dict(patch))


async def reset_settings(client: StyleSyncClient) -> Any:
    return await client._require_orchestrator().execute("reset_settings")


async def get_themes(client: StyleSyncClient) -> list[Any]:
    data = await client._require_orchestrator().execute("get_themes")
    return list(data) if isinstance(data, (list, tuple)) else []


async def get_theme(client: StyleSyncClient, theme_id: str) -> Any:
    request = ApplyThemeRequest(theme_id=theme_id)
    return await client._require_orchestrator().execute("get_theme", {"theme_id": request.theme_id})


async def apply_theme(client: StyleSyncClient, theme_id: str) -> Any:
    request = ApplyThemeRequest(theme_id=theme_id)
    return await client._require_orchestrator().execute("apply_theme", {"theme_id": request.theme_id})
