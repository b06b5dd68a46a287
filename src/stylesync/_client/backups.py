"""Internal server-side backup operations for :class:`stylesync.client.StyleSyncClient`.

These only exist on the REST transport; the orchestrator never falls back
for them.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from stylesync.models.requests import BackupIdRequest, RequestOptions

if TYPE_CHECKING:
    from stylesync.client import StyleSyncClient


async def list_backups(client: StyleSyncClient, *, limit: int = 0, offset: int = 0) -> list[Any]:
    payload: dict[str, Any] = {}
    if limit > 0:
        payload["limit"] = limit
    if offset > 0:
        payload["offset"] = offset
    data = await client._require_orchestrator().execute("list_backups", payload or None)
    return list(data) if isinstance(data, (list, tuple)) else []


async def get_backup(client: StyleSyncClient, backup_id: str) -> Any:
    request = BackupIdRequest(backup_id=backup_id)
    return await client._require_orchestrator().execute("get_backup", {"backup_id": request.backup_id})


async def create_backup(client: StyleSyncClient, note: str = "") -> Any:
    payload = {"note": note} if note else None
    return await client._require_orchestrator().execute("create_backup", payload)


async def restore_backup(client: StyleSyncClient, backup_id: str) -> Any:
    request = BackupIdRequest(backup_id=backup_id)
    return await client._require_orchestrator().execute("restore_backup", {"backup_id": request.backup_id})


async def delete_backup(client: StyleSyncClient, backup_id: str) -> Any:
    request = BackupIdRequest(backup_id=backup_id)
    return await client._require_orchestrator().execute("delete_backup", {"backup_id": request.backup_id})


async def export_settings(client: StyleSyncClient) -> Any:
    # Exports are downloads; a cached copy could be stale.
    return await client._require_orchestrator().execute("export_settings", options=RequestOptions(cacheable=False))


async def import_settings(
    client: StyleSyncClient,
    data: Mapping[str, Any],
    *,
    create_backup: bool = True,
) -> Any:
    payload = {"data": dict(data), "create_backup": create_backup}
    return await client._require_orchestrator().execute("import_settings", payload)
