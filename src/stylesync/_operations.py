"""Logical operations and their per-transport request adapters.

The orchestrator only knows operation names. Each :class:`Operation` knows
how to express itself on the REST transport and, where one exists, on the
action-endpoint fallback transport; the two request shapes differ for the
same logical operation.
"""

from __future__ import annotations

import string
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

from stylesync._constants import KNOWN_TRANSPORTS, TRANSPORT_AJAX, TRANSPORT_REST
from stylesync.exceptions import ConfigError, ValidationFailedError

_READ_METHODS: frozenset[str] = frozenset({"GET", "HEAD"})


@dataclass(frozen=True, slots=True)
class RequestSpec:
    """A concrete transport request."""

    method: str
    path: str
    body: Any = None

    @property
    def resource(self) -> str:
        return f"{self.method}:{self.path}"


Adapter = Callable[["Operation", Any], RequestSpec]


def _path_fields(template: str) -> list[str]:
    return [field for _, field, _, _ in string.Formatter().parse(template) if field]


def _split_payload(template: str, payload: Any) -> tuple[str, Any]:
    """Render *template* from *payload* and return ``(path, remaining body)``."""
    fields = _path_fields(template)
    if not fields:
        return template, payload
    if not isinstance(payload, Mapping):
        raise ValidationFailedError(
            f"{template} requires {', '.join(fields)}",
            problems=[f"{field}: required" for field in fields],
        )
    missing = [field for field in fields if payload.get(field) in (None, "")]
    if missing:
        raise ValidationFailedError(
            f"{template} requires {', '.join(missing)}",
            problems=[f"{field}: required" for field in missing],
        )
    path = template.format(**{field: payload[field] for field in fields})
    rest = {key: value for key, value in payload.items() if key not in fields}
    return path, rest or None


def rest_adapter(operation: Operation, payload: Any) -> RequestSpec:
    path, body = _split_payload(operation.path, payload)
    if operation.method in _READ_METHODS:
        # Reads carry leftover payload fields as query parameters
        if isinstance(body, Mapping) and body:
            path = f"{path}?{urlencode(sorted((str(key), str(value)) for key, value in body.items()))}"
        body = None
    return RequestSpec(method=operation.method, path=path, body=body)


def ajax_adapter(operation: Operation, payload: Any) -> RequestSpec:
    if operation.ajax_action is None:
        raise ConfigError(f"{operation.name} has no fallback action")
    body = dict(payload) if isinstance(payload, Mapping) else payload
    return RequestSpec(method="POST", path=operation.ajax_action, body=body)


def ajax_settings_adapter(operation: Operation, payload: Any) -> RequestSpec:
    """Settings writes go to the action endpoint wrapped as ``{"settings": ...}``."""
    if operation.ajax_action is None:
        raise ConfigError(f"{operation.name} has no fallback action")
    return RequestSpec(method="POST", path=operation.ajax_action, body={"settings": payload or {}})


@dataclass(frozen=True, slots=True)
class Operation:
    """A logical operation the orchestrator can execute.

    ``invalidates`` is a regular expression matched against cache keys after
    a successful write.
    """

    name: str
    method: str
    path: str
    ajax_action: str | None = None
    invalidates: str | None = None
    rest: Adapter = rest_adapter
    ajax: Adapter | None = ajax_adapter

    @property
    def is_read(self) -> bool:
        return self.method in _READ_METHODS

    def request_for(self, transport_name: str, payload: Any) -> RequestSpec | None:
        """Request for *transport_name*, or ``None`` if the operation has no adapter for it.

        Adapters are keyed by request shape, so *transport_name* must be one
        of :data:`~stylesync._constants.KNOWN_TRANSPORTS`.
        """
        if transport_name == TRANSPORT_REST:
            return self.rest(self, payload)
        if transport_name == TRANSPORT_AJAX:
            if self.ajax is None or self.ajax_action is None:
                return None
            return self.ajax(self, payload)
        raise ConfigError(f"Unknown transport {transport_name!r}, expected one of {sorted(KNOWN_TRANSPORTS)}")

    def supports(self, transport_name: str) -> bool:
        if transport_name == TRANSPORT_REST:
            return True
        return transport_name == TRANSPORT_AJAX and self.ajax is not None and self.ajax_action is not None


_SETTINGS_READS = r"^GET:/settings"
_THEME_READS = r"^GET:/themes"
_BACKUP_READS = r"^GET:/backups"

DEFAULT_OPERATIONS: tuple[Operation, ...] = (
    Operation("get_settings", "GET", "/settings", ajax_action="mas_v2_get_settings"),
    Operation(
        "save_settings",
        "POST",
        "/settings",
        ajax_action="mas_v2_save_settings",
        invalidates=_SETTINGS_READS,
        ajax=ajax_settings_adapter,
    ),
    Operation(
        "update_settings",
        "PUT",
        "/settings",
        ajax_action="mas_v2_save_settings",
        invalidates=_SETTINGS_READS,
        ajax=ajax_settings_adapter,
    ),
    Operation(
        "reset_settings",
        "DELETE",
        "/settings",
        ajax_action="mas_v2_reset_settings",
        invalidates=_SETTINGS_READS,
    ),
    Operation("get_themes", "GET", "/themes", ajax_action="mas_v2_get_themes"),
    Operation("get_theme", "GET", "/themes/{theme_id}", ajax_action="mas_v2_get_theme"),
    Operation(
        "apply_theme",
        "POST",
        "/themes/{theme_id}/apply",
        ajax_action="mas_v2_apply_theme",
        invalidates=f"{_SETTINGS_READS}|{_THEME_READS}",
    ),
    Operation("generate_preview", "POST", "/preview", ajax_action="mas_v2_generate_preview"),
    Operation("list_backups", "GET", "/backups", ajax=None),
    Operation("get_backup", "GET", "/backups/{backup_id}", ajax=None),
    Operation("create_backup", "POST", "/backups", invalidates=_BACKUP_READS, ajax=None),
    Operation(
        "restore_backup",
        "POST",
        "/backups/{backup_id}/restore",
        invalidates=f"{_SETTINGS_READS}|{_BACKUP_READS}",
        ajax=None,
    ),
    Operation("delete_backup", "DELETE", "/backups/{backup_id}", invalidates=_BACKUP_READS, ajax=None),
    Operation("export_settings", "GET", "/export", ajax=None),
    Operation(
        "import_settings",
        "POST",
        "/import",
        invalidates=f"{_SETTINGS_READS}|{_BACKUP_READS}",
        ajax=None,
    ),
)


class OperationRegistry:
    def __init__(self, operations: tuple[Operation, ...] = DEFAULT_OPERATIONS) -> None:
        self._operations: dict[str, Operation] = {op.name: op for op in operations}

    def get(self, name: str) -> Operation:
        operation = self._operations.get(name)
        if operation is None:
            raise ConfigError(f"Unknown operation {name!r}")
        return operation

    def register(self, operation: Operation) -> None:
        self._operations[operation.name] = operation

    def __contains__(self, name: object) -> bool:
        return name in self._operations

    def names(self) -> list[str]:
        return sorted(self._operations)
