"""HTTP transports: the REST API (primary) and the form-encoded action endpoint (fallback)."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from stylesync._constants import (
    HEADER_NONCE,
    HEADER_RETRY_AFTER,
    TRANSPORT_AJAX,
    TRANSPORT_REST,
    USER_AGENT,
)
from stylesync._redact import redact_for_log
from stylesync.config import SyncConfig
from stylesync.exceptions import (
    NetworkError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitedError,
    RequestTimeoutError,
    ServerError,
    StyleSyncError,
    ValidationFailedError,
)
from stylesync.models.responses import TransportResponse

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface used by the orchestrator.

    Having a protocol here makes it easy to pass test doubles/mocks while
    keeping the production implementations (`RestTransport`,
    `AjaxTransport`) concrete.

    ``name`` selects the request shape operations build for the transport,
    so it must be ``"rest"`` (REST routes) or ``"ajax"`` (action endpoint).
    A double standing in for a REST server is named ``"rest"``.
    """

    name: str

    async def send(
        self,
        method: str,
        path: str,
        body: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> TransportResponse:
        ...


def _parse_retry_after(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def _error_message(body: Any, default: str) -> str:
    if isinstance(body, Mapping):
        message = body.get("message")
        if isinstance(message, str) and message:
            return message
        data = body.get("data")
        if isinstance(data, Mapping):
            nested = data.get("message")
            if isinstance(nested, str) and nested:
                return nested
    if isinstance(body, str) and body:
        return body[:200]
    return default


def _validation_problems(body: Any) -> list[str]:
    """Collect field-level problems from an error body."""
    if not isinstance(body, Mapping):
        return []
    candidates: list[Any] = [body.get("errors")]
    data = body.get("data")
    if isinstance(data, Mapping):
        candidates.extend([data.get("errors"), data.get("params")])
    problems: list[str] = []
    for candidate in candidates:
        if isinstance(candidate, Mapping):
            problems.extend(f"{field}: {message}" for field, message in candidate.items())
        elif isinstance(candidate, (list, tuple)):
            problems.extend(str(item) for item in candidate)
    return problems


def error_for_status(
    status: int,
    body: Any = None,
    *,
    path: str = "",
    headers: Mapping[str, str] | None = None,
) -> StyleSyncError | None:
    """Map an HTTP-equivalent status to an exception, or ``None`` for success.

    ``304 Not Modified`` is a success: the caller revalidates its cache.
    """
    if status < 400:
        return None

    message = _error_message(body, f"HTTP {status} from {path}")
    code = body.get("code") if isinstance(body, Mapping) else None
    details: dict[str, Any] = {"code": code} if code else {}

    if status in (401, 403):
        return PermissionDeniedError(message, status_code=status, path=path, details=details)
    if status == 404:
        return NotFoundError(message, status_code=status, path=path, details=details)
    if status == 429:
        retry_after = None
        if headers is not None:
            lowered = {key.lower(): value for key, value in headers.items()}
            retry_after = _parse_retry_after(lowered.get(HEADER_RETRY_AFTER.lower()))
        return RateLimitedError(message, retry_after=retry_after, status_code=status, path=path, details=details)
    if status in (400, 422):
        return ValidationFailedError(
            message,
            problems=_validation_problems(body),
            status_code=status,
            path=path,
            details=details,
        )
    if status >= 500:
        return ServerError(message, status_code=status, path=path, details=details)
    return StyleSyncError(message, status_code=status, path=path, details=details)


def error_for_code(code: str, message: str, *, path: str = "", body: Any = None) -> StyleSyncError:
    """Map an application-level error code (action endpoint envelope) to an exception."""
    normalized = code.strip().lower()
    if normalized in {"permission_denied", "rest_forbidden", "invalid_nonce", "unauthorized", "forbidden"}:
        return PermissionDeniedError(message, status_code=403, path=path, details={"code": code})
    if normalized in {"not_found", "backup_not_found"}:
        return NotFoundError(message, path=path, details={"code": code})
    if normalized in {"validation_failed", "invalid_settings", "invalid_data", "backup_validation_failed"}:
        return ValidationFailedError(
            message,
            problems=_validation_problems(body),
            path=path,
            details={"code": code},
        )
    if normalized == "rate_limited":
        return RateLimitedError(message, path=path, details={"code": code})
    return ServerError(message, path=path, details={"code": code} if code else {})


def _normalize_headers(headers: Any) -> dict[str, str]:
    return {str(key): str(value) for key, value in headers.items()}


async def _read_body(resp: aiohttp.ClientResponse) -> Any:
    text = await resp.text()
    if not text:
        return None
    if "json" in resp.headers.get("Content-Type", "") or text[:1] in "{[":
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text
    return text


class RestTransport:
    """JSON REST transport (primary)."""

    name = TRANSPORT_REST

    def __init__(self, config: SyncConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session

    def _build_headers(self, extra: Mapping[str, str] | None) -> dict[str, str]:
        headers: dict[str, str] = {
            "accept": "application/json",
            "content-type": "application/json; charset=UTF-8",
            "user-agent": USER_AGENT,
        }
        if self._config.nonce:
            headers[HEADER_NONCE] = self._config.nonce
        if extra:
            headers.update(extra)
        return headers

    async def send(
        self,
        method: str,
        path: str,
        body: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> TransportResponse:
        url = f"{self._config.rest_root}{path}"
        data = json.dumps(body, separators=(",", ":")) if body is not None and method in ("POST", "PUT", "PATCH") else None

        _logger.debug("%s %s %s", method, url, redact_for_log(body))

        try:
            async with self._http.request(method, url, data=data, headers=self._build_headers(headers)) as resp:
                payload = await _read_body(resp)
                response_headers = _normalize_headers(resp.headers)
                status = resp.status
        except TimeoutError as exc:
            raise RequestTimeoutError(f"Request to {path} timed out", path=path) from exc
        except aiohttp.ClientError as exc:
            raise NetworkError(f"Request to {path} failed: {exc}", path=path) from exc

        error = error_for_status(status, payload, path=path, headers=response_headers)
        if error is not None:
            raise error

        # REST answers are wrapped as {"success": true, "data": ...}
        if isinstance(payload, Mapping) and "success" in payload and "data" in payload:
            payload = payload["data"]

        return TransportResponse(status=status, headers=response_headers, body=payload)


class AjaxTransport:
    """Form-encoded action transport (fallback).

    ``path`` is the action name; the endpoint answers ``200`` with an
    ``{"success": bool, "data": ...}`` envelope.
    """

    name = TRANSPORT_AJAX

    def __init__(self, config: SyncConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session

    def _build_form(self, action: str, body: Any) -> dict[str, str]:
        form: dict[str, str] = {"action": action}
        if self._config.nonce:
            form["nonce"] = self._config.nonce
        if isinstance(body, Mapping):
            for key, value in body.items():
                if isinstance(value, str):
                    form[str(key)] = value
                else:
                    form[str(key)] = json.dumps(value, separators=(",", ":"))
        elif body is not None:
            form["data"] = json.dumps(body, separators=(",", ":"))
        return form

    async def send(
        self,
        method: str,
        path: str,
        body: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> TransportResponse:
        form = self._build_form(path, body)
        request_headers = {"user-agent": USER_AGENT}
        if headers:
            request_headers.update(headers)

        _logger.debug("POST %s action=%s %s", self._config.ajax_url, path, redact_for_log(form))

        try:
            async with self._http.post(self._config.ajax_url, data=form, headers=request_headers) as resp:
                payload = await _read_body(resp)
                response_headers = _normalize_headers(resp.headers)
                status = resp.status
        except TimeoutError as exc:
            raise RequestTimeoutError(f"Action {path} timed out", path=path) from exc
        except aiohttp.ClientError as exc:
            raise NetworkError(f"Action {path} failed: {exc}", path=path) from exc

        error = error_for_status(status, payload, path=path, headers=response_headers)
        if error is not None:
            raise error

        if not isinstance(payload, Mapping) or "success" not in payload:
            raise ServerError(f"Malformed response for action {path}", status_code=status, path=path)

        data = payload.get("data")
        if not payload["success"]:
            code = ""
            message = f"Action {path} failed"
            if isinstance(data, Mapping):
                code = str(data.get("code", ""))
                message = str(data.get("message") or message)
            raise error_for_code(code, message, path=path, body=payload)

        return TransportResponse(status=status, headers=response_headers, body=data)
