"""Custom exception hierarchy for stylesync."""

from __future__ import annotations

from collections.abc import Sequence
from enum import StrEnum
from typing import Any


class ErrorKind(StrEnum):
    """Machine-readable error classification preserved end-to-end."""

    UNKNOWN = "unknown"
    CONFIG = "config"
    NETWORK = "network"
    TIMEOUT = "timeout"
    SERVER = "server"
    RATE_LIMITED = "rate_limited"
    PERMISSION = "permission"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    STORAGE = "storage"
    GENERATION = "generation"


class FailureOutcome(StrEnum):
    """How a retryable request finally failed."""

    EXHAUSTED = "exhausted"
    BOTH_FAILED = "both_failed"


class StyleSyncError(Exception):
    """Base exception for all stylesync errors.

    Besides the message, every error carries its :class:`ErrorKind`, an
    optional HTTP-equivalent ``status_code`` and free-form ``details``.
    The orchestrator additionally tags surfaced errors with ``outcome``,
    ``attempted_transports`` and ``fallback_error``.
    """

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        path: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        self.status_code = status_code
        self.path = path
        self.details: dict[str, Any] = dict(details or {})
        self.outcome: FailureOutcome | None = None
        self.attempted_transports: tuple[str, ...] = ()
        self.fallback_error: BaseException | None = None
        super().__init__(message)


class ConfigError(StyleSyncError):
    """Invalid or missing configuration, or an unknown operation."""

    kind = ErrorKind.CONFIG


class NetworkError(StyleSyncError):
    """Transport unreachable or connection dropped (retryable)."""

    kind = ErrorKind.NETWORK


class RequestTimeoutError(NetworkError):
    """The transport did not answer within the configured timeout."""

    kind = ErrorKind.TIMEOUT


class ServerError(StyleSyncError):
    """The remote side answered with a 5xx status (retryable)."""

    kind = ErrorKind.SERVER


class RateLimitedError(StyleSyncError):
    """Expected back-pressure from the remote side (HTTP 429).

    Dropped silently for previews; retried with backoff for saves.
    """

    kind = ErrorKind.RATE_LIMITED

    def __init__(
        self,
        message: str,
        *,
        retry_after: float | None = None,
        status_code: int | None = 429,
        path: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        self.retry_after = retry_after
        super().__init__(message, status_code=status_code, path=path, details=details)


class PermissionDeniedError(StyleSyncError):
    """Authentication or authorization failure (terminal).

    Never retried and never handed to the fallback transport.
    """

    kind = ErrorKind.PERMISSION


class ValidationFailedError(StyleSyncError):
    """Input rejected as invalid (terminal).

    ``problems`` holds the field-level problem descriptions.
    """

    kind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str,
        *,
        problems: Sequence[str] = (),
        status_code: int | None = 400,
        path: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        self.problems: list[str] = list(problems)
        super().__init__(message, status_code=status_code, path=path, details=details)


class NotFoundError(StyleSyncError):
    """Requested resource does not exist (terminal)."""

    kind = ErrorKind.NOT_FOUND

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = 404,
        path: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code, path=path, details=details)


class StorageError(StyleSyncError):
    """Settings or snapshot store read/write failure.

    Terminal for the current operation. Raised mid-restore it triggers a
    rollback to the pre-restore snapshot before it is surfaced.
    """

    kind = ErrorKind.STORAGE


class GenerationError(StyleSyncError):
    """Stylesheet generation failed; callers degrade to fallback CSS."""

    kind = ErrorKind.GENERATION


_TERMINAL_KINDS: frozenset[ErrorKind] = frozenset(
    {
        ErrorKind.UNKNOWN,
        ErrorKind.CONFIG,
        ErrorKind.PERMISSION,
        ErrorKind.VALIDATION,
        ErrorKind.NOT_FOUND,
        ErrorKind.STORAGE,
        ErrorKind.GENERATION,
    }
)


def is_retryable(exc: BaseException) -> bool:
    """Return ``True`` when *exc* is worth another attempt.

    Terminal kinds represent a definitive decision by the remote side, so
    neither retries nor the fallback transport can change the outcome.
    Exceptions outside the hierarchy are programming errors and never retried.
    """
    return isinstance(exc, StyleSyncError) and exc.kind not in _TERMINAL_KINDS
