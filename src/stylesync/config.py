"""Client configuration for stylesync."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from stylesync._constants import (
    DEFAULT_AJAX_PATH,
    DEFAULT_BASE_URL,
    DEFAULT_NAMESPACE,
    DEFAULT_PREVIEW_STYLE_ELEMENT_ID,
    TOOL_VERSION,
)
from stylesync.exceptions import ConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class SyncConfig:
    """Client configuration.

    Parameters
    ----------
    base_url : str
        Root of the REST API (primary transport).
    namespace : str
        REST namespace appended to ``base_url``.
    ajax_url : str
        Form-encoded action endpoint used by the fallback transport.
    nonce : str
        Request nonce sent with both transports.
    timeout : float
        Per-attempt timeout in seconds.
    max_retries : int
        Retries after the first attempt for retryable failures.
    retry_delay : float
        Base backoff delay in seconds; attempt *n* waits
        ``retry_delay * 2**n``.
    use_fallback : bool
        Hand exhausted requests to the fallback transport once.
    demotion_threshold : int
        Primary transport failures after which the fallback transport is
        preferred for the rest of the session. ``0`` disables demotion.
    cache_enabled : bool
        Serve fresh reads from the response cache.
    cache_ttl : float
        Response cache time-to-live in seconds.
    cache_max_size : int
        Maximum number of cached responses.
    fingerprint_window : float
        Width in seconds of the time bucket used for duplicate detection.
    preview_debounce : float
        Quiet period in seconds before a preview request is sent.
    preview_style_element_id : str
        Identifier of the single style element previews are written to.
    max_automatic_backups : int
        Automatic backups kept by the retention policy.
    retention_days : int
        Age limit for automatic backups. ``0`` disables age-based pruning.
    auto_cleanup : bool
        Apply the retention policy after every backup creation.
    tool_version : str
        Version recorded in backup metadata.
    environment_version : str
        Host environment version recorded in backup metadata.
    """

    base_url: str = DEFAULT_BASE_URL
    namespace: str = DEFAULT_NAMESPACE
    ajax_url: str = DEFAULT_AJAX_PATH
    nonce: str = ""
    timeout: float = 30.0
    max_retries: int = 3
    retry_delay: float = 1.0
    use_fallback: bool = True
    demotion_threshold: int = 3
    cache_enabled: bool = True
    cache_ttl: float = 60.0
    cache_max_size: int = 100
    fingerprint_window: float = 10.0
    preview_debounce: float = 0.5
    preview_style_element_id: str = DEFAULT_PREVIEW_STYLE_ELEMENT_ID
    max_automatic_backups: int = 10
    retention_days: int = 30
    auto_cleanup: bool = True
    tool_version: str = TOOL_VERSION
    environment_version: str = ""

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ConfigError(f"timeout must be > 0, got {self.timeout}")
        if self.max_retries < 0:
            raise ConfigError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.retry_delay < 0:
            raise ConfigError(f"retry_delay must be >= 0, got {self.retry_delay}")
        if self.cache_max_size < 1:
            raise ConfigError(f"cache_max_size must be >= 1, got {self.cache_max_size}")
        if self.fingerprint_window <= 0:
            raise ConfigError(f"fingerprint_window must be > 0, got {self.fingerprint_window}")
        if self.max_automatic_backups < 0:
            raise ConfigError(f"max_automatic_backups must be >= 0, got {self.max_automatic_backups}")

    @property
    def rest_root(self) -> str:
        """Base URL joined with the namespace, without a trailing slash."""
        return f"{self.base_url.rstrip('/')}/{self.namespace.strip('/')}"

    @classmethod
    def from_env(cls, **overrides: Any) -> SyncConfig:
        """Create configuration from environment variables.

        Reads ``STYLESYNC_*`` variables. Explicit keyword arguments override
        environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        SyncConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "STYLESYNC_BASE_URL": "base_url",
            "STYLESYNC_NAMESPACE": "namespace",
            "STYLESYNC_AJAX_URL": "ajax_url",
            "STYLESYNC_NONCE": "nonce",
            "STYLESYNC_PREVIEW_STYLE_ELEMENT_ID": "preview_style_element_id",
            "STYLESYNC_TOOL_VERSION": "tool_version",
            "STYLESYNC_ENVIRONMENT_VERSION": "environment_version",
        }
        _ENV_FLOAT_MAP = {
            "STYLESYNC_TIMEOUT": "timeout",
            "STYLESYNC_RETRY_DELAY": "retry_delay",
            "STYLESYNC_CACHE_TTL": "cache_ttl",
            "STYLESYNC_FINGERPRINT_WINDOW": "fingerprint_window",
            "STYLESYNC_PREVIEW_DEBOUNCE": "preview_debounce",
        }
        _ENV_INT_MAP = {
            "STYLESYNC_MAX_RETRIES": "max_retries",
            "STYLESYNC_DEMOTION_THRESHOLD": "demotion_threshold",
            "STYLESYNC_CACHE_MAX_SIZE": "cache_max_size",
            "STYLESYNC_MAX_AUTOMATIC_BACKUPS": "max_automatic_backups",
            "STYLESYNC_RETENTION_DAYS": "retention_days",
        }
        _ENV_BOOL_MAP = {
            "STYLESYNC_USE_FALLBACK": ("use_fallback", True),
            "STYLESYNC_CACHE_ENABLED": ("cache_enabled", True),
            "STYLESYNC_AUTO_CLEANUP": ("auto_cleanup", True),
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        # Numeric values are parsed only when not overridden explicitly
        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = float(val)

        for env_key, field_name in _ENV_INT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = int(val)

        for env_key, (field_name, default) in _ENV_BOOL_MAP.items():
            if field_name not in overrides:
                config_kwargs[field_name] = _env_bool(env.get(env_key), default)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
