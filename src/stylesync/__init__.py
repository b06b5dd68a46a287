"""stylesync - Async resilience layer for a remote settings and styling API."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pystylesync")
except PackageNotFoundError:
    __version__ = "0+local"
from stylesync._cache import CacheEntry, CacheStats, CacheStore
from stylesync._fingerprint import cache_key, fingerprint
from stylesync._operations import Operation, OperationRegistry, RequestSpec
from stylesync._transport import AjaxTransport, RestTransport, Transport, error_for_status
from stylesync.backup import BackupManager, RestoreTransaction
from stylesync.client import StyleSyncClient
from stylesync.config import SyncConfig
from stylesync.events import EventBus, Notification, NotificationType
from stylesync.exceptions import (
    ConfigError,
    ErrorKind,
    FailureOutcome,
    GenerationError,
    NetworkError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitedError,
    RequestTimeoutError,
    ServerError,
    StorageError,
    StyleSyncError,
    ValidationFailedError,
    is_retryable,
)
from stylesync.models import (
    Backup,
    BackupExport,
    BackupMetadata,
    BackupStatistics,
    BackupSummary,
    BackupType,
    PreviewResult,
    PreviewStats,
    RequestOptions,
    RestoreResult,
    RestoreState,
    TransportResponse,
)
from stylesync.orchestrator import OrchestratorStats, RequestOrchestrator
from stylesync.preview import (
    LocalPreviewGenerator,
    PreviewDebouncer,
    PreviewGenerator,
    RemotePreviewGenerator,
    StyleElement,
    build_fallback_css,
)
from stylesync.stores import InMemorySettingsStore, InMemorySnapshotStore, SettingsStore, SnapshotStore

__all__ = [
    "__version__",
    "AjaxTransport",
    "Backup",
    "BackupExport",
    "BackupManager",
    "BackupMetadata",
    "BackupStatistics",
    "BackupSummary",
    "BackupType",
    "CacheEntry",
    "CacheStats",
    "CacheStore",
    "ConfigError",
    "ErrorKind",
    "EventBus",
    "FailureOutcome",
    "GenerationError",
    "InMemorySettingsStore",
    "InMemorySnapshotStore",
    "LocalPreviewGenerator",
    "NetworkError",
    "NotFoundError",
    "Notification",
    "NotificationType",
    "Operation",
    "OperationRegistry",
    "OrchestratorStats",
    "PermissionDeniedError",
    "PreviewDebouncer",
    "PreviewGenerator",
    "PreviewResult",
    "PreviewStats",
    "RateLimitedError",
    "RemotePreviewGenerator",
    "RequestOptions",
    "RequestOrchestrator",
    "RequestSpec",
    "RequestTimeoutError",
    "RestTransport",
    "RestoreResult",
    "RestoreState",
    "RestoreTransaction",
    "ServerError",
    "SettingsStore",
    "SnapshotStore",
    "StorageError",
    "StyleElement",
    "StyleSyncClient",
    "StyleSyncError",
    "SyncConfig",
    "Transport",
    "TransportResponse",
    "ValidationFailedError",
    "build_fallback_css",
    "cache_key",
    "error_for_status",
    "fingerprint",
    "is_retryable",
]
