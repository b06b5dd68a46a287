"""Typed models for stylesync."""

from stylesync.models.backup import (
    Backup,
    BackupExport,
    BackupMetadata,
    BackupStatistics,
    BackupSummary,
    BackupType,
    RestoreResult,
    RestoreState,
)
from stylesync.models.preview import PreviewResult, PreviewStats
from stylesync.models.requests import RequestOptions
from stylesync.models.responses import TransportResponse

__all__ = [
    "Backup",
    "BackupExport",
    "BackupMetadata",
    "BackupStatistics",
    "BackupSummary",
    "BackupType",
    "PreviewResult",
    "PreviewStats",
    "RequestOptions",
    "RestoreResult",
    "RestoreState",
    "TransportResponse",
]
