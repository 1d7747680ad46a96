"""Data models for the subscriber sync engine."""

from subsync.models.change import (
    ChangePage,
    ChangeRecord,
    ChangeSignal,
    Operation,
    ProcessingStatus,
    Snapshot,
)
from subsync.models.config import (
    AppConfig,
    CacheConfig,
    LoggingConfig,
    MirrorConfig,
    StoreConfig,
    SyncConfig,
    WebhookConfig,
)
from subsync.models.conflict import (
    COMPARED_FIELDS,
    Conflict,
    ResolutionChoice,
    ResolutionStatus,
)
from subsync.models.results import (
    DispatchReport,
    ResolutionResult,
    SchedulerStatistics,
    SyncResult,
    SyncStatus,
    WebhookTestResult,
)

__all__ = [
    "AppConfig",
    "CacheConfig",
    "ChangePage",
    "ChangeRecord",
    "ChangeSignal",
    "COMPARED_FIELDS",
    "Conflict",
    "DispatchReport",
    "LoggingConfig",
    "MirrorConfig",
    "Operation",
    "ProcessingStatus",
    "ResolutionChoice",
    "ResolutionResult",
    "ResolutionStatus",
    "SchedulerStatistics",
    "Snapshot",
    "StoreConfig",
    "SyncConfig",
    "SyncResult",
    "SyncStatus",
    "WebhookConfig",
    "WebhookTestResult",
]
