"""Change replay, conflict handling and scheduling."""

from subsync.sync.admin import SyncAdminService
from subsync.sync.conflict_detector import ConflictDetector
from subsync.sync.orchestrator import RecordOutcome, SyncOrchestrator
from subsync.sync.resolution import ConflictResolutionService
from subsync.sync.scheduler import SyncScheduler

__all__ = [
    "ConflictDetector",
    "ConflictResolutionService",
    "RecordOutcome",
    "SyncAdminService",
    "SyncOrchestrator",
    "SyncScheduler",
]
