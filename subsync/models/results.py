"""Result and status models returned by sync operations."""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from subsync.models.conflict import ResolutionChoice


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SyncResult(BaseModel):
    """Outcome of one orchestrator pass."""

    success: bool = Field(default=True, description="True when no record failed")
    changes_processed: int = Field(default=0, ge=0, description="Records claimed and handled")
    successful_changes: int = Field(default=0, ge=0, description="Records marked SUCCESS")
    failed_changes: int = Field(
        default=0, ge=0, description="Records marked FAILED or released for RETRY"
    )
    skipped_changes: int = Field(default=0, ge=0, description="Claims lost to another worker")
    conflicts_detected: int = Field(default=0, ge=0, description="Divergences recorded")
    cancelled: bool = Field(default=False, description="Run stopped between records")
    message: str = Field(default="", description="Human readable summary")
    errors: list[str] = Field(default_factory=list, description="Per-record error messages")
    processed_at: datetime = Field(default_factory=_now)
    duration_seconds: float = Field(default=0.0, ge=0.0)

    @classmethod
    def empty(cls, message: str = "No unprocessed changes found") -> "SyncResult":
        return cls(message=message)

    def to_wire(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "changesProcessed": self.changes_processed,
            "successfulChanges": self.successful_changes,
            "failedChanges": self.failed_changes,
            "skippedChanges": self.skipped_changes,
            "conflictsDetected": self.conflicts_detected,
            "cancelled": self.cancelled,
            "message": self.message,
            "processedAt": self.processed_at.isoformat(),
        }


class SchedulerStatistics(BaseModel):
    """Snapshot of the scheduler's in-memory state."""

    enabled: bool
    in_progress: bool
    run_count: int = 0
    last_run_at: datetime | None = None
    last_run_completed_at: datetime | None = None
    cumulative_processed: int = 0
    cumulative_failed: int = 0
    last_error: str | None = None
    interval_seconds: float = 0.0

    def to_wire(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "inProgress": self.in_progress,
            "runCount": self.run_count,
            "lastRunAt": self.last_run_at.isoformat() if self.last_run_at else None,
            "lastRunCompletedAt": (
                self.last_run_completed_at.isoformat() if self.last_run_completed_at else None
            ),
            "cumulativeProcessed": self.cumulative_processed,
            "cumulativeFailed": self.cumulative_failed,
            "lastError": self.last_error,
            "intervalSeconds": self.interval_seconds,
        }


class SyncStatus(BaseModel):
    """Health view exposed to operators."""

    in_progress: bool
    last_sync_time: datetime | None = None
    unprocessed_count: int = 0
    failed_count: int = 0
    processing_lag_seconds: float = 0.0
    oldest_unprocessed_age: float | None = None
    stuck_count: int = 0
    open_conflicts: int = 0
    last_error: str | None = None
    healthy: bool = True

    def to_wire(self) -> dict[str, Any]:
        return {
            "inProgress": self.in_progress,
            "lastSyncTime": self.last_sync_time.isoformat() if self.last_sync_time else None,
            "unprocessedCount": self.unprocessed_count,
            "failedCount": self.failed_count,
            "processingLagSeconds": self.processing_lag_seconds,
            "oldestUnprocessedAge": self.oldest_unprocessed_age,
            "stuckCount": self.stuck_count,
            "openConflicts": self.open_conflicts,
            "lastError": self.last_error,
            "healthy": self.healthy,
        }


class WebhookTestResult(BaseModel):
    success: bool
    endpoint: str
    response_time_ms: float | None = None
    message: str = ""
    error: str | None = None

    def to_wire(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "endpoint": self.endpoint,
            "responseTimeMs": self.response_time_ms,
            "message": self.message,
            "error": self.error,
        }


class DispatchReport(BaseModel):
    """Side effects delivered for one change record."""

    record_id: int
    caches_invalidated: list[str] = Field(default_factory=list)
    cache_errors: list[str] = Field(default_factory=list)
    webhooks_delivered: list[str] = Field(default_factory=list)
    webhooks_failed: list[str] = Field(default_factory=list)
    webhooks_queued: int = 0


class ResolutionResult(BaseModel):
    key: str
    choice: ResolutionChoice | None = None
    already_resolved: bool = False
    canonical_snapshot: dict[str, Any] | None = None
    resolved_at: datetime | None = None

    def to_wire(self) -> dict[str, Any]:
        return {
            "msisdn": self.key,
            "resolution": self.choice.value if self.choice else None,
            "alreadyResolved": self.already_resolved,
            "canonicalData": self.canonical_snapshot,
            "resolvedAt": self.resolved_at.isoformat() if self.resolved_at else None,
        }
