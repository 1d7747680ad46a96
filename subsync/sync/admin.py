"""Administrative operations over the sync engine."""

from datetime import timedelta
from typing import Callable

import structlog

from subsync.dispatch.dispatcher import NotificationDispatcher
from subsync.exceptions import PermissionDeniedError
from subsync.models.change import ChangePage, ChangeRecord, Snapshot
from subsync.models.config import SyncConfig
from subsync.models.conflict import Conflict, ResolutionChoice
from subsync.models.results import ResolutionResult, SyncResult, SyncStatus, WebhookTestResult
from subsync.storage.audit_log import SQLiteAuditLog
from subsync.storage.change_store import ChangeRecordStore
from subsync.storage.conflict_store import ConflictStore
from subsync.storage.database import utcnow
from subsync.sync.resolution import ConflictResolutionService
from subsync.sync.scheduler import SyncScheduler

log = structlog.stdlib.get_logger()

SYNC_VIEWER = "SYNC_VIEWER"
SYNC_MANAGER = "SYNC_MANAGER"
ADMIN = "ADMIN"

MAX_BATCH_SIZE = 1000
MAX_PAGE_SIZE = 100


def allow_all(capability: str) -> bool:
    return True


class SyncAdminService:
    """Operator surface: trigger, status, cache, scheduler, webhook and conflict operations.

    Every operation first asks ``has_capability`` for the capability it needs
    and raises PermissionDeniedError on refusal. Callers authenticate; this
    class only enforces.
    """

    def __init__(
        self,
        scheduler: SyncScheduler,
        change_store: ChangeRecordStore,
        conflict_store: ConflictStore,
        dispatcher: NotificationDispatcher,
        resolution: ConflictResolutionService,
        audit_log: SQLiteAuditLog | None = None,
        sync_config: SyncConfig | None = None,
        has_capability: Callable[[str], bool] = allow_all,
    ):
        self._scheduler = scheduler
        self._change_store = change_store
        self._conflict_store = conflict_store
        self._dispatcher = dispatcher
        self._resolution = resolution
        self._audit_log = audit_log
        self._config = sync_config or SyncConfig()
        self._has_capability = has_capability

    def trigger_sync(self, batch_size: int = 100) -> SyncResult:
        """
        Run a manual sync.

        Raises:
            ValueError: If batch_size is outside 1..1000
            AlreadyInProgressError: If a run is active
        """
        self._require(SYNC_MANAGER)
        if not 1 <= batch_size <= MAX_BATCH_SIZE:
            raise ValueError(f"batch_size must be between 1 and {MAX_BATCH_SIZE}")
        return self._scheduler.trigger_manual(batch_size)

    def get_status(self) -> SyncStatus:
        self._require(SYNC_VIEWER)
        unprocessed = self._change_store.count_unprocessed()
        oldest_age = self._change_store.oldest_unprocessed_age()
        lag = oldest_age or 0.0
        stuck_before = utcnow() - timedelta(minutes=self._config.stuck_threshold_minutes)

        return SyncStatus(
            in_progress=self._scheduler.in_progress,
            last_sync_time=self._scheduler.last_run_completed_at,
            unprocessed_count=unprocessed,
            failed_count=self._change_store.count_failed(),
            processing_lag_seconds=lag,
            oldest_unprocessed_age=oldest_age,
            stuck_count=self._change_store.count_stuck(stuck_before),
            open_conflicts=self._conflict_store.count_open(),
            last_error=self._scheduler.last_error,
            healthy=unprocessed < self._config.max_unprocessed
            and lag < self._config.max_lag_seconds,
        )

    def invalidate_cache(self, cache_name: str, key: str | None = None) -> None:
        self._require(SYNC_MANAGER)
        if not cache_name:
            raise ValueError("cache_name is required")
        self._dispatcher.invalidate(cache_name, key)
        self._audit(
            "MANUAL_CACHE_INVALIDATION",
            f"Cache {cache_name} invalidated" + (f" for key {key}" if key else ""),
            resource_id=cache_name,
        )

    def toggle_scheduler(self, enabled: bool) -> None:
        self._require(ADMIN)
        self._scheduler.set_enabled(enabled)

    def list_unprocessed_changes(
        self, page: int = 0, size: int = 20, table_name: str | None = None
    ) -> ChangePage:
        self._require(SYNC_VIEWER)
        if page < 0 or not 1 <= size <= MAX_PAGE_SIZE:
            raise ValueError(f"page must be >= 0 and size between 1 and {MAX_PAGE_SIZE}")
        return self._change_store.list_unprocessed(page=page, size=size, table_name=table_name)

    def get_change(self, record_id: int) -> ChangeRecord | None:
        self._require(SYNC_VIEWER)
        return self._change_store.get(record_id)

    def test_webhook(self, endpoint: str | None = None) -> list[WebhookTestResult]:
        """Probe one endpoint, or every configured endpoint when none is given."""
        self._require(SYNC_MANAGER)
        if endpoint:
            return [self._dispatcher.test_endpoint(endpoint)]
        return self._dispatcher.test_all_endpoints()

    def list_conflicts(self) -> list[Conflict]:
        self._require(SYNC_VIEWER)
        return self._conflict_store.list_open()

    def resolve_conflict(
        self,
        key: str,
        choice: ResolutionChoice | str,
        merged_snapshot: Snapshot | None = None,
    ) -> ResolutionResult:
        self._require(SYNC_MANAGER)
        return self._resolution.resolve(key, choice, merged_snapshot)

    def resolve_all_conflicts(self, choice: ResolutionChoice | str) -> list[ResolutionResult]:
        self._require(SYNC_MANAGER)
        return self._resolution.resolve_all(choice)

    def rearm_stuck_records(self, older_than_minutes: float | None = None) -> int:
        """Move PROCESSING records claimed before the threshold back to RETRY."""
        self._require(ADMIN)
        minutes = (
            self._config.stuck_threshold_minutes
            if older_than_minutes is None
            else older_than_minutes
        )
        if minutes < 0:
            raise ValueError("older_than_minutes must not be negative")

        rearmed = self._change_store.rearm_stuck(utcnow() - timedelta(minutes=minutes))
        if rearmed:
            self._audit(
                "STUCK_RECORDS_REARMED",
                f"{rearmed} records claimed more than {minutes} minutes ago re-armed",
            )
        return rearmed

    def _require(self, capability: str) -> None:
        if not self._has_capability(capability):
            log.warning("admin_operation_denied", capability=capability)
            raise PermissionDeniedError(capability)

    def _audit(self, event_type: str, description: str, resource_id: str | None = None) -> None:
        if self._audit_log is not None:
            self._audit_log.record(event_type, description, resource_id=resource_id)
