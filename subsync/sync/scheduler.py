"""Periodic and manual sync runs behind one single-flight guard."""

import threading
from datetime import datetime, timezone
from typing import Any

import structlog
from pydantic import ValidationError

from subsync.exceptions import AlreadyInProgressError
from subsync.models.change import ChangeSignal
from subsync.models.results import SchedulerStatistics, SyncResult
from subsync.storage.audit_log import SQLiteAuditLog
from subsync.sync.orchestrator import SyncOrchestrator

log = structlog.stdlib.get_logger()


class SyncScheduler:
    """Owns the run loop, the enabled flag and the in-progress guard.

    Timer runs and manual triggers share one lock, so at most one
    orchestrator run is active at a time. A busy or disabled scheduler
    skips timer runs silently; manual triggers raise AlreadyInProgressError
    when busy and ignore the enabled flag.
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        batch_size: int = 100,
        interval_seconds: float = 30.0,
        initial_delay_seconds: float = 10.0,
        enabled: bool = True,
        audit_log: SQLiteAuditLog | None = None,
    ):
        """
        Initialize the scheduler.

        Args:
            orchestrator: Orchestrator invoked for each run
            batch_size: Records per timer run
            interval_seconds: Delay between timer runs
            initial_delay_seconds: Delay before the first timer run
            enabled: Initial value of the enabled flag
            audit_log: Optional audit trail for failed cycles
        """
        self._orchestrator = orchestrator
        self._batch_size = batch_size
        self._interval = interval_seconds
        self._initial_delay = initial_delay_seconds
        self._audit_log = audit_log

        self._run_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._enabled = enabled
        self._in_progress = False
        self._run_count = 0
        self._last_run_at: datetime | None = None
        self._last_run_completed_at: datetime | None = None
        self._cumulative_processed = 0
        self._cumulative_failed = 0
        self._last_error: str | None = None
        self._last_result: SyncResult | None = None

        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()
        self._cancel_event = threading.Event()

    @property
    def enabled(self) -> bool:
        with self._state_lock:
            return self._enabled

    @property
    def in_progress(self) -> bool:
        with self._state_lock:
            return self._in_progress

    @property
    def last_result(self) -> SyncResult | None:
        with self._state_lock:
            return self._last_result

    @property
    def last_error(self) -> str | None:
        with self._state_lock:
            return self._last_error

    @property
    def last_run_completed_at(self) -> datetime | None:
        with self._state_lock:
            return self._last_run_completed_at

    def set_enabled(self, enabled: bool) -> None:
        with self._state_lock:
            self._enabled = enabled
        log.info("scheduler_enabled_changed", enabled=enabled)

    def trigger_manual(self, batch_size: int | None = None) -> SyncResult:
        """
        Run one sync now, even when the scheduler is disabled.

        Raises:
            ValueError: If batch_size is below 1
            AlreadyInProgressError: If another run is active
        """
        size = self._batch_size if batch_size is None else batch_size
        if size < 1:
            raise ValueError("batch_size must be at least 1")
        log.info("manual_sync_triggered", batch_size=size)
        result = self._run_guarded(size)
        if result is None:
            log.warning("manual_sync_rejected", reason="already_in_progress")
            raise AlreadyInProgressError()
        return result

    def run_scheduled(self) -> SyncResult | None:
        """Timer entry point; returns None when the run was skipped."""
        if not self.enabled:
            log.debug("scheduled_sync_skipped", reason="disabled")
            return None

        result = self._run_guarded(self._batch_size)
        if result is None:
            log.debug("scheduled_sync_skipped", reason="already_in_progress")
            return None

        if not result.success:
            log.warning("scheduled_sync_failed", message=result.message)
            self._audit("SYNC_CYCLE_FAILED", result.message)
        return result

    def signal(self, payload: ChangeSignal | dict[str, Any]) -> ChangeSignal | None:
        """
        Accept a capture notification and wake the loop early.

        Signals are best effort; polling picks up anything a lost signal missed.
        """
        try:
            change_signal = (
                payload
                if isinstance(payload, ChangeSignal)
                else ChangeSignal.model_validate(payload)
            )
        except ValidationError as e:
            log.warning("change_signal_invalid", error=str(e))
            return None

        log.debug(
            "change_signal_received",
            operation=change_signal.operation.value,
            entity_id=change_signal.entity_id,
            table=change_signal.table,
        )
        self._wake_event.set()
        return change_signal

    def get_statistics(self) -> SchedulerStatistics:
        with self._state_lock:
            return SchedulerStatistics(
                enabled=self._enabled,
                in_progress=self._in_progress,
                run_count=self._run_count,
                last_run_at=self._last_run_at,
                last_run_completed_at=self._last_run_completed_at,
                cumulative_processed=self._cumulative_processed,
                cumulative_failed=self._cumulative_failed,
                last_error=self._last_error,
                interval_seconds=self._interval,
            )

    def start(self) -> None:
        """Start the timer loop on a daemon thread."""
        if self._thread is not None:
            return
        self._stop_event.clear()
        self._cancel_event.clear()
        self._thread = threading.Thread(target=self._loop, name="sync-scheduler", daemon=True)
        self._thread.start()
        log.info(
            "scheduler_started",
            interval_seconds=self._interval,
            initial_delay_seconds=self._initial_delay,
        )

    def stop(self, timeout: float | None = 30.0) -> None:
        """Cancel the in-flight run between records and join the loop thread."""
        self._stop_event.set()
        self._cancel_event.set()
        self._wake_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        if self._thread is not None and self._thread.is_alive():
            log.warning("scheduler_stop_timed_out", timeout=timeout)
        else:
            # Later manual runs must not inherit the cancellation.
            self._cancel_event.clear()
        self._thread = None
        log.info("scheduler_stopped")

    def _loop(self) -> None:
        if self._stop_event.wait(self._initial_delay):
            return
        while not self._stop_event.is_set():
            self.run_scheduled()
            self._wake_event.wait(self._interval)
            self._wake_event.clear()

    def _run_guarded(self, batch_size: int) -> SyncResult | None:
        if not self._run_lock.acquire(blocking=False):
            return None

        try:
            with self._state_lock:
                self._in_progress = True
                self._run_count += 1
                self._last_run_at = datetime.now(timezone.utc)

            try:
                result = self._orchestrator.run(batch_size, cancel_event=self._cancel_event)
                error = None if result.success else result.message
            except Exception as e:
                log.error("sync_cycle_exception", error=str(e), exc_info=True)
                self._audit("SYNC_CYCLE_EXCEPTION", f"Sync cycle raised: {e}")
                result = SyncResult(success=False, message=f"Sync failed: {e}", errors=[str(e)])
                error = str(e)

            with self._state_lock:
                self._last_run_completed_at = datetime.now(timezone.utc)
                self._cumulative_processed += result.changes_processed
                self._cumulative_failed += result.failed_changes
                self._last_result = result
                if error is not None:
                    self._last_error = error
            return result
        finally:
            with self._state_lock:
                self._in_progress = False
            self._run_lock.release()

    def _audit(self, event_type: str, description: str) -> None:
        if self._audit_log is None:
            return
        try:
            self._audit_log.record(event_type, description)
        except Exception as e:
            log.warning("scheduler_audit_failed", event_type=event_type, error=str(e))
