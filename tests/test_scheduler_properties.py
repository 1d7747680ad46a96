"""Property-based tests for the sync scheduler.

**Feature: subscriber-sync, Property 15: Single-flight runs**
"""

import threading
import time
from unittest.mock import Mock

import pytest
import structlog
from hypothesis import given, settings
from hypothesis import strategies as st

from subsync.exceptions import AlreadyInProgressError
from subsync.models import ChangeSignal, SyncResult
from subsync.storage import SQLiteAuditLog, SQLiteChangeRecordStore, SQLiteDatabase
from subsync.sync import SyncScheduler

log = structlog.stdlib.get_logger()


def result(processed=1, failed=0) -> SyncResult:
    return SyncResult(
        success=failed == 0,
        changes_processed=processed,
        successful_changes=processed - failed,
        failed_changes=failed,
        message=f"Processed {processed} changes: {processed - failed} successful, {failed} failed",
    )


class BlockingOrchestrator:
    """Orchestrator whose run blocks until released."""

    def __init__(self):
        self.started = threading.Event()
        self.release = threading.Event()
        self.calls = 0

    def run(self, batch_size, cancel_event=None):
        self.calls += 1
        self.started.set()
        self.release.wait(timeout=5)
        return result()


def wait_for(predicate, timeout=5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def test_scenario_c_manual_trigger_while_running_is_rejected():
    database = SQLiteDatabase()
    changes = SQLiteChangeRecordStore(database)
    changes.append("subscriptions", "UPDATE", "1", new_snapshot={"status": "ACTIVE"})
    orchestrator = BlockingOrchestrator()
    scheduler = SyncScheduler(orchestrator)

    first = threading.Thread(target=scheduler.trigger_manual)
    first.start()
    try:
        assert orchestrator.started.wait(timeout=5)
        assert scheduler.in_progress

        with pytest.raises(AlreadyInProgressError):
            scheduler.trigger_manual()
        assert scheduler.run_scheduled() is None
        assert changes.count_unprocessed() == 1
    finally:
        orchestrator.release.set()
        first.join(timeout=5)

    assert orchestrator.calls == 1
    assert not scheduler.in_progress


class TestSingleFlight:
    """Test Property 15: Single-flight runs.

    **Feature: subscriber-sync, Property 15: Single-flight runs**

    However many callers race, the orchestrator never runs twice at once.
    """

    @given(callers=st.integers(min_value=2, max_value=6))
    @settings(max_examples=10, deadline=None)
    def test_concurrent_callers_never_overlap(self, callers: int) -> None:
        log.info("test_concurrent_callers_never_overlap", callers=callers)
        active = 0
        peak = 0
        lock = threading.Lock()

        def run(batch_size, cancel_event=None):
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            time.sleep(0.02)
            with lock:
                active -= 1
            return result()

        orchestrator = Mock()
        orchestrator.run.side_effect = run
        scheduler = SyncScheduler(orchestrator)
        barrier = threading.Barrier(callers)
        outcomes: list[str] = []

        def call() -> None:
            barrier.wait()
            try:
                scheduler.trigger_manual()
                outcomes.append("ran")
            except AlreadyInProgressError:
                outcomes.append("rejected")

        threads = [threading.Thread(target=call) for _ in range(callers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert peak == 1
        assert outcomes.count("ran") >= 1
        assert outcomes.count("ran") == orchestrator.run.call_count


class TestEnabledFlag:
    def test_disabled_scheduler_skips_timer_runs(self) -> None:
        orchestrator = Mock()
        scheduler = SyncScheduler(orchestrator, enabled=False)

        assert scheduler.run_scheduled() is None
        orchestrator.run.assert_not_called()

    def test_manual_trigger_ignores_enabled_flag(self) -> None:
        orchestrator = Mock()
        orchestrator.run.return_value = result(processed=3)
        scheduler = SyncScheduler(orchestrator, batch_size=50, enabled=False)

        outcome = scheduler.trigger_manual(batch_size=7)

        assert outcome.changes_processed == 3
        assert orchestrator.run.call_args.args[0] == 7

    @pytest.mark.parametrize("batch_size", [0, -5])
    def test_manual_trigger_rejects_batch_size_below_one(self, batch_size) -> None:
        orchestrator = Mock()
        scheduler = SyncScheduler(orchestrator, batch_size=50)

        with pytest.raises(ValueError):
            scheduler.trigger_manual(batch_size=batch_size)
        orchestrator.run.assert_not_called()

    def test_manual_trigger_defaults_to_configured_batch_size(self) -> None:
        orchestrator = Mock()
        orchestrator.run.return_value = result()
        scheduler = SyncScheduler(orchestrator, batch_size=50)

        scheduler.trigger_manual()

        assert orchestrator.run.call_args.args[0] == 50

    def test_set_enabled_toggles_timer_runs(self) -> None:
        orchestrator = Mock()
        orchestrator.run.return_value = result()
        scheduler = SyncScheduler(orchestrator, enabled=False)

        scheduler.set_enabled(True)

        assert scheduler.enabled
        assert scheduler.run_scheduled() is not None


class TestFailureHandling:
    def test_orchestrator_exception_becomes_failed_result(self) -> None:
        audit = SQLiteAuditLog(SQLiteDatabase())
        orchestrator = Mock()
        orchestrator.run.side_effect = RuntimeError("disk full")
        scheduler = SyncScheduler(orchestrator, audit_log=audit)

        outcome = scheduler.run_scheduled()

        assert outcome.success is False
        assert outcome.message == "Sync failed: disk full"
        assert scheduler.last_error == "disk full"
        assert not scheduler.in_progress
        assert len(audit.recent(event_type="SYNC_CYCLE_EXCEPTION")) == 1

    def test_failed_cycle_is_audited(self) -> None:
        audit = SQLiteAuditLog(SQLiteDatabase())
        orchestrator = Mock()
        orchestrator.run.return_value = result(processed=2, failed=1)
        scheduler = SyncScheduler(orchestrator, audit_log=audit)

        scheduler.run_scheduled()

        assert len(audit.recent(event_type="SYNC_CYCLE_FAILED")) == 1
        assert scheduler.last_error == "Processed 2 changes: 1 successful, 1 failed"

    @given(
        outcomes=st.lists(
            st.tuples(st.integers(min_value=0, max_value=20), st.integers(min_value=0, max_value=20)),
            min_size=1,
            max_size=10,
        )
    )
    @settings(max_examples=30, deadline=None)
    def test_statistics_accumulate_across_runs(self, outcomes) -> None:
        log.info("test_statistics_accumulate_across_runs", runs=len(outcomes))
        orchestrator = Mock()
        orchestrator.run.side_effect = [
            result(processed=processed + failed, failed=failed) for processed, failed in outcomes
        ]
        scheduler = SyncScheduler(orchestrator, interval_seconds=15.0)

        for _ in outcomes:
            scheduler.trigger_manual()

        stats = scheduler.get_statistics()
        assert stats.run_count == len(outcomes)
        assert stats.cumulative_processed == sum(p + f for p, f in outcomes)
        assert stats.cumulative_failed == sum(f for _, f in outcomes)
        assert stats.interval_seconds == 15.0
        assert stats.last_run_completed_at is not None
        assert stats.to_wire()["runCount"] == len(outcomes)


class TestSignalsAndLoop:
    def test_valid_signal_is_parsed(self) -> None:
        scheduler = SyncScheduler(Mock())

        parsed = scheduler.signal({"operation": "UPDATE", "entityId": 42, "table": "subscriptions"})

        assert isinstance(parsed, ChangeSignal)
        assert parsed.entity_id == "42"

    def test_invalid_signal_is_dropped(self) -> None:
        scheduler = SyncScheduler(Mock())
        assert scheduler.signal({"operation": "TRUNCATE"}) is None

    def test_loop_runs_and_stops(self) -> None:
        orchestrator = Mock()
        orchestrator.run.return_value = result()
        scheduler = SyncScheduler(orchestrator, interval_seconds=0.05, initial_delay_seconds=0.0)

        scheduler.start()
        try:
            assert wait_for(lambda: orchestrator.run.call_count >= 2)
        finally:
            scheduler.stop(timeout=5)

        calls = orchestrator.run.call_count
        time.sleep(0.15)
        assert orchestrator.run.call_count == calls

    def test_manual_run_after_stop_is_not_cancelled(self) -> None:
        orchestrator = Mock()
        orchestrator.run.return_value = result()
        scheduler = SyncScheduler(orchestrator, interval_seconds=60.0, initial_delay_seconds=0.0)

        scheduler.start()
        try:
            assert wait_for(lambda: orchestrator.run.call_count == 1)
        finally:
            scheduler.stop(timeout=5)

        scheduler.trigger_manual(batch_size=5)

        cancel_event = orchestrator.run.call_args.kwargs["cancel_event"]
        assert not cancel_event.is_set()

    def test_signal_wakes_the_loop_early(self) -> None:
        orchestrator = Mock()
        orchestrator.run.return_value = result()
        scheduler = SyncScheduler(orchestrator, interval_seconds=60.0, initial_delay_seconds=0.0)

        scheduler.start()
        try:
            assert wait_for(lambda: orchestrator.run.call_count == 1)
            scheduler.signal({"operation": "INSERT", "entityId": "7", "table": "subscriptions"})
            assert wait_for(lambda: orchestrator.run.call_count == 2)
        finally:
            scheduler.stop(timeout=5)
