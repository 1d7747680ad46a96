"""Property-based tests for the administrative service.

**Feature: subscriber-sync, Property 23: Capability enforcement**
"""

from unittest.mock import Mock

import pytest
import structlog
from hypothesis import given, settings
from hypothesis import strategies as st

from subsync.exceptions import PermissionDeniedError
from subsync.models import AppConfig, StoreConfig, SyncConfig, WebhookConfig, WebhookTestResult
from subsync.providers import build_engine
from subsync.sync.admin import ADMIN, SYNC_MANAGER, SYNC_VIEWER, SyncAdminService

log = structlog.stdlib.get_logger()

MSISDN = "+1234567890"

OPERATIONS = {
    "trigger_sync": (SYNC_MANAGER, lambda admin: admin.trigger_sync(10)),
    "get_status": (SYNC_VIEWER, lambda admin: admin.get_status()),
    "invalidate_cache": (SYNC_MANAGER, lambda admin: admin.invalidate_cache("users")),
    "toggle_scheduler": (ADMIN, lambda admin: admin.toggle_scheduler(False)),
    "list_unprocessed_changes": (SYNC_VIEWER, lambda admin: admin.list_unprocessed_changes()),
    "get_change": (SYNC_VIEWER, lambda admin: admin.get_change(1)),
    "test_webhook": (SYNC_MANAGER, lambda admin: admin.test_webhook()),
    "list_conflicts": (SYNC_VIEWER, lambda admin: admin.list_conflicts()),
    "resolve_conflict": (SYNC_MANAGER, lambda admin: admin.resolve_conflict(MSISDN, "USE_A")),
    "resolve_all_conflicts": (SYNC_MANAGER, lambda admin: admin.resolve_all_conflicts("USE_A")),
    "rearm_stuck_records": (ADMIN, lambda admin: admin.rearm_stuck_records()),
}


def mocked_admin(has_capability=None, sync_config=None) -> SyncAdminService:
    kwargs = {"has_capability": has_capability} if has_capability else {}
    return SyncAdminService(
        scheduler=Mock(),
        change_store=Mock(),
        conflict_store=Mock(),
        dispatcher=Mock(),
        resolution=Mock(),
        sync_config=sync_config,
        **kwargs,
    )


def new_engine(webhook_client=None, **sync):
    config = AppConfig(
        store=StoreConfig(database_path=":memory:"),
        sync=SyncConfig(**sync),
        webhook=WebhookConfig(enabled=False, asynchronous=False),
    )
    return build_engine(config, webhook_client=webhook_client or Mock())


class TestCapabilityEnforcement:
    """Test Property 23: Capability enforcement.

    **Feature: subscriber-sync, Property 23: Capability enforcement**

    An operation runs only when its required capability is granted.
    """

    @given(
        granted=st.sets(st.sampled_from([SYNC_VIEWER, SYNC_MANAGER, ADMIN])),
        operation=st.sampled_from(sorted(OPERATIONS)),
    )
    @settings(max_examples=100)
    def test_operations_require_their_capability(self, granted, operation) -> None:
        log.info("test_operations_require_their_capability", operation=operation)
        required, call = OPERATIONS[operation]
        admin = mocked_admin(has_capability=lambda capability: capability in granted)
        admin._change_store.count_unprocessed.return_value = 0
        admin._change_store.oldest_unprocessed_age.return_value = None
        admin._change_store.count_failed.return_value = 0
        admin._change_store.count_stuck.return_value = 0
        admin._change_store.rearm_stuck.return_value = 0
        admin._conflict_store.count_open.return_value = 0
        admin._scheduler.last_run_completed_at = None
        admin._scheduler.last_error = None
        admin._scheduler.in_progress = False

        if required in granted:
            call(admin)
        else:
            with pytest.raises(PermissionDeniedError) as excinfo:
                call(admin)
            assert excinfo.value.capability == required


class TestArgumentValidation:
    @given(batch_size=st.integers().filter(lambda x: x < 1 or x > 1000))
    def test_out_of_range_batch_size_is_rejected(self, batch_size: int) -> None:
        log.info("test_out_of_range_batch_size_is_rejected", batch_size=batch_size)
        admin = mocked_admin()
        with pytest.raises(ValueError):
            admin.trigger_sync(batch_size)
        admin._scheduler.trigger_manual.assert_not_called()

    @pytest.mark.parametrize("page,size", [(-1, 20), (0, 0), (0, 101)])
    def test_bad_paging_is_rejected(self, page, size) -> None:
        with pytest.raises(ValueError):
            mocked_admin().list_unprocessed_changes(page, size)

    def test_empty_cache_name_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            mocked_admin().invalidate_cache("")

    def test_negative_rearm_threshold_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            mocked_admin().rearm_stuck_records(-1)


class TestAdminOperations:
    def test_trigger_sync_processes_backlog(self) -> None:
        engine = new_engine()
        try:
            engine.change_store.append(
                "subscriptions", "INSERT", "7", new_snapshot={"msisdn": MSISDN, "status": "ACTIVE"}
            )

            result = engine.admin.trigger_sync(10)

            assert result.successful_changes == 1
            assert engine.subscriber_store.get("7")["status"] == "ACTIVE"
            assert engine.admin.get_status().last_sync_time is not None
        finally:
            engine.close()

    def test_status_reports_backlog_and_health(self) -> None:
        engine = new_engine(max_unprocessed=2)
        try:
            assert engine.admin.get_status().healthy is True

            for index in range(3):
                engine.change_store.append("users", "UPDATE", str(index), new_snapshot={"n": index})
            stuck = engine.change_store.append("users", "UPDATE", "x", new_snapshot={})
            engine.change_store.claim(stuck.id)

            status = engine.admin.get_status()

            assert status.unprocessed_count == 4
            assert status.healthy is False
            assert status.stuck_count == 0
            assert status.oldest_unprocessed_age is not None
            assert status.to_wire()["unprocessedCount"] == 4
        finally:
            engine.close()

    def test_cache_invalidation_is_audited(self) -> None:
        engine = new_engine()
        try:
            engine.cache.put("users", "alice", {"enabled": True})

            engine.admin.invalidate_cache("users", "alice")

            assert engine.cache.get("users", "alice") is None
            events = engine.audit_log.recent(event_type="MANUAL_CACHE_INVALIDATION")
            assert len(events) == 1
            assert events[0].resource_id == "users"
        finally:
            engine.close()

    def test_toggle_scheduler_flips_enabled_flag(self) -> None:
        engine = new_engine()
        try:
            engine.admin.toggle_scheduler(False)
            assert engine.scheduler.enabled is False
            assert engine.scheduler.run_scheduled() is None
        finally:
            engine.close()

    def test_rearm_moves_claimed_records_back(self) -> None:
        engine = new_engine()
        try:
            record = engine.change_store.append("users", "UPDATE", "alice", new_snapshot={})
            engine.change_store.claim(record.id)

            assert engine.admin.rearm_stuck_records(older_than_minutes=60) == 0
            assert engine.admin.rearm_stuck_records(older_than_minutes=0) == 1
            assert engine.admin.list_unprocessed_changes().total == 1
            assert len(engine.audit_log.recent(event_type="STUCK_RECORDS_REARMED")) == 1
        finally:
            engine.close()

    def test_webhook_probe_for_explicit_endpoint(self) -> None:
        webhook_client = Mock()
        webhook_client.test_endpoint.return_value = WebhookTestResult(
            success=True, endpoint="https://hooks.example.org/", message="Webhook test successful"
        )
        engine = new_engine(webhook_client=webhook_client)
        try:
            results = engine.admin.test_webhook("https://hooks.example.org/")

            assert [result.success for result in results] == [True]
            assert engine.admin.test_webhook() == []
        finally:
            engine.close()

    def test_conflicts_listed_and_resolved(self) -> None:
        engine = new_engine()
        try:
            engine.conflict_detector.evaluate(MSISDN, {"status": "ACTIVE"}, {"status": "BARRED"})

            assert [conflict.key for conflict in engine.admin.list_conflicts()] == [MSISDN]
            result = engine.admin.resolve_conflict(MSISDN, "USE_B")

            assert result.canonical_snapshot["status"] == "BARRED"
            assert engine.admin.list_conflicts() == []
            assert engine.admin.resolve_all_conflicts("USE_A") == []
        finally:
            engine.close()
