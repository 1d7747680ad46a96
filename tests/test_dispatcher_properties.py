"""Property-based tests for the notification dispatcher.

**Feature: subscriber-sync, Property 18: Side effects never fail a change**
"""

from datetime import datetime, timezone
from unittest.mock import Mock

import structlog
from hypothesis import given, settings
from hypothesis import strategies as st

from subsync.dispatch import InMemoryCache, NotificationDispatcher
from subsync.exceptions import WebhookDeliveryError
from subsync.models import CacheConfig, ChangeRecord
from subsync.storage import SQLiteAuditLog, SQLiteDatabase

log = structlog.stdlib.get_logger()

ENDPOINTS = ["https://a.example.org/hook", "https://b.example.org/hook"]
MSISDN = "+1234567890"


def subscription_change(record_id=1, new=None, prior=None, operation="UPDATE") -> ChangeRecord:
    return ChangeRecord(
        id=record_id,
        entity_type="subscriptions",
        operation=operation,
        entity_id="42",
        prior_snapshot=prior,
        new_snapshot=new,
        captured_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


def new_dispatcher(cache=None, webhook_client=None, **kwargs) -> NotificationDispatcher:
    return NotificationDispatcher(
        cache=cache or InMemoryCache(),
        webhook_client=webhook_client or Mock(),
        endpoints=kwargs.pop("endpoints", ENDPOINTS),
        cache_config=kwargs.pop("cache_config", CacheConfig()),
        **kwargs,
    )


class TestCacheInvalidation:
    def test_msisdn_keys_entity_caches_and_aggregates_are_cleared(self) -> None:
        cache = InMemoryCache()
        cache.put("subscription-by-msisdn", MSISDN, {"status": "ACTIVE"})
        cache.put("subscriptions", MSISDN, {"status": "ACTIVE"})
        cache.put("subscription-stats", "totals", {"active": 10})
        dispatcher = new_dispatcher(cache=cache, endpoints=[])

        report = dispatcher.dispatch(subscription_change(new={"msisdn": MSISDN, "status": "SUSPENDED"}))

        assert cache.get("subscription-by-msisdn", MSISDN) is None
        assert cache.get("subscriptions", MSISDN) is None
        assert cache.get("subscription-stats", "totals") is None
        assert report.caches_invalidated == [
            f"subscription-by-msisdn::{MSISDN}",
            f"subscriptions::{MSISDN}",
            "subscription-stats",
        ]

    def test_delete_uses_prior_snapshot_key(self) -> None:
        cache = Mock()
        dispatcher = new_dispatcher(
            cache=cache,
            endpoints=[],
            cache_config=CacheConfig(entity_caches={"subscriptions": ["subscriptions"]}, aggregate_caches={}),
        )

        dispatcher.dispatch(subscription_change(operation="DELETE", prior={"msisdn": MSISDN}))

        cache.invalidate.assert_called_once_with("subscriptions", MSISDN)

    def test_unconfigured_table_touches_no_cache(self) -> None:
        cache = Mock()
        dispatcher = new_dispatcher(cache=cache, endpoints=[])
        record = subscription_change(new={"x": 1}).model_copy(update={"entity_type": "audit"})

        report = dispatcher.dispatch(record)

        cache.invalidate.assert_not_called()
        cache.clear.assert_not_called()
        assert report.caches_invalidated == []

    def test_manual_invalidation_of_one_key_or_whole_cache(self) -> None:
        cache = InMemoryCache()
        cache.put("users", "alice", 1)
        cache.put("users", "bob", 2)
        dispatcher = new_dispatcher(cache=cache)

        dispatcher.invalidate("users", "alice")
        assert cache.get("users", "alice") is None
        assert cache.get("users", "bob") == 2

        dispatcher.invalidate("users")
        assert cache.get("users", "bob") is None


class TestSideEffectIsolation:
    """Test Property 18: Side effects never fail a change.

    **Feature: subscriber-sync, Property 18: Side effects never fail a change**

    Whatever subset of endpoints and caches fails, dispatch returns a report
    instead of raising, and every endpoint is attempted.
    """

    @given(failing=st.lists(st.booleans(), min_size=1, max_size=5), cache_fails=st.booleans())
    @settings(max_examples=50, deadline=None)
    def test_failures_are_reported_not_raised(self, failing: list[bool], cache_fails: bool) -> None:
        log.info("test_failures_are_reported_not_raised", endpoints=len(failing), cache_fails=cache_fails)
        endpoints = [f"https://hook{index}.example.org/" for index in range(len(failing))]
        outcome = dict(zip(endpoints, failing))

        def deliver(endpoint, envelope):
            if outcome[endpoint]:
                raise WebhookDeliveryError(endpoint, "HTTP 500", status_code=500)
            return 200

        webhook_client = Mock()
        webhook_client.deliver.side_effect = deliver
        cache = Mock()
        if cache_fails:
            cache.invalidate.side_effect = RuntimeError("cache unavailable")
        audit = SQLiteAuditLog(SQLiteDatabase())
        dispatcher = new_dispatcher(
            cache=cache, webhook_client=webhook_client, endpoints=endpoints, audit_log=audit
        )

        report = dispatcher.dispatch(subscription_change(new={"msisdn": MSISDN}))

        assert webhook_client.deliver.call_count == len(endpoints)
        assert report.webhooks_failed == [e for e in endpoints if outcome[e]]
        assert report.webhooks_delivered == [e for e in endpoints if not outcome[e]]
        assert bool(report.cache_errors) == cache_fails
        assert len(audit.recent(event_type="WEBHOOK_FAILURE")) == sum(failing)

        stats = dispatcher.statistics()
        assert stats["failed_notifications"] == sum(failing)
        assert stats["successful_notifications"] == len(failing) - sum(failing)

    def test_disabled_webhooks_are_skipped(self) -> None:
        webhook_client = Mock()
        dispatcher = new_dispatcher(webhook_client=webhook_client, webhooks_enabled=False)

        report = dispatcher.dispatch(subscription_change(new={"msisdn": MSISDN}))

        webhook_client.deliver.assert_not_called()
        assert report.webhooks_delivered == []
        assert dispatcher.statistics()["enabled"] is False

    def test_asynchronous_delivery_is_queued_then_flushed(self) -> None:
        webhook_client = Mock()
        webhook_client.deliver.return_value = 200
        dispatcher = new_dispatcher(webhook_client=webhook_client, asynchronous=True)
        try:
            report = dispatcher.dispatch(subscription_change(new={"msisdn": MSISDN}))
            dispatcher.flush(timeout=5)

            assert report.webhooks_queued == len(ENDPOINTS)
            assert webhook_client.deliver.call_count == len(ENDPOINTS)
            assert dispatcher.statistics()["successful_notifications"] == len(ENDPOINTS)
        finally:
            dispatcher.shutdown()

    def test_endpoint_probes_cover_every_endpoint(self) -> None:
        webhook_client = Mock()
        dispatcher = new_dispatcher(webhook_client=webhook_client)

        results = dispatcher.test_all_endpoints()

        assert len(results) == len(ENDPOINTS)
        assert [call.args[0] for call in webhook_client.test_endpoint.call_args_list] == ENDPOINTS
