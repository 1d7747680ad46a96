"""Delivery of per-change side effects: cache invalidation and webhook fan-out."""

import threading
from concurrent.futures import Future, ThreadPoolExecutor

import structlog

from subsync.dispatch.cache import CacheBackend
from subsync.dispatch.webhook import WebhookClient, build_change_envelope
from subsync.exceptions import WebhookDeliveryError
from subsync.models.change import ChangeRecord
from subsync.models.config import CacheConfig
from subsync.models.results import DispatchReport, WebhookTestResult
from subsync.storage.audit_log import SQLiteAuditLog

log = structlog.stdlib.get_logger()


class NotificationDispatcher:
    """Delivers the side effects of one claimed change record.

    Nothing here raises into the caller: cache and webhook failures are
    logged, counted and reported, so they never decide the record's outcome.
    """

    def __init__(
        self,
        cache: CacheBackend,
        webhook_client: WebhookClient | None = None,
        endpoints: list[str] | None = None,
        cache_config: CacheConfig | None = None,
        webhooks_enabled: bool = True,
        asynchronous: bool = False,
        audit_log: SQLiteAuditLog | None = None,
        max_delivery_threads: int = 5,
    ):
        """
        Initialize the dispatcher.

        Args:
            cache: Cache backend receiving invalidations
            webhook_client: Client used for webhook POSTs
            endpoints: Configured webhook endpoint URLs
            cache_config: Which caches each table invalidates
            webhooks_enabled: Master switch for webhook delivery
            asynchronous: Deliver webhooks on a thread pool instead of inline
            audit_log: Optional audit trail for delivery failures
            max_delivery_threads: Thread pool size for asynchronous delivery
        """
        self._cache = cache
        self._webhook_client = webhook_client or WebhookClient()
        self._endpoints: list[str] = [str(endpoint) for endpoint in (endpoints or [])]
        self._cache_config = cache_config or CacheConfig()
        self._webhooks_enabled = webhooks_enabled
        self._asynchronous = asynchronous
        self._audit_log = audit_log
        self._executor: ThreadPoolExecutor | None = None
        if asynchronous:
            self._executor = ThreadPoolExecutor(
                max_workers=max_delivery_threads, thread_name_prefix="webhook"
            )

        self._stats_lock = threading.Lock()
        self._delivered = 0
        self._failed = 0
        self._pending: set[Future] = set()

        log.info(
            "notification_dispatcher_initialized",
            endpoints=len(self._endpoints),
            webhooks_enabled=webhooks_enabled,
            asynchronous=asynchronous,
        )

    @property
    def endpoints(self) -> list[str]:
        return list(self._endpoints)

    def dispatch(self, record: ChangeRecord) -> DispatchReport:
        """
        Invalidate caches for the record and fan the change envelope out to every endpoint.

        Args:
            record: Claimed change record

        Returns:
            DispatchReport listing what was invalidated and delivered
        """
        report = DispatchReport(record_id=record.id)
        self._invalidate_for_record(record, report)

        if not self._webhooks_enabled or not self._endpoints:
            log.debug("webhooks_skipped", record_id=record.id)
            return report

        envelope = build_change_envelope(record)
        for endpoint in self._endpoints:
            if self._executor is not None:
                future = self._executor.submit(self._deliver, record.id, endpoint, envelope)
                with self._stats_lock:
                    self._pending.add(future)
                future.add_done_callback(self._forget)
                report.webhooks_queued += 1
            elif self._deliver(record.id, endpoint, envelope):
                report.webhooks_delivered.append(endpoint)
            else:
                report.webhooks_failed.append(endpoint)

        return report

    def invalidate(self, cache_name: str, key: str | None = None) -> None:
        """Evict one key, or the whole cache when no key is given."""
        if key is None:
            self._cache.clear(cache_name)
        else:
            self._cache.invalidate(cache_name, key)
        log.info("cache_invalidated", cache_name=cache_name, key=key)

    def invalidate_subscriber(self, msisdn: str, table: str) -> None:
        """Evict every cache holding the subscriber, e.g. after a conflict resolution."""
        for cache_name in self._cache_config.entity_caches.get(table, []):
            self._cache.invalidate(cache_name, msisdn)
        for cache_name in self._cache_config.aggregate_caches.get(table, []):
            self._cache.clear(cache_name)

    def test_endpoint(self, endpoint: str) -> WebhookTestResult:
        return self._webhook_client.test_endpoint(endpoint)

    def test_all_endpoints(self) -> list[WebhookTestResult]:
        return [self._webhook_client.test_endpoint(endpoint) for endpoint in self._endpoints]

    def statistics(self) -> dict:
        with self._stats_lock:
            return {
                "enabled": self._webhooks_enabled,
                "configured_endpoints": len(self._endpoints),
                "endpoints": list(self._endpoints),
                "successful_notifications": self._delivered,
                "failed_notifications": self._failed,
                "pending_notifications": len(self._pending),
            }

    def flush(self, timeout: float | None = None) -> None:
        """Wait for queued asynchronous deliveries."""
        with self._stats_lock:
            pending = list(self._pending)
        for future in pending:
            future.exception(timeout=timeout)

    def shutdown(self) -> None:
        log.info("notification_dispatcher_shutting_down")
        if self._executor is not None:
            self._executor.shutdown(wait=True)
        self._webhook_client.close()

    def _cache_key(self, record: ChangeRecord) -> str:
        field = self._cache_config.key_fields.get(record.entity_type)
        if field:
            for snapshot in (record.new_snapshot, record.prior_snapshot):
                if snapshot and snapshot.get(field) is not None:
                    return str(snapshot[field])
        return record.entity_id

    def _invalidate_for_record(self, record: ChangeRecord, report: DispatchReport) -> None:
        key = self._cache_key(record)
        for cache_name in self._cache_config.entity_caches.get(record.entity_type, []):
            try:
                self._cache.invalidate(cache_name, key)
                report.caches_invalidated.append(f"{cache_name}::{key}")
            except Exception as e:
                report.cache_errors.append(f"{cache_name}: {e}")
                log.warning(
                    "cache_invalidation_failed",
                    record_id=record.id,
                    cache_name=cache_name,
                    key=key,
                    error=str(e),
                )

        for cache_name in self._cache_config.aggregate_caches.get(record.entity_type, []):
            try:
                self._cache.clear(cache_name)
                report.caches_invalidated.append(cache_name)
            except Exception as e:
                report.cache_errors.append(f"{cache_name}: {e}")
                log.warning(
                    "cache_clear_failed", record_id=record.id, cache_name=cache_name, error=str(e)
                )

    def _deliver(self, record_id: int, endpoint: str, envelope: dict) -> bool:
        try:
            self._webhook_client.deliver(endpoint, envelope)
        except WebhookDeliveryError as e:
            with self._stats_lock:
                self._failed += 1
            log.error(
                "webhook_delivery_failed", record_id=record_id, endpoint=endpoint, error=str(e)
            )
            self._audit_failure(endpoint, str(e), record_id)
            return False

        with self._stats_lock:
            self._delivered += 1
        return True

    def _audit_failure(self, endpoint: str, error: str, record_id: int) -> None:
        if self._audit_log is None:
            return
        try:
            self._audit_log.record(
                "WEBHOOK_FAILURE",
                f"Failed to send webhook to {endpoint}: {error}",
                resource_id=str(record_id),
            )
        except Exception as e:
            log.warning("webhook_failure_audit_failed", endpoint=endpoint, error=str(e))

    def _forget(self, future: Future) -> None:
        with self._stats_lock:
            self._pending.discard(future)
