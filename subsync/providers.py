"""Centralized provider module wiring engine components from configuration.

Factory functions here are the single place that decides which concrete
backend each component uses. Swap an implementation by editing the
matching function; nothing else constructs stores or clients directly.

Default implementations:
- Stores: SQLite (one shared connection per database file)
- Cache: InMemoryCache (process-local)
- Mirror: YamlMirrorSource when ``mirror.path`` is set
"""

import structlog

from subsync.dispatch.cache import CacheBackend, InMemoryCache
from subsync.dispatch.dispatcher import NotificationDispatcher
from subsync.dispatch.webhook import WebhookClient
from subsync.models.config import AppConfig, MirrorConfig, StoreConfig, WebhookConfig
from subsync.storage.audit_log import SQLiteAuditLog
from subsync.storage.change_store import SQLiteChangeRecordStore
from subsync.storage.conflict_store import SQLiteConflictStore
from subsync.storage.database import SQLiteDatabase
from subsync.storage.mirror_source import YamlMirrorSource
from subsync.storage.subscriber_store import SQLiteSubscriberStore
from subsync.sync.admin import SyncAdminService, allow_all
from subsync.sync.conflict_detector import ConflictDetector
from subsync.sync.orchestrator import SyncOrchestrator
from subsync.sync.resolution import ConflictResolutionService
from subsync.sync.scheduler import SyncScheduler

log = structlog.stdlib.get_logger()


def get_database(store_config: StoreConfig) -> SQLiteDatabase:
    """Open the SQLite database backing every store.

    Args:
        store_config: Store configuration

    Returns:
        SQLiteDatabase with the schema applied

    Raises:
        ValueError: If database_path is empty
        RuntimeError: If the database cannot be opened
    """
    path = store_config.database_path
    if not path or not path.strip():
        error_msg = "database_path cannot be empty"
        log.error("get_database_failed", error=error_msg)
        raise ValueError(error_msg)

    try:
        log.info("initializing_database", path=path)
        return SQLiteDatabase(path, busy_timeout_ms=store_config.busy_timeout_ms)
    except Exception as e:
        log.error("get_database_failed", path=path, error=str(e), error_type=type(e).__name__)
        raise RuntimeError(f"Failed to open database at '{path}': {e}") from e


def get_cache() -> CacheBackend:
    """Get the cache backend that change side effects invalidate.

    Default: InMemoryCache. Replace with a shared cache client when several
    processes serve reads.
    """
    return InMemoryCache()


def get_webhook_client(webhook_config: WebhookConfig) -> WebhookClient:
    return WebhookClient(
        secret=webhook_config.secret,
        timeout_seconds=webhook_config.timeout_seconds,
        max_retries=webhook_config.max_retries,
        retry_delay_seconds=webhook_config.retry_delay_seconds,
    )


def get_mirror_source(mirror_config: MirrorConfig) -> YamlMirrorSource | None:
    """Get the second conflict source, or None when no mirror is configured."""
    if not mirror_config.path:
        log.info("mirror_source_disabled")
        return None
    return YamlMirrorSource(mirror_config.path)


class SyncEngine:
    """Every component of one running engine, built from a single AppConfig."""

    def __init__(
        self,
        config: AppConfig,
        database: SQLiteDatabase | None = None,
        cache: CacheBackend | None = None,
        webhook_client: WebhookClient | None = None,
        has_capability=allow_all,
    ):
        """
        Wire the engine.

        Args:
            config: Application configuration
            database: Optional database (opened from config.store if None)
            cache: Optional cache backend (uses get_cache() if None)
            webhook_client: Optional webhook client (built from config.webhook if None)
            has_capability: Capability check used by the admin service
        """
        self.config = config
        self.database = database or get_database(config.store)
        self.cache = cache or get_cache()

        self.change_store = SQLiteChangeRecordStore(self.database)
        self.conflict_store = SQLiteConflictStore(self.database)
        self.subscriber_store = SQLiteSubscriberStore(self.database)
        self.audit_log = SQLiteAuditLog(self.database)
        self.mirror = get_mirror_source(config.mirror)

        self.dispatcher = NotificationDispatcher(
            cache=self.cache,
            webhook_client=webhook_client or get_webhook_client(config.webhook),
            endpoints=[str(endpoint) for endpoint in config.webhook.endpoints],
            cache_config=config.cache,
            webhooks_enabled=config.webhook.enabled,
            asynchronous=config.webhook.asynchronous,
            audit_log=self.audit_log,
        )
        self.conflict_detector = ConflictDetector(self.conflict_store, audit_log=self.audit_log)
        self.orchestrator = SyncOrchestrator(
            change_store=self.change_store,
            subscriber_store=self.subscriber_store,
            dispatcher=self.dispatcher,
            conflict_detector=self.conflict_detector,
            mirror=self.mirror,
            audit_log=self.audit_log,
            max_attempts=config.sync.max_attempts,
            subscriber_table=config.sync.subscriber_table,
            max_workers=config.sync.max_workers,
        )
        self.scheduler = SyncScheduler(
            self.orchestrator,
            batch_size=config.sync.batch_size,
            interval_seconds=config.sync.poll_interval_seconds,
            initial_delay_seconds=config.sync.initial_delay_seconds,
            enabled=config.sync.enabled,
            audit_log=self.audit_log,
        )
        self.resolution = ConflictResolutionService(
            self.conflict_store,
            self.subscriber_store,
            dispatcher=self.dispatcher,
            audit_log=self.audit_log,
            subscriber_table=config.sync.subscriber_table,
        )
        self.admin = SyncAdminService(
            scheduler=self.scheduler,
            change_store=self.change_store,
            conflict_store=self.conflict_store,
            dispatcher=self.dispatcher,
            resolution=self.resolution,
            audit_log=self.audit_log,
            sync_config=config.sync,
            has_capability=has_capability,
        )

        log.info("sync_engine_initialized", database=self.database.path)

    def close(self) -> None:
        self.scheduler.stop()
        self.dispatcher.shutdown()
        self.database.close()


def build_engine(config: AppConfig, **overrides) -> SyncEngine:
    """Build a SyncEngine from configuration; keyword overrides replace default components."""
    return SyncEngine(config, **overrides)
