"""Configuration models for the subscriber sync engine."""

from pydantic import BaseModel, Field, HttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreConfig(BaseModel):
    """Configuration for the SQLite backing store."""

    database_path: str = Field(
        default="./data/subsync.db",
        description="Path to the SQLite database file (':memory:' for an in-process store)",
    )
    busy_timeout_ms: int = Field(
        default=30000, ge=0, description="How long a writer waits on a locked database"
    )


class SyncConfig(BaseModel):
    """Configuration for the orchestrator and scheduler."""

    enabled: bool = Field(default=True, description="Initial scheduler enabled flag")
    batch_size: int = Field(
        default=100, ge=1, le=1000, description="Records claimed per scheduled run"
    )
    max_attempts: int = Field(
        default=5, ge=1, description="Claims allowed before a failing record becomes FAILED"
    )
    poll_interval_seconds: float = Field(
        default=30.0, gt=0, description="Delay between scheduled runs"
    )
    initial_delay_seconds: float = Field(
        default=10.0, ge=0, description="Delay before the first scheduled run"
    )
    max_workers: int = Field(
        default=1, ge=1, le=32, description="Parallel entity partitions per run"
    )
    subscriber_table: str = Field(
        default="subscriptions", description="Table name whose records carry subscribers"
    )
    max_unprocessed: int = Field(
        default=1000, ge=1, description="Backlog size above which the engine is unhealthy"
    )
    max_lag_seconds: float = Field(
        default=300.0, gt=0, description="Processing lag above which the engine is unhealthy"
    )
    stuck_threshold_minutes: float = Field(
        default=10.0, gt=0, description="Age of a PROCESSING claim considered stuck"
    )


class WebhookConfig(BaseModel):
    """Configuration for outbound webhook delivery."""

    enabled: bool = Field(default=True, description="Deliver change envelopes to endpoints")
    endpoints: list[HttpUrl] = Field(default_factory=list, description="Webhook endpoint URLs")
    secret: str | None = Field(default=None, description="HMAC-SHA256 signing secret")
    timeout_seconds: float = Field(default=5.0, gt=0, le=60, description="Per-request timeout")
    max_retries: int = Field(default=3, ge=0, le=10, description="Retries per endpoint")
    retry_delay_seconds: float = Field(default=1.0, ge=0, description="Initial retry backoff")
    asynchronous: bool = Field(
        default=True, description="Deliver on a thread pool instead of the sync loop"
    )


class CacheConfig(BaseModel):
    """Which caches a change invalidates, per table."""

    entity_caches: dict[str, list[str]] = Field(
        default_factory=lambda: {
            "subscriptions": ["subscription-by-msisdn", "subscriptions"],
            "users": ["user-by-username", "users", "user-roles"],
        },
        description="Caches keyed by a single entity, evicted per key",
    )
    aggregate_caches: dict[str, list[str]] = Field(
        default_factory=lambda: {"subscriptions": ["subscription-stats"]},
        description="Caches holding aggregates, cleared whole on any change",
    )
    key_fields: dict[str, str] = Field(
        default_factory=lambda: {"subscriptions": "msisdn", "users": "username"},
        description="Snapshot field used as cache key; entity id when missing",
    )


class MirrorConfig(BaseModel):
    """Optional file-backed second source used for conflict detection."""

    path: str | None = Field(default=None, description="Path to the YAML subscriber mirror")


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        description="If True, output JSON logs. If False, use console format.",
    )
    log_file: str | None = Field(
        default=None,
        description="Optional path to log file. If None, logs only to stdout.",
    )


class AppConfig(BaseSettings):
    """Main application configuration.

    Values come from the YAML file handed to ``ConfigLoader``. Keys the file
    leaves out can be supplied by environment variables with the SUBSYNC_
    prefix, e.g. ``SUBSYNC_SYNC__BATCH_SIZE=50``.
    """

    model_config = SettingsConfigDict(
        env_prefix="SUBSYNC_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    store: StoreConfig = Field(default_factory=StoreConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    mirror: MirrorConfig = Field(default_factory=MirrorConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
