"""Property-based tests for provider module.

Feature: subscriber-sync
"""

from unittest.mock import Mock

import pytest
import structlog
from hypothesis import given, settings
from hypothesis import strategies as st

from subsync.dispatch import CacheBackend, InMemoryCache, WebhookClient
from subsync.models import AppConfig, MirrorConfig, StoreConfig, SyncConfig, WebhookConfig
from subsync.providers import (
    SyncEngine,
    build_engine,
    get_cache,
    get_database,
    get_mirror_source,
    get_webhook_client,
)
from subsync.storage import SQLiteDatabase, YamlMirrorSource

log = structlog.stdlib.get_logger()


def memory_config(**sections) -> AppConfig:
    sections.setdefault("store", StoreConfig(database_path=":memory:"))
    sections.setdefault("webhook", WebhookConfig(enabled=False, asynchronous=False))
    return AppConfig(**sections)


@settings(deadline=None, max_examples=10)
@given(
    batch_size=st.integers(min_value=1, max_value=1000),
    max_attempts=st.integers(min_value=1, max_value=10),
    enabled=st.booleans(),
)
def test_property_25_engine_wires_configuration_into_components(batch_size, max_attempts, enabled):
    """Property 25: Provider wiring.

    For any valid sync configuration, build_engine returns a SyncEngine whose
    components share one database and carry the configured values.

    **Feature: subscriber-sync, Property 25: Provider wiring**
    """
    log.info(
        "test_property_25_engine_wires_configuration_into_components",
        batch_size=batch_size,
        max_attempts=max_attempts,
    )
    config = memory_config(
        sync=SyncConfig(batch_size=batch_size, max_attempts=max_attempts, enabled=enabled)
    )

    engine = build_engine(config, webhook_client=Mock())
    try:
        assert isinstance(engine, SyncEngine)
        assert engine.database.path == ":memory:"
        assert engine.scheduler.enabled is enabled
        assert engine.scheduler.get_statistics().interval_seconds == config.sync.poll_interval_seconds
        assert engine.mirror is None
        assert isinstance(engine.cache, CacheBackend)
    finally:
        engine.close()


def test_overrides_replace_default_components():
    database = SQLiteDatabase()
    cache = InMemoryCache()
    engine = build_engine(memory_config(), database=database, cache=cache, webhook_client=Mock())
    try:
        assert engine.database is database
        assert engine.cache is cache
    finally:
        engine.close()


def test_get_database_rejects_empty_path():
    with pytest.raises(ValueError):
        get_database(StoreConfig(database_path="  "))


def test_get_database_wraps_open_failures(tmp_path):
    blocker = tmp_path / "not-a-directory"
    blocker.write_text("")

    with pytest.raises(RuntimeError, match="Failed to open database"):
        get_database(StoreConfig(database_path=str(blocker / "subsync.db")))


def test_get_database_creates_file(tmp_path):
    path = tmp_path / "nested" / "subsync.db"
    database = get_database(StoreConfig(database_path=str(path)))
    try:
        assert path.exists()
    finally:
        database.close()


def test_simple_providers():
    assert isinstance(get_cache(), InMemoryCache)
    client = get_webhook_client(WebhookConfig(secret="abc"))
    assert isinstance(client, WebhookClient)
    client.close()
    assert get_mirror_source(MirrorConfig()) is None
    assert isinstance(get_mirror_source(MirrorConfig(path="mirror.yaml")), YamlMirrorSource)
