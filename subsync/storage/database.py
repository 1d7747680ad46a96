"""SQLite connection handling and schema for the sync engine."""

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

import structlog

from subsync.exceptions import StorageError, TransientStorageError

log = structlog.stdlib.get_logger()

MEMORY_PATH = ":memory:"

SCHEMA = """
CREATE TABLE IF NOT EXISTS change_records (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    table_name TEXT NOT NULL,
    operation TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    old_data TEXT,
    new_data TEXT,
    changed_at TEXT NOT NULL,
    change_source TEXT,
    sync_status TEXT NOT NULL DEFAULT 'PENDING',
    processed_at TEXT,
    error_message TEXT,
    attempt_count INTEGER NOT NULL DEFAULT 0,
    claimed_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_change_records_status
    ON change_records(sync_status, changed_at);
CREATE INDEX IF NOT EXISTS idx_change_records_table_entity
    ON change_records(table_name, entity_id);

CREATE TABLE IF NOT EXISTS conflicts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    conflict_key TEXT NOT NULL,
    source_a_name TEXT NOT NULL,
    source_a_data TEXT NOT NULL,
    source_b_name TEXT NOT NULL,
    source_b_data TEXT NOT NULL,
    detected_at TEXT NOT NULL,
    resolution_status TEXT NOT NULL DEFAULT 'OPEN',
    resolution_choice TEXT,
    resolved_at TEXT,
    merged_data TEXT
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_conflicts_open_key
    ON conflicts(conflict_key) WHERE resolution_status = 'OPEN';

CREATE TABLE IF NOT EXISTS subscribers (
    entity_id TEXT PRIMARY KEY,
    msisdn TEXT,
    data TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_subscribers_msisdn ON subscribers(msisdn);

CREATE TABLE IF NOT EXISTS audit_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_type TEXT NOT NULL,
    description TEXT NOT NULL,
    resource_id TEXT,
    created_at TEXT NOT NULL
);
"""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db_time(value: datetime | None) -> str | None:
    """Normalize to a UTC ISO string that sorts lexicographically."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


def to_json(value: dict[str, Any] | None) -> str | None:
    if value is None:
        return None
    return json.dumps(value, sort_keys=True, default=str)


def from_json(value: str | None) -> dict[str, Any] | None:
    if value is None:
        return None
    return json.loads(value)


class SQLiteDatabase:
    """Shared SQLite connection used by every store.

    One connection is shared across threads and guarded by a re-entrant lock.
    Separate processes pointing at the same file are serialized by SQLite's
    own write lock.
    """

    def __init__(self, path: str = MEMORY_PATH, busy_timeout_ms: int = 30000):
        """
        Open (and create if needed) the database.

        Args:
            path: Database file path or ':memory:'
            busy_timeout_ms: How long a writer waits for a competing lock
        """
        self._path = path
        self._lock = threading.RLock()

        if path != MEMORY_PATH:
            Path(path).parent.mkdir(parents=True, exist_ok=True)

        self._connection = sqlite3.connect(
            path,
            check_same_thread=False,
            timeout=max(1.0, busy_timeout_ms / 1000),
        )
        self._connection.row_factory = sqlite3.Row
        self._connection.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
        if path != MEMORY_PATH:
            self._connection.execute("PRAGMA journal_mode=WAL")
            self._connection.execute("PRAGMA synchronous=NORMAL")

        with self._lock:
            self._connection.executescript(SCHEMA)
            self._connection.commit()

        log.info("database_initialized", path=path)

    @property
    def path(self) -> str:
        return self._path

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """
        Run statements in one transaction.

        Raises:
            TransientStorageError: On operational errors such as a locked database
            StorageError: On any other SQLite error
        """
        with self._lock:
            cursor = self._connection.cursor()
            try:
                yield cursor
                self._connection.commit()
            except sqlite3.OperationalError as e:
                self._connection.rollback()
                log.warning("database_operational_error", path=self._path, error=str(e))
                raise TransientStorageError(str(e)) from e
            except sqlite3.Error as e:
                self._connection.rollback()
                log.error("database_error", path=self._path, error=str(e))
                raise StorageError(str(e)) from e
            except BaseException:
                self._connection.rollback()
                raise
            finally:
                cursor.close()

    def close(self) -> None:
        with self._lock:
            self._connection.close()
        log.info("database_closed", path=self._path)
