"""Canonical subscriber snapshots as seen by the owning service."""

import sqlite3
from abc import ABC, abstractmethod

import structlog

from subsync.models.change import Snapshot
from subsync.storage.database import SQLiteDatabase, from_json, to_db_time, to_json, utcnow

log = structlog.stdlib.get_logger()


class SubscriberStore(ABC):
    """Canonical store keyed by entity id, with an MSISDN lookup."""

    @abstractmethod
    def get(self, entity_id: str) -> Snapshot | None:
        """Return the snapshot stored for an entity."""

    @abstractmethod
    def find_by_msisdn(self, msisdn: str) -> Snapshot | None:
        """Return the snapshot carrying the MSISDN."""

    @abstractmethod
    def upsert(self, entity_id: str, snapshot: Snapshot, merge: bool = True) -> Snapshot:
        """
        Store a snapshot for an entity.

        Args:
            entity_id: Entity primary key
            snapshot: Field values to store
            merge: Overlay onto the existing snapshot instead of replacing it

        Returns:
            The stored snapshot
        """

    @abstractmethod
    def delete(self, entity_id: str) -> bool:
        """Remove an entity; False when it did not exist."""

    @abstractmethod
    def write_by_msisdn(self, msisdn: str, snapshot: Snapshot) -> Snapshot:
        """Write a canonical snapshot for an MSISDN, creating the entity when absent."""


class SQLiteSubscriberStore(SubscriberStore):
    """SubscriberStore backed by the ``subscribers`` table."""

    def __init__(self, database: SQLiteDatabase):
        self._db = database
        log.info("subscriber_store_initialized", path=database.path)

    def get(self, entity_id: str) -> Snapshot | None:
        with self._db.transaction() as cursor:
            row = self._select(cursor, "entity_id", str(entity_id))
        return from_json(row["data"]) if row else None

    def find_by_msisdn(self, msisdn: str) -> Snapshot | None:
        with self._db.transaction() as cursor:
            row = self._select(cursor, "msisdn", msisdn)
        return from_json(row["data"]) if row else None

    def upsert(self, entity_id: str, snapshot: Snapshot, merge: bool = True) -> Snapshot:
        entity_id = str(entity_id)
        with self._db.transaction() as cursor:
            row = self._select(cursor, "entity_id", entity_id)
            stored = self._write(cursor, entity_id, row, snapshot, merge)

        log.debug("subscriber_upserted", entity_id=entity_id, msisdn=stored.get("msisdn"))
        return stored

    def delete(self, entity_id: str) -> bool:
        with self._db.transaction() as cursor:
            cursor.execute("DELETE FROM subscribers WHERE entity_id = ?", (str(entity_id),))
            deleted = cursor.rowcount == 1

        if deleted:
            log.debug("subscriber_deleted", entity_id=entity_id)
        return deleted

    def write_by_msisdn(self, msisdn: str, snapshot: Snapshot) -> Snapshot:
        with self._db.transaction() as cursor:
            row = self._select(cursor, "msisdn", msisdn)
            entity_id = row["entity_id"] if row else msisdn
            stored = self._write(cursor, entity_id, row, {**snapshot, "msisdn": msisdn}, True)

        log.info("subscriber_written", msisdn=msisdn, entity_id=entity_id)
        return stored

    def _write(
        self,
        cursor: sqlite3.Cursor,
        entity_id: str,
        row: sqlite3.Row | None,
        snapshot: Snapshot,
        merge: bool,
    ) -> Snapshot:
        current = from_json(row["data"]) if row else None
        stored = {**current, **snapshot} if merge and current else dict(snapshot)
        msisdn = stored.get("msisdn")
        cursor.execute(
            """
            INSERT INTO subscribers (entity_id, msisdn, data, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(entity_id) DO UPDATE SET
                msisdn = excluded.msisdn, data = excluded.data, updated_at = excluded.updated_at
            """,
            (
                entity_id,
                str(msisdn) if msisdn is not None else None,
                to_json(stored),
                to_db_time(utcnow()),
            ),
        )
        return stored

    @staticmethod
    def _select(cursor: sqlite3.Cursor, column: str, value: str) -> sqlite3.Row | None:
        cursor.execute(
            f"SELECT entity_id, msisdn, data FROM subscribers WHERE {column} = ? LIMIT 1",
            (value,),
        )
        return cursor.fetchone()
