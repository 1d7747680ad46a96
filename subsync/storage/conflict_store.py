"""Storage for divergences detected between two subscriber sources."""

import sqlite3
from abc import ABC, abstractmethod

import structlog

from subsync.models.change import Snapshot
from subsync.models.conflict import Conflict, ResolutionChoice, ResolutionStatus
from subsync.storage.database import (
    SQLiteDatabase,
    from_db_time,
    from_json,
    to_db_time,
    to_json,
    utcnow,
)

log = structlog.stdlib.get_logger()


class ConflictStore(ABC):
    """Holds at most one OPEN conflict per key; resolved conflicts are kept for audit."""

    @abstractmethod
    def upsert_open(
        self,
        key: str,
        source_a_name: str,
        source_a_snapshot: Snapshot,
        source_b_name: str,
        source_b_snapshot: Snapshot,
    ) -> Conflict:
        """Record a divergence, updating the OPEN conflict for the key in place if any."""

    @abstractmethod
    def get_open(self, key: str) -> Conflict | None:
        """Return the OPEN conflict for a key."""

    @abstractmethod
    def get_latest(self, key: str) -> Conflict | None:
        """Return the most recent conflict for a key, whatever its status."""

    @abstractmethod
    def list_open(self) -> list[Conflict]:
        """Return all OPEN conflicts, oldest detection first."""

    @abstractmethod
    def count_open(self) -> int:
        """Count OPEN conflicts."""

    @abstractmethod
    def clear_open(self, key: str) -> bool:
        """Close the OPEN conflict for a key without an operator choice."""

    @abstractmethod
    def mark_resolved(
        self,
        key: str,
        choice: ResolutionChoice,
        merged_snapshot: Snapshot | None = None,
    ) -> Conflict | None:
        """Mark the OPEN conflict RESOLVED; None when no OPEN conflict exists."""


class SQLiteConflictStore(ConflictStore):
    """ConflictStore backed by the ``conflicts`` table."""

    _COLUMNS = (
        "id, conflict_key, source_a_name, source_a_data, source_b_name, source_b_data, "
        "detected_at, resolution_status, resolution_choice, resolved_at, merged_data"
    )

    def __init__(self, database: SQLiteDatabase):
        self._db = database
        log.info("conflict_store_initialized", path=database.path)

    def upsert_open(
        self,
        key: str,
        source_a_name: str,
        source_a_snapshot: Snapshot,
        source_b_name: str,
        source_b_snapshot: Snapshot,
    ) -> Conflict:
        now = to_db_time(utcnow())
        with self._db.transaction() as cursor:
            cursor.execute(
                """
                UPDATE conflicts
                SET source_a_name = ?, source_a_data = ?, source_b_name = ?,
                    source_b_data = ?, detected_at = ?
                WHERE conflict_key = ? AND resolution_status = ?
                """,
                (
                    source_a_name,
                    to_json(source_a_snapshot),
                    source_b_name,
                    to_json(source_b_snapshot),
                    now,
                    key,
                    ResolutionStatus.OPEN.value,
                ),
            )
            if cursor.rowcount == 0:
                cursor.execute(
                    """
                    INSERT INTO conflicts
                        (conflict_key, source_a_name, source_a_data, source_b_name,
                         source_b_data, detected_at, resolution_status)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        key,
                        source_a_name,
                        to_json(source_a_snapshot),
                        source_b_name,
                        to_json(source_b_snapshot),
                        now,
                        ResolutionStatus.OPEN.value,
                    ),
                )
                log.info("conflict_opened", key=key)
            else:
                log.debug("conflict_refreshed", key=key)

            row = self._select_open(cursor, key)

        return self._to_conflict(row)

    def get_open(self, key: str) -> Conflict | None:
        with self._db.transaction() as cursor:
            row = self._select_open(cursor, key)
        return self._to_conflict(row) if row else None

    def get_latest(self, key: str) -> Conflict | None:
        with self._db.transaction() as cursor:
            cursor.execute(
                f"SELECT {self._COLUMNS} FROM conflicts WHERE conflict_key = ? "
                "ORDER BY id DESC LIMIT 1",
                (key,),
            )
            row = cursor.fetchone()
        return self._to_conflict(row) if row else None

    def list_open(self) -> list[Conflict]:
        with self._db.transaction() as cursor:
            cursor.execute(
                f"SELECT {self._COLUMNS} FROM conflicts WHERE resolution_status = ? "
                "ORDER BY detected_at ASC, id ASC",
                (ResolutionStatus.OPEN.value,),
            )
            rows = cursor.fetchall()
        return [self._to_conflict(row) for row in rows]

    def count_open(self) -> int:
        with self._db.transaction() as cursor:
            cursor.execute(
                "SELECT COUNT(*) AS total FROM conflicts WHERE resolution_status = ?",
                (ResolutionStatus.OPEN.value,),
            )
            return int(cursor.fetchone()["total"])

    def clear_open(self, key: str) -> bool:
        with self._db.transaction() as cursor:
            cursor.execute(
                """
                UPDATE conflicts SET resolution_status = ?, resolved_at = ?
                WHERE conflict_key = ? AND resolution_status = ?
                """,
                (
                    ResolutionStatus.RESOLVED.value,
                    to_db_time(utcnow()),
                    key,
                    ResolutionStatus.OPEN.value,
                ),
            )
            cleared = cursor.rowcount == 1

        if cleared:
            log.info("conflict_cleared", key=key)
        return cleared

    def mark_resolved(
        self,
        key: str,
        choice: ResolutionChoice,
        merged_snapshot: Snapshot | None = None,
    ) -> Conflict | None:
        with self._db.transaction() as cursor:
            row = self._select_open(cursor, key)
            if row is None:
                return None
            cursor.execute(
                """
                UPDATE conflicts
                SET resolution_status = ?, resolution_choice = ?, resolved_at = ?, merged_data = ?
                WHERE id = ?
                """,
                (
                    ResolutionStatus.RESOLVED.value,
                    choice.value,
                    to_db_time(utcnow()),
                    to_json(merged_snapshot) if choice == ResolutionChoice.MERGE else None,
                    row["id"],
                ),
            )
            cursor.execute(f"SELECT {self._COLUMNS} FROM conflicts WHERE id = ?", (row["id"],))
            row = cursor.fetchone()

        return self._to_conflict(row)

    def _select_open(self, cursor: sqlite3.Cursor, key: str) -> sqlite3.Row | None:
        cursor.execute(
            f"SELECT {self._COLUMNS} FROM conflicts WHERE conflict_key = ? AND resolution_status = ?",
            (key, ResolutionStatus.OPEN.value),
        )
        return cursor.fetchone()

    @staticmethod
    def _to_conflict(row: sqlite3.Row) -> Conflict:
        return Conflict(
            id=row["id"],
            key=row["conflict_key"],
            source_a_name=row["source_a_name"],
            source_a_snapshot=from_json(row["source_a_data"]) or {},
            source_b_name=row["source_b_name"],
            source_b_snapshot=from_json(row["source_b_data"]) or {},
            detected_at=from_db_time(row["detected_at"]),
            resolution_status=ResolutionStatus(row["resolution_status"]),
            resolution_choice=(
                ResolutionChoice(row["resolution_choice"]) if row["resolution_choice"] else None
            ),
            resolved_at=from_db_time(row["resolved_at"]),
            merged_snapshot=from_json(row["merged_data"]),
        )
