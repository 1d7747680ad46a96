"""Durable log of captured changes and its processing-status column."""

import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

import structlog

from subsync.models.change import (
    CLAIMABLE_STATUSES,
    UNPROCESSED_STATUSES,
    ChangePage,
    ChangeRecord,
    Operation,
    ProcessingStatus,
)
from subsync.storage.database import (
    SQLiteDatabase,
    from_db_time,
    from_json,
    to_db_time,
    to_json,
    utcnow,
)

log = structlog.stdlib.get_logger()


def _placeholders(values: tuple[Any, ...]) -> str:
    return ", ".join("?" for _ in values)


def _status_values(statuses: tuple[ProcessingStatus, ...]) -> tuple[str, ...]:
    return tuple(status.value for status in statuses)


class ChangeRecordStore(ABC):
    """Contract the orchestrator needs from the change log.

    Records are never deleted. Status moves PENDING/RETRY -> PROCESSING via
    ``claim`` and PROCESSING -> SUCCESS/FAILED/RETRY via the mark methods.
    """

    @abstractmethod
    def append(
        self,
        entity_type: str,
        operation: Operation | str,
        entity_id: str | int,
        prior_snapshot: dict[str, Any] | None = None,
        new_snapshot: dict[str, Any] | None = None,
        captured_at: datetime | None = None,
        source_tag: str | None = "EXTERNAL_DB",
    ) -> ChangeRecord:
        """Insert a PENDING record. Used by capture adapters, not by the orchestrator."""

    @abstractmethod
    def get(self, record_id: int) -> ChangeRecord | None:
        """Fetch one record by id."""

    @abstractmethod
    def fetch_unprocessed(self, limit: int) -> list[ChangeRecord]:
        """
        Fetch claimable records, oldest capture first.

        Args:
            limit: Maximum number of records to return

        Returns:
            PENDING and RETRY records ordered by captured_at, then id
        """

    @abstractmethod
    def claim(self, record_id: int) -> bool:
        """
        Atomically move a record from PENDING/RETRY to PROCESSING.

        Returns:
            False when another claimant already moved it
        """

    @abstractmethod
    def mark_success(self, record_id: int) -> bool:
        """PROCESSING -> SUCCESS. A second call on a SUCCESS record is a no-op."""

    @abstractmethod
    def mark_failed(self, record_id: int, error: str) -> bool:
        """PROCESSING -> FAILED."""

    @abstractmethod
    def mark_retry(self, record_id: int, error: str) -> bool:
        """PROCESSING -> RETRY; processed_at is cleared."""

    @abstractmethod
    def count_unprocessed(self) -> int:
        """Count records not yet SUCCESS or FAILED (PROCESSING included)."""

    @abstractmethod
    def count_failed(self) -> int:
        """Count FAILED records."""

    @abstractmethod
    def oldest_unprocessed_age(self) -> float | None:
        """Age in seconds of the oldest unprocessed record, None when there is none."""

    @abstractmethod
    def list_unprocessed(
        self, page: int = 0, size: int = 20, table_name: str | None = None
    ) -> ChangePage:
        """Page through unprocessed records, oldest first."""

    @abstractmethod
    def count_stuck(self, older_than: datetime) -> int:
        """Count PROCESSING records claimed before ``older_than``."""

    @abstractmethod
    def rearm_stuck(self, older_than: datetime) -> int:
        """Move PROCESSING records claimed before ``older_than`` back to RETRY."""


class SQLiteChangeRecordStore(ChangeRecordStore):
    """ChangeRecordStore backed by the ``change_records`` table."""

    _COLUMNS = (
        "id, table_name, operation, entity_id, old_data, new_data, changed_at, "
        "change_source, sync_status, processed_at, error_message, attempt_count, claimed_at"
    )

    def __init__(self, database: SQLiteDatabase):
        self._db = database
        log.info("change_record_store_initialized", path=database.path)

    def append(
        self,
        entity_type: str,
        operation: Operation | str,
        entity_id: str | int,
        prior_snapshot: dict[str, Any] | None = None,
        new_snapshot: dict[str, Any] | None = None,
        captured_at: datetime | None = None,
        source_tag: str | None = "EXTERNAL_DB",
    ) -> ChangeRecord:
        op = Operation.parse(operation)
        with self._db.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO change_records
                    (table_name, operation, entity_id, old_data, new_data, changed_at, change_source)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entity_type,
                    op.value,
                    str(entity_id),
                    to_json(prior_snapshot),
                    to_json(new_snapshot),
                    to_db_time(captured_at or utcnow()),
                    source_tag,
                ),
            )
            record_id = cursor.lastrowid
            row = self._select_one(cursor, record_id)

        log.debug("change_record_appended", record_id=record_id, operation=op.value)
        return self._to_record(row)

    def get(self, record_id: int) -> ChangeRecord | None:
        with self._db.transaction() as cursor:
            row = self._select_one(cursor, record_id)
        return self._to_record(row) if row else None

    def fetch_unprocessed(self, limit: int) -> list[ChangeRecord]:
        if limit < 1:
            raise ValueError("limit must be at least 1")

        statuses = _status_values(CLAIMABLE_STATUSES)
        with self._db.transaction() as cursor:
            cursor.execute(
                f"""
                SELECT {self._COLUMNS} FROM change_records
                WHERE sync_status IN ({_placeholders(statuses)})
                ORDER BY changed_at ASC, id ASC
                LIMIT ?
                """,
                (*statuses, limit),
            )
            rows = cursor.fetchall()

        return [self._to_record(row) for row in rows]

    def claim(self, record_id: int) -> bool:
        statuses = _status_values(CLAIMABLE_STATUSES)
        with self._db.transaction() as cursor:
            cursor.execute(
                f"""
                UPDATE change_records
                SET sync_status = ?, attempt_count = attempt_count + 1,
                    claimed_at = ?, error_message = NULL
                WHERE id = ? AND sync_status IN ({_placeholders(statuses)})
                """,
                (ProcessingStatus.PROCESSING.value, to_db_time(utcnow()), record_id, *statuses),
            )
            claimed = cursor.rowcount == 1

        if not claimed:
            log.debug("change_record_claim_lost", record_id=record_id)
        return claimed

    def mark_success(self, record_id: int) -> bool:
        return self._finish(record_id, ProcessingStatus.SUCCESS, None)

    def mark_failed(self, record_id: int, error: str) -> bool:
        return self._finish(record_id, ProcessingStatus.FAILED, error)

    def mark_retry(self, record_id: int, error: str) -> bool:
        with self._db.transaction() as cursor:
            cursor.execute(
                """
                UPDATE change_records
                SET sync_status = ?, processed_at = NULL, error_message = ?
                WHERE id = ? AND sync_status = ?
                """,
                (
                    ProcessingStatus.RETRY.value,
                    error,
                    record_id,
                    ProcessingStatus.PROCESSING.value,
                ),
            )
            return cursor.rowcount == 1

    def count_unprocessed(self) -> int:
        return self._count(UNPROCESSED_STATUSES)

    def count_failed(self) -> int:
        return self._count((ProcessingStatus.FAILED,))

    def oldest_unprocessed_age(self) -> float | None:
        statuses = _status_values(UNPROCESSED_STATUSES)
        with self._db.transaction() as cursor:
            cursor.execute(
                f"""
                SELECT MIN(changed_at) AS oldest FROM change_records
                WHERE sync_status IN ({_placeholders(statuses)})
                """,
                statuses,
            )
            row = cursor.fetchone()

        oldest = from_db_time(row["oldest"]) if row else None
        if oldest is None:
            return None
        return max(0.0, (utcnow() - oldest).total_seconds())

    def list_unprocessed(
        self, page: int = 0, size: int = 20, table_name: str | None = None
    ) -> ChangePage:
        if page < 0 or size < 1:
            raise ValueError("page must be >= 0 and size >= 1")

        statuses = _status_values(UNPROCESSED_STATUSES)
        where = f"sync_status IN ({_placeholders(statuses)})"
        params: tuple[Any, ...] = statuses
        if table_name:
            where += " AND table_name = ?"
            params = (*params, table_name)

        with self._db.transaction() as cursor:
            cursor.execute(f"SELECT COUNT(*) AS total FROM change_records WHERE {where}", params)
            total = int(cursor.fetchone()["total"])
            cursor.execute(
                f"""
                SELECT {self._COLUMNS} FROM change_records WHERE {where}
                ORDER BY changed_at ASC, id ASC
                LIMIT ? OFFSET ?
                """,
                (*params, size, page * size),
            )
            rows = cursor.fetchall()

        return ChangePage(
            items=[self._to_record(row) for row in rows], page=page, size=size, total=total
        )

    def count_stuck(self, older_than: datetime) -> int:
        with self._db.transaction() as cursor:
            cursor.execute(
                """
                SELECT COUNT(*) AS total FROM change_records
                WHERE sync_status = ? AND claimed_at < ?
                """,
                (ProcessingStatus.PROCESSING.value, to_db_time(older_than)),
            )
            return int(cursor.fetchone()["total"])

    def rearm_stuck(self, older_than: datetime) -> int:
        with self._db.transaction() as cursor:
            cursor.execute(
                """
                UPDATE change_records
                SET sync_status = ?, error_message = ?
                WHERE sync_status = ? AND claimed_at < ?
                """,
                (
                    ProcessingStatus.RETRY.value,
                    "Re-armed after being stuck in PROCESSING",
                    ProcessingStatus.PROCESSING.value,
                    to_db_time(older_than),
                ),
            )
            rearmed = cursor.rowcount

        if rearmed:
            log.warning("stuck_change_records_rearmed", count=rearmed, older_than=older_than)
        return rearmed

    def _finish(self, record_id: int, status: ProcessingStatus, error: str | None) -> bool:
        with self._db.transaction() as cursor:
            cursor.execute(
                """
                UPDATE change_records
                SET sync_status = ?, processed_at = ?, error_message = ?
                WHERE id = ? AND sync_status = ?
                """,
                (
                    status.value,
                    to_db_time(utcnow()),
                    error,
                    record_id,
                    ProcessingStatus.PROCESSING.value,
                ),
            )
            return cursor.rowcount == 1

    def _count(self, statuses: tuple[ProcessingStatus, ...]) -> int:
        values = _status_values(statuses)
        with self._db.transaction() as cursor:
            cursor.execute(
                f"""
                SELECT COUNT(*) AS total FROM change_records
                WHERE sync_status IN ({_placeholders(values)})
                """,
                values,
            )
            return int(cursor.fetchone()["total"])

    def _select_one(self, cursor: sqlite3.Cursor, record_id: int | None) -> sqlite3.Row | None:
        cursor.execute(f"SELECT {self._COLUMNS} FROM change_records WHERE id = ?", (record_id,))
        return cursor.fetchone()

    @staticmethod
    def _to_record(row: sqlite3.Row) -> ChangeRecord:
        return ChangeRecord(
            id=row["id"],
            entity_type=row["table_name"],
            operation=row["operation"],
            entity_id=row["entity_id"],
            prior_snapshot=from_json(row["old_data"]),
            new_snapshot=from_json(row["new_data"]),
            captured_at=from_db_time(row["changed_at"]),
            source_tag=row["change_source"],
            processing_status=ProcessingStatus(row["sync_status"]),
            processed_at=from_db_time(row["processed_at"]),
            error_detail=row["error_message"],
            attempt_count=row["attempt_count"],
            claimed_at=from_db_time(row["claimed_at"]),
        )
