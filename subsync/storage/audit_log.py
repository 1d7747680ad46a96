"""Append-only audit trail of sync side effects and operator actions."""

from datetime import datetime

import structlog
from pydantic import BaseModel

from subsync.storage.database import SQLiteDatabase, from_db_time, to_db_time, utcnow

log = structlog.stdlib.get_logger()


class AuditEvent(BaseModel):
    id: int
    event_type: str
    description: str
    resource_id: str | None = None
    created_at: datetime


class SQLiteAuditLog:
    """Audit events stored in the ``audit_events`` table."""

    def __init__(self, database: SQLiteDatabase):
        self._db = database

    def record(self, event_type: str, description: str, resource_id: str | None = None) -> None:
        with self._db.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO audit_events (event_type, description, resource_id, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (event_type, description, resource_id, to_db_time(utcnow())),
            )
        log.info("audit_event", event_type=event_type, resource_id=resource_id)

    def recent(self, limit: int = 50, event_type: str | None = None) -> list[AuditEvent]:
        """Most recent events first."""
        query = "SELECT id, event_type, description, resource_id, created_at FROM audit_events"
        params: tuple = ()
        if event_type:
            query += " WHERE event_type = ?"
            params = (event_type,)
        query += " ORDER BY id DESC LIMIT ?"

        with self._db.transaction() as cursor:
            cursor.execute(query, (*params, limit))
            rows = cursor.fetchall()

        return [
            AuditEvent(
                id=row["id"],
                event_type=row["event_type"],
                description=row["description"],
                resource_id=row["resource_id"],
                created_at=from_db_time(row["created_at"]),
            )
            for row in rows
        ]
