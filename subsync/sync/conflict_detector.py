"""Conflict detection between two named sources of subscriber state."""

from datetime import datetime, timezone

import structlog

from subsync.models.change import Snapshot
from subsync.models.conflict import COMPARED_FIELDS, Conflict
from subsync.storage.audit_log import SQLiteAuditLog
from subsync.storage.conflict_store import ConflictStore

log = structlog.stdlib.get_logger()


class ConflictDetector:
    """Compares two snapshots of one subscriber and keeps the conflict store current."""

    def __init__(
        self,
        conflict_store: ConflictStore,
        audit_log: SQLiteAuditLog | None = None,
        compared_fields: tuple[str, ...] = COMPARED_FIELDS,
    ):
        """
        Initialize the detector.

        Args:
            conflict_store: Store holding OPEN and resolved conflicts
            audit_log: Optional audit trail for new conflicts
            compared_fields: Snapshot fields whose values must agree
        """
        self._conflict_store = conflict_store
        self._audit_log = audit_log
        self._compared_fields = compared_fields

    def differing_fields(self, source_a: Snapshot, source_b: Snapshot) -> list[str]:
        """
        List compared fields whose values disagree.

        A field missing or null on one side only counts when the other side
        holds a non-null value for it.
        """
        differing = []
        for name in self._compared_fields:
            value_a = source_a.get(name)
            value_b = source_b.get(name)
            if value_a is None and value_b is None:
                continue
            if value_a != value_b:
                differing.append(name)
        return differing

    def detect(
        self,
        key: str,
        source_a: Snapshot | None,
        source_b: Snapshot | None,
        source_a_name: str = "database",
        source_b_name: str = "mirror",
    ) -> Conflict | None:
        """
        Compare two snapshots for a key without touching the store.

        Args:
            key: Logical key (MSISDN)
            source_a: Snapshot from source A, or None when A has no view
            source_b: Snapshot from source B, or None when B has no view

        Returns:
            Unsaved OPEN Conflict, or None when the sources agree or one is missing
        """
        if source_a is None or source_b is None:
            return None

        differing = self.differing_fields(source_a, source_b)
        if not differing:
            return None

        log.debug("conflict_candidate", key=key, differing_fields=differing)
        return Conflict(
            key=key,
            source_a_name=source_a_name,
            source_b_name=source_b_name,
            source_a_snapshot=dict(source_a),
            source_b_snapshot=dict(source_b),
            detected_at=datetime.now(timezone.utc),
        )

    def evaluate(
        self,
        key: str,
        source_a: Snapshot | None,
        source_b: Snapshot | None,
        source_a_name: str = "database",
        source_b_name: str = "mirror",
    ) -> Conflict | None:
        """
        Detect and persist: record a divergence, or clear the OPEN conflict on agreement.

        When either source is None nothing is compared and the store is left alone.

        Returns:
            The stored OPEN Conflict, or None when no conflict exists for the key
        """
        if source_a is None or source_b is None:
            log.debug("conflict_check_skipped", key=key, reason="missing_source")
            return None

        candidate = self.detect(key, source_a, source_b, source_a_name, source_b_name)
        if candidate is None:
            self.clear(key)
            return None

        already_open = self._conflict_store.get_open(key) is not None
        conflict = self._conflict_store.upsert_open(
            key,
            source_a_name,
            candidate.source_a_snapshot,
            source_b_name,
            candidate.source_b_snapshot,
        )

        log.warning(
            "conflict_detected",
            key=key,
            source_a=source_a_name,
            source_b=source_b_name,
            differing_fields=conflict.differing_fields,
            already_open=already_open,
        )
        if not already_open and self._audit_log is not None:
            self._audit_log.record(
                "CONFLICT_DETECTED",
                f"Conflict between {source_a_name} and {source_b_name} on "
                f"{', '.join(conflict.differing_fields)}",
                resource_id=key,
            )
        return conflict

    def clear(self, key: str) -> bool:
        """Auto-resolve the OPEN conflict for a key once its sources agree."""
        cleared = self._conflict_store.clear_open(key)
        if cleared:
            log.info("conflict_auto_cleared", key=key)
        return cleared
