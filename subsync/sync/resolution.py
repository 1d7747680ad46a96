"""Operator and bulk resolution of OPEN conflicts."""

from typing import Any

import structlog

from subsync.dispatch.dispatcher import NotificationDispatcher
from subsync.exceptions import ConflictNotFoundError
from subsync.models.change import Snapshot
from subsync.models.conflict import Conflict, ResolutionChoice
from subsync.models.results import ResolutionResult
from subsync.storage.audit_log import SQLiteAuditLog
from subsync.storage.conflict_store import ConflictStore
from subsync.storage.subscriber_store import SubscriberStore

log = structlog.stdlib.get_logger()

BULK_CHOICES = (ResolutionChoice.USE_A, ResolutionChoice.USE_B)


class ConflictResolutionService:
    """Writes the chosen snapshot back as canonical and closes the conflict."""

    def __init__(
        self,
        conflict_store: ConflictStore,
        subscriber_store: SubscriberStore,
        dispatcher: NotificationDispatcher | None = None,
        audit_log: SQLiteAuditLog | None = None,
        subscriber_table: str = "subscriptions",
    ):
        self._conflict_store = conflict_store
        self._subscriber_store = subscriber_store
        self._dispatcher = dispatcher
        self._audit_log = audit_log
        self._subscriber_table = subscriber_table

    def resolve(
        self,
        key: str,
        choice: ResolutionChoice | str,
        merged_snapshot: Snapshot | None = None,
    ) -> ResolutionResult:
        """
        Resolve the conflict for one key.

        Resolving a key whose latest conflict is already RESOLVED reports
        success without touching the store again.

        Args:
            key: Conflict key (MSISDN)
            choice: USE_A, USE_B or MERGE
            merged_snapshot: Operator supplied snapshot, required for MERGE

        Returns:
            ResolutionResult describing the canonical snapshot

        Raises:
            ConflictNotFoundError: If no conflict was ever recorded for the key
            ValueError: If MERGE is requested without a snapshot
            StorageError: If the canonical write fails after the conflict closed
        """
        choice = ResolutionChoice(choice)
        if choice == ResolutionChoice.MERGE and merged_snapshot is None:
            raise ValueError("MERGE resolution requires a merged snapshot")

        # Closing the conflict is the conditional step: only its winner writes.
        resolved = self._conflict_store.mark_resolved(key, choice, merged_snapshot)
        if resolved is None:
            return self._already_resolved(key)

        canonical = self._canonical_snapshot(resolved, choice, merged_snapshot)
        try:
            self._subscriber_store.write_by_msisdn(key, canonical)
        except Exception as e:
            log.error("resolution_write_failed", key=key, choice=choice.value, error=str(e))
            raise

        self._invalidate(key)
        if self._audit_log is not None:
            self._audit_log.record(
                "CONFLICT_RESOLVED",
                f"Resolved with {choice.value}",
                resource_id=key,
            )

        log.info("conflict_resolved", key=key, choice=choice.value)
        return ResolutionResult(
            key=key,
            choice=choice,
            canonical_snapshot=canonical,
            resolved_at=resolved.resolved_at,
        )

    def resolve_all(self, choice: ResolutionChoice | str) -> list[ResolutionResult]:
        """
        Apply USE_A or USE_B to every OPEN conflict.

        Raises:
            ValueError: If the choice is MERGE
        """
        choice = ResolutionChoice(choice)
        if choice not in BULK_CHOICES:
            raise ValueError("Bulk resolution accepts USE_A or USE_B only")

        conflicts = self._conflict_store.list_open()
        log.info("resolving_all_conflicts", choice=choice.value, count=len(conflicts))

        results = []
        for conflict in conflicts:
            results.append(self.resolve(conflict.key, choice))
        return results

    def _already_resolved(self, key: str) -> ResolutionResult:
        latest = self._conflict_store.get_latest(key)
        if latest is None:
            raise ConflictNotFoundError(key)

        log.info("conflict_already_resolved", key=key)
        return ResolutionResult(
            key=key,
            choice=latest.resolution_choice,
            already_resolved=True,
            canonical_snapshot=self._subscriber_store.find_by_msisdn(key),
            resolved_at=latest.resolved_at,
        )

    @staticmethod
    def _canonical_snapshot(
        conflict: Conflict, choice: ResolutionChoice, merged_snapshot: Snapshot | None
    ) -> dict[str, Any]:
        if choice == ResolutionChoice.USE_A:
            return dict(conflict.source_a_snapshot)
        if choice == ResolutionChoice.USE_B:
            return dict(conflict.source_b_snapshot)
        return dict(merged_snapshot or {})

    def _invalidate(self, key: str) -> None:
        if self._dispatcher is None:
            return
        try:
            self._dispatcher.invalidate_subscriber(key, self._subscriber_table)
        except Exception as e:
            log.warning("resolution_cache_invalidation_failed", key=key, error=str(e))
