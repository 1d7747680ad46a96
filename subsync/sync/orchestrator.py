"""Sync orchestrator: claims captured changes and replays their side effects."""

import threading
import time
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from enum import Enum

import structlog

from subsync.dispatch.dispatcher import NotificationDispatcher
from subsync.exceptions import MalformedRecordError
from subsync.models.change import ChangeRecord, Operation, Snapshot
from subsync.models.results import SyncResult
from subsync.storage.audit_log import SQLiteAuditLog
from subsync.storage.change_store import ChangeRecordStore
from subsync.storage.mirror_source import YamlMirrorSource
from subsync.storage.subscriber_store import SubscriberStore
from subsync.sync.conflict_detector import ConflictDetector

log = structlog.stdlib.get_logger()


class RecordOutcome(str, Enum):
    SUCCESS = "success"
    RETRY = "retry"
    FAILED = "failed"
    SKIPPED = "skipped"


class SyncOrchestrator:
    """Processes a batch of unprocessed change records, oldest first."""

    def __init__(
        self,
        change_store: ChangeRecordStore,
        subscriber_store: SubscriberStore,
        dispatcher: NotificationDispatcher,
        conflict_detector: ConflictDetector | None = None,
        mirror: YamlMirrorSource | None = None,
        audit_log: SQLiteAuditLog | None = None,
        max_attempts: int = 5,
        subscriber_table: str = "subscriptions",
        max_workers: int = 1,
    ):
        """
        Initialize the orchestrator.

        Args:
            change_store: Durable queue of captured changes
            subscriber_store: Canonical subscriber store the changes are projected into
            dispatcher: Cache and webhook side effects
            conflict_detector: Optional detector; conflict checks are skipped without one
            mirror: Optional second source compared against the change
            audit_log: Optional audit trail
            max_attempts: Claims allowed before a failing record becomes FAILED
            subscriber_table: Table whose records carry subscriber snapshots
            max_workers: Parallel entity partitions per run
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")

        self._change_store = change_store
        self._subscriber_store = subscriber_store
        self._dispatcher = dispatcher
        self._conflict_detector = conflict_detector
        self._mirror = mirror
        self._audit_log = audit_log
        self._max_attempts = max_attempts
        self._subscriber_table = subscriber_table
        self._max_workers = max_workers

        log.info(
            "sync_orchestrator_initialized",
            max_attempts=max_attempts,
            max_workers=max_workers,
            mirror=mirror is not None,
        )

    def run(self, batch_size: int, cancel_event: threading.Event | None = None) -> SyncResult:
        """
        Fetch up to ``batch_size`` unprocessed records and process each one.

        Per-record errors never abort the batch. Cancellation is honoured
        between records only.

        Args:
            batch_size: Maximum records to fetch
            cancel_event: Optional event; once set, no further record is started

        Returns:
            SyncResult with per-outcome counts
        """
        start = time.perf_counter()
        records = self._change_store.fetch_unprocessed(batch_size)
        log.info("sync_run_started", batch_size=batch_size, fetched=len(records))

        if not records:
            result = SyncResult.empty()
            result.duration_seconds = time.perf_counter() - start
            return result

        tally = _Tally()
        if self._max_workers == 1:
            self._process_partition(records, tally, cancel_event)
        else:
            partitions = self.partition(records)
            workers = min(self._max_workers, len(partitions))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sync") as pool:
                futures = [
                    pool.submit(self._process_partition, partition, tally, cancel_event)
                    for partition in partitions
                ]
                for future in futures:
                    future.result()

        result = tally.to_result(time.perf_counter() - start)
        log.info(
            "sync_run_completed",
            changes_processed=result.changes_processed,
            successful_changes=result.successful_changes,
            failed_changes=result.failed_changes,
            skipped_changes=result.skipped_changes,
            conflicts_detected=result.conflicts_detected,
            cancelled=result.cancelled,
            duration_seconds=result.duration_seconds,
        )
        return result

    @staticmethod
    def partition(records: list[ChangeRecord]) -> list[list[ChangeRecord]]:
        """Group records by entity id, keeping fetch order inside each group."""
        groups: OrderedDict[tuple[str, str], list[ChangeRecord]] = OrderedDict()
        for record in records:
            groups.setdefault((record.entity_type, record.entity_id), []).append(record)
        return list(groups.values())

    def process_record(self, record: ChangeRecord) -> tuple[RecordOutcome, bool, str | None]:
        """
        Claim and apply one record.

        Returns:
            Tuple of (outcome, conflict_detected, error message)
        """
        if not self._change_store.claim(record.id):
            return RecordOutcome.SKIPPED, False, None

        attempt = record.attempt_count + 1
        conflict_detected = False
        try:
            reason = record.shape_error()
            if reason is not None:
                raise MalformedRecordError(record.id, reason)

            conflict_detected = self._check_conflict(record)
            self._project(record)
            if self._audit_log is not None:
                self._audit_log.record(
                    "EXTERNAL_CHANGE_SYNCED",
                    f"{record.operation.wire_name} on {record.entity_type}",
                    resource_id=record.entity_id,
                )
        except MalformedRecordError as e:
            log.error("malformed_change_record", record_id=record.id, reason=e.reason)
            return self._fail(record, str(e)), conflict_detected, str(e)
        except Exception as e:
            error = f"Failed to process change {record.id}: {e}"
            if attempt < self._max_attempts:
                log.warning(
                    "change_record_released_for_retry",
                    record_id=record.id,
                    attempt=attempt,
                    max_attempts=self._max_attempts,
                    error=str(e),
                )
                self._change_store.mark_retry(record.id, str(e))
                return RecordOutcome.RETRY, conflict_detected, error
            log.error(
                "change_record_attempts_exhausted",
                record_id=record.id,
                attempt=attempt,
                error=str(e),
            )
            return self._fail(record, str(e)), conflict_detected, error

        self._dispatch(record)
        self._change_store.mark_success(record.id)
        log.debug("change_record_synced", record_id=record.id, entity_id=record.entity_id)
        return RecordOutcome.SUCCESS, conflict_detected, None

    def _process_partition(
        self,
        records: list[ChangeRecord],
        tally: "_Tally",
        cancel_event: threading.Event | None,
    ) -> None:
        for record in records:
            if cancel_event is not None and cancel_event.is_set():
                log.info("sync_run_cancelled", next_record_id=record.id)
                tally.cancel()
                return
            try:
                outcome, conflict, error = self.process_record(record)
            except Exception as e:
                # mark_* itself failed; the record stays PROCESSING until re-armed
                log.error("change_record_finish_failed", record_id=record.id, error=str(e))
                outcome, conflict, error = RecordOutcome.FAILED, False, str(e)
            tally.add(outcome, conflict, error)

    def _check_conflict(self, record: ChangeRecord) -> bool:
        if self._conflict_detector is None or record.entity_type != self._subscriber_table:
            return False
        msisdn = record.msisdn
        if msisdn is None:
            return False

        if self._mirror is not None:
            source_b, source_b_name = self._mirror.get(msisdn), "mirror"
        else:
            source_b, source_b_name = self._subscriber_store.get(record.entity_id), "service"
            if record.operation != Operation.CREATE and not self._lost_update(
                record, msisdn, source_b
            ):
                return False

        # Source A is what the external database holds after this change.
        conflict = self._conflict_detector.evaluate(
            msisdn,
            record.effective_snapshot,
            source_b,
            source_a_name="database",
            source_b_name=source_b_name,
        )
        return conflict is not None

    def _lost_update(self, record: ChangeRecord, msisdn: str, canonical: Snapshot | None) -> bool:
        """
        Check whether the writer's pre-image disagrees with the service's value.

        Agreement clears any OPEN conflict for the key. A missing pre-image or
        canonical value leaves the conflict store alone.
        """
        if record.prior_snapshot is None or canonical is None:
            log.debug("conflict_check_skipped", key=msisdn, reason="missing_source")
            return False
        if not self._conflict_detector.differing_fields(record.prior_snapshot, canonical):
            self._conflict_detector.clear(msisdn)
            return False
        return True

    def _project(self, record: ChangeRecord) -> None:
        if record.entity_type != self._subscriber_table:
            return
        if record.operation == Operation.DELETE:
            self._subscriber_store.delete(record.entity_id)
        else:
            self._subscriber_store.upsert(record.entity_id, record.new_snapshot or {}, merge=True)

    def _dispatch(self, record: ChangeRecord) -> None:
        try:
            report = self._dispatcher.dispatch(record)
        except Exception as e:
            log.error("change_dispatch_failed", record_id=record.id, error=str(e))
            return
        if report.cache_errors or report.webhooks_failed:
            log.warning(
                "change_dispatch_degraded",
                record_id=record.id,
                cache_errors=len(report.cache_errors),
                webhooks_failed=len(report.webhooks_failed),
            )

    def _fail(self, record: ChangeRecord, error: str) -> RecordOutcome:
        self._change_store.mark_failed(record.id, error)
        if self._audit_log is not None:
            try:
                self._audit_log.record(
                    "EXTERNAL_CHANGE_FAILED", error, resource_id=record.entity_id
                )
            except Exception as e:
                log.warning("failure_audit_failed", record_id=record.id, error=str(e))
        return RecordOutcome.FAILED


class _Tally:
    """Thread-safe accumulator of per-record outcomes."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.processed = 0
        self.successful = 0
        self.failed = 0
        self.skipped = 0
        self.conflicts = 0
        self.cancelled = False
        self.errors: list[str] = []

    def add(self, outcome: RecordOutcome, conflict: bool, error: str | None) -> None:
        with self._lock:
            if conflict:
                self.conflicts += 1
            if outcome == RecordOutcome.SKIPPED:
                self.skipped += 1
                return
            self.processed += 1
            if outcome == RecordOutcome.SUCCESS:
                self.successful += 1
            else:
                self.failed += 1
            if error:
                self.errors.append(error)

    def cancel(self) -> None:
        with self._lock:
            self.cancelled = True

    def to_result(self, duration: float) -> SyncResult:
        with self._lock:
            message = (
                f"Processed {self.processed} changes: "
                f"{self.successful} successful, {self.failed} failed"
            )
            if self.cancelled:
                message += " (cancelled)"
            return SyncResult(
                success=self.failed == 0,
                changes_processed=self.processed,
                successful_changes=self.successful,
                failed_changes=self.failed,
                skipped_changes=self.skipped,
                conflicts_detected=self.conflicts,
                cancelled=self.cancelled,
                message=message,
                errors=list(self.errors),
                duration_seconds=duration,
            )
