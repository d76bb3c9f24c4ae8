"""
Per-entity pipeline orchestration.

Coordinates the flow: read → validate → select → enrich → project →
merge or historize → commit with the watermark
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping

from historize.batch.readers import RecordReader
from historize.core.derivations import DerivationEngine
from historize.core.errors import StoreError, TransactionError, ValidationError
from historize.core.models import EntityConfig, RejectedRecord, RunSummary, SourceRecord
from historize.core.timeutil import EPOCH
from historize.incremental import Historizer, IncrementalMerger, MergeSelection, project
from historize.observability.logger import get_logger, log_operation
from historize.observability.metrics import record_entity_run, record_retry
from historize.warehouse.store import StoreTransaction, TableStore

logger = get_logger(__name__)


@dataclass
class _CommitOutcome:
    """What one committed (or rolled back, for dry runs) transaction wrote."""

    watermark_after: datetime
    stale: int = 0
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    versions_opened: int = 0
    versions_closed: int = 0
    rejections: list[RejectedRecord] = field(default_factory=list)


class EntityPipeline:
    """
    Runs one incremental pass for one entity.

    Flow:
    1. Read the watermark (retried with exponential backoff)
    2. Validate raw rows lazily; malformed rows become rejections
    3. Keep records newer than the watermark, one per business key.
       Historized entities also keep late records, which either match
       stored history or are rejected as ordering violations
    4. Compute derived fields, then apply the projection
    5. In one transaction: plan against the stored state, write rows or
       version transitions, store rejections and advance the watermark.
       A failed transaction is retried as a whole, re-reading state.

    Either the whole batch commits with its watermark or nothing does.
    """

    def __init__(
        self,
        config: EntityConfig,
        store: TableStore,
        dry_run: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the pipeline.

        Args:
            config: Entity configuration
            store: Table store holding the entity's persisted state
            dry_run: Plan and report without committing anything
            sleep: Called with the backoff delay between attempts
        """
        self.config = config
        self.store = store
        self.dry_run = dry_run
        self.sleep = sleep

        self.merger = IncrementalMerger(config)
        self.historizer = Historizer(config) if config.historized else None
        self.derivation_engine = DerivationEngine(config.derived_fields)

    def run(self, rows: Iterable[Mapping[str, Any]], first_line: int | None = None) -> RunSummary:
        """
        Process one batch of raw rows.

        Args:
            rows: Raw rows from the source (consumed once)
            first_line: Source line number of the first row, when known

        Returns:
            RunSummary of the pass

        Raises:
            TransactionError: If the watermark read or the commit kept failing
        """
        started = time.monotonic()
        summary = RunSummary(entity=self.config.name)

        try:
            with log_operation(f"Entity run {self.config.name}", logger=logger, entity=self.config.name):
                self._run(rows, first_line, summary)
        except TransactionError as e:
            summary.status = "failed"
            summary.error = str(e)
            summary.attempts = max(summary.attempts, e.attempts)
            summary.duration_seconds = time.monotonic() - started
            record_entity_run(summary)
            raise

        summary.duration_seconds = time.monotonic() - started
        record_entity_run(summary)
        logger.info(f"Entity run summary for {self.config.name}", extra=summary.as_log_fields())
        return summary

    def _run(self, rows: Iterable[Mapping[str, Any]], first_line: int | None, summary: RunSummary) -> None:
        watermark = self._with_retry("load_watermark", lambda: self.store.load_watermark(self.config), summary)
        summary.watermark_before = watermark or EPOCH
        summary.watermark_after = summary.watermark_before

        reader = RecordReader(self.config)
        selection = self.merger.select(
            reader.read(rows, first_line), watermark, keep_late=self.historizer is not None
        )
        summary.records_read = reader.rows_read
        summary.stale_records = selection.stale_records
        summary.duplicate_records = selection.duplicate_records

        records, enrich_rejections = self._enrich(selection.records)
        late, late_rejections = self._enrich(selection.late_records)
        rejections = [*reader.rejections, *enrich_rejections, *late_rejections]

        if selection.is_empty and not late and not rejections:
            summary.status = "noop"
            logger.info(
                f"No records newer than {summary.watermark_before.isoformat()} for {self.config.name}",
                extra={"entity": self.config.name},
            )
            return

        outcome = self._with_retry(
            "commit",
            lambda: self._commit(selection, records, late, rejections),
            summary,
            count_attempts=True,
        )

        summary.stale_records += outcome.stale
        summary.inserted = outcome.inserted
        summary.updated = outcome.updated
        summary.unchanged = outcome.unchanged
        summary.versions_opened = outcome.versions_opened
        summary.versions_closed = outcome.versions_closed
        for rejected in outcome.rejections:
            summary.rejected_by_kind[rejected.kind] = summary.rejected_by_kind.get(rejected.kind, 0) + 1
            if rejected.kind == "ordering_violation":
                logger.warning(
                    rejected.error_messages[0],
                    extra={"entity": self.config.name, "business_key": rejected.business_key},
                )

        if self.dry_run:
            summary.status = "dry_run"
        elif selection.is_empty:
            summary.status = "noop"
        else:
            summary.status = "success"
            summary.watermark_after = outcome.watermark_after

    def _enrich(self, records: list[SourceRecord]) -> tuple[list[SourceRecord], list[RejectedRecord]]:
        """Compute derived fields and apply the projection to every selected record."""
        enriched = []
        rejections = []
        for record in records:
            try:
                payload = project(self.derivation_engine.derive(record.payload), self.config.projection)
            except ValidationError as e:
                rejections.append(RejectedRecord(
                    entity=self.config.name,
                    business_key=record.business_key,
                    change_timestamp=record.change_timestamp,
                    raw_payload=record.payload,
                    kind="validation",
                    failed_rules=[f"{e.rule_name}:{e.field_name}"],
                    error_messages=[e.message],
                ))
                logger.warning(
                    f"Rejected record {record.business_key} of {self.config.name}: {e.message}",
                    extra={"entity": self.config.name, "business_key": record.business_key},
                )
                continue
            enriched.append(record.model_copy(update={"payload": payload}))
        return enriched, rejections

    def _commit(
        self,
        selection: MergeSelection,
        records: list[SourceRecord],
        late: list[SourceRecord],
        rejections: list[RejectedRecord],
    ) -> _CommitOutcome:
        """Plan and write the batch inside one transaction."""
        with self.store.transaction(self.config) as tx:
            outcome = self._apply(tx, selection, records, late, rejections)
            if self.dry_run:
                tx.set_rollback_only()
        return outcome

    def _apply(
        self,
        tx: StoreTransaction,
        selection: MergeSelection,
        records: list[SourceRecord],
        late: list[SourceRecord],
        rejections: list[RejectedRecord],
    ) -> _CommitOutcome:
        # Another run may have committed since the watermark was first read
        stored = tx.load_watermark() or EPOCH
        fresh = [record for record in records if record.change_timestamp > stored]
        outcome = _CommitOutcome(watermark_after=max(stored, selection.watermark_after))

        if self.historizer is not None:
            late = [*late, *(record for record in records if record.change_timestamp <= stored)]
            keys = list(dict.fromkeys(record.business_key for record in [*late, *fresh]))
            plan = self.historizer.plan(fresh, tx.load_versions(keys), late=late, watermark=stored)
            # Closures first: the new current version must not meet the old one
            tx.close_versions(plan.closures)
            tx.insert_versions(plan.openings)
            outcome.stale = plan.already_applied
            outcome.unchanged = plan.unchanged + plan.reapplied
            outcome.versions_opened = len(plan.openings)
            outcome.versions_closed = len(plan.closures) + sum(1 for v in plan.openings if not v.is_current)
            outcome.rejections = [*rejections, *plan.rejections]
        else:
            keys = [record.business_key for record in fresh]
            plan = self.merger.plan_current_state(fresh, tx.load_current(keys))
            tx.upsert_current(plan.rows)
            outcome.stale = len(records) - len(fresh) + plan.stale
            outcome.inserted = len(plan.inserts)
            outcome.updated = len(plan.updates)
            outcome.unchanged = plan.unchanged
            outcome.rejections = list(rejections)

        tx.save_rejections(outcome.rejections)
        if not selection.is_empty:
            tx.save_watermark(outcome.watermark_after)
        return outcome

    def _with_retry(
        self,
        operation: str,
        call: Callable[[], Any],
        summary: RunSummary,
        count_attempts: bool = False,
    ) -> Any:
        """
        Call a persisted-state operation with bounded exponential backoff.

        Raises:
            TransactionError: After the retry policy's last attempt failed
        """
        policy = self.config.retry
        for attempt in range(1, policy.max_attempts + 1):
            if count_attempts:
                summary.attempts = attempt
            try:
                return call()
            except StoreError as e:
                if attempt == policy.max_attempts:
                    record_retry(self.config.name, operation, exhausted=True)
                    raise TransactionError(
                        self.config.name,
                        f"{operation} failed after {attempt} attempts: {e}",
                        attempts=attempt,
                    ) from e

                delay = policy.delay_for(attempt)
                record_retry(self.config.name, operation)
                logger.warning(
                    f"{operation} failed for {self.config.name} (attempt {attempt}), retrying in {delay:.2f}s: {e}",
                    extra={"entity": self.config.name, "attempt": attempt, "delay_seconds": delay},
                )
                self.sleep(delay)
