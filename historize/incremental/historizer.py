"""
Historization planning (slowly changing dimension, type 2).

For every incoming record the current version of its business key is
compared against the record. A changed record closes the current version
at the record's change timestamp and opens a new version from that same
instant, so the versions of a key partition time without gaps or overlaps.
"""

from datetime import datetime
from typing import Iterable

from pydantic import BaseModel, Field

from historize.core.errors import OrderingViolation
from historize.core.models import EntityConfig, RejectedRecord, SourceRecord, VersionedRecord

from .change_detection import content_checksum


class HistoryPlan(BaseModel):
    """
    Version transitions planned for a historized entity (ephemeral).

    Attributes:
        closures: Persisted current versions to close (already carrying the
            new valid_to and is_current=False)
        openings: New versions to insert
        rejections: Records held back for manual reconciliation
        unchanged: Records whose tracked attributes match the current version
        reapplied: Records already historized by an earlier run
        already_applied: Late records the stored history already reflects
    """

    closures: list[VersionedRecord] = Field(default_factory=list)
    openings: list[VersionedRecord] = Field(default_factory=list)
    rejections: list[RejectedRecord] = Field(default_factory=list)
    unchanged: int = 0
    reapplied: int = 0
    already_applied: int = 0

    @property
    def is_empty(self) -> bool:
        return not (self.closures or self.openings or self.rejections)


class Historizer:
    """
    Plans version transitions with the entity's change detection strategy.

    Strategies:
    - check: a new version opens when the content hash over the tracked
      attributes differs from the current version's
    - timestamp: a new version opens whenever the change timestamp is newer
      than the current version's start

    The strategy is fixed per entity; switching it between runs would move
    version boundaries inconsistently.
    """

    def __init__(self, config: EntityConfig):
        """
        Initialize the historizer.

        Args:
            config: Historized entity configuration
        """
        if not config.historized:
            raise ValueError(f"Entity '{config.name}' is not historized")
        self.config = config

    def plan(
        self,
        records: Iterable[SourceRecord],
        versions_by_key: dict[str, list[VersionedRecord]],
        late: Iterable[SourceRecord] = (),
        watermark: datetime | None = None,
    ) -> HistoryPlan:
        """
        Plan version transitions for a batch.

        Records for the same key are applied in change-timestamp order, each
        against the state left by the previous one. Late records (at or
        below the watermark) never change history: they are either already
        reflected by a stored version or rejected as ordering violations.

        Args:
            records: Enriched and projected records newer than the watermark
            versions_by_key: Every persisted version of the batch's keys
            late: Enriched and projected records at or below the watermark
            watermark: Watermark the late records were held against

        Returns:
            HistoryPlan of closures, openings and rejections
        """
        plan = HistoryPlan()
        working = {key: list(versions) for key, versions in versions_by_key.items()}

        for record in late:
            self._reconcile(record, working.get(record.business_key, []), watermark, plan)

        ordered = sorted(records, key=lambda record: (record.change_timestamp, record.position))
        for record in ordered:
            versions = working.setdefault(record.business_key, [])
            self._apply(record, versions, plan)

        return plan

    def _apply(self, record: SourceRecord, versions: list[VersionedRecord], plan: HistoryPlan) -> None:
        """Plan the transition for one record, updating ``versions`` in place."""
        change_timestamp = record.change_timestamp
        checksum = content_checksum(record.payload, self.config.tracked_attributes)

        if any(v.valid_from == change_timestamp and v.checksum == checksum for v in versions):
            plan.reapplied += 1
            return

        if change_timestamp >= self.config.far_future:
            plan.rejections.append(self._reject(
                record,
                "validation",
                "far_future",
                f"change timestamp {change_timestamp.isoformat()} is not before the "
                f"far-future sentinel {self.config.far_future.isoformat()}",
            ))
            return

        current = next((v for v in versions if v.is_current), None)
        if current is None:
            latest_end = max((v.valid_to for v in versions), default=None)
            if latest_end is not None and change_timestamp < latest_end:
                self._reject_ordering(record, latest_end, plan)
                return
            self._open(record, checksum, versions, plan)
            return

        if change_timestamp <= current.valid_from:
            self._reject_ordering(record, current.valid_from, plan)
            return

        if self.config.strategy == "check" and checksum == current.checksum:
            plan.unchanged += 1
            return

        self._close(current, change_timestamp, versions, plan)
        self._open(record, checksum, versions, plan)

    def _reconcile(
        self,
        record: SourceRecord,
        versions: list[VersionedRecord],
        watermark: datetime | None,
        plan: HistoryPlan,
    ) -> None:
        """Match a late record against stored history without changing it."""
        change_timestamp = record.change_timestamp
        checksum = content_checksum(record.payload, self.config.tracked_attributes)

        if any(self._reflects(v, change_timestamp, checksum) for v in versions):
            plan.already_applied += 1
            return

        current = next((v for v in versions if v.is_current), None)
        if current is not None and change_timestamp <= current.valid_from:
            self._reject_ordering(record, current.valid_from, plan)
            return

        violation = OrderingViolation(
            entity=self.config.name,
            business_key=record.business_key,
            change_timestamp=change_timestamp,
            boundary=watermark or change_timestamp,
            boundary_name="watermark",
        )
        plan.rejections.append(self._reject(record, violation.kind, "watermark_ordering", str(violation)))

    def _reflects(self, version: VersionedRecord, change_timestamp: datetime, checksum: str) -> bool:
        """Whether a stored version already accounts for a record."""
        if version.checksum != checksum:
            return False
        if version.valid_from == change_timestamp:
            return True
        # Under the check strategy an unchanged record was absorbed by the version covering it
        return (
            self.config.strategy == "check"
            and version.valid_from <= change_timestamp < version.valid_to
        )

    def _open(
        self,
        record: SourceRecord,
        checksum: str,
        versions: list[VersionedRecord],
        plan: HistoryPlan,
    ) -> None:
        opened = VersionedRecord(
            business_key=record.business_key,
            payload=record.payload,
            checksum=checksum,
            valid_from=record.change_timestamp,
            valid_to=self.config.far_future,
            is_current=True,
        )
        versions.append(opened)
        plan.openings.append(opened)

    def _close(
        self,
        current: VersionedRecord,
        valid_to: datetime,
        versions: list[VersionedRecord],
        plan: HistoryPlan,
    ) -> None:
        closed = current.closed_at(valid_to)
        versions[versions.index(current)] = closed

        # A version opened earlier in this plan is closed before it is written
        for idx, opening in enumerate(plan.openings):
            if opening is current:
                plan.openings[idx] = closed
                return
        plan.closures.append(closed)

    def _reject_ordering(self, record: SourceRecord, boundary: datetime, plan: HistoryPlan) -> None:
        violation = OrderingViolation(
            entity=self.config.name,
            business_key=record.business_key,
            change_timestamp=record.change_timestamp,
            boundary=boundary,
        )
        plan.rejections.append(self._reject(record, violation.kind, "version_ordering", str(violation)))

    def _reject(self, record: SourceRecord, kind: str, rule: str, message: str) -> RejectedRecord:
        return RejectedRecord(
            entity=self.config.name,
            business_key=record.business_key,
            change_timestamp=record.change_timestamp,
            raw_payload=record.payload,
            kind=kind,
            failed_rules=[rule],
            error_messages=[message],
        )


def check_partition(versions: list[VersionedRecord], far_future: datetime) -> list[str]:
    """
    Check that one key's versions partition time.

    The sorted intervals must be contiguous and non-overlapping, exactly
    one version must be current, and it must be the last one, open until
    the far-future sentinel.

    Args:
        versions: Every version of a single business key
        far_future: The entity's far-future sentinel

    Returns:
        Descriptions of every violation; empty when the partition holds
    """
    if not versions:
        return []

    problems = []
    ordered = sorted(versions, key=lambda v: v.valid_from)
    keys = {v.business_key for v in ordered}
    if len(keys) > 1:
        problems.append(f"versions span several business keys: {sorted(keys)}")

    current = [v for v in ordered if v.is_current]
    if len(current) != 1:
        problems.append(f"expected exactly one current version, found {len(current)}")

    for earlier, later in zip(ordered, ordered[1:]):
        if earlier.valid_to < later.valid_from:
            problems.append(f"gap between {earlier.valid_to.isoformat()} and {later.valid_from.isoformat()}")
        elif earlier.valid_to > later.valid_from:
            problems.append(f"overlap between versions starting {earlier.valid_from.isoformat()} and {later.valid_from.isoformat()}")
        if earlier.is_current:
            problems.append(f"version starting {earlier.valid_from.isoformat()} is current but superseded")

    last = ordered[-1]
    if not last.is_current or last.valid_to != far_future:
        problems.append("latest version is not open until the far-future sentinel")

    return problems
