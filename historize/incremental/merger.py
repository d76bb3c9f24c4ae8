"""
Incremental merge planning.

Selects the records newer than the entity watermark, resolves duplicate
business keys within a batch, and plans overwrite-in-place writes for
current-state entities.
"""

from datetime import datetime
from typing import Iterable

from pydantic import BaseModel, Field

from historize.core.models import CurrentRecord, EntityConfig, SourceRecord
from historize.core.timeutil import EPOCH, ensure_utc, utcnow

from .change_detection import content_checksum


class MergeSelection(BaseModel):
    """
    Records selected for one incremental pass (ephemeral).

    Attributes:
        records: One record per business key, newer than the watermark,
            in input order of the winning records
        late_records: Records at or below the watermark, one per business
            key, kept for reconciliation against stored history
        stale_records: Records at or below the watermark that were dropped
        duplicate_records: Records superseded within the batch
        watermark_before: Watermark the selection was made against
        watermark_after: max(watermark_before, newest selected change timestamp)
    """

    records: list[SourceRecord] = Field(default_factory=list)
    late_records: list[SourceRecord] = Field(default_factory=list)
    stale_records: int = 0
    duplicate_records: int = 0
    watermark_before: datetime
    watermark_after: datetime

    @property
    def is_empty(self) -> bool:
        return not self.records


class CurrentStatePlan(BaseModel):
    """
    Writes planned for a current-state entity (ephemeral).

    Attributes:
        inserts: Rows for business keys not yet persisted
        updates: Rows overwriting a persisted row whose content changed
        unchanged: Records identical to the persisted row
        stale: Records older than the persisted row for their key
    """

    inserts: list[CurrentRecord] = Field(default_factory=list)
    updates: list[CurrentRecord] = Field(default_factory=list)
    unchanged: int = 0
    stale: int = 0

    @property
    def rows(self) -> list[CurrentRecord]:
        return [*self.inserts, *self.updates]


class IncrementalMerger:
    """
    Decides, per business key, whether an incoming record is new, changed
    or unchanged relative to persisted state.
    """

    def __init__(self, config: EntityConfig):
        """
        Initialize the merger.

        Args:
            config: Entity configuration
        """
        self.config = config

    def select(
        self,
        records: Iterable[SourceRecord],
        watermark: datetime | None,
        keep_late: bool = False,
    ) -> MergeSelection:
        """
        Select records strictly newer than the watermark, one per key.

        For a key seen several times in the batch the record with the
        greatest change timestamp wins. Ties go to the later record in
        input order under the "last" duplicate policy and to the earlier
        one under "first".

        Args:
            records: Incoming records (consumed once)
            watermark: Persisted watermark, None when the entity has no state
            keep_late: Keep records at or below the watermark in
                ``late_records`` instead of dropping them as stale

        Returns:
            MergeSelection with the advanced watermark
        """
        watermark_before = ensure_utc(watermark) if watermark is not None else EPOCH
        prefer_later = self.config.duplicate_policy == "last"

        winners: dict[str, SourceRecord] = {}
        late_winners: dict[str, SourceRecord] = {}
        stale = 0
        duplicates = 0
        for record in records:
            target = winners
            if record.change_timestamp <= watermark_before:
                if not keep_late:
                    stale += 1
                    continue
                target = late_winners

            existing = target.get(record.business_key)
            if existing is None:
                target[record.business_key] = record
                continue

            duplicates += 1
            if self._supersedes(record, existing, prefer_later):
                target[record.business_key] = record

        selected = sorted(winners.values(), key=lambda record: record.position)
        late = sorted(late_winners.values(), key=lambda record: record.position)
        watermark_after = max(
            [watermark_before, *(record.change_timestamp for record in selected)]
        )

        return MergeSelection(
            records=selected,
            late_records=late,
            stale_records=stale,
            duplicate_records=duplicates,
            watermark_before=watermark_before,
            watermark_after=watermark_after,
        )

    def plan_current_state(
        self,
        records: Iterable[SourceRecord],
        current: dict[str, CurrentRecord],
    ) -> CurrentStatePlan:
        """
        Plan overwrite-in-place writes against the persisted current state.

        Args:
            records: Selected, enriched and projected records
            current: Persisted rows keyed by business key

        Returns:
            CurrentStatePlan of inserts and updates
        """
        plan = CurrentStatePlan()
        loaded_at = utcnow()

        for record in records:
            checksum = content_checksum(record.payload, self.config.tracked_attributes)
            existing = current.get(record.business_key)

            if existing is not None and record.change_timestamp < existing.change_timestamp:
                plan.stale += 1
                continue
            if existing is not None and existing.checksum == checksum:
                plan.unchanged += 1
                continue

            row = CurrentRecord(
                business_key=record.business_key,
                payload=record.payload,
                checksum=checksum,
                change_timestamp=record.change_timestamp,
                loaded_at=loaded_at,
            )
            if existing is None:
                plan.inserts.append(row)
            else:
                plan.updates.append(row)

        return plan

    @staticmethod
    def _supersedes(candidate: SourceRecord, existing: SourceRecord, prefer_later: bool) -> bool:
        """Whether ``candidate`` replaces ``existing`` for the same key."""
        if candidate.change_timestamp != existing.change_timestamp:
            return candidate.change_timestamp > existing.change_timestamp
        if prefer_later:
            return candidate.position > existing.position
        return candidate.position < existing.position
