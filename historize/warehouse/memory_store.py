"""
In-memory table store.

Keeps each entity's tables in dictionaries. A transaction works on a copy
of the entity's state and swaps it in on commit, so a failure part-way
through a batch leaves the committed state untouched. Used for dry runs,
local development and tests.
"""

import copy
import threading
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime

from historize.core.errors import StoreError
from historize.core.models import (
    CurrentRecord,
    EntityConfig,
    RejectedRecord,
    VersionedRecord,
    WatermarkState,
)
from historize.core.timeutil import utcnow
from historize.incremental import check_partition

from .store import StoreTransaction, TableStore


@dataclass
class _EntityTables:
    watermark: datetime | None = None
    watermark_updated_at: datetime | None = None
    current: dict[str, CurrentRecord] = field(default_factory=dict)
    versions: dict[str, list[VersionedRecord]] = field(default_factory=dict)
    rejections: list[RejectedRecord] = field(default_factory=list)
    next_id: int = 1


class InMemoryTableStore(TableStore):
    """
    Dictionary-backed TableStore with injectable failures.

    ``fail_next("commit", times=2)`` makes the next two commits raise
    StoreError; any StoreTransaction method name or "load_watermark" can be
    targeted the same way.
    """

    def __init__(self):
        self._tables: dict[tuple[str, str], _EntityTables] = defaultdict(_EntityTables)
        self._failures: dict[str, int] = {}
        self._lock = threading.RLock()
        self.commits = 0
        self.rollbacks = 0

    def fail_next(self, operation: str, times: int = 1) -> None:
        """Make the next ``times`` calls of ``operation`` raise StoreError."""
        with self._lock:
            self._failures[operation] = times

    def _maybe_fail(self, operation: str) -> None:
        with self._lock:
            remaining = self._failures.get(operation, 0)
            if remaining > 0:
                self._failures[operation] = remaining - 1
                raise StoreError(f"injected failure in {operation}")

    def load_watermark(self, entity: EntityConfig) -> datetime | None:
        self._maybe_fail("load_watermark")
        with self._lock:
            return self._tables[self._table_key(entity)].watermark

    def load_watermark_state(self, entity: EntityConfig) -> WatermarkState | None:
        with self._lock:
            tables = self._tables[self._table_key(entity)]
            if tables.watermark is None:
                return None
            return WatermarkState(
                entity=entity.name, watermark=tables.watermark, updated_at=tables.watermark_updated_at
            )

    def load_rejections(self, entity: EntityConfig) -> list[RejectedRecord]:
        with self._lock:
            return list(self._tables[self._table_key(entity)].rejections)

    def current_rows(self, entity: EntityConfig) -> dict[str, CurrentRecord]:
        """Committed current-state rows keyed by business key."""
        with self._lock:
            return dict(self._tables[self._table_key(entity)].current)

    def versions(self, entity: EntityConfig) -> dict[str, list[VersionedRecord]]:
        """Committed versions keyed by business key, oldest first."""
        with self._lock:
            tables = self._tables[self._table_key(entity)]
            return {
                key: sorted(versions, key=lambda v: v.valid_from)
                for key, versions in tables.versions.items()
            }

    @contextmanager
    def transaction(self, entity: EntityConfig):
        table_key = self._table_key(entity)
        with self._lock:
            staged = copy.deepcopy(self._tables[table_key])

        tx = _InMemoryTransaction(entity, staged, self._maybe_fail)
        try:
            yield tx
        except BaseException:
            self.rollbacks += 1
            raise

        if tx.rollback_only:
            self.rollbacks += 1
            return

        try:
            self._maybe_fail("commit")
            self._check_partitions(entity, staged)
        except StoreError:
            self.rollbacks += 1
            raise
        with self._lock:
            self._tables[table_key] = staged
            self.commits += 1

    @staticmethod
    def _table_key(entity: EntityConfig) -> tuple[str, str]:
        return (entity.namespace, entity.name)

    @staticmethod
    def _check_partitions(entity: EntityConfig, tables: _EntityTables) -> None:
        for key, versions in tables.versions.items():
            problems = check_partition(versions, entity.far_future)
            if problems:
                raise StoreError(f"{entity.name}: versions of {key} do not partition time: {'; '.join(problems)}")


class _InMemoryTransaction(StoreTransaction):
    """Transaction writing into a staged copy of one entity's tables."""

    def __init__(self, entity: EntityConfig, tables: _EntityTables, maybe_fail):
        super().__init__(entity)
        self._tables = tables
        self._maybe_fail = maybe_fail

    def load_watermark(self) -> datetime | None:
        self._maybe_fail("load_watermark")
        return self._tables.watermark

    def load_current(self, keys: list[str]) -> dict[str, CurrentRecord]:
        self._maybe_fail("load_current")
        return {key: self._tables.current[key] for key in keys if key in self._tables.current}

    def load_versions(self, keys: list[str]) -> dict[str, list[VersionedRecord]]:
        self._maybe_fail("load_versions")
        return {
            key: sorted(self._tables.versions[key], key=lambda v: v.valid_from)
            for key in keys
            if key in self._tables.versions
        }

    def upsert_current(self, rows: list[CurrentRecord]) -> int:
        self._maybe_fail("upsert_current")
        for row in rows:
            self._tables.current[row.business_key] = row
        return len(rows)

    def close_versions(self, versions: list[VersionedRecord]) -> int:
        self._maybe_fail("close_versions")
        updated = 0
        for closed in versions:
            stored = self._tables.versions.get(closed.business_key, [])
            for idx, version in enumerate(stored):
                if version.valid_from == closed.valid_from:
                    stored[idx] = version.model_copy(
                        update={"valid_to": closed.valid_to, "is_current": closed.is_current}
                    )
                    updated += 1
                    break
            else:
                raise StoreError(
                    f"{self.entity.name}: no version of {closed.business_key} "
                    f"starting {closed.valid_from.isoformat()} to close"
                )
        return updated

    def insert_versions(self, versions: list[VersionedRecord]) -> int:
        self._maybe_fail("insert_versions")
        for version in versions:
            stored = self._tables.versions.setdefault(version.business_key, [])
            if any(existing.valid_from == version.valid_from for existing in stored):
                raise StoreError(
                    f"{self.entity.name}: duplicate version of {version.business_key} "
                    f"starting {version.valid_from.isoformat()}"
                )
            stored.append(version.model_copy(update={"version_id": self._tables.next_id}))
            self._tables.next_id += 1
        return len(versions)

    def save_rejections(self, records: list[RejectedRecord]) -> int:
        self._maybe_fail("save_rejections")
        for record in records:
            self._tables.rejections.append(
                record.model_copy(update={"rejection_id": len(self._tables.rejections) + 1})
            )
        return len(records)

    def save_watermark(self, watermark: datetime) -> None:
        self._maybe_fail("save_watermark")
        if self._tables.watermark is None or watermark > self._tables.watermark:
            self._tables.watermark = watermark
        self._tables.watermark_updated_at = utcnow()
