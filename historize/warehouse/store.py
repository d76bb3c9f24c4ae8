"""
Abstract persisted-table interface.

The engine reads watermarks, current-state rows and versions through a
TableStore and writes every change of one entity run through a single
StoreTransaction, so either the whole batch commits with its watermark
or nothing does.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import datetime

from historize.core.models import (
    CurrentRecord,
    EntityConfig,
    RejectedRecord,
    VersionedRecord,
    WatermarkState,
)


class StoreTransaction(ABC):
    """
    One atomic unit of reads and writes against an entity's tables.

    Implementations raise StoreError for failed reads or writes.
    """

    def __init__(self, entity: EntityConfig):
        self.entity = entity
        self.rollback_only = False

    def set_rollback_only(self) -> None:
        """Discard every write when the transaction ends (dry runs)."""
        self.rollback_only = True

    @abstractmethod
    def load_watermark(self) -> datetime | None:
        """Watermark as seen inside the transaction, None without prior state."""

    @abstractmethod
    def load_current(self, keys: list[str]) -> dict[str, CurrentRecord]:
        """Current-state rows for the given business keys."""

    @abstractmethod
    def load_versions(self, keys: list[str]) -> dict[str, list[VersionedRecord]]:
        """Every version of the given business keys, oldest first."""

    @abstractmethod
    def upsert_current(self, rows: list[CurrentRecord]) -> int:
        """Insert or overwrite current-state rows; returns rows written."""

    @abstractmethod
    def close_versions(self, versions: list[VersionedRecord]) -> int:
        """Persist valid_to/is_current of superseded versions; returns rows updated."""

    @abstractmethod
    def insert_versions(self, versions: list[VersionedRecord]) -> int:
        """Append new versions; returns rows inserted."""

    @abstractmethod
    def save_rejections(self, records: list[RejectedRecord]) -> int:
        """Store rejected records for reconciliation; returns rows inserted."""

    @abstractmethod
    def save_watermark(self, watermark: datetime) -> None:
        """Advance the watermark; a lower value never moves it back."""


class TableStore(ABC):
    """
    Persisted-state access for all entities.
    """

    def ensure_tables(self, entity: EntityConfig) -> None:
        """Provision the entity's tables; stores without DDL need nothing."""

    @abstractmethod
    def load_watermark(self, entity: EntityConfig) -> datetime | None:
        """Committed watermark of the entity, None without prior state."""

    @abstractmethod
    def load_watermark_state(self, entity: EntityConfig) -> WatermarkState | None:
        """Committed watermark with its last update time, None without prior state."""

    @abstractmethod
    def transaction(self, entity: EntityConfig) -> AbstractContextManager[StoreTransaction]:
        """
        Open a transaction for one entity.

        Commits when the block exits normally and rolls back when it raises
        or when the transaction was marked rollback-only.
        """

    @abstractmethod
    def load_rejections(self, entity: EntityConfig) -> list[RejectedRecord]:
        """Rejected records stored for the entity."""

    def close(self) -> None:
        """Release resources held by the store."""
