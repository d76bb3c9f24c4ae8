"""
RunSummary model reporting the outcome of one entity run.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class RunSummary(BaseModel):
    """
    Per-run counts for one entity.

    Attributes:
        entity: Entity name
        status: "success", "noop" (nothing new), "dry_run" or "failed"
        records_read: Rows read from the source
        rejected_by_kind: Rejected record counts keyed by rejection kind
        stale_records: Records at or below the watermark
        duplicate_records: Records superseded by a newer record with the same key
        inserted: New current-state rows
        updated: Overwritten current-state rows
        unchanged: Records identical to persisted state
        versions_opened: New versions inserted
        versions_closed: Current versions superseded
        watermark_before: Watermark read at the start of the run
        watermark_after: Watermark after the run (unchanged unless committed)
        attempts: Commit attempts made
        duration_seconds: Wall-clock duration of the run
        error: Error message for failed runs
    """

    entity: str
    status: Literal["success", "noop", "dry_run", "failed"] = "success"
    records_read: int = 0
    rejected_by_kind: dict[str, int] = Field(default_factory=dict)
    stale_records: int = 0
    duplicate_records: int = 0
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    versions_opened: int = 0
    versions_closed: int = 0
    watermark_before: datetime | None = None
    watermark_after: datetime | None = None
    attempts: int = 0
    duration_seconds: float = 0.0
    error: str | None = None

    @property
    def rejected(self) -> int:
        """Total rejected records across kinds."""
        return sum(self.rejected_by_kind.values())

    @property
    def written(self) -> int:
        """Rows written to the entity's output table."""
        return self.inserted + self.updated + self.versions_opened

    def as_log_fields(self) -> dict[str, Any]:
        """Flatten the summary for structured logging."""
        fields = self.model_dump(mode="json", exclude={"rejected_by_kind"})
        fields["rejected"] = self.rejected
        for kind, count in self.rejected_by_kind.items():
            fields[f"rejected_{kind}"] = count
        return fields
