"""
RejectedRecord model representing a record held back for reconciliation.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from historize.core.timeutil import utcnow


class RejectedRecord(BaseModel):
    """
    A record that was not applied, with detailed error context.

    Attributes:
        rejection_id: Store-assigned identifier
        entity: Entity the record belongs to
        business_key: Encoded business key (may be missing if malformed)
        change_timestamp: Change timestamp (may be missing if malformed)
        raw_payload: Original row as read from the source
        kind: "validation" or "ordering_violation"
        failed_rules: Names of the checks that failed
        error_messages: Corresponding error messages
        rejected_at: When the record was rejected
        reviewed: Whether an analyst has reconciled it
    """

    rejection_id: int | None = None
    entity: str
    business_key: str | None = None
    change_timestamp: datetime | None = None
    raw_payload: dict[str, Any]
    kind: Literal["validation", "ordering_violation"]
    failed_rules: list[str] = Field(..., min_length=1)
    error_messages: list[str] = Field(..., min_length=1)
    rejected_at: datetime = Field(default_factory=utcnow)
    reviewed: bool = False

    @field_validator("error_messages")
    @classmethod
    def check_arrays_same_length(cls, v, info):
        """Validate that failed_rules and error_messages have the same length."""
        failed_rules = info.data.get("failed_rules", [])
        if len(v) != len(failed_rules):
            raise ValueError(
                f"error_messages length ({len(v)}) must match failed_rules length ({len(failed_rules)})"
            )
        return v

    class Config:
        json_schema_extra = {
            "example": {
                "entity": "dim_bookings",
                "business_key": '["B1001"]',
                "change_timestamp": "2024-02-01T00:00:00Z",
                "raw_payload": {"BOOKING_ID": "B1001", "CREATED_AT": "2024-02-01"},
                "kind": "ordering_violation",
                "failed_rules": ["version_ordering"],
                "error_messages": [
                    "change timestamp 2024-02-01T00:00:00+00:00 does not follow "
                    "current version starting 2024-03-01T00:00:00+00:00"
                ],
                "reviewed": False,
            }
        }
