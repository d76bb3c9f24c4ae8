"""
SourceRecord model representing one validated incoming record (ephemeral).
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class SourceRecord(BaseModel):
    """
    A validated record read from the staging area.

    Note: SourceRecord is an in-memory structure. It is persisted only as a
    current-state row or as a version of a historized entity.

    Attributes:
        business_key: Encoded business key (see change_detection.encode_key)
        change_timestamp: When the record was created or last updated upstream
        payload: Typed field values after coercion
        position: Zero-based input order within the batch
        line_number: Source line number, when known
    """

    business_key: str = Field(..., min_length=1)
    change_timestamp: datetime
    payload: dict[str, Any]
    position: int = Field(0, ge=0)
    line_number: int | None = None

    class Config:
        json_schema_extra = {
            "example": {
                "business_key": '["B1001"]',
                "change_timestamp": "2024-03-01T10:15:00Z",
                "payload": {
                    "BOOKING_ID": "B1001",
                    "NIGHTS_BOOKED": 3,
                    "BOOKING_AMOUNT": "120.50",
                },
                "position": 0,
                "line_number": 2,
            }
        }
