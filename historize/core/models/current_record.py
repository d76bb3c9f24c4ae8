"""
CurrentRecord model representing one row of a current-state table.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from historize.core.timeutil import utcnow


class CurrentRecord(BaseModel):
    """
    Latest state of a business key for a non-historized entity.

    Attributes:
        business_key: Encoded business key (PK)
        payload: Projected record payload
        checksum: Content hash used to skip unchanged rewrites
        change_timestamp: Change timestamp of the record that produced the row
        loaded_at: When the row was written
    """

    business_key: str = Field(..., min_length=1)
    payload: dict[str, Any]
    checksum: str
    change_timestamp: datetime
    loaded_at: datetime = Field(default_factory=utcnow)
