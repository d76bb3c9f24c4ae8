"""
VersionedRecord model representing one version of a historized entity.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, model_validator


class VersionedRecord(BaseModel):
    """
    One time-bounded version of a business key.

    Versions are append-only. Only valid_to and is_current change, and only
    when the version is superseded.

    Attributes:
        version_id: Store-assigned identifier (None until persisted)
        business_key: Encoded business key
        payload: Projected record payload
        checksum: Content hash over the tracked attributes
        valid_from: Start of validity (inclusive)
        valid_to: End of validity (exclusive), far-future sentinel while current
        is_current: Whether this is the open version for the key
    """

    version_id: int | None = None
    business_key: str = Field(..., min_length=1)
    payload: dict[str, Any]
    checksum: str
    valid_from: datetime
    valid_to: datetime
    is_current: bool = True

    @model_validator(mode="after")
    def check_interval(self) -> "VersionedRecord":
        """Validate that the validity interval has positive width."""
        if self.valid_to <= self.valid_from:
            raise ValueError(
                f"valid_to ({self.valid_to}) must be after valid_from ({self.valid_from})"
            )
        return self

    def closed_at(self, valid_to: datetime) -> "VersionedRecord":
        """Return a copy of this version closed at ``valid_to``."""
        return self.model_copy(update={"valid_to": valid_to, "is_current": False})
