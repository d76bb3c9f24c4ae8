"""
WatermarkState model representing the incremental-load high-water mark.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from historize.core.timeutil import EPOCH, utcnow


class WatermarkState(BaseModel):
    """
    Highest change timestamp committed for an entity.

    Attributes:
        entity: Entity name (PK)
        watermark: Maximum committed change timestamp
        updated_at: When the watermark was last advanced
    """

    entity: str = Field(..., min_length=1)
    watermark: datetime = EPOCH
    updated_at: datetime = Field(default_factory=utcnow)
