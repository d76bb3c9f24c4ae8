"""
Core data models for the historization engine.

All models use Pydantic for runtime validation and type safety.
"""

from .current_record import CurrentRecord
from .entity_config import (
    BucketThreshold,
    DerivedFieldConfig,
    EntityConfig,
    RetryPolicy,
    SourceOptions,
)
from .rejected_record import RejectedRecord
from .run_summary import RunSummary
from .source_record import SourceRecord
from .versioned_record import VersionedRecord
from .watermark import WatermarkState

__all__ = [
    "BucketThreshold",
    "CurrentRecord",
    "DerivedFieldConfig",
    "EntityConfig",
    "RejectedRecord",
    "RetryPolicy",
    "RunSummary",
    "SourceOptions",
    "SourceRecord",
    "VersionedRecord",
    "WatermarkState",
]
