"""
Structural record validators.

Provides validators for required fields, type coercion and column counts,
and the engine that applies them to raw source rows.
"""

from historize.core.errors import ValidationError

from .base_validator import BaseValidator
from .column_count_validator import CORRUPT_RECORD_COLUMN, ColumnCountValidator
from .record_validator import RecordValidator, RowValidationResult
from .required_field_validator import RequiredFieldValidator
from .type_validator import TypeValidator

__all__ = [
    "BaseValidator",
    "CORRUPT_RECORD_COLUMN",
    "ColumnCountValidator",
    "RecordValidator",
    "RequiredFieldValidator",
    "RowValidationResult",
    "TypeValidator",
    "ValidationError",
]
