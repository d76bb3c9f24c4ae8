"""
Record validation engine.

Applies the structural checks an entity declares to raw source rows and
produces typed payloads for the rows that pass.
"""

from typing import Any

from pydantic import BaseModel, Field

from historize.core.errors import ValidationError
from historize.core.models import EntityConfig

from .base_validator import BaseValidator
from .column_count_validator import CORRUPT_RECORD_COLUMN, ColumnCountValidator
from .required_field_validator import RequiredFieldValidator
from .type_validator import TypeValidator


class RowValidationResult(BaseModel):
    """
    Outcome of validating one raw row (ephemeral).

    Attributes:
        passed: Overall validation status
        payload: Typed row when passed, None otherwise
        failed_rules: Checks that failed, as "<rule_type>:<field>"
        error_messages: Corresponding error messages
    """

    passed: bool
    payload: dict[str, Any] | None = None
    failed_rules: list[str] = Field(default_factory=list)
    error_messages: list[str] = Field(default_factory=list)


class RecordValidator:
    """
    Orchestrates structural checks on raw rows for one entity.

    Order of checks:
    1. Column count (only when the entity declares its columns)
    2. Required business key fields and change timestamp
    3. Type coercion per declared column type; the change timestamp is
       always coerced to a timestamp
    """

    def __init__(self, config: EntityConfig):
        """
        Initialize the validator for an entity.

        Args:
            config: Entity configuration
        """
        self.config = config
        self.column_validator: ColumnCountValidator | None = None
        if config.columns is not None:
            self.column_validator = ColumnCountValidator(
                config.columns,
                tolerate_mismatch=config.source.tolerate_column_mismatch,
            )

        self.required_validators: list[BaseValidator] = [
            RequiredFieldValidator(field_name)
            for field_name in [*config.business_key, config.change_timestamp]
        ]

        column_types = dict(config.column_types)
        column_types.setdefault(config.change_timestamp, "timestamp")
        self.type_validators: list[BaseValidator] = [
            TypeValidator(field_name, {"expected_type": type_name})
            for field_name, type_name in column_types.items()
        ]

    def validate_row(self, row: dict[str, Any]) -> RowValidationResult:
        """
        Validate a raw row.

        Args:
            row: Raw field values as read from the source

        Returns:
            RowValidationResult with the typed payload when the row passed
        """
        try:
            payload = self._check_shape(row)
        except ValidationError as e:
            return RowValidationResult(
                passed=False,
                failed_rules=[f"{e.rule_name}:{e.field_name}"],
                error_messages=[e.message],
            )

        failures: list[ValidationError] = []
        for validator in self.required_validators:
            try:
                validator.validate(payload.get(validator.field_name), payload)
            except ValidationError as e:
                failures.append(e)

        for validator in self.type_validators:
            if validator.field_name not in payload:
                continue
            try:
                payload[validator.field_name] = validator.validate(
                    payload[validator.field_name], payload
                )
            except ValidationError as e:
                failures.append(e)

        if failures:
            return RowValidationResult(
                passed=False,
                failed_rules=[f"{e.rule_name}:{e.field_name}" for e in failures],
                error_messages=[e.message for e in failures],
            )

        return RowValidationResult(passed=True, payload=payload)

    def _check_shape(self, row: dict[str, Any]) -> dict[str, Any]:
        """Apply the column-count check and drop reader bookkeeping columns."""
        if self.column_validator is not None:
            return self.column_validator.validate(None, row)

        if row.get(CORRUPT_RECORD_COLUMN) and not self.config.source.tolerate_column_mismatch:
            raise ValidationError(
                rule_name="column_count",
                field_name="*",
                message="Row could not be split into columns"
            )
        return {key: value for key, value in row.items() if key != CORRUPT_RECORD_COLUMN}

    def get_check_summary(self) -> dict[str, Any]:
        """Summarize the checks applied to every row."""
        return {
            "column_count": self.column_validator is not None,
            "required_fields": [v.field_name for v in self.required_validators],
            "typed_fields": {v.field_name: v.parameters["expected_type"] for v in self.type_validators},
        }
