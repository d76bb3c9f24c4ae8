"""
RequiredFieldValidator - ensures a field is present and not null/empty.
"""

from typing import Any

from historize.core.errors import ValidationError

from .base_validator import BaseValidator


class RequiredFieldValidator(BaseValidator):
    """
    Validates that a required field is present and not null/empty.

    Used for business key fields and the change timestamp. Fails if:
    - Field is missing from the row
    - Field value is None
    - Field value is an empty or whitespace-only string
    """

    def validate(self, value: Any, record: dict[str, Any]) -> Any:
        if self.field_name not in record:
            raise ValidationError(
                rule_name="required_field",
                field_name=self.field_name,
                message="Field is missing from record"
            )

        if value is None:
            raise ValidationError(
                rule_name="required_field",
                field_name=self.field_name,
                message="Field value is null"
            )

        if isinstance(value, str) and value.strip() == "":
            raise ValidationError(
                rule_name="required_field",
                field_name=self.field_name,
                message="Field value is empty string"
            )

        return value

    @property
    def rule_type(self) -> str:
        return "required_field"
