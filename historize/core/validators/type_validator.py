"""
TypeValidator - validates and coerces field types.
"""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from historize.core.errors import ValidationError
from historize.core.timeutil import parse_timestamp

from .base_validator import BaseValidator


class TypeValidator(BaseValidator):
    """
    Coerces a field to its declared type.

    Staged rows arrive as strings, so coercion is always attempted
    ("120.50" -> Decimal("120.50") for decimal). Empty strings become None
    for every type except string.

    Supported types:
    - int, decimal, float, string, bool, timestamp, date
    - Aliases: "integer", "double", "str", "boolean"
    """

    TYPE_MAPPING = {
        "integer": int,
        "int": int,
        "decimal": Decimal,
        "float": float,
        "double": float,
        "string": str,
        "str": str,
        "boolean": bool,
        "bool": bool,
        "timestamp": datetime,
        "date": date,
    }

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)

        expected_type = self.parameters.get("expected_type")
        if not expected_type:
            raise ValueError("TypeValidator requires 'expected_type' parameter")

        self.expected_type = self.TYPE_MAPPING.get(str(expected_type).lower())
        if not self.expected_type:
            raise ValueError(f"Unsupported type: {expected_type}")

    def validate(self, value: Any, record: dict[str, Any]) -> Any:
        # Nulls are the required_field check's concern
        if value is None:
            return None

        if isinstance(value, str) and value.strip() == "" and self.expected_type is not str:
            return None

        try:
            return self._coerce_type(value)
        except (ValueError, TypeError, InvalidOperation) as e:
            raise ValidationError(
                rule_name="type_check",
                field_name=self.field_name,
                message=f"Cannot coerce {type(value).__name__} to {self.expected_type.__name__}: {e}"
            ) from e

    def _coerce_type(self, value: Any) -> Any:
        """
        Coerce value to the expected type.

        Raises:
            ValueError: If coercion fails
        """
        if self.expected_type is bool:
            if isinstance(value, bool):
                return value
            if isinstance(value, str):
                if value.strip().lower() in ("true", "1", "yes", "t", "y"):
                    return True
                if value.strip().lower() in ("false", "0", "no", "f", "n"):
                    return False
                raise ValueError(f"Cannot parse '{value}' as boolean")
            return bool(value)

        if self.expected_type is datetime:
            return parse_timestamp(value)

        if self.expected_type is date:
            if isinstance(value, datetime):
                return value.date()
            if isinstance(value, date):
                return value
            return date.fromisoformat(str(value).strip()[:10])

        if self.expected_type is int:
            if isinstance(value, bool):
                raise TypeError("boolean is not an integer")
            if isinstance(value, float) and not value.is_integer():
                raise ValueError(f"{value} is not a whole number")
            return int(value.strip() if isinstance(value, str) else value)

        if self.expected_type is Decimal:
            if isinstance(value, float):
                return Decimal(str(value))
            return Decimal(value.strip() if isinstance(value, str) else value)

        if self.expected_type is str:
            return str(value)

        return self.expected_type(value)

    @property
    def rule_type(self) -> str:
        return "type_check"
