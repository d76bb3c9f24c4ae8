"""
Base validator interface for all structural checks.

All validators must inherit from BaseValidator and implement the validate() method.
"""

from abc import ABC, abstractmethod
from typing import Any


class BaseValidator(ABC):
    """
    Abstract base class for all validators.

    Each validator implements one structural check
    (required_field, type_check, column_count).
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        """
        Initialize validator.

        Args:
            field_name: Name of the field to validate
            parameters: Check-specific parameters (e.g., expected_type)
        """
        self.field_name = field_name
        self.parameters = parameters or {}

    @abstractmethod
    def validate(self, value: Any, record: dict[str, Any]) -> Any:
        """
        Validate a value against this check.

        Args:
            value: The field value to validate
            record: The entire row (for context-dependent validation)

        Returns:
            The value to keep, coerced where the check coerces

        Raises:
            ValidationError: If validation fails
        """

    @property
    @abstractmethod
    def rule_type(self) -> str:
        """Return the check type identifier."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(field={self.field_name}, params={self.parameters})"
