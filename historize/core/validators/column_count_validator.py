"""
ColumnCountValidator - checks a row against the declared column list.
"""

from typing import Any

from historize.core.errors import ValidationError

from .base_validator import BaseValidator

# Column the Spark CSV reader fills for rows it could not split cleanly
CORRUPT_RECORD_COLUMN = "_corrupt_record"


class ColumnCountValidator(BaseValidator):
    """
    Validates that a row carries exactly the declared columns.

    A row fails if the reader flagged it as corrupt, if a declared column is
    absent, or if it has undeclared columns. With ``tolerate_mismatch`` the
    row is kept: absent columns read as null and extras are dropped.
    """

    def __init__(self, columns: list[str], tolerate_mismatch: bool = False):
        super().__init__("*", {"columns": columns, "tolerate_mismatch": tolerate_mismatch})
        self.columns = list(columns)
        self.tolerate_mismatch = tolerate_mismatch

    def validate(self, value: Any, record: dict[str, Any]) -> dict[str, Any]:
        """
        Validate the shape of the whole row.

        Args:
            value: Unused; the check applies to the whole row
            record: The raw row

        Returns:
            The row restricted to the declared columns

        Raises:
            ValidationError: If the shape differs and mismatches are not tolerated
        """
        corrupt = record.get(CORRUPT_RECORD_COLUMN)
        present = [key for key in record if key != CORRUPT_RECORD_COLUMN]
        missing = [column for column in self.columns if column not in record]
        extra = [key for key in present if key not in self.columns]

        if (corrupt or missing or extra) and not self.tolerate_mismatch:
            if corrupt:
                message = "Row could not be split into the declared columns"
            else:
                message = f"Expected {len(self.columns)} columns, got {len(present)}"
                if missing:
                    message += f"; missing {missing}"
                if extra:
                    message += f"; unexpected {extra}"
            raise ValidationError(
                rule_name="column_count",
                field_name=self.field_name,
                message=message
            )

        return {column: record.get(column) for column in self.columns}

    @property
    def rule_type(self) -> str:
        return "column_count"
