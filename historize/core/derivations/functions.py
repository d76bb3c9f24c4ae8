"""
Pure derived-field functions.

Every function is deterministic and side-effect free: the same inputs
always give the same output. Null inputs propagate to a null output, as
they would in SQL.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Sequence


def to_decimal(value: Any) -> Decimal:
    """
    Convert a numeric value to Decimal without binary float artifacts.

    Raises:
        ValueError: If the value is not numeric
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError("boolean is not numeric")
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))
    try:
        return Decimal(str(value).strip())
    except InvalidOperation as e:
        raise ValueError(f"'{value}' is not numeric") from e


def round_decimal(value: Decimal, precision: int) -> Decimal:
    """Round half away from zero to ``precision`` decimal places."""
    return value.quantize(Decimal(1).scaleb(-precision), rounding=ROUND_HALF_UP)


def multiply(left: Any, right: Any, precision: int) -> Decimal | None:
    """
    Product of two numeric values rounded to fixed precision.

    >>> multiply(3, 4, 2)
    Decimal('12.00')
    """
    if left is None or right is None:
        return None
    return round_decimal(to_decimal(left) * to_decimal(right), precision)


def add(*values: Any, precision: int | None = None) -> Decimal | None:
    """Sum of numeric values, optionally rounded to fixed precision."""
    if any(value is None for value in values):
        return None
    total = sum((to_decimal(value) for value in values), Decimal(0))
    if precision is not None:
        return round_decimal(total, precision)
    return total


def bucket(value: Any, thresholds: Sequence[tuple[Any, str]], default: str) -> str | None:
    """
    Label of the first threshold the value falls below.

    Thresholds are checked in the given order; the first with
    ``value < upper_bound`` wins, otherwise ``default`` is returned.

    >>> bucket(150, [(100, "low"), (200, "medium")], "high")
    'medium'
    """
    if value is None:
        return None
    number = to_decimal(value)
    for upper_bound, label in thresholds:
        if number < to_decimal(upper_bound):
            return label
    return default
