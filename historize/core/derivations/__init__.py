"""
Derived-field functions and the engine that applies them to records.
"""

from .derivation_engine import DerivationEngine
from .functions import add, bucket, multiply, round_decimal, to_decimal

__all__ = [
    "DerivationEngine",
    "add",
    "bucket",
    "multiply",
    "round_decimal",
    "to_decimal",
]
