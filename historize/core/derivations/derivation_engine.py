"""
Derivation engine applying configured derived fields to record payloads.
"""

from typing import Any, Callable

from historize.core.errors import DerivationError
from historize.core.models import DerivedFieldConfig

from .functions import add, bucket, multiply

Derivation = Callable[[dict[str, Any]], Any]


def _build_multiply(config: DerivedFieldConfig) -> Derivation:
    left, right = config.inputs
    return lambda payload: multiply(payload.get(left), payload.get(right), config.precision)


def _build_sum(config: DerivedFieldConfig) -> Derivation:
    return lambda payload: add(
        *(payload.get(field_name) for field_name in config.inputs),
        precision=config.precision,
    )


def _build_bucket(config: DerivedFieldConfig) -> Derivation:
    (field_name,) = config.inputs
    thresholds = [(threshold.upper_bound, threshold.label) for threshold in config.thresholds]
    return lambda payload: bucket(payload.get(field_name), thresholds, config.default)


class DerivationEngine:
    """
    Evaluates derived fields in declaration order.

    Later derivations may read fields produced by earlier ones, so
    ``TOTAL_AMOUNT`` can sum a ``TOTAL_BOOKING_AMOUNT`` derived just before it.
    """

    DERIVATION_REGISTRY: dict[str, Callable[[DerivedFieldConfig], Derivation]] = {
        "multiply": _build_multiply,
        "sum": _build_sum,
        "bucket": _build_bucket,
    }

    def __init__(self, derived_fields: list[DerivedFieldConfig]):
        """
        Initialize the engine.

        Args:
            derived_fields: Derived field declarations, in evaluation order
        """
        self.derived_fields = derived_fields
        self.derivations: list[tuple[DerivedFieldConfig, Derivation]] = []
        for config in derived_fields:
            builder = self.DERIVATION_REGISTRY.get(config.type)
            if builder is None:
                raise ValueError(f"Unknown derivation type: {config.type}")
            self.derivations.append((config, builder(config)))

    def derive(self, payload: dict[str, Any]) -> dict[str, Any]:
        """
        Compute every derived field for one record.

        Args:
            payload: Typed record payload (not modified)

        Returns:
            A new payload with the derived fields added

        Raises:
            DerivationError: If an input value is not numeric
        """
        derived = dict(payload)
        for config, derivation in self.derivations:
            try:
                derived[config.name] = derivation(derived)
            except (ValueError, TypeError, ArithmeticError) as e:
                raise DerivationError(
                    rule_name=f"derive_{config.type}",
                    field_name=config.name,
                    message=str(e),
                ) from e
        return derived
