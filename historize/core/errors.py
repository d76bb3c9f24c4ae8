"""
Exception hierarchy for the historization engine.

Record-level errors (ValidationError, DerivationError, OrderingViolation)
are recovered per record and reported in the run summary. Run-level errors
(ConfigurationError, TransactionError) halt processing of the entity.
"""

from datetime import datetime


class HistorizeError(Exception):
    """Base exception for all engine failures."""


class ValidationError(HistorizeError):
    """Raised when a single record fails a structural check."""

    def __init__(self, rule_name: str, field_name: str, message: str):
        self.rule_name = rule_name
        self.field_name = field_name
        self.message = message
        super().__init__(f"[{rule_name}] {field_name}: {message}")


class DerivationError(ValidationError):
    """Raised when a derived field cannot be computed from a record."""


class OrderingViolation(HistorizeError):
    """
    Incoming change timestamp does not follow the history of its key.

    Applying such a record would create a negative-width or overlapping
    validity interval, or rewrite history the watermark has already
    passed, so it is rejected for manual reconciliation.
    """

    kind = "ordering_violation"

    def __init__(
        self,
        entity: str,
        business_key: str,
        change_timestamp: datetime,
        boundary: datetime,
        boundary_name: str = "current version starting",
    ):
        self.entity = entity
        self.business_key = business_key
        self.change_timestamp = change_timestamp
        self.boundary = boundary
        super().__init__(
            f"{entity}: record {business_key} changed at {change_timestamp.isoformat()} "
            f"does not follow {boundary_name} {boundary.isoformat()}"
        )


class ConfigurationError(HistorizeError):
    """Raised for an invalid entity declaration, before any record is read."""

    kind = "configuration"

    def __init__(self, entity: str | None, message: str):
        self.entity = entity
        self.message = message
        prefix = entity or "<config>"
        super().__init__(f"{prefix}: {message}")


class StoreError(HistorizeError):
    """Raised by a table store when a persisted-state read or write fails."""


class TransactionError(HistorizeError):
    """
    Raised when a watermark read or a batch commit keeps failing.

    Nothing from the batch was committed and the watermark did not move.
    """

    kind = "transaction"

    def __init__(self, entity: str, message: str, attempts: int = 0):
        self.entity = entity
        self.message = message
        self.attempts = attempts
        super().__init__(f"{entity}: {message}")
