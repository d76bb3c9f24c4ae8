"""
Tolerant conversion of raw rows into validated source records.
"""

from typing import Any, Callable, Iterable, Iterator, Mapping

from historize.core.models import EntityConfig, RejectedRecord, SourceRecord
from historize.core.validators import RecordValidator
from historize.incremental.change_detection import encode_key
from historize.observability.logger import get_logger
from historize.observability.metrics import record_validation_failure

logger = get_logger(__name__)


class RecordReader:
    """
    Turns raw rows into SourceRecords lazily.

    Rows failing a structural check are not fatal: each becomes a
    RejectedRecord of kind "validation", is logged with a warning and
    handed to ``on_reject``, and the read continues with the next row.
    """

    def __init__(
        self,
        config: EntityConfig,
        on_reject: Callable[[RejectedRecord], None] | None = None,
    ):
        """
        Initialize the reader.

        Args:
            config: Entity configuration
            on_reject: Called with every rejected row, in input order
        """
        self.config = config
        self.validator = RecordValidator(config)
        self.on_reject = on_reject
        self.rejections: list[RejectedRecord] = []
        self.rows_read = 0

    def read(
        self,
        rows: Iterable[Mapping[str, Any]],
        first_line: int | None = None,
    ) -> Iterator[SourceRecord]:
        """
        Validate rows one at a time.

        Args:
            rows: Raw rows (consumed once)
            first_line: Source line number of the first row, when known

        Yields:
            SourceRecord for every row that passed
        """
        for position, row in enumerate(rows):
            self.rows_read += 1
            raw = dict(row)
            line_number = first_line + position if first_line is not None else None

            result = self.validator.validate_row(raw)
            if not result.passed:
                self._reject(raw, result.failed_rules, result.error_messages, line_number)
                continue

            payload = result.payload
            yield SourceRecord(
                business_key=encode_key(payload[field] for field in self.config.business_key),
                change_timestamp=payload[self.config.change_timestamp],
                payload=payload,
                position=position,
                line_number=line_number,
            )

    def _reject(
        self,
        raw: dict[str, Any],
        failed_rules: list[str],
        error_messages: list[str],
        line_number: int | None,
    ) -> None:
        business_key = None
        key_values = [raw.get(field) for field in self.config.business_key]
        if all(value not in (None, "") for value in key_values):
            business_key = encode_key(key_values)

        rejected = RejectedRecord(
            entity=self.config.name,
            business_key=business_key,
            raw_payload=raw,
            kind="validation",
            failed_rules=failed_rules,
            error_messages=error_messages,
        )
        self.rejections.append(rejected)

        for rule in failed_rules:
            rule_type, _, field_name = rule.partition(":")
            record_validation_failure(self.config.name, rule_type, field_name)

        logger.warning(
            f"Rejected row of {self.config.name}: {'; '.join(error_messages)}",
            extra={
                "entity": self.config.name,
                "business_key": business_key,
                "line_number": line_number,
                "failed_rules": failed_rules,
            },
        )

        if self.on_reject is not None:
            self.on_reject(rejected)
