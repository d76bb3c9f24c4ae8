"""
Ephemeral projection step.

Selects and renames output fields in memory. The result is never
materialized on its own; it feeds the merge or the historization step.
"""

from typing import Any

from historize.core.errors import ValidationError


def project(payload: dict[str, Any], projection: dict[str, str] | None) -> dict[str, Any]:
    """
    Select and rename fields.

    Args:
        payload: Enriched record payload
        projection: Output field name -> input field name, in output order;
            None keeps every field

    Returns:
        The projected payload

    Raises:
        ValidationError: If a projected input field is absent from the payload
    """
    if projection is None:
        return dict(payload)

    missing = [source for source in projection.values() if source not in payload]
    if missing:
        raise ValidationError(
            rule_name="projection",
            field_name=",".join(missing),
            message=f"Projected fields not present in record: {missing}"
        )
    return {output: payload[source] for output, source in projection.items()}
