"""
Business-key encoding and content hashing for change detection.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable


def _json_default(value: Any) -> str:
    """Render non-JSON scalars deterministically."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return str(value)


def encode_key(values: Iterable[Any]) -> str:
    """
    Encode business key values as a single string.

    Values are stringified so that ``1`` read from one source and ``"1"``
    read from another address the same entity.
    """
    return json.dumps([_json_default(value) for value in values])


def content_checksum(payload: dict[str, Any], fields: list[str] | None = None) -> str:
    """
    Calculate MD5 checksum of the tracked part of a payload.

    Args:
        payload: Record payload
        fields: Fields to hash; the whole payload when empty or None

    Returns:
        Hexadecimal checksum string
    """
    if fields:
        data = {field_name: payload.get(field_name) for field_name in fields}
    else:
        data = payload
    data_str = json.dumps(data, sort_keys=True, default=_json_default)
    return hashlib.md5(data_str.encode()).hexdigest()
