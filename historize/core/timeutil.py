"""
Timestamp helpers shared by the reader, merger and historizer.

All timestamps handled by the engine are timezone-aware UTC.
"""

from datetime import date, datetime, timezone

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
FAR_FUTURE = datetime(9999, 12, 31, 23, 59, 59, tzinfo=timezone.utc)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value) -> datetime:
    """
    Parse a change timestamp from a source value.

    Accepts datetimes, dates and ISO-8601 strings (``2024-03-01``,
    ``2024-03-01 10:15:00``, ``2024-03-01T10:15:00Z``).

    Raises:
        ValueError: If the value cannot be interpreted as a timestamp
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("empty timestamp")
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return ensure_utc(datetime.fromisoformat(text))
    raise ValueError(f"unsupported timestamp value of type {type(value).__name__}")
