"""UTC timestamp helpers.

Timestamps are stored as ISO-8601 strings with a fixed microsecond width so
that string comparison in DynamoDB conditions matches time order.
"""

import datetime as dt
from typing import Callable

Clock = Callable[[], dt.datetime]


def utc_now() -> dt.datetime:
    """Return the current time as an aware UTC datetime."""
    return dt.datetime.now(dt.UTC)


def to_iso(value: dt.datetime) -> str:
    """Serialize a datetime for storage, normalized to UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.UTC)
    return value.astimezone(dt.UTC).isoformat(timespec="microseconds")


def from_iso(value: str) -> dt.datetime:
    """Parse a stored timestamp back into an aware UTC datetime."""
    parsed = dt.datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.UTC)
    return parsed
