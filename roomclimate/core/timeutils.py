"""
UTC helpers. Every timestamp is stored and compared in UTC.
"""

import re
from datetime import datetime, timezone

# Network servers send nanosecond fractions; datetime keeps microseconds
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime | None) -> datetime | None:
    """Attach UTC to naive values (SQLite returns them) and convert aware ones."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_timestamp(value: str) -> datetime:
    """
    Parse an ISO-8601 timestamp such as ``2024-05-01T10:15:30.123456789Z``.

    Raises:
        ValueError: if the value is not a valid timestamp
    """
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(r"\1", text)
    return as_utc(datetime.fromisoformat(text))


def isoformat(dt: datetime | None) -> str | None:
    """Serialize a timestamp as UTC ISO-8601, or None."""
    dt = as_utc(dt)
    return dt.isoformat() if dt else None
