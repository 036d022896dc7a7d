"""Time utilities for consistent timestamp handling."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def from_unix_seconds(value: str | int | float) -> datetime:
    """Convert a unix-seconds timestamp (Cloud API sends strings) to UTC datetime.

    Raises:
        ValueError: If value is not a number.
    """
    return datetime.fromtimestamp(int(value), tz=timezone.utc)
