"""Timestamp helpers for the notifier.

Audit logs and the persisted state document use ISO 8601 UTC strings; the
notification email shows local wall-clock time.
"""

import time
from datetime import UTC, datetime


def now_iso() -> str:
    """Get the current UTC timestamp in ISO 8601 format.

    Returns:
        Current timestamp as ISO 8601 string (YYYY-MM-DDTHH:MM:SSZ).

    Examples:
        >>> ts = now_iso()
        >>> ts  # e.g., "2026-10-19T14:30:22Z"
    """
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def today_iso() -> str:
    """Get today's UTC date in ISO format (YYYY-MM-DD), used to name daily log files."""
    return datetime.now(UTC).strftime("%Y-%m-%d")


def epoch_ms() -> int:
    """Milliseconds since the epoch."""
    return int(time.time() * 1000)


def format_display_timestamp(dt: datetime) -> str:
    """Format a datetime for humans, converted to the local timezone.

    Naive datetimes are assumed to be UTC.

    Examples:
        >>> format_display_timestamp(datetime(2026, 2, 4, 14, 30, tzinfo=UTC))
        '2026-02-04 14:30:00'  # on a UTC host
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone().strftime("%Y-%m-%d %H:%M:%S")
