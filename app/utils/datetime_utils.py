"""
Datetime utilities.

Provides timezone-aware datetime functions.
"""

import time
from datetime import UTC, datetime


def utc_now() -> datetime:
    """
    Get current UTC datetime with timezone info.

    Returns:
        Current datetime in UTC with timezone awareness
    """
    return datetime.now(UTC)


def epoch_ms() -> int:
    """Current time in milliseconds, same clock as dramatiq message timestamps."""
    return int(time.time() * 1000)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes (as returned by SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value
