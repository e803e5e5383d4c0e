"""
Utility functions for the application.
"""
import math
from datetime import datetime, timezone
from typing import Any, Optional

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# One week
MAX_INTERVAL_MINUTES = 7 * 24 * 60


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalise a datetime read back from the database to aware UTC.

    SQLite hands back naive values even for timezone-aware columns; every
    timestamp we write is UTC so a naive value is interpreted as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_valid_interval(minutes: Any) -> bool:
    """A finite, positive number of minutes no longer than a week. Bools are not numbers here."""
    if isinstance(minutes, bool) or not isinstance(minutes, (int, float)):
        return False
    return math.isfinite(minutes) and 0 < minutes <= MAX_INTERVAL_MINUTES
