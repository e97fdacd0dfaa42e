"""
Time helpers shared by models and the ledger engine.
"""

from datetime import date, datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Timezone-aware current UTC time (microsecond resolution)."""
    return datetime.now(timezone.utc)


def today() -> date:
    return utcnow().date()


def to_naive_utc(value: Optional[datetime]) -> datetime:
    """
    Normalize a timestamp for comparisons.

    SQLite hands back naive values while freshly created rows hold aware
    ones; both are compared as naive UTC. Missing values sort first.
    """
    if value is None:
        return datetime.min
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value
