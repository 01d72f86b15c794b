"""
Domain time utilities (pure).

Centralized timestamp validation and elapsed-time helpers.

Every rule in the domain receives its reference instant explicitly; nothing
here reads the wall clock.
"""

from __future__ import annotations

from datetime import datetime, timedelta

_HOUR = timedelta(hours=1)
_DAY = timedelta(days=1)


def require_utc_timestamp(name: str, value: datetime) -> None:
    """
    Enforces that timestamps are UTC.

    Invariants:
    - Timestamps must be timezone-aware.
    - Timestamps must have UTC offset 0.
    """

    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError(f"{name} must be timezone-aware (UTC)")
    if value.utcoffset() != timedelta(0):
        raise ValueError(f"{name} must be a UTC timestamp (offset 0)")


def hours_between(start: datetime, end: datetime) -> float:
    """Fractional hours from start to end (negative when end precedes start)."""

    return (end - start) / _HOUR


def days_between(start: datetime, end: datetime) -> float:
    """Fractional days from start to end (negative when end precedes start)."""

    return (end - start) / _DAY
