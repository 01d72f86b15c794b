"""
Domain: point-in-time reconstruction from the event log (pure).

Entities only hold their current values. Any past value is recovered by
walking the field's events newest first and undoing every change made after
the instant of interest:

    current ──(undo e3)──> e3.previous ──(undo e2)──> e2.previous ── stop at e1 (<= as_of)

All functions take the instant explicitly; none of them reads the clock.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from .event import Event, EventEntity, sort_newest_first
from .time import require_utc_timestamp


def normalize_value(value: Optional[str]) -> Optional[str]:
    """Trimmed string, with the empty string meaning "unset"."""

    if value is None:
        return None
    trimmed = str(value).strip()
    return trimmed or None


def value_as_of(
    events: Iterable[Event],
    current_value: Optional[str],
    as_of: datetime,
    *,
    entity: Optional[EventEntity] = None,
    field: Optional[str] = None,
    comment: Optional[str] = None,
    floor: Optional[str] = None,
) -> Optional[str]:
    """
    Value of a field as it stood at `as_of`.

    Args:
        events: Events of one sale, in any order. Only events matching the
            entity/field/comment filters take part in the walk.
        current_value: The value stored on the entity now.
        as_of: Instant to reconstruct (UTC).
        floor: Returned when every matching event happened after `as_of`
            and the value before the oldest of them is unset.

    Returns:
        The normalized value, or None when the field was unset.

    Examples:
        Plan set to FULL at 10:00 and changed to MAYOR at 12:00:

        - as_of 11:00 -> "FULL"
        - as_of 09:00 -> None (before the first assignment)
        - as_of 13:00 -> "MAYOR" (the current value)
    """

    require_utc_timestamp("as_of", as_of)

    value = normalize_value(current_value)
    rewound = False
    for event in sort_newest_first(list(events)):
        if not event.matches(entity=entity, field=field, comment=comment):
            continue
        if event.created_at <= as_of:
            return value
        value = normalize_value(event.previous_value)
        rewound = True

    if rewound and value is None:
        return normalize_value(floor)
    return value


def last_event_at(events: Iterable[Event], as_of: datetime) -> Optional[datetime]:
    """Timestamp of the newest event at or before `as_of`."""

    latest: Optional[datetime] = None
    for event in events:
        if event.created_at <= as_of and (latest is None or event.created_at > latest):
            latest = event.created_at
    return latest


def count_in_status_as_of(
    current_count: int,
    status_events: Iterable[Event],
    status: str,
    as_of: datetime,
) -> int:
    """
    Rewind an aggregate "sales currently in `status`" count to `as_of`.

    Every SALE.status event after `as_of` that entered `status` is undone (-1)
    and every one that left it is undone (+1).
    """

    count = current_count
    for event in status_events:
        if event.created_at <= as_of:
            continue
        if not event.matches(entity=EventEntity.SALE, field="status"):
            continue
        if normalize_value(event.new_value) == status:
            count -= 1
        if normalize_value(event.previous_value) == status:
            count += 1
    return max(0, count)
