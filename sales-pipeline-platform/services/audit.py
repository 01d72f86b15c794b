"""
Audit event writer.

Every write to a sale, its steps, beneficiary, client or commercial terms goes
through these helpers so the event log stays complete:
- one event per changed field
- the sale id is always attached
- unchanged fields produce neither a write nor an event

Audit field names use the camelCase keys the log has always used
(`serviceRegion`, `fullName`, ...), not Python attribute names.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, TypeVar
from uuid import uuid4

from domain.event import Event, EventEntity, stringify
from repositories.store import SalesStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
E = TypeVar("E")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


def audit_field_name(attribute: str) -> str:
    """snake_case attribute -> camelCase audit key (`service_region` -> `serviceRegion`)."""

    head, *rest = attribute.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _same(previous: Any, new: Any) -> bool:
    return (stringify(previous) or "") == (stringify(new) or "")


@dataclass(frozen=True, slots=True)
class FieldChange:
    attribute: str
    previous: Any
    new: Any


def diff_fields(current: Any, patch: Mapping[str, Any]) -> list[FieldChange]:
    """
    Attributes of `patch` whose value differs from `current`.

    Values are compared in their stored (stringified) form, so `None` and an
    empty string are the same.
    """

    changes: list[FieldChange] = []
    for attribute, new in patch.items():
        previous = getattr(current, attribute) if current is not None else None
        if _same(previous, new):
            continue
        changes.append(FieldChange(attribute=attribute, previous=previous, new=new))
    return changes


def emit_event(
    store: SalesStore,
    *,
    sale_id: str,
    user_id: str,
    entity: EventEntity,
    field: str,
    at: datetime,
    previous_value: Any = None,
    new_value: Any = None,
    comment: Optional[str] = None,
) -> Event:
    event = Event(
        id=new_id(),
        sale_id=sale_id,
        user_id=user_id,
        entity=entity,
        field=field,
        created_at=at,
        previous_value=stringify(previous_value),
        new_value=stringify(new_value),
        comment=comment,
    )
    return store.append_event(event)


def update_with_events(
    store: SalesStore,
    *,
    entity: EventEntity,
    current: E,
    patch: Mapping[str, Any],
    write: Callable[[Mapping[str, Any]], E],
    sale_id: str,
    user_id: str,
    at: datetime,
    comment: Optional[str] = None,
    extra_changes: Optional[Mapping[str, Any]] = None,
) -> tuple[E, list[Event]]:
    """
    Write only the changed fields of `patch` and emit one event per field.

    Args:
        write: Persists a mapping of attribute -> value and returns the
            updated entity (e.g. `lambda ch: store.update_client(id, ch)`).
        extra_changes: Written along with the changed fields but not audited
            (bookkeeping such as `updated_at`).

    Returns:
        (entity after the write, emitted events). When nothing changed,
        `current` is returned untouched and no event is emitted.
    """

    changes = diff_fields(current, patch)
    if not changes:
        return current, []

    payload = {change.attribute: change.new for change in changes}
    if extra_changes:
        payload.update(extra_changes)
    updated = write(payload)

    events = [
        emit_event(
            store,
            sale_id=sale_id,
            user_id=user_id,
            entity=entity,
            field=audit_field_name(change.attribute),
            at=at,
            previous_value=change.previous,
            new_value=change.new,
            comment=comment,
        )
        for change in changes
    ]
    logger.debug(
        "Audited update",
        extra={"sale_id": sale_id, "entity": entity.value, "fields": [e.field for e in events]},
    )
    return updated, events
