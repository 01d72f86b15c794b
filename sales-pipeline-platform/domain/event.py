"""
Domain: audit Event (the append-only change log).

Contract excerpts implemented here:
- Every event belongs to a sale: sale_id is always present.
- One event per changed field per write; a multi-field update produces
  several events, never one compound event.
- Events are immutable and are the only source of historical truth.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from .time import require_utc_timestamp


class EventEntity(str, Enum):
    CLIENT = "CLIENT"
    SALE = "SALE"
    BENEFICIARY = "BENEFICIARY"
    COMMERCIAL = "COMMERCIAL"
    STEP = "STEP"


@dataclass(frozen=True, slots=True)
class Event:
    id: str
    sale_id: str
    user_id: str
    entity: EventEntity
    field: str
    created_at: datetime

    previous_value: Optional[str] = None
    new_value: Optional[str] = None
    comment: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.sale_id:
            raise ValueError("sale_id is required for every event")
        if not self.field:
            raise ValueError("field is required for every event")
        require_utc_timestamp("created_at", self.created_at)

    @property
    def type(self) -> str:
        """`ENTITY.field` key used by the narrative mapping."""

        return f"{self.entity.value}.{self.field}"

    def matches(
        self,
        entity: Optional[EventEntity] = None,
        field: Optional[str] = None,
        comment: Optional[str] = None,
    ) -> bool:
        if entity is not None and self.entity is not entity:
            return False
        if field is not None and self.field != field:
            return False
        if comment is not None and (self.comment or "") != comment:
            return False
        return True


def stringify(value: Any) -> Optional[str]:
    """
    Render a scalar the way the log stores it.

    Enums are stored by value, booleans as `true`/`false`, datetimes as
    ISO-8601, None stays None.
    """

    if value is None:
        return None
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def step_comment(kind_value: str) -> str:
    """Comment attached to every STEP event of one step type (`Paso CONTRACT`)."""

    return f"Paso {kind_value}"


def sort_newest_first(events: list[Event]) -> list[Event]:
    return sorted(events, key=lambda e: e.created_at, reverse=True)
