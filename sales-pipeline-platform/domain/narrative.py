"""
Domain: business narrative for audit events (pure).

Raw audit keys (`ENTITY.field`) are translated into a handful of labels a
manager can read. The table below is the only place where business meaning is
attached to audit fields:

- an exact (entity, field) key wins over the entity-wide key (entity, None)
- COMMERCIAL events are suppressed
- anything not in the table has no narrative and is dropped
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Mapping, Optional

from .event import EventEntity

GROUPING_WINDOW = timedelta(minutes=45)


@dataclass(frozen=True, slots=True)
class NarrativeLabel:
    label: str
    group_key: str


_CLIENT = NarrativeLabel("Datos del cliente registrados/actualizados", "client")
_BENEFICIARY = NarrativeLabel("Beneficiario registrado/actualizado", "beneficiary")
_SALE_STATUS = NarrativeLabel("Estado de la venta actualizado", "sale_status")
_SALE_SETUP = NarrativeLabel("Configuración del servicio actualizada", "sale_setup")
_PAYMENT_STATUS = NarrativeLabel("Estado de pago actualizado", "payment_status")
_STEPS = NarrativeLabel("Avance en pasos operativos", "steps")
_SALE_MISC = NarrativeLabel("Información de la venta actualizada", "sale_misc")

NARRATIVE_TABLE: Mapping[tuple[EventEntity, Optional[str]], Optional[NarrativeLabel]] = {
    (EventEntity.COMMERCIAL, None): None,
    (EventEntity.CLIENT, None): _CLIENT,
    (EventEntity.BENEFICIARY, None): _BENEFICIARY,
    (EventEntity.SALE, "status"): _SALE_STATUS,
    (EventEntity.SALE, "plan"): _SALE_SETUP,
    (EventEntity.SALE, "modality"): _SALE_SETUP,
    (EventEntity.SALE, "serviceRegion"): _SALE_SETUP,
    (EventEntity.SALE, "paymentStatus"): _PAYMENT_STATUS,
    (EventEntity.STEP, None): _STEPS,
    (EventEntity.SALE, None): _SALE_MISC,
}


@dataclass(frozen=True, slots=True)
class TimelineEvent:
    """Raw `ENTITY.field` occurrence as listed in a report."""

    type: str
    date: datetime


@dataclass(slots=True)
class NarrativeEntry:
    label: str
    group_key: str
    date: datetime
    count: int = 1


def parse_event_type(event_type: str) -> tuple[Optional[EventEntity], str]:
    entity_value, _, field = event_type.partition(".")
    try:
        entity = EventEntity(entity_value)
    except ValueError:
        return None, field
    return entity, field


def narrative_label_for(entity: Optional[EventEntity], field: str) -> Optional[NarrativeLabel]:
    """Look up the narrative label of one (entity, field) pair, or None."""

    if entity is None:
        return None
    if (entity, field) in NARRATIVE_TABLE:
        return NARRATIVE_TABLE[(entity, field)]
    return NARRATIVE_TABLE.get((entity, None))


def build_narrative_timeline(events: Iterable[TimelineEvent]) -> list[NarrativeEntry]:
    """
    Sort ascending, label, and collapse runs of the same label.

    An event joins the previous entry when it carries the same label and is
    within 45 minutes of that entry's latest timestamp; the entry then moves
    to the event's timestamp and its count grows.
    """

    out: list[NarrativeEntry] = []
    for event in sorted(events, key=lambda e: e.date):
        mapped = narrative_label_for(*parse_event_type(event.type))
        if mapped is None:
            continue

        prev = out[-1] if out else None
        if prev is not None and prev.label == mapped.label and abs(event.date - prev.date) <= GROUPING_WINDOW:
            prev.count += 1
            prev.date = event.date
            continue

        out.append(NarrativeEntry(label=mapped.label, group_key=mapped.group_key, date=event.date))

    return out
