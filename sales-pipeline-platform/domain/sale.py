"""
Domain: Sale entity and its pipeline status.

Contract excerpts implemented here:
- A Sale is one pipeline record from lead capture through close/archive.
- Status only moves forward: lead -> in_progress -> {closed, archived}.
  A lead may also be archived directly (a dropped lead).
- archived is terminal; a closed sale never reverts.
- plan and modality may be missing while the sale is a lead.
- service_region is derived from the Beneficiary and is never set directly.

This module contains only pure domain entities: no I/O, no database, no frameworks.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from .time import require_utc_timestamp


class SaleStatus(str, Enum):
    LEAD = "lead"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"
    ARCHIVED = "archived"


class SalePlan(str, Enum):
    APP = "APP"
    STARTER = "STARTER"
    MAYOR = "MAYOR"
    GPS_TRACKER = "GPS_TRACKER"
    FULL = "FULL"
    MIXTO = "MIXTO"


class SaleModality(str, Enum):
    CON_TELEASISTENCIA = "CON_TELEASISTENCIA"
    SIN_TELEASISTENCIA = "SIN_TELEASISTENCIA"


class PaymentStatus(str, Enum):
    """Sale-level payment status, mirrored from the PAYMENT step."""

    PENDING = "PENDING"
    SENT = "SENT"
    READY = "READY"


class PaymentSentVia(str, Enum):
    PAYMENT_LINK = "PAYMENT_LINK"
    PAYMENT_BUTTON = "PAYMENT_BUTTON"
    AMAIA_PAYMENT = "AMAIA_PAYMENT"


# Forward-only transitions. archived is terminal; closed never reverts.
_ALLOWED_TRANSITIONS: dict[SaleStatus, frozenset[SaleStatus]] = {
    SaleStatus.LEAD: frozenset({SaleStatus.IN_PROGRESS, SaleStatus.ARCHIVED}),
    SaleStatus.IN_PROGRESS: frozenset({SaleStatus.CLOSED, SaleStatus.ARCHIVED}),
    SaleStatus.CLOSED: frozenset(),
    SaleStatus.ARCHIVED: frozenset(),
}


class InvalidStatusTransitionError(ValueError):
    """Raised when a status change would move a sale backwards or out of a terminal state."""


def can_transition(current: SaleStatus, target: SaleStatus) -> bool:
    return target in _ALLOWED_TRANSITIONS[current]


def require_transition(current: SaleStatus, target: SaleStatus) -> None:
    if not can_transition(current, target):
        raise InvalidStatusTransitionError(
            f"Sale status cannot move from {current.value} to {target.value}"
        )


@dataclass(frozen=True, slots=True)
class Sale:
    """
    Pipeline record.

    The entity carries no field history; past values are reconstructed from
    the event log (see domain/temporal.py).
    """

    id: str
    client_id: str
    status: SaleStatus
    created_at: datetime

    plan: Optional[SalePlan] = None
    modality: Optional[SaleModality] = None
    service_region: Optional[str] = None

    payment_status: Optional[PaymentStatus] = None
    payment_sent_via: Optional[PaymentSentVia] = None

    closed_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("created_at", self.created_at)
        if self.closed_at is not None:
            require_utc_timestamp("closed_at", self.closed_at)
        if self.archived_at is not None:
            require_utc_timestamp("archived_at", self.archived_at)

    @property
    def has_incomplete_data(self) -> bool:
        return self.plan is None or self.modality is None

    @property
    def is_archived(self) -> bool:
        return self.status is SaleStatus.ARCHIVED or self.archived_at is not None
