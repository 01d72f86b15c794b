"""
Domain: Client (the buyer behind one or more sales).

A client record is peripheral to the pipeline; its edits are audited through
the same event log as the sale they were made from.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .time import require_utc_timestamp


class RutInUseError(ValueError):
    """Raised when a RUT is already registered to another client."""


@dataclass(frozen=True, slots=True)
class Client:
    """
    Client profile.

    Invariants:
    - rut is unique across clients when present.
    - region holds the controlled region (SANTIAGO, VALPARAISO, REGIONES).
    """

    id: str
    full_name: str

    rut: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    profession: Optional[str] = None
    region: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        """Validate timestamps are UTC-aware."""
        if self.created_at is not None:
            require_utc_timestamp("created_at", self.created_at)
        if self.updated_at is not None:
            require_utc_timestamp("updated_at", self.updated_at)

    def has_contact(self) -> bool:
        """A client is reachable with either a phone or an email."""
        return bool((self.phone or "").strip() or (self.email or "").strip())


def normalize_rut(value: Optional[str]) -> Optional[str]:
    """Compare RUTs without dots, spaces or case differences in the check digit."""

    if value is None:
        return None
    cleaned = value.replace(".", "").replace(" ", "").strip().upper()
    return cleaned or None
