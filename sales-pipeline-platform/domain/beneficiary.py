"""
Domain: Beneficiary (the person receiving the service).

At most one beneficiary per sale. Its region is what decides the sale's
service region and, through it, the required operational steps.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .time import require_utc_timestamp


@dataclass(frozen=True, slots=True)
class Beneficiary:
    id: str
    sale_id: str
    full_name: str
    service_address: str
    region: Optional[str]

    rut: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.created_at is not None:
            require_utc_timestamp("created_at", self.created_at)
        if self.updated_at is not None:
            require_utc_timestamp("updated_at", self.updated_at)
