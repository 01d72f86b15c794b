"""
Domain: CommercialTerms (the agreed price of a sale).

Invariants:
- Prices are non-negative whole currency units (CLP has no minor unit).
- discount_percentage is within [0, 100].
- final_price is derived from base_price and discount unless explicitly
  confirmed by the seller.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from .time import require_utc_timestamp


@dataclass(frozen=True, slots=True)
class CommercialTerms:
    id: str
    sale_id: str
    base_price: int
    discount_percentage: Decimal
    final_price: int

    discount_confirmed: bool = False
    final_price_confirmed: bool = False
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.base_price < 0 or self.final_price < 0:
            raise ValueError("prices must be non-negative")
        if self.discount_percentage < 0 or self.discount_percentage > 100:
            raise ValueError("discount_percentage must be within [0, 100]")
        if self.updated_at is not None:
            require_utc_timestamp("updated_at", self.updated_at)


def compute_final_price(base_price: int, discount_percentage: Decimal) -> int:
    """Apply a percentage discount, rounding half up to the whole unit."""

    factor = (Decimal(100) - Decimal(discount_percentage)) / Decimal(100)
    return int((Decimal(base_price) * factor).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
