"""
Domain: sale closing readiness (pure).

A sale may close only when all of these hold:
- the sale exists (a missing sale also reports SALE_INCOMPLETE, since it
  has no plan or modality)
- plan and modality are set
- a beneficiary is registered
- the CONTRACT step is SIGNED

Every failing rule is reported (no short-circuit) so the seller sees the full
checklist at once.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from .result import SaleDomainError
from .sale import Sale


@dataclass(frozen=True, slots=True)
class CloseReadiness:
    can_close: bool
    blockers: list[SaleDomainError] = field(default_factory=list)


def get_close_sale_readiness(
    sale: Optional[Sale],
    beneficiary_exists: bool,
    contract_signed: bool,
) -> CloseReadiness:
    blockers: list[SaleDomainError] = []

    if sale is None:
        blockers.append(SaleDomainError.SALE_NOT_FOUND)
    if sale is None or sale.plan is None or sale.modality is None:
        blockers.append(SaleDomainError.SALE_INCOMPLETE)
    if not beneficiary_exists:
        blockers.append(SaleDomainError.BENEFICIARY_REQUIRED)
    if not contract_signed:
        blockers.append(SaleDomainError.CONTRACT_NOT_SIGNED)

    return CloseReadiness(can_close=not blockers, blockers=blockers)
