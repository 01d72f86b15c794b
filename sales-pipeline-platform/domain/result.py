"""
Domain result values.

Business blockers are returned, not raised: a caller asking to close a sale
that is missing its contract gets `DomainResult(ok=False, error=...)` and can
show the reason to the seller.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class SaleDomainError(str, Enum):
    SALE_NOT_FOUND = "SALE_NOT_FOUND"
    SALE_INCOMPLETE = "SALE_INCOMPLETE"
    BENEFICIARY_REQUIRED = "BENEFICIARY_REQUIRED"
    CONTRACT_NOT_SIGNED = "CONTRACT_NOT_SIGNED"


SALE_ERROR_MESSAGES: dict[SaleDomainError, str] = {
    SaleDomainError.SALE_NOT_FOUND: "La venta no existe o ya no está disponible.",
    SaleDomainError.SALE_INCOMPLETE: "Faltan datos obligatorios para cerrar la venta.",
    SaleDomainError.BENEFICIARY_REQUIRED: "Debe registrar un beneficiario antes de cerrar la venta.",
    SaleDomainError.CONTRACT_NOT_SIGNED: "El contrato aún no está firmado.",
}


@dataclass(frozen=True, slots=True)
class DomainResult(Generic[T]):
    ok: bool
    data: Optional[T] = None
    error: Optional[SaleDomainError] = None

    @classmethod
    def success(cls, data: Optional[T] = None) -> "DomainResult[T]":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, error: SaleDomainError) -> "DomainResult[T]":
        return cls(ok=False, error=error)

    @property
    def message(self) -> Optional[str]:
        return SALE_ERROR_MESSAGES[self.error] if self.error is not None else None
