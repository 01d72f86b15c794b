"""
Domain: Sale steps (the per-sale operational checklist).

Contract excerpts implemented here:
- One SaleStep per (sale_id, type).
- Each step type has its own closed status vocabulary:
  - CONTRACT: PENDING, SENT, SIGNED
  - PAYMENT:  PENDING, SENT, DONE  (SENT only when the payment method is FLOW)
  - others:   PENDING, IN_PROGRESS, DONE
- "Done" is defined once, by `is_step_done`, and used by readiness, alerts and
  progress alike.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, Mapping, Optional

from .time import require_utc_timestamp


class SaleStepType(str, Enum):
    CONTRACT = "CONTRACT"
    PAYMENT = "PAYMENT"
    DEVICE_CONFIG = "DEVICE_CONFIG"
    CREDENTIALS = "CREDENTIALS"
    SHIPPING = "SHIPPING"
    INSTALLATION = "INSTALLATION"
    REMOTE_SUPPORT = "REMOTE_SUPPORT"


class StepStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    SENT = "SENT"
    SIGNED = "SIGNED"
    DONE = "DONE"


class PaymentMethod(str, Enum):
    FLOW = "FLOW"
    TRANSFERENCIA = "TRANSFERENCIA"
    EFECTIVO = "EFECTIVO"


class SignatureType(str, Enum):
    DOCUSIGN = "DOCUSIGN"
    TERRENO = "TERRENO"


_OPERATIONAL = frozenset({StepStatus.PENDING, StepStatus.IN_PROGRESS, StepStatus.DONE})

STEP_STATUS_VOCABULARY: Mapping[SaleStepType, frozenset[StepStatus]] = {
    SaleStepType.CONTRACT: frozenset({StepStatus.PENDING, StepStatus.SENT, StepStatus.SIGNED}),
    SaleStepType.PAYMENT: frozenset({StepStatus.PENDING, StepStatus.SENT, StepStatus.DONE}),
    SaleStepType.DEVICE_CONFIG: _OPERATIONAL,
    SaleStepType.CREDENTIALS: _OPERATIONAL,
    SaleStepType.SHIPPING: _OPERATIONAL,
    SaleStepType.INSTALLATION: _OPERATIONAL,
    SaleStepType.REMOTE_SUPPORT: _OPERATIONAL,
}

# SHIPPING also accepts SENT as done: older records stored it before the
# vocabulary was closed.
_DONE_STATUSES: Mapping[SaleStepType, frozenset[StepStatus]] = {
    SaleStepType.CONTRACT: frozenset({StepStatus.SIGNED}),
    SaleStepType.PAYMENT: frozenset({StepStatus.DONE}),
    SaleStepType.SHIPPING: frozenset({StepStatus.SENT, StepStatus.DONE}),
}

STEP_TYPE_LABELS: Mapping[SaleStepType, str] = {
    SaleStepType.CONTRACT: "Contrato",
    SaleStepType.PAYMENT: "Pago",
    SaleStepType.DEVICE_CONFIG: "Configuración de dispositivos",
    SaleStepType.CREDENTIALS: "Credenciales",
    SaleStepType.SHIPPING: "Envío",
    SaleStepType.INSTALLATION: "Instalación",
    SaleStepType.REMOTE_SUPPORT: "Soporte remoto",
}


class StepStatusError(ValueError):
    """Raised when a status does not belong to the step type's vocabulary."""


class StepDependencyError(ValueError):
    """Raised when a step would advance before the steps it depends on."""


def validate_step_status(
    kind: SaleStepType,
    status: StepStatus,
    method: Optional[PaymentMethod] = None,
) -> None:
    """
    Reject statuses outside the step type's vocabulary.

    PAYMENT may only be SENT when its method is FLOW (the provider that needs a
    send confirmation).
    """

    if status not in STEP_STATUS_VOCABULARY[kind]:
        raise StepStatusError(f"Status {status.value} is not valid for step {kind.value}")
    if kind is SaleStepType.PAYMENT and status is StepStatus.SENT and method is not PaymentMethod.FLOW:
        raise StepStatusError("PAYMENT can only be SENT when the payment method is FLOW")


def is_step_done(kind: SaleStepType, status: Optional[StepStatus]) -> bool:
    if status is None:
        return False
    return status in _DONE_STATUSES.get(kind, frozenset({StepStatus.DONE}))


@dataclass(frozen=True, slots=True)
class SaleStep:
    id: str
    sale_id: str
    type: SaleStepType
    status: StepStatus
    updated_at: datetime
    updated_by: str

    method: Optional[PaymentMethod] = None
    tracking_code: Optional[str] = None
    signature_type: Optional[SignatureType] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("updated_at", self.updated_at)

    @property
    def is_done(self) -> bool:
        return is_step_done(self.type, self.status)


def find_step(steps: Iterable[SaleStep], kind: SaleStepType) -> Optional[SaleStep]:
    for step in steps:
        if step.type is kind:
            return step
    return None


def step_progress(steps: Iterable[SaleStep], required: Iterable[SaleStepType]) -> tuple[int, int]:
    """Return (done, total) over the required step types."""

    by_type = {s.type: s for s in steps}
    required_list = list(required)
    done = sum(
        1 for kind in required_list if is_step_done(kind, by_type[kind].status if kind in by_type else None)
    )
    return done, len(required_list)
