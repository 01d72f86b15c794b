"""
Domain: runtime alert rules for a sale (pure).

Rules (archived sales never alert):
- Recency: hours since the newest event (else creation). >=48h is critical,
  [24h, 48h) is a warning.
- Stale incomplete data: >=24h without events while critical fields are missing.
- Payment consistency: PAYMENT done without a method.
- Dependency ordering: SHIPPING sent/done before contract signed and payment done.
- Shipping SLA: contract signed and payment done >=4 days ago, SHIPPING idle.
- Closed-sale audit: closed with required steps still open.

Level is critical only when the 48h reason is present.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional, Sequence

from .beneficiary import Beneficiary
from .client import Client
from .event import Event
from .sale import Sale, SaleStatus
from .sale_step import STEP_TYPE_LABELS, SaleStep, SaleStepType, StepStatus, find_step, is_step_done
from .time import days_between, hours_between, require_utc_timestamp

REASON_48H = "48h sin eventos"
REASON_24H = "24h sin eventos"
REASON_PAYMENT_WITHOUT_METHOD = "Pago listo sin método"
REASON_BROKEN_DEPENDENCY = "Dependencia rota: envío sin contrato/pago"
REASON_SHIPPING_OVERDUE = "Envío pendiente >4 días"

CRITICAL_HOURS = 48
WARNING_HOURS = 24
SHIPPING_SLA_DAYS = 4

MISSING_FIELD_LABELS: dict[str, str] = {
    "CLIENT.fullName": "Cliente: nombre completo",
    "CLIENT.phone|email": "Cliente: teléfono o email",
    "CLIENT.region": "Cliente: región",
    "BENEFICIARY.fullName": "Beneficiario: nombre completo",
    "BENEFICIARY.serviceAddress": "Beneficiario: dirección de servicio",
    "BENEFICIARY.region": "Beneficiario: región",
    "SALE.plan": "Venta: plan",
    "SALE.modality": "Venta: modalidad",
}


class AlertLevel(str, Enum):
    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True, slots=True)
class SaleRuntimeAlerts:
    level: AlertLevel
    reasons: list[str] = field(default_factory=list)


def _blank(value: Optional[str]) -> bool:
    return not (value or "").strip()


def collect_critical_missing_fields(
    sale: Sale,
    client: Optional[Client],
    beneficiary: Optional[Beneficiary],
) -> list[str]:
    """Keys of the critical fields a sale is still missing, in display order."""

    missing: list[str] = []

    if client is None or _blank(client.full_name):
        missing.append("CLIENT.fullName")
    if client is None or not client.has_contact():
        missing.append("CLIENT.phone|email")
    if client is None or _blank(client.region):
        missing.append("CLIENT.region")

    if beneficiary is None or _blank(beneficiary.full_name):
        missing.append("BENEFICIARY.fullName")
    if beneficiary is None or _blank(beneficiary.service_address):
        missing.append("BENEFICIARY.serviceAddress")
    if beneficiary is None or _blank(beneficiary.region):
        missing.append("BENEFICIARY.region")

    if sale.plan is None:
        missing.append("SALE.plan")
    if sale.modality is None:
        missing.append("SALE.modality")

    return missing


def compute_sale_runtime_alerts(
    sale: Sale,
    events: Iterable[Event],
    steps: Sequence[SaleStep],
    *,
    now: datetime,
    required_step_types: Optional[Sequence[SaleStepType]] = None,
    critical_missing_fields: Optional[Sequence[str]] = None,
) -> SaleRuntimeAlerts:
    """
    Evaluate the runtime alert rules for one sale at `now`.

    `required_step_types=None` means the caller does not know the region:
    SHIPPING is then assumed required and the closed-sale audit is skipped.
    """

    require_utc_timestamp("now", now)

    if sale.is_archived:
        return SaleRuntimeAlerts(level=AlertLevel.OK, reasons=[])

    reasons: list[str] = []

    latest_event_at = max((e.created_at for e in events), default=None)
    base_at = latest_event_at or sale.created_at
    hours = hours_between(base_at, now)
    if hours >= CRITICAL_HOURS:
        reasons.append(REASON_48H)
    elif hours >= WARNING_HOURS:
        reasons.append(REASON_24H)

    if hours >= WARNING_HOURS and critical_missing_fields:
        labels = ", ".join(MISSING_FIELD_LABELS.get(key, key) for key in critical_missing_fields)
        reasons.append(f"Datos incompletos >24h: {labels}")

    contract = find_step(steps, SaleStepType.CONTRACT)
    payment = find_step(steps, SaleStepType.PAYMENT)
    shipping = find_step(steps, SaleStepType.SHIPPING)

    contract_signed = contract is not None and contract.status is StepStatus.SIGNED
    payment_done = payment is not None and payment.status is StepStatus.DONE
    if payment_done and payment.method is None:
        reasons.append(REASON_PAYMENT_WITHOUT_METHOD)

    shipping_required = (
        SaleStepType.SHIPPING in required_step_types if required_step_types is not None else True
    )
    shipping_progressed = shipping is not None and is_step_done(SaleStepType.SHIPPING, shipping.status)

    if shipping_required and shipping_progressed and not (contract_signed and payment_done):
        reasons.append(REASON_BROKEN_DEPENDENCY)

    if shipping_required and contract_signed and payment_done and not shipping_progressed:
        ready_since = max(contract.updated_at, payment.updated_at)
        if days_between(ready_since, now) >= SHIPPING_SLA_DAYS:
            reasons.append(REASON_SHIPPING_OVERDUE)

    if sale.status is SaleStatus.CLOSED and required_step_types:
        open_steps = []
        for kind in required_step_types:
            step = find_step(steps, kind)
            if not is_step_done(kind, step.status if step is not None else None):
                open_steps.append(STEP_TYPE_LABELS[kind])
        if open_steps:
            reasons.append(f"Venta cerrada con pasos pendientes: {', '.join(open_steps)}")

    if REASON_48H in reasons:
        level = AlertLevel.CRITICAL
    elif reasons:
        level = AlertLevel.WARNING
    else:
        level = AlertLevel.OK

    return SaleRuntimeAlerts(level=level, reasons=reasons)
