"""
Tests for runtime alerts (`domain/alerts.py`, `services/alerts_service.py`).

Covers contract rules:
- 49h without events is critical, 30h a warning, 2h ok.
- Archived sales never alert.
- Payment, dependency, shipping SLA and closed-sale rules.
- The live service derives required steps from the beneficiary region.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from domain.alerts import (
    REASON_24H,
    REASON_48H,
    REASON_BROKEN_DEPENDENCY,
    REASON_PAYMENT_WITHOUT_METHOD,
    REASON_SHIPPING_OVERDUE,
    AlertLevel,
    collect_critical_missing_fields,
    compute_sale_runtime_alerts,
)
from domain.client import Client
from domain.errors import NotFoundError
from domain.event import Event, EventEntity
from domain.region import compute_required_step_types
from domain.sale import Sale, SaleModality, SalePlan, SaleStatus
from domain.sale_step import PaymentMethod, SaleStep, SaleStepType, StepStatus
from services import alerts_service


def _sale(t0, status: SaleStatus = SaleStatus.IN_PROGRESS, **kwargs) -> Sale:
    return Sale(id="sale-1", client_id="client-1", status=status, created_at=t0, **kwargs)


def _event(t0, hours_after: float) -> Event:
    return Event(
        id=f"e-{hours_after}",
        sale_id="sale-1",
        user_id="u1",
        entity=EventEntity.SALE,
        field="status",
        created_at=t0 + timedelta(hours=hours_after),
    )


def _step(t0, kind: SaleStepType, status: StepStatus, method=None, days_after: float = 0) -> SaleStep:
    return SaleStep(
        id=f"step-{kind.value}",
        sale_id="sale-1",
        type=kind,
        status=status,
        updated_at=t0 + timedelta(days=days_after),
        updated_by="u1",
        method=method,
    )


@pytest.mark.parametrize(
    "hours,level,reasons",
    [
        (49, AlertLevel.CRITICAL, [REASON_48H]),
        (48, AlertLevel.CRITICAL, [REASON_48H]),
        (30, AlertLevel.WARNING, [REASON_24H]),
        (2, AlertLevel.OK, []),
    ],
)
def test_recency_levels(t0, hours: int, level: AlertLevel, reasons: list) -> None:
    """The latest event, not creation, is the reference when there is one."""

    sale = _sale(t0 - timedelta(days=30))
    now = t0 + timedelta(hours=hours)

    alerts = compute_sale_runtime_alerts(sale, [_event(t0, 0)], [], now=now)

    assert alerts.level is level
    assert alerts.reasons == reasons


def test_recency_falls_back_to_creation(t0) -> None:
    alerts = compute_sale_runtime_alerts(_sale(t0), [], [], now=t0 + timedelta(hours=25))
    assert alerts.reasons == [REASON_24H]


def test_archived_sale_never_alerts(t0) -> None:
    sale = _sale(t0, status=SaleStatus.ARCHIVED)
    steps = [_step(t0, SaleStepType.PAYMENT, StepStatus.DONE)]

    alerts = compute_sale_runtime_alerts(sale, [], steps, now=t0 + timedelta(days=10))

    assert alerts.level is AlertLevel.OK
    assert alerts.reasons == []


def test_missing_fields_reported_after_24h(t0) -> None:
    alerts = compute_sale_runtime_alerts(
        _sale(t0),
        [],
        [],
        now=t0 + timedelta(hours=30),
        critical_missing_fields=["SALE.plan", "BENEFICIARY.region"],
    )

    assert alerts.level is AlertLevel.WARNING
    assert alerts.reasons == [
        REASON_24H,
        "Datos incompletos >24h: Venta: plan, Beneficiario: región",
    ]


def test_missing_fields_not_reported_while_recent(t0) -> None:
    alerts = compute_sale_runtime_alerts(
        _sale(t0), [], [], now=t0 + timedelta(hours=3), critical_missing_fields=["SALE.plan"]
    )
    assert alerts.level is AlertLevel.OK


def test_payment_done_without_method(t0) -> None:
    steps = [_step(t0, SaleStepType.PAYMENT, StepStatus.DONE)]

    alerts = compute_sale_runtime_alerts(_sale(t0), [], steps, now=t0 + timedelta(hours=1))

    assert alerts.level is AlertLevel.WARNING
    assert alerts.reasons == [REASON_PAYMENT_WITHOUT_METHOD]


def test_shipping_before_contract_is_broken_dependency(t0) -> None:
    steps = [
        _step(t0, SaleStepType.CONTRACT, StepStatus.SENT),
        _step(t0, SaleStepType.PAYMENT, StepStatus.DONE, PaymentMethod.FLOW),
        _step(t0, SaleStepType.SHIPPING, StepStatus.DONE),
    ]

    alerts = compute_sale_runtime_alerts(
        _sale(t0),
        [],
        steps,
        now=t0 + timedelta(hours=1),
        required_step_types=compute_required_step_types("Antofagasta"),
    )

    assert alerts.reasons == [REASON_BROKEN_DEPENDENCY]


def test_shipping_overdue_after_four_days(t0) -> None:
    steps = [
        _step(t0, SaleStepType.CONTRACT, StepStatus.SIGNED),
        _step(t0, SaleStepType.PAYMENT, StepStatus.DONE, PaymentMethod.TRANSFERENCIA, days_after=1),
        _step(t0, SaleStepType.SHIPPING, StepStatus.PENDING),
    ]
    now = t0 + timedelta(days=5, hours=1)
    recent = [_event(t0, 5 * 24)]

    overdue = compute_sale_runtime_alerts(_sale(t0), recent, steps, now=now)
    on_time = compute_sale_runtime_alerts(_sale(t0), recent, steps, now=t0 + timedelta(days=4, hours=23))
    on_site = compute_sale_runtime_alerts(
        _sale(t0), recent, steps, now=now, required_step_types=compute_required_step_types("Santiago")
    )

    assert overdue.reasons == [REASON_SHIPPING_OVERDUE]
    assert overdue.level is AlertLevel.WARNING
    assert REASON_SHIPPING_OVERDUE not in on_time.reasons
    assert on_site.reasons == []


def test_closed_sale_with_open_required_steps(t0) -> None:
    sale = _sale(t0, status=SaleStatus.CLOSED, plan=SalePlan.FULL, modality=SaleModality.CON_TELEASISTENCIA)
    steps = [
        _step(t0, SaleStepType.CONTRACT, StepStatus.SIGNED),
        _step(t0, SaleStepType.PAYMENT, StepStatus.DONE, PaymentMethod.EFECTIVO),
        _step(t0, SaleStepType.DEVICE_CONFIG, StepStatus.DONE),
        _step(t0, SaleStepType.CREDENTIALS, StepStatus.IN_PROGRESS),
    ]

    alerts = compute_sale_runtime_alerts(
        sale,
        [_event(t0, 0)],
        steps,
        now=t0 + timedelta(hours=1),
        required_step_types=compute_required_step_types("Santiago"),
    )

    assert alerts.reasons == ["Venta cerrada con pasos pendientes: Credenciales, Instalación"]


def test_closed_sale_audit_skipped_without_required_steps(t0) -> None:
    sale = _sale(t0, status=SaleStatus.CLOSED)

    alerts = compute_sale_runtime_alerts(sale, [_event(t0, 0)], [], now=t0 + timedelta(hours=1))

    assert alerts.level is AlertLevel.OK


def test_collect_critical_missing_fields(t0) -> None:
    client = Client(id="client-1", full_name="Ana Pérez", email="ana@example.cl", region=None)

    missing = collect_critical_missing_fields(_sale(t0, plan=SalePlan.APP), client, None)

    assert missing == [
        "CLIENT.region",
        "BENEFICIARY.fullName",
        "BENEFICIARY.serviceAddress",
        "BENEFICIARY.region",
        "SALE.modality",
    ]


def test_live_alerts_use_beneficiary_region(store, seed, t0) -> None:
    sale = seed.complete_sale()
    seed.step(sale.id, SaleStepType.PAYMENT, StepStatus.DONE, method=PaymentMethod.FLOW)
    seed.step(sale.id, SaleStepType.SHIPPING, StepStatus.PENDING)
    seed.event(sale.id, EventEntity.SALE, "status", t0 + timedelta(days=5))

    # Santiago does not ship, so an idle SHIPPING step is not overdue.
    alerts = alerts_service.compute_sale_runtime_alerts(store, sale.id, now=t0 + timedelta(days=5, hours=1))

    assert alerts.level is AlertLevel.OK


def test_live_alerts_missing_sale(store, t0) -> None:
    with pytest.raises(NotFoundError):
        alerts_service.compute_sale_runtime_alerts(store, "missing", now=t0)


def test_alerts_for_many_sales(store, seed, t0) -> None:
    fresh = seed.complete_sale(created_at=t0)
    stale = seed.complete_sale(created_at=t0 - timedelta(days=3))

    results = alerts_service.compute_alerts_for_sales(
        store, [fresh.id, stale.id, fresh.id], now=t0 + timedelta(hours=1), max_workers=2
    )

    assert set(results) == {fresh.id, stale.id}
    assert results[fresh.id].level is AlertLevel.OK
    assert results[stale.id].level is AlertLevel.CRITICAL


def test_alerts_for_many_sales_fails_as_a_whole(store, seed, t0) -> None:
    sale = seed.complete_sale()

    with pytest.raises(NotFoundError):
        alerts_service.compute_alerts_for_sales(store, [sale.id, "missing"], now=t0)
