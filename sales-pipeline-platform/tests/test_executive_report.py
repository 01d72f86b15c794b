"""
Tests for `services/executive_report_service.py` and `domain/report.py`.

Covers contract rules:
- Range validation happens before any store access.
- Funnel counts come from status transitions in range.
- Blocked snapshot at `to`: reasons, primary reason, days blocked in range.
- Timeline: narrative entries per sale, newest activity first.
- A sale untouched since before the range shows up nowhere.
- Any failed read fails the whole report.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from domain.errors import InvalidRangeError
from domain.event import Event, EventEntity
from domain.report import (
    BlockedSaleReason,
    compute_blocked_days_within_range,
    pick_primary_reason,
    status_at_creation,
)
from domain.sale import PaymentStatus, SalePlan, SaleStatus
from domain.sale_step import SaleStepType, StepStatus
from repositories.memory_store import InMemorySalesStore
from repositories.store import StoreError
from services import sales_service
from services.executive_report_service import build_executive_report, validate_report_range

STATUS_LABEL = "Estado de la venta actualizado"
STEPS_LABEL = "Avance en pasos operativos"


def _reasons(report) -> dict:
    return {stat.reason: stat for stat in report.blocked_sales.reasons}


def test_invalid_ranges_fail_before_store_access(t0) -> None:
    no_store = object()

    with pytest.raises(InvalidRangeError) as excinfo:
        build_executive_report(no_store, t0 + timedelta(days=1), t0)  # type: ignore[arg-type]
    assert excinfo.value.code == "invalid_range"

    with pytest.raises(InvalidRangeError) as excinfo:
        build_executive_report(no_store, datetime(2025, 3, 1), t0)  # type: ignore[arg-type]
    assert excinfo.value.code == "invalid_from_date"

    with pytest.raises(InvalidRangeError) as excinfo:
        validate_report_range(t0, "2025-03-10")
    assert excinfo.value.code == "invalid_to_date"


def test_contract_and_payment_progress_scenario(store, seed, t0) -> None:
    """
    Created at T0, converted at +1d, contract signed at +5d, payment done at
    +6d: not blocked at the end of [T0, T0+10d], and the timeline tells the
    story with status and step labels only.
    """

    sale = seed.complete_sale(created_at=t0)
    seed.step(sale.id, SaleStepType.PAYMENT, StepStatus.DONE, updated_at=t0 + timedelta(days=6))
    seed.event(sale.id, EventEntity.SALE, "status", t0 + timedelta(days=1), previous="lead", new="in_progress")
    seed.event(
        sale.id, EventEntity.STEP, "status", t0 + timedelta(days=5),
        previous="PENDING", new="SIGNED", comment="Paso CONTRACT",
    )
    seed.event(
        sale.id, EventEntity.STEP, "status", t0 + timedelta(days=6),
        previous="PENDING", new="DONE", comment="Paso PAYMENT",
    )

    report = build_executive_report(store, t0, t0 + timedelta(days=10))

    assert report.summary.leads_created == 1
    assert report.summary.sales_created == 1
    assert report.summary.sales_closed == 0
    assert report.blocked_sales.total == 0
    reasons = _reasons(report)
    assert reasons[BlockedSaleReason.CONTRACT_NOT_SIGNED].count == 0
    assert reasons[BlockedSaleReason.PAYMENT_PENDING].count == 0

    assert [entry.sale_id for entry in report.sales_timeline] == [sale.id]
    entry = report.sales_timeline[0]
    assert entry.customer_name == "Ana Pérez"
    assert entry.current_status is SaleStatus.IN_PROGRESS
    assert entry.blocked_reason is None
    labels = [item.label for item in entry.events]
    assert set(labels) == {STATUS_LABEL, STEPS_LABEL}
    assert labels[0] == STATUS_LABEL
    assert entry.last_event_at == t0 + timedelta(days=6)


def test_funnel_counts(store, seed, t0) -> None:
    dropped = seed.sale(status=SaleStatus.ARCHIVED, created_at=t0)
    converted = seed.sale(status=SaleStatus.IN_PROGRESS, created_at=t0, plan=SalePlan.APP)
    direct_close = seed.sale(status=SaleStatus.CLOSED, created_at=t0 + timedelta(days=2))
    seed.sale(status=SaleStatus.LEAD, created_at=t0 + timedelta(days=3))
    seed.event(dropped.id, EventEntity.SALE, "status", t0 + timedelta(days=1), previous="lead", new="archived")
    seed.event(converted.id, EventEntity.SALE, "status", t0 + timedelta(days=1), previous="lead", new="in_progress")

    report = build_executive_report(store, t0, t0 + timedelta(days=10))

    assert report.summary.leads_created == 4
    assert report.summary.leads_dropped == 1
    assert report.summary.leads_drop_rate == pytest.approx(0.25)
    assert report.summary.sales_created == 1
    assert report.summary.sales_closed == 1
    assert (report.funnel.leads, report.funnel.sales, report.funnel.closed) == (4, 1, 1)
    assert direct_close.id in {entry.sale_id for entry in report.sales_timeline}


def test_lead_converted_after_range_is_not_a_sale_of_the_range(store, clock, t0) -> None:
    created = sales_service.create_lead(
        store, sales_service.CreateLeadInput(full_name="Ana Pérez"), "seller-1", clock=clock
    )
    clock.advance(days=20)
    sales_service.convert_lead_to_in_progress(store, created.sale_id, "seller-1", clock=clock)

    report = build_executive_report(store, t0, t0 + timedelta(days=10))

    assert report.summary.leads_created == 1
    assert report.summary.sales_created == 0
    assert report.funnel.sales == 0


def test_creation_status_read_from_history_after_range(store, seed, t0) -> None:
    converted_later = seed.sale(status=SaleStatus.CLOSED, created_at=t0)
    seed.event(
        converted_later.id, EventEntity.SALE, "status", t0 + timedelta(days=15),
        previous="lead", new="in_progress",
    )
    seed.event(
        converted_later.id, EventEntity.SALE, "status", t0 + timedelta(days=16),
        previous="in_progress", new="closed",
    )

    report = build_executive_report(store, t0, t0 + timedelta(days=10))

    assert report.summary.leads_created == 1
    assert report.summary.sales_created == 0
    assert report.summary.sales_closed == 0


def test_status_at_creation(seed, t0) -> None:
    sale = seed.sale(status=SaleStatus.IN_PROGRESS, created_at=t0)
    creation = Event(
        id="e1", sale_id=sale.id, user_id="u", entity=EventEntity.SALE, field="status",
        created_at=t0, new_value="lead", comment="Creación de lead",
    )
    conversion = Event(
        id="e2", sale_id=sale.id, user_id="u", entity=EventEntity.SALE, field="status",
        created_at=t0 + timedelta(days=1), previous_value="lead", new_value="in_progress",
    )

    assert status_at_creation(sale, [conversion, creation]) == "lead"
    assert status_at_creation(sale, [conversion]) == "lead"
    assert status_at_creation(sale, []) == "in_progress"


def test_bounds_with_other_offsets_are_converted_to_utc(store, seed, t0) -> None:
    santiago = timezone(timedelta(hours=-3))
    seed.sale(status=SaleStatus.LEAD, created_at=datetime(2025, 3, 1, 2, 0, tzinfo=timezone.utc))
    inside = seed.sale(status=SaleStatus.LEAD, created_at=datetime(2025, 3, 1, 4, 0, tzinfo=timezone.utc))

    report = build_executive_report(
        store,
        datetime(2025, 3, 1, 0, 0, tzinfo=santiago),
        datetime(2025, 3, 1, 23, 59, tzinfo=santiago),
    )

    assert report.range.date_from == datetime(2025, 3, 1, 3, 0, tzinfo=timezone.utc)
    assert report.range.date_from.utcoffset() == timedelta(0)
    assert report.range.date_to.utcoffset() == timedelta(0)
    assert report.summary.leads_created == 1
    assert [entry.sale_id for entry in report.sales_timeline] == [inside.id]


def test_drop_rate_is_zero_without_leads(store, t0) -> None:
    report = build_executive_report(store, t0, t0 + timedelta(days=1))

    assert report.summary.leads_drop_rate == 0.0
    assert report.sales_timeline == []


def test_blocked_sale_with_every_reason(store, seed, t0) -> None:
    sale = seed.sale(created_at=t0, payment_status=PaymentStatus.PENDING, customer_name="Marta Soto")

    report = build_executive_report(store, t0, t0 + timedelta(days=10))

    assert report.blocked_sales.total == 1
    assert [stat.reason for stat in report.blocked_sales.reasons] == [
        BlockedSaleReason.CONTRACT_NOT_SIGNED,
        BlockedSaleReason.PAYMENT_PENDING,
        BlockedSaleReason.BENEFICIARY_REQUIRED,
        BlockedSaleReason.INCOMPLETE_DATA,
    ]
    for stat in report.blocked_sales.reasons:
        assert stat.count == 1
        assert stat.average_days_blocked == pytest.approx(10.0)

    entry = report.sales_timeline[-1]
    assert entry.sale_id == sale.id
    assert entry.events == []
    assert entry.blocked_reason is BlockedSaleReason.INCOMPLETE_DATA


def test_payment_pending_start_refined_by_step_event(store, seed, t0) -> None:
    sale = seed.complete_sale(created_at=t0, payment_status=PaymentStatus.PENDING)
    seed.event(
        sale.id, EventEntity.STEP, "status", t0 + timedelta(days=4),
        previous=None, new="PENDING", comment="Paso PAYMENT",
    )

    report = build_executive_report(store, t0, t0 + timedelta(days=10))

    stat = _reasons(report)[BlockedSaleReason.PAYMENT_PENDING]
    assert stat.count == 1
    assert stat.average_days_blocked == pytest.approx(6.0)
    assert report.sales_timeline[0].blocked_reason is BlockedSaleReason.PAYMENT_PENDING


def test_legacy_sale_without_payment_status_is_not_payment_pending(store, seed, t0) -> None:
    seed.complete_sale(created_at=t0, payment_status=None)

    report = build_executive_report(store, t0, t0 + timedelta(days=10))

    assert report.blocked_sales.total == 0


def test_sales_created_after_range_are_not_blocked(store, seed, t0) -> None:
    seed.sale(created_at=t0 + timedelta(days=20))

    report = build_executive_report(store, t0, t0 + timedelta(days=10))

    assert report.blocked_sales.total == 0


def test_untouched_sale_outside_range_appears_nowhere(store, seed, t0) -> None:
    untouched = seed.sale(status=SaleStatus.LEAD, created_at=t0 - timedelta(days=30))
    active = seed.sale(status=SaleStatus.LEAD, created_at=t0 + timedelta(days=1))

    report = build_executive_report(store, t0, t0 + timedelta(days=10))

    timeline_ids = {entry.sale_id for entry in report.sales_timeline}
    assert untouched.id not in timeline_ids
    assert active.id in timeline_ids
    assert report.summary.leads_created == 1


def test_timeline_sorted_by_latest_activity(store, seed, t0) -> None:
    older = seed.sale(status=SaleStatus.LEAD, created_at=t0 - timedelta(days=5))
    newer = seed.sale(status=SaleStatus.LEAD, created_at=t0 - timedelta(days=5))
    seed.event(older.id, EventEntity.CLIENT, "phone", t0 + timedelta(days=1))
    seed.event(newer.id, EventEntity.CLIENT, "phone", t0 + timedelta(days=2))

    report = build_executive_report(store, t0, t0 + timedelta(days=10))

    assert [entry.sale_id for entry in report.sales_timeline] == [newer.id, older.id]


def test_failed_read_fails_the_report(t0) -> None:
    class BrokenEventsStore(InMemorySalesStore):
        def list_events_in_range(self, date_from, date_to):
            raise StoreError("events unavailable")

    broken = BrokenEventsStore()

    with pytest.raises(StoreError):
        build_executive_report(broken, t0, t0 + timedelta(days=1))


def test_blocked_days_clamped_to_range(t0) -> None:
    to = t0 + timedelta(days=10)

    assert compute_blocked_days_within_range(t0 - timedelta(days=3), t0, to) == pytest.approx(10.0)
    assert compute_blocked_days_within_range(t0 + timedelta(days=7), t0, to) == pytest.approx(3.0)
    assert compute_blocked_days_within_range(to + timedelta(days=1), t0, to) == 0.0


def test_primary_reason_priority() -> None:
    assert pick_primary_reason(
        [BlockedSaleReason.PAYMENT_PENDING, BlockedSaleReason.CONTRACT_NOT_SIGNED]
    ) is BlockedSaleReason.CONTRACT_NOT_SIGNED
    assert pick_primary_reason(
        [BlockedSaleReason.CONTRACT_NOT_SIGNED, BlockedSaleReason.BENEFICIARY_REQUIRED]
    ) is BlockedSaleReason.BENEFICIARY_REQUIRED
    assert pick_primary_reason([]) is None
