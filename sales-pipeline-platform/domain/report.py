"""
Domain: executive report aggregation (pure).

Everything here works on records already fetched for a date range; the
fetching and fan-out live in services/executive_report_service.py.

Counting rules:
- leads created: sales created in range
- leads dropped: distinct sales with a lead -> archived status event in range
- sales created: distinct sales with lead -> in_progress in range, plus sales
  created in range directly as in_progress
- sales closed: distinct sales with -> closed in range, plus sales created
  in range directly as closed
- blocked: in_progress sales at `to` with at least one blocker whose primary
  blocked start is not after `to`

"Created directly as" is the status a sale had at creation, not its current
status: a lead converted after `to` does not count for the range.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, Mapping, Optional, Sequence

from .event import Event, EventEntity
from .narrative import NarrativeEntry, TimelineEvent, build_narrative_timeline
from .readiness import get_close_sale_readiness
from .result import SaleDomainError
from .sale import PaymentStatus, Sale, SaleStatus
from .sale_step import SaleStepType, StepStatus
from .temporal import normalize_value
from .time import days_between


class BlockedSaleReason(str, Enum):
    CONTRACT_NOT_SIGNED = "CONTRACT_NOT_SIGNED"
    PAYMENT_PENDING = "PAYMENT_PENDING"
    BENEFICIARY_REQUIRED = "BENEFICIARY_REQUIRED"
    INCOMPLETE_DATA = "INCOMPLETE_DATA"


BLOCKED_REASON_LABELS: dict[BlockedSaleReason, str] = {
    BlockedSaleReason.CONTRACT_NOT_SIGNED: "Contrato pendiente de firma",
    BlockedSaleReason.PAYMENT_PENDING: "Pago pendiente",
    BlockedSaleReason.BENEFICIARY_REQUIRED: "Falta registrar beneficiario",
    BlockedSaleReason.INCOMPLETE_DATA: "Datos incompletos",
}

# Order in which reasons are listed in the report.
REPORTED_REASONS: tuple[BlockedSaleReason, ...] = (
    BlockedSaleReason.CONTRACT_NOT_SIGNED,
    BlockedSaleReason.PAYMENT_PENDING,
    BlockedSaleReason.BENEFICIARY_REQUIRED,
    BlockedSaleReason.INCOMPLETE_DATA,
)

# Priority used to pick the single primary reason of a blocked sale.
PRIMARY_REASON_PRIORITY: tuple[BlockedSaleReason, ...] = (
    BlockedSaleReason.INCOMPLETE_DATA,
    BlockedSaleReason.BENEFICIARY_REQUIRED,
    BlockedSaleReason.CONTRACT_NOT_SIGNED,
    BlockedSaleReason.PAYMENT_PENDING,
)

_READINESS_TO_REPORT: Mapping[SaleDomainError, BlockedSaleReason] = {
    SaleDomainError.SALE_INCOMPLETE: BlockedSaleReason.INCOMPLETE_DATA,
    SaleDomainError.BENEFICIARY_REQUIRED: BlockedSaleReason.BENEFICIARY_REQUIRED,
    SaleDomainError.CONTRACT_NOT_SIGNED: BlockedSaleReason.CONTRACT_NOT_SIGNED,
}


@dataclass(frozen=True, slots=True)
class ReportRange:
    date_from: datetime
    date_to: datetime


@dataclass(frozen=True, slots=True)
class ReportSummary:
    leads_created: int
    leads_dropped: int
    leads_drop_rate: float
    sales_created: int
    sales_closed: int
    sales_blocked: int


@dataclass(frozen=True, slots=True)
class ReportFunnel:
    leads: int
    sales: int
    closed: int


@dataclass(frozen=True, slots=True)
class BlockedReasonStat:
    reason: BlockedSaleReason
    count: int
    average_days_blocked: float


@dataclass(frozen=True, slots=True)
class BlockedSalesSummary:
    total: int
    reasons: list[BlockedReasonStat] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class SaleTimelineEntry:
    sale_id: str
    customer_name: str
    events: list[NarrativeEntry]
    current_status: SaleStatus
    blocked_reason: Optional[BlockedSaleReason] = None

    @property
    def last_event_at(self) -> Optional[datetime]:
        return self.events[-1].date if self.events else None


@dataclass(frozen=True, slots=True)
class ExecutiveReport:
    range: ReportRange
    summary: ReportSummary
    funnel: ReportFunnel
    blocked_sales: BlockedSalesSummary
    sales_timeline: list[SaleTimelineEntry]


@dataclass(frozen=True, slots=True)
class BlockedSaleComputed:
    sale_id: str
    reasons: list[BlockedSaleReason]
    primary_reason: BlockedSaleReason
    start_by_reason: dict[BlockedSaleReason, datetime]


@dataclass(frozen=True, slots=True)
class FunnelCounts:
    leads_created: int
    leads_dropped: int
    sales_created: int
    sales_closed: int

    @property
    def leads_drop_rate(self) -> float:
        return self.leads_dropped / self.leads_created if self.leads_created > 0 else 0.0


def _is_within(value: datetime, date_from: datetime, date_to: datetime) -> bool:
    return date_from <= value <= date_to


def _status_events(events: Iterable[Event]) -> list[Event]:
    return [e for e in events if e.matches(entity=EventEntity.SALE, field="status")]


def index_by_sale(events: Iterable[Event]) -> dict[str, list[Event]]:
    by_sale: dict[str, list[Event]] = defaultdict(list)
    for event in events:
        by_sale[event.sale_id].append(event)
    return dict(by_sale)


def status_at_creation(sale: Sale, events: Iterable[Event]) -> Optional[str]:
    """
    Status a sale was created with.

    Read from the earliest SALE.status event: the value it was created with
    when the event has no previous value, otherwise the value it replaced.
    Without status events the current status is the creation status.
    """

    status_events = sorted(_status_events(events), key=lambda e: e.created_at)
    if not status_events:
        return sale.status.value
    first = status_events[0]
    previous = normalize_value(first.previous_value)
    return previous if previous is not None else normalize_value(first.new_value)


def compute_funnel_counts(
    sales_created: Sequence[Sale],
    events_in_range: Iterable[Event],
    creation_status: Optional[Mapping[str, Optional[str]]] = None,
) -> FunnelCounts:
    """
    Args:
        creation_status: Status each created sale had at creation, by sale id.
            Sales missing from it fall back to their current status.
    """

    status_events = _status_events(events_in_range)
    creation_status = creation_status or {}

    dropped = {
        e.sale_id
        for e in status_events
        if e.previous_value == SaleStatus.LEAD.value and e.new_value == SaleStatus.ARCHIVED.value
    }
    converted = {
        e.sale_id
        for e in status_events
        if e.previous_value == SaleStatus.LEAD.value and e.new_value == SaleStatus.IN_PROGRESS.value
    }
    closed = {e.sale_id for e in status_events if e.new_value == SaleStatus.CLOSED.value}

    for sale in sales_created:
        created_as = creation_status.get(sale.id, sale.status.value)
        if created_as == SaleStatus.IN_PROGRESS.value:
            converted.add(sale.id)
        if created_as == SaleStatus.CLOSED.value:
            closed.add(sale.id)

    return FunnelCounts(
        leads_created=len(sales_created),
        leads_dropped=len(dropped),
        sales_created=len(converted),
        sales_closed=len(closed),
    )


def compute_blocked_reasons(
    sale: Sale,
    beneficiary_exists: bool,
    contract_signed: bool,
) -> list[BlockedSaleReason]:
    """Readiness blockers mapped onto report reasons, plus PAYMENT_PENDING."""

    readiness = get_close_sale_readiness(sale, beneficiary_exists, contract_signed)
    reasons: list[BlockedSaleReason] = []
    for blocker in readiness.blockers:
        mapped = _READINESS_TO_REPORT.get(blocker)
        if mapped is not None and mapped not in reasons:
            reasons.append(mapped)

    # Legacy rows without a payment status are not treated as pending.
    if sale.payment_status is not None and sale.payment_status is not PaymentStatus.READY:
        reasons.append(BlockedSaleReason.PAYMENT_PENDING)

    return reasons


def pick_primary_reason(reasons: Sequence[BlockedSaleReason]) -> Optional[BlockedSaleReason]:
    for reason in PRIMARY_REASON_PRIORITY:
        if reason in reasons:
            return reason
    return None


def _earliest(values: Iterable[datetime]) -> Optional[datetime]:
    return min(values, default=None)


def compute_blocked_start_at(
    sale: Sale,
    reason: BlockedSaleReason,
    sale_events_in_range: Sequence[Event],
    date_from: datetime,
    date_to: datetime,
) -> datetime:
    """
    When the sale started being blocked for `reason`.

    Baseline: the later of creation and the earliest in-range transition into
    in_progress. Contract and payment reasons are refined by their earliest
    in-range step event; the other reasons have no finer signal.
    """

    entered_in_progress = _earliest(
        e.created_at
        for e in _status_events(sale_events_in_range)
        if e.new_value == SaleStatus.IN_PROGRESS.value
    )
    baseline = sale.created_at
    if entered_in_progress is not None and entered_in_progress > baseline:
        baseline = entered_in_progress

    step_status_events = [
        e for e in sale_events_in_range if e.matches(entity=EventEntity.STEP, field="status")
    ]

    refined: Optional[datetime] = None
    if reason is BlockedSaleReason.CONTRACT_NOT_SIGNED:
        refined = _earliest(
            e.created_at for e in step_status_events if SaleStepType.CONTRACT.value in (e.comment or "")
        )
    elif reason is BlockedSaleReason.PAYMENT_PENDING:
        refined = _earliest(
            e.created_at
            for e in step_status_events
            if SaleStepType.PAYMENT.value in (e.comment or "")
            and e.new_value in (StepStatus.PENDING.value, StepStatus.SENT.value)
        )

    if refined is not None and _is_within(refined, date_from, date_to):
        return refined
    return baseline


def compute_blocked_days_within_range(start_at: datetime, date_from: datetime, date_to: datetime) -> float:
    """
    Days blocked inside the range: from max(start, from) up to `to`.

    The end is always `to`, even if the sale was unblocked earlier.
    """

    start = date_from if start_at < date_from else start_at
    if start > date_to:
        return 0.0
    return max(0.0, days_between(start, date_to))


def classify_blocked_sales(
    in_progress_sales: Sequence[Sale],
    beneficiary_exists: Mapping[str, bool],
    contract_signed: Mapping[str, bool],
    events_in_range_by_sale: Mapping[str, Sequence[Event]],
    date_from: datetime,
    date_to: datetime,
) -> list[BlockedSaleComputed]:
    """Blocked sales whose primary blocked start is not after `to`."""

    blocked: list[BlockedSaleComputed] = []
    for sale in in_progress_sales:
        reasons = compute_blocked_reasons(
            sale,
            beneficiary_exists.get(sale.id, False),
            contract_signed.get(sale.id, False),
        )
        primary = pick_primary_reason(reasons)
        if primary is None:
            continue

        sale_events = events_in_range_by_sale.get(sale.id, [])
        starts = {
            reason: compute_blocked_start_at(sale, reason, sale_events, date_from, date_to)
            for reason in reasons
        }
        if starts[primary] > date_to:
            continue

        blocked.append(
            BlockedSaleComputed(
                sale_id=sale.id,
                reasons=reasons,
                primary_reason=primary,
                start_by_reason=starts,
            )
        )
    return blocked


def summarize_blocked_sales(
    blocked: Sequence[BlockedSaleComputed],
    date_from: datetime,
    date_to: datetime,
) -> BlockedSalesSummary:
    stats: list[BlockedReasonStat] = []
    for reason in REPORTED_REASONS:
        days = [
            compute_blocked_days_within_range(b.start_by_reason[reason], date_from, date_to)
            for b in blocked
            if reason in b.start_by_reason
        ]
        average = sum(days) / len(days) if days else 0.0
        stats.append(BlockedReasonStat(reason=reason, count=len(days), average_days_blocked=average))
    return BlockedSalesSummary(total=len(blocked), reasons=stats)


def build_sales_timeline(
    sale_ids: Sequence[str],
    sales_by_id: Mapping[str, Sale],
    customer_names: Mapping[str, str],
    events_in_range_by_sale: Mapping[str, Sequence[Event]],
    primary_reason_by_sale: Mapping[str, BlockedSaleReason],
) -> list[SaleTimelineEntry]:
    """
    One narrative entry per known sale, newest activity first.

    Sales whose narrative is empty sort last.
    """

    entries: list[SaleTimelineEntry] = []
    for sale_id in sale_ids:
        sale = sales_by_id.get(sale_id)
        if sale is None:
            continue
        raw = [TimelineEvent(type=e.type, date=e.created_at) for e in events_in_range_by_sale.get(sale_id, [])]
        entries.append(
            SaleTimelineEntry(
                sale_id=sale_id,
                customer_name=customer_names.get(sale.client_id, ""),
                events=build_narrative_timeline(raw),
                current_status=sale.status,
                blocked_reason=primary_reason_by_sale.get(sale_id),
            )
        )

    entries.sort(key=lambda entry: entry.last_event_at.timestamp() if entry.last_event_at else 0.0, reverse=True)
    return entries
