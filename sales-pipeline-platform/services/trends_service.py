"""
Executive trends service.

Day-by-day series for the last N days, reconstructed from the event log at
the end of each (UTC) day:
- in_progress: current in-progress count rewound through status events
- ready / blocked: readiness of today's in-progress sales as of each day end
- alerts: in-progress sales with >=24h since their last event at the day end

Plan and modality are rewound with `value_as_of`; the contract status is
rewound from the `Paso CONTRACT` step events; a beneficiary counts from its
creation event onward.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, time, timedelta
from typing import Optional, Sequence

from domain.event import Event, EventEntity, step_comment
from domain.readiness import get_close_sale_readiness
from domain.report import index_by_sale
from domain.sale import Sale, SaleModality, SalePlan, SaleStatus
from domain.sale_step import SaleStepType, StepStatus
from domain.temporal import count_in_status_as_of, last_event_at, value_as_of
from domain.time import hours_between, require_utc_timestamp
from repositories.store import SalesStore

logger = logging.getLogger(__name__)

BENEFICIARY_CREATION_COMMENT = "Creación de beneficiario"
ALERT_HOURS = 24


@dataclass(frozen=True, slots=True)
class ExecutiveTrends:
    day_ends: list[datetime] = field(default_factory=list)
    in_progress: list[int] = field(default_factory=list)
    ready: list[int] = field(default_factory=list)
    blocked: list[int] = field(default_factory=list)
    alerts: list[int] = field(default_factory=list)


def compute_day_ends(now: datetime, days: int) -> list[datetime]:
    """Ends of the last `days` UTC days, oldest first, today last."""

    if days < 1:
        raise ValueError("days must be >= 1")
    require_utc_timestamp("now", now)
    today_end = datetime.combine(now.date(), time.max, tzinfo=now.tzinfo)
    return [today_end - timedelta(days=offset) for offset in range(days - 1, -1, -1)]


def _beneficiary_exists_at(exists_now: bool, events: Sequence[Event], day_end: datetime) -> bool:
    if not exists_now:
        return False
    creation = [
        e.created_at
        for e in events
        if e.entity is EventEntity.BENEFICIARY and (e.comment or "") == BENEFICIARY_CREATION_COMMENT
    ]
    if not creation:
        return True
    return min(creation) <= day_end


def _sale_as_of(sale: Sale, events: Sequence[Event], day_end: datetime) -> Sale:
    plan = value_as_of(
        events,
        sale.plan.value if sale.plan else None,
        day_end,
        entity=EventEntity.SALE,
        field="plan",
    )
    modality = value_as_of(
        events,
        sale.modality.value if sale.modality else None,
        day_end,
        entity=EventEntity.SALE,
        field="modality",
    )
    return replace(
        sale,
        plan=SalePlan(plan) if plan else None,
        modality=SaleModality(modality) if modality else None,
    )


def compute_executive_trends(store: SalesStore, *, now: datetime, days: int = 7) -> ExecutiveTrends:
    """
    Trend series for the last `days` day ends.

    Only events inside the window are read; anything older cannot change the
    values at the window's day ends.
    """

    day_ends = compute_day_ends(now, days)
    window_start = day_ends[0] - timedelta(days=1)

    in_progress_sales = store.list_sales_by_status(SaleStatus.IN_PROGRESS)
    window_events = store.list_events_in_range(window_start, max(now, day_ends[-1]))
    events_by_sale = index_by_sale(window_events)
    status_events = [e for e in window_events if e.matches(entity=EventEntity.SALE, field="status") and e.new_value]

    ids = [s.id for s in in_progress_sales]
    beneficiary_exists = store.get_beneficiary_exists_by_sale_ids(ids)
    contract_status = store.get_contract_status_by_sale_ids(ids)

    trends = ExecutiveTrends(day_ends=day_ends)
    contract_comment = step_comment(SaleStepType.CONTRACT.value)

    for day_end in day_ends:
        trends.in_progress.append(
            count_in_status_as_of(len(in_progress_sales), status_events, SaleStatus.IN_PROGRESS.value, day_end)
        )

        ready = blocked = alerts = 0
        for sale in in_progress_sales:
            events = events_by_sale.get(sale.id, [])
            current_contract: Optional[StepStatus] = contract_status.get(sale.id)
            contract_at = value_as_of(
                events,
                current_contract.value if current_contract else None,
                day_end,
                entity=EventEntity.STEP,
                field="status",
                comment=contract_comment,
            )
            readiness = get_close_sale_readiness(
                _sale_as_of(sale, events, day_end),
                _beneficiary_exists_at(beneficiary_exists.get(sale.id, False), events, day_end),
                contract_at == StepStatus.SIGNED.value,
            )
            if readiness.can_close:
                ready += 1
            else:
                blocked += 1

            base = last_event_at(events, day_end) or sale.created_at
            if hours_between(base, day_end) >= ALERT_HOURS:
                alerts += 1

        trends.ready.append(ready)
        trends.blocked.append(blocked)
        trends.alerts.append(alerts)

    logger.debug("Computed executive trends", extra={"days": days, "in_progress": len(in_progress_sales)})
    return trends
