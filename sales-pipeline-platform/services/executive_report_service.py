"""
Executive report service.

Builds the management report for a closed date range:
- funnel: leads created/dropped, sales created/closed
- blocked sales at the end of the range, by reason, with days blocked
- per-sale narrative timeline

Independent reads are dispatched on a thread pool and joined in memory; any
failed read fails the whole report (no partial reports). All aggregation is
delegated to domain/report.py.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Optional

import config
from domain.errors import InvalidRangeError
from domain.event import EventEntity
from domain.report import (
    ExecutiveReport,
    ReportFunnel,
    ReportRange,
    ReportSummary,
    build_sales_timeline,
    classify_blocked_sales,
    compute_funnel_counts,
    index_by_sale,
    status_at_creation,
    summarize_blocked_sales,
)
from domain.sale import SaleStatus
from repositories.store import SalesStore, unique_ids

logger = logging.getLogger(__name__)


def _is_aware(value: object) -> bool:
    return isinstance(value, datetime) and value.tzinfo is not None and value.utcoffset() is not None


def validate_report_range(date_from: object, date_to: object) -> tuple[datetime, datetime]:
    """
    Check the bounds and convert them to UTC.

    Bounds with any other offset are accepted and converted, so every store
    query receives offset-0 timestamps.

    Raises:
        InvalidRangeError: invalid_from_date, invalid_to_date or invalid_range.
    """

    if not _is_aware(date_from):
        raise InvalidRangeError("invalid_from_date")
    if not _is_aware(date_to):
        raise InvalidRangeError("invalid_to_date")
    start = date_from.astimezone(timezone.utc)  # type: ignore[union-attr]
    end = date_to.astimezone(timezone.utc)  # type: ignore[union-attr]
    if start > end:
        raise InvalidRangeError("invalid_range")
    return start, end


def _result(future: Future, what: str):
    try:
        return future.result()
    except Exception:
        logger.exception("Executive report read failed", extra={"read": what})
        raise


def build_executive_report(
    store: SalesStore,
    date_from: datetime,
    date_to: datetime,
    *,
    max_workers: Optional[int] = None,
) -> ExecutiveReport:
    """
    Build the executive report for [date_from, date_to].

    Args:
        store: Store adapter.
        date_from: Range start (timezone-aware).
        date_to: Range end (timezone-aware), inclusive.

    Returns:
        ExecutiveReport

    Raises:
        InvalidRangeError: before any store access.
        StoreError: any failed read.
    """

    date_from, date_to = validate_report_range(date_from, date_to)

    workers = max_workers or config.REPORT_MAX_WORKERS
    with ThreadPoolExecutor(max_workers=workers) as executor:
        # 1) Range-bounded data.
        sales_future = executor.submit(store.list_sales_created_in_range, date_from, date_to)
        events_future = executor.submit(store.list_events_in_range, date_from, date_to)
        in_progress_future = executor.submit(store.list_sales_by_status, SaleStatus.IN_PROGRESS)

        sales_created = _result(sales_future, "sales_created_in_range")
        events_in_range = _result(events_future, "events_in_range")
        in_progress_all = _result(in_progress_future, "in_progress_sales")

        # 2) Funnel from status transitions. A sale created in range has all of
        # its history from creation up to `to` in range; only sales with no
        # status event in range need their later history to find the status
        # they were created with.
        events_by_sale = index_by_sale(events_in_range)
        history_by_sale = {sale.id: events_by_sale.get(sale.id, []) for sale in sales_created}
        unresolved = [
            sale
            for sale in sales_created
            if sale.status in (SaleStatus.IN_PROGRESS, SaleStatus.CLOSED)
            and not any(e.matches(entity=EventEntity.SALE, field="status") for e in history_by_sale[sale.id])
        ]
        history_futures = {
            sale.id: executor.submit(
                store.list_events_for_sale, sale.id, entity=EventEntity.SALE, field="status"
            )
            for sale in unresolved
        }
        for sale_id, future in history_futures.items():
            history_by_sale[sale_id] = _result(future, "sale_status_history")
        creation_status = {
            sale.id: status_at_creation(sale, history_by_sale[sale.id]) for sale in sales_created
        }
        funnel = compute_funnel_counts(sales_created, events_in_range, creation_status)

        # 3) Blocked snapshot at the end of the range.
        in_progress = [s for s in in_progress_all if s.created_at <= date_to]
        in_progress_ids = [s.id for s in in_progress]
        beneficiary_future = executor.submit(store.get_beneficiary_exists_by_sale_ids, in_progress_ids)
        contract_future = executor.submit(store.get_contract_signed_by_sale_ids, in_progress_ids)
        beneficiary_exists = _result(beneficiary_future, "beneficiary_exists")
        contract_signed = _result(contract_future, "contract_signed")

        blocked = classify_blocked_sales(
            in_progress,
            beneficiary_exists,
            contract_signed,
            events_by_sale,
            date_from,
            date_to,
        )
        blocked_summary = summarize_blocked_sales(blocked, date_from, date_to)

        # 4) Timeline: activity in range plus sales blocked at the end.
        timeline_ids = unique_ids(
            [s.id for s in sales_created] + [e.sale_id for e in events_in_range] + [b.sale_id for b in blocked]
        )
        sales_by_id = _result(executor.submit(store.get_sales_by_ids, timeline_ids), "timeline_sales")
        client_ids = [sale.client_id for sale in sales_by_id.values()]
        clients_by_id = _result(executor.submit(store.get_clients_by_ids, client_ids), "timeline_clients")

    customer_names = {client_id: client.full_name for client_id, client in clients_by_id.items()}
    timeline = build_sales_timeline(
        timeline_ids,
        sales_by_id,
        customer_names,
        events_by_sale,
        {b.sale_id: b.primary_reason for b in blocked},
    )

    logger.info(
        "Executive report built",
        extra={
            "date_from": date_from.isoformat(),
            "date_to": date_to.isoformat(),
            "leads_created": funnel.leads_created,
            "sales_blocked": blocked_summary.total,
            "timeline_sales": len(timeline),
        },
    )

    return ExecutiveReport(
        range=ReportRange(date_from=date_from, date_to=date_to),
        summary=ReportSummary(
            leads_created=funnel.leads_created,
            leads_dropped=funnel.leads_dropped,
            leads_drop_rate=funnel.leads_drop_rate,
            sales_created=funnel.sales_created,
            sales_closed=funnel.sales_closed,
            sales_blocked=blocked_summary.total,
        ),
        funnel=ReportFunnel(
            leads=funnel.leads_created,
            sales=funnel.sales_created,
            closed=funnel.sales_closed,
        ),
        blocked_sales=blocked_summary,
        sales_timeline=timeline,
    )
