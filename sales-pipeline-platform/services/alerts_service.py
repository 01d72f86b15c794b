"""
Alerts service.

Loads the live state a sale's runtime alerts depend on (events, steps,
client, beneficiary) and evaluates the pure rules in domain/alerts.py.
Several sales can be evaluated at once on a thread pool.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Optional, Sequence

import config
from domain.alerts import SaleRuntimeAlerts, collect_critical_missing_fields
from domain.alerts import compute_sale_runtime_alerts as evaluate_runtime_alerts
from domain.errors import NotFoundError, require_identifier
from domain.region import compute_required_step_types
from repositories.store import SalesStore

logger = logging.getLogger(__name__)


def compute_sale_runtime_alerts(store: SalesStore, sale_id: str, *, now: datetime) -> SaleRuntimeAlerts:
    """
    Runtime alerts for one sale at `now`.

    Required steps come from the beneficiary's region, falling back to the
    sale's service region.
    """

    sale = store.get_sale(require_identifier("sale_id", sale_id))
    if sale is None:
        raise NotFoundError(f"Sale {sale_id} not found")

    events = store.list_events_for_sale(sale.id)
    steps = store.list_steps_for_sale(sale.id)
    beneficiary = store.get_beneficiary_by_sale(sale.id)
    client = store.get_client(sale.client_id)

    region = beneficiary.region if beneficiary is not None else sale.service_region
    alerts = evaluate_runtime_alerts(
        sale,
        events,
        steps,
        now=now,
        required_step_types=compute_required_step_types(region),
        critical_missing_fields=collect_critical_missing_fields(sale, client, beneficiary),
    )
    logger.debug(
        "Computed sale alerts",
        extra={"sale_id": sale.id, "level": alerts.level.value, "reasons": alerts.reasons},
    )
    return alerts


def compute_alerts_for_sales(
    store: SalesStore,
    sale_ids: Sequence[str],
    *,
    now: datetime,
    max_workers: Optional[int] = None,
) -> dict[str, SaleRuntimeAlerts]:
    """
    Evaluate alerts for many sales concurrently.

    Any failure fails the whole call.
    """

    if not sale_ids:
        return {}

    results: dict[str, SaleRuntimeAlerts] = {}
    workers = max_workers or config.REPORT_MAX_WORKERS
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures_map = {
            executor.submit(compute_sale_runtime_alerts, store, sale_id, now=now): sale_id
            for sale_id in dict.fromkeys(sale_ids)
        }
        for future in as_completed(futures_map):
            sale_id = futures_map[future]
            try:
                results[sale_id] = future.result()
            except Exception:
                logger.exception("Alert computation failed", extra={"sale_id": sale_id})
                raise
    return results
