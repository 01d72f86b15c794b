"""
Reports API Endpoints.

Executive report and dashboard trends.
"""

from datetime import date, datetime, time, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_now, get_store, raise_http_error
from api.models import ExecutiveReportResponse, TrendsResponse
from domain.errors import InvalidRangeError
from repositories.store import SalesStore
from services.executive_report_service import build_executive_report
from services.trends_service import compute_executive_trends

router = APIRouter()


def parse_range_bound(raw: str, *, end_of_day: bool, error_code: str) -> datetime:
    """
    Parse a query bound.

    A bare date (YYYY-MM-DD) covers the whole UTC day: midnight for `from`,
    the last microsecond for `to`. Full timestamps must carry an offset and
    are converted to UTC.
    """

    try:
        if len(raw) == 10:
            day = date.fromisoformat(raw)
            return datetime.combine(day, time.max if end_of_day else time.min, tzinfo=timezone.utc)
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError as e:
        raise InvalidRangeError(error_code) from e
    if parsed.tzinfo is None:
        raise InvalidRangeError(error_code)
    return parsed.astimezone(timezone.utc)


@router.get(
    "/reports/executive",
    response_model=ExecutiveReportResponse,
    summary="Executive Report",
    description="Funnel, blocked sales and per-sale narrative timeline for a date range."
)
def get_executive_report(
    date_from: str = Query(..., alias="from", description="Range start, YYYY-MM-DD or ISO timestamp"),
    date_to: str = Query(..., alias="to", description="Range end (inclusive), YYYY-MM-DD or ISO timestamp"),
    store: SalesStore = Depends(get_store),
):
    """
    Build the executive report for `[from, to]`.

    **Errors:**
    - `400 invalid_from_date` / `invalid_to_date`: unparseable bound
    - `400 invalid_range`: `from` is after `to`
    - `503`: a store read failed (no partial reports)

    **Example:** `/api/v1/reports/executive?from=2025-03-01&to=2025-03-31`
    """
    try:
        start = parse_range_bound(date_from, end_of_day=False, error_code="invalid_from_date")
        end = parse_range_bound(date_to, end_of_day=True, error_code="invalid_to_date")
        return ExecutiveReportResponse.from_domain(build_executive_report(store, start, end))
    except Exception as e:
        raise_http_error(e, "build executive report")


@router.get(
    "/reports/trends",
    response_model=TrendsResponse,
    summary="Executive Trends",
    description="Daily in-progress, ready, blocked and alert counts for the last N days."
)
def get_trends(
    days: Optional[int] = Query(7, ge=1, le=90, description="Number of days, today included"),
    store: SalesStore = Depends(get_store),
    now: datetime = Depends(get_now),
):
    try:
        return TrendsResponse.from_domain(compute_executive_trends(store, now=now, days=days or 7))
    except Exception as e:
        raise_http_error(e, "compute trends")
