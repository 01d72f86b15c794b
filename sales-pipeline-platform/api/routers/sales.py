"""
Sales API Endpoints.

Endpoints for closing readiness, closing, archiving, operational steps and
runtime alerts of a single sale.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from api.dependencies import get_actor_user_id, get_now, get_store, raise_http_error
from api.models import (
    CloseSaleResponse,
    EnsureStepsResponse,
    ReadinessResponse,
    RequiredStepsResponse,
    SaleAlertsResponse,
    SaleResponse,
    SaleStepResponse,
)
from domain.region import compute_required_step_types
from repositories.store import SalesStore
from services.alerts_service import compute_sale_runtime_alerts
from services.sales_service import (
    archive_sale,
    close_sale,
    ensure_sale_steps_for_sale,
    get_close_sale_readiness,
)

router = APIRouter()


@router.get(
    "/sales/{sale_id}/readiness",
    response_model=ReadinessResponse,
    summary="Close Readiness",
    description="Evaluate whether a sale can be closed and list every blocker."
)
def get_readiness(sale_id: str, store: SalesStore = Depends(get_store)):
    """
    Evaluate the closing readiness of a sale against its live state.

    **Blockers (all collected, in this order):**
    - `SALE_NOT_FOUND`: the sale does not exist or is archived; always
      reported together with `SALE_INCOMPLETE`
    - `SALE_INCOMPLETE`: plan or modality missing
    - `BENEFICIARY_REQUIRED`: no beneficiary registered
    - `CONTRACT_NOT_SIGNED`: the CONTRACT step is not SIGNED
    """
    try:
        return ReadinessResponse.from_domain(get_close_sale_readiness(store, sale_id))
    except Exception as e:
        raise_http_error(e, "evaluate readiness")


@router.post(
    "/sales/{sale_id}/close",
    response_model=CloseSaleResponse,
    summary="Close Sale",
    description="Close an in-progress sale. Business blockers are returned with ok=false."
)
def post_close_sale(
    sale_id: str,
    store: SalesStore = Depends(get_store),
    actor_user_id: str = Depends(get_actor_user_id),
):
    """
    Close a sale after re-validating its live state.

    **Responses:**
    - `200` with `ok: true` and the closed sale
    - `200` with `ok: false` and the first blocker (`error`, `message`)
    - `409` when the sale changed while it was being closed, or it is a lead
    """
    try:
        return CloseSaleResponse.from_domain(close_sale(store, sale_id, actor_user_id))
    except Exception as e:
        raise_http_error(e, "close sale")


@router.post(
    "/sales/{sale_id}/archive",
    response_model=SaleResponse,
    summary="Archive Sale",
    description="Archive a lead or in-progress sale. Closed sales cannot be archived."
)
def post_archive_sale(
    sale_id: str,
    store: SalesStore = Depends(get_store),
    actor_user_id: str = Depends(get_actor_user_id),
):
    try:
        return SaleResponse.from_domain(archive_sale(store, sale_id, actor_user_id))
    except Exception as e:
        raise_http_error(e, "archive sale")


@router.post(
    "/sales/{sale_id}/steps/ensure",
    response_model=EnsureStepsResponse,
    summary="Ensure Sale Steps",
    description="Create the operational steps required by the sale's region that do not exist yet."
)
def post_ensure_steps(
    sale_id: str,
    region: Optional[str] = Query(None, description="Service region to use instead of the stored one"),
    store: SalesStore = Depends(get_store),
    actor_user_id: str = Depends(get_actor_user_id),
):
    """
    Idempotently create missing steps.

    Calling it twice creates nothing the second time; existing steps are
    never removed or reset.
    """
    try:
        created = ensure_sale_steps_for_sale(store, sale_id, actor_user_id, service_region=region)
        return EnsureStepsResponse(
            sale_id=sale_id,
            created=[SaleStepResponse.from_domain(step) for step in created],
        )
    except Exception as e:
        raise_http_error(e, "ensure sale steps")


@router.get(
    "/sales/{sale_id}/alerts",
    response_model=SaleAlertsResponse,
    summary="Sale Runtime Alerts",
    description="Inactivity, payment, dependency and missing-data alerts for a sale."
)
def get_sale_alerts(
    sale_id: str,
    store: SalesStore = Depends(get_store),
    now: datetime = Depends(get_now),
):
    try:
        return SaleAlertsResponse.from_domain(sale_id, compute_sale_runtime_alerts(store, sale_id, now=now))
    except Exception as e:
        raise_http_error(e, "compute sale alerts")


@router.get(
    "/steps/required",
    response_model=RequiredStepsResponse,
    summary="Required Steps by Region",
    description="Step types required for a service region (free text accepted)."
)
def get_required_steps(region: Optional[str] = Query(None, description="Region, e.g. 'Valparaíso'")):
    """
    **Examples:**
    - `?region=Santiago` → base steps + INSTALLATION
    - `?region=Antofagasta` → base steps + SHIPPING, REMOTE_SUPPORT
    - no region → same as REGIONES
    """
    try:
        return RequiredStepsResponse(
            region=region,
            required_steps=[kind.value for kind in compute_required_step_types(region)],
        )
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to compute required steps: {str(e)}"
        )
