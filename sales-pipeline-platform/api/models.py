"""
API Request and Response Models.

Pydantic models for validating API requests and serializing responses.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from domain.alerts import SaleRuntimeAlerts
from domain.readiness import CloseReadiness
from domain.report import ExecutiveReport
from domain.result import SALE_ERROR_MESSAGES, DomainResult
from domain.sale import Sale
from domain.sale_step import STEP_TYPE_LABELS, SaleStep
from services.trends_service import ExecutiveTrends


# ============================================================================
# Sale Models
# ============================================================================

class SaleResponse(BaseModel):
    """Sale header as stored."""
    sale_id: str
    client_id: str
    status: str  # "lead", "in_progress", "closed", "archived"
    plan: Optional[str] = None
    modality: Optional[str] = None
    service_region: Optional[str] = None
    payment_status: Optional[str] = None
    created_at: datetime
    closed_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None

    class Config:
        json_schema_extra = {
            "example": {
                "sale_id": "8c1f3f0e-6f2a-4c52-9f33-0b9e2d7a1e10",
                "client_id": "5b0a7c4e-2d3f-4e8a-8b61-7f1c9a2e4d33",
                "status": "closed",
                "plan": "FULL",
                "modality": "CON_TELEASISTENCIA",
                "service_region": "SANTIAGO",
                "payment_status": "READY",
                "created_at": "2025-03-01T13:05:00Z",
                "closed_at": "2025-03-09T16:40:00Z",
                "archived_at": None
            }
        }

    @classmethod
    def from_domain(cls, sale: Sale) -> "SaleResponse":
        return cls(
            sale_id=sale.id,
            client_id=sale.client_id,
            status=sale.status.value,
            plan=sale.plan.value if sale.plan else None,
            modality=sale.modality.value if sale.modality else None,
            service_region=sale.service_region,
            payment_status=sale.payment_status.value if sale.payment_status else None,
            created_at=sale.created_at,
            closed_at=sale.closed_at,
            archived_at=sale.archived_at,
        )


class ReadinessResponse(BaseModel):
    """Whether a sale can be closed right now."""
    can_close: bool
    blockers: List[str]
    messages: List[str]

    class Config:
        json_schema_extra = {
            "example": {
                "can_close": False,
                "blockers": ["BENEFICIARY_REQUIRED", "CONTRACT_NOT_SIGNED"],
                "messages": [
                    "Debe registrar un beneficiario antes de cerrar la venta.",
                    "El contrato aún no está firmado."
                ]
            }
        }

    @classmethod
    def from_domain(cls, readiness: CloseReadiness) -> "ReadinessResponse":
        return cls(
            can_close=readiness.can_close,
            blockers=[b.value for b in readiness.blockers],
            messages=[SALE_ERROR_MESSAGES[b] for b in readiness.blockers],
        )


class CloseSaleResponse(BaseModel):
    """Outcome of a close request; business blockers come back as `ok: false`."""
    ok: bool
    sale: Optional[SaleResponse] = None
    error: Optional[str] = None
    message: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "ok": False,
                "sale": None,
                "error": "CONTRACT_NOT_SIGNED",
                "message": "El contrato aún no está firmado."
            }
        }

    @classmethod
    def from_domain(cls, result: DomainResult[Sale]) -> "CloseSaleResponse":
        return cls(
            ok=result.ok,
            sale=SaleResponse.from_domain(result.data) if result.data is not None else None,
            error=result.error.value if result.error is not None else None,
            message=result.message,
        )


class SaleStepResponse(BaseModel):
    """Operational step of a sale."""
    step_id: str
    type: str
    label: str
    status: str
    updated_at: datetime
    updated_by: Optional[str] = None

    @classmethod
    def from_domain(cls, step: SaleStep) -> "SaleStepResponse":
        return cls(
            step_id=step.id,
            type=step.type.value,
            label=STEP_TYPE_LABELS[step.type],
            status=step.status.value,
            updated_at=step.updated_at,
            updated_by=step.updated_by,
        )


class EnsureStepsResponse(BaseModel):
    """Steps created by an ensure call (empty when everything already existed)."""
    sale_id: str
    created: List[SaleStepResponse]

    class Config:
        json_schema_extra = {
            "example": {
                "sale_id": "8c1f3f0e-6f2a-4c52-9f33-0b9e2d7a1e10",
                "created": [
                    {
                        "step_id": "0d4b9e51-2f0c-4a7e-9a43-5f2b8c1d6e77",
                        "type": "INSTALLATION",
                        "label": "Instalación",
                        "status": "PENDING",
                        "updated_at": "2025-03-02T10:00:00Z",
                        "updated_by": "user-1"
                    }
                ]
            }
        }


class RequiredStepsResponse(BaseModel):
    """Step types a sale in the given region must have."""
    region: Optional[str] = None
    required_steps: List[str]

    class Config:
        json_schema_extra = {
            "example": {
                "region": "Valparaíso",
                "required_steps": ["CONTRACT", "PAYMENT", "DEVICE_CONFIG", "CREDENTIALS", "INSTALLATION"]
            }
        }


class SaleAlertsResponse(BaseModel):
    """Runtime alert level and the reasons behind it."""
    sale_id: str
    level: str  # "ok", "warning", "critical"
    reasons: List[str]

    class Config:
        json_schema_extra = {
            "example": {
                "sale_id": "8c1f3f0e-6f2a-4c52-9f33-0b9e2d7a1e10",
                "level": "critical",
                "reasons": ["48h sin eventos", "Envío pendiente >4 días"]
            }
        }

    @classmethod
    def from_domain(cls, sale_id: str, alerts: SaleRuntimeAlerts) -> "SaleAlertsResponse":
        return cls(sale_id=sale_id, level=alerts.level.value, reasons=list(alerts.reasons))


# ============================================================================
# Report Models
# ============================================================================

class ReportRangeResponse(BaseModel):
    date_from: datetime = Field(..., alias="from")
    date_to: datetime = Field(..., alias="to")

    class Config:
        populate_by_name = True


class ReportSummaryResponse(BaseModel):
    leads_created: int
    leads_dropped: int
    leads_drop_rate: float
    sales_created: int
    sales_closed: int
    sales_blocked: int


class ReportFunnelResponse(BaseModel):
    leads: int
    sales: int
    closed: int


class BlockedReasonResponse(BaseModel):
    reason: str
    count: int
    average_days_blocked: float


class BlockedSalesResponse(BaseModel):
    total: int
    reasons: List[BlockedReasonResponse]


class NarrativeEntryResponse(BaseModel):
    label: str
    group_key: str
    date: datetime
    count: int


class SaleTimelineResponse(BaseModel):
    sale_id: str
    customer_name: str
    current_status: str
    blocked_reason: Optional[str] = None
    events: List[NarrativeEntryResponse]


class ExecutiveReportResponse(BaseModel):
    """Management report for a date range."""
    range: ReportRangeResponse
    summary: ReportSummaryResponse
    funnel: ReportFunnelResponse
    blocked_sales: BlockedSalesResponse
    sales_timeline: List[SaleTimelineResponse]

    class Config:
        json_schema_extra = {
            "example": {
                "range": {"from": "2025-03-01T00:00:00Z", "to": "2025-03-31T23:59:59.999999Z"},
                "summary": {
                    "leads_created": 10,
                    "leads_dropped": 2,
                    "leads_drop_rate": 0.2,
                    "sales_created": 8,
                    "sales_closed": 3,
                    "sales_blocked": 4
                },
                "funnel": {"leads": 10, "sales": 8, "closed": 3},
                "blocked_sales": {
                    "total": 4,
                    "reasons": [
                        {"reason": "CONTRACT_NOT_SIGNED", "count": 3, "average_days_blocked": 6.5}
                    ]
                },
                "sales_timeline": []
            }
        }

    @classmethod
    def from_domain(cls, report: ExecutiveReport) -> "ExecutiveReportResponse":
        return cls(
            range=ReportRangeResponse(date_from=report.range.date_from, date_to=report.range.date_to),
            summary=ReportSummaryResponse(
                leads_created=report.summary.leads_created,
                leads_dropped=report.summary.leads_dropped,
                leads_drop_rate=report.summary.leads_drop_rate,
                sales_created=report.summary.sales_created,
                sales_closed=report.summary.sales_closed,
                sales_blocked=report.summary.sales_blocked,
            ),
            funnel=ReportFunnelResponse(
                leads=report.funnel.leads,
                sales=report.funnel.sales,
                closed=report.funnel.closed,
            ),
            blocked_sales=BlockedSalesResponse(
                total=report.blocked_sales.total,
                reasons=[
                    BlockedReasonResponse(
                        reason=stat.reason.value,
                        count=stat.count,
                        average_days_blocked=stat.average_days_blocked,
                    )
                    for stat in report.blocked_sales.reasons
                ],
            ),
            sales_timeline=[
                SaleTimelineResponse(
                    sale_id=entry.sale_id,
                    customer_name=entry.customer_name,
                    current_status=entry.current_status.value,
                    blocked_reason=entry.blocked_reason.value if entry.blocked_reason else None,
                    events=[
                        NarrativeEntryResponse(
                            label=item.label,
                            group_key=item.group_key,
                            date=item.date,
                            count=item.count,
                        )
                        for item in entry.events
                    ],
                )
                for entry in report.sales_timeline
            ],
        )


class TrendsResponse(BaseModel):
    """Daily series for the executive dashboard, oldest day first."""
    days: List[datetime]
    in_progress: List[int]
    ready: List[int]
    blocked: List[int]
    alerts: List[int]

    class Config:
        json_schema_extra = {
            "example": {
                "days": ["2025-03-30T23:59:59.999999Z", "2025-03-31T23:59:59.999999Z"],
                "in_progress": [12, 13],
                "ready": [4, 5],
                "blocked": [8, 8],
                "alerts": [2, 3]
            }
        }

    @classmethod
    def from_domain(cls, trends: ExecutiveTrends) -> "TrendsResponse":
        return cls(
            days=trends.day_ends,
            in_progress=trends.in_progress,
            ready=trends.ready,
            blocked=trends.blocked,
            alerts=trends.alerts,
        )

