"""
Sales service: the write operations of the pipeline.

Handles:
- Lead capture (client dedupe by RUT) and conversion to an in-progress sale
- Plan/modality, client, beneficiary and commercial terms edits
- Operational steps: initialization per region and status updates
- Closing (guarded write after live re-validation) and archiving

Every write emits its audit events through services/audit.py. Business
blockers on close are returned as `DomainResult`; invalid input raises.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Literal, Mapping, Optional

from domain.beneficiary import Beneficiary
from domain.client import Client, RutInUseError, normalize_rut
from domain.commercial_terms import CommercialTerms, compute_final_price
from domain.errors import NotFoundError, SaleLockedError, SaleWriteConflictError, require_identifier
from domain.event import EventEntity, step_comment
from domain.readiness import CloseReadiness, get_close_sale_readiness as evaluate_close_readiness
from domain.region import compute_required_step_types, to_controlled_region, to_controlled_region_or_default
from domain.result import DomainResult, SaleDomainError
from domain.sale import (
    PaymentSentVia,
    PaymentStatus,
    Sale,
    SaleModality,
    SalePlan,
    SaleStatus,
    require_transition,
)
from domain.sale_step import (
    PaymentMethod,
    SaleStep,
    SaleStepType,
    SignatureType,
    StepDependencyError,
    StepStatus,
    StepStatusError,
    find_step,
    validate_step_status,
)
from repositories.store import SalesStore

from .audit import Clock, audit_field_name, emit_event, new_id, update_with_events, utc_now

logger = logging.getLogger(__name__)

CLIENT_EDITABLE_FIELDS: tuple[str, ...] = (
    "full_name",
    "rut",
    "phone",
    "email",
    "address",
    "profession",
    "region",
)


@dataclass(frozen=True, slots=True)
class CreateLeadInput:
    full_name: str
    rut: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    profession: Optional[str] = None
    region: Optional[str] = None


@dataclass(frozen=True, slots=True)
class LeadCreated:
    sale_id: str
    client_id: str
    created_client: bool


@dataclass(frozen=True, slots=True)
class BeneficiaryInput:
    full_name: str
    service_address: str
    region: Optional[str] = None
    rut: Optional[str] = None


@dataclass(frozen=True, slots=True)
class CommercialTermsInput:
    """
    Agreed price of a sale.

    final_price is derived from base_price and the discount when omitted.
    """

    base_price: int
    discount_percentage: Decimal = Decimal("0")
    final_price: Optional[int] = None
    discount_confirmed: bool = False
    final_price_confirmed: bool = False


def _blank(value: Optional[str]) -> bool:
    return not (value or "").strip()


def _require_sale(store: SalesStore, sale_id: str) -> Sale:
    sale = store.get_sale(require_identifier("sale_id", sale_id))
    if sale is None:
        raise NotFoundError(f"Sale {sale_id} not found")
    return sale


def _require_editable(sale: Sale) -> None:
    if sale.is_archived or sale.status is SaleStatus.CLOSED:
        raise SaleLockedError(f"Sale {sale.id} is {sale.status.value} and can no longer be edited")


# Leads


def create_lead(
    store: SalesStore,
    data: CreateLeadInput,
    actor_user_id: str,
    *,
    clock: Clock = utc_now,
) -> LeadCreated:
    """
    Capture a lead: reuse or create the client, then create the sale as `lead`.

    Clients are deduplicated only by RUT. New sales start with payment status
    PENDING.
    """

    if _blank(data.full_name):
        raise ValueError("full_name is required")

    now = clock()
    rut = normalize_rut(data.rut)

    client = store.find_client_by_rut(rut) if rut else None
    created_client = client is None
    if client is None:
        region = to_controlled_region(data.region)
        client = store.insert_client(
            Client(
                id=new_id(),
                full_name=data.full_name.strip(),
                rut=rut,
                phone=data.phone,
                email=data.email,
                address=data.address,
                profession=data.profession,
                region=region.value if region else None,
                created_at=now,
                updated_at=now,
            )
        )

    sale = store.insert_sale(
        Sale(
            id=new_id(),
            client_id=client.id,
            status=SaleStatus.LEAD,
            created_at=now,
            payment_status=PaymentStatus.PENDING,
        )
    )

    def audit(entity: EventEntity, field: str, value: Any, comment: Optional[str] = None) -> None:
        emit_event(
            store,
            sale_id=sale.id,
            user_id=actor_user_id,
            entity=entity,
            field=field,
            at=now,
            new_value=value,
            comment=comment,
        )

    if created_client:
        audit(EventEntity.CLIENT, "fullName", client.full_name, "Creación de cliente")
        for field, value in (("rut", client.rut), ("phone", client.phone), ("email", client.email)):
            if not _blank(value):
                audit(EventEntity.CLIENT, field, value)

    audit(EventEntity.SALE, "clientId", client.id, "Asociación cliente → venta")
    audit(EventEntity.SALE, "status", SaleStatus.LEAD, "Creación de lead")

    logger.info(
        "Lead created",
        extra={"sale_id": sale.id, "client_id": client.id, "created_client": created_client},
    )
    return LeadCreated(sale_id=sale.id, client_id=client.id, created_client=created_client)


def convert_lead_to_in_progress(
    store: SalesStore,
    sale_id: str,
    actor_user_id: str,
    *,
    clock: Clock = utc_now,
) -> Sale:
    sale = _require_sale(store, sale_id)
    require_transition(sale.status, SaleStatus.IN_PROGRESS)

    updated, _ = update_with_events(
        store,
        entity=EventEntity.SALE,
        current=sale,
        patch={"status": SaleStatus.IN_PROGRESS},
        write=lambda changes: store.update_sale(sale.id, changes),
        sale_id=sale.id,
        user_id=actor_user_id,
        at=clock(),
        comment="Conversión Lead → Venta",
    )
    return updated


# Sale configuration


def update_sale_plan_and_modality(
    store: SalesStore,
    sale_id: str,
    actor_user_id: str,
    *,
    plan: Optional[SalePlan] = None,
    modality: Optional[SaleModality] = None,
    clock: Clock = utc_now,
) -> Sale:
    """Set plan and/or modality; an omitted argument leaves the field as is."""

    sale = _require_sale(store, sale_id)
    _require_editable(sale)

    patch: dict[str, Any] = {}
    if plan is not None:
        patch["plan"] = plan
    if modality is not None:
        patch["modality"] = modality

    updated, _ = update_with_events(
        store,
        entity=EventEntity.SALE,
        current=sale,
        patch=patch,
        write=lambda changes: store.update_sale(sale.id, changes),
        sale_id=sale.id,
        user_id=actor_user_id,
        at=clock(),
    )
    return updated


def update_client(
    store: SalesStore,
    sale_id: str,
    client_id: str,
    actor_user_id: str,
    patch: Mapping[str, Any],
    *,
    clock: Clock = utc_now,
) -> Client:
    """
    Edit client fields from the context of one sale.

    Raises:
        RutInUseError: the new RUT belongs to another client.
    """

    sale_id = require_identifier("sale_id", sale_id)
    client = store.get_client(require_identifier("client_id", client_id))
    if client is None:
        raise NotFoundError(f"Client {client_id} not found")

    unknown = set(patch) - set(CLIENT_EDITABLE_FIELDS)
    if unknown:
        raise ValueError(f"Client fields cannot be edited: {sorted(unknown)}")

    normalized: dict[str, Any] = {}
    for field in CLIENT_EDITABLE_FIELDS:
        if field not in patch:
            continue
        value = patch[field]
        if field == "region":
            value = to_controlled_region_or_default(value).value
        elif field == "rut":
            value = normalize_rut(value)
        normalized[field] = value

    next_rut = normalized.get("rut")
    if next_rut and next_rut != normalize_rut(client.rut):
        other = store.find_client_by_rut(next_rut)
        if other is not None and other.id != client.id:
            raise RutInUseError("rut_in_use")

    now = clock()
    updated, _ = update_with_events(
        store,
        entity=EventEntity.CLIENT,
        current=client,
        patch=normalized,
        write=lambda changes: store.update_client(client.id, changes),
        sale_id=sale_id,
        user_id=actor_user_id,
        at=now,
        extra_changes={"updated_at": now},
    )
    return updated


def upsert_beneficiary(
    store: SalesStore,
    sale_id: str,
    actor_user_id: str,
    data: BeneficiaryInput,
    *,
    mode: Literal["save", "replace"] = "save",
    clock: Clock = utc_now,
) -> Beneficiary:
    """
    Create or update the sale's beneficiary and derive the sale's service region.

    mode="replace" records the swap of one person for another as a single
    `BENEFICIARY.replaced` event instead of per-field events.
    """

    if mode not in ("save", "replace"):
        raise ValueError(f"Unknown beneficiary mode: {mode!r}")
    if _blank(data.full_name):
        raise ValueError("full_name is required")

    sale = _require_sale(store, sale_id)
    now = clock()
    region = to_controlled_region_or_default(data.region).value
    fields = {
        "full_name": data.full_name.strip(),
        "rut": normalize_rut(data.rut),
        "service_address": data.service_address.strip(),
        "region": region,
    }

    current = store.get_beneficiary_by_sale(sale.id)
    if current is None:
        beneficiary = store.insert_beneficiary(
            Beneficiary(id=new_id(), sale_id=sale.id, created_at=now, updated_at=now, **fields)
        )
        for attribute, field in (
            ("full_name", "fullName"),
            ("rut", "rut"),
            ("service_address", "serviceAddress"),
            ("region", "region"),
        ):
            emit_event(
                store,
                sale_id=sale.id,
                user_id=actor_user_id,
                entity=EventEntity.BENEFICIARY,
                field=field,
                at=now,
                new_value=fields[attribute],
                comment="Creación de beneficiario",
            )
    elif mode == "replace":
        beneficiary = store.update_beneficiary(current.id, {**fields, "updated_at": now})
        emit_event(
            store,
            sale_id=sale.id,
            user_id=actor_user_id,
            entity=EventEntity.BENEFICIARY,
            field="replaced",
            at=now,
            previous_value=current.full_name,
            new_value=beneficiary.full_name,
        )
    else:
        beneficiary, _ = update_with_events(
            store,
            entity=EventEntity.BENEFICIARY,
            current=current,
            patch=fields,
            write=lambda changes: store.update_beneficiary(current.id, changes),
            sale_id=sale.id,
            user_id=actor_user_id,
            at=now,
            extra_changes={"updated_at": now},
        )

    if sale.service_region != region:
        store.update_sale(sale.id, {"service_region": region})
        emit_event(
            store,
            sale_id=sale.id,
            user_id=actor_user_id,
            entity=EventEntity.SALE,
            field="serviceRegion",
            at=now,
            previous_value=sale.service_region,
            new_value=region,
            comment="Región de servicio definida por beneficiario",
        )

    return beneficiary


def upsert_commercial_terms(
    store: SalesStore,
    sale_id: str,
    actor_user_id: str,
    terms: CommercialTermsInput,
    *,
    clock: Clock = utc_now,
) -> CommercialTerms:
    sale = _require_sale(store, sale_id)
    now = clock()

    final_price = terms.final_price
    if final_price is None:
        final_price = compute_final_price(terms.base_price, terms.discount_percentage)

    fields = {
        "base_price": terms.base_price,
        "discount_percentage": Decimal(terms.discount_percentage),
        "final_price": final_price,
        "discount_confirmed": terms.discount_confirmed,
        "final_price_confirmed": terms.final_price_confirmed,
    }

    current = store.get_commercial_terms_by_sale(sale.id)
    if current is None:
        created = store.insert_commercial_terms(
            CommercialTerms(id=new_id(), sale_id=sale.id, updated_at=now, **fields)
        )
        for attribute, value in fields.items():
            emit_event(
                store,
                sale_id=sale.id,
                user_id=actor_user_id,
                entity=EventEntity.COMMERCIAL,
                field=audit_field_name(attribute),
                at=now,
                new_value=value,
                comment="Creación términos comerciales",
            )
        return created

    updated, _ = update_with_events(
        store,
        entity=EventEntity.COMMERCIAL,
        current=current,
        patch=fields,
        write=lambda changes: store.update_commercial_terms(current.id, changes),
        sale_id=sale.id,
        user_id=actor_user_id,
        at=now,
        extra_changes={"updated_at": now},
    )
    return updated


# Steps


def ensure_sale_steps_for_sale(
    store: SalesStore,
    sale_id: str,
    actor_user_id: str,
    service_region: Optional[str] = None,
    *,
    clock: Clock = utc_now,
) -> list[SaleStep]:
    """
    Create every missing required step as PENDING.

    The region defaults to the beneficiary's, then the sale's. Existing steps
    are never touched; calling this twice creates nothing the second time.

    Returns:
        The steps created by this call (possibly empty).
    """

    sale = _require_sale(store, sale_id)
    if service_region is None:
        beneficiary = store.get_beneficiary_by_sale(sale.id)
        service_region = beneficiary.region if beneficiary is not None else sale.service_region

    required = compute_required_step_types(service_region)
    existing = {step.type for step in store.list_steps_for_sale(sale.id)}

    now = clock()
    created: list[SaleStep] = []
    for kind in required:
        if kind in existing:
            continue
        step = store.insert_step(
            SaleStep(
                id=new_id(),
                sale_id=sale.id,
                type=kind,
                status=StepStatus.PENDING,
                updated_at=now,
                updated_by=actor_user_id,
            )
        )
        if step is None:
            # Created concurrently by another call.
            continue
        emit_event(
            store,
            sale_id=sale.id,
            user_id=actor_user_id,
            entity=EventEntity.STEP,
            field="status",
            at=now,
            new_value=StepStatus.PENDING,
            comment=f"Inicializa paso {kind.value}",
        )
        created.append(step)

    if created:
        logger.info(
            "Initialized sale steps",
            extra={"sale_id": sale.id, "steps": [s.type.value for s in created]},
        )
    return created


def _check_step_rules(
    kind: SaleStepType,
    status: Optional[StepStatus],
    method: Optional[PaymentMethod],
    payment_sent_via: Optional[PaymentSentVia],
    steps: list[SaleStep],
    current: SaleStep,
) -> None:
    if status is not None:
        validate_step_status(kind, status, method)

    if kind is SaleStepType.PAYMENT:
        effective_status = status or current.status
        if effective_status in (StepStatus.DONE, StepStatus.SENT) and method is None:
            raise StepStatusError(f"PAYMENT {effective_status.value} requires a payment method")
        if effective_status is StepStatus.SENT and method is not PaymentMethod.FLOW:
            raise StepStatusError("PAYMENT can only be SENT when the payment method is FLOW")
        if status is StepStatus.SENT and payment_sent_via is None:
            raise StepStatusError("PAYMENT SENT requires the channel it was sent through")

    if kind is SaleStepType.SHIPPING and status is not None and status is not StepStatus.PENDING:
        contract = find_step(steps, SaleStepType.CONTRACT)
        payment = find_step(steps, SaleStepType.PAYMENT)
        contract_signed = contract is not None and contract.status is StepStatus.SIGNED
        payment_done = payment is not None and payment.status is StepStatus.DONE
        if not (contract_signed and payment_done):
            raise StepDependencyError("SHIPPING cannot advance before the contract is signed and payment is done")


def update_sale_step(
    store: SalesStore,
    sale_id: str,
    actor_user_id: str,
    kind: SaleStepType,
    *,
    status: Optional[StepStatus] = None,
    method: Optional[PaymentMethod] = None,
    payment_sent_via: Optional[PaymentSentVia] = None,
    tracking_code: Optional[str] = None,
    signature_type: Optional[SignatureType] = None,
    clock: Clock = utc_now,
) -> SaleStep:
    """
    Update one operational step.

    Rules:
    - status must belong to the step type's vocabulary
    - PAYMENT DONE/SENT needs a method; SENT needs FLOW and a send channel
    - SHIPPING cannot leave PENDING until contract is SIGNED and payment DONE

    A PAYMENT status change is mirrored onto the sale's payment status
    (DONE becomes READY).
    """

    sale = _require_sale(store, sale_id)
    steps = store.list_steps_for_sale(sale.id)
    current = find_step(steps, kind)
    if current is None:
        raise NotFoundError(f"Step {kind.value} not found for sale {sale.id}")

    effective_method = method if method is not None else current.method
    _check_step_rules(kind, status, effective_method, payment_sent_via, steps, current)

    patch: dict[str, Any] = {}
    if status is not None:
        patch["status"] = status
    if method is not None:
        patch["method"] = method
    if tracking_code is not None:
        patch["tracking_code"] = tracking_code
    if signature_type is not None:
        patch["signature_type"] = signature_type

    now = clock()
    updated, _ = update_with_events(
        store,
        entity=EventEntity.STEP,
        current=current,
        patch=patch,
        write=lambda changes: store.update_step(current.id, changes),
        sale_id=sale.id,
        user_id=actor_user_id,
        at=now,
        comment=step_comment(kind.value),
        extra_changes={"updated_at": now, "updated_by": actor_user_id},
    )

    if kind is SaleStepType.PAYMENT and status is not None:
        sale_patch: dict[str, Any] = {
            "payment_status": PaymentStatus.READY if status is StepStatus.DONE else PaymentStatus(status.value)
        }
        if status is StepStatus.SENT and payment_sent_via is not None:
            sale_patch["payment_sent_via"] = payment_sent_via
        update_with_events(
            store,
            entity=EventEntity.SALE,
            current=sale,
            patch=sale_patch,
            write=lambda changes: store.update_sale(sale.id, changes),
            sale_id=sale.id,
            user_id=actor_user_id,
            at=now,
        )

    return updated


# Closing and archiving


def get_close_sale_readiness(store: SalesStore, sale_id: str) -> CloseReadiness:
    """
    Readiness evaluated against live state.

    An archived sale is reported as not found, as closing it would be.
    """

    sale = store.get_sale(require_identifier("sale_id", sale_id))
    if sale is not None and sale.is_archived:
        sale = None

    beneficiary_exists = store.get_beneficiary_by_sale(sale_id) is not None
    contract = store.get_step(sale_id, SaleStepType.CONTRACT)
    contract_signed = contract is not None and contract.status is StepStatus.SIGNED
    return evaluate_close_readiness(sale, beneficiary_exists, contract_signed)


def _first_close_blocker(store: SalesStore, sale: Sale) -> Optional[SaleDomainError]:
    if sale.plan is None or sale.modality is None:
        return SaleDomainError.SALE_INCOMPLETE
    if store.get_beneficiary_by_sale(sale.id) is None:
        return SaleDomainError.BENEFICIARY_REQUIRED
    contract = store.get_step(sale.id, SaleStepType.CONTRACT)
    if contract is None or contract.status is not StepStatus.SIGNED:
        return SaleDomainError.CONTRACT_NOT_SIGNED
    return None


def close_sale(
    store: SalesStore,
    sale_id: str,
    actor_user_id: str,
    *,
    clock: Clock = utc_now,
) -> DomainResult[Sale]:
    """
    Close a sale after re-validating its live state.

    The status write is guarded on the status, plan and modality that were
    read; a lost race re-reads the sale and succeeds only if someone else
    already closed it. Beneficiary and contract live in other rows, so they
    are checked again once the sale is closed and the close is undone if an
    edit invalidated them in between.

    Returns:
        DomainResult with the closed sale, or the first failing blocker.

    Raises:
        SaleWriteConflictError: the sale, its beneficiary or its contract
            changed while closing.
    """

    sale = store.get_sale(require_identifier("sale_id", sale_id))
    if sale is None or sale.is_archived:
        return DomainResult.failure(SaleDomainError.SALE_NOT_FOUND)
    if sale.status is SaleStatus.CLOSED:
        return DomainResult.success(sale)
    blocker = _first_close_blocker(store, sale)
    if blocker is not None:
        return DomainResult.failure(blocker)

    require_transition(sale.status, SaleStatus.CLOSED)

    now = clock()
    closed = store.update_sale_guarded(
        sale.id,
        {"status": SaleStatus.CLOSED, "closed_at": now},
        expected={"status": sale.status, "plan": sale.plan, "modality": sale.modality},
    )
    if closed is None:
        latest = store.get_sale(sale.id)
        if latest is not None and latest.status is SaleStatus.CLOSED:
            return DomainResult.success(latest)
        logger.warning(
            "Sale changed while closing",
            extra={"sale_id": sale.id, "read_status": sale.status.value},
        )
        raise SaleWriteConflictError(f"Sale {sale.id} changed while closing; retry")

    blocker = _first_close_blocker(store, closed)
    if blocker is not None:
        reopened = store.update_sale_guarded(
            sale.id,
            {"status": sale.status, "closed_at": None},
            expected={"status": SaleStatus.CLOSED, "closed_at": now},
        )
        if reopened is None:
            logger.error("Could not undo invalidated close", extra={"sale_id": sale.id})
        logger.warning(
            "Close invalidated by a concurrent edit",
            extra={"sale_id": sale.id, "blocker": blocker.value},
        )
        raise SaleWriteConflictError(f"Sale {sale.id} changed while closing ({blocker.value}); retry")

    emit_event(
        store,
        sale_id=sale.id,
        user_id=actor_user_id,
        entity=EventEntity.SALE,
        field="status",
        at=now,
        previous_value=sale.status,
        new_value=SaleStatus.CLOSED,
        comment="Cierre de venta",
    )
    logger.info("Sale closed", extra={"sale_id": sale.id, "actor_user_id": actor_user_id})
    return DomainResult.success(closed)


def archive_sale(
    store: SalesStore,
    sale_id: str,
    actor_user_id: str,
    *,
    clock: Clock = utc_now,
) -> Sale:
    """Archive a lead or in-progress sale. Archiving twice is a no-op."""

    sale = _require_sale(store, sale_id)
    if sale.status is SaleStatus.ARCHIVED:
        return sale
    require_transition(sale.status, SaleStatus.ARCHIVED)

    now = clock()
    updated, _ = update_with_events(
        store,
        entity=EventEntity.SALE,
        current=sale,
        patch={"status": SaleStatus.ARCHIVED, "archived_at": now},
        write=lambda changes: store.update_sale(sale.id, changes),
        sale_id=sale.id,
        user_id=actor_user_id,
        at=now,
    )
    logger.info("Sale archived", extra={"sale_id": sale.id, "previous_status": sale.status.value})
    return updated


__all__ = [
    "BeneficiaryInput",
    "CommercialTermsInput",
    "CreateLeadInput",
    "LeadCreated",
    "archive_sale",
    "close_sale",
    "compute_required_step_types",
    "convert_lead_to_in_progress",
    "create_lead",
    "ensure_sale_steps_for_sale",
    "get_close_sale_readiness",
    "update_client",
    "update_sale_plan_and_modality",
    "update_sale_step",
    "upsert_beneficiary",
    "upsert_commercial_terms",
]
