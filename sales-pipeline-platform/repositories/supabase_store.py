"""
Supabase store (persistence).

Implements the `SalesStore` contract over the Supabase tables:
- sales, sale_steps, beneficiaries, clients, commercial_terms, events

This module only moves records in and out of the database. It does not
enforce business rules beyond the single guarded write used when closing a
sale.

Column conventions follow the rest of the schema: snake_case names and
timestamps stored as ISO-8601 UTC in `*_utc` columns.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from postgrest.exceptions import APIError  # type: ignore[import-not-found]

import config
from domain.beneficiary import Beneficiary
from domain.client import Client, normalize_rut
from domain.commercial_terms import CommercialTerms
from domain.event import Event, EventEntity
from domain.sale import PaymentSentVia, PaymentStatus, Sale, SaleModality, SalePlan, SaleStatus
from domain.sale_step import PaymentMethod, SaleStep, SaleStepType, SignatureType, StepStatus
from domain.time import require_utc_timestamp

from .client import get_supabase
from .store import StoreError, chunked, unique_ids

logger = logging.getLogger(__name__)

# Supabase table names.
# Keep these aligned with your database schema.
_SALES_TABLE: str = "sales"
_STEPS_TABLE: str = "sale_steps"
_BENEFICIARIES_TABLE: str = "beneficiaries"
_CLIENTS_TABLE: str = "clients"
_TERMS_TABLE: str = "commercial_terms"
_EVENTS_TABLE: str = "events"

_PAGE_SIZE = 1000

# Attributes stored under a different column name.
_TIMESTAMP_COLUMNS: dict[str, str] = {
    "created_at": "created_at_utc",
    "updated_at": "updated_at_utc",
    "closed_at": "closed_at_utc",
    "archived_at": "archived_at_utc",
}


def _to_iso_utc(dt: datetime, *, name: str) -> str:
    """Serialize a UTC datetime to ISO-8601 (timezone-aware, offset 0)."""

    require_utc_timestamp(name, dt)
    return dt.astimezone(timezone.utc).isoformat()


def _parse_utc_datetime(value: Any) -> datetime:
    """
    Parse a Supabase timestamp into a timezone-aware UTC datetime.

    Supabase commonly returns ISO-8601 strings, sometimes with a trailing 'Z'.
    """

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise TypeError(f"Unsupported timestamp type: {type(value)!r}")

    if dt.tzinfo is None or dt.utcoffset() is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _opt_datetime(value: Any) -> Optional[datetime]:
    return _parse_utc_datetime(value) if value else None


def _opt_str(value: Any) -> Optional[str]:
    return str(value) if value not in (None, "") else None


def _opt_enum(enum_type: type[Enum], value: Any) -> Any:
    return enum_type(str(value)) if value not in (None, "") else None


def _column(name: str) -> str:
    return _TIMESTAMP_COLUMNS.get(name, name)


def _serialize(name: str, value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, datetime):
        return _to_iso_utc(value, name=name)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    return value


def _to_payload(changes: Mapping[str, Any]) -> dict[str, Any]:
    return {_column(name): _serialize(name, value) for name, value in changes.items()}


def _run(query: Any, action: str) -> list[Mapping[str, Any]]:
    """Execute a query builder and return its rows, raising StoreError on failure."""

    try:
        response = query.execute()
    except APIError as e:
        logger.error("Supabase request failed", extra={"action": action, "error": str(e)})
        raise StoreError(f"Failed to {action}: {e}") from e

    error = getattr(response, "error", None)
    if error:
        logger.error("Supabase request failed", extra={"action": action, "error": str(error)})
        raise StoreError(f"Failed to {action}: {error}")
    return getattr(response, "data", None) or []


def _row_to_sale(row: Mapping[str, Any]) -> Sale:
    """Convert a Supabase row into a Sale."""

    return Sale(
        id=str(row["id"]),
        client_id=str(row["client_id"]),
        status=SaleStatus(str(row["status"])),
        created_at=_parse_utc_datetime(row["created_at_utc"]),
        plan=_opt_enum(SalePlan, row.get("plan")),
        modality=_opt_enum(SaleModality, row.get("modality")),
        service_region=_opt_str(row.get("service_region")),
        payment_status=_opt_enum(PaymentStatus, row.get("payment_status")),
        payment_sent_via=_opt_enum(PaymentSentVia, row.get("payment_sent_via")),
        closed_at=_opt_datetime(row.get("closed_at_utc")),
        archived_at=_opt_datetime(row.get("archived_at_utc")),
    )


def _row_to_step(row: Mapping[str, Any]) -> SaleStep:
    return SaleStep(
        id=str(row["id"]),
        sale_id=str(row["sale_id"]),
        type=SaleStepType(str(row["type"])),
        status=StepStatus(str(row["status"])),
        updated_at=_parse_utc_datetime(row["updated_at_utc"]),
        updated_by=str(row.get("updated_by") or ""),
        method=_opt_enum(PaymentMethod, row.get("method")),
        tracking_code=_opt_str(row.get("tracking_code")),
        signature_type=_opt_enum(SignatureType, row.get("signature_type")),
    )


def _row_to_beneficiary(row: Mapping[str, Any]) -> Beneficiary:
    return Beneficiary(
        id=str(row["id"]),
        sale_id=str(row["sale_id"]),
        full_name=str(row.get("full_name") or ""),
        service_address=str(row.get("service_address") or ""),
        region=_opt_str(row.get("region")),
        rut=_opt_str(row.get("rut")),
        created_at=_opt_datetime(row.get("created_at_utc")),
        updated_at=_opt_datetime(row.get("updated_at_utc")),
    )


def _row_to_client(row: Mapping[str, Any]) -> Client:
    return Client(
        id=str(row["id"]),
        full_name=str(row.get("full_name") or ""),
        rut=_opt_str(row.get("rut")),
        phone=_opt_str(row.get("phone")),
        email=_opt_str(row.get("email")),
        address=_opt_str(row.get("address")),
        profession=_opt_str(row.get("profession")),
        region=_opt_str(row.get("region")),
        created_at=_opt_datetime(row.get("created_at_utc")),
        updated_at=_opt_datetime(row.get("updated_at_utc")),
    )


def _row_to_terms(row: Mapping[str, Any]) -> CommercialTerms:
    return CommercialTerms(
        id=str(row["id"]),
        sale_id=str(row["sale_id"]),
        base_price=int(row["base_price"]),
        discount_percentage=Decimal(str(row.get("discount_percentage") or 0)),
        final_price=int(row["final_price"]),
        discount_confirmed=bool(row.get("discount_confirmed")),
        final_price_confirmed=bool(row.get("final_price_confirmed")),
        updated_at=_opt_datetime(row.get("updated_at_utc")),
    )


def _row_to_event(row: Mapping[str, Any]) -> Event:
    return Event(
        id=str(row["id"]),
        sale_id=str(row["sale_id"]),
        user_id=str(row.get("user_id") or ""),
        entity=EventEntity(str(row["entity"])),
        field=str(row["field"]),
        created_at=_parse_utc_datetime(row["created_at_utc"]),
        previous_value=_opt_str(row.get("previous_value")),
        new_value=_opt_str(row.get("new_value")),
        comment=_opt_str(row.get("comment")),
    )


@dataclass(frozen=True, slots=True)
class _Table:
    name: str
    mapper: Callable[[Mapping[str, Any]], Any]


class SupabaseSalesStore:
    """`SalesStore` backed by Supabase (supabase-py)."""

    def __init__(self, client: Any = None, *, chunk_size: Optional[int] = None) -> None:
        self._client = client
        self._chunk_size = chunk_size or config.BATCH_LOOKUP_CHUNK_SIZE

    @property
    def _db(self) -> Any:
        if self._client is None:
            self._client = get_supabase()
        return self._client

    # Helpers

    def _insert(self, table: _Table, payload: Mapping[str, Any], action: str) -> Any:
        query = self._db.table(table.name).insert(dict(payload))
        rows = _run(query, action)
        if not rows:
            raise StoreError(f"Failed to {action}: no row returned")
        return table.mapper(rows[0])

    def _update_by_id(self, table: _Table, row_id: str, changes: Mapping[str, Any], action: str) -> Any:
        query = self._db.table(table.name).update(_to_payload(changes)).eq("id", row_id)
        rows = _run(query, action)
        if not rows:
            raise StoreError(f"Failed to {action}: {row_id} not found")
        return table.mapper(rows[0])

    def _select_one(self, table: _Table, column: str, value: str, action: str) -> Any:
        query = self._db.table(table.name).select("*").eq(column, value).limit(1)
        rows = _run(query, action)
        return table.mapper(rows[0]) if rows else None

    def _select_in(self, table: _Table, column: str, ids: Iterable[str], action: str) -> list[Mapping[str, Any]]:
        out: list[Mapping[str, Any]] = []
        for chunk in chunked(unique_ids(ids), self._chunk_size):
            query = self._db.table(table.name).select("*").in_(column, chunk)
            out.extend(_run(query, action))
        return out

    def _select_paged(self, build: Callable[[], Any], action: str) -> list[Mapping[str, Any]]:
        """
        Fetch every row of a filtered, ordered select.

        PostgREST caps a single response, so rows are read in pages until a
        short page comes back.
        """

        all_rows: list[Mapping[str, Any]] = []
        offset = 0
        while True:
            query = build().range(offset, offset + _PAGE_SIZE - 1)
            page_rows = _run(query, action)
            all_rows.extend(page_rows)
            if len(page_rows) < _PAGE_SIZE:
                break
            offset += len(page_rows)
        return all_rows

    def _select_range(
        self,
        table: _Table,
        date_from: datetime,
        date_to: datetime,
        action: str,
    ) -> list[Mapping[str, Any]]:
        start = _to_iso_utc(date_from, name="date_from")
        end = _to_iso_utc(date_to, name="date_to")
        return self._select_paged(
            lambda: (
                self._db.table(table.name)
                .select("*")
                .gte("created_at_utc", start)
                .lte("created_at_utc", end)
                .order("created_at_utc")
            ),
            action,
        )

    # Events

    def append_event(self, event: Event) -> Event:
        payload = {
            "id": event.id,
            "sale_id": event.sale_id,
            "user_id": event.user_id,
            "entity": event.entity.value,
            "field": event.field,
            "previous_value": event.previous_value,
            "new_value": event.new_value,
            "comment": event.comment,
            "created_at_utc": _to_iso_utc(event.created_at, name="created_at"),
        }
        return self._insert(_EVENTS, payload, "append event")

    def list_events_for_sale(
        self,
        sale_id: str,
        *,
        entity: Optional[EventEntity] = None,
        field: Optional[str] = None,
    ) -> list[Event]:
        query = self._db.table(_EVENTS.name).select("*").eq("sale_id", sale_id)
        if entity is not None:
            query = query.eq("entity", entity.value)
        if field is not None:
            query = query.eq("field", field)
        query = query.order("created_at_utc", desc=True)
        return [_row_to_event(row) for row in _run(query, "list events for sale")]

    def list_events_in_range(self, date_from: datetime, date_to: datetime) -> list[Event]:
        rows = self._select_range(_EVENTS, date_from, date_to, "list events in range")
        return [_row_to_event(row) for row in rows]

    # Sales

    def get_sale(self, sale_id: str) -> Optional[Sale]:
        return self._select_one(_SALES, "id", sale_id, "get sale")

    def list_sales_created_in_range(self, date_from: datetime, date_to: datetime) -> list[Sale]:
        rows = self._select_range(_SALES, date_from, date_to, "list sales created in range")
        return [_row_to_sale(row) for row in rows]

    def list_sales_by_status(self, status: SaleStatus) -> list[Sale]:
        rows = self._select_paged(
            lambda: self._db.table(_SALES.name).select("*").eq("status", status.value).order("created_at_utc"),
            "list sales by status",
        )
        return [_row_to_sale(row) for row in rows]

    def get_sales_by_ids(self, sale_ids: Sequence[str]) -> dict[str, Sale]:
        rows = self._select_in(_SALES, "id", sale_ids, "get sales by ids")
        sales = (_row_to_sale(row) for row in rows)
        return {sale.id: sale for sale in sales}

    def insert_sale(self, sale: Sale) -> Sale:
        payload = _to_payload(
            {
                "id": sale.id,
                "client_id": sale.client_id,
                "status": sale.status,
                "plan": sale.plan,
                "modality": sale.modality,
                "service_region": sale.service_region,
                "payment_status": sale.payment_status,
                "payment_sent_via": sale.payment_sent_via,
                "created_at": sale.created_at,
                "closed_at": sale.closed_at,
                "archived_at": sale.archived_at,
            }
        )
        return self._insert(_SALES, payload, "insert sale")

    def update_sale(self, sale_id: str, changes: Mapping[str, Any]) -> Sale:
        return self._update_by_id(_SALES, sale_id, changes, "update sale")

    def update_sale_guarded(
        self,
        sale_id: str,
        changes: Mapping[str, Any],
        expected: Mapping[str, Any],
    ) -> Optional[Sale]:
        query = self._db.table(_SALES.name).update(_to_payload(changes)).eq("id", sale_id)
        for name, value in expected.items():
            if value is None:
                query = query.is_(_column(name), "null")
            else:
                query = query.eq(_column(name), _serialize(name, value))

        rows = _run(query, "update sale (guarded)")
        if not rows:
            logger.debug("Guarded sale update matched no row", extra={"sale_id": sale_id})
            return None
        return _row_to_sale(rows[0])

    # Steps

    def list_steps_for_sale(self, sale_id: str) -> list[SaleStep]:
        query = self._db.table(_STEPS.name).select("*").eq("sale_id", sale_id)
        return [_row_to_step(row) for row in _run(query, "list steps for sale")]

    def get_step(self, sale_id: str, kind: SaleStepType) -> Optional[SaleStep]:
        query = (
            self._db.table(_STEPS.name)
            .select("*")
            .eq("sale_id", sale_id)
            .eq("type", kind.value)
            .limit(1)
        )
        rows = _run(query, "get step")
        return _row_to_step(rows[0]) if rows else None

    def insert_step(self, step: SaleStep) -> Optional[SaleStep]:
        payload = _to_payload(
            {
                "id": step.id,
                "sale_id": step.sale_id,
                "type": step.type,
                "status": step.status,
                "method": step.method,
                "tracking_code": step.tracking_code,
                "signature_type": step.signature_type,
                "updated_at": step.updated_at,
                "updated_by": step.updated_by,
            }
        )
        # sale_steps is unique on (sale_id, type); a concurrent insert of the
        # same step comes back as no row.
        query = self._db.table(_STEPS.name).upsert(payload, on_conflict="sale_id,type", ignore_duplicates=True)
        rows = _run(query, "insert step")
        if not rows:
            logger.debug("Step already exists", extra={"sale_id": step.sale_id, "type": step.type.value})
            return None
        return _row_to_step(rows[0])

    def update_step(self, step_id: str, changes: Mapping[str, Any]) -> SaleStep:
        return self._update_by_id(_STEPS, step_id, changes, "update step")

    def get_contract_status_by_sale_ids(self, sale_ids: Sequence[str]) -> dict[str, Optional[StepStatus]]:
        ids = unique_ids(sale_ids)
        out: dict[str, Optional[StepStatus]] = {sid: None for sid in ids}
        for row in self._select_in(_STEPS, "sale_id", ids, "get contract steps"):
            if str(row.get("type") or "") == SaleStepType.CONTRACT.value:
                out[str(row["sale_id"])] = _opt_enum(StepStatus, row.get("status"))
        return out

    def get_contract_signed_by_sale_ids(self, sale_ids: Sequence[str]) -> dict[str, bool]:
        statuses = self.get_contract_status_by_sale_ids(sale_ids)
        return {sid: status is StepStatus.SIGNED for sid, status in statuses.items()}

    # Beneficiaries

    def get_beneficiary_by_sale(self, sale_id: str) -> Optional[Beneficiary]:
        return self._select_one(_BENEFICIARIES, "sale_id", sale_id, "get beneficiary")

    def get_beneficiary_exists_by_sale_ids(self, sale_ids: Sequence[str]) -> dict[str, bool]:
        ids = unique_ids(sale_ids)
        out = {sid: False for sid in ids}
        for row in self._select_in(_BENEFICIARIES, "sale_id", ids, "get beneficiaries"):
            if row.get("sale_id"):
                out[str(row["sale_id"])] = True
        return out

    def insert_beneficiary(self, beneficiary: Beneficiary) -> Beneficiary:
        payload = _to_payload(
            {
                "id": beneficiary.id,
                "sale_id": beneficiary.sale_id,
                "full_name": beneficiary.full_name,
                "rut": beneficiary.rut,
                "service_address": beneficiary.service_address,
                "region": beneficiary.region,
                "created_at": beneficiary.created_at,
                "updated_at": beneficiary.updated_at,
            }
        )
        return self._insert(_BENEFICIARIES, payload, "insert beneficiary")

    def update_beneficiary(self, beneficiary_id: str, changes: Mapping[str, Any]) -> Beneficiary:
        return self._update_by_id(_BENEFICIARIES, beneficiary_id, changes, "update beneficiary")

    # Clients

    def get_client(self, client_id: str) -> Optional[Client]:
        return self._select_one(_CLIENTS, "id", client_id, "get client")

    def get_clients_by_ids(self, client_ids: Sequence[str]) -> dict[str, Client]:
        rows = self._select_in(_CLIENTS, "id", client_ids, "get clients by ids")
        clients = (_row_to_client(row) for row in rows)
        return {client.id: client for client in clients}

    def find_client_by_rut(self, rut: str) -> Optional[Client]:
        normalized = normalize_rut(rut)
        if normalized is None:
            return None
        return self._select_one(_CLIENTS, "rut", normalized, "find client by rut")

    def insert_client(self, client: Client) -> Client:
        payload = _to_payload(
            {
                "id": client.id,
                "full_name": client.full_name,
                "rut": normalize_rut(client.rut),
                "phone": client.phone,
                "email": client.email,
                "address": client.address,
                "profession": client.profession,
                "region": client.region,
                "created_at": client.created_at,
                "updated_at": client.updated_at,
            }
        )
        return self._insert(_CLIENTS, payload, "insert client")

    def update_client(self, client_id: str, changes: Mapping[str, Any]) -> Client:
        if "rut" in changes:
            changes = {**changes, "rut": normalize_rut(changes["rut"])}
        return self._update_by_id(_CLIENTS, client_id, changes, "update client")

    # Commercial terms

    def get_commercial_terms_by_sale(self, sale_id: str) -> Optional[CommercialTerms]:
        return self._select_one(_TERMS, "sale_id", sale_id, "get commercial terms")

    def insert_commercial_terms(self, terms: CommercialTerms) -> CommercialTerms:
        payload = _to_payload(
            {
                "id": terms.id,
                "sale_id": terms.sale_id,
                "base_price": terms.base_price,
                "discount_percentage": terms.discount_percentage,
                "final_price": terms.final_price,
                "discount_confirmed": terms.discount_confirmed,
                "final_price_confirmed": terms.final_price_confirmed,
                "updated_at": terms.updated_at,
            }
        )
        return self._insert(_TERMS, payload, "insert commercial terms")

    def update_commercial_terms(self, terms_id: str, changes: Mapping[str, Any]) -> CommercialTerms:
        return self._update_by_id(_TERMS, terms_id, changes, "update commercial terms")


_SALES = _Table(_SALES_TABLE, _row_to_sale)
_STEPS = _Table(_STEPS_TABLE, _row_to_step)
_BENEFICIARIES = _Table(_BENEFICIARIES_TABLE, _row_to_beneficiary)
_CLIENTS = _Table(_CLIENTS_TABLE, _row_to_client)
_TERMS = _Table(_TERMS_TABLE, _row_to_terms)
_EVENTS = _Table(_EVENTS_TABLE, _row_to_event)
