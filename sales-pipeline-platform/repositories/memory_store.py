"""
In-memory store.

Implements the `SalesStore` contract over plain dicts guarded by a single
lock. Used by the test-suite and by local runs with STORE_BACKEND=memory.
"""

from __future__ import annotations

import threading
from dataclasses import fields, replace
from datetime import datetime
from typing import Any, Mapping, Optional, Sequence, TypeVar

from domain.beneficiary import Beneficiary
from domain.client import Client, normalize_rut
from domain.commercial_terms import CommercialTerms
from domain.event import Event, EventEntity
from domain.sale import Sale, SaleStatus
from domain.sale_step import SaleStep, SaleStepType, StepStatus

from .store import StoreError, unique_ids

E = TypeVar("E")


def _apply(entity: E, changes: Mapping[str, Any]) -> E:
    known = {f.name for f in fields(entity)}  # type: ignore[arg-type]
    unknown = set(changes) - known
    if unknown:
        raise StoreError(f"Unknown attributes for {type(entity).__name__}: {sorted(unknown)}")
    return replace(entity, **changes)  # type: ignore[type-var]


class InMemorySalesStore:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._events: list[Event] = []
        self._sales: dict[str, Sale] = {}
        self._steps: dict[str, SaleStep] = {}
        self._beneficiaries: dict[str, Beneficiary] = {}
        self._clients: dict[str, Client] = {}
        self._terms: dict[str, CommercialTerms] = {}

    # Events

    def append_event(self, event: Event) -> Event:
        with self._lock:
            self._events.append(event)
        return event

    def list_events_for_sale(
        self,
        sale_id: str,
        *,
        entity: Optional[EventEntity] = None,
        field: Optional[str] = None,
    ) -> list[Event]:
        with self._lock:
            matching = [
                e for e in self._events if e.sale_id == sale_id and e.matches(entity=entity, field=field)
            ]
        return sorted(matching, key=lambda e: e.created_at, reverse=True)

    def list_events_in_range(self, date_from: datetime, date_to: datetime) -> list[Event]:
        with self._lock:
            matching = [e for e in self._events if date_from <= e.created_at <= date_to]
        return sorted(matching, key=lambda e: e.created_at)

    # Sales

    def get_sale(self, sale_id: str) -> Optional[Sale]:
        with self._lock:
            return self._sales.get(sale_id)

    def list_sales_created_in_range(self, date_from: datetime, date_to: datetime) -> list[Sale]:
        with self._lock:
            matching = [s for s in self._sales.values() if date_from <= s.created_at <= date_to]
        return sorted(matching, key=lambda s: s.created_at)

    def list_sales_by_status(self, status: SaleStatus) -> list[Sale]:
        with self._lock:
            return [s for s in self._sales.values() if s.status is status]

    def get_sales_by_ids(self, sale_ids: Sequence[str]) -> dict[str, Sale]:
        with self._lock:
            return {sid: self._sales[sid] for sid in unique_ids(sale_ids) if sid in self._sales}

    def insert_sale(self, sale: Sale) -> Sale:
        with self._lock:
            if sale.id in self._sales:
                raise StoreError(f"Sale {sale.id} already exists")
            self._sales[sale.id] = sale
        return sale

    def update_sale(self, sale_id: str, changes: Mapping[str, Any]) -> Sale:
        with self._lock:
            current = self._sales.get(sale_id)
            if current is None:
                raise StoreError(f"Sale {sale_id} does not exist")
            updated = _apply(current, changes)
            self._sales[sale_id] = updated
        return updated

    def update_sale_guarded(
        self,
        sale_id: str,
        changes: Mapping[str, Any],
        expected: Mapping[str, Any],
    ) -> Optional[Sale]:
        with self._lock:
            current = self._sales.get(sale_id)
            if current is None:
                return None
            for name, value in expected.items():
                if getattr(current, name) != value:
                    return None
            updated = _apply(current, changes)
            self._sales[sale_id] = updated
        return updated

    # Steps

    def list_steps_for_sale(self, sale_id: str) -> list[SaleStep]:
        with self._lock:
            return [s for s in self._steps.values() if s.sale_id == sale_id]

    def get_step(self, sale_id: str, kind: SaleStepType) -> Optional[SaleStep]:
        with self._lock:
            for step in self._steps.values():
                if step.sale_id == sale_id and step.type is kind:
                    return step
        return None

    def insert_step(self, step: SaleStep) -> Optional[SaleStep]:
        with self._lock:
            if self.get_step(step.sale_id, step.type) is not None:
                return None
            self._steps[step.id] = step
        return step

    def update_step(self, step_id: str, changes: Mapping[str, Any]) -> SaleStep:
        with self._lock:
            current = self._steps.get(step_id)
            if current is None:
                raise StoreError(f"Step {step_id} does not exist")
            updated = _apply(current, changes)
            self._steps[step_id] = updated
        return updated

    def get_contract_status_by_sale_ids(self, sale_ids: Sequence[str]) -> dict[str, Optional[StepStatus]]:
        ids = unique_ids(sale_ids)
        out: dict[str, Optional[StepStatus]] = {sid: None for sid in ids}
        with self._lock:
            for step in self._steps.values():
                if step.sale_id in out and step.type is SaleStepType.CONTRACT:
                    out[step.sale_id] = step.status
        return out

    def get_contract_signed_by_sale_ids(self, sale_ids: Sequence[str]) -> dict[str, bool]:
        statuses = self.get_contract_status_by_sale_ids(sale_ids)
        return {sid: status is StepStatus.SIGNED for sid, status in statuses.items()}

    # Beneficiaries

    def get_beneficiary_by_sale(self, sale_id: str) -> Optional[Beneficiary]:
        with self._lock:
            for beneficiary in self._beneficiaries.values():
                if beneficiary.sale_id == sale_id:
                    return beneficiary
        return None

    def get_beneficiary_exists_by_sale_ids(self, sale_ids: Sequence[str]) -> dict[str, bool]:
        ids = unique_ids(sale_ids)
        out = {sid: False for sid in ids}
        with self._lock:
            for beneficiary in self._beneficiaries.values():
                if beneficiary.sale_id in out:
                    out[beneficiary.sale_id] = True
        return out

    def insert_beneficiary(self, beneficiary: Beneficiary) -> Beneficiary:
        with self._lock:
            if self.get_beneficiary_by_sale(beneficiary.sale_id) is not None:
                raise StoreError(f"Sale {beneficiary.sale_id} already has a beneficiary")
            self._beneficiaries[beneficiary.id] = beneficiary
        return beneficiary

    def update_beneficiary(self, beneficiary_id: str, changes: Mapping[str, Any]) -> Beneficiary:
        with self._lock:
            current = self._beneficiaries.get(beneficiary_id)
            if current is None:
                raise StoreError(f"Beneficiary {beneficiary_id} does not exist")
            updated = _apply(current, changes)
            self._beneficiaries[beneficiary_id] = updated
        return updated

    # Clients

    def get_client(self, client_id: str) -> Optional[Client]:
        with self._lock:
            return self._clients.get(client_id)

    def get_clients_by_ids(self, client_ids: Sequence[str]) -> dict[str, Client]:
        with self._lock:
            return {cid: self._clients[cid] for cid in unique_ids(client_ids) if cid in self._clients}

    def find_client_by_rut(self, rut: str) -> Optional[Client]:
        wanted = normalize_rut(rut)
        if wanted is None:
            return None
        with self._lock:
            for client in self._clients.values():
                if normalize_rut(client.rut) == wanted:
                    return client
        return None

    def insert_client(self, client: Client) -> Client:
        with self._lock:
            if client.id in self._clients:
                raise StoreError(f"Client {client.id} already exists")
            self._clients[client.id] = client
        return client

    def update_client(self, client_id: str, changes: Mapping[str, Any]) -> Client:
        with self._lock:
            current = self._clients.get(client_id)
            if current is None:
                raise StoreError(f"Client {client_id} does not exist")
            updated = _apply(current, changes)
            self._clients[client_id] = updated
        return updated

    # Commercial terms

    def get_commercial_terms_by_sale(self, sale_id: str) -> Optional[CommercialTerms]:
        with self._lock:
            for terms in self._terms.values():
                if terms.sale_id == sale_id:
                    return terms
        return None

    def insert_commercial_terms(self, terms: CommercialTerms) -> CommercialTerms:
        with self._lock:
            if self.get_commercial_terms_by_sale(terms.sale_id) is not None:
                raise StoreError(f"Sale {terms.sale_id} already has commercial terms")
            self._terms[terms.id] = terms
        return terms

    def update_commercial_terms(self, terms_id: str, changes: Mapping[str, Any]) -> CommercialTerms:
        with self._lock:
            current = self._terms.get(terms_id)
            if current is None:
                raise StoreError(f"Commercial terms {terms_id} do not exist")
            updated = _apply(current, changes)
            self._terms[terms_id] = updated
        return updated
