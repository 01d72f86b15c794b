"""
Store adapter contract.

Services only talk to persistence through `SalesStore`. Two implementations
exist:
- repositories/supabase_store.py: the production Supabase tables
- repositories/memory_store.py: thread-safe in-process dicts (tests, local runs)

Conventions shared by every implementation:
- `update_*` methods take a mapping of entity attribute names to new values
  and return the updated entity.
- Batched `*_by_ids` lookups accept any number of ids; implementations chunk
  them (`in` filters are capped) and merge the results.
- Infrastructure failures raise `StoreError`.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Iterator, Mapping, Optional, Protocol, Sequence, TypeVar

from domain.beneficiary import Beneficiary
from domain.client import Client
from domain.commercial_terms import CommercialTerms
from domain.event import Event, EventEntity
from domain.sale import Sale, SaleStatus
from domain.sale_step import SaleStep, SaleStepType, StepStatus

T = TypeVar("T")


class StoreError(RuntimeError):
    """Raised when the backing store rejects or fails a request."""


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Yield consecutive slices of at most `size` items."""

    if size < 1:
        raise ValueError("chunk size must be >= 1")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def unique_ids(ids: Iterable[str]) -> list[str]:
    """Distinct, non-empty ids in first-seen order."""

    seen: dict[str, None] = {}
    for value in ids:
        if value:
            seen.setdefault(value, None)
    return list(seen)


class SalesStore(Protocol):
    # Events
    def append_event(self, event: Event) -> Event: ...

    def list_events_for_sale(
        self,
        sale_id: str,
        *,
        entity: Optional[EventEntity] = None,
        field: Optional[str] = None,
    ) -> list[Event]:
        """Events of one sale, newest first."""
        ...

    def list_events_in_range(self, date_from: datetime, date_to: datetime) -> list[Event]:
        """Events created within [date_from, date_to], oldest first."""
        ...

    # Sales
    def get_sale(self, sale_id: str) -> Optional[Sale]: ...

    def list_sales_created_in_range(self, date_from: datetime, date_to: datetime) -> list[Sale]: ...

    def list_sales_by_status(self, status: SaleStatus) -> list[Sale]: ...

    def get_sales_by_ids(self, sale_ids: Sequence[str]) -> dict[str, Sale]: ...

    def insert_sale(self, sale: Sale) -> Sale: ...

    def update_sale(self, sale_id: str, changes: Mapping[str, Any]) -> Sale: ...

    def update_sale_guarded(
        self,
        sale_id: str,
        changes: Mapping[str, Any],
        expected: Mapping[str, Any],
    ) -> Optional[Sale]:
        """
        Apply `changes` only if every attribute in `expected` still holds its
        expected value. Returns None when the guard did not match.
        """
        ...

    # Steps
    def list_steps_for_sale(self, sale_id: str) -> list[SaleStep]: ...

    def get_step(self, sale_id: str, kind: SaleStepType) -> Optional[SaleStep]: ...

    def insert_step(self, step: SaleStep) -> Optional[SaleStep]:
        """Insert a step. Returns None when the sale already has a step of that type."""
        ...

    def update_step(self, step_id: str, changes: Mapping[str, Any]) -> SaleStep: ...

    def get_contract_status_by_sale_ids(self, sale_ids: Sequence[str]) -> dict[str, Optional[StepStatus]]: ...

    def get_contract_signed_by_sale_ids(self, sale_ids: Sequence[str]) -> dict[str, bool]: ...

    # Beneficiaries
    def get_beneficiary_by_sale(self, sale_id: str) -> Optional[Beneficiary]: ...

    def get_beneficiary_exists_by_sale_ids(self, sale_ids: Sequence[str]) -> dict[str, bool]: ...

    def insert_beneficiary(self, beneficiary: Beneficiary) -> Beneficiary: ...

    def update_beneficiary(self, beneficiary_id: str, changes: Mapping[str, Any]) -> Beneficiary: ...

    # Clients
    def get_client(self, client_id: str) -> Optional[Client]: ...

    def get_clients_by_ids(self, client_ids: Sequence[str]) -> dict[str, Client]: ...

    def find_client_by_rut(self, rut: str) -> Optional[Client]: ...

    def insert_client(self, client: Client) -> Client: ...

    def update_client(self, client_id: str, changes: Mapping[str, Any]) -> Client: ...

    # Commercial terms
    def get_commercial_terms_by_sale(self, sale_id: str) -> Optional[CommercialTerms]: ...

    def insert_commercial_terms(self, terms: CommercialTerms) -> CommercialTerms: ...

    def update_commercial_terms(self, terms_id: str, changes: Mapping[str, Any]) -> CommercialTerms: ...
