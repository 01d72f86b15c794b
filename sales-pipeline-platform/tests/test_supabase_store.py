"""
Tests for `repositories/supabase_store.py` against a fake supabase client.

The fake records every builder call and answers `execute()` with queued rows,
so row mapping, column naming, chunking and error handling can be checked
without a database.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from postgrest.exceptions import APIError

from domain.sale import PaymentStatus, SalePlan, SaleStatus
from domain.sale_step import SaleStep, SaleStepType, StepStatus
from repositories import supabase_store
from repositories.store import StoreError
from repositories.supabase_store import SupabaseSalesStore
from services.executive_report_service import build_executive_report


class FakeQuery:
    def __init__(self, client: "FakeClient", table: str) -> None:
        self.client = client
        self.table = table
        self.calls: list[tuple] = []
        self.options: dict[str, dict] = {}

    def __getattr__(self, name: str):
        def call(*args, **kwargs):
            self.calls.append((name, args))
            self.options[name] = kwargs
            return self

        return call

    def execute(self):
        if self.client.error is not None:
            raise self.client.error
        rows = self.client.responses.pop(0) if self.client.responses else []
        return SimpleNamespace(data=rows, error=None)


class FakeClient:
    def __init__(self, *responses: list) -> None:
        self.responses = list(responses)
        self.queries: list[FakeQuery] = []
        self.error = None

    def table(self, name: str) -> FakeQuery:
        query = FakeQuery(self, name)
        self.queries.append(query)
        return query


SALE_ROW = {
    "id": "sale-1",
    "client_id": "client-1",
    "status": "in_progress",
    "plan": "FULL",
    "modality": None,
    "payment_status": "PENDING",
    "created_at_utc": "2025-03-01T12:00:00Z",
    "closed_at_utc": None,
}


def test_get_sale_maps_row() -> None:
    client = FakeClient([SALE_ROW])
    store = SupabaseSalesStore(client)

    sale = store.get_sale("sale-1")

    assert sale is not None
    assert sale.status is SaleStatus.IN_PROGRESS
    assert sale.plan is SalePlan.FULL
    assert sale.modality is None
    assert sale.payment_status is PaymentStatus.PENDING
    assert sale.created_at == datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
    assert client.queries[0].table == "sales"
    assert ("eq", ("id", "sale-1")) in client.queries[0].calls


def test_get_sale_missing_returns_none() -> None:
    store = SupabaseSalesStore(FakeClient([]))

    assert store.get_sale("nope") is None


def test_guarded_update_filters_on_expected_values() -> None:
    client = FakeClient([])
    store = SupabaseSalesStore(client)
    closed_at = datetime(2025, 3, 9, 16, 40, tzinfo=timezone.utc)

    result = store.update_sale_guarded(
        "sale-1",
        {"status": SaleStatus.CLOSED, "closed_at": closed_at},
        expected={"status": SaleStatus.IN_PROGRESS, "plan": SalePlan.FULL, "modality": None},
    )

    assert result is None
    calls = client.queries[0].calls
    assert ("update", ({"status": "closed", "closed_at_utc": "2025-03-09T16:40:00+00:00"},)) in calls
    assert ("eq", ("status", "in_progress")) in calls
    assert ("eq", ("plan", "FULL")) in calls
    assert ("is_", ("modality", "null")) in calls


def test_batched_lookups_are_chunked() -> None:
    client = FakeClient(
        [{"sale_id": "a"}, {"sale_id": "b"}],
        [],
    )
    store = SupabaseSalesStore(client, chunk_size=2)

    exists = store.get_beneficiary_exists_by_sale_ids(["a", "b", "c", "a"])

    assert exists == {"a": True, "b": True, "c": False}
    in_calls = [call for query in client.queries for call in query.calls if call[0] == "in_"]
    assert in_calls == [("in_", ("sale_id", ["a", "b"])), ("in_", ("sale_id", ["c"]))]


def test_api_errors_become_store_errors() -> None:
    client = FakeClient()
    client.error = APIError({"message": "permission denied", "code": "42501"})
    store = SupabaseSalesStore(client)

    with pytest.raises(StoreError):
        store.list_sales_by_status(SaleStatus.IN_PROGRESS)


def test_sales_by_status_reads_every_page(monkeypatch) -> None:
    monkeypatch.setattr(supabase_store, "_PAGE_SIZE", 2)
    client = FakeClient(
        [{**SALE_ROW, "id": "s1"}, {**SALE_ROW, "id": "s2"}],
        [{**SALE_ROW, "id": "s3"}],
    )
    store = SupabaseSalesStore(client)

    sales = store.list_sales_by_status(SaleStatus.IN_PROGRESS)

    assert [sale.id for sale in sales] == ["s1", "s2", "s3"]
    ranges = [call for query in client.queries for call in query.calls if call[0] == "range"]
    assert ranges == [("range", (0, 1)), ("range", (2, 3))]
    assert ("eq", ("status", "in_progress")) in client.queries[0].calls


def test_insert_step_ignores_duplicates() -> None:
    client = FakeClient([])
    store = SupabaseSalesStore(client)
    step = SaleStep(
        id="step-1",
        sale_id="sale-1",
        type=SaleStepType.CONTRACT,
        status=StepStatus.PENDING,
        updated_at=datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc),
        updated_by="seller-1",
    )

    assert store.insert_step(step) is None
    query = client.queries[0]
    assert query.table == "sale_steps"
    assert query.calls[0][0] == "upsert"
    assert query.options["upsert"] == {"on_conflict": "sale_id,type", "ignore_duplicates": True}


def test_report_bounds_reach_the_store_in_utc() -> None:
    client = FakeClient()
    santiago = timezone(timedelta(hours=-3))

    report = build_executive_report(
        SupabaseSalesStore(client),
        datetime(2025, 3, 1, 0, 0, tzinfo=santiago),
        datetime(2025, 3, 31, 23, 59, tzinfo=santiago),
    )

    assert report.summary.leads_created == 0
    lower_bounds = {call[1] for query in client.queries for call in query.calls if call[0] == "gte"}
    assert lower_bounds == {("created_at_utc", "2025-03-01T03:00:00+00:00")}
