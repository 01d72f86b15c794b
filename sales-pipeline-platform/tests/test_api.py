"""
Tests for the HTTP layer (`api/`).

The store and the clock are swapped through FastAPI dependency overrides, so
no Supabase credentials are needed.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from api.dependencies import get_now, get_store
from api.main import app
from domain.sale import SaleStatus
from repositories.memory_store import InMemorySalesStore
from repositories.store import StoreError

HEADERS = {"X-User-Id": "seller-1"}


@pytest.fixture
def client(store, t0):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_now] = lambda: t0 + timedelta(hours=2)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_health(client) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_required_steps_for_free_text_region(client) -> None:
    response = client.get("/api/v1/steps/required", params={"region": "STGO"})

    assert response.status_code == 200
    assert response.json()["required_steps"] == [
        "CONTRACT",
        "PAYMENT",
        "DEVICE_CONFIG",
        "CREDENTIALS",
        "INSTALLATION",
    ]


def test_readiness_lists_blockers(client, seed) -> None:
    sale = seed.sale()

    response = client.get(f"/api/v1/sales/{sale.id}/readiness")

    assert response.status_code == 200
    body = response.json()
    assert body["can_close"] is False
    assert body["blockers"] == ["SALE_INCOMPLETE", "BENEFICIARY_REQUIRED", "CONTRACT_NOT_SIGNED"]


def test_readiness_for_missing_sale_is_also_incomplete(client) -> None:
    response = client.get("/api/v1/sales/no-such-sale/readiness")

    assert response.status_code == 200
    assert response.json()["blockers"] == [
        "SALE_NOT_FOUND",
        "SALE_INCOMPLETE",
        "BENEFICIARY_REQUIRED",
        "CONTRACT_NOT_SIGNED",
    ]


def test_close_requires_user_header(client, seed) -> None:
    sale = seed.complete_sale()

    response = client.post(f"/api/v1/sales/{sale.id}/close")

    assert response.status_code == 422


def test_close_blocked_sale_returns_first_blocker(client, seed) -> None:
    sale = seed.sale()

    response = client.post(f"/api/v1/sales/{sale.id}/close", headers=HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is False
    assert body["error"] == "SALE_INCOMPLETE"
    assert body["sale"] is None


def test_close_ready_sale(client, seed, store) -> None:
    sale = seed.complete_sale()

    response = client.post(f"/api/v1/sales/{sale.id}/close", headers=HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["sale"]["status"] == "closed"
    assert store.get_sale(sale.id).status is SaleStatus.CLOSED


def test_archive_closed_sale_conflicts(client, seed) -> None:
    sale = seed.sale(status=SaleStatus.CLOSED)

    response = client.post(f"/api/v1/sales/{sale.id}/archive", headers=HEADERS)

    assert response.status_code == 409


def test_ensure_steps_is_idempotent(client, seed) -> None:
    sale = seed.sale(service_region="SANTIAGO")

    first = client.post(f"/api/v1/sales/{sale.id}/steps/ensure", headers=HEADERS)
    second = client.post(f"/api/v1/sales/{sale.id}/steps/ensure", headers=HEADERS)

    assert first.status_code == 200
    assert {step["type"] for step in first.json()["created"]} == {
        "CONTRACT",
        "PAYMENT",
        "DEVICE_CONFIG",
        "CREDENTIALS",
        "INSTALLATION",
    }
    assert second.status_code == 200
    assert second.json()["created"] == []


def test_alerts_for_missing_sale(client) -> None:
    response = client.get("/api/v1/sales/missing/alerts")

    assert response.status_code == 404


def test_report_range_errors(client) -> None:
    response = client.get("/api/v1/reports/executive", params={"from": "2025-03-10", "to": "2025-03-01"})
    assert response.status_code == 400
    assert response.json()["detail"] == "invalid_range"

    response = client.get("/api/v1/reports/executive", params={"from": "yesterday", "to": "2025-03-01"})
    assert response.status_code == 400
    assert response.json()["detail"] == "invalid_from_date"


def test_report_serializes_range_keys(client, seed) -> None:
    seed.sale(status=SaleStatus.LEAD)

    response = client.get("/api/v1/reports/executive", params={"from": "2025-03-01", "to": "2025-03-31"})

    assert response.status_code == 200
    body = response.json()
    assert body["range"]["from"].startswith("2025-03-01T00:00:00")
    assert body["range"]["to"].startswith("2025-03-31T23:59:59")
    assert body["summary"]["leads_created"] == 1


def test_report_bounds_with_offset_are_returned_in_utc(client) -> None:
    response = client.get(
        "/api/v1/reports/executive",
        params={"from": "2025-03-01T00:00:00-03:00", "to": "2025-03-31T23:59:59-03:00"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["range"]["from"].startswith("2025-03-01T03:00:00")
    assert body["range"]["to"].startswith("2025-04-01T02:59:59")


def test_trends(client) -> None:
    response = client.get("/api/v1/reports/trends", params={"days": 3})
    assert response.status_code == 200
    assert len(response.json()["days"]) == 3

    response = client.get("/api/v1/reports/trends", params={"days": 0})
    assert response.status_code == 422


def test_store_failure_maps_to_503() -> None:
    class DownStore(InMemorySalesStore):
        def get_sale(self, sale_id):
            raise StoreError("connection refused")

    app.dependency_overrides[get_store] = DownStore
    try:
        response = TestClient(app).get("/api/v1/sales/sale-1/readiness")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 503
