"""
Pytest configuration.

Adds the application directory to the Python path so tests can import
domain, repositories, services and api, and provides an in-memory store,
a controllable UTC clock and helpers to seed records directly.
"""

import sys
from pathlib import Path

# Add the sales-pipeline-platform directory to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from datetime import datetime, timedelta, timezone  # noqa: E402
from itertools import count  # noqa: E402
from typing import Optional  # noqa: E402

import pytest  # noqa: E402

from domain.beneficiary import Beneficiary  # noqa: E402
from domain.client import Client  # noqa: E402
from domain.event import Event, EventEntity  # noqa: E402
from domain.sale import PaymentStatus, Sale, SaleModality, SalePlan, SaleStatus  # noqa: E402
from domain.sale_step import PaymentMethod, SaleStep, SaleStepType, StepStatus  # noqa: E402
from repositories.memory_store import InMemorySalesStore  # noqa: E402

T0 = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FixedClock:
    """Callable clock for services; only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


class Seeder:
    """Writes records straight into the store, bypassing services and audit."""

    def __init__(self, store: InMemorySalesStore) -> None:
        self.store = store
        self._ids = count(1)

    def _next(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def sale(
        self,
        *,
        status: SaleStatus = SaleStatus.IN_PROGRESS,
        created_at: datetime = T0,
        plan: Optional[SalePlan] = None,
        modality: Optional[SaleModality] = None,
        payment_status: Optional[PaymentStatus] = None,
        service_region: Optional[str] = None,
        customer_name: str = "Ana Pérez",
    ) -> Sale:
        client = self.store.insert_client(
            Client(
                id=self._next("client"),
                full_name=customer_name,
                phone="+56911111111",
                region="SANTIAGO",
                created_at=created_at,
                updated_at=created_at,
            )
        )
        return self.store.insert_sale(
            Sale(
                id=self._next("sale"),
                client_id=client.id,
                status=status,
                created_at=created_at,
                plan=plan,
                modality=modality,
                service_region=service_region,
                payment_status=payment_status,
            )
        )

    def complete_sale(self, **overrides) -> Sale:
        """In-progress sale with plan, modality, beneficiary and signed contract."""
        values = {
            "plan": SalePlan.FULL,
            "modality": SaleModality.CON_TELEASISTENCIA,
            "payment_status": PaymentStatus.READY,
            "service_region": "SANTIAGO",
        }
        values.update(overrides)
        sale = self.sale(**values)
        self.beneficiary(sale.id, created_at=sale.created_at)
        self.step(sale.id, SaleStepType.CONTRACT, StepStatus.SIGNED, updated_at=sale.created_at)
        return sale

    def event(
        self,
        sale_id: str,
        entity: EventEntity,
        field: str,
        at: datetime,
        *,
        previous: Optional[str] = None,
        new: Optional[str] = None,
        comment: Optional[str] = None,
    ) -> Event:
        return self.store.append_event(
            Event(
                id=self._next("event"),
                sale_id=sale_id,
                user_id="seed",
                entity=entity,
                field=field,
                created_at=at,
                previous_value=previous,
                new_value=new,
                comment=comment,
            )
        )

    def step(
        self,
        sale_id: str,
        kind: SaleStepType,
        status: StepStatus,
        *,
        updated_at: datetime = T0,
        method: Optional[PaymentMethod] = None,
    ) -> SaleStep:
        return self.store.insert_step(
            SaleStep(
                id=self._next("step"),
                sale_id=sale_id,
                type=kind,
                status=status,
                updated_at=updated_at,
                updated_by="seed",
                method=method,
            )
        )

    def beneficiary(
        self,
        sale_id: str,
        *,
        region: str = "SANTIAGO",
        created_at: datetime = T0,
    ) -> Beneficiary:
        return self.store.insert_beneficiary(
            Beneficiary(
                id=self._next("beneficiary"),
                sale_id=sale_id,
                full_name="Luis Pérez",
                service_address="Av. Siempre Viva 742",
                region=region,
                created_at=created_at,
                updated_at=created_at,
            )
        )


@pytest.fixture
def t0() -> datetime:
    return T0


@pytest.fixture
def store() -> InMemorySalesStore:
    return InMemorySalesStore()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(T0)


@pytest.fixture
def seed(store: InMemorySalesStore) -> Seeder:
    return Seeder(store)
