"""
Change notification for a single sale.

`watch_sale` polls the store and yields a new `SaleSnapshot` every time the
sale, its steps, its beneficiary or its readiness changes. The first
snapshot is yielded immediately. Callers stop the stream with a
`threading.Event` or by closing the generator.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

from domain.beneficiary import Beneficiary
from domain.errors import NotFoundError, require_identifier
from domain.readiness import CloseReadiness
from domain.sale import Sale
from domain.sale_step import SaleStep
from repositories.store import SalesStore

from .sales_service import get_close_sale_readiness

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 5.0


@dataclass(frozen=True, slots=True)
class SaleSnapshot:
    sale: Sale
    steps: tuple[SaleStep, ...]
    beneficiary: Optional[Beneficiary]
    readiness: CloseReadiness


def load_sale_snapshot(store: SalesStore, sale_id: str) -> SaleSnapshot:
    sale = store.get_sale(require_identifier("sale_id", sale_id))
    if sale is None:
        raise NotFoundError(f"Sale {sale_id} not found")
    steps = tuple(sorted(store.list_steps_for_sale(sale.id), key=lambda s: s.type.value))
    return SaleSnapshot(
        sale=sale,
        steps=steps,
        beneficiary=store.get_beneficiary_by_sale(sale.id),
        readiness=get_close_sale_readiness(store, sale.id),
    )


def watch_sale(
    store: SalesStore,
    sale_id: str,
    *,
    interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
    stop: Optional[threading.Event] = None,
    max_polls: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Iterator[SaleSnapshot]:
    """
    Yield the sale's snapshot now and again whenever it changes.

    Args:
        interval: Seconds between polls.
        stop: Set to end the stream after the current poll.
        max_polls: Stop after this many polls (including the first one).
        sleep: Injected for tests.

    Raises:
        NotFoundError: the sale does not exist (or disappears).
    """

    if interval < 0:
        raise ValueError("interval must be >= 0")

    previous: Optional[SaleSnapshot] = None
    polls = 0
    while True:
        snapshot = load_sale_snapshot(store, sale_id)
        polls += 1
        if snapshot != previous:
            logger.debug("Sale snapshot changed", extra={"sale_id": sale_id, "poll": polls})
            previous = snapshot
            yield snapshot

        if max_polls is not None and polls >= max_polls:
            return
        if stop is not None and stop.is_set():
            return
        sleep(interval)
