"""
Request dependencies shared by the routers.

The store is chosen once per process from STORE_BACKEND; tests replace it
through `app.dependency_overrides[get_store]`.
"""

from __future__ import annotations

import logging
from datetime import datetime
from functools import lru_cache
from typing import NoReturn

from fastapi import Header, HTTPException

import config
from domain.errors import NotFoundError, SaleLockedError, SaleWriteConflictError
from domain.sale import InvalidStatusTransitionError
from repositories.memory_store import InMemorySalesStore
from repositories.store import SalesStore, StoreError
from repositories.supabase_store import SupabaseSalesStore
from services.audit import utc_now

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_store() -> SalesStore:
    if config.STORE_BACKEND == "memory":
        logger.warning("Using the in-memory store; data is lost on restart")
        return InMemorySalesStore()
    return SupabaseSalesStore()


def get_now() -> datetime:
    return utc_now()


def get_actor_user_id(x_user_id: str = Header(..., alias="X-User-Id", min_length=1)) -> str:
    """Id of the user performing a write, forwarded by the authenticating gateway."""
    return x_user_id


def raise_http_error(error: Exception, action: str) -> NoReturn:
    """
    Map a service exception onto an HTTP error.

    400 invalid input, 404 missing record, 409 state conflict, 503 store
    failure, 500 anything else.
    """

    if isinstance(error, HTTPException):
        raise error
    if isinstance(error, (SaleLockedError, InvalidStatusTransitionError, SaleWriteConflictError)):
        raise HTTPException(status_code=409, detail=str(error)) from error
    if isinstance(error, NotFoundError):
        raise HTTPException(status_code=404, detail=str(error)) from error
    if isinstance(error, ValueError):
        raise HTTPException(status_code=400, detail=str(error)) from error
    if isinstance(error, StoreError):
        logger.error("Store failure", extra={"action": action, "error": str(error)})
        raise HTTPException(status_code=503, detail=f"Failed to {action}: store unavailable") from error

    logger.exception("Unexpected failure", extra={"action": action})
    raise HTTPException(status_code=500, detail=f"Failed to {action}: {str(error)}") from error
