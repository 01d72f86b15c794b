"""
Domain exceptions shared across services and the API layer.

Validation failures subclass ValueError and are raised before any store
access. Lookups that find nothing subclass LookupError.
"""

from __future__ import annotations

from .client import RutInUseError
from .sale import InvalidStatusTransitionError
from .sale_step import StepDependencyError, StepStatusError


class InvalidRangeError(ValueError):
    """Raised for an unusable report range (invalid_from_date, invalid_to_date, invalid_range)."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


class MissingIdentifierError(ValueError):
    """Raised when an operation is called without the id it acts on."""


class NotFoundError(LookupError):
    """Raised when a record an operation needs does not exist."""


class SaleWriteConflictError(RuntimeError):
    """Raised when a guarded sale write lost against a concurrent change."""


class SaleLockedError(ValueError):
    """Raised when editing the configuration of a closed or archived sale."""


def require_identifier(name: str, value: str | None) -> str:
    if value is None or not str(value).strip():
        raise MissingIdentifierError(f"{name} is required")
    return str(value).strip()


__all__ = [
    "InvalidRangeError",
    "InvalidStatusTransitionError",
    "MissingIdentifierError",
    "NotFoundError",
    "RutInUseError",
    "SaleLockedError",
    "SaleWriteConflictError",
    "StepDependencyError",
    "StepStatusError",
    "require_identifier",
]
