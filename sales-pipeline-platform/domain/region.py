"""
Domain: controlled service regions and the step requirements they imply.

Free-text regions are folded into three controlled values:
- SANTIAGO and VALPARAISO are served on site (INSTALLATION).
- REGIONES (everything else) is served remotely (SHIPPING + REMOTE_SUPPORT).

An unknown region (None) is treated like REGIONES for step requirements.
"""

from __future__ import annotations

import unicodedata
from enum import Enum
from typing import Optional

from .sale_step import SaleStepType


class ControlledRegion(str, Enum):
    SANTIAGO = "SANTIAGO"
    VALPARAISO = "VALPARAISO"
    REGIONES = "REGIONES"


_SANTIAGO_TOKENS = ("santiago", "stgo")
_VALPARAISO_TOKENS = ("valparaiso", "valpo", "v region")

_BASE_STEPS: tuple[SaleStepType, ...] = (
    SaleStepType.CONTRACT,
    SaleStepType.PAYMENT,
    SaleStepType.DEVICE_CONFIG,
    SaleStepType.CREDENTIALS,
)
_ON_SITE_STEPS: tuple[SaleStepType, ...] = (SaleStepType.INSTALLATION,)
_REMOTE_STEPS: tuple[SaleStepType, ...] = (SaleStepType.SHIPPING, SaleStepType.REMOTE_SUPPORT)


def _fold(raw: str) -> str:
    decomposed = unicodedata.normalize("NFD", raw)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.strip().lower()


def to_controlled_region(raw: Optional[str]) -> Optional[ControlledRegion]:
    """
    Map free text to a controlled region.

    Examples:
        >>> to_controlled_region("Región Metropolitana, Santiago")
        <ControlledRegion.SANTIAGO: 'SANTIAGO'>
        >>> to_controlled_region("STGO")
        <ControlledRegion.SANTIAGO: 'SANTIAGO'>
        >>> to_controlled_region("Valparaíso")
        <ControlledRegion.VALPARAISO: 'VALPARAISO'>
        >>> to_controlled_region("Antofagasta")
        <ControlledRegion.REGIONES: 'REGIONES'>
        >>> to_controlled_region("   ") is None
        True
    """

    if raw is None:
        return None
    folded = _fold(raw)
    if not folded:
        return None
    if any(token in folded for token in _SANTIAGO_TOKENS):
        return ControlledRegion.SANTIAGO
    if any(token in folded for token in _VALPARAISO_TOKENS):
        return ControlledRegion.VALPARAISO
    return ControlledRegion.REGIONES


def to_controlled_region_or_default(raw: Optional[str]) -> ControlledRegion:
    """Same as `to_controlled_region` but stores REGIONES when nothing matches."""

    return to_controlled_region(raw) or ControlledRegion.REGIONES


def is_on_site(region: Optional[ControlledRegion]) -> bool:
    return region in (ControlledRegion.SANTIAGO, ControlledRegion.VALPARAISO)


def compute_required_step_types(region: Optional[str]) -> list[SaleStepType]:
    """
    Required operational steps for a service region.

    Accepts either a controlled region value or free text.
    """

    controlled = to_controlled_region(region)
    extra = _ON_SITE_STEPS if is_on_site(controlled) else _REMOTE_STEPS
    return [*_BASE_STEPS, *extra]
