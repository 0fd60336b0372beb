"""Canonical classification of free-text discriminators.

Asset types and role names are entered by users and are not constrained to a
closed enumeration.  Every helper here is total: any raw value, including
``None`` and blank strings, maps to exactly one canonical label.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Iterable, Optional

UNKNOWN_LABEL = "Unknown"
NO_ROLE_LABEL = "No Role"

TECHNICIAN_ROLE_MARKERS = ("technician", "maintenance")


class StaffClass(str, Enum):
    TECHNICIAN = "technician"
    OTHER = "other"
    UNCLASSIFIED = "unclassified"


def classify_asset_type(raw_type: Any) -> str:
    if raw_type is None:
        return UNKNOWN_LABEL
    text = str(raw_type).strip()
    return text or UNKNOWN_LABEL


def role_label(role_name: Optional[str]) -> str:
    if role_name is None:
        return NO_ROLE_LABEL
    text = str(role_name).strip()
    return text or NO_ROLE_LABEL


def classify_role(
    role_name: Optional[str], markers: Iterable[str] = TECHNICIAN_ROLE_MARKERS
) -> StaffClass:
    """Case-insensitive substring match of the role name against ``markers``."""
    if role_name is None or not str(role_name).strip():
        return StaffClass.UNCLASSIFIED
    lowered = str(role_name).lower()
    if any(marker in lowered for marker in markers):
        return StaffClass.TECHNICIAN
    return StaffClass.OTHER


def is_technician(role_name: Optional[str]) -> bool:
    return classify_role(role_name) is StaffClass.TECHNICIAN


__all__ = [
    "NO_ROLE_LABEL",
    "StaffClass",
    "TECHNICIAN_ROLE_MARKERS",
    "UNKNOWN_LABEL",
    "classify_asset_type",
    "classify_role",
    "is_technician",
    "role_label",
]
