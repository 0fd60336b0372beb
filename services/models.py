"""Read-only entity snapshots consumed by the analytics engine."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from dateutil.parser import parse as dateutil_parse


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class WorkOrderStatus(str, Enum):
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CLOSED = "closed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class WorkOrderPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class WorkOrderType(str, Enum):
    PREVENTIVE = "preventive"
    CORRECTIVE = "corrective"
    PREDICTIVE = "predictive"


class AssetStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    UNDER_MAINTENANCE = "under_maintenance"
    DECOMMISSIONED = "decommissioned"


class InventoryStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    OUT_OF_STOCK = "out_of_stock"
    LOW_STOCK = "low_stock"
    DISCONTINUED = "discontinued"


class InventoryCategory(str, Enum):
    SPARE_PARTS = "spare_parts"
    CONSUMABLES = "consumables"
    TOOLS = "tools"
    EQUIPMENT = "equipment"
    SAFETY = "safety"
    ELECTRICAL = "electrical"
    MECHANICAL = "mechanical"
    OTHER = "other"


class UserStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    PENDING_VERIFICATION = "pending_verification"


RESOLVED_STATUSES = frozenset(
    {
        WorkOrderStatus.COMPLETED.value,
        WorkOrderStatus.CLOSED.value,
        WorkOrderStatus.CANCELLED.value,
    }
)


# ---------------------------------------------------------------------------
# Row coercion helpers
# ---------------------------------------------------------------------------


def parse_datetime(value: Any) -> Optional[datetime]:
    """Return an aware UTC datetime, or ``None`` for blank or unparseable input."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    try:
        parsed = dateutil_parse(str(value))
    except (TypeError, ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_float(value: Any) -> float:
    if value in (None, ""):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def to_int(value: Any) -> int:
    if value in (None, ""):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return 0


def to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes", "y"}
    return False


def _text(value: Any) -> Optional[str]:
    if value in (None, ""):
        return None
    return str(value)


def _first(row: Mapping[str, Any], *keys: str) -> Any:
    # Rows may come from SQLite (snake_case) or from API payloads (camelCase).
    for key in keys:
        if key in row and row[key] not in (None, ""):
            return row[key]
    return None


def _normalise_datetimes(entity: Any, *names: str) -> None:
    # Entities are frozen; timestamps are always compared as aware UTC.
    for name in names:
        object.__setattr__(entity, name, parse_datetime(getattr(entity, name)))


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkOrder:
    id: str
    title: str = ""
    status: str = WorkOrderStatus.DRAFT.value
    priority: str = WorkOrderPriority.MEDIUM.value
    type: str = WorkOrderType.CORRECTIVE.value
    wo_number: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    scheduled_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    actual_start: Optional[datetime] = None
    actual_end: Optional[datetime] = None
    assigned_to_id: Optional[str] = None
    asset_id: Optional[str] = None
    actual_cost: float = 0.0
    organization_id: Optional[str] = None

    def __post_init__(self):
        _normalise_datetimes(
            self, "created_at", "updated_at", "scheduled_date", "due_date", "actual_start", "actual_end"
        )

    @property
    def is_resolved(self) -> bool:
        return self.status in RESOLVED_STATUSES

    @property
    def is_completed(self) -> bool:
        return self.status == WorkOrderStatus.COMPLETED.value

    @property
    def completed_at(self) -> Optional[datetime]:
        """Completion instant: the actual end when recorded, else the last update."""
        return self.actual_end or self.updated_at

    @property
    def repair_seconds(self) -> Optional[float]:
        if self.actual_start is None or self.actual_end is None:
            return None
        return (self.actual_end - self.actual_start).total_seconds()

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "WorkOrder":
        return cls(
            id=str(_first(row, "id")),
            title=str(_first(row, "title") or ""),
            status=str(_first(row, "status") or WorkOrderStatus.DRAFT.value),
            priority=str(_first(row, "priority") or WorkOrderPriority.MEDIUM.value),
            type=str(_first(row, "type") or WorkOrderType.CORRECTIVE.value),
            wo_number=_text(_first(row, "wo_number", "woNumber")),
            created_at=parse_datetime(_first(row, "created_at", "createdAt")),
            updated_at=parse_datetime(_first(row, "updated_at", "updatedAt")),
            scheduled_date=parse_datetime(_first(row, "scheduled_date", "scheduledDate")),
            due_date=parse_datetime(_first(row, "due_date", "dueDate")),
            actual_start=parse_datetime(_first(row, "actual_start", "actualStart")),
            actual_end=parse_datetime(_first(row, "actual_end", "actualEnd")),
            assigned_to_id=_text(_first(row, "assigned_to_id", "assignedToId")),
            asset_id=_text(_first(row, "asset_id", "assetId")),
            actual_cost=to_float(_first(row, "actual_cost", "actualCost")),
            organization_id=_text(_first(row, "organization_id", "organizationId")),
        )


@dataclass(frozen=True)
class Asset:
    id: str
    name: str = ""
    type: Optional[str] = None
    status: str = AssetStatus.ACTIVE.value
    asset_code: Optional[str] = None
    warranty_expiry: Optional[datetime] = None
    created_at: Optional[datetime] = None
    organization_id: Optional[str] = None

    def __post_init__(self):
        _normalise_datetimes(self, "warranty_expiry", "created_at")

    @property
    def is_operational(self) -> bool:
        return self.status == AssetStatus.ACTIVE.value

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Asset":
        return cls(
            id=str(_first(row, "id")),
            name=str(_first(row, "name") or ""),
            type=_text(_first(row, "type")),
            status=str(_first(row, "status") or AssetStatus.ACTIVE.value),
            asset_code=_text(_first(row, "asset_code", "assetCode")),
            warranty_expiry=parse_datetime(_first(row, "warranty_expiry", "warrantyExpiry")),
            created_at=parse_datetime(_first(row, "created_at", "createdAt")),
            organization_id=_text(_first(row, "organization_id", "organizationId")),
        )


@dataclass(frozen=True)
class InventoryItem:
    id: str
    name: str = ""
    category: str = InventoryCategory.OTHER.value
    status: str = InventoryStatus.ACTIVE.value
    quantity: int = 0
    min_quantity: int = 0
    max_quantity: Optional[int] = None
    unit_price: float = 0.0
    organization_id: Optional[str] = None

    @property
    def is_out_of_stock(self) -> bool:
        return self.quantity == 0 or self.status == InventoryStatus.OUT_OF_STOCK.value

    @property
    def is_low_stock(self) -> bool:
        return 0 < self.quantity <= self.min_quantity

    @property
    def stock_value(self) -> float:
        return self.unit_price * self.quantity

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "InventoryItem":
        max_quantity = _first(row, "max_quantity", "maxQuantity")
        return cls(
            id=str(_first(row, "id")),
            name=str(_first(row, "name") or ""),
            category=str(_first(row, "category") or InventoryCategory.OTHER.value),
            status=str(_first(row, "status") or InventoryStatus.ACTIVE.value),
            quantity=to_int(_first(row, "quantity")),
            min_quantity=to_int(_first(row, "min_quantity", "minQuantity")),
            max_quantity=to_int(max_quantity) if max_quantity is not None else None,
            unit_price=to_float(_first(row, "unit_price", "unitPrice")),
            organization_id=_text(_first(row, "organization_id", "organizationId")),
        )


@dataclass(frozen=True)
class Role:
    id: str
    name: str = ""

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Role":
        return cls(id=str(_first(row, "id")), name=str(_first(row, "name") or ""))


@dataclass(frozen=True)
class User:
    id: str
    first_name: str = ""
    last_name: str = ""
    status: str = UserStatus.ACTIVE.value
    role_id: Optional[str] = None
    role_name: Optional[str] = None
    invitation_token: Optional[str] = None
    invitation_accepted: bool = False
    organization_id: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE.value

    @property
    def has_pending_invitation(self) -> bool:
        return bool(self.invitation_token) and not self.invitation_accepted

    @classmethod
    def from_row(
        cls, row: Mapping[str, Any], roles_by_id: Optional[Dict[str, Role]] = None
    ) -> "User":
        role_id = _text(_first(row, "role_id", "roleId"))
        role_name = _text(_first(row, "role_name", "roleName"))
        if role_name is None and role_id and roles_by_id and role_id in roles_by_id:
            role_name = roles_by_id[role_id].name or None
        return cls(
            id=str(_first(row, "id")),
            first_name=str(_first(row, "first_name", "firstName") or ""),
            last_name=str(_first(row, "last_name", "lastName") or ""),
            status=str(_first(row, "status") or UserStatus.ACTIVE.value),
            role_id=role_id,
            role_name=role_name,
            invitation_token=_text(_first(row, "invitation_token", "invitationToken")),
            invitation_accepted=to_bool(_first(row, "invitation_accepted", "invitationAccepted")),
            organization_id=_text(_first(row, "organization_id", "organizationId")),
        )


__all__ = [
    "Asset",
    "AssetStatus",
    "InventoryCategory",
    "InventoryItem",
    "InventoryStatus",
    "RESOLVED_STATUSES",
    "Role",
    "User",
    "UserStatus",
    "WorkOrder",
    "WorkOrderPriority",
    "WorkOrderStatus",
    "WorkOrderType",
    "parse_datetime",
    "to_bool",
    "to_float",
    "to_int",
]
