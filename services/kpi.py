"""Maintenance KPI calculators.

Every calculator is a pure function of its arguments.  Insufficient data is
reported as a value (``None``, ``0`` or a vacuous ``100``), never raised, so a
dashboard built on an empty snapshot still renders.

Business constants that the formulas depend on but that cannot yet be derived
from history (rework tracking, stock movements, ledger-level cost data) are
collected on :class:`KpiConstants` so deployments can override them from
settings without touching the formulas.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields, replace
from datetime import datetime, timedelta
from typing import Any, Iterable, Mapping, Optional, Sequence, Tuple

from .aggregation import round_int, round_tenth
from .classification import is_technician
from .models import Asset, InventoryItem, User, WorkOrder, WorkOrderType

LOGGER = logging.getLogger(__name__)

SECONDS_PER_HOUR = 3600.0


@dataclass(frozen=True)
class KpiConstants:
    oee_quality_factor: float = 0.95
    first_time_fix_rate: float = 100.0
    technician_first_time_fix_rate: float = 95.0
    inventory_turnover_multiplier: float = 4.0
    technician_monthly_capacity: float = 40.0
    technician_period_capacity: float = 20.0
    labor_cost_ratio: float = 0.45
    parts_cost_ratio: float = 0.40
    other_cost_ratio: float = 0.15
    budget_factor: float = 1.1
    hours_per_month: float = 720.0
    reliability_penalty_per_failure: float = 5.0
    top_n: int = 10
    recent_activity_limit: int = 5
    trend_days: int = 30
    pm_compliance_window_days: int = 30
    warranty_horizon_days: int = 30
    cost_trend_months: int = 12

    # Capacities, windows, limits and factors that feed a divisor or a range.
    POSITIVE_SETTINGS = frozenset(
        {
            "technician_monthly_capacity",
            "technician_period_capacity",
            "budget_factor",
            "hours_per_month",
            "top_n",
            "recent_activity_limit",
            "trend_days",
            "pm_compliance_window_days",
            "warranty_horizon_days",
            "cost_trend_months",
        }
    )

    @classmethod
    def from_mapping(cls, overrides: Optional[Mapping[str, Any]]) -> "KpiConstants":
        """Build constants from a settings mapping, ignoring unknown keys."""
        base = cls()
        if not overrides:
            return base
        known = {item.name: item for item in fields(cls)}
        changes = {}
        for name, raw in overrides.items():
            definition = known.get(name)
            if definition is None:
                LOGGER.warning("Ignoring unknown analytics setting %r", name)
                continue
            caster = int if isinstance(getattr(base, name), int) else float
            try:
                value = caster(raw)
            except (TypeError, ValueError):
                raise ValueError(f"Invalid value {raw!r} for analytics setting '{name}'")
            if name in cls.POSITIVE_SETTINGS and value <= 0:
                raise ValueError(f"Analytics setting '{name}' must be positive, got {raw!r}")
            if value < 0:
                raise ValueError(f"Analytics setting '{name}' must not be negative, got {raw!r}")
            changes[name] = value
        return replace(base, **changes)


DEFAULT_CONSTANTS = KpiConstants()


@dataclass(frozen=True)
class CostSplit:
    total: float
    labor: float
    parts: float
    other: float

    @property
    def contractors(self) -> float:
        return self.other / 2

    @property
    def miscellaneous(self) -> float:
        return self.other / 2


# ---------------------------------------------------------------------------
# Work-order filters
# ---------------------------------------------------------------------------


def _is_type(work_order: WorkOrder, wo_type: WorkOrderType) -> bool:
    return work_order.type == wo_type.value


def completed(work_orders: Iterable[WorkOrder]) -> list:
    return [wo for wo in work_orders if wo.is_completed]


def backlog_count(work_orders: Iterable[WorkOrder]) -> int:
    return sum(1 for wo in work_orders if not wo.is_resolved)


def overdue_count(work_orders: Iterable[WorkOrder], now: datetime) -> int:
    return sum(
        1
        for wo in work_orders
        if wo.due_date is not None and wo.due_date < now and not wo.is_resolved
    )


def in_period(
    work_orders: Iterable[WorkOrder], start: Optional[datetime], end: Optional[datetime]
) -> list:
    """Work orders created within ``[start, end]``; open bounds are unbounded."""
    selected = []
    for wo in work_orders:
        if wo.created_at is None:
            continue
        if start is not None and wo.created_at < start:
            continue
        if end is not None and wo.created_at > end:
            continue
        selected.append(wo)
    return selected


def total_actual_cost(work_orders: Iterable[WorkOrder]) -> float:
    return sum(wo.actual_cost for wo in work_orders)


def _met_due_date(work_order: WorkOrder) -> bool:
    if work_order.due_date is None:
        return True
    finished = work_order.completed_at
    return finished is not None and finished <= work_order.due_date


# ---------------------------------------------------------------------------
# Reliability
# ---------------------------------------------------------------------------


def calculate_mtbf(work_orders: Iterable[WorkOrder]) -> Optional[int]:
    """Mean hours between consecutive corrective work orders."""
    failures = sorted(
        (wo for wo in work_orders if _is_type(wo, WorkOrderType.CORRECTIVE) and wo.created_at),
        key=lambda wo: wo.created_at,
    )
    if len(failures) < 2:
        return None
    gaps = [
        (current.created_at - previous.created_at).total_seconds()
        for previous, current in zip(failures, failures[1:])
    ]
    return round_int(sum(gaps) / (len(failures) - 1) / SECONDS_PER_HOUR)


def mean_repair_hours(work_orders: Iterable[WorkOrder]) -> Optional[int]:
    durations = [
        wo.repair_seconds
        for wo in work_orders
        if wo.is_completed and wo.repair_seconds is not None
    ]
    if not durations:
        return None
    return round_int(sum(durations) / len(durations) / SECONDS_PER_HOUR)


def calculate_mttr(work_orders: Iterable[WorkOrder]) -> Optional[int]:
    return mean_repair_hours(work_orders)


def calculate_oee(
    assets: Sequence[Asset],
    work_orders: Sequence[WorkOrder],
    constants: KpiConstants = DEFAULT_CONSTANTS,
) -> Optional[int]:
    if not assets:
        return None
    availability = sum(1 for asset in assets if asset.is_operational) / len(assets)
    performance = len(completed(work_orders)) / len(work_orders) if work_orders else 1.0
    return round_int(availability * performance * constants.oee_quality_factor * 100)


def asset_availability(assets: Sequence[Asset]) -> int:
    if not assets:
        return 100
    return round_int(sum(1 for asset in assets if asset.is_operational) / len(assets) * 100)


def asset_reliability(
    failures: int, constants: KpiConstants = DEFAULT_CONSTANTS
) -> Tuple[int, int]:
    """Return ``(score, mtbf_hours)`` for an asset with ``failures`` corrective work orders."""
    score = min(100, round_int(100 - failures * constants.reliability_penalty_per_failure))
    if failures > 0:
        mtbf = round_int(constants.hours_per_month / failures)
    else:
        mtbf = round_int(constants.hours_per_month)
    return score, mtbf


# ---------------------------------------------------------------------------
# Compliance
# ---------------------------------------------------------------------------


def calculate_pm_compliance(
    work_orders: Iterable[WorkOrder],
    now: datetime,
    constants: KpiConstants = DEFAULT_CONSTANTS,
) -> int:
    window_start = now - timedelta(days=constants.pm_compliance_window_days)
    scheduled = [
        wo
        for wo in work_orders
        if _is_type(wo, WorkOrderType.PREVENTIVE)
        and wo.created_at is not None
        and window_start <= wo.created_at <= now
    ]
    if not scheduled:
        return 100
    on_time = sum(1 for wo in scheduled if wo.is_completed and _met_due_date(wo))
    return round_int(on_time / len(scheduled) * 100)


def calculate_sla_compliance(work_orders: Iterable[WorkOrder]) -> int:
    finished = completed(work_orders)
    if not finished:
        return 100
    on_time = sum(1 for wo in finished if _met_due_date(wo))
    return round_int(on_time / len(finished) * 100)


def calculate_first_time_fix_rate(
    work_orders: Iterable[WorkOrder], constants: KpiConstants = DEFAULT_CONSTANTS
) -> int:
    # No rework tracking yet: every completion counts as a first-time fix.
    if not completed(work_orders):
        return 100
    return round_int(constants.first_time_fix_rate)


# ---------------------------------------------------------------------------
# Workforce
# ---------------------------------------------------------------------------


def technicians(users: Iterable[User]) -> list:
    return [user for user in users if user.is_active and is_technician(user.role_name)]


def calculate_technician_utilization(
    users: Iterable[User],
    work_orders: Iterable[WorkOrder],
    constants: KpiConstants = DEFAULT_CONSTANTS,
) -> int:
    staff = technicians(users)
    if not staff or constants.technician_monthly_capacity <= 0:
        return 0
    assigned = sum(1 for wo in work_orders if wo.assigned_to_id)
    per_technician = assigned / len(staff)
    return min(100, round_int(per_technician / constants.technician_monthly_capacity * 100))


def technician_period_utilization(
    assigned: int, constants: KpiConstants = DEFAULT_CONSTANTS
) -> int:
    if constants.technician_period_capacity <= 0:
        return 0
    return min(100, round_int(assigned / constants.technician_period_capacity * 100))


# ---------------------------------------------------------------------------
# Inventory and cost
# ---------------------------------------------------------------------------


def inventory_value(items: Iterable[InventoryItem]) -> float:
    return sum(item.stock_value for item in items)


def turnover_for_value(value: float, constants: KpiConstants = DEFAULT_CONSTANTS) -> float:
    # Without stock transactions, annual usage is estimated as a multiple of value.
    if value <= 0:
        return 0.0
    return round_tenth(value * constants.inventory_turnover_multiplier / value)


def calculate_inventory_turnover(
    items: Iterable[InventoryItem], constants: KpiConstants = DEFAULT_CONSTANTS
) -> float:
    return turnover_for_value(inventory_value(items), constants)


def split_costs(total: float, constants: KpiConstants = DEFAULT_CONSTANTS) -> CostSplit:
    return CostSplit(
        total=total,
        labor=total * constants.labor_cost_ratio,
        parts=total * constants.parts_cost_ratio,
        other=total * constants.other_cost_ratio,
    )


def average_cost_per_work_order(work_orders: Iterable[WorkOrder]) -> int:
    finished = completed(work_orders)
    if not finished:
        return 0
    return round_int(total_actual_cost(finished) / len(finished))


# ---------------------------------------------------------------------------
# Trends
# ---------------------------------------------------------------------------


def percentage_change(current: int, previous: int) -> int:
    if previous > 0:
        return round_int((current - previous) / previous * 100)
    if current > 0:
        return 100
    return 0


def metric_delta(current: Optional[float], previous: Optional[float]) -> Optional[int]:
    if current is None or previous is None:
        return None
    return round_int(current - previous)


__all__ = [
    "CostSplit",
    "DEFAULT_CONSTANTS",
    "KpiConstants",
    "asset_availability",
    "asset_reliability",
    "average_cost_per_work_order",
    "backlog_count",
    "calculate_first_time_fix_rate",
    "calculate_inventory_turnover",
    "calculate_mtbf",
    "calculate_mttr",
    "calculate_oee",
    "calculate_pm_compliance",
    "calculate_sla_compliance",
    "calculate_technician_utilization",
    "completed",
    "in_period",
    "inventory_value",
    "mean_repair_hours",
    "metric_delta",
    "overdue_count",
    "percentage_change",
    "split_costs",
    "technician_period_utilization",
    "technicians",
    "total_actual_cost",
    "turnover_for_value",
]
