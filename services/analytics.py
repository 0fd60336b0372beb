"""Dashboard composers for the maintenance analytics workspace.

Each public ``get_*`` method recomputes its dashboard from a fresh read of the
record source.  Collections are fetched concurrently; a collection that fails
to load (or does not answer within ``branch_timeout``) is replaced by an empty
one, and every panel that depends on it falls back to its empty default, so a
partial outage degrades single panels rather than the whole response.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from concurrent.futures import Executor, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

import pytz

from .aggregation import (
    count_by,
    count_in_buckets,
    daily_buckets,
    local_midnight,
    monthly_buckets,
    round_int,
    round_money,
    round_tenth,
    sum_by,
    sum_in_buckets,
    top_n,
)
from .classification import classify_asset_type, role_label
from .kpi import (
    DEFAULT_CONSTANTS,
    KpiConstants,
    asset_availability,
    asset_reliability,
    average_cost_per_work_order,
    backlog_count,
    calculate_first_time_fix_rate,
    calculate_inventory_turnover,
    calculate_mtbf,
    calculate_mttr,
    calculate_oee,
    calculate_pm_compliance,
    calculate_sla_compliance,
    calculate_technician_utilization,
    completed,
    in_period,
    inventory_value,
    mean_repair_hours,
    metric_delta,
    overdue_count,
    percentage_change,
    split_costs,
    technician_period_utilization,
    technicians,
    total_actual_cost,
    turnover_for_value,
)
from .models import (
    Asset,
    AssetStatus,
    InventoryCategory,
    InventoryItem,
    InventoryStatus,
    User,
    UserStatus,
    WorkOrder,
    WorkOrderPriority,
    WorkOrderStatus,
    WorkOrderType,
    parse_datetime,
)
from .snapshot import ASSETS, INVENTORY, USERS, WORK_ORDERS, MaintenanceSnapshot, RecordSource

LOGGER = logging.getLogger(__name__)

DEFAULT_BRANCH_TIMEOUT = 10.0

_URGENCY_ORDER = {"critical": 0, "high": 1, "medium": 2}


# ---------------------------------------------------------------------------
# Helper utilities
# ---------------------------------------------------------------------------


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _safe_timezone(tz_name: Optional[str]) -> Any:
    try:
        return pytz.timezone(tz_name or "UTC")
    except pytz.UnknownTimeZoneError:
        LOGGER.warning("Unknown timezone %r; falling back to UTC", tz_name)
        return pytz.utc


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _newest_first(records: Iterable[Any], limit: int) -> List[Any]:
    epoch = datetime.min.replace(tzinfo=timezone.utc)
    ordered = sorted(records, key=lambda record: record.created_at or epoch, reverse=True)
    return ordered[:limit]


# ---------------------------------------------------------------------------
# Fan-out with fallback
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DateRangeQuery:
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    organization_id: Optional[str] = None


@dataclass(frozen=True)
class Branch:
    """An independent unit of dashboard work and the value used if it fails."""

    name: str
    task: Callable[[], Any]
    default: Callable[[], Any]


def run_with_fallback(name: str, task: Callable[[], Any], default: Callable[[], Any]) -> Any:
    try:
        return task()
    except Exception as exc:
        LOGGER.warning("Analytics branch %s failed (%s); using empty result", name, exc)
        return default()


def gather_with_fallback(
    executor: Executor,
    branches: Sequence[Branch],
    timeout: Optional[float] = None,
) -> Tuple[Dict[str, Any], FrozenSet[str]]:
    """Run ``branches`` concurrently and collect their results.

    A branch that raises, or has not finished once ``timeout`` seconds have
    elapsed since submission, yields its default instead.  Branches are never
    retried and one branch's failure never cancels another.  Returns the
    results keyed by branch name and the names of the branches that fell back.
    """
    futures = [(branch, executor.submit(branch.task)) for branch in branches]
    deadline = time.monotonic() + timeout if timeout is not None else None
    results: Dict[str, Any] = {}
    failed = set()
    for branch, future in futures:
        remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
        try:
            results[branch.name] = future.result(timeout=remaining)
        except FuturesTimeoutError:
            future.cancel()
            LOGGER.warning(
                "Analytics branch %s timed out after %.2fs; using empty result",
                branch.name,
                timeout,
            )
            results[branch.name] = branch.default()
            failed.add(branch.name)
        except Exception as exc:
            LOGGER.warning("Analytics branch %s failed (%s); using empty result", branch.name, exc)
            results[branch.name] = branch.default()
            failed.add(branch.name)
    return results, frozenset(failed)


# ---------------------------------------------------------------------------
# Empty panel defaults
# ---------------------------------------------------------------------------


def empty_work_order_stats() -> Dict[str, Any]:
    return {
        "total": 0,
        "breakdown": {},
        "byStatus": {},
        "byPriority": {},
        "byType": {},
        "overdue": 0,
        "completedThisMonth": 0,
        "avgCompletionTime": None,
    }


def empty_asset_stats() -> Dict[str, Any]:
    return {
        "total": 0,
        "breakdown": {},
        "byStatus": {},
        "byType": {},
        "underMaintenance": 0,
        "warrantyExpiringSoon": 0,
    }


def empty_inventory_stats() -> Dict[str, Any]:
    return {
        "total": 0,
        "breakdown": {},
        "byCategory": {},
        "byStatus": {},
        "lowStockItems": 0,
        "outOfStockItems": 0,
        "totalValue": 0,
    }


def empty_user_stats() -> Dict[str, Any]:
    return {
        "total": 0,
        "breakdown": {},
        "byStatus": {},
        "byRole": {},
        "activeUsers": 0,
        "pendingInvitations": 0,
    }


def empty_recent_activity() -> Dict[str, Any]:
    return {"recentWorkOrders": [], "recentAssets": []}


def empty_weekly_trends() -> Dict[str, Any]:
    return {"workOrdersThisWeek": 0, "workOrdersLastWeek": 0, "workOrdersTrend": 0}


# ---------------------------------------------------------------------------
# Analytics service
# ---------------------------------------------------------------------------


class AnalyticsService:
    def __init__(
        self,
        source: RecordSource,
        *,
        constants: Optional[KpiConstants] = None,
        clock: Optional[Callable[[], datetime]] = None,
        timezone_name: str = "UTC",
        branch_timeout: Optional[float] = DEFAULT_BRANCH_TIMEOUT,
        max_workers: int = 6,
    ) -> None:
        self.source = source
        self.constants = constants or DEFAULT_CONSTANTS
        self.timezone_name = timezone_name
        self.branch_timeout = branch_timeout
        self._tz = _safe_timezone(timezone_name)
        self._clock = clock or _utc_now
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="analytics")

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    # ------------------------------------------------------------------
    # Clock and windows
    # ------------------------------------------------------------------
    def now(self) -> datetime:
        current = self._clock()
        if current.tzinfo is None:
            return current.replace(tzinfo=timezone.utc)
        return current

    def _local_today(self, now: datetime) -> date:
        return now.astimezone(self._tz).date()

    def _start_of_month(self, now: datetime, months_back: int = 0) -> datetime:
        today = self._local_today(now)
        index = today.year * 12 + (today.month - 1) - months_back
        return local_midnight(date(index // 12, index % 12 + 1, 1), self._tz)

    def _start_of_year(self, now: datetime) -> datetime:
        return local_midnight(date(self._local_today(now).year, 1, 1), self._tz)

    def _start_of_week(self, now: datetime) -> datetime:
        # Weeks start on Sunday.
        today = self._local_today(now)
        return local_midnight(today - timedelta(days=(today.weekday() + 1) % 7), self._tz)

    def _window(
        self, query: Optional[DateRangeQuery], default_start: Optional[datetime], now: datetime
    ) -> Tuple[Optional[datetime], datetime]:
        query = query or DateRangeQuery()
        start = parse_datetime(query.start_date) if query.start_date else default_start
        end = parse_datetime(query.end_date) if query.end_date else now
        return start, end

    # ------------------------------------------------------------------
    # Composition helpers
    # ------------------------------------------------------------------
    def _collect(
        self, collections: Sequence[str], organization_id: Optional[str] = None
    ) -> Tuple[MaintenanceSnapshot, FrozenSet[str]]:
        loaders = {
            WORK_ORDERS: self.source.load_work_orders,
            ASSETS: self.source.load_assets,
            INVENTORY: self.source.load_inventory,
            USERS: self.source.load_users,
        }
        branches = [
            Branch(name, lambda loader=loaders[name]: loader(organization_id), list)
            for name in collections
        ]
        results, failed = gather_with_fallback(self._executor, branches, self.branch_timeout)
        snapshot = MaintenanceSnapshot(
            work_orders=results.get(WORK_ORDERS, []),
            assets=results.get(ASSETS, []),
            inventory=results.get(INVENTORY, []),
            users=results.get(USERS, []),
        )
        return snapshot, failed

    @staticmethod
    def _panel(
        name: str,
        compute: Callable[[], Any],
        default: Callable[[], Any],
        requires: Iterable[str] = (),
        failed: FrozenSet[str] = frozenset(),
    ) -> Any:
        missing = failed.intersection(requires)
        if missing:
            LOGGER.info("Panel %s uses its empty result; unavailable: %s", name, ", ".join(sorted(missing)))
            return default()
        return run_with_fallback(name, compute, default)

    # ------------------------------------------------------------------
    # Overview dashboard
    # ------------------------------------------------------------------
    def get_dashboard_analytics(self, organization_id: Optional[str] = None) -> Dict[str, Any]:
        now = self.now()
        snapshot, failed = self._collect((WORK_ORDERS, ASSETS, INVENTORY, USERS), organization_id)
        return {
            "workOrders": self._panel(
                "workOrders",
                lambda: self._work_order_stats(snapshot.work_orders, now),
                empty_work_order_stats,
                (WORK_ORDERS,),
                failed,
            ),
            "assets": self._panel(
                "assets",
                lambda: self._asset_stats(snapshot.assets, now),
                empty_asset_stats,
                (ASSETS,),
                failed,
            ),
            "inventory": self._panel(
                "inventory",
                lambda: self._inventory_stats(snapshot.inventory),
                empty_inventory_stats,
                (INVENTORY,),
                failed,
            ),
            "users": self._panel(
                "users",
                lambda: self._user_stats(snapshot.users),
                empty_user_stats,
                (USERS,),
                failed,
            ),
            "recentActivity": self._panel(
                "recentActivity",
                lambda: self._recent_activity(snapshot),
                empty_recent_activity,
            ),
            "trends": self._panel(
                "trends",
                lambda: self._weekly_trends(snapshot.work_orders, now),
                empty_weekly_trends,
                (WORK_ORDERS,),
                failed,
            ),
        }

    def get_work_order_stats(self, organization_id: Optional[str] = None) -> Dict[str, Any]:
        now = self.now()
        snapshot, failed = self._collect((WORK_ORDERS,), organization_id)
        return self._panel(
            "workOrders",
            lambda: self._work_order_stats(snapshot.work_orders, now),
            empty_work_order_stats,
            (WORK_ORDERS,),
            failed,
        )

    def get_asset_stats(self, organization_id: Optional[str] = None) -> Dict[str, Any]:
        now = self.now()
        snapshot, failed = self._collect((ASSETS,), organization_id)
        return self._panel(
            "assets",
            lambda: self._asset_stats(snapshot.assets, now),
            empty_asset_stats,
            (ASSETS,),
            failed,
        )

    def get_inventory_stats(self, organization_id: Optional[str] = None) -> Dict[str, Any]:
        snapshot, failed = self._collect((INVENTORY,), organization_id)
        return self._panel(
            "inventory",
            lambda: self._inventory_stats(snapshot.inventory),
            empty_inventory_stats,
            (INVENTORY,),
            failed,
        )

    def get_user_stats(self, organization_id: Optional[str] = None) -> Dict[str, Any]:
        snapshot, failed = self._collect((USERS,), organization_id)
        return self._panel(
            "users",
            lambda: self._user_stats(snapshot.users),
            empty_user_stats,
            (USERS,),
            failed,
        )

    def get_recent_activity(self, organization_id: Optional[str] = None) -> Dict[str, Any]:
        snapshot, _ = self._collect((WORK_ORDERS, ASSETS, USERS), organization_id)
        return self._panel(
            "recentActivity", lambda: self._recent_activity(snapshot), empty_recent_activity
        )

    def get_trends(self, organization_id: Optional[str] = None) -> Dict[str, Any]:
        now = self.now()
        snapshot, failed = self._collect((WORK_ORDERS,), organization_id)
        return self._panel(
            "trends",
            lambda: self._weekly_trends(snapshot.work_orders, now),
            empty_weekly_trends,
            (WORK_ORDERS,),
            failed,
        )

    def get_work_order_trend_data(
        self, days: int = 30, organization_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        days = max(1, int(days))
        buckets = daily_buckets(self.now(), days, self._tz)
        snapshot, _ = self._collect((WORK_ORDERS,), organization_id)
        counts = count_in_buckets(buckets, snapshot.work_orders, lambda wo: wo.created_at)
        return [{"date": bucket.key, "count": count} for bucket, count in zip(buckets, counts)]

    def get_inventory_trend_data(self, organization_id: Optional[str] = None) -> List[Dict[str, Any]]:
        snapshot, _ = self._collect((INVENTORY,), organization_id)
        return [
            {"category": row["category"], "count": row["count"], "value": row["value"]}
            for row in self._stock_by_category(snapshot.inventory)
        ]

    def _work_order_stats(self, work_orders: Sequence[WorkOrder], now: datetime) -> Dict[str, Any]:
        by_status = count_by(work_orders, lambda wo: wo.status, WorkOrderStatus)
        month_start = self._start_of_month(now)
        completed_this_month = sum(
            1
            for wo in completed(work_orders)
            if wo.updated_at is not None and wo.updated_at >= month_start
        )
        return {
            "total": len(work_orders),
            "breakdown": by_status,
            "byStatus": by_status,
            "byPriority": count_by(work_orders, lambda wo: wo.priority, WorkOrderPriority),
            "byType": count_by(work_orders, lambda wo: wo.type, WorkOrderType),
            "overdue": overdue_count(work_orders, now),
            "completedThisMonth": completed_this_month,
            "avgCompletionTime": mean_repair_hours(work_orders),
        }

    def _asset_stats(self, assets: Sequence[Asset], now: datetime) -> Dict[str, Any]:
        by_status = count_by(assets, lambda asset: asset.status, AssetStatus)
        horizon = now + timedelta(days=self.constants.warranty_horizon_days)
        return {
            "total": len(assets),
            "breakdown": by_status,
            "byStatus": by_status,
            "byType": count_by(assets, lambda asset: classify_asset_type(asset.type)),
            "underMaintenance": sum(
                1 for asset in assets if asset.status == AssetStatus.UNDER_MAINTENANCE.value
            ),
            "warrantyExpiringSoon": sum(
                1
                for asset in assets
                if asset.warranty_expiry is not None and now < asset.warranty_expiry <= horizon
            ),
        }

    def _inventory_stats(self, items: Sequence[InventoryItem]) -> Dict[str, Any]:
        by_category = count_by(items, lambda item: item.category, InventoryCategory)
        return {
            "total": len(items),
            "breakdown": by_category,
            "byCategory": by_category,
            "byStatus": count_by(items, lambda item: item.status, InventoryStatus),
            "lowStockItems": sum(1 for item in items if item.is_low_stock),
            "outOfStockItems": sum(1 for item in items if item.is_out_of_stock),
            "totalValue": round_money(inventory_value(items)),
        }

    def _user_stats(self, users: Sequence[User]) -> Dict[str, Any]:
        by_status = count_by(users, lambda user: user.status, UserStatus)
        return {
            "total": len(users),
            "breakdown": by_status,
            "byStatus": by_status,
            "byRole": count_by(users, lambda user: role_label(user.role_name)),
            "activeUsers": sum(1 for user in users if user.is_active),
            "pendingInvitations": sum(1 for user in users if user.has_pending_invitation),
        }

    def _recent_activity(self, snapshot: MaintenanceSnapshot) -> Dict[str, Any]:
        limit = self.constants.recent_activity_limit
        recent_work_orders = [
            {
                "id": wo.id,
                "woNumber": wo.wo_number,
                "title": wo.title,
                "status": wo.status,
                "priority": wo.priority,
                "assetName": snapshot.resolve_asset_name(wo.asset_id),
                "assignedTo": snapshot.resolve_user_name(wo.assigned_to_id),
                "createdAt": _isoformat(wo.created_at),
            }
            for wo in _newest_first(snapshot.work_orders, limit)
        ]
        recent_assets = [
            {
                "id": asset.id,
                "assetCode": asset.asset_code,
                "name": asset.name,
                "type": asset.type,
                "status": asset.status,
                "createdAt": _isoformat(asset.created_at),
            }
            for asset in _newest_first(snapshot.assets, limit)
        ]
        return {"recentWorkOrders": recent_work_orders, "recentAssets": recent_assets}

    def _weekly_trends(self, work_orders: Sequence[WorkOrder], now: datetime) -> Dict[str, Any]:
        this_week_start = self._start_of_week(now)
        last_week_start = this_week_start - timedelta(days=7)
        this_week = sum(
            1 for wo in work_orders if wo.created_at is not None and wo.created_at >= this_week_start
        )
        last_week = sum(
            1
            for wo in work_orders
            if wo.created_at is not None and last_week_start <= wo.created_at < this_week_start
        )
        return {
            "workOrdersThisWeek": this_week,
            "workOrdersLastWeek": last_week,
            "workOrdersTrend": percentage_change(this_week, last_week),
        }

    # ------------------------------------------------------------------
    # KPI dashboard
    # ------------------------------------------------------------------
    def get_kpi_dashboard(self, query: Optional[DateRangeQuery] = None) -> Dict[str, Any]:
        now = self.now()
        start, end = self._window(query, self._start_of_month(now), now)
        organization_id = query.organization_id if query else None
        snapshot, _ = self._collect((WORK_ORDERS, ASSETS, INVENTORY, USERS), organization_id)
        work_orders = snapshot.work_orders
        period = in_period(work_orders, start, end)

        # The comparison window has the same length and ends where this one starts.
        span = end - start if start is not None else timedelta(0)
        previous = in_period(work_orders, start - span, start - timedelta(microseconds=1)) if start else []
        pm_window = timedelta(days=self.constants.pm_compliance_window_days)

        pm_compliance = calculate_pm_compliance(work_orders, now, self.constants)
        mttr = calculate_mttr(period)

        return {
            "mtbf": calculate_mtbf(work_orders),
            "mttr": mttr,
            "oee": calculate_oee(snapshot.assets, work_orders, self.constants),
            "pmCompliance": pm_compliance,
            "workOrderBacklog": backlog_count(work_orders),
            "firstTimeFixRate": calculate_first_time_fix_rate(period, self.constants),
            "technicianUtilization": calculate_technician_utilization(
                snapshot.users, period, self.constants
            ),
            "inventoryTurnover": calculate_inventory_turnover(snapshot.inventory, self.constants),
            "avgCostPerWorkOrder": average_cost_per_work_order(period),
            "assetAvailability": asset_availability(snapshot.assets),
            "trends": {
                "mtbfTrend": metric_delta(calculate_mtbf(period), calculate_mtbf(previous)),
                "mttrTrend": metric_delta(mttr, calculate_mttr(previous)),
                "pmComplianceTrend": metric_delta(
                    pm_compliance,
                    calculate_pm_compliance(work_orders, now - pm_window, self.constants),
                ),
            },
        }

    # ------------------------------------------------------------------
    # Work-order metrics
    # ------------------------------------------------------------------
    def get_work_order_metrics(self, query: Optional[DateRangeQuery] = None) -> Dict[str, Any]:
        now = self.now()
        start, end = self._window(query, self._start_of_month(now, months_back=1), now)
        organization_id = query.organization_id if query else None
        snapshot, _ = self._collect((WORK_ORDERS, ASSETS), organization_id)
        period = in_period(snapshot.work_orders, start, end)
        finished = completed(period)

        failure_categories = count_by(
            (wo for wo in period if wo.type == WorkOrderType.CORRECTIVE.value),
            snapshot.asset_category,
        )
        top_failure_categories = top_n(
            ({"category": category, "count": count} for category, count in failure_categories.items()),
            "count",
            self.constants.top_n,
            tie_key="category",
        )

        avg_resolution_by_type = []
        for wo_type in WorkOrderType:
            hours = mean_repair_hours(wo for wo in finished if wo.type == wo_type.value)
            if hours is not None:
                avg_resolution_by_type.append({"type": wo_type.value, "hours": hours})

        return {
            "summary": {
                "total": len(period),
                "open": backlog_count(period),
                "completed": len(finished),
                "overdue": overdue_count(period, now),
                "avgResolutionTime": calculate_mttr(period),
                "slaCompliance": calculate_sla_compliance(period),
            },
            "byStatus": count_by(period, lambda wo: wo.status, WorkOrderStatus),
            "byPriority": count_by(period, lambda wo: wo.priority, WorkOrderPriority),
            "byType": count_by(period, lambda wo: wo.type, WorkOrderType),
            "completionTrends": self._completion_trends(snapshot.work_orders, now),
            "topFailureCategories": top_failure_categories,
            "avgResolutionByType": avg_resolution_by_type,
        }

    def _completion_trends(self, work_orders: Sequence[WorkOrder], now: datetime) -> List[Dict[str, Any]]:
        buckets = daily_buckets(now, self.constants.trend_days, self._tz)
        created = count_in_buckets(buckets, work_orders, lambda wo: wo.created_at)
        finished = count_in_buckets(buckets, completed(work_orders), lambda wo: wo.completed_at)
        return [
            {"date": bucket.key, "completed": done, "created": opened}
            for bucket, done, opened in zip(buckets, finished, created)
        ]

    # ------------------------------------------------------------------
    # Asset performance
    # ------------------------------------------------------------------
    def get_asset_performance_metrics(self, query: Optional[DateRangeQuery] = None) -> Dict[str, Any]:
        now = self.now()
        query = query or DateRangeQuery()
        snapshot, _ = self._collect((ASSETS, WORK_ORDERS), query.organization_id)
        assets = snapshot.assets
        work_orders = snapshot.work_orders
        if query.start_date or query.end_date:
            start, end = self._window(query, None, now)
            work_orders = in_period(work_orders, start, end)

        by_asset: Dict[str, List[WorkOrder]] = defaultdict(list)
        for wo in work_orders:
            if wo.asset_id:
                by_asset[wo.asset_id].append(wo)

        downtime_rows = []
        cost_rows = []
        failure_rows = []
        utilization_rows = []
        reliability_rows = []
        for asset in assets:
            asset_work_orders = by_asset.get(asset.id, [])
            identity = {"assetId": asset.id, "assetName": asset.name}
            downtime_seconds = sum(
                wo.repair_seconds for wo in asset_work_orders if wo.repair_seconds is not None
            )
            failures = sum(
                1 for wo in asset_work_orders if wo.type == WorkOrderType.CORRECTIVE.value
            )
            score, mtbf = asset_reliability(failures, self.constants)
            downtime_rows.append({**identity, "downtime": round_int(downtime_seconds / 3600)})
            cost_rows.append({**identity, "cost": round_money(total_actual_cost(asset_work_orders))})
            failure_rows.append({**identity, "failures": failures})
            # Utilization needs runtime meter data; reported as not yet computed.
            utilization_rows.append({**identity, "utilization": None})
            reliability_rows.append({**identity, "score": score, "mtbf": mtbf})

        limit = self.constants.top_n
        ranked_reliability = top_n(reliability_rows, "score", len(reliability_rows), tie_key="assetId")
        avg_reliability = (
            round_int(sum(row["score"] for row in reliability_rows) / len(reliability_rows))
            if reliability_rows
            else 100
        )

        return {
            "summary": {
                "totalAssets": len(assets),
                "operationalAssets": sum(1 for asset in assets if asset.is_operational),
                "underMaintenance": sum(
                    1 for asset in assets if asset.status == AssetStatus.UNDER_MAINTENANCE.value
                ),
                "avgAvailability": asset_availability(assets),
                "avgReliability": avg_reliability,
            },
            "downtimeByAsset": top_n(downtime_rows, "downtime", limit, tie_key="assetId"),
            "maintenanceCostByAsset": top_n(cost_rows, "cost", limit, tie_key="assetId"),
            "failureFrequency": top_n(failure_rows, "failures", limit, tie_key="assetId"),
            "utilizationRates": utilization_rows[:limit],
            "reliabilityScores": ranked_reliability[:limit],
        }

    # ------------------------------------------------------------------
    # Inventory metrics
    # ------------------------------------------------------------------
    def get_inventory_metrics(self, query: Optional[DateRangeQuery] = None) -> Dict[str, Any]:
        organization_id = query.organization_id if query else None
        snapshot, _ = self._collect((INVENTORY,), organization_id)
        items = snapshot.inventory

        stock_by_category = self._stock_by_category(items)
        turnover_by_category = [
            {"category": row["category"], "turnover": turnover_for_value(row["value"], self.constants)}
            for row in stock_by_category
        ]
        avg_turnover = (
            round_tenth(sum(row["turnover"] for row in turnover_by_category) / len(turnover_by_category))
            if turnover_by_category
            else 0
        )

        slow_moving = top_n(
            (
                {
                    "itemId": item.id,
                    "name": item.name,
                    # Requires stock movement history; not yet computed.
                    "daysSinceLastMove": None,
                    "quantity": item.quantity,
                }
                for item in items
                if item.quantity > item.min_quantity * 2
            ),
            "quantity",
            self.constants.top_n,
            tie_key="itemId",
        )

        return {
            "summary": {
                "totalItems": len(items),
                "totalValue": round_money(inventory_value(items)),
                "lowStockItems": sum(1 for item in items if item.is_low_stock),
                "outOfStockItems": sum(1 for item in items if item.is_out_of_stock),
                "avgTurnoverRate": avg_turnover,
            },
            "stockByCategory": [
                {"category": row["category"], "quantity": row["quantity"], "value": row["value"]}
                for row in stock_by_category
            ],
            "turnoverByCategory": turnover_by_category,
            "stockoutIncidents": [],
            "slowMovingItems": slow_moving,
            "reorderRecommendations": self._reorder_recommendations(items),
        }

    @staticmethod
    def _stock_by_category(items: Sequence[InventoryItem]) -> List[Dict[str, Any]]:
        counts = count_by(items, lambda item: item.category, InventoryCategory)
        quantities = sum_by(items, lambda item: item.category, lambda item: item.quantity, InventoryCategory)
        values = sum_by(items, lambda item: item.category, lambda item: item.stock_value, InventoryCategory)
        return [
            {
                "category": category,
                "count": counts.get(category, 0),
                "quantity": int(quantities.get(category, 0)),
                "value": round_money(values.get(category, 0.0)),
            }
            for category in counts
        ]

    @staticmethod
    def _reorder_recommendations(items: Sequence[InventoryItem]) -> List[Dict[str, Any]]:
        recommendations = []
        for item in items:
            if item.quantity > item.min_quantity:
                continue
            target = item.max_quantity or item.min_quantity * 3
            if item.quantity == 0:
                urgency = "critical"
            elif item.quantity < item.min_quantity / 2:
                urgency = "high"
            else:
                urgency = "medium"
            recommendations.append(
                {
                    "itemId": item.id,
                    "name": item.name,
                    "currentQty": item.quantity,
                    "reorderQty": max(0, target - item.quantity),
                    "urgency": urgency,
                }
            )
        recommendations.sort(key=lambda row: _URGENCY_ORDER[row["urgency"]])
        return recommendations

    # ------------------------------------------------------------------
    # Cost metrics
    # ------------------------------------------------------------------
    def get_cost_metrics(self, query: Optional[DateRangeQuery] = None) -> Dict[str, Any]:
        now = self.now()
        start, end = self._window(query, self._start_of_year(now), now)
        organization_id = query.organization_id if query else None
        snapshot, _ = self._collect((WORK_ORDERS, ASSETS), organization_id)
        period = in_period(snapshot.work_orders, start, end)
        constants = self.constants

        split = split_costs(total_actual_cost(period), constants)

        buckets = monthly_buckets(now, constants.cost_trend_months, self._tz)
        monthly_totals = sum_in_buckets(
            buckets, snapshot.work_orders, lambda wo: wo.created_at, lambda wo: wo.actual_cost
        )
        cost_trends = [
            {
                "date": bucket.key,
                "labor": round_int(total * constants.labor_cost_ratio),
                "parts": round_int(total * constants.parts_cost_ratio),
                "total": round_int(total),
            }
            for bucket, total in zip(buckets, monthly_totals)
        ]

        period_by_asset = sum_by(
            (wo for wo in period if wo.asset_id), lambda wo: wo.asset_id, lambda wo: wo.actual_cost
        )
        cost_by_asset = top_n(
            (
                {
                    "assetId": asset.id,
                    "assetName": asset.name,
                    "cost": round_money(period_by_asset.get(asset.id, 0.0)),
                }
                for asset in snapshot.assets
            ),
            "cost",
            constants.top_n,
            tie_key="assetId",
        )

        budget_vs_actual = [
            self._budget_line("Labor", split.labor),
            self._budget_line("Parts", split.parts),
            self._budget_line("Contractors", split.contractors),
            self._budget_line("Other", split.miscellaneous),
        ]
        budget_total = sum(line["budget"] for line in budget_vs_actual)
        actual_total = sum(line["actual"] for line in budget_vs_actual)
        budget_variance = (
            round_int((actual_total - budget_total) / budget_total * 100) if budget_total > 0 else 0
        )

        highest_cost = top_n(
            (
                {
                    "woId": wo.id,
                    "woNumber": wo.wo_number or wo.id[:8],
                    "title": wo.title,
                    "cost": wo.actual_cost,
                }
                for wo in period
                if wo.actual_cost
            ),
            "cost",
            constants.top_n,
            tie_key="woId",
        )

        return {
            "summary": {
                "totalCost": round_money(split.total),
                "laborCost": round_money(split.labor),
                "partsCost": round_money(split.parts),
                "otherCost": round_money(split.other),
                "budgetVariance": budget_variance,
            },
            "costTrends": cost_trends,
            "costByDepartment": [],
            "costByAsset": cost_by_asset,
            "budgetVsActual": budget_vs_actual,
            "highestCostWorkOrders": highest_cost,
        }

    def _budget_line(self, category: str, actual: float) -> Dict[str, Any]:
        return {
            "category": category,
            "budget": round_int(actual * self.constants.budget_factor),
            "actual": round_int(actual),
        }

    # ------------------------------------------------------------------
    # Technician productivity
    # ------------------------------------------------------------------
    def get_technician_productivity(self, query: Optional[DateRangeQuery] = None) -> Dict[str, Any]:
        now = self.now()
        start, end = self._window(query, self._start_of_month(now), now)
        organization_id = query.organization_id if query else None
        snapshot, _ = self._collect((USERS, WORK_ORDERS), organization_id)
        period = in_period(snapshot.work_orders, start, end)
        staff = technicians(snapshot.users)

        assigned: Dict[str, List[WorkOrder]] = defaultdict(list)
        for wo in period:
            if wo.assigned_to_id:
                assigned[wo.assigned_to_id].append(wo)

        rows = []
        for technician in staff:
            technician_work_orders = assigned.get(technician.id, [])
            finished = completed(technician_work_orders)
            rows.append(
                {
                    "id": technician.id,
                    "name": technician.full_name,
                    "workOrdersCompleted": len(finished),
                    "avgCompletionTime": mean_repair_hours(finished) or 0,
                    "utilization": technician_period_utilization(
                        len(technician_work_orders), self.constants
                    ),
                    "firstTimeFixRate": round_int(self.constants.technician_first_time_fix_rate),
                }
            )
        rows = top_n(rows, "workOrdersCompleted", len(rows), tie_key="id")

        if staff:
            avg_per_tech = round_int(sum(row["workOrdersCompleted"] for row in rows) / len(staff))
            avg_utilization = round_int(sum(row["utilization"] for row in rows) / len(staff))
        else:
            avg_per_tech = 0
            avg_utilization = 0

        return {
            "technicians": rows,
            "summary": {
                "avgWorkOrdersPerTech": avg_per_tech,
                "avgUtilization": avg_utilization,
                "topPerformer": rows[0]["name"] if rows else "N/A",
            },
        }


__all__ = [
    "AnalyticsService",
    "Branch",
    "DEFAULT_BRANCH_TIMEOUT",
    "DateRangeQuery",
    "empty_asset_stats",
    "empty_inventory_stats",
    "empty_recent_activity",
    "empty_user_stats",
    "empty_weekly_trends",
    "empty_work_order_stats",
    "gather_with_fallback",
    "run_with_fallback",
]
