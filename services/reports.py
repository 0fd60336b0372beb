"""Report registry exposing the analytics composers by id."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from dateutil.parser import parse as dateutil_parse

from .analytics import DEFAULT_BRANCH_TIMEOUT, AnalyticsService, DateRangeQuery
from .kpi import KpiConstants
from .snapshot import RecordSource, SQLiteRecordSource

LOGGER = logging.getLogger(__name__)

MAX_TREND_DAYS = 366


# ---------------------------------------------------------------------------
# Helper utilities
# ---------------------------------------------------------------------------


def _serialise_value(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _parse_date(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        try:
            parsed = dateutil_parse(str(value))
        except (TypeError, ValueError, OverflowError):
            raise ValueError(f"Could not parse date value '{value}'")
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _parse_integer(value: Any, label: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{label} must be an integer")
    if isinstance(value, int):
        return value
    text = str(value).strip()
    try:
        return int(text)
    except ValueError:
        raise ValueError(f"{label} must be an integer, got '{value}'")


# ---------------------------------------------------------------------------
# Parameter and definition primitives
# ---------------------------------------------------------------------------


@dataclass
class ReportParameter:
    name: str
    label: str
    param_type: str
    description: str = ""
    required: bool = False
    default: Any = None
    min_value: Optional[int] = None
    max_value: Optional[int] = None
    placeholder: Optional[str] = None

    def describe(self) -> Dict[str, Any]:
        default_value = self.default() if callable(self.default) else self.default
        return {
            "name": self.name,
            "label": self.label,
            "type": self.param_type,
            "description": self.description,
            "required": self.required,
            "default": _serialise_value(default_value),
            "min": self.min_value,
            "max": self.max_value,
            "placeholder": self.placeholder,
        }

    def normalise(self, value: Any) -> Any:
        candidate = value
        if candidate in (None, ""):
            candidate = self.default() if callable(self.default) else self.default
        if candidate in (None, ""):
            if self.required:
                raise ValueError(f"{self.label} is required")
            return None
        if self.param_type == "date":
            return _parse_date(candidate)
        if self.param_type == "integer":
            number = _parse_integer(candidate, self.label)
            if self.min_value is not None and number < self.min_value:
                raise ValueError(f"{self.label} must be at least {self.min_value}")
            if self.max_value is not None and number > self.max_value:
                raise ValueError(f"{self.label} must be at most {self.max_value}")
            return number
        return str(candidate)


@dataclass
class ReportDefinition:
    id: str
    name: str
    description: str
    parameters: List[ReportParameter]
    runner: Callable[[AnalyticsService, Dict[str, Any]], Any]
    tags: List[str] = field(default_factory=list)

    def describe(self) -> Dict[str, Any]:
        defaults = {
            parameter.name: _serialise_value(
                parameter.default() if callable(parameter.default) else parameter.default
            )
            for parameter in self.parameters
        }
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "parameters": [parameter.describe() for parameter in self.parameters],
            "tags": self.tags,
            "defaultParams": defaults,
        }

    def normalise_params(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        known = {parameter.name for parameter in self.parameters}
        unexpected = sorted(name for name in payload if name not in known)
        if unexpected:
            LOGGER.debug("Ignoring parameters %s for report %s", unexpected, self.id)
        normalised: Dict[str, Any] = {}
        for parameter in self.parameters:
            normalised[parameter.name] = parameter.normalise(payload.get(parameter.name))
        start = normalised.get("startDate")
        end = normalised.get("endDate")
        if start is not None and end is not None and start > end:
            raise ValueError("startDate must not be after endDate")
        return normalised

    def run(self, service: AnalyticsService, params: Dict[str, Any]) -> Any:
        return self.runner(service, params)


def _organization_parameter() -> ReportParameter:
    return ReportParameter(
        name="organizationId",
        label="Organization",
        param_type="string",
        description="Only include records belonging to this organization.",
    )


def _window_parameters() -> List[ReportParameter]:
    return [
        ReportParameter(
            name="startDate",
            label="Start Date",
            param_type="date",
            description="Limit calculations to work orders created on or after this date.",
        ),
        ReportParameter(
            name="endDate",
            label="End Date",
            param_type="date",
            description="Limit calculations to work orders created on or before this date.",
        ),
        _organization_parameter(),
    ]


def _query(params: Dict[str, Any]) -> DateRangeQuery:
    return DateRangeQuery(
        start_date=params.get("startDate"),
        end_date=params.get("endDate"),
        organization_id=params.get("organizationId"),
    )


# ---------------------------------------------------------------------------
# Analytics engine
# ---------------------------------------------------------------------------


class AnalyticsEngine:
    def __init__(self, service: AnalyticsService) -> None:
        self.service = service
        self._definitions: Dict[str, ReportDefinition] = {}
        self._register_default_reports()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def list_report_definitions(self) -> List[Dict[str, Any]]:
        return [definition.describe() for definition in self._definitions.values()]

    def run_report(self, report_id: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        if report_id not in self._definitions:
            raise KeyError(f"Unknown analytics report '{report_id}'")
        definition = self._definitions[report_id]
        normalised_params = definition.normalise_params(params or {})
        LOGGER.debug("Running analytics report %s with %s", report_id, normalised_params)
        return definition.run(self.service, normalised_params)

    def close(self) -> None:
        self.service.close()

    # ------------------------------------------------------------------
    # Registration helpers
    # ------------------------------------------------------------------
    def register(self, definition: ReportDefinition) -> None:
        self._definitions[definition.id] = definition

    def _register_default_reports(self) -> None:
        self.register(
            ReportDefinition(
                id="dashboard",
                name="Maintenance Overview",
                description="Work order, asset, inventory and user totals with recent activity.",
                parameters=[_organization_parameter()],
                runner=lambda service, params: service.get_dashboard_analytics(
                    params.get("organizationId")
                ),
                tags=["overview"],
            )
        )
        self.register(
            ReportDefinition(
                id="kpi-dashboard",
                name="Maintenance KPIs",
                description="MTBF, MTTR, OEE, PM compliance and related indicators.",
                parameters=_window_parameters(),
                runner=lambda service, params: service.get_kpi_dashboard(_query(params)),
                tags=["kpi", "reliability"],
            )
        )
        self.register(
            ReportDefinition(
                id="work-orders",
                name="Work Order Totals",
                description="Work order counts by status, priority and type.",
                parameters=[_organization_parameter()],
                runner=lambda service, params: service.get_work_order_stats(
                    params.get("organizationId")
                ),
                tags=["work_orders"],
            )
        )
        self.register(
            ReportDefinition(
                id="work-orders/metrics",
                name="Work Order Metrics",
                description="Resolution times, SLA compliance and failure categories.",
                parameters=_window_parameters(),
                runner=lambda service, params: service.get_work_order_metrics(_query(params)),
                tags=["work_orders", "sla"],
            )
        )
        self.register(
            ReportDefinition(
                id="work-orders/trend",
                name="Work Order Trend",
                description="Daily count of created work orders.",
                parameters=[
                    ReportParameter(
                        name="days",
                        label="Days",
                        param_type="integer",
                        default=30,
                        min_value=1,
                        max_value=MAX_TREND_DAYS,
                        description="Number of trailing days to include.",
                    ),
                    _organization_parameter(),
                ],
                runner=lambda service, params: service.get_work_order_trend_data(
                    params["days"], params.get("organizationId")
                ),
                tags=["work_orders", "trend"],
            )
        )
        self.register(
            ReportDefinition(
                id="assets",
                name="Asset Totals",
                description="Asset counts by status and type with warranty expiries.",
                parameters=[_organization_parameter()],
                runner=lambda service, params: service.get_asset_stats(params.get("organizationId")),
                tags=["assets"],
            )
        )
        self.register(
            ReportDefinition(
                id="assets/performance",
                name="Asset Performance",
                description="Downtime, maintenance cost, failures and reliability per asset.",
                parameters=_window_parameters(),
                runner=lambda service, params: service.get_asset_performance_metrics(_query(params)),
                tags=["assets", "reliability"],
            )
        )
        self.register(
            ReportDefinition(
                id="inventory",
                name="Inventory Totals",
                description="Inventory counts by category and status with stock value.",
                parameters=[_organization_parameter()],
                runner=lambda service, params: service.get_inventory_stats(
                    params.get("organizationId")
                ),
                tags=["inventory"],
            )
        )
        self.register(
            ReportDefinition(
                id="inventory/metrics",
                name="Inventory Metrics",
                description="Stock value, turnover, slow movers and reorder recommendations.",
                parameters=[_organization_parameter()],
                runner=lambda service, params: service.get_inventory_metrics(_query(params)),
                tags=["inventory"],
            )
        )
        self.register(
            ReportDefinition(
                id="inventory/trend",
                name="Inventory by Category",
                description="Item count and stock value per inventory category.",
                parameters=[_organization_parameter()],
                runner=lambda service, params: service.get_inventory_trend_data(
                    params.get("organizationId")
                ),
                tags=["inventory", "trend"],
            )
        )
        self.register(
            ReportDefinition(
                id="costs",
                name="Maintenance Costs",
                description="Cost split, monthly trend, budget comparison and costliest work orders.",
                parameters=_window_parameters(),
                runner=lambda service, params: service.get_cost_metrics(_query(params)),
                tags=["costs"],
            )
        )
        self.register(
            ReportDefinition(
                id="technicians/productivity",
                name="Technician Productivity",
                description="Completed work, repair times and utilization per technician.",
                parameters=_window_parameters(),
                runner=lambda service, params: service.get_technician_productivity(_query(params)),
                tags=["technicians"],
            )
        )
        self.register(
            ReportDefinition(
                id="users",
                name="User Totals",
                description="User counts by status and role with pending invitations.",
                parameters=[_organization_parameter()],
                runner=lambda service, params: service.get_user_stats(params.get("organizationId")),
                tags=["users"],
            )
        )


# ---------------------------------------------------------------------------
# Construction from settings
# ---------------------------------------------------------------------------


def _branch_timeout_from_env() -> float:
    raw = os.getenv("CMMS_ANALYTICS_BRANCH_TIMEOUT")
    if raw in (None, ""):
        return DEFAULT_BRANCH_TIMEOUT
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"Invalid CMMS_ANALYTICS_BRANCH_TIMEOUT value '{raw}'")


def _default_source() -> RecordSource:
    from database import get_db_connection

    return SQLiteRecordSource(get_db_connection)


def build_analytics_engine(
    settings: Optional[Mapping[str, Any]] = None,
    *,
    source: Optional[RecordSource] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> AnalyticsEngine:
    """Create an engine configured from a ``settings.json`` style mapping.

    ``timezone`` selects the local calendar used for day, week and month
    boundaries (``CMMS_TIMEZONE`` when absent) and ``analytics`` overrides
    individual :class:`~services.kpi.KpiConstants` fields.
    """
    settings = settings or {}
    overrides = settings.get("analytics") or {}
    if not isinstance(overrides, Mapping):
        raise ValueError("The 'analytics' setting must be an object")
    service = AnalyticsService(
        source or _default_source(),
        constants=KpiConstants.from_mapping(overrides),
        clock=clock,
        timezone_name=settings.get("timezone") or os.getenv("CMMS_TIMEZONE") or "UTC",
        branch_timeout=_branch_timeout_from_env(),
    )
    return AnalyticsEngine(service)


# ---------------------------------------------------------------------------
# Module level singleton used by the Flask app
# ---------------------------------------------------------------------------

_engine_instance: Optional[AnalyticsEngine] = None


def get_analytics_engine() -> AnalyticsEngine:
    global _engine_instance
    if _engine_instance is None:
        _engine_instance = build_analytics_engine()
    return _engine_instance


def configure_analytics_engine(
    settings: Optional[Mapping[str, Any]] = None,
    *,
    source: Optional[RecordSource] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> AnalyticsEngine:
    """Replace the process-wide engine, e.g. after settings change."""
    global _engine_instance
    engine = build_analytics_engine(settings, source=source, clock=clock)
    if _engine_instance is not None:
        _engine_instance.close()
    _engine_instance = engine
    return engine


def reset_analytics_engine() -> None:
    global _engine_instance
    if _engine_instance is not None:
        _engine_instance.close()
    _engine_instance = None


__all__ = [
    "AnalyticsEngine",
    "MAX_TREND_DAYS",
    "ReportDefinition",
    "ReportParameter",
    "build_analytics_engine",
    "configure_analytics_engine",
    "get_analytics_engine",
    "reset_analytics_engine",
]
