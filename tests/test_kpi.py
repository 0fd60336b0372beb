import logging
from datetime import datetime, timedelta, timezone

import pytest

from services.kpi import (
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
    in_period,
    metric_delta,
    overdue_count,
    percentage_change,
    split_costs,
    technician_period_utilization,
)
from services.models import Asset, InventoryItem, User, WorkOrder

BASE = datetime(2024, 3, 1, tzinfo=timezone.utc)
NOW = datetime(2024, 3, 20, tzinfo=timezone.utc)


def _corrective(identifier, hours):
    return WorkOrder(id=identifier, type='corrective', created_at=BASE + timedelta(hours=hours))


def _repair(identifier, hours, status='completed'):
    return WorkOrder(
        id=identifier,
        status=status,
        actual_start=BASE,
        actual_end=BASE + timedelta(hours=hours),
        created_at=BASE,
    )


# ---------------------------------------------------------------------------
# Reliability
# ---------------------------------------------------------------------------


def test_mtbf_averages_gaps_between_corrective_work_orders():
    orders = [_corrective('c', 30), _corrective('a', 0), _corrective('b', 10)]
    orders.append(WorkOrder(id='pm', type='preventive', created_at=BASE + timedelta(hours=5)))
    assert calculate_mtbf(orders) == 15


@pytest.mark.parametrize('orders', [[], [_corrective('only', 0)]])
def test_mtbf_is_none_with_insufficient_failures(orders):
    assert calculate_mtbf(orders) is None


def test_mttr_averages_completed_repairs():
    orders = [_repair('a', 2), _repair('b', 6), _repair('open', 50, status='in_progress')]
    assert calculate_mttr(orders) == 4


def test_mttr_is_none_without_eligible_work_orders():
    assert calculate_mttr([]) is None
    assert calculate_mttr([WorkOrder(id='x', status='completed', actual_start=BASE)]) is None


def test_oee_combines_availability_performance_and_quality():
    assets = [Asset(id='1', status='active'), Asset(id='2', status='inactive')]
    orders = [WorkOrder(id='a', status='completed'), WorkOrder(id='b', status='assigned')]
    # 0.5 availability * 0.5 performance * 0.95 quality
    assert calculate_oee(assets, orders) == 24


def test_oee_sentinels():
    assert calculate_oee([], [WorkOrder(id='a')]) is None
    assert calculate_oee([Asset(id='1', status='active')], []) == 95


def test_asset_availability_defaults_to_full_without_assets():
    assert asset_availability([]) == 100
    assert asset_availability([Asset(id='1'), Asset(id='2', status='decommissioned'), Asset(id='3')]) == 67


def test_asset_reliability_score_and_mtbf_proxy():
    assert asset_reliability(0) == (100, 720)
    assert asset_reliability(3) == (85, 240)


# ---------------------------------------------------------------------------
# Compliance
# ---------------------------------------------------------------------------


def test_pm_compliance_counts_on_time_preventive_work_in_window():
    on_time = WorkOrder(
        id='pm1',
        type='preventive',
        status='completed',
        created_at=NOW - timedelta(days=3),
        due_date=NOW - timedelta(days=1),
        actual_end=NOW - timedelta(days=2),
    )
    late = WorkOrder(
        id='pm2',
        type='preventive',
        status='completed',
        created_at=NOW - timedelta(days=3),
        due_date=NOW - timedelta(days=2),
        actual_end=NOW - timedelta(days=1),
    )
    undated = WorkOrder(id='pm3', type='preventive', status='completed', created_at=NOW - timedelta(days=1))
    open_pm = WorkOrder(id='pm4', type='preventive', status='assigned', created_at=NOW - timedelta(days=1))
    stale = WorkOrder(id='pm5', type='preventive', status='assigned', created_at=NOW - timedelta(days=45))

    assert calculate_pm_compliance([on_time, late, undated, open_pm, stale], NOW) == 50


def test_pm_compliance_is_vacuously_full():
    assert calculate_pm_compliance([], NOW) == 100
    assert calculate_pm_compliance([WorkOrder(id='c', type='corrective', created_at=NOW)], NOW) == 100


def test_sla_compliance_uses_completion_time_against_due_date():
    met = WorkOrder(id='a', status='completed', due_date=NOW, updated_at=NOW - timedelta(hours=1))
    missed = WorkOrder(id='b', status='completed', due_date=NOW, actual_end=NOW + timedelta(hours=1))
    no_due = WorkOrder(id='c', status='completed')
    ignored = WorkOrder(id='d', status='in_progress', due_date=NOW - timedelta(days=1))

    assert calculate_sla_compliance([met, missed, no_due, ignored]) == 67
    assert calculate_sla_compliance([]) == 100


def test_first_time_fix_rate_placeholder():
    assert calculate_first_time_fix_rate([]) == 100
    assert calculate_first_time_fix_rate([WorkOrder(id='a', status='completed')]) == 100
    custom = KpiConstants(first_time_fix_rate=87)
    assert calculate_first_time_fix_rate([WorkOrder(id='a', status='completed')], custom) == 87


# ---------------------------------------------------------------------------
# Workforce, inventory and cost
# ---------------------------------------------------------------------------


def test_technician_utilization():
    techs = [
        User(id='t1', status='active', role_name='Field Technician'),
        User(id='t2', status='active', role_name='MAINTENANCE crew'),
        User(id='off', status='inactive', role_name='Technician'),
        User(id='mgr', status='active', role_name='Manager'),
    ]
    orders = [WorkOrder(id=str(index), assigned_to_id='t1') for index in range(40)]
    orders.append(WorkOrder(id='unassigned'))

    # 40 assigned / 2 technicians / 40 capacity
    assert calculate_technician_utilization(techs, orders) == 50
    assert calculate_technician_utilization(techs[2:], orders) == 0
    busy = [WorkOrder(id=str(index), assigned_to_id='t1') for index in range(200)]
    assert calculate_technician_utilization(techs, busy) == 100


def test_technician_period_utilization_caps_at_full():
    assert technician_period_utilization(10) == 50
    assert technician_period_utilization(45) == 100


def test_inventory_turnover_placeholder():
    assert calculate_inventory_turnover([]) == 0
    assert calculate_inventory_turnover([InventoryItem(id='1', quantity=0, unit_price=5)]) == 0
    assert calculate_inventory_turnover([InventoryItem(id='1', quantity=2, unit_price=5)]) == 4.0


def test_split_costs_uses_fixed_ratios():
    split = split_costs(1000.0)
    assert split.total == 1000.0
    assert split.labor == pytest.approx(450.0)
    assert split.parts == pytest.approx(400.0)
    assert split.other == pytest.approx(150.0)
    assert split.contractors == pytest.approx(75.0)
    assert split.miscellaneous == pytest.approx(75.0)


def test_average_cost_per_work_order_only_counts_completed():
    orders = [
        WorkOrder(id='a', status='completed', actual_cost=100),
        WorkOrder(id='b', status='completed', actual_cost=51),
        WorkOrder(id='c', status='assigned', actual_cost=1000),
    ]
    assert average_cost_per_work_order(orders) == 76
    assert average_cost_per_work_order([]) == 0


# ---------------------------------------------------------------------------
# Filters and trends
# ---------------------------------------------------------------------------


def test_backlog_and_overdue_counts():
    orders = [
        WorkOrder(id='a', status='assigned', due_date=NOW - timedelta(days=1)),
        WorkOrder(id='b', status='closed', due_date=NOW - timedelta(days=1)),
        WorkOrder(id='c', status='draft', due_date=NOW + timedelta(days=1)),
        WorkOrder(id='d', status='cancelled'),
    ]
    assert backlog_count(orders) == 2
    assert overdue_count(orders, NOW) == 1


def test_in_period_is_inclusive_and_skips_undated():
    orders = [
        WorkOrder(id='start', created_at=BASE),
        WorkOrder(id='end', created_at=NOW),
        WorkOrder(id='after', created_at=NOW + timedelta(seconds=1)),
        WorkOrder(id='undated'),
    ]
    assert [wo.id for wo in in_period(orders, BASE, NOW)] == ['start', 'end']
    assert [wo.id for wo in in_period(orders, None, None)] == ['start', 'end', 'after']


def test_percentage_change_and_metric_delta():
    assert percentage_change(1, 2) == -50
    assert percentage_change(3, 0) == 100
    assert percentage_change(0, 0) == 0
    assert metric_delta(10, 4) == 6
    assert metric_delta(None, 4) is None


def test_empty_inputs_never_raise():
    assert calculate_mtbf([]) is None
    assert calculate_mttr([]) is None
    assert calculate_oee([], []) is None
    assert calculate_pm_compliance([], NOW) == 100
    assert calculate_sla_compliance([]) == 100
    assert calculate_technician_utilization([], []) == 0
    assert calculate_inventory_turnover([]) == 0


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------


def test_constants_from_mapping_overrides_known_fields(caplog):
    with caplog.at_level(logging.WARNING, logger='services.kpi'):
        constants = KpiConstants.from_mapping(
            {'technician_monthly_capacity': '35', 'top_n': '5', 'mystery': 1}
        )
    assert constants.technician_monthly_capacity == 35.0
    assert constants.top_n == 5
    assert constants.oee_quality_factor == DEFAULT_CONSTANTS.oee_quality_factor
    assert 'mystery' in caplog.text


def test_constants_from_mapping_rejects_bad_values():
    with pytest.raises(ValueError):
        KpiConstants.from_mapping({'budget_factor': 'lots'})
    assert KpiConstants.from_mapping(None) == DEFAULT_CONSTANTS


@pytest.mark.parametrize(
    'name, raw',
    [
        ('technician_monthly_capacity', 0),
        ('technician_period_capacity', '0'),
        ('trend_days', 0),
        ('top_n', -3),
        ('budget_factor', 0),
        ('labor_cost_ratio', -0.1),
    ],
)
def test_constants_from_mapping_rejects_out_of_range_values(name, raw):
    with pytest.raises(ValueError, match=name):
        KpiConstants.from_mapping({name: raw})


def test_utilization_without_capacity_is_zero():
    techs = [User(id='t1', status='active', role_name='Technician')]
    orders = [WorkOrder(id='1', assigned_to_id='t1')]
    no_capacity = KpiConstants(technician_monthly_capacity=0, technician_period_capacity=0)

    assert calculate_technician_utilization(techs, orders, no_capacity) == 0
    assert technician_period_utilization(3, no_capacity) == 0
