import pathlib
import sys
from datetime import datetime, timedelta, timezone

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from services.models import Asset, InventoryItem, User, WorkOrder

# Wednesday; the current week started on Sunday 2024-06-09.
NOW = datetime(2024, 6, 12, 12, 0, tzinfo=timezone.utc)


def fixed_clock():
    return NOW


@pytest.fixture()
def sample_assets():
    return [
        Asset(
            id='A1',
            name='Pump 1',
            type='Pump',
            status='active',
            asset_code='AS-001',
            warranty_expiry=NOW + timedelta(days=10),
            created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        ),
        Asset(
            id='A2',
            name='Conveyor',
            type='Conveyor',
            status='under_maintenance',
            asset_code='AS-002',
            created_at=datetime(2024, 2, 1, tzinfo=timezone.utc),
        ),
        Asset(
            id='A3',
            name='Spare Motor',
            type=None,
            status='active',
            asset_code='AS-003',
            warranty_expiry=NOW + timedelta(days=60),
            created_at=datetime(2024, 3, 1, tzinfo=timezone.utc),
        ),
    ]


@pytest.fixture()
def sample_users():
    return [
        User(id='U1', first_name='Tina', last_name='Tech', status='active', role_id='R1', role_name='Maintenance Technician'),
        User(id='U2', first_name='Mark', last_name='Manager', status='active', role_id='R2', role_name='Manager'),
        User(
            id='U3',
            first_name='Ivan',
            last_name='Invite',
            status='pending_verification',
            role_id='R1',
            role_name='Maintenance Technician',
            invitation_token='tok-123',
            invitation_accepted=False,
        ),
        User(id='U4', first_name='Nora', last_name='Norole', status='active'),
    ]


@pytest.fixture()
def sample_work_orders():
    w1_created = NOW - timedelta(days=10)
    w2_created = NOW - timedelta(days=5)
    w4_created = NOW - timedelta(days=20)
    return [
        WorkOrder(
            id='W1',
            wo_number='WO-1',
            title='Replace pump seal',
            status='completed',
            priority='high',
            type='corrective',
            created_at=w1_created,
            updated_at=w1_created + timedelta(hours=2),
            due_date=w1_created + timedelta(days=1),
            actual_start=w1_created,
            actual_end=w1_created + timedelta(hours=2),
            assigned_to_id='U1',
            asset_id='A1',
            actual_cost=100.0,
        ),
        WorkOrder(
            id='W2',
            wo_number='WO-2',
            title='Pump bearing failure',
            status='completed',
            priority='critical',
            type='corrective',
            created_at=w2_created,
            updated_at=w2_created + timedelta(hours=6),
            due_date=w2_created - timedelta(days=1),
            actual_start=w2_created,
            actual_end=w2_created + timedelta(hours=6),
            assigned_to_id='U1',
            asset_id='A1',
            actual_cost=250.5,
        ),
        WorkOrder(
            id='W3',
            wo_number='WO-3',
            title='Conveyor belt inspection',
            status='in_progress',
            priority='medium',
            type='preventive',
            created_at=NOW - timedelta(days=1),
            due_date=NOW - timedelta(hours=2),
            assigned_to_id='U1',
            asset_id='A2',
        ),
        WorkOrder(
            id='wo-4-abcdefgh',
            title='Conveyor lubrication',
            status='completed',
            priority='low',
            type='preventive',
            created_at=w4_created,
            updated_at=w4_created + timedelta(hours=1),
            due_date=w4_created + timedelta(days=1),
            actual_start=w4_created,
            actual_end=w4_created + timedelta(hours=1),
            asset_id='A2',
            actual_cost=50.0,
        ),
        WorkOrder(
            id='W5',
            wo_number='WO-5',
            title='Unexplained noise',
            status='draft',
            priority='low',
            type='corrective',
            created_at=NOW - timedelta(days=40),
        ),
    ]


@pytest.fixture()
def sample_inventory():
    return [
        InventoryItem(id='I1', name='Bearing', category='spare_parts', quantity=0, min_quantity=5, max_quantity=20, unit_price=12.5),
        InventoryItem(id='I2', name='Gloves', category='safety', quantity=3, min_quantity=10, unit_price=2.0),
        InventoryItem(id='I3', name='Filter', category='consumables', quantity=8, min_quantity=10, max_quantity=25, unit_price=4.0),
        InventoryItem(id='I4', name='Drill', category='tools', quantity=50, min_quantity=5, unit_price=100.0),
        InventoryItem(id='I5', name='Widget', category='gizmos', quantity=4, min_quantity=1, unit_price=12.005),
    ]
