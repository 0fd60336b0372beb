import pathlib
import sqlite3
import sys
import tempfile
import unittest
from datetime import datetime, timedelta, timezone

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from database import get_db_connection, init_db
from services.analytics import AnalyticsService, empty_work_order_stats
from services.reports import MAX_TREND_DAYS, build_analytics_engine
from services.snapshot import RecordSourceError, SQLiteRecordSource

NOW = datetime(2024, 6, 12, 12, 0, tzinfo=timezone.utc)


def _iso(moment):
    return moment.isoformat()


class AnalyticsEngineTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.db_path = pathlib.Path(self.tmpdir.name) / 'cmms.db'
        init_db(self.db_path)

        conn = get_db_connection(self.db_path)
        conn.executemany(
            "INSERT INTO roles (id, name) VALUES (?, ?)",
            [('R1', 'Technician'), ('R2', 'Planner')],
        )
        conn.executemany(
            """
            INSERT INTO users (id, first_name, last_name, status, role_id, organization_id)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [
                ('U1', 'Alex', 'Wrench', 'active', 'R1', 'acme'),
                ('U2', 'Pat', 'Plan', 'active', 'R2', 'acme'),
                ('U3', 'Other', 'Org', 'active', 'R1', 'globex'),
            ],
        )
        conn.executemany(
            "INSERT INTO assets (id, name, type, status, organization_id, created_at) VALUES (?, ?, ?, ?, ?, ?)",
            [
                ('A1', 'Compressor', 'HVAC', 'active', 'acme', _iso(NOW - timedelta(days=90))),
                ('A2', 'Boiler', 'HVAC', 'under_maintenance', 'acme', _iso(NOW - timedelta(days=80))),
                ('A3', 'Forklift', 'Vehicle', 'active', 'globex', _iso(NOW - timedelta(days=70))),
            ],
        )
        conn.executemany(
            """
            INSERT INTO work_orders (
                id, wo_number, title, status, priority, type, created_at, updated_at,
                actual_start, actual_end, assigned_to_id, asset_id, actual_cost, organization_id
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    'W1', 'WO-1', 'Compressor trip', 'completed', 'high', 'corrective',
                    _iso(NOW - timedelta(days=6)), _iso(NOW - timedelta(days=6, hours=-3)),
                    _iso(NOW - timedelta(days=6)), _iso(NOW - timedelta(days=6, hours=-3)),
                    'U1', 'A1', 120.0, 'acme',
                ),
                (
                    'W2', 'WO-2', 'Boiler leak', 'in_progress', 'critical', 'corrective',
                    _iso(NOW - timedelta(days=2)), _iso(NOW - timedelta(days=2)),
                    None, None, 'U1', 'A2', 0, 'acme',
                ),
                (
                    'W3', 'WO-3', 'Forklift service', 'completed', 'low', 'preventive',
                    _iso(NOW - timedelta(days=3)), _iso(NOW - timedelta(days=3)),
                    None, None, 'U3', 'A3', 75.0, 'globex',
                ),
            ],
        )
        conn.executemany(
            """
            INSERT INTO inventory (id, name, category, status, quantity, min_quantity, unit_price, organization_id)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                ('I1', 'Filter', 'consumables', 'active', 2, 5, 3.5, 'acme'),
                ('I2', 'Belt', 'spare_parts', 'out_of_stock', 0, 2, 20.0, 'acme'),
            ],
        )
        conn.commit()
        conn.close()

        self.source = SQLiteRecordSource(lambda: get_db_connection(self.db_path))
        self.engine = build_analytics_engine(
            {'timezone': 'UTC', 'analytics': {'top_n': 1}},
            source=self.source,
            clock=lambda: NOW,
        )

    def tearDown(self):
        self.engine.close()
        self.tmpdir.cleanup()

    def test_work_order_totals_from_database(self):
        stats = self.engine.run_report('work-orders', {})
        self.assertEqual(stats['total'], 3)
        self.assertEqual(stats['byStatus']['completed'], 2)
        self.assertEqual(stats['byPriority']['critical'], 1)
        self.assertEqual(stats['avgCompletionTime'], 3)

    def test_organization_filter_is_applied(self):
        stats = self.engine.run_report('work-orders', {'organizationId': 'acme'})
        self.assertEqual(stats['total'], 2)
        assets = self.engine.run_report('assets', {'organizationId': 'globex'})
        self.assertEqual(assets['byType'], {'Vehicle': 1})

    def test_users_resolve_role_names(self):
        users = self.engine.run_report('users', {})
        self.assertEqual(users['byRole'], {'Technician': 2, 'Planner': 1})

    def test_settings_override_top_n(self):
        metrics = self.engine.run_report('work-orders/metrics', {})
        self.assertEqual(len(metrics['topFailureCategories']), 1)
        self.assertEqual(metrics['topFailureCategories'][0], {'category': 'HVAC', 'count': 2})

    def test_trend_days_parameter(self):
        trend = self.engine.run_report('work-orders/trend', {'days': '3'})
        self.assertEqual([point['date'] for point in trend], ['2024-06-10', '2024-06-11', '2024-06-12'])
        self.assertEqual(trend[0]['count'], 1)
        self.assertEqual(len(self.engine.run_report('work-orders/trend', {})), 30)

    def test_explicit_window_is_parsed(self):
        productivity = self.engine.run_report(
            'technicians/productivity',
            {'startDate': '2024-06-01', 'endDate': '2024-06-12T23:59:59Z', 'organizationId': 'acme'},
        )
        self.assertEqual(len(productivity['technicians']), 1)
        self.assertEqual(productivity['technicians'][0]['workOrdersCompleted'], 1)
        self.assertEqual(productivity['summary']['topPerformer'], 'Alex Wrench')

    def test_invalid_parameters_raise_value_error(self):
        for params in (
            {'days': 'abc'},
            {'days': '0'},
            {'days': str(MAX_TREND_DAYS + 1)},
            {'days': '2.5'},
        ):
            with self.subTest(params=params):
                with self.assertRaises(ValueError):
                    self.engine.run_report('work-orders/trend', params)
        with self.assertRaises(ValueError):
            self.engine.run_report('costs', {'startDate': 'not a date'})
        with self.assertRaises(ValueError):
            self.engine.run_report('costs', {'startDate': '2024-06-10', 'endDate': '2024-06-01'})

    def test_unknown_report_raises_key_error(self):
        with self.assertRaises(KeyError):
            self.engine.run_report('does-not-exist', {})

    def test_report_definitions_are_listed(self):
        definitions = {definition['id']: definition for definition in self.engine.list_report_definitions()}
        self.assertEqual(len(definitions), 13)
        self.assertIn('kpi-dashboard', definitions)
        trend_params = {param['name']: param for param in definitions['work-orders/trend']['parameters']}
        self.assertEqual(trend_params['days']['default'], 30)
        self.assertEqual(trend_params['days']['max'], MAX_TREND_DAYS)
        self.assertEqual(definitions['work-orders/trend']['defaultParams']['days'], 30)

    def test_missing_table_reads_as_empty(self):
        conn = get_db_connection(self.db_path)
        conn.execute("DROP TABLE inventory")
        conn.commit()
        conn.close()
        inventory = self.engine.run_report('inventory', {})
        self.assertEqual(inventory['total'], 0)
        self.assertEqual(inventory['totalValue'], 0)

    def test_inventory_classification_from_database(self):
        inventory = self.engine.run_report('inventory', {'organizationId': 'acme'})
        self.assertEqual(inventory['lowStockItems'], 1)
        self.assertEqual(inventory['outOfStockItems'], 1)
        self.assertEqual(inventory['totalValue'], 7.0)


class SQLiteRecordSourceErrorTests(unittest.TestCase):
    def _broken_connection(self):
        raise sqlite3.OperationalError('database is locked')

    def test_storage_errors_are_wrapped(self):
        source = SQLiteRecordSource(self._broken_connection)
        with self.assertRaises(RecordSourceError) as ctx:
            source.fetch('work_orders')
        self.assertEqual(ctx.exception.collection, 'work_orders')

    def test_unknown_collection_is_rejected(self):
        source = SQLiteRecordSource(self._broken_connection)
        with self.assertRaises(KeyError):
            source.fetch('invoices')

    def test_dashboard_survives_storage_outage(self):
        service = AnalyticsService(SQLiteRecordSource(self._broken_connection), clock=lambda: NOW)
        try:
            with self.assertLogs('services.analytics', level='WARNING'):
                dashboard = service.get_dashboard_analytics()
        finally:
            service.close()
        self.assertEqual(dashboard['workOrders'], empty_work_order_stats())
        self.assertEqual(dashboard['recentActivity'], {'recentWorkOrders': [], 'recentAssets': []})


if __name__ == '__main__':
    unittest.main()
