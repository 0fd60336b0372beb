import os
import sys
import json
import socket
from typing import Any, Dict

from dotenv import load_dotenv
from flask import Flask, jsonify, request

# Load environment variables from .env file before the data directory is resolved
load_dotenv()

from database import init_db
from data_paths import DATA_ROOT, SETTINGS_FILE, ensure_data_root
from services.reports import configure_analytics_engine, get_analytics_engine

# --- App Initialization ---
DEFAULT_PORT = 5050

app = Flask(__name__)
app.json.sort_keys = False

_engine_bootstrapped = False


def read_json_file(file_path):
    if not os.path.exists(file_path) or os.path.getsize(file_path) == 0:
        return {}
    with open(file_path, 'r') as f:
        try:
            return json.load(f)
        except json.JSONDecodeError:
            app.logger.error(f"JSONDecodeError for {file_path}")
            return {}


@app.before_request
def _ensure_analytics_initialized():
    """Create the schema and build the analytics engine before the first request."""
    global _engine_bootstrapped
    if _engine_bootstrapped:
        return
    try:
        ensure_data_root()
        init_db()
        configure_analytics_engine(read_json_file(SETTINGS_FILE))
        _engine_bootstrapped = True
    except Exception as exc:  # pragma: no cover
        app.logger.exception("Failed to initialize analytics engine before request: %s", exc)


def _success(data: Any):
    return jsonify({'success': True, 'data': data})


def _failure(message: str, status: int):
    return jsonify({'success': False, 'message': message}), status


def _run_report(report_id: str, params: Dict[str, Any]):
    engine = get_analytics_engine()
    try:
        return _success(engine.run_report(report_id, params))
    except KeyError as exc:
        return _failure(str(exc.args[0]) if exc.args else 'Unknown report.', 404)
    except ValueError as exc:
        return _failure(str(exc), 400)
    except Exception as exc:  # pragma: no cover
        app.logger.exception("Failed to execute analytics report %s: %s", report_id, exc)
        return _failure('Failed to generate analytics report.', 500)


def _run_from_query(report_id: str):
    return _run_report(report_id, request.args.to_dict())


# --- Analytics API ---

@app.route('/api/analytics/dashboard', methods=['GET'])
def api_dashboard_analytics():
    return _run_from_query('dashboard')


@app.route('/api/analytics/kpi-dashboard', methods=['GET'])
def api_kpi_dashboard():
    return _run_from_query('kpi-dashboard')


@app.route('/api/analytics/work-orders', methods=['GET'])
def api_work_order_stats():
    return _run_from_query('work-orders')


@app.route('/api/analytics/work-orders/metrics', methods=['GET'])
def api_work_order_metrics():
    return _run_from_query('work-orders/metrics')


@app.route('/api/analytics/work-orders/trend', methods=['GET'])
def api_work_order_trend():
    return _run_from_query('work-orders/trend')


@app.route('/api/analytics/assets', methods=['GET'])
def api_asset_stats():
    return _run_from_query('assets')


@app.route('/api/analytics/assets/performance', methods=['GET'])
def api_asset_performance():
    return _run_from_query('assets/performance')


@app.route('/api/analytics/inventory', methods=['GET'])
def api_inventory_stats():
    return _run_from_query('inventory')


@app.route('/api/analytics/inventory/metrics', methods=['GET'])
def api_inventory_metrics():
    return _run_from_query('inventory/metrics')


@app.route('/api/analytics/inventory/trend', methods=['GET'])
def api_inventory_trend():
    return _run_from_query('inventory/trend')


@app.route('/api/analytics/costs', methods=['GET'])
def api_cost_metrics():
    return _run_from_query('costs')


@app.route('/api/analytics/technicians/productivity', methods=['GET'])
def api_technician_productivity():
    return _run_from_query('technicians/productivity')


@app.route('/api/analytics/users', methods=['GET'])
def api_user_stats():
    return _run_from_query('users')


@app.route('/api/analytics/reports', methods=['GET'])
def api_list_analytics_reports():
    try:
        engine = get_analytics_engine()
        return _success(engine.list_report_definitions())
    except Exception as exc:  # pragma: no cover
        app.logger.exception("Failed to list analytics reports: %s", exc)
        return _failure('Failed to load analytics definitions.', 500)


@app.route('/api/analytics/reports/run', methods=['POST'])
def api_run_analytics_report():
    payload = request.get_json(force=True, silent=True) or {}
    report_id = payload.get('reportId') or payload.get('report_id')
    if not report_id:
        return _failure('reportId is required.', 400)
    params = payload.get('params') or {}
    if not isinstance(params, dict):
        return _failure('params must be an object.', 400)
    return _run_report(report_id, params)


def is_port_in_use(port):
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        return s.connect_ex(('127.0.0.1', port)) == 0


def main():
    port = int(os.getenv('CMMS_PORT') or DEFAULT_PORT)
    if is_port_in_use(port):
        print(f"Port {port} is already in use.")
        sys.exit(1)
    print(f"Serving analytics from {DATA_ROOT} on port {port}.")
    app.run(host='0.0.0.0', port=port, debug=False)


if __name__ == '__main__':
    init_db()
    main()
