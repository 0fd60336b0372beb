import sqlite3
import logging
from pathlib import Path
from typing import Optional, Union

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from data_paths import DATA_ROOT, ensure_data_root

DATA_DIR = DATA_ROOT
DATABASE_FILE = DATA_DIR / 'cmms.db'

# Columns added after the first release; older databases are upgraded in place.
_LATE_COLUMNS = {
    'work_orders': {'organization_id': 'TEXT', 'wo_number': 'TEXT'},
    'assets': {'organization_id': 'TEXT', 'asset_code': 'TEXT', 'warranty_expiry': 'TEXT'},
    'inventory': {'organization_id': 'TEXT', 'max_quantity': 'INTEGER'},
    'users': {'organization_id': 'TEXT', 'invitation_token': 'TEXT', 'invitation_accepted': 'INTEGER DEFAULT 0'},
}


def get_db_connection(db_path: Optional[Union[str, Path]] = None):
    """Establishes a connection to the SQLite database."""
    if db_path is None:
        ensure_data_root()
        db_path = DATABASE_FILE
    conn = sqlite3.connect(str(db_path), timeout=30.0, isolation_level='DEFERRED')
    try:
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.execute("PRAGMA temp_store=MEMORY;")
    except sqlite3.Error as e:
        logger.warning(f"Could not set PRAGMA settings: {e}")
    conn.row_factory = sqlite3.Row
    return conn


def _ensure_columns(cursor: sqlite3.Cursor, table: str, columns: dict) -> None:
    cursor.execute(f"PRAGMA table_info({table})")
    existing = {row[1] for row in cursor.fetchall()}
    for name, column_type in columns.items():
        if name not in existing:
            logger.info(f"Adding column {name} to {table}")
            cursor.execute(f"ALTER TABLE {table} ADD COLUMN {name} {column_type}")


def init_db(db_path: Optional[Union[str, Path]] = None):
    """Initializes the database schema for the maintenance read tables."""
    conn = get_db_connection(db_path)
    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS roles (
            id TEXT PRIMARY KEY NOT NULL,
            name TEXT NOT NULL,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        );
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY NOT NULL,
            first_name TEXT,
            last_name TEXT,
            email TEXT,
            status TEXT DEFAULT 'active',
            role_id TEXT,
            invitation_token TEXT,
            invitation_accepted INTEGER DEFAULT 0,
            organization_id TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (role_id) REFERENCES roles (id) ON DELETE SET NULL
        );
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS assets (
            id TEXT PRIMARY KEY NOT NULL,
            asset_code TEXT,
            name TEXT NOT NULL,
            type TEXT,
            status TEXT DEFAULT 'active',
            warranty_expiry TEXT,
            organization_id TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP
        );
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS work_orders (
            id TEXT PRIMARY KEY NOT NULL,
            wo_number TEXT,
            title TEXT NOT NULL,
            status TEXT DEFAULT 'draft',
            priority TEXT DEFAULT 'medium',
            type TEXT DEFAULT 'corrective',
            scheduled_date TEXT,
            due_date TEXT,
            actual_start TEXT,
            actual_end TEXT,
            assigned_to_id TEXT,
            asset_id TEXT,
            actual_cost REAL DEFAULT 0,
            organization_id TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (asset_id) REFERENCES assets (id) ON DELETE SET NULL,
            FOREIGN KEY (assigned_to_id) REFERENCES users (id) ON DELETE SET NULL
        );
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS inventory (
            id TEXT PRIMARY KEY NOT NULL,
            name TEXT NOT NULL,
            category TEXT DEFAULT 'other',
            status TEXT DEFAULT 'active',
            quantity INTEGER DEFAULT 0,
            min_quantity INTEGER DEFAULT 0,
            max_quantity INTEGER,
            unit_price REAL DEFAULT 0,
            organization_id TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP
        );
    """)

    for table, columns in _LATE_COLUMNS.items():
        _ensure_columns(cursor, table, columns)

    cursor.execute("CREATE INDEX IF NOT EXISTS idx_work_orders_created ON work_orders(created_at)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_work_orders_asset ON work_orders(asset_id)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_work_orders_org ON work_orders(organization_id)")
    for table in ('work_orders', 'assets', 'inventory', 'users'):
        cursor.execute(
            f"CREATE TRIGGER IF NOT EXISTS update_{table}_updated_at AFTER UPDATE ON {table} "
            f"FOR EACH ROW WHEN NEW.updated_at = OLD.updated_at BEGIN "
            f"UPDATE {table} SET updated_at = CURRENT_TIMESTAMP WHERE id = OLD.id; END;"
        )

    conn.commit()
    conn.close()
    logger.info("Database initialized.")

if __name__ == '__main__':
    init_db()
