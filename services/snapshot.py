"""Record access adapters feeding the analytics engine.

A :class:`RecordSource` hands out already-materialised, read-only collections
of maintenance records.  The analytics composers fetch each collection on its
own worker thread, so sources must be safe to call concurrently: the SQLite
source opens a fresh connection per fetch for that reason.
"""

from __future__ import annotations

import logging
import sqlite3
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from .classification import classify_asset_type
from .models import Asset, InventoryItem, Role, User, WorkOrder

LOGGER = logging.getLogger(__name__)

WORK_ORDERS = "work_orders"
ASSETS = "assets"
INVENTORY = "inventory"
USERS = "users"
ROLES = "roles"

COLLECTIONS = (WORK_ORDERS, ASSETS, INVENTORY, USERS, ROLES)


class RecordSourceError(Exception):
    """Raised when a collection cannot be read from the backing store."""

    def __init__(self, collection: str, message: str):
        super().__init__(f"Failed to load {collection}: {message}")
        self.collection = collection


# ---------------------------------------------------------------------------
# SQLite helpers
# ---------------------------------------------------------------------------


def _table_exists(conn: sqlite3.Connection, table_name: str) -> bool:
    """Return ``True`` if the table exists in the connected database."""

    cursor = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
        (table_name,),
    )
    return cursor.fetchone() is not None


def _table_columns(conn: sqlite3.Connection, table_name: str) -> List[str]:
    cursor = conn.execute(f"PRAGMA table_info({table_name})")
    return [row[1] for row in cursor.fetchall()]


def _rows_to_dicts(rows: Iterable[Any]) -> List[Dict[str, Any]]:
    """Normalise sqlite rows to plain dictionaries."""

    normalised: List[Dict[str, Any]] = []
    for row in rows:
        if isinstance(row, sqlite3.Row):
            normalised.append({key: row[key] for key in row.keys()})
        else:
            normalised.append(dict(row))
    return normalised


def _fetch_table(
    conn: sqlite3.Connection, table_name: str, organization_id: Optional[str] = None
) -> List[Dict[str, Any]]:
    """Fetch all rows from ``table_name`` as dictionaries.

    Missing tables are treated as empty datasets.  When ``organization_id`` is
    given and the table carries an ``organization_id`` column, only matching
    rows are returned.
    """

    if not _table_exists(conn, table_name):
        return []
    if organization_id and "organization_id" in _table_columns(conn, table_name):
        cursor = conn.execute(
            f"SELECT * FROM {table_name} WHERE organization_id = ?", (organization_id,)
        )
    else:
        cursor = conn.execute(f"SELECT * FROM {table_name}")
    return _rows_to_dicts(cursor.fetchall())


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


class RecordSource(ABC):
    """Read-only provider of maintenance collections.

    Subclasses implement :meth:`fetch`; the typed ``load_*`` helpers convert the
    raw rows into entity dataclasses.
    """

    @abstractmethod
    def fetch(self, collection: str, organization_id: Optional[str] = None) -> List[Any]:
        """Return the raw rows or entities of ``collection``."""

    def _load(self, collection: str, factory: Callable[[Mapping[str, Any]], Any], model: type, organization_id: Optional[str]) -> List[Any]:
        loaded = []
        for entry in self.fetch(collection, organization_id):
            loaded.append(entry if isinstance(entry, model) else factory(entry))
        return loaded

    def load_work_orders(self, organization_id: Optional[str] = None) -> List[WorkOrder]:
        return self._load(WORK_ORDERS, WorkOrder.from_row, WorkOrder, organization_id)

    def load_assets(self, organization_id: Optional[str] = None) -> List[Asset]:
        return self._load(ASSETS, Asset.from_row, Asset, organization_id)

    def load_inventory(self, organization_id: Optional[str] = None) -> List[InventoryItem]:
        return self._load(INVENTORY, InventoryItem.from_row, InventoryItem, organization_id)

    def load_roles(self) -> List[Role]:
        return self._load(ROLES, Role.from_row, Role, None)

    def load_users(self, organization_id: Optional[str] = None) -> List[User]:
        roles_by_id = {role.id: role for role in self.load_roles()}
        return self._load(
            USERS,
            lambda row: User.from_row(row, roles_by_id),
            User,
            organization_id,
        )


class SQLiteRecordSource(RecordSource):
    """Reads collections from the CMMS SQLite database."""

    def __init__(self, connection_factory: Callable[[], sqlite3.Connection]):
        self._connection_factory = connection_factory

    def fetch(self, collection: str, organization_id: Optional[str] = None) -> List[Dict[str, Any]]:
        if collection not in COLLECTIONS:
            raise KeyError(f"Unknown collection '{collection}'")
        conn = None
        try:
            conn = self._connection_factory()
            return _fetch_table(conn, collection, organization_id)
        except sqlite3.Error as exc:
            LOGGER.error("Failed to read %s: %s", collection, exc)
            raise RecordSourceError(collection, str(exc)) from exc
        finally:
            if conn is not None:
                conn.close()


class StaticRecordSource(RecordSource):
    """In-memory source over pre-built rows or entity instances."""

    def __init__(
        self,
        *,
        work_orders: Sequence[Any] = (),
        assets: Sequence[Any] = (),
        inventory: Sequence[Any] = (),
        users: Sequence[Any] = (),
        roles: Sequence[Any] = (),
    ):
        self._collections: Dict[str, List[Any]] = {
            WORK_ORDERS: list(work_orders),
            ASSETS: list(assets),
            INVENTORY: list(inventory),
            USERS: list(users),
            ROLES: list(roles),
        }

    def fetch(self, collection: str, organization_id: Optional[str] = None) -> List[Any]:
        if collection not in self._collections:
            raise KeyError(f"Unknown collection '{collection}'")
        entries = self._collections[collection]
        if not organization_id:
            return list(entries)
        return [entry for entry in entries if _organization_of(entry) in (None, organization_id)]


def _organization_of(entry: Any) -> Optional[str]:
    if isinstance(entry, Mapping):
        return entry.get("organization_id") or entry.get("organizationId")
    return getattr(entry, "organization_id", None)


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


@dataclass
class MaintenanceSnapshot:
    """Point-in-time bundle of the collections a dashboard needs.

    Lookup tables are derived lazily so composers can resolve names without
    re-scanning the collections.
    """

    work_orders: List[WorkOrder] = field(default_factory=list)
    assets: List[Asset] = field(default_factory=list)
    inventory: List[InventoryItem] = field(default_factory=list)
    users: List[User] = field(default_factory=list)

    _assets_by_id: Optional[Dict[str, Asset]] = field(init=False, default=None, repr=False)
    _users_by_id: Optional[Dict[str, User]] = field(init=False, default=None, repr=False)

    @property
    def assets_by_id(self) -> Dict[str, Asset]:
        if self._assets_by_id is None:
            self._assets_by_id = {asset.id: asset for asset in self.assets}
        return self._assets_by_id

    @property
    def users_by_id(self) -> Dict[str, User]:
        if self._users_by_id is None:
            self._users_by_id = {user.id: user for user in self.users}
        return self._users_by_id

    def resolve_asset_name(self, asset_id: Optional[str]) -> Optional[str]:
        asset = self.assets_by_id.get(asset_id or "")
        return asset.name if asset else None

    def resolve_user_name(self, user_id: Optional[str]) -> Optional[str]:
        user = self.users_by_id.get(user_id or "")
        return user.full_name if user else None

    def asset_category(self, work_order: WorkOrder) -> str:
        asset = self.assets_by_id.get(work_order.asset_id or "")
        return classify_asset_type(asset.type if asset else None)


__all__ = [
    "ASSETS",
    "COLLECTIONS",
    "INVENTORY",
    "MaintenanceSnapshot",
    "ROLES",
    "RecordSource",
    "RecordSourceError",
    "SQLiteRecordSource",
    "StaticRecordSource",
    "USERS",
    "WORK_ORDERS",
]
