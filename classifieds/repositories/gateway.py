"""
Persistence gateway abstraction.
Table-oriented CRUD plus filtered queries and atomic counters, with an
in-memory implementation used by tests and local runs.

Filters are dicts of ``field[__op]: value``. Supported ops:
``eq`` (default), ``icontains``, ``in``, ``isnull``.
Order is a list of field names, prefixed with ``-`` for descending.
"""

import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Tuple

from classifieds.errors import ConflictError, NotFoundError, QuotaExceededError

TABLES = ("categories", "listings", "listing_images", "profiles", "user_roles")

# Child rows removed together with their parent: parent table -> [(child table, fk column)]
CASCADES: Dict[str, List[Tuple[str, str]]] = {
    "listings": [("listing_images", "listing_id")],
}

# Column groups that must be unique per table
UNIQUE_KEYS: Dict[str, List[Tuple[str, ...]]] = {
    "listings": [("slug",)],
    "categories": [("parent_id", "slug")],
    "user_roles": [("user_id", "role")],
}

FILTER_OPS = ("eq", "icontains", "in", "isnull")


def split_filter_key(key: str) -> Tuple[str, str]:
    """Split ``title__icontains`` into ``("title", "icontains")``."""
    field, sep, op = key.partition("__")
    if not sep:
        return field, "eq"
    if op not in FILTER_OPS:
        raise ValueError(f"Unsupported filter operator '{op}' in '{key}'")
    return field, op


def split_order_key(key: str) -> Tuple[str, bool]:
    """Return ``(field, descending)`` for an order key."""
    if key.startswith("-"):
        return key[1:], True
    return key, False


def check_child_quota(table: str, parent_key: Any, existing: int, added: int, max_children: Optional[int]) -> None:
    if max_children is not None and existing + added > max_children:
        raise QuotaExceededError(
            f"At most {max_children} {table} rows are allowed for {parent_key} "
            f"({existing} attached, {added} submitted)"
        )


def _check_table(table: str) -> None:
    if table not in TABLES:
        raise ValueError(f"Unknown table '{table}'")


class PersistenceGateway(ABC):
    """Abstract interface for durable row storage"""

    @abstractmethod
    def insert(self, table: str, row: Dict[str, Any]) -> Any:
        """Insert a row and return its id"""
        pass

    @abstractmethod
    def insert_many(self, table: str, rows: List[Dict[str, Any]]) -> List[Any]:
        """Insert all rows in one unit of work and return their ids"""
        pass

    @abstractmethod
    def insert_children(
        self,
        parent_table: str,
        parent_key: Any,
        table: str,
        fk: str,
        rows: List[Dict[str, Any]],
        max_children: Optional[int] = None,
    ) -> List[Any]:
        """Insert child rows of one parent and return their ids.

        Calls for the same parent are serialized. Raises NotFoundError when the
        parent is missing and QuotaExceededError when the parent would end up
        with more than max_children rows.
        """
        pass

    @abstractmethod
    def get(self, table: str, key: Any) -> Dict[str, Any]:
        """Fetch a row by id, raising NotFoundError if it does not exist"""
        pass

    @abstractmethod
    def update(
        self,
        table: str,
        key: Any,
        patch: Dict[str, Any],
        precondition: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Apply a patch if the precondition holds and return the updated row"""
        pass

    @abstractmethod
    def delete(self, table: str, key: Any, precondition: Optional[Dict[str, Any]] = None) -> None:
        """Delete a row (and its cascaded children) if the precondition holds"""
        pass

    @abstractmethod
    def query(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order: Optional[List[str]] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        """Return rows matching all filters"""
        pass

    @abstractmethod
    def count(self, table: str, filters: Optional[Dict[str, Any]] = None) -> int:
        """Count rows matching all filters"""
        pass

    @abstractmethod
    def increment(self, table: str, key: Any, field: str, delta: int = 1) -> None:
        """Atomically add delta to a numeric column"""
        pass

    def first(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order: Optional[List[str]] = None,
    ) -> Optional[Dict[str, Any]]:
        rows = self.query(table, filters=filters, order=order, limit=1)
        return rows[0] if rows else None


def _matches(row: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    for key, value in filters.items():
        field, op = split_filter_key(key)
        actual = row.get(field)
        if op == "eq":
            ok = actual == value
        elif op == "icontains":
            ok = actual is not None and str(value).casefold() in str(actual).casefold()
        elif op == "in":
            ok = actual in list(value)
        else:
            ok = (actual is None) == bool(value)
        if not ok:
            return False
    return True


def _sorted(rows: Iterable[Dict[str, Any]], order: List[str]) -> List[Dict[str, Any]]:
    result = list(rows)
    # Stable sorts applied from the least significant key
    for key in reversed(order):
        field, descending = split_order_key(key)
        result.sort(key=lambda r: (r.get(field) is not None, r.get(field)), reverse=descending)
    return result


class InMemoryGateway(PersistenceGateway):
    """In-memory implementation of PersistenceGateway"""

    def __init__(self):
        self._tables: Dict[str, Dict[Any, Dict[str, Any]]] = {name: {} for name in TABLES}
        self._sequences: Dict[str, int] = {name: 0 for name in TABLES}
        self._lock = threading.RLock()

    def _row(self, table: str, key: Any) -> Dict[str, Any]:
        _check_table(table)
        row = self._tables[table].get(key)
        if row is None:
            raise NotFoundError(f"{table} row {key} not found", table=table, key=str(key))
        return row

    def _check_unique(self, table: str, row: Dict[str, Any], ignore_key: Any = None) -> None:
        for columns in UNIQUE_KEYS.get(table, []):
            wanted = tuple(row.get(c) for c in columns)
            for key, existing in self._tables[table].items():
                if key == ignore_key:
                    continue
                if tuple(existing.get(c) for c in columns) == wanted:
                    raise ConflictError(f"Duplicate {table} value for {', '.join(columns)}")

    def _insert_locked(self, table: str, row: Dict[str, Any]) -> Any:
        _check_table(table)
        data = dict(row)
        if data.get("id") is None:
            self._sequences[table] += 1
            data["id"] = self._sequences[table]
        if data["id"] in self._tables[table]:
            raise ConflictError(f"Duplicate {table} id {data['id']}")
        self._check_unique(table, data)
        self._tables[table][data["id"]] = data
        return data["id"]

    def insert(self, table: str, row: Dict[str, Any]) -> Any:
        with self._lock:
            return self._insert_locked(table, row)

    def insert_many(self, table: str, rows: List[Dict[str, Any]]) -> List[Any]:
        with self._lock:
            snapshot = dict(self._tables[table])
            sequence = self._sequences[table]
            try:
                return [self._insert_locked(table, row) for row in rows]
            except Exception:
                # All or nothing
                self._tables[table] = snapshot
                self._sequences[table] = sequence
                raise

    def insert_children(self, parent_table, parent_key, table, fk, rows, max_children=None):
        with self._lock:
            self._row(parent_table, parent_key)
            _check_table(table)
            existing = sum(1 for r in self._tables[table].values() if r.get(fk) == parent_key)
            check_child_quota(table, parent_key, existing, len(rows), max_children)
            return self.insert_many(table, [{**row, fk: parent_key} for row in rows])

    def get(self, table: str, key: Any) -> Dict[str, Any]:
        with self._lock:
            return dict(self._row(table, key))

    def update(self, table, key, patch, precondition=None):
        with self._lock:
            row = self._row(table, key)
            if precondition and not _matches(row, precondition):
                raise ConflictError(f"{table} row {key} does not satisfy {precondition}")
            updated = {**row, **patch}
            self._check_unique(table, updated, ignore_key=key)
            self._tables[table][key] = updated
            return dict(updated)

    def delete(self, table, key, precondition=None):
        with self._lock:
            row = self._row(table, key)
            if precondition and not _matches(row, precondition):
                raise ConflictError(f"{table} row {key} does not satisfy {precondition}")
            for child_table, fk in CASCADES.get(table, []):
                children = self._tables[child_table]
                for child_key in [k for k, r in children.items() if r.get(fk) == key]:
                    del children[child_key]
            del self._tables[table][key]

    def query(self, table, filters=None, order=None, limit=None, offset=0):
        with self._lock:
            _check_table(table)
            rows = [dict(r) for r in self._tables[table].values() if _matches(r, filters or {})]
        rows = _sorted(rows, order or [])
        end = None if limit is None else offset + limit
        return rows[offset:end]

    def count(self, table, filters=None):
        with self._lock:
            _check_table(table)
            return sum(1 for r in self._tables[table].values() if _matches(r, filters or {}))

    def increment(self, table, key, field, delta=1):
        with self._lock:
            row = self._row(table, key)
            row[field] = (row.get(field) or 0) + delta
