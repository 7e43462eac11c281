"""Database utilities for the salon ledger."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Sequence

from .errors import PersistenceError

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

sqlite3.register_adapter(Decimal, str)


def dict_factory(cursor: sqlite3.Cursor, row: sqlite3.Row) -> dict:
    """Return rows as dictionaries rather than tuples."""

    return {description[0]: row[idx] for idx, description in enumerate(cursor.description)}


def get_connection(path: str | Path) -> sqlite3.Connection:
    """Return a SQLite connection with sensible defaults."""

    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = dict_factory
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA busy_timeout = 5000")
    return conn


def initialize_database(conn: sqlite3.Connection) -> None:
    """Create the database schema if it does not yet exist."""

    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS metadata (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS customers (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            first_name TEXT NOT NULL,
            last_name TEXT NOT NULL,
            birth_date TEXT,
            gender TEXT NOT NULL DEFAULT 'femme',
            email TEXT,
            phone TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS customer_notes (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            customer_id INTEGER NOT NULL,
            content TEXT NOT NULL,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(customer_id) REFERENCES customers(id) ON DELETE CASCADE
        );

        CREATE TABLE IF NOT EXISTS services (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            description TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS products (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            description TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS activities (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            customer_id INTEGER NOT NULL,
            date TEXT NOT NULL,
            total_services TEXT NOT NULL DEFAULT '0',
            total_products TEXT NOT NULL DEFAULT '0',
            total_amount TEXT NOT NULL DEFAULT '0',
            payment_method TEXT NOT NULL,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(customer_id) REFERENCES customers(id)
        );

        CREATE TABLE IF NOT EXISTS activity_services (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            activity_id INTEGER NOT NULL,
            service_id INTEGER NOT NULL,
            price TEXT NOT NULL,
            FOREIGN KEY(activity_id) REFERENCES activities(id) ON DELETE CASCADE,
            FOREIGN KEY(service_id) REFERENCES services(id)
        );

        CREATE TABLE IF NOT EXISTS activity_products (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            activity_id INTEGER NOT NULL,
            product_id INTEGER NOT NULL,
            price TEXT NOT NULL,
            quantity INTEGER NOT NULL DEFAULT 1,
            FOREIGN KEY(activity_id) REFERENCES activities(id) ON DELETE CASCADE,
            FOREIGN KEY(product_id) REFERENCES products(id)
        );

        CREATE INDEX IF NOT EXISTS idx_activities_date ON activities(date);
        CREATE INDEX IF NOT EXISTS idx_activity_services_activity ON activity_services(activity_id);
        CREATE INDEX IF NOT EXISTS idx_activity_products_activity ON activity_products(activity_id);
        """
    )

    set_metadata(conn, "schema_version", SCHEMA_VERSION)


def set_metadata(conn: sqlite3.Connection, key: str, value: int | str | dict | list) -> None:
    if isinstance(value, (dict, list)):
        value = json.dumps(value)
    conn.execute(
        "INSERT INTO metadata(key, value) VALUES (?, ?)\n         ON CONFLICT(key) DO UPDATE SET value = excluded.value",
        (key, str(value)),
    )
    conn.commit()


def get_metadata(conn: sqlite3.Connection, key: str, default: str | None = None) -> str | None:
    row = conn.execute("SELECT value FROM metadata WHERE key = ?", (key,)).fetchone()
    return row["value"] if row else default


TABLES: dict[str, tuple[str, ...]] = {
    "customers": (
        "id", "first_name", "last_name", "birth_date", "gender", "email", "phone",
        "created_at", "updated_at",
    ),
    "customer_notes": ("id", "customer_id", "content", "created_at", "updated_at"),
    "services": ("id", "name", "description", "created_at", "updated_at"),
    "products": ("id", "name", "description", "created_at", "updated_at"),
    "activities": (
        "id", "customer_id", "date", "total_services", "total_products", "total_amount",
        "payment_method", "created_at", "updated_at",
    ),
    "activity_services": ("id", "activity_id", "service_id", "price"),
    "activity_products": ("id", "activity_id", "product_id", "price", "quantity"),
}


class Store:
    """Table level insert/update/delete/query over a SQLite connection.

    Every call commits on its own unless it runs inside :meth:`transaction`,
    so a sequence of calls is not atomic by default.

    Calls are serialized through ``lock``. A transaction holds the lock until
    it commits or rolls back, so other threads sharing the connection wait
    instead of committing or rolling back its statements.
    """

    def __init__(self, conn: sqlite3.Connection, lock: Any = None) -> None:
        self.conn = conn
        self.lock = lock if lock is not None else threading.RLock()
        self._in_transaction = False

    def _columns(self, table: str, columns: Iterable[str]) -> list[str]:
        known = TABLES.get(table)
        if known is None:
            raise ValueError(f"Unknown table {table!r}")
        columns = list(columns)
        unknown = [column for column in columns if column not in known]
        if unknown:
            raise ValueError(f"Unknown columns for {table}: {', '.join(unknown)}")
        return columns

    def _where(self, table: str, filters: Mapping[str, Any] | None) -> tuple[str, list[Any]]:
        if not filters:
            return "", []
        conditions: list[str] = []
        params: list[Any] = []
        for column in self._columns(table, filters):
            value = filters[column]
            if isinstance(value, (list, tuple, set, frozenset)):
                values = list(value)
                if not values:
                    conditions.append("0")
                    continue
                placeholders = ",".join("?" for _ in values)
                conditions.append(f"{column} IN ({placeholders})")
                params.extend(values)
            else:
                conditions.append(f"{column} = ?")
                params.append(value)
        return " WHERE " + " AND ".join(conditions), params

    def _order(self, table: str, order: Sequence[str] | None) -> str:
        if not order:
            return ""
        parts = []
        for key in order:
            column = key.lstrip("-")
            self._columns(table, [column])
            parts.append(f"{column} DESC" if key.startswith("-") else f"{column} ASC")
        return " ORDER BY " + ", ".join(parts)

    def _commit(self) -> None:
        if not self._in_transaction:
            self.conn.commit()

    def _fail(self, operation: str, table: str, exc: sqlite3.Error) -> PersistenceError:
        if not self._in_transaction:
            self.conn.rollback()
        logger.error("%s on %s failed: %s", operation, table, exc)
        return PersistenceError(f"{operation} on {table} failed: {exc}", step=f"{operation}:{table}")

    def insert(self, table: str, records: Sequence[Mapping[str, Any]]) -> list[dict]:
        """Insert ``records`` in one commit and return the stored rows."""

        if not records:
            return []
        ids: list[int] = []
        with self.lock:
            try:
                for record in records:
                    columns = self._columns(table, record)
                    placeholders = ", ".join("?" for _ in columns)
                    cur = self.conn.execute(
                        f"INSERT INTO {table}({', '.join(columns)}) VALUES ({placeholders})",
                        [record[column] for column in columns],
                    )
                    ids.append(cur.lastrowid)
                self._commit()
            except sqlite3.Error as exc:
                raise self._fail("insert", table, exc) from exc
            return self.query(table, {"id": ids}, order=["id"])

    def update(self, table: str, record_id: Any, fields: Mapping[str, Any]) -> dict | None:
        """Overwrite ``fields`` of one row; ``None`` when no row has that id."""

        columns = self._columns(table, fields)
        assignments = [f"{column} = ?" for column in columns]
        if "updated_at" in TABLES[table] and "updated_at" not in fields:
            assignments.append("updated_at = CURRENT_TIMESTAMP")
        with self.lock:
            try:
                cur = self.conn.execute(
                    f"UPDATE {table} SET {', '.join(assignments)} WHERE id = ?",
                    [fields[column] for column in columns] + [record_id],
                )
                self._commit()
            except sqlite3.Error as exc:
                raise self._fail("update", table, exc) from exc
            if cur.rowcount == 0:
                return None
            rows = self.query(table, {"id": record_id})
        return rows[0] if rows else None

    def delete(self, table: str, filters: Mapping[str, Any]) -> int:
        """Delete matching rows and return how many were removed."""

        if not filters:
            raise ValueError("Refusing to delete without a filter")
        where, params = self._where(table, filters)
        with self.lock:
            try:
                cur = self.conn.execute(f"DELETE FROM {table}{where}", params)
                self._commit()
            except sqlite3.Error as exc:
                raise self._fail("delete", table, exc) from exc
        return cur.rowcount

    def query(
        self,
        table: str,
        filters: Mapping[str, Any] | None = None,
        order: Sequence[str] | None = None,
    ) -> list[dict]:
        where, params = self._where(table, filters)
        self._columns(table, [])
        try:
            with self.lock:
                return self.conn.execute(
                    f"SELECT * FROM {table}{where}{self._order(table, order)}", params
                ).fetchall()
        except sqlite3.Error as exc:
            logger.error("query on %s failed: %s", table, exc)
            raise PersistenceError(f"query on {table} failed: {exc}", step=f"query:{table}") from exc

    @contextmanager
    def transaction(self) -> Iterator["Store"]:
        """Run the enclosed calls as one SQLite transaction."""

        with self.lock:
            if self._in_transaction:
                yield self
                return
            self._in_transaction = True
            try:
                yield self
            except BaseException:
                self.conn.rollback()
                logger.warning("Transaction rolled back")
                raise
            else:
                self.conn.commit()
            finally:
                self._in_transaction = False
