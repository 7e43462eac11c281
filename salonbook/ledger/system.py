"""Core orchestration logic for the salon ledger."""

from __future__ import annotations

import datetime as dt
import logging
import sqlite3
from collections import defaultdict
from typing import Any, Mapping

from .analytics import aggregate
from .coordinator import ActivityCoordinator, activity_from_rows
from .database import Store, get_connection, get_metadata, initialize_database
from .errors import (
    OperationInProgressError,
    PartialWriteError,
    PersistenceError,
    ValidationError,
)
from .export import activities_to_csv
from .models import Activity, ActivityInput, EntityId
from .periods import Direction, Granularity, resolve_window, step

logger = logging.getLogger(__name__)

GENDERS = ("homme", "femme", "enfant")

__all__ = [
    "SalonSystem",
    "ValidationError",
    "PersistenceError",
    "PartialWriteError",
    "OperationInProgressError",
]


class SalonSystem:
    """High level façade that exposes application level behaviours."""

    def __init__(
        self,
        db_path: str = ":memory:",
        *,
        allow_empty_activities: bool = True,
        transactional_writes: bool = False,
    ) -> None:
        self.conn = get_connection(db_path)
        initialize_database(self.conn)
        self.store = Store(self.conn)
        self.lock = self.store.lock
        self.coordinator = ActivityCoordinator(
            self.store,
            allow_empty=allow_empty_activities,
            transactional=transactional_writes,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _write(self, action: str, sql: str, params: tuple | list) -> sqlite3.Cursor:
        with self.lock:
            try:
                cur = self.conn.execute(sql, params)
                self.conn.commit()
            except sqlite3.Error as exc:
                self.conn.rollback()
                logger.error("Failed to %s: %s", action, exc)
                raise PersistenceError(f"Failed to {action}", step=action, action=action) from exc
        return cur

    def _fetchall(self, sql: str, params: tuple | list = ()) -> list[dict]:
        with self.lock:
            return self.conn.execute(sql, params).fetchall()

    def _fetchone(self, sql: str, params: tuple | list = ()) -> dict | None:
        with self.lock:
            return self.conn.execute(sql, params).fetchone()

    @staticmethod
    def _require(value: str | None, label: str) -> str:
        value = (value or "").strip()
        if not value:
            raise ValidationError(f"{label} is required")
        return value

    # ------------------------------------------------------------------
    # Customers & notes
    # ------------------------------------------------------------------
    def create_customer(
        self,
        *,
        first_name: str,
        last_name: str,
        gender: str = "femme",
        birth_date: str | None = None,
        email: str | None = None,
        phone: str | None = None,
    ) -> dict:
        if gender not in GENDERS:
            raise ValidationError(f"Unknown gender: {gender!r}")
        cur = self._write(
            "create customer",
            """
            INSERT INTO customers(first_name, last_name, gender, birth_date, email, phone)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                self._require(first_name, "First name"),
                self._require(last_name, "Last name"),
                gender,
                birth_date,
                email.lower() if email else None,
                phone,
            ),
        )
        return self.get_customer(cur.lastrowid)

    def get_customer(self, customer_id: EntityId) -> dict:
        row = self._fetchone("SELECT * FROM customers WHERE id = ?", (customer_id,))
        if not row:
            raise ValidationError("Customer not found")
        return row

    def update_customer(
        self,
        customer_id: EntityId,
        *,
        first_name: str,
        last_name: str,
        gender: str = "femme",
        birth_date: str | None = None,
        email: str | None = None,
        phone: str | None = None,
    ) -> dict:
        if gender not in GENDERS:
            raise ValidationError(f"Unknown gender: {gender!r}")
        self.get_customer(customer_id)
        self._write(
            "update customer",
            """
            UPDATE customers
            SET first_name = ?, last_name = ?, gender = ?, birth_date = ?, email = ?, phone = ?,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = ?
            """,
            (
                self._require(first_name, "First name"),
                self._require(last_name, "Last name"),
                gender,
                birth_date,
                email.lower() if email else None,
                phone,
                customer_id,
            ),
        )
        return self.get_customer(customer_id)

    def delete_customer(self, customer_id: EntityId) -> None:
        self.get_customer(customer_id)
        self._write("delete customer", "DELETE FROM customers WHERE id = ?", (customer_id,))

    def list_customers(self) -> list[dict]:
        """Return all customers ordered alphabetically."""

        return self._fetchall("SELECT * FROM customers ORDER BY last_name, first_name")

    def add_customer_note(self, *, customer_id: EntityId, content: str) -> dict:
        self.get_customer(customer_id)
        cur = self._write(
            "add customer note",
            "INSERT INTO customer_notes(customer_id, content) VALUES (?, ?)",
            (customer_id, self._require(content, "Note")),
        )
        return self._fetchone("SELECT * FROM customer_notes WHERE id = ?", (cur.lastrowid,))

    def list_customer_notes(self, *, customer_id: EntityId | None = None) -> list[dict]:
        """Return notes newest first, optionally for a single customer."""

        params: list[Any] = []
        where = ""
        if customer_id is not None:
            self.get_customer(customer_id)
            where = " WHERE customer_id = ?"
            params.append(customer_id)
        return self._fetchall(
            "SELECT * FROM customer_notes" + where + " ORDER BY created_at DESC, id DESC", params
        )

    # ------------------------------------------------------------------
    # Services & products catalog
    # ------------------------------------------------------------------
    def _create_catalog_item(self, table: str, label: str, name: str, description: str | None) -> dict:
        cur = self._write(
            f"create {label}",
            f"INSERT INTO {table}(name, description) VALUES (?, ?)",
            (self._require(name, "Name"), description),
        )
        return self._get_catalog_item(table, label, cur.lastrowid)

    def _get_catalog_item(self, table: str, label: str, item_id: EntityId) -> dict:
        row = self._fetchone(f"SELECT * FROM {table} WHERE id = ?", (item_id,))
        if not row:
            raise ValidationError(f"{label.capitalize()} not found")
        return row

    def _update_catalog_item(
        self, table: str, label: str, item_id: EntityId, name: str, description: str | None
    ) -> dict:
        self._get_catalog_item(table, label, item_id)
        self._write(
            f"update {label}",
            f"UPDATE {table} SET name = ?, description = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (self._require(name, "Name"), description, item_id),
        )
        return self._get_catalog_item(table, label, item_id)

    def _delete_catalog_item(self, table: str, label: str, item_id: EntityId) -> None:
        self._get_catalog_item(table, label, item_id)
        self._write(f"delete {label}", f"DELETE FROM {table} WHERE id = ?", (item_id,))

    def create_service(self, *, name: str, description: str | None = None) -> dict:
        return self._create_catalog_item("services", "service", name, description)

    def get_service(self, service_id: EntityId) -> dict:
        return self._get_catalog_item("services", "service", service_id)

    def update_service(self, service_id: EntityId, *, name: str, description: str | None = None) -> dict:
        return self._update_catalog_item("services", "service", service_id, name, description)

    def delete_service(self, service_id: EntityId) -> None:
        self._delete_catalog_item("services", "service", service_id)

    def list_services(self) -> list[dict]:
        return self._fetchall("SELECT * FROM services ORDER BY name")

    def create_product(self, *, name: str, description: str | None = None) -> dict:
        return self._create_catalog_item("products", "product", name, description)

    def get_product(self, product_id: EntityId) -> dict:
        return self._get_catalog_item("products", "product", product_id)

    def update_product(self, product_id: EntityId, *, name: str, description: str | None = None) -> dict:
        return self._update_catalog_item("products", "product", product_id, name, description)

    def delete_product(self, product_id: EntityId) -> None:
        self._delete_catalog_item("products", "product", product_id)

    def list_products(self) -> list[dict]:
        return self._fetchall("SELECT * FROM products ORDER BY name")

    # ------------------------------------------------------------------
    # Activities
    # ------------------------------------------------------------------
    def list_activities(self) -> list[Activity]:
        """Return every activity, newest first, with its line items flattened in."""

        services: dict[EntityId, list[dict]] = defaultdict(list)
        products: dict[EntityId, list[dict]] = defaultdict(list)
        with self.lock:
            rows = self._fetchall(
                """
                SELECT activities.*,
                       customers.last_name || ' ' || customers.first_name AS customer_name
                FROM activities
                LEFT JOIN customers ON customers.id = activities.customer_id
                ORDER BY activities.date DESC, activities.id DESC
                """
            )
            ids = [row["id"] for row in rows]
            for item in self.store.query("activity_services", {"activity_id": ids}, order=["id"]):
                services[item["activity_id"]].append(item)
            for item in self.store.query("activity_products", {"activity_id": ids}, order=["id"]):
                products[item["activity_id"]].append(item)
        return [
            activity_from_rows(row, services[row["id"]], products[row["id"]], row["customer_name"])
            for row in rows
        ]

    def get_activity(self, activity_id: EntityId) -> Activity:
        return self.coordinator.get_activity(activity_id)

    def create_activity(self, data: ActivityInput | Mapping[str, Any]) -> Activity:
        if not isinstance(data, ActivityInput):
            data = ActivityInput.from_mapping(data)
        if data.customer_id not in (None, ""):
            self.get_customer(data.customer_id)
        return self.coordinator.create_activity(data)

    def update_activity(self, activity_id: EntityId, data: ActivityInput | Mapping[str, Any]) -> Activity:
        if not isinstance(data, ActivityInput):
            data = ActivityInput.from_mapping(data)
        if data.customer_id not in (None, ""):
            self.get_customer(data.customer_id)
        return self.coordinator.update_activity(activity_id, data)

    def delete_activity(self, activity_id: EntityId) -> None:
        self.coordinator.delete_activity(activity_id)

    # ------------------------------------------------------------------
    # Reporting & export
    # ------------------------------------------------------------------
    def _names(self, table: str) -> dict[EntityId, str]:
        return {row["id"]: row["name"] for row in self._fetchall(f"SELECT id, name FROM {table}")}

    def dashboard(
        self,
        *,
        granularity: Granularity | str = Granularity.MONTH,
        reference: dt.date | dt.datetime | None = None,
    ) -> dict:
        """Return the window, its revenue report and the adjacent references."""

        reference = reference or dt.datetime.now()
        window = resolve_window(reference, granularity)
        report = aggregate(
            self.list_activities(),
            window,
            service_names=self._names("services"),
            product_names=self._names("products"),
        )
        return {
            "window": window,
            "report": report,
            "previous": step(window.reference, window.granularity, Direction.PREV),
            "next": step(window.reference, window.granularity, Direction.NEXT),
        }

    def export_activities_csv(self) -> str:
        customers = {
            row["id"]: f"{row['last_name']} {row['first_name']}" for row in self.list_customers()
        }
        services = self._names("services")
        products = self._names("products")
        return activities_to_csv(
            self.list_activities(),
            customer_name=lambda customer_id: customers.get(customer_id, ""),
            service_name=lambda service_id: services.get(service_id, "Unknown"),
            product_name=lambda product_id: products.get(product_id, "Unknown"),
        )

    def schema_version(self) -> int:
        with self.lock:
            return int(get_metadata(self.conn, "schema_version", "0"))

    def close(self) -> None:
        self.conn.close()
