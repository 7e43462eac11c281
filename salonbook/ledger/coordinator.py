"""Create, update and delete activities together with their line-item rows.

An activity lives in three tables: the parent ``activities`` row holding the
denormalized totals, and the ``activity_services`` / ``activity_products``
child rows. A save is a fixed sequence of store calls:

create
    ``insert_activity`` -> ``insert_services`` -> ``insert_products``
    -> ``fetch_activity``
update
    ``update_activity`` -> ``delete_services`` -> ``delete_products``
    -> ``insert_services`` -> ``insert_products`` -> ``fetch_activity``

Each step commits before the next one is issued. The first failing step stops
the sequence and nothing already committed is undone: when at least one step
had committed, :class:`PartialWriteError` reports the failing step and the
completed ones so the record can be reconciled, otherwise a plain
:class:`PersistenceError` is raised. Re-running an update is safe because the
children are always replaced in full; re-running a create is not and may
leave a duplicate parent row.

With ``transactional=True`` the write steps run inside
:meth:`Store.transaction` instead, and a failure there leaves the store
untouched. ``fetch_activity`` reads the saved record back after the writes
have committed, so its failure is always reported as a partial write
carrying the record id.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from .database import Store
from .errors import PartialWriteError, PersistenceError, ValidationError
from .models import (
    Activity,
    ActivityInput,
    EntityId,
    PaymentMethod,
    ProductCharge,
    ServiceCharge,
    to_date,
    to_money,
)
from .totals import Totals, compute_totals

logger = logging.getLogger(__name__)

ACTIVITIES = "activities"
ACTIVITY_SERVICES = "activity_services"
ACTIVITY_PRODUCTS = "activity_products"


def activity_from_rows(
    row: dict,
    service_rows: list[dict],
    product_rows: list[dict],
    customer_name: str | None = None,
) -> Activity:
    """Build an :class:`Activity` from a parent row and its child rows."""

    return Activity(
        id=row["id"],
        customer_id=row["customer_id"],
        date=to_date(row["date"]),
        payment_method=PaymentMethod(row["payment_method"]),
        services=tuple(
            ServiceCharge(service_id=item["service_id"], price=to_money(item["price"]))
            for item in service_rows
        ),
        products=tuple(
            ProductCharge(
                product_id=item["product_id"],
                price=to_money(item["price"]),
                quantity=item["quantity"],
            )
            for item in product_rows
        ),
        total_services=to_money(row["total_services"]),
        total_products=to_money(row["total_products"]),
        total_amount=to_money(row["total_amount"]),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
        customer_name=customer_name,
    )


class _Saga:
    """Runs the steps of one operation and records which ones committed."""

    def __init__(self, action: str, transactional: bool) -> None:
        self.action = action
        self.transactional = transactional
        self.completed: list[str] = []
        self.record_id: EntityId | None = None
        self.committed = False

    @property
    def partial(self) -> bool:
        return bool(self.completed) and (self.committed or not self.transactional)

    def run(self, step: str, call: Callable[[], Any]) -> Any:
        try:
            result = call()
        except PersistenceError as exc:
            logger.error(
                "%s stopped at %s (completed: %s): %s",
                self.action,
                step,
                ", ".join(self.completed) or "none",
                exc,
            )
            if self.partial:
                raise PartialWriteError(
                    f"{self.action} failed at {step} after {', '.join(self.completed)}",
                    step=step,
                    action=self.action,
                    completed_steps=self.completed,
                    record_id=self.record_id,
                ) from exc
            raise PersistenceError(
                f"{self.action} failed at {step}", step=step, action=self.action
            ) from exc
        self.completed.append(step)
        logger.debug("%s: %s done", self.action, step)
        return result


class ActivityCoordinator:
    """Keeps an activity's parent row and line-item rows consistent."""

    def __init__(self, store: Store, *, allow_empty: bool = True, transactional: bool = False) -> None:
        self.store = store
        self.allow_empty = allow_empty
        self.transactional = transactional

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _validate(self, data: ActivityInput) -> tuple[Any, PaymentMethod]:
        if data.customer_id in (None, ""):
            raise ValidationError("Customer is required")
        date = to_date(data.date)
        method = PaymentMethod.parse(data.payment_method)
        for item in (*data.services, *data.products):
            to_money(item.price)
        if not data.services and not data.products:
            if not self.allow_empty:
                raise ValidationError("An activity needs at least one service or product")
            logger.warning(
                "Saving activity for customer %s on %s without any line items",
                data.customer_id,
                date.isoformat(),
            )
        return date, method

    def _parent_fields(self, data: ActivityInput, date: Any, method: PaymentMethod, totals: Totals) -> dict:
        return {
            "customer_id": data.customer_id,
            "date": date.isoformat(),
            "total_services": totals.services,
            "total_products": totals.products,
            "total_amount": totals.amount,
            "payment_method": method.value,
        }

    def _insert_children(self, saga: _Saga, activity_id: EntityId, data: ActivityInput) -> None:
        # empty lists skip the round trip entirely
        if data.services:
            saga.run(
                "insert_services",
                lambda: self.store.insert(
                    ACTIVITY_SERVICES,
                    [
                        {"activity_id": activity_id, "service_id": item.service_id, "price": item.price}
                        for item in data.services
                    ],
                ),
            )
        if data.products:
            saga.run(
                "insert_products",
                lambda: self.store.insert(
                    ACTIVITY_PRODUCTS,
                    [
                        {
                            "activity_id": activity_id,
                            "product_id": item.product_id,
                            "price": item.price,
                            "quantity": item.quantity,
                        }
                        for item in data.products
                    ],
                ),
            )

    def _execute(self, saga: _Saga, steps: Callable[[], EntityId]) -> EntityId:
        if not self.transactional:
            return steps()
        try:
            with self.store.transaction():
                record_id = steps()
        except PersistenceError:
            logger.warning("%s rolled back", saga.action)
            raise
        saga.committed = True
        return record_id

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    def create_activity(self, data: ActivityInput) -> Activity:
        date, method = self._validate(data)
        totals = compute_totals(data.services, data.products)
        saga = _Saga("create_activity", self.transactional)
        logger.info(
            "Creating activity for customer %s on %s (%d services, %d products, total %s)",
            data.customer_id,
            date.isoformat(),
            len(data.services),
            len(data.products),
            totals.amount,
        )

        def steps() -> EntityId:
            rows = saga.run(
                "insert_activity",
                lambda: self.store.insert(ACTIVITIES, [self._parent_fields(data, date, method, totals)]),
            )
            activity_id = rows[0]["id"]
            saga.record_id = activity_id
            self._insert_children(saga, activity_id, data)
            return activity_id

        activity_id = self._execute(saga, steps)
        logger.info("Created activity %s", activity_id)
        return saga.run("fetch_activity", lambda: self.get_activity(activity_id))

    def update_activity(self, activity_id: EntityId, data: ActivityInput) -> Activity:
        date, method = self._validate(data)
        totals = compute_totals(data.services, data.products)
        saga = _Saga("update_activity", self.transactional)
        saga.record_id = activity_id
        logger.info("Updating activity %s (total %s)", activity_id, totals.amount)

        def steps() -> EntityId:
            row = saga.run(
                "update_activity",
                lambda: self.store.update(
                    ACTIVITIES, activity_id, self._parent_fields(data, date, method, totals)
                ),
            )
            if row is None:
                raise ValidationError("Activity not found")
            saga.run(
                "delete_services",
                lambda: self.store.delete(ACTIVITY_SERVICES, {"activity_id": activity_id}),
            )
            saga.run(
                "delete_products",
                lambda: self.store.delete(ACTIVITY_PRODUCTS, {"activity_id": activity_id}),
            )
            self._insert_children(saga, activity_id, data)
            return activity_id

        self._execute(saga, steps)
        logger.info("Updated activity %s", activity_id)
        return saga.run("fetch_activity", lambda: self.get_activity(activity_id))

    def delete_activity(self, activity_id: EntityId) -> None:
        """Delete the parent row; line items go with it through ON DELETE CASCADE."""

        saga = _Saga("delete_activity", self.transactional)
        removed = saga.run(
            "delete_activity", lambda: self.store.delete(ACTIVITIES, {"id": activity_id})
        )
        if not removed:
            raise ValidationError("Activity not found")
        logger.info("Deleted activity %s", activity_id)

    def get_activity(self, activity_id: EntityId) -> Activity:
        with self.store.lock:
            rows = self.store.query(ACTIVITIES, {"id": activity_id})
            if not rows:
                raise ValidationError("Activity not found")
            services = self.store.query(ACTIVITY_SERVICES, {"activity_id": activity_id}, order=["id"])
            products = self.store.query(ACTIVITY_PRODUCTS, {"activity_id": activity_id}, order=["id"])
        return activity_from_rows(rows[0], services, products)
