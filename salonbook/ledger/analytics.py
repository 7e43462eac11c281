"""Revenue rollups over a period window."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Iterable, Mapping, Union

from .models import CENT, ZERO, Activity, EntityId, PaymentMethod
from .periods import PeriodWindow

UNKNOWN_NAME = "Unknown"

NameLookup = Union[Mapping[EntityId, str], Callable[[EntityId], Union[str, None]], None]


@dataclass(frozen=True)
class ItemStats:
    name: str
    count: int
    revenue: Decimal

    def as_dict(self) -> dict[str, Any]:
        return {"name": self.name, "count": self.count, "revenue": str(self.revenue)}


@dataclass(frozen=True)
class AggregateReport:
    total_revenue: Decimal = ZERO
    service_revenue: Decimal = ZERO
    product_revenue: Decimal = ZERO
    customer_count: int = 0
    avg_revenue_per_customer: Decimal = ZERO
    by_payment_method: dict[PaymentMethod, Decimal] = field(default_factory=dict)
    by_service: list[ItemStats] = field(default_factory=list)
    by_product: list[ItemStats] = field(default_factory=list)
    activity_count: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_revenue": str(self.total_revenue),
            "service_revenue": str(self.service_revenue),
            "product_revenue": str(self.product_revenue),
            "customer_count": self.customer_count,
            "avg_revenue_per_customer": str(self.avg_revenue_per_customer),
            "activity_count": self.activity_count,
            "by_payment_method": {
                method.value: str(amount) for method, amount in self.by_payment_method.items()
            },
            "by_service": [item.as_dict() for item in self.by_service],
            "by_product": [item.as_dict() for item in self.by_product],
        }


def _resolver(names: NameLookup) -> Callable[[EntityId], str]:
    if names is None:
        return lambda _item_id: UNKNOWN_NAME
    if callable(names):
        return lambda item_id: names(item_id) or UNKNOWN_NAME
    return lambda item_id: names.get(item_id) or UNKNOWN_NAME


def _ranked(stats: dict[EntityId, list], names: NameLookup) -> list[ItemStats]:
    resolve = _resolver(names)
    rows = [ItemStats(resolve(item_id), count, revenue) for item_id, (count, revenue) in stats.items()]
    # sorted() is stable, so equal revenues keep first-encounter order
    return sorted(rows, key=lambda row: row.revenue, reverse=True)


def filter_window(activities: Iterable[Activity], window: PeriodWindow) -> list[Activity]:
    return [activity for activity in activities if window.contains(activity.date)]


def aggregate(
    activities: Iterable[Activity],
    window: PeriodWindow,
    service_names: NameLookup = None,
    product_names: NameLookup = None,
) -> AggregateReport:
    """Compute the dashboard figures for the activities dated inside ``window``.

    Everything is recomputed from the given activities; nothing is cached
    between calls.
    """

    selected = filter_window(activities, window)

    service_revenue = sum((activity.total_services for activity in selected), ZERO)
    product_revenue = sum((activity.total_products for activity in selected), ZERO)
    total_revenue = service_revenue + product_revenue

    customers = {activity.customer_id for activity in selected}
    if customers:
        average = (total_revenue / len(customers)).quantize(CENT, rounding=ROUND_HALF_UP)
    else:
        average = ZERO

    by_payment_method = {method: ZERO for method in PaymentMethod}
    services: dict[EntityId, list] = {}
    products: dict[EntityId, list] = {}
    for activity in selected:
        by_payment_method[activity.payment_method] += activity.total_amount
        for service in activity.services:
            entry = services.setdefault(service.service_id, [0, ZERO])
            entry[0] += 1
            entry[1] += service.price
        for product in activity.products:
            entry = products.setdefault(product.product_id, [0, ZERO])
            entry[0] += product.quantity
            entry[1] += product.price * product.quantity

    return AggregateReport(
        total_revenue=total_revenue,
        service_revenue=service_revenue,
        product_revenue=product_revenue,
        customer_count=len(customers),
        avg_revenue_per_customer=average,
        by_payment_method=by_payment_method,
        by_service=_ranked(services, service_names),
        by_product=_ranked(products, product_names),
        activity_count=len(selected),
    )
