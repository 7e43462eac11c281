"""CSV export of activities, one row per line item."""

from __future__ import annotations

import csv
import io
from decimal import Decimal
from typing import Callable, Iterable

from .models import Activity, EntityId

HEADERS = [
    "Date",
    "Client",
    "Type",
    "Article",
    "Prix unitaire",
    "Quantité",
    "Total",
    "Règlement",
]

SERVICE_LABEL = "Prestation"
PRODUCT_LABEL = "Produit"


def _amount(value: Decimal) -> str:
    return f"{value:.2f}"


def activities_to_csv(
    activities: Iterable[Activity],
    *,
    customer_name: Callable[[EntityId], str],
    service_name: Callable[[EntityId], str],
    product_name: Callable[[EntityId], str],
) -> str:
    """Return a ``;`` separated export; activities without line items produce no rows."""

    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=";", lineterminator="\n")
    writer.writerow(HEADERS)
    for activity in activities:
        date = activity.date.strftime("%d/%m/%Y")
        client = customer_name(activity.customer_id)
        for service in activity.services:
            writer.writerow(
                [
                    date,
                    client,
                    SERVICE_LABEL,
                    service_name(service.service_id),
                    _amount(service.price),
                    "1",
                    _amount(service.price),
                    activity.payment_method.value,
                ]
            )
        for product in activity.products:
            writer.writerow(
                [
                    date,
                    client,
                    PRODUCT_LABEL,
                    product_name(product.product_id),
                    _amount(product.price),
                    str(product.quantity),
                    _amount(product.total),
                    activity.payment_method.value,
                ]
            )
    return buffer.getvalue()
