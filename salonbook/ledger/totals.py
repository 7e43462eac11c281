"""Derived money totals for an activity's line items."""

from __future__ import annotations

from decimal import Decimal
from typing import NamedTuple, Sequence

from .models import ZERO, ProductCharge, ServiceCharge


class Totals(NamedTuple):
    services: Decimal
    products: Decimal
    amount: Decimal


def compute_totals(
    services: Sequence[ServiceCharge], products: Sequence[ProductCharge]
) -> Totals:
    """Return service subtotal, product subtotal and grand total.

    Quantities are taken as given; a zero or negative quantity contributes
    accordingly rather than being rejected here.
    """

    service_total = sum((item.price for item in services), ZERO)
    product_total = sum((item.price * item.quantity for item in products), ZERO)
    return Totals(service_total, product_total, service_total + product_total)
