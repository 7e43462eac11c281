"""Value types for activities and their service/product line items."""

from __future__ import annotations

import datetime as dt
import enum
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Union

from .errors import ValidationError

EntityId = Union[int, str]

ZERO = Decimal("0")
CENT = Decimal("0.01")


class PaymentMethod(str, enum.Enum):
    ESPECES = "especes"
    CHEQUE = "cheque"
    CARTE = "carte"
    AUTRES = "autres"

    @classmethod
    def parse(cls, value: str | "PaymentMethod") -> "PaymentMethod":
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(f"Unknown payment method: {value!r}") from None


def to_money(value: Any) -> Decimal:
    """Coerce ``value`` to a :class:`Decimal` without going through binary floats."""

    if isinstance(value, Decimal):
        result = value
    else:
        if isinstance(value, float):
            value = repr(value)
        try:
            result = Decimal(str(value).strip().replace(",", "."))
        except (InvalidOperation, ValueError):
            raise ValidationError(f"Invalid amount: {value!r}") from None
    # NaN and Infinity parse but cannot be compared, summed or rounded
    if not result.is_finite():
        raise ValidationError(f"Invalid amount: {value!r}")
    return result


def to_date(value: Any) -> dt.date:
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    if not value:
        raise ValidationError("Date is required")
    try:
        return dt.date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(f"Invalid date: {value!r}") from None


@dataclass(frozen=True)
class ServiceCharge:
    """One rendered service, billed at the price captured at time of sale."""

    service_id: EntityId
    price: Decimal

    @property
    def total(self) -> Decimal:
        return self.price


@dataclass(frozen=True)
class ProductCharge:
    """Units of a product sold at a captured unit price."""

    product_id: EntityId
    price: Decimal
    quantity: int = 1

    @property
    def total(self) -> Decimal:
        return self.price * self.quantity


def service_charges(items: Iterable[ServiceCharge | Mapping[str, Any]]) -> tuple[ServiceCharge, ...]:
    charges = []
    for item in items:
        if isinstance(item, ServiceCharge):
            charges.append(item)
        else:
            charges.append(ServiceCharge(service_id=item["service_id"], price=to_money(item["price"])))
    return tuple(charges)


def product_charges(items: Iterable[ProductCharge | Mapping[str, Any]]) -> tuple[ProductCharge, ...]:
    charges = []
    for item in items:
        if isinstance(item, ProductCharge):
            charges.append(item)
        else:
            try:
                quantity = int(item.get("quantity", 1))
            except (TypeError, ValueError):
                raise ValidationError(f"Invalid quantity: {item.get('quantity')!r}") from None
            charges.append(
                ProductCharge(
                    product_id=item["product_id"],
                    price=to_money(item["price"]),
                    quantity=quantity,
                )
            )
    return tuple(charges)


@dataclass(frozen=True)
class ActivityInput:
    """Fields a caller supplies when saving an activity."""

    customer_id: EntityId | None
    date: dt.date | str | None
    payment_method: PaymentMethod | str
    services: tuple[ServiceCharge, ...] = ()
    products: tuple[ProductCharge, ...] = ()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ActivityInput":
        return cls(
            customer_id=data.get("customer_id"),
            date=data.get("date"),
            payment_method=data.get("payment_method", ""),
            services=service_charges(data.get("services") or ()),
            products=product_charges(data.get("products") or ()),
        )


@dataclass(frozen=True)
class Activity:
    id: EntityId
    customer_id: EntityId
    date: dt.date
    payment_method: PaymentMethod
    services: tuple[ServiceCharge, ...] = ()
    products: tuple[ProductCharge, ...] = ()
    total_services: Decimal = ZERO
    total_products: Decimal = ZERO
    total_amount: Decimal = ZERO
    created_at: str | None = None
    updated_at: str | None = None
    customer_name: str | None = field(default=None, compare=False)

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "date": self.date.isoformat(),
            "payment_method": self.payment_method.value,
            "services": [
                {"service_id": item.service_id, "price": str(item.price)} for item in self.services
            ],
            "products": [
                {
                    "product_id": item.product_id,
                    "price": str(item.price),
                    "quantity": item.quantity,
                }
                for item in self.products
            ],
            "total_services": str(self.total_services),
            "total_products": str(self.total_products),
            "total_amount": str(self.total_amount),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
