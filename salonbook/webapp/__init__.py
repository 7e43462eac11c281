"""Flask application exposing the salon ledger as a JSON API."""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Mapping

from flask import Flask, Response, jsonify, request

from salonbook.ledger.errors import (
    OperationInProgressError,
    PersistenceError,
    ValidationError,
)
from salonbook.ledger.guards import PendingOperations
from salonbook.ledger.models import ActivityInput, PaymentMethod, to_date, to_money
from salonbook.ledger.system import SalonSystem

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: dict[str, Any] = {
    "SECRET_KEY": "salonbook-secret",
    "DATABASE": "salonbook.db",
    "ALLOW_EMPTY_ACTIVITIES": True,
    "TRANSACTIONAL_WRITES": False,
    "DEFAULT_PERIOD": "month",
}


def _line_items(payload: Mapping[str, Any], key: str, label: str) -> list[Mapping[str, Any]]:
    items = payload.get(key) or []
    if not isinstance(items, list):
        raise ValidationError(f"{label} lines must be a list")
    for index, item in enumerate(items):
        if not isinstance(item, Mapping):
            raise ValidationError(f"{label} line {index + 1} is not an object")
    return items


def parse_activity_payload(payload: Mapping[str, Any]) -> ActivityInput:
    """Validate an activity form submission before anything is written."""

    if not payload.get("customer_id"):
        raise ValidationError("Customer is required")
    date = to_date(payload.get("date"))
    method = PaymentMethod.parse(payload.get("payment_method", ""))

    services = []
    for index, item in enumerate(_line_items(payload, "services", "Service")):
        if not item.get("service_id"):
            raise ValidationError(f"Service line {index + 1} has no service")
        price = to_money(item.get("price", 0))
        if price < 0:
            raise ValidationError(f"Service line {index + 1} has a negative price")
        services.append({"service_id": item["service_id"], "price": price})

    products = []
    for index, item in enumerate(_line_items(payload, "products", "Product")):
        if not item.get("product_id"):
            raise ValidationError(f"Product line {index + 1} has no product")
        price = to_money(item.get("price", 0))
        if price < 0:
            raise ValidationError(f"Product line {index + 1} has a negative price")
        quantity = item.get("quantity", 1)
        if isinstance(quantity, bool) or not isinstance(quantity, (int, str)):
            raise ValidationError(f"Product line {index + 1} has an invalid quantity")
        try:
            quantity = int(quantity)
        except ValueError:
            raise ValidationError(f"Product line {index + 1} has an invalid quantity") from None
        if quantity < 1:
            raise ValidationError(f"Product line {index + 1} needs a quantity of at least 1")
        products.append({"product_id": item["product_id"], "price": price, "quantity": quantity})

    return ActivityInput.from_mapping(
        {
            "customer_id": payload["customer_id"],
            "date": date,
            "payment_method": method,
            "services": services,
            "products": products,
        }
    )


def create_app(database_path: str | None = None, config: Mapping[str, Any] | None = None) -> Flask:
    """Create and configure the Flask application."""

    app = Flask(__name__)
    app.config.from_mapping(DEFAULT_CONFIG)
    app.config.from_prefixed_env("SALONBOOK")
    if config:
        app.config.update(config)
    if database_path:
        app.config["DATABASE"] = database_path

    system = SalonSystem(
        app.config["DATABASE"],
        allow_empty_activities=bool(app.config["ALLOW_EMPTY_ACTIVITIES"]),
        transactional_writes=bool(app.config["TRANSACTIONAL_WRITES"]),
    )
    pending = PendingOperations()
    app.extensions["salonbook"] = system
    app.extensions["salonbook.pending"] = pending
    logger.info("Using database %s", app.config["DATABASE"])

    def payload() -> dict[str, Any]:
        data = request.get_json(silent=True)
        return data if isinstance(data, dict) else {}

    @app.errorhandler(ValidationError)
    def handle_validation(exc: ValidationError) -> Any:
        return jsonify(error=str(exc)), 400

    @app.errorhandler(OperationInProgressError)
    def handle_in_progress(exc: OperationInProgressError) -> Any:
        return jsonify(error="This record is already being saved"), 409

    @app.errorhandler(PersistenceError)
    def handle_persistence(exc: PersistenceError) -> Any:
        action = (exc.action or "save changes").replace("_", " ")
        logger.error("Request failed during %s (step %s): %s", action, exc.step, exc)
        return jsonify(error=f"Failed to {action}"), 500

    @app.get("/health")
    def health() -> Any:
        return jsonify(status="ok", schema_version=system.schema_version())

    # customers -----------------------------------------------------------
    @app.route("/customers", methods=["GET", "POST"])
    def customers() -> Any:
        if request.method == "POST":
            data = payload()
            customer = system.create_customer(
                first_name=data.get("first_name", ""),
                last_name=data.get("last_name", ""),
                gender=data.get("gender", "femme"),
                birth_date=data.get("birth_date") or None,
                email=data.get("email") or None,
                phone=data.get("phone") or None,
            )
            return jsonify(customer), 201
        return jsonify(system.list_customers())

    @app.route("/customers/<int:customer_id>", methods=["GET", "PUT", "DELETE"])
    def customer_detail(customer_id: int) -> Any:
        if request.method == "DELETE":
            system.delete_customer(customer_id)
            return "", 204
        if request.method == "PUT":
            data = payload()
            return jsonify(
                system.update_customer(
                    customer_id,
                    first_name=data.get("first_name", ""),
                    last_name=data.get("last_name", ""),
                    gender=data.get("gender", "femme"),
                    birth_date=data.get("birth_date") or None,
                    email=data.get("email") or None,
                    phone=data.get("phone") or None,
                )
            )
        return jsonify(system.get_customer(customer_id))

    @app.route("/customers/<int:customer_id>/notes", methods=["GET", "POST"])
    def customer_notes(customer_id: int) -> Any:
        if request.method == "POST":
            note = system.add_customer_note(
                customer_id=customer_id, content=payload().get("content", "")
            )
            return jsonify(note), 201
        return jsonify(system.list_customer_notes(customer_id=customer_id))

    # catalog -------------------------------------------------------------
    @app.route("/services", methods=["GET", "POST"])
    def services() -> Any:
        if request.method == "POST":
            data = payload()
            service = system.create_service(
                name=data.get("name", ""), description=data.get("description") or None
            )
            return jsonify(service), 201
        return jsonify(system.list_services())

    @app.route("/services/<int:service_id>", methods=["PUT", "DELETE"])
    def service_detail(service_id: int) -> Any:
        if request.method == "DELETE":
            system.delete_service(service_id)
            return "", 204
        data = payload()
        return jsonify(
            system.update_service(
                service_id, name=data.get("name", ""), description=data.get("description") or None
            )
        )

    @app.route("/products", methods=["GET", "POST"])
    def products() -> Any:
        if request.method == "POST":
            data = payload()
            product = system.create_product(
                name=data.get("name", ""), description=data.get("description") or None
            )
            return jsonify(product), 201
        return jsonify(system.list_products())

    @app.route("/products/<int:product_id>", methods=["PUT", "DELETE"])
    def product_detail(product_id: int) -> Any:
        if request.method == "DELETE":
            system.delete_product(product_id)
            return "", 204
        data = payload()
        return jsonify(
            system.update_product(
                product_id, name=data.get("name", ""), description=data.get("description") or None
            )
        )

    # activities ----------------------------------------------------------
    @app.route("/activities", methods=["GET", "POST"])
    def activities() -> Any:
        if request.method == "POST":
            data = parse_activity_payload(payload())
            key = ("activity", "new", data.customer_id, str(data.date))
            with pending.guard(key):
                activity = system.create_activity(data)
            return jsonify(activity.as_dict()), 201
        return jsonify([activity.as_dict() for activity in system.list_activities()])

    @app.route("/activities/<int:activity_id>", methods=["GET", "PUT", "DELETE"])
    def activity_detail(activity_id: int) -> Any:
        if request.method == "GET":
            return jsonify(system.get_activity(activity_id).as_dict())
        with pending.guard(("activity", activity_id)):
            if request.method == "DELETE":
                system.delete_activity(activity_id)
                return "", 204
            data = parse_activity_payload(payload())
            activity = system.update_activity(activity_id, data)
        return jsonify(activity.as_dict())

    @app.get("/activities/export.csv")
    def export_activities() -> Any:
        filename = f"activites_{dt.date.today().isoformat()}.csv"
        return Response(
            system.export_activities_csv(),
            mimetype="text/csv",
            headers={"Content-Disposition": f"attachment; filename={filename}"},
        )

    # dashboard -----------------------------------------------------------
    @app.get("/dashboard")
    def dashboard() -> Any:
        period = request.args.get("period") or app.config["DEFAULT_PERIOD"]
        date_arg = request.args.get("date")
        reference = to_date(date_arg) if date_arg else dt.date.today()
        snapshot = system.dashboard(granularity=period, reference=reference)
        return jsonify(
            window=snapshot["window"].as_dict(),
            report=snapshot["report"].as_dict(),
            previous=snapshot["previous"].date().isoformat(),
            next=snapshot["next"].date().isoformat(),
        )

    return app


__all__ = ["create_app", "parse_activity_payload"]
