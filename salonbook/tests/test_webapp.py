import unittest

from salonbook.webapp import create_app, parse_activity_payload
from salonbook.ledger.errors import ValidationError


class WebAppTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.app = create_app(database_path=":memory:", config={"TESTING": True})
        self.client = self.app.test_client()
        self.customer = self.client.post(
            "/customers", json={"first_name": "Alice", "last_name": "Martin"}
        ).get_json()
        self.service = self.client.post("/services", json={"name": "Coupe"}).get_json()
        self.product = self.client.post("/products", json={"name": "Shampooing"}).get_json()

    def tearDown(self) -> None:
        self.app.extensions["salonbook"].close()

    def _payload(self, **overrides):
        payload = {
            "customer_id": self.customer["id"],
            "date": "2026-10-18",
            "payment_method": "carte",
            "services": [{"service_id": self.service["id"], "price": 30.0}],
            "products": [{"product_id": self.product["id"], "price": "5.00", "quantity": 3}],
        }
        payload.update(overrides)
        return payload

    def test_health(self) -> None:
        self.assertEqual(self.client.get("/health").get_json(), {"status": "ok", "schema_version": 1})

    def test_create_update_delete_activity(self) -> None:
        response = self.client.post("/activities", json=self._payload())
        self.assertEqual(response.status_code, 201)
        activity = response.get_json()
        self.assertEqual(activity["total_amount"], "45.00")
        self.assertEqual(activity["total_services"], "30.0")

        response = self.client.put(
            f"/activities/{activity['id']}",
            json=self._payload(products=[], payment_method="especes"),
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["products"], [])
        self.assertEqual(response.get_json()["payment_method"], "especes")

        listing = self.client.get("/activities").get_json()
        self.assertEqual(len(listing), 1)
        self.assertEqual(listing[0]["customer_name"], "Martin Alice")

        self.assertEqual(self.client.delete(f"/activities/{activity['id']}").status_code, 204)
        self.assertEqual(self.client.get(f"/activities/{activity['id']}").status_code, 400)

    def test_invalid_payloads_are_rejected(self) -> None:
        cases = [
            self._payload(customer_id=None),
            self._payload(date=""),
            self._payload(payment_method="bitcoin"),
            self._payload(products=[{"product_id": self.product["id"], "price": "5", "quantity": 0}]),
            self._payload(services=[{"service_id": self.service["id"], "price": "-1"}]),
            self._payload(services=[{"price": "10"}]),
        ]
        for payload in cases:
            with self.subTest(payload=payload):
                response = self.client.post("/activities", json=payload)
                self.assertEqual(response.status_code, 400)
                self.assertIn("error", response.get_json())
        self.assertEqual(self.client.get("/activities").get_json(), [])

    def test_non_finite_prices_are_rejected(self) -> None:
        for price in ("NaN", "Infinity", "-Infinity", "sNaN"):
            with self.subTest(price=price):
                services = self.client.post(
                    "/activities",
                    json=self._payload(services=[{"service_id": self.service["id"], "price": price}]),
                )
                self.assertEqual(services.status_code, 400)
                products = self.client.post(
                    "/activities",
                    json=self._payload(
                        products=[{"product_id": self.product["id"], "price": price, "quantity": 1}]
                    ),
                )
                self.assertEqual(products.status_code, 400)
        self.assertEqual(self.client.get("/activities").get_json(), [])
        response = self.client.get("/dashboard?period=month&date=2026-10-18")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["report"]["total_revenue"], "0")

    def test_malformed_line_items_are_rejected(self) -> None:
        cases = [
            self._payload(services=["Coupe"]),
            self._payload(services=[7]),
            self._payload(products=[None]),
            self._payload(products=[["Shampooing", "5"]]),
            self._payload(services={"service_id": self.service["id"], "price": "30"}),
            self._payload(products="Shampooing"),
        ]
        for payload in cases:
            with self.subTest(payload=payload):
                response = self.client.post("/activities", json=payload)
                self.assertEqual(response.status_code, 400)
                self.assertIn("error", response.get_json())
        response = self.client.post("/activities", json=[self._payload()])
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.client.get("/activities").get_json(), [])

    def test_storage_failure_reports_action(self) -> None:
        response = self.client.post(
            "/activities",
            json=self._payload(products=[{"product_id": 9999, "price": "5", "quantity": 1}]),
        )
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.get_json(), {"error": "Failed to create activity"})

    def test_concurrent_save_is_refused(self) -> None:
        activity = self.client.post("/activities", json=self._payload()).get_json()
        pending = self.app.extensions["salonbook.pending"]
        with pending.guard(("activity", activity["id"])):
            response = self.client.put(f"/activities/{activity['id']}", json=self._payload())
        self.assertEqual(response.status_code, 409)
        response = self.client.put(f"/activities/{activity['id']}", json=self._payload())
        self.assertEqual(response.status_code, 200)

    def test_dashboard(self) -> None:
        self.client.post("/activities", json=self._payload())
        other = self.client.post("/customers", json={"first_name": "Bruno", "last_name": "Bernard"}).get_json()
        self.client.post(
            "/activities",
            json=self._payload(
                customer_id=other["id"],
                date="2026-10-02",
                payment_method="especes",
                services=[{"service_id": self.service["id"], "price": "20.00"}],
                products=[],
            ),
        )
        data = self.client.get("/dashboard?period=month&date=2026-10-18").get_json()
        self.assertEqual(data["window"]["label"], "October 2026")
        self.assertEqual(data["report"]["total_revenue"], "65.00")
        self.assertEqual(data["report"]["customer_count"], 2)
        self.assertEqual(data["report"]["avg_revenue_per_customer"], "32.50")
        self.assertEqual(data["report"]["by_payment_method"]["cheque"], "0")
        self.assertEqual(data["report"]["by_service"][0]["name"], "Coupe")
        self.assertEqual(data["previous"], "2026-09-18")
        self.assertEqual(data["next"], "2026-11-18")

        response = self.client.get("/dashboard?period=quarter")
        self.assertEqual(response.status_code, 400)

    def test_export_csv(self) -> None:
        self.client.post("/activities", json=self._payload())
        response = self.client.get("/activities/export.csv")
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.mimetype.startswith("text/csv"))
        self.assertIn("attachment", response.headers["Content-Disposition"])
        lines = response.get_data(as_text=True).splitlines()
        self.assertEqual(len(lines), 3)

    def test_catalog_and_notes_endpoints(self) -> None:
        response = self.client.put(f"/services/{self.service['id']}", json={"name": "Coupe femme"})
        self.assertEqual(response.get_json()["name"], "Coupe femme")
        response = self.client.post(
            f"/customers/{self.customer['id']}/notes", json={"content": "Cheveux fins"}
        )
        self.assertEqual(response.status_code, 201)
        notes = self.client.get(f"/customers/{self.customer['id']}/notes").get_json()
        self.assertEqual(notes[0]["content"], "Cheveux fins")
        self.assertEqual(self.client.post("/customers", json={}).status_code, 400)

        self.client.post("/activities", json=self._payload())
        response = self.client.delete(f"/products/{self.product['id']}")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.get_json(), {"error": "Failed to delete product"})


class ParseActivityPayloadTestCase(unittest.TestCase):
    def test_string_quantities_are_accepted(self) -> None:
        data = parse_activity_payload(
            {
                "customer_id": 1,
                "date": "2026-10-18",
                "payment_method": "autres",
                "products": [{"product_id": 4, "price": "2,50", "quantity": "2"}],
            }
        )
        self.assertEqual(data.products[0].quantity, 2)
        self.assertEqual(str(data.products[0].price), "2.50")

    def test_boolean_quantity_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            parse_activity_payload(
                {
                    "customer_id": 1,
                    "date": "2026-10-18",
                    "payment_method": "carte",
                    "products": [{"product_id": 4, "price": "2", "quantity": True}],
                }
            )


if __name__ == "__main__":
    unittest.main()
