"""
HTTP surface tests: status codes, error payloads and role gating.
"""

import pytest

from billing.identity import Identity
from billing.references import Reference
from billing.services import kot_service, payment_service

from conftest import identity_headers, stock_up

SALES = identity_headers("sales_person", 11)
MANAGER = identity_headers("manager", 22)
ADMIN = identity_headers("admin", 33)


@pytest.fixture
def menu(db_session, paneer_tikka, bottled_water, paneer, capsicum, water_bottle):
    stock_up(paneer.id, 1000)
    stock_up(capsicum.id, 1000)
    stock_up(water_bottle.id, 10)
    return {"tikka": paneer_tikka.id, "water": bottled_water.id}


def _open_kot(client, menu, headers=SALES):
    response = client.post("/api/kots", json={
        "order_type": "dine_in",
        "table_number": "T4",
        "items": [
            {"menu_item_id": menu["tikka"], "quantity": 2},
            {"menu_item_id": menu["water"], "quantity": 1},
        ],
    }, headers=headers)
    assert response.status_code == 201, response.get_json()
    return response.get_json()["kot"]


class TestSystem:
    def test_health(self, client, db_session, company):
        response = client.get("/api/system/health")
        assert response.status_code == 200
        data = response.get_json()
        assert data["status"] == "healthy"
        assert data["checks"]["database"]["status"] == "healthy"
        assert data["checks"]["tax_config"]["details"]["seller_state"] == "Karnataka"


class TestIdentity:
    def test_missing_headers(self, client, db_session):
        response = client.get("/api/kots")
        assert response.status_code == 401
        assert response.get_json() == {"error": "Authentication required"}

    def test_unknown_role(self, client, db_session):
        response = client.get("/api/kots", headers={"X-User-Id": "1", "X-User-Role": "chef"})
        assert response.status_code == 401

    def test_pluggable_resolver(self, app, client, db_session, monkeypatch):
        monkeypatch.setitem(app.config, "IDENTITY_RESOLVER", lambda request: Identity(user_id=9, role="admin"))
        response = client.get("/api/inventory/verify")
        assert response.status_code == 200


class TestKotRoutes:
    def test_create_and_get(self, client, menu):
        kot = _open_kot(client, menu)
        assert kot["kot_number"] == "KOT-0001"
        assert kot["created_by_user_id"] == 11
        assert len(kot["items"]) == 2

        response = client.get(f"/api/kots/{kot['id']}", headers=SALES)
        assert response.status_code == 200
        assert response.get_json()["kot"]["status"] == "pending"

    def test_create_invalid_order_type(self, client, menu):
        response = client.post("/api/kots", json={"order_type": "drone"}, headers=SALES)
        assert response.status_code == 400

    def test_create_rejects_decimal_quantity(self, client, menu):
        response = client.post("/api/kots", json={
            "items": [{"menu_item_id": menu["tikka"], "quantity": 1.5}],
        }, headers=SALES)
        assert response.status_code == 400

    def test_unknown_kot(self, client, db_session):
        response = client.get("/api/kots/4242", headers=SALES)
        assert response.status_code == 404
        assert response.get_json()["code"] == "NotFound"

    def test_list(self, client, menu):
        _open_kot(client, menu)
        response = client.get("/api/kots?status=pending", headers=SALES)
        assert response.status_code == 200
        assert response.get_json()["total"] == 1

        response = client.get("/api/kots?status=eaten", headers=SALES)
        assert response.status_code == 400

    def test_add_and_remove_item(self, client, menu):
        kot = _open_kot(client, menu)
        response = client.post(
            f"/api/kots/{kot['id']}/items", json={"menu_item_id": menu["water"], "quantity": 2}, headers=SALES
        )
        assert response.status_code == 201
        item_id = response.get_json()["item"]["id"]

        response = client.delete(f"/api/kots/{kot['id']}/items/{item_id}", headers=SALES)
        assert response.status_code == 200

    def test_status_moves(self, client, menu):
        kot = _open_kot(client, menu)
        url = f"/api/kots/{kot['id']}/status"

        assert client.post(url, json={"status": "ready"}, headers=SALES).status_code == 200

        backward = client.post(url, json={"status": "preparing"}, headers=SALES)
        assert backward.status_code == 409
        assert backward.get_json()["code"] == "InvalidTransition"

        # served / cancelled go through their own endpoints
        assert client.post(url, json={"status": "served"}, headers=SALES).status_code == 400

    def test_finalize(self, client, menu):
        kot = _open_kot(client, menu)

        response = client.post(f"/api/kots/{kot['id']}/finalize", json={}, headers=SALES)

        assert response.status_code == 201
        data = response.get_json()
        assert data["invoice"]["total_cents"] == 56040
        assert len(data["invoice"]["items"]) == 2
        assert data["kot"]["status"] == "served"
        assert data["warnings"] == []

        again = client.post(f"/api/kots/{kot['id']}/finalize", json={}, headers=SALES)
        assert again.status_code == 409
        assert again.get_json()["code"] == "AlreadyFinalized"

    def test_discount_requires_manager(self, client, menu):
        kot = _open_kot(client, menu)
        url = f"/api/kots/{kot['id']}/finalize"

        denied = client.post(url, json={"discount_cents": 1000}, headers=SALES)
        assert denied.status_code == 403
        assert kot_service.get_kot(kot["id"]).status == "pending"

        allowed = client.post(url, json={"discount_cents": 1000, "discount_reason": "regular"}, headers=MANAGER)
        assert allowed.status_code == 201
        assert allowed.get_json()["invoice"]["discount_cents"] == 1000

    def test_discount_above_subtotal(self, client, menu):
        kot = _open_kot(client, menu)
        response = client.post(f"/api/kots/{kot['id']}/finalize", json={"discount_cents": 60000}, headers=ADMIN)
        assert response.status_code == 400
        assert response.get_json()["code"] == "InvalidDiscount"

    def test_split_mismatch(self, client, menu):
        kot = _open_kot(client, menu)
        response = client.post(f"/api/kots/{kot['id']}/payment", json={
            "payment_method": "split",
            "cash_amount_cents": 20000,
            "upi_amount_cents": 30000,
            "card_amount_cents": 2000,
        }, headers=SALES)
        assert response.status_code == 200

        response = client.post(f"/api/kots/{kot['id']}/finalize", json={}, headers=SALES)
        assert response.status_code == 400
        body = response.get_json()
        assert body["code"] == "SplitMismatch"
        assert body["details"]["tendered_cents"] == 52000

    def test_cancel_pending_by_sales(self, client, menu):
        kot = _open_kot(client, menu)
        response = client.post(f"/api/kots/{kot['id']}/cancel", json={"reason": "duplicate"}, headers=SALES)
        assert response.status_code == 200
        assert response.get_json()["kot"]["status"] == "cancelled"

    def test_cancel_in_progress_needs_manager(self, client, menu):
        kot = _open_kot(client, menu)
        client.post(f"/api/kots/{kot['id']}/status", json={"status": "preparing"}, headers=SALES)

        denied = client.post(f"/api/kots/{kot['id']}/cancel", json={}, headers=SALES)
        assert denied.status_code == 403
        assert denied.get_json()["code"] == "PermissionDenied"
        assert denied.get_json()["details"]["required_roles"] == ["admin", "manager"]
        assert client.get(f"/api/kots/{kot['id']}", headers=SALES).get_json()["kot"]["status"] == "preparing"

        allowed = client.post(f"/api/kots/{kot['id']}/cancel", json={}, headers=MANAGER)
        assert allowed.status_code == 200

    def test_reverse_and_delete_need_manager(self, client, menu):
        kot = _open_kot(client, menu)
        client.post(f"/api/kots/{kot['id']}/finalize", json={}, headers=SALES)

        assert client.post(f"/api/kots/{kot['id']}/reverse", json={}, headers=SALES).status_code == 403

        response = client.post(f"/api/kots/{kot['id']}/reverse", json={"reason": "complaint"}, headers=MANAGER)
        assert response.status_code == 200
        assert len(response.get_json()["reversed_movements"]) == 3

        assert client.delete(f"/api/kots/{kot['id']}", headers=SALES).status_code == 403
        response = client.delete(f"/api/kots/{kot['id']}", headers=ADMIN)
        assert response.status_code == 200
        assert response.get_json()["kot_number"] == "KOT-0001"


class TestInvoiceRoutes:
    @pytest.fixture
    def invoice_id(self, client, menu):
        kot = _open_kot(client, menu)
        response = client.post(f"/api/kots/{kot['id']}/finalize", json={}, headers=SALES)
        return response.get_json()["invoice"]["id"]

    def test_get_and_list(self, client, invoice_id):
        response = client.get(f"/api/invoices/{invoice_id}", headers=SALES)
        assert response.status_code == 200
        assert response.get_json()["invoice"]["invoice_number"] == "INV-0001"

        response = client.get("/api/invoices?payment_status=unpaid", headers=SALES)
        assert response.get_json()["total"] == 1

    def test_payments(self, client, invoice_id):
        url = f"/api/invoices/{invoice_id}/payments"

        response = client.post(url, json={"amount_cents": 40000, "payment_method": "Cash"}, headers=SALES)
        assert response.status_code == 201
        assert response.get_json()["summary"]["payment_status"] == "partial"

        response = client.post(url, json={"amount_cents": 20000, "payment_method": "UPI"}, headers=SALES)
        assert response.status_code == 400
        assert response.get_json()["code"] == "Overpayment"

        response = client.post(url, json={"amount_cents": 16040, "payment_method": "UPI"}, headers=SALES)
        assert response.status_code == 201
        summary = response.get_json()["summary"]
        assert summary["payment_status"] == "paid"
        assert summary["remaining_cents"] == 0

    def test_payment_requires_method(self, client, invoice_id):
        response = client.post(f"/api/invoices/{invoice_id}/payments", json={"amount_cents": 100}, headers=SALES)
        assert response.status_code == 400

    def test_void_needs_manager(self, client, invoice_id):
        payment = payment_service.apply_payment(Reference.invoice(invoice_id), 1000, "Cash")
        url = f"/api/invoices/{invoice_id}/payments/{payment.id}/void"

        assert client.post(url, json={}, headers=SALES).status_code == 403

        response = client.post(url, json={"reason": "wrong invoice"}, headers=MANAGER)
        assert response.status_code == 200
        assert response.get_json()["payment"]["status"] == "voided"
        assert response.get_json()["summary"]["amount_paid_cents"] == 0

    def test_send_and_receivables(self, client, invoice_id):
        response = client.post(f"/api/invoices/{invoice_id}/send", headers=SALES)
        assert response.status_code == 200
        assert response.get_json()["invoice"]["status"] == "sent"

        response = client.get("/api/invoices/receivables?as_of=2999-01-01", headers=SALES)
        assert response.status_code == 200
        data = response.get_json()
        assert data["total_outstanding_cents"] == 56040
        assert data["total_overdue_cents"] == 56040
        assert data["invoices"][0]["days_overdue"] > 0

    def test_receivables_bad_date(self, client, db_session):
        response = client.get("/api/invoices/receivables?as_of=tomorrow", headers=SALES)
        assert response.status_code == 400


class TestInventoryRoutes:
    def test_stock_and_movements(self, client, menu, paneer):
        response = client.get(f"/api/inventory/{paneer.id}", headers=SALES)
        assert response.status_code == 200
        assert response.get_json() == {"product_id": paneer.id, "stock_quantity": 1000, "ledger_quantity": 1000}

        response = client.get(f"/api/inventory/{paneer.id}/movements?limit=5", headers=SALES)
        assert len(response.get_json()["movements"]) == 1

    def test_adjust_needs_manager(self, client, menu, paneer):
        url = f"/api/inventory/{paneer.id}/adjust"
        assert client.post(url, json={"quantity_delta": -1200}, headers=SALES).status_code == 403

        response = client.post(url, json={"quantity_delta": -1200, "note": "spoiled"}, headers=MANAGER)
        assert response.status_code == 201
        data = response.get_json()
        assert data["stock_quantity"] == -200
        assert data["warnings"][0]["type"] == "negative_stock"

    def test_adjust_zero_rejected(self, client, menu, paneer):
        response = client.post(f"/api/inventory/{paneer.id}/adjust", json={"quantity_delta": 0}, headers=ADMIN)
        assert response.status_code == 400
        assert response.get_json()["code"] == "InvalidMovement"

    def test_verify(self, client, menu):
        response = client.get("/api/inventory/verify", headers=MANAGER)
        assert response.status_code == 200
        assert response.get_json() == {"ok": True, "mismatches": []}

    def test_low_stock(self, client, db_session, company, paneer):
        response = client.get("/api/inventory/low-stock", headers=SALES)
        assert [p["sku"] for p in response.get_json()["products"]] == ["RM-PANEER"]


class TestPurchaseRoutes:
    def test_lifecycle(self, client, db_session, company, supplier, paneer):
        body = {
            "supplier_id": supplier.id,
            "items": [{"product_id": paneer.id, "quantity": 5000, "unit_price_cents": 40, "tax_rate_bps": 0}],
        }
        assert client.post("/api/purchases", json=body, headers=SALES).status_code == 403

        response = client.post("/api/purchases", json=body, headers=MANAGER)
        assert response.status_code == 201
        purchase = response.get_json()["purchase"]
        assert purchase["total_cents"] == 200000

        response = client.post(f"/api/purchases/{purchase['id']}/receive", json={}, headers=MANAGER)
        assert response.status_code == 200
        assert response.get_json()["purchase"]["status"] == "received"

        response = client.post(
            f"/api/purchases/{purchase['id']}/payments",
            json={"amount_cents": 200000, "payment_method": "Bank Transfer"},
            headers=ADMIN,
        )
        assert response.status_code == 201
        assert response.get_json()["summary"]["payment_status"] == "paid"

        response = client.post(f"/api/purchases/{purchase['id']}/cancel", json={}, headers=ADMIN)
        assert response.status_code == 400
        assert response.get_json()["code"] == "InvalidPayment"
