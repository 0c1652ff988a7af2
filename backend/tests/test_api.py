"""
HTTP API tests.

Verifies:
- Protected endpoints return 401 without a valid token
- Admin-only endpoints return 403 for the cashier role
- Every response uses the {success, data | error} envelope
- Stock and sale endpoints keep the ledger and the product cache in step
"""

import pytest

from conftest import ADMIN_PASSWORD, auth_headers


# =============================================================================
# AUTHENTICATION
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/products"),
            ("POST", "/api/products"),
            ("GET", "/api/stocks"),
            ("GET", "/api/stock-movements"),
            ("POST", "/api/stock-movements"),
            ("GET", "/api/sales"),
            ("POST", "/api/sales"),
            ("GET", "/api/purchases"),
            ("GET", "/api/bills"),
            ("GET", "/api/customers"),
            ("GET", "/api/suppliers"),
            ("GET", "/api/cashbox/my-cash-box"),
            ("GET", "/api/money-boxes"),
            ("GET", "/api/debts"),
            ("GET", "/api/installments"),
            ("GET", "/api/customer-receipts"),
            ("GET", "/api/delegates"),
            ("GET", "/api/reports/dashboard"),
            ("GET", "/api/settings"),
            ("GET", "/api/auth/me"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"
        assert resp.json == {"success": False, "error": "Authentication required"}

    def test_unknown_token_rejected(self, client, db_session):
        resp = client.get("/api/products", headers=auth_headers("not-a-real-token"))
        assert resp.status_code == 401
        assert resp.json["error"] == "Invalid or expired token"


class TestLogin:

    def test_login_returns_token_and_user(self, client, admin_user):
        resp = client.post("/api/auth/login", json={"username": "admin", "password": ADMIN_PASSWORD})

        assert resp.status_code == 200
        data = resp.json["data"]
        assert data["token"]
        assert data["user"]["username"] == "admin"
        assert data["expires_at"].endswith("Z")

    def test_wrong_password(self, client, admin_user):
        resp = client.post("/api/auth/login", json={"username": "admin", "password": "nope"})
        assert resp.status_code == 401
        assert resp.json["success"] is False

    def test_missing_fields(self, client, db_session):
        resp = client.post("/api/auth/login", json={"username": "admin"})
        assert resp.status_code == 400

    def test_logout_revokes_token(self, client, admin_headers):
        assert client.get("/api/auth/me", headers=admin_headers).status_code == 200

        client.post("/api/auth/logout", headers=admin_headers)

        assert client.get("/api/auth/me", headers=admin_headers).status_code == 401


class TestCashierDeniedAdminOperations:
    """Cashier role cannot perform admin operations."""

    def test_cannot_update_settings(self, client, cashier_headers):
        resp = client.put("/api/settings", json={"invoice_prefix": "X"}, headers=cashier_headers)
        assert resp.status_code == 403
        assert resp.json["error"] == "Admin privileges required"

    def test_cannot_delete_sale(self, client, cashier_headers):
        assert client.delete("/api/sales/1", headers=cashier_headers).status_code == 403

    def test_cannot_list_open_cash_boxes(self, client, cashier_headers):
        assert client.get("/api/cashbox/open-boxes", headers=cashier_headers).status_code == 403

    def test_admin_can_update_settings(self, client, admin_headers):
        resp = client.put("/api/settings", json={"invoice_prefix": "POS"}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["data"]["invoice_prefix"] == "POS"


# =============================================================================
# SYSTEM
# =============================================================================


class TestHealth:

    @pytest.mark.parametrize("path", ["/health", "/api/health", "/api/system/health"])
    def test_health_without_auth(self, client, db_session, path):
        resp = client.get(path)
        assert resp.status_code == 200
        assert resp.json["data"]["database"]["status"] == "healthy"

    def test_unknown_route_uses_envelope(self, client, db_session):
        resp = client.get("/api/nothing-here")
        assert resp.status_code == 404
        assert resp.json["success"] is False


# =============================================================================
# PRODUCTS AND STOCK
# =============================================================================


class TestProductApi:

    def test_create_with_opening_quantity(self, client, admin_headers, main_stock):
        resp = client.post("/api/products", json={
            "name": "Sugar 1kg", "sku": "SUG-1", "purchase_price": 2, "selling_price": 3, "current_stock": 40,
        }, headers=admin_headers)

        assert resp.status_code == 201
        product = resp.json["data"]
        assert product["current_stock"] == 40

        dist = client.get(f"/api/products/{product['id']}/stocks", headers=admin_headers)
        assert dist.status_code == 200

    def test_current_stock_cannot_be_edited(self, client, admin_headers, product):
        resp = client.put(f"/api/products/{product.id}", json={"current_stock": 500}, headers=admin_headers)
        assert resp.status_code == 400
        assert "stock movements" in resp.json["error"]

    def test_missing_product_is_404(self, client, admin_headers):
        resp = client.get("/api/products/9999", headers=admin_headers)
        assert resp.status_code == 404
        assert resp.json["success"] is False

    def test_list_is_paginated_on_request(self, client, admin_headers, product):
        resp = client.get("/api/products?page=1&per_page=10", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["data"]["count"] == 1
        assert resp.json["data"]["pagination"]["total"] == 1


class TestMovementApi:

    def _receive(self, client, headers, product, stock, quantity):
        return client.post("/api/stock-movements", json={
            "movement_type": "purchase", "product_id": product.id, "quantity": quantity, "to_stock_id": stock.id,
        }, headers=headers)

    def test_transfer_beyond_balance_returns_details(self, client, admin_headers, product, main_stock, secondary_stock):
        assert self._receive(client, admin_headers, product, main_stock, 10).status_code == 201

        resp = client.post("/api/stock-movements", json={
            "movement_type": "transfer", "product_id": product.id, "quantity": 11,
            "from_stock_id": main_stock.id, "to_stock_id": secondary_stock.id,
        }, headers=admin_headers)

        assert resp.status_code == 400
        assert resp.json["details"]["available"] == 10
        assert resp.json["details"]["requested"] == 11

    def test_fractional_quantity_rejected(self, client, admin_headers, product, main_stock):
        resp = self._receive(client, admin_headers, product, main_stock, 2.5)
        assert resp.status_code == 400

    def test_non_numeric_unit_cost_is_400(self, client, admin_headers, product, main_stock):
        resp = client.post("/api/stock-movements", json={
            "movement_type": "purchase", "product_id": product.id, "quantity": 1,
            "to_stock_id": main_stock.id, "unit_cost": "abc",
        }, headers=admin_headers)

        assert resp.status_code == 400
        assert resp.json == {"success": False, "error": "unit_cost must be a number"}

    def test_backdated_transfer_is_400(self, client, admin_headers, product, main_stock, secondary_stock):
        assert self._receive(client, admin_headers, product, main_stock, 10).status_code == 201

        resp = client.post("/api/stock-movements", json={
            "movement_type": "transfer", "product_id": product.id, "quantity": 10,
            "from_stock_id": main_stock.id, "to_stock_id": secondary_stock.id,
            "movement_date": "2020-01-01T00:00:00Z",
        }, headers=admin_headers)

        assert resp.status_code == 400
        assert resp.json["details"]["available"] == 0

    def test_reverse_endpoint(self, client, admin_headers, product, main_stock):
        movement = self._receive(client, admin_headers, product, main_stock, 3).json["data"]

        first = client.post(f"/api/stock-movements/{movement['id']}/reverse", headers=admin_headers)
        second = client.post(f"/api/stock-movements/{movement['id']}/reverse", headers=admin_headers)

        assert first.status_code == 201
        assert first.json["data"]["reference_number"] == f"REVERSE-{movement['id']}"
        assert second.status_code == 400


class TestSaleApi:

    def test_sale_and_return_round(self, client, cashier_headers, product, main_stock):
        client.post("/api/stock-movements", json={
            "movement_type": "purchase", "product_id": product.id, "quantity": 20, "to_stock_id": main_stock.id,
        }, headers=cashier_headers)

        resp = client.post("/api/sales", json={
            "items": [{"product_id": product.id, "quantity": 5, "price": 15}],
            "paid_amount": 75,
        }, headers=cashier_headers)
        assert resp.status_code == 201
        sale = resp.json["data"]
        assert sale["payment_status"] == "paid"

        ret = client.post(f"/api/sales/{sale['id']}/return", json={
            "items": [{"sale_item_id": sale["items"][0]["id"], "quantity": 2}],
        }, headers=cashier_headers)
        assert ret.status_code == 200
        assert ret.json["data"]["status"] == "partially_returned"

        detail = client.get(f"/api/products/{product.id}", headers=cashier_headers)
        assert detail.json["data"]["current_stock"] == 17

    def test_empty_sale_is_400(self, client, cashier_headers):
        resp = client.post("/api/sales", json={"items": []}, headers=cashier_headers)
        assert resp.status_code == 400
        assert resp.json == {"success": False, "error": "Sale must have at least one item"}

    def test_purchase_warnings_in_envelope(self, client, admin_headers, product, supplier):
        resp = client.post("/api/purchases", json={
            "supplier_id": supplier.id,
            "items": [{"product_id": product.id, "quantity": 200, "price": 10}],
        }, headers=admin_headers)

        assert resp.status_code == 201
        assert [w["code"] for w in resp.json["warnings"]] == ["CREDIT_LIMIT_EXCEEDED"]
