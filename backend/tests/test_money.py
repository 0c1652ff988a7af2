"""
Money storage tests.

Verifies:
- Amounts are stored as integer cents and read back in currency units
- Repeated small additions do not drift
- Cent rounding is half-up on the decimal value, not the binary float
- Money fields posted through the API are coerced and stored in cents
"""

import pytest

from retailpos.models import Customer, Product, Sale
from retailpos.models.money import from_cents, money_keys, to_cents
from retailpos.services import purchase_service, sales_service


@pytest.fixture
def stocked(db_session, product, supplier, main_stock):
    purchase_service.create_purchase({
        "supplier_id": supplier.id,
        "invoice_no": "SUP-10",
        "items": [{"product_id": product.id, "quantity": 10, "price": 10}],
    })
    return product


class TestCentsConversion:

    @pytest.mark.parametrize(
        "value,cents",
        [
            (0, 0),
            (0.1, 10),
            (1.005, 101),
            (0.125, 13),
            (2.675, 268),
            (-3.2, -320),
            ("12.50", 1250),
        ],
    )
    def test_to_cents(self, value, cents):
        assert to_cents(value) == cents

    def test_none_passes_through(self):
        assert to_cents(None) is None
        assert from_cents(None) is None

    def test_money_keys_lists_cents_columns(self):
        keys = money_keys(Product)
        assert keys["selling_price"] == "selling_price_cents"
        assert "min_stock" not in keys


class TestStoredAmounts:

    def test_balance_accumulates_without_drift(self, db_session, customer):
        for _ in range(10):
            customer.current_balance = customer.current_balance + 0.1
        db_session.commit()

        db_session.expire_all()
        reloaded = db_session.get(Customer, customer.id)
        assert reloaded.current_balance_cents == 100
        assert reloaded.current_balance == 1.0

    def test_sale_totals_stored_in_cents(self, db_session, stocked):
        sale = sales_service.create_sale({
            "items": [{"product_id": stocked.id, "quantity": 3, "price": 0.1}],
            "paid_amount": 0.3,
        })

        assert sale.net_amount_cents == 30
        assert sale.paid_amount_cents == 30
        assert sale.net_amount == 0.3
        assert sale.payment_status == "paid"

    def test_sql_expression_in_currency_units(self, db_session, stocked):
        sales_service.create_sale({"items": [{"product_id": stocked.id, "quantity": 2, "price": 15}]})

        assert db_session.query(Sale).filter(Sale.net_amount == 30.0).count() == 1
        assert db_session.query(Sale).filter(Sale.net_amount > 30.0).count() == 0


class TestMoneyPayloads:

    def test_string_price_stored_in_cents(self, client, admin_headers, db_session, main_stock):
        resp = client.post("/api/products", json={
            "name": "Tea 500g", "sku": "TEA-500", "purchase_price": "4.25", "selling_price": "6.10",
        }, headers=admin_headers)

        assert resp.status_code == 201
        assert resp.json["data"]["selling_price"] == 6.1

        product = db_session.get(Product, resp.json["data"]["id"])
        assert (product.purchase_price_cents, product.selling_price_cents) == (425, 610)

    def test_non_numeric_price_is_400(self, client, admin_headers, db_session, main_stock):
        resp = client.post("/api/products", json={
            "name": "Tea 500g", "sku": "TEA-501", "purchase_price": "cheap", "selling_price": 6,
        }, headers=admin_headers)

        assert resp.status_code == 400
        assert resp.json["error"] == "purchase_price must be a finite number"
