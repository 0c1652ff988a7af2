"""
Report and bill tests.

Verifies:
- Dashboard figures are net of returns and cost kept goods at purchase price
- The inventory report values ledger quantities per stock
- The bill list merges sales and purchases and paginates the merged list
- Dashboard and bills respond through the API envelope
"""

from datetime import timedelta

import pytest

from retailpos.services import bills_service, purchase_service, reports_service, sales_service
from retailpos.services.reports_service import ReportError
from retailpos.time_utils import utcnow


@pytest.fixture
def trading_day(db_session, product, supplier, main_stock):
    """Buy 100 at 10, sell 4 at 15 fully paid, take 1 back."""
    purchase, _ = purchase_service.create_purchase({
        "supplier_id": supplier.id,
        "invoice_no": "SUP-100",
        "items": [{"product_id": product.id, "quantity": 100, "price": 10}],
    })
    sale = sales_service.create_sale({
        "items": [{"product_id": product.id, "quantity": 4, "price": 15}],
        "paid_amount": 60,
    })
    sales_service.process_return(sale.id, [{"sale_item_id": sale.items[0].id, "quantity": 1}])
    return purchase, sale


class TestDashboard:

    def test_empty_database(self, db_session):
        summary = reports_service.dashboard_summary()

        assert summary["sales"]["count"] == 0
        assert summary["cost_of_goods"] == 0.0
        assert summary["top_products"] == []
        assert summary["money_boxes"]["total_balance"] == 0.0

    def test_figures_after_sale_and_return(self, db_session, product, trading_day):
        summary = reports_service.dashboard_summary()

        sales = summary["sales"]
        assert sales["count"] == 1
        assert sales["gross_amount"] == 60.0
        assert sales["returns_amount"] == 15.0
        assert sales["net_amount"] == 45.0
        assert sales["collected_amount"] == 45.0
        assert sales["by_payment_status"] == {"paid": 1, "partial": 0, "unpaid": 0}
        assert summary["cost_of_goods"] == 30.0
        assert summary["gross_profit"] == 15.0
        assert summary["purchases"] == {"count": 1, "net_amount": 1000.0, "paid_amount": 0.0}
        assert summary["top_products"] == [
            {"product_id": product.id, "product_name": product.name, "quantity": 3, "revenue": 45.0}
        ]
        assert summary["low_stock_count"] == 0

    def test_range_excludes_other_days(self, db_session, trading_day):
        tomorrow = (utcnow().date() + timedelta(days=1)).isoformat()

        summary = reports_service.dashboard_summary(start=tomorrow)

        assert summary["sales"]["count"] == 0
        assert summary["purchases"]["count"] == 0

    def test_reversed_range_rejected(self, db_session):
        with pytest.raises(ReportError):
            reports_service.dashboard_summary(start="2026-02-01", end="2026-01-01")


class TestInventoryReport:

    def test_values_ledger_quantities(self, db_session, product, main_stock, trading_day):
        report = reports_service.inventory_report()

        assert report["count"] == 1
        row = report["items"][0]
        assert (row["stock_id"], row["product_id"], row["quantity"]) == (main_stock.id, product.id, 97)
        assert row["value"] == 970.0
        assert report["total_value"] == 970.0

    def test_returns_report(self, db_session, product, trading_day):
        rows = reports_service.returns_report()
        assert rows == [{"product_id": product.id, "product_name": product.name, "quantity": 1, "amount": 15.0}]


class TestBills:

    def test_list_merges_sales_and_purchases(self, db_session, trading_day):
        bills = bills_service.list_bills()

        assert bills["count"] == 2
        assert sorted(b["bill_kind"] for b in bills["items"]) == ["purchase", "sale"]
        assert bills_service.list_bills({"kind": "sale"})["count"] == 1

    def test_pagination_over_merged_list(self, db_session, trading_day):
        page = bills_service.list_bills(page=1, per_page=1)

        assert page["count"] == 1
        assert page["pagination"]["total"] == 2
        assert page["pagination"]["has_next"] is True

    def test_statistics(self, db_session, trading_day):
        stats = bills_service.get_statistics()

        assert stats["sales"]["count"] == 1
        assert stats["sales"]["net_amount"] == 60.0
        assert stats["sales"]["paid_amount"] == 45.0
        assert stats["purchases"]["net_amount"] == 1000.0
        assert stats["purchases"]["remaining_amount"] == 1000.0

    def test_returns_listed_with_kind(self, db_session, trading_day):
        rows = bills_service.list_returns()
        assert [r["bill_kind"] for r in rows] == ["sale"]


class TestReportApi:

    def test_dashboard_endpoint(self, client, admin_headers, trading_day):
        resp = client.get("/api/reports/dashboard", headers=admin_headers)

        assert resp.status_code == 200
        assert resp.json["success"] is True
        assert resp.json["data"]["sales"]["net_amount"] == 45.0

    def test_dashboard_on_empty_database(self, client, admin_headers):
        resp = client.get("/api/reports/dashboard", headers=admin_headers)
        assert resp.status_code == 200

    def test_bills_endpoint(self, client, admin_headers, trading_day):
        resp = client.get("/api/bills", headers=admin_headers)
        assert resp.status_code == 200
