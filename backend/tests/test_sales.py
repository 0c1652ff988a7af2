"""
Sales tests.

Covers the sale lifecycle against the stock ledger: creation, payments and
debts, returns and their status rules, and deletion.
"""

import pytest

from retailpos.models import CashBoxTransaction, Debt, Product, Sale, StockMovement
from retailpos.services import (
    cashbox_service,
    debt_service,
    purchase_service,
    sales_service,
    stock_movement_service,
)
from retailpos.services.sales_service import SaleError
from retailpos.services.stock_movement_service import InsufficientStockError
from retailpos.validation import ConflictError, ValidationError


def _stock_up(product, supplier, quantity=100):
    purchase, _ = purchase_service.create_purchase({
        "supplier_id": supplier.id,
        "invoice_no": "SUP-001",
        "items": [{"product_id": product.id, "quantity": quantity, "price": 10}],
    })
    return purchase


def _sell(product, quantity, **extra):
    data = {"items": [{"product_id": product.id, "quantity": quantity, "price": 15}]}
    data.update(extra)
    return sales_service.create_sale(data)


class TestSaleLifecycle:

    def test_purchase_sell_return_transfer_scenario(self, db_session, product, supplier, main_stock, secondary_stock):
        _stock_up(product, supplier, 100)
        assert db_session.get(Product, product.id).current_stock == 100

        sale = _sell(product, 30, paid_amount=450)
        assert sale.net_amount == 450.0
        assert db_session.get(Product, product.id).current_stock == 70

        item_id = sale.items[0].id
        result = sales_service.process_return(sale.id, [{"sale_item_id": item_id, "quantity": 10}])
        assert result["status"] == "partially_returned"
        assert result["refund_amount"] == 150.0
        assert result["new_sale_amounts"]["total"] == 300.0
        assert result["new_sale_amounts"]["payment_status"] == "paid"
        assert db_session.get(Product, product.id).current_stock == 80

        before = db_session.query(StockMovement).count()
        with pytest.raises(InsufficientStockError):
            stock_movement_service.record_movement(
                movement_type="transfer", product_id=product.id, quantity=1000,
                from_stock_id=main_stock.id, to_stock_id=secondary_stock.id,
            )
        assert db_session.query(StockMovement).count() == before
        assert stock_movement_service.get_quantity(product.id, main_stock.id) == 80

    def test_sale_writes_one_movement_per_line(self, db_session, product, supplier, main_stock):
        _stock_up(product, supplier)
        sale = _sell(product, 4)

        moves = db_session.query(StockMovement).filter_by(reference_type="sale", reference_id=sale.id).all()
        assert len(moves) == 1
        assert moves[0].from_stock_id == main_stock.id
        assert moves[0].quantity == 4
        assert moves[0].reference_number == sale.invoice_no

    def test_overselling_aborts_whole_sale(self, db_session, product, supplier):
        _stock_up(product, supplier, 5)

        with pytest.raises(InsufficientStockError):
            _sell(product, 6)

        assert db_session.query(Sale).count() == 0
        assert db_session.get(Product, product.id).current_stock == 5

    def test_manual_line_skips_ledger(self, db_session):
        sale = sales_service.create_sale({"items": [{"name": "Gift wrap", "quantity": 1, "price": 2}]})

        assert sale.items[0].product_id is None
        assert sale.items[0].product_name == "Gift wrap"
        assert db_session.query(StockMovement).count() == 0

    def test_empty_sale_rejected(self, db_session):
        with pytest.raises(ValidationError):
            sales_service.create_sale({"items": []})

    def test_overpayment_rejected(self, db_session, product, supplier):
        _stock_up(product, supplier)
        with pytest.raises(ValidationError):
            _sell(product, 1, paid_amount=16)

    def test_duplicate_barcode_conflicts(self, db_session, product, supplier):
        _stock_up(product, supplier)
        _sell(product, 1, barcode="SALE-1")
        with pytest.raises(ConflictError):
            _sell(product, 1, barcode="SALE-1")

    def test_invoice_numbers_are_unique(self, db_session, product, supplier):
        _stock_up(product, supplier)
        first = _sell(product, 1)
        second = _sell(product, 1)
        assert first.invoice_no != second.invoice_no
        assert sales_service.get_by_invoice(second.invoice_no).id == second.id


class TestPaymentsAndDebts:

    def test_underpaid_sale_creates_debt(self, db_session, product, supplier, customer):
        _stock_up(product, supplier)
        sale = _sell(product, 10, customer_id=customer.id, paid_amount=50)

        assert sale.payment_status == "partial"
        debt = db_session.query(Debt).filter_by(sale_id=sale.id).one()
        assert debt.total_amount == 150.0
        assert debt.paid_amount == 50.0
        assert debt.status == "partial"
        assert customer.current_balance == 50.0

    def test_fully_paid_sale_has_no_debt(self, db_session, product, supplier, customer):
        _stock_up(product, supplier)
        sale = _sell(product, 2, customer_id=customer.id, paid_amount=30)

        assert sale.payment_status == "paid"
        assert db_session.query(Debt).filter_by(sale_id=sale.id).count() == 0

    def test_update_payment_settles_debt(self, db_session, product, supplier, customer):
        _stock_up(product, supplier)
        sale = _sell(product, 10, customer_id=customer.id)
        assert sale.payment_status == "unpaid"

        sales_service.update_payment(sale.id, 150)

        debt = db_session.query(Debt).filter_by(sale_id=sale.id).one()
        assert sale.payment_status == "paid"
        assert debt.status == "paid"
        assert customer.current_balance == 150.0

    def test_repay_debt_reports_excess(self, db_session, product, supplier, customer):
        _stock_up(product, supplier)
        sale = _sell(product, 10, customer_id=customer.id, paid_amount=100)
        debt = db_session.query(Debt).filter_by(sale_id=sale.id).one()

        result = debt_service.repay_debt(debt.id, 80)

        assert result["applied_payments"][0]["amount"] == 50.0
        assert result["excess_amount"] == 30.0
        assert result["debt"]["status"] == "paid"
        assert result["receipt"]["amount"] == 50.0
        with pytest.raises(ValidationError):
            debt_service.repay_debt(debt.id, 10)

    def test_cash_sale_lands_in_open_cash_box(self, db_session, product, supplier, cashier_user):
        _stock_up(product, supplier)
        box = cashbox_service.open_cash_box(cashier_user.id, 100)

        sales_service.create_sale(
            {"items": [{"product_id": product.id, "quantity": 2, "price": 15}], "paid_amount": 30},
            user_id=cashier_user.id,
        )

        tx = db_session.query(CashBoxTransaction).filter_by(cash_box_id=box.id, transaction_type="sale").one()
        assert tx.amount == 30.0
        assert cashbox_service.get_cash_box(box.id).current_amount == 130.0


class TestReturns:

    def test_full_return_marks_sale_returned(self, db_session, product, supplier, customer):
        _stock_up(product, supplier)
        sale = _sell(product, 3, customer_id=customer.id, paid_amount=45)

        result = sales_service.process_return(sale.id, [{"sale_item_id": sale.items[0].id, "quantity": 3}])

        assert result["status"] == "returned"
        assert result["refund_amount"] == 45.0
        assert customer.current_balance == 0.0
        assert db_session.get(Product, product.id).current_stock == 100

    def test_full_return_of_taxed_sale_is_returned(self, db_session, product, supplier):
        _stock_up(product, supplier)
        # Refunds are valued at line price, so they never reach a taxed net amount
        sale = sales_service.create_sale({
            "items": [{"product_id": product.id, "quantity": 2, "price": 10, "tax_percent": 10}],
            "paid_amount": 22,
        })
        assert sale.net_amount == 22.0

        result = sales_service.process_return(sale.id, [{"sale_item_id": sale.items[0].id, "quantity": 2}])

        assert result["status"] == "returned"
        assert sale.items[0].returned_quantity == 2

    def test_partial_quantity_below_net_stays_partial(self, db_session, product, supplier):
        _stock_up(product, supplier)
        sale = _sell(product, 4)

        result = sales_service.process_return(sale.id, [{"sale_item_id": sale.items[0].id, "quantity": 3}])

        assert result["status"] == "partially_returned"

    def test_return_beyond_remaining_rejected_as_a_whole(self, db_session, product, supplier):
        _stock_up(product, supplier)
        sale = _sell(product, 5)
        item_id = sale.items[0].id
        sales_service.process_return(sale.id, [{"sale_item_id": item_id, "quantity": 3}])

        with pytest.raises(SaleError) as exc_info:
            sales_service.process_return(sale.id, [
                {"sale_item_id": item_id, "quantity": 1},
                {"sale_item_id": item_id, "quantity": 2},
            ])

        assert exc_info.value.details["remaining"] == 2
        assert db_session.get(Sale, sale.id).items[0].returned_quantity == 3
        assert len(sales_service.list_returns(sale.id)) == 1

    def test_unknown_line_rejected(self, db_session, product, supplier):
        _stock_up(product, supplier)
        sale = _sell(product, 1)
        with pytest.raises(ValidationError):
            sales_service.process_return(sale.id, [{"sale_item_id": 9999, "quantity": 1}])

    def test_returned_sale_cannot_be_returned_again(self, db_session, product, supplier):
        _stock_up(product, supplier)
        sale = _sell(product, 1)
        sales_service.process_return(sale.id, [{"sale_item_id": sale.items[0].id, "quantity": 1}])

        with pytest.raises(SaleError):
            sales_service.process_return(sale.id, [{"sale_item_id": sale.items[0].id, "quantity": 1}])


class TestDeleteSale:

    def test_delete_restores_stock(self, db_session, product, supplier):
        _stock_up(product, supplier)
        sale = _sell(product, 7)

        sales_service.delete_sale(sale.id)

        assert db_session.get(Sale, sale.id) is None
        assert db_session.get(Product, product.id).current_stock == 100

    def test_paid_sale_needs_force(self, db_session, product, supplier, customer):
        _stock_up(product, supplier)
        sale = _sell(product, 2, customer_id=customer.id, paid_amount=30)

        with pytest.raises(ConflictError):
            sales_service.delete_sale(sale.id)

        sales_service.delete_sale(sale.id, force=True)
        assert customer.current_balance == 0.0
        assert db_session.get(Product, product.id).current_stock == 100
