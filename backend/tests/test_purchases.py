"""
Purchase tests.

Verifies:
- Goods are received into the main stock unless a line names another
- Credit checks warn and never block
- (supplier, invoice_no) is unique
- Supplier balance moves by money paid and refunded
- A purchase is 'returned' when every line is back OR the value is covered
"""

import pytest

from retailpos.models import MoneyBoxTransaction, Product, Purchase, Supplier
from retailpos.services import purchase_service, stock_movement_service
from retailpos.services.money_box_service import InsufficientBalanceError
from retailpos.services.purchase_service import PurchaseError
from retailpos.services.stock_movement_service import InsufficientStockError
from retailpos.validation import ConflictError, NotFoundError, ValidationError


def _purchase(supplier, product, quantity=10, price=10, **extra):
    data = {
        "supplier_id": supplier.id,
        "items": [{"product_id": product.id, "quantity": quantity, "price": price}],
    }
    data.update(extra)
    return purchase_service.create_purchase(data)


class TestCreatePurchase:

    def test_goods_received_into_main_stock(self, db_session, product, supplier, main_stock):
        purchase, warnings = _purchase(supplier, product, quantity=20, invoice_no="A-1")

        assert warnings == []
        assert purchase.net_amount == 200.0
        assert purchase.payment_status == "unpaid"
        assert stock_movement_service.get_quantity(product.id, main_stock.id) == 20
        assert purchase.items[0].stock_id == main_stock.id

    def test_line_stock_overrides_main(self, db_session, product, supplier, main_stock, secondary_stock):
        purchase, _ = purchase_service.create_purchase({
            "supplier_id": supplier.id,
            "items": [{"product_id": product.id, "quantity": 4, "price": 10, "stock_id": secondary_stock.id}],
        })

        assert stock_movement_service.get_quantity(product.id, secondary_stock.id) == 4
        assert stock_movement_service.get_quantity(product.id, main_stock.id) == 0
        assert purchase.invoice_no.startswith("PUR")

    def test_missing_credit_limit_warns(self, db_session, product):
        supplier = Supplier(name="No Limit Co", credit_limit=None, current_balance=0.0)
        db_session.add(supplier)
        db_session.commit()

        purchase, warnings = _purchase(supplier, product)

        assert purchase.id is not None
        assert [w["code"] for w in warnings] == ["NO_CREDIT_LIMIT"]

    def test_exceeding_credit_limit_warns_but_saves(self, db_session, product, supplier):
        purchase, warnings = _purchase(supplier, product, quantity=101)

        assert [w["code"] for w in warnings] == ["CREDIT_LIMIT_EXCEEDED"]
        assert warnings[0]["projected_balance"] == 1010.0
        assert db_session.get(Purchase, purchase.id) is not None

    def test_duplicate_invoice_for_same_supplier_conflicts(self, db_session, product, supplier):
        _purchase(supplier, product, invoice_no="DUP-1")
        with pytest.raises(ConflictError):
            _purchase(supplier, product, invoice_no="DUP-1")
        assert db_session.query(Purchase).count() == 1

    def test_same_invoice_number_from_other_supplier_allowed(self, db_session, product, supplier):
        other = Supplier(name="Other Co", credit_limit=500.0, current_balance=0.0)
        db_session.add(other)
        db_session.commit()

        _purchase(supplier, product, invoice_no="INV-9")
        purchase, _ = _purchase(other, product, invoice_no="INV-9")

        assert purchase.supplier_id == other.id

    def test_unknown_supplier(self, db_session, product):
        with pytest.raises(NotFoundError):
            purchase_service.create_purchase({
                "supplier_id": 9999,
                "items": [{"product_id": product.id, "quantity": 1, "price": 1}],
            })

    def test_items_need_a_product(self, db_session, supplier):
        with pytest.raises(ValidationError):
            purchase_service.create_purchase({"supplier_id": supplier.id, "items": [{"quantity": 1, "price": 1}]})

    def test_payment_reduces_supplier_balance(self, db_session, product, supplier):
        purchase, _ = _purchase(supplier, product, paid_amount=40)

        assert purchase.payment_status == "partial"
        assert db_session.get(Supplier, supplier.id).current_balance == -40.0

    def test_purchase_price_follows_latest_when_below_selling(self, db_session, product, supplier):
        _purchase(supplier, product, price=12, invoice_no="P-1")
        assert db_session.get(Product, product.id).purchase_price == 12.0

        _purchase(supplier, product, price=20, invoice_no="P-2")
        assert db_session.get(Product, product.id).purchase_price == 12.0

    def test_payment_from_money_box(self, db_session, product, supplier, money_box):
        money_box.amount = 500.0
        db_session.commit()

        purchase, _ = _purchase(supplier, product, paid_amount=100, money_box_id=money_box.id)

        tx = db_session.query(MoneyBoxTransaction).filter_by(reference_type="purchase", reference_id=purchase.id).one()
        assert tx.transaction_type == "purchase"
        assert tx.balance_after == 400.0

    def test_empty_money_box_aborts_purchase(self, db_session, product, supplier, money_box):
        with pytest.raises(InsufficientBalanceError):
            _purchase(supplier, product, paid_amount=100, money_box_id=money_box.id)
        assert db_session.query(Purchase).count() == 0
        assert db_session.get(Product, product.id).current_stock == 0


class TestPurchasePayments:

    def test_update_payment_marks_paid(self, db_session, product, supplier):
        purchase, _ = _purchase(supplier, product)

        purchase_service.update_payment(purchase.id, 100)

        refreshed = db_session.get(Purchase, purchase.id)
        assert refreshed.payment_status == "paid"
        assert db_session.get(Supplier, supplier.id).current_balance == -100.0

    def test_update_payment_above_owed_rejected(self, db_session, product, supplier):
        purchase, _ = _purchase(supplier, product)
        with pytest.raises(ValidationError):
            purchase_service.update_payment(purchase.id, 101)


class TestPurchaseReturns:

    def test_partial_quantity_return(self, db_session, product, supplier, main_stock):
        purchase, _ = _purchase(supplier, product, quantity=10)

        result = purchase_service.process_return(
            purchase.id, [{"purchase_item_id": purchase.items[0].id, "quantity": 4}],
        )

        assert result["status"] == "partially_returned"
        assert result["total_amount"] == 40.0
        assert stock_movement_service.get_quantity(product.id, main_stock.id) == 6

    def test_full_quantity_return_marks_returned(self, db_session, product, supplier):
        purchase, _ = _purchase(supplier, product, quantity=5)

        result = purchase_service.process_return(
            purchase.id, [{"purchase_item_id": purchase.items[0].id, "quantity": 5}],
        )

        assert result["status"] == "returned"

    def test_all_lines_back_with_invoice_tax_still_returned(self, db_session, product, supplier):
        # Either condition is enough for purchases
        purchase, _ = _purchase(supplier, product, quantity=2, tax_amount=3)

        result = purchase_service.process_return(
            purchase.id, [{"purchase_item_id": purchase.items[0].id, "quantity": 2}],
        )

        assert result["status"] == "returned"

    def test_refund_goes_back_to_supplier_balance(self, db_session, product, supplier, money_box):
        purchase, _ = _purchase(supplier, product, quantity=10, paid_amount=100)

        result = purchase_service.process_return(
            purchase.id, [{"purchase_item_id": purchase.items[0].id, "quantity": 3}],
            money_box_id=money_box.id,
        )

        assert result["refund_amount"] == 30.0
        assert db_session.get(Supplier, supplier.id).current_balance == -70.0
        assert money_box.amount == 30.0

    def test_return_needs_goods_still_in_stock(self, db_session, product, supplier, main_stock, secondary_stock):
        purchase, _ = _purchase(supplier, product, quantity=5)
        stock_movement_service.record_movement(
            movement_type="transfer", product_id=product.id, quantity=5,
            from_stock_id=main_stock.id, to_stock_id=secondary_stock.id,
        )

        with pytest.raises(InsufficientStockError):
            purchase_service.process_return(
                purchase.id, [{"purchase_item_id": purchase.items[0].id, "quantity": 1}],
            )

    def test_over_return_rejected(self, db_session, product, supplier):
        purchase, _ = _purchase(supplier, product, quantity=2)
        with pytest.raises(PurchaseError):
            purchase_service.process_return(
                purchase.id, [{"purchase_item_id": purchase.items[0].id, "quantity": 3}],
            )


class TestDeletePurchase:

    def test_delete_reverses_receipt(self, db_session, product, supplier):
        purchase, _ = _purchase(supplier, product, quantity=8)

        purchase_service.delete_purchase(purchase.id)

        assert db_session.get(Purchase, purchase.id) is None
        assert db_session.get(Product, product.id).current_stock == 0

    def test_delete_blocked_once_goods_sold(self, db_session, product, supplier):
        purchase, _ = _purchase(supplier, product, quantity=8)
        stock_movement_service.record_movement(
            movement_type="sale", product_id=product.id, quantity=5, from_stock_id=product.stock_id,
        )

        with pytest.raises(InsufficientStockError):
            purchase_service.delete_purchase(purchase.id)
