"""
Stock ledger tests.

Verifies:
- Per-stock quantities are derived from the movement ledger
- Transfers never take a source below zero and leave no row when rejected
- Reversals append a mirror row instead of deleting
- products.current_stock is a cache that recompute brings back in line
- Only one active main stock exists at a time
"""

from datetime import timedelta

import pytest

from retailpos.models import Product, Stock, StockMovement
from retailpos.services import stock_movement_service, stock_service
from retailpos.services.stock_movement_service import InsufficientStockError, StockMovementError
from retailpos.time_utils import utcnow
from retailpos.validation import ValidationError


def _receive(product, stock, quantity):
    return stock_movement_service.record_movement(
        movement_type="purchase",
        product_id=product.id,
        quantity=quantity,
        to_stock_id=stock.id,
        unit_cost=product.purchase_price,
    )


def _movement_count(db_session):
    return db_session.query(StockMovement).count()


class TestLedgerQuantities:

    def test_inbound_movement_adds_to_stock_and_cache(self, db_session, product, main_stock):
        movement = _receive(product, main_stock, 100)

        assert movement.to_stock_id == main_stock.id
        assert movement.from_stock_id is None
        assert movement.total_value == 1000.0
        assert stock_movement_service.get_quantity(product.id, main_stock.id) == 100
        assert db_session.get(Product, product.id).current_stock == 100

    def test_outbound_without_balance_is_rejected(self, db_session, product, main_stock):
        with pytest.raises(InsufficientStockError) as exc_info:
            stock_movement_service.record_movement(
                movement_type="sale", product_id=product.id, quantity=1, from_stock_id=main_stock.id,
            )
        assert exc_info.value.available == 0
        assert exc_info.value.requested == 1
        assert _movement_count(db_session) == 0

    def test_quantity_as_of_excludes_later_movements(self, db_session, product, main_stock):
        earlier = utcnow() - timedelta(days=2)
        stock_movement_service.record_movement(
            movement_type="purchase", product_id=product.id, quantity=40,
            to_stock_id=main_stock.id, movement_date=earlier,
        )
        _receive(product, main_stock, 10)

        as_of = earlier + timedelta(hours=1)
        assert stock_movement_service.get_quantity(product.id, main_stock.id, as_of=as_of) == 40
        assert stock_movement_service.get_quantity(product.id, main_stock.id) == 50

    @pytest.mark.parametrize("quantity", [0, -5, 1.5, True])
    def test_non_positive_or_fractional_quantity_rejected(self, db_session, product, main_stock, quantity):
        with pytest.raises(ValidationError):
            stock_movement_service.record_movement(
                movement_type="purchase", product_id=product.id, quantity=quantity, to_stock_id=main_stock.id,
            )

    @pytest.mark.parametrize("unit_cost", ["abc", -1, True])
    def test_bad_unit_cost_rejected(self, db_session, product, main_stock, unit_cost):
        with pytest.raises(ValidationError):
            stock_movement_service.record_movement(
                movement_type="purchase", product_id=product.id, quantity=1,
                to_stock_id=main_stock.id, unit_cost=unit_cost,
            )
        assert _movement_count(db_session) == 0

    def test_movement_needs_a_side(self, db_session, product):
        with pytest.raises(ValidationError):
            stock_movement_service.record_movement(movement_type="adjustment", product_id=product.id, quantity=1)


class TestTransfers:

    def test_transfer_moves_quantity_between_stocks(self, db_session, product, main_stock, secondary_stock):
        _receive(product, main_stock, 100)

        stock_movement_service.record_movement(
            movement_type="transfer", product_id=product.id, quantity=60,
            from_stock_id=main_stock.id, to_stock_id=secondary_stock.id,
        )

        assert stock_movement_service.get_quantity(product.id, main_stock.id) == 40
        assert stock_movement_service.get_quantity(product.id, secondary_stock.id) == 60
        refreshed = db_session.get(Product, product.id)
        # Transfers leave the total unchanged; the home stock follows the goods
        assert refreshed.current_stock == 100
        assert refreshed.stock_id == secondary_stock.id

    def test_transfer_exceeding_balance_leaves_no_row(self, db_session, product, main_stock, secondary_stock):
        _receive(product, main_stock, 60)
        before = _movement_count(db_session)

        with pytest.raises(InsufficientStockError) as exc_info:
            stock_movement_service.record_movement(
                movement_type="transfer", product_id=product.id, quantity=1000,
                from_stock_id=main_stock.id, to_stock_id=secondary_stock.id,
            )

        assert exc_info.value.details["available"] == 60
        assert _movement_count(db_session) == before
        assert stock_movement_service.get_quantity(product.id, main_stock.id) == 60

    def test_backdated_transfer_before_goods_arrived_rejected(self, db_session, product, main_stock, secondary_stock):
        _receive(product, main_stock, 10)
        before = _movement_count(db_session)

        with pytest.raises(StockMovementError) as exc_info:
            stock_movement_service.record_movement(
                movement_type="transfer", product_id=product.id, quantity=10,
                from_stock_id=main_stock.id, to_stock_id=secondary_stock.id,
                movement_date=utcnow() - timedelta(days=1),
            )

        assert exc_info.value.details["available"] == 0
        assert _movement_count(db_session) == before

    def test_backdated_outbound_cannot_undercut_later_movements(self, db_session, product, main_stock):
        stock_movement_service.record_movement(
            movement_type="purchase", product_id=product.id, quantity=10,
            to_stock_id=main_stock.id, movement_date=utcnow() - timedelta(days=3),
        )
        stock_movement_service.record_movement(
            movement_type="sale", product_id=product.id, quantity=8,
            from_stock_id=main_stock.id, movement_date=utcnow() - timedelta(days=1),
        )

        # 10 on hand two days ago, but taking 5 then would leave -3 after the later sale
        with pytest.raises(InsufficientStockError):
            stock_movement_service.record_movement(
                movement_type="damage", product_id=product.id, quantity=5,
                from_stock_id=main_stock.id, movement_date=utcnow() - timedelta(days=2),
            )
        stock_movement_service.record_movement(
            movement_type="damage", product_id=product.id, quantity=2,
            from_stock_id=main_stock.id, movement_date=utcnow() - timedelta(days=2),
        )
        assert stock_movement_service.get_quantity(product.id, main_stock.id) == 0

    def test_future_movement_date_rejected(self, db_session, product, main_stock):
        with pytest.raises(ValidationError):
            stock_movement_service.record_movement(
                movement_type="purchase", product_id=product.id, quantity=1,
                to_stock_id=main_stock.id, movement_date=utcnow() + timedelta(days=1),
            )

    def test_transfer_from_stock_without_product(self, db_session, product, main_stock, secondary_stock):
        with pytest.raises(StockMovementError, match="not found in source stock"):
            stock_movement_service.record_movement(
                movement_type="transfer", product_id=product.id, quantity=1,
                from_stock_id=secondary_stock.id, to_stock_id=main_stock.id,
            )

    def test_transfer_to_same_stock_rejected(self, db_session, product, main_stock):
        _receive(product, main_stock, 5)
        with pytest.raises(ValidationError):
            stock_movement_service.record_movement(
                movement_type="transfer", product_id=product.id, quantity=1,
                from_stock_id=main_stock.id, to_stock_id=main_stock.id,
            )

    def test_transfer_respects_destination_capacity(self, db_session, product, main_stock, secondary_stock):
        secondary_stock.capacity = 10
        db_session.commit()
        _receive(product, main_stock, 50)

        with pytest.raises(StockMovementError, match="capacity"):
            stock_movement_service.record_movement(
                movement_type="transfer", product_id=product.id, quantity=11,
                from_stock_id=main_stock.id, to_stock_id=secondary_stock.id,
            )


class TestReversal:

    def test_reverse_appends_mirror_movement(self, db_session, product, main_stock):
        original = _receive(product, main_stock, 25)

        reversal = stock_movement_service.reverse_movement(original.id)

        assert reversal.id != original.id
        assert reversal.movement_type == "purchase"
        assert reversal.from_stock_id == main_stock.id
        assert reversal.to_stock_id is None
        assert reversal.reference_type == "adjustment"
        assert reversal.reference_id == original.id
        assert reversal.reference_number == f"REVERSE-{original.id}"
        assert _movement_count(db_session) == 2
        assert stock_movement_service.get_quantity(product.id, main_stock.id) == 0

    def test_movement_reversed_only_once(self, db_session, product, main_stock):
        original = _receive(product, main_stock, 5)
        stock_movement_service.reverse_movement(original.id)

        with pytest.raises(StockMovementError, match="already been reversed"):
            stock_movement_service.reverse_movement(original.id)

    def test_reversing_consumed_transfer_checks_balance(self, db_session, product, main_stock, secondary_stock):
        _receive(product, main_stock, 10)
        transfer = stock_movement_service.record_movement(
            movement_type="transfer", product_id=product.id, quantity=10,
            from_stock_id=main_stock.id, to_stock_id=secondary_stock.id,
        )
        stock_movement_service.record_movement(
            movement_type="sale", product_id=product.id, quantity=4, from_stock_id=secondary_stock.id,
        )

        with pytest.raises(InsufficientStockError):
            stock_movement_service.reverse_movement(transfer.id)


class TestCacheRecompute:

    def test_recompute_fixes_drift(self, db_session, product, main_stock):
        _receive(product, main_stock, 30)
        row = db_session.get(Product, product.id)
        row.current_stock = 999
        db_session.commit()

        changed = stock_movement_service.recompute_product_cache()

        assert changed == 1
        assert db_session.get(Product, product.id).current_stock == 30

    def test_history_carries_running_balance(self, db_session, product, main_stock):
        _receive(product, main_stock, 10)
        stock_movement_service.record_movement(
            movement_type="sale", product_id=product.id, quantity=3, from_stock_id=main_stock.id,
        )

        history = stock_movement_service.get_product_history(product.id, stock_id=main_stock.id)

        assert [h["balance_after"] for h in history] == [7, 10]
        assert [h["delta"] for h in history] == [-3, 10]


class TestMainStock:

    def test_promoting_stock_demotes_previous_main(self, db_session, main_stock):
        new_main = stock_service.create_stock(patch={
            "name": "New main", "code": "nm1", "address": "Erbil", "is_main_stock": True,
        })

        mains = db_session.query(Stock).filter(Stock.is_main_stock.is_(True), Stock.is_active.is_(True)).all()
        assert [s.id for s in mains] == [new_main.id]
        assert db_session.get(Stock, main_stock.id).is_main_stock is False

    def test_main_stock_cannot_be_deleted(self, db_session, main_stock):
        from retailpos.validation import ConflictError
        with pytest.raises(ConflictError):
            stock_service.delete_stock(main_stock.id)

    def test_stock_with_goods_cannot_be_deleted(self, db_session, product, main_stock, secondary_stock):
        _receive(product, main_stock, 5)
        stock_movement_service.record_movement(
            movement_type="transfer", product_id=product.id, quantity=5,
            from_stock_id=main_stock.id, to_stock_id=secondary_stock.id,
        )
        from retailpos.validation import ConflictError
        with pytest.raises(ConflictError):
            stock_service.delete_stock(secondary_stock.id)

    def test_stock_products_lists_positive_balances(self, db_session, product, main_stock, secondary_stock):
        _receive(product, main_stock, 8)

        assert [p["id"] for p in stock_service.get_products(main_stock.id)] == [product.id]
        assert stock_service.get_products(main_stock.id)[0]["stock_quantity"] == 8
        assert stock_service.get_products(secondary_stock.id) == []
