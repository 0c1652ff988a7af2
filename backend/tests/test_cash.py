"""
Cash box and money box tests.

Verifies:
- One open cash box per user
- Every balance change writes a transaction row with before/after balances
- Negative balances and oversized withdrawals are refused by default
- Drawer to safe transfers move both sides or neither
- Money boxes never go below zero
"""

import pytest

from retailpos.models import CashBox, CashBoxTransaction, MoneyBoxTransaction
from retailpos.services import cashbox_service, money_box_service
from retailpos.services.cashbox_service import CashBoxError
from retailpos.services.money_box_service import InsufficientBalanceError
from retailpos.validation import ConflictError, NotFoundError, ValidationError


class TestCashBoxSession:

    def test_open_records_opening_transaction(self, db_session, cashier_user):
        box = cashbox_service.open_cash_box(cashier_user.id, 250)

        assert box.status == "open"
        assert box.current_amount == 250.0
        tx = db_session.query(CashBoxTransaction).filter_by(cash_box_id=box.id).one()
        assert tx.transaction_type == "opening"
        assert (tx.balance_before, tx.balance_after) == (0.0, 250.0)

    def test_second_open_box_rejected(self, db_session, cashier_user):
        cashbox_service.open_cash_box(cashier_user.id, 0)
        with pytest.raises(CashBoxError):
            cashbox_service.open_cash_box(cashier_user.id, 0)

    def test_required_opening_amount(self, db_session, cashier_user):
        cashbox_service.update_settings(cashier_user.id, {"require_opening_amount": True})
        with pytest.raises(ValidationError):
            cashbox_service.open_cash_box(cashier_user.id, 0)

    def test_close_with_counted_difference(self, db_session, cashier_user):
        box = cashbox_service.open_cash_box(cashier_user.id, 100)

        cashbox_service.close_cash_box(cashier_user.id, 90, notes="short by 10")

        closed = db_session.get(CashBox, box.id)
        assert closed.status == "closed"
        assert closed.closing_amount == 90.0
        closing = db_session.query(CashBoxTransaction).filter_by(
            cash_box_id=box.id, transaction_type="closing_shortage"
        ).one()
        assert closing.amount == 10.0
        assert (closing.balance_before, closing.balance_after) == (100.0, 90.0)
        assert cashbox_service.get_user_cash_box(cashier_user.id) is None

    def test_close_with_surplus(self, db_session, cashier_user):
        box = cashbox_service.open_cash_box(cashier_user.id, 100)

        cashbox_service.close_cash_box(cashier_user.id, 104)

        closing = db_session.query(CashBoxTransaction).filter_by(
            cash_box_id=box.id, transaction_type="closing_surplus"
        ).one()
        assert (closing.balance_before, closing.amount, closing.balance_after) == (100.0, 4.0, 104.0)

    def test_every_row_follows_the_sign_table(self, db_session, cashier_user):
        box = cashbox_service.open_cash_box(cashier_user.id, 50)
        cashbox_service.add_manual_transaction(cashier_user.id, "deposit", 20)
        cashbox_service.add_manual_transaction(cashier_user.id, "withdrawal", 5)
        cashbox_service.close_cash_box(cashier_user.id, 60)

        rows = (
            db_session.query(CashBoxTransaction)
            .filter_by(cash_box_id=box.id)
            .order_by(CashBoxTransaction.id)
            .all()
        )
        assert [r.transaction_type for r in rows] == ["opening", "deposit", "withdrawal", "closing_shortage"]
        for row in rows:
            expected = cashbox_service.signed_balance(row.transaction_type, row.balance_before, row.amount)
            assert row.balance_after == expected
        assert db_session.get(CashBox, box.id).current_amount == rows[-1].balance_after

    def test_close_without_open_box(self, db_session, cashier_user):
        with pytest.raises(CashBoxError):
            cashbox_service.close_cash_box(cashier_user.id)

    def test_force_close_moves_balance_to_money_box(self, db_session, cashier_user, admin_user, money_box):
        box = cashbox_service.open_cash_box(cashier_user.id, 75)

        cashbox_service.force_close_cash_box(box.id, admin_user.id, reason="end of shift", money_box_id=money_box.id)

        assert db_session.get(CashBox, box.id).status == "closed"
        assert money_box.amount == 75.0
        with pytest.raises(CashBoxError):
            cashbox_service.force_close_cash_box(box.id, admin_user.id)


class TestCashBoxTransactions:

    def test_manual_deposit_and_withdrawal(self, db_session, cashier_user):
        box = cashbox_service.open_cash_box(cashier_user.id, 100)

        deposit = cashbox_service.add_manual_transaction(cashier_user.id, "deposit", 50)
        withdrawal = cashbox_service.add_manual_transaction(cashier_user.id, "withdrawal", 30)

        assert (deposit.balance_before, deposit.balance_after) == (100.0, 150.0)
        assert (withdrawal.balance_before, withdrawal.balance_after) == (150.0, 120.0)
        assert cashbox_service.get_cash_box(box.id).current_amount == 120.0

    def test_adjustment_sets_balance(self, db_session, cashier_user):
        cashbox_service.open_cash_box(cashier_user.id, 100)
        tx = cashbox_service.add_manual_transaction(cashier_user.id, "adjustment", 80)
        assert tx.balance_after == 80.0

    def test_negative_balance_refused(self, db_session, cashier_user):
        box = cashbox_service.open_cash_box(cashier_user.id, 20)

        with pytest.raises(CashBoxError) as exc_info:
            cashbox_service.add_manual_transaction(cashier_user.id, "withdrawal", 21)

        assert exc_info.value.details["balance_after"] == -1.0
        assert cashbox_service.get_cash_box(box.id).current_amount == 20.0

    def test_negative_balance_allowed_by_setting(self, db_session, cashier_user):
        cashbox_service.update_settings(cashier_user.id, {"allow_negative_balance": True})
        cashbox_service.open_cash_box(cashier_user.id, 0)

        tx = cashbox_service.add_manual_transaction(cashier_user.id, "withdrawal", 5)

        assert tx.balance_after == -5.0

    def test_withdrawal_cap(self, db_session, cashier_user):
        cashbox_service.update_settings(cashier_user.id, {"max_withdrawal_amount": 50})
        cashbox_service.open_cash_box(cashier_user.id, 500)

        with pytest.raises(CashBoxError):
            cashbox_service.add_manual_transaction(cashier_user.id, "withdrawal", 60)

    def test_unknown_manual_type(self, db_session, cashier_user):
        cashbox_service.open_cash_box(cashier_user.id, 10)
        with pytest.raises(ValidationError):
            cashbox_service.add_manual_transaction(cashier_user.id, "sale", 5)

    def test_transfer_to_money_box(self, db_session, cashier_user, money_box):
        box = cashbox_service.open_cash_box(cashier_user.id, 200)

        result = cashbox_service.transfer_to_money_box(cashier_user.id, money_box.id, 150)

        assert result["cash_box_transaction"]["balance_after"] == 50.0
        assert result["money_box_transaction"]["balance_after"] == 150.0
        assert cashbox_service.get_cash_box(box.id).current_amount == 50.0

    def test_transfer_to_missing_money_box_rolls_back(self, db_session, cashier_user):
        box = cashbox_service.open_cash_box(cashier_user.id, 200)

        with pytest.raises(NotFoundError):
            cashbox_service.transfer_to_money_box(cashier_user.id, 9999, 150)

        assert cashbox_service.get_cash_box(box.id).current_amount == 200.0

    def test_summary_groups_by_type(self, db_session, cashier_user):
        box = cashbox_service.open_cash_box(cashier_user.id, 100)
        cashbox_service.add_manual_transaction(cashier_user.id, "deposit", 40)
        cashbox_service.add_manual_transaction(cashier_user.id, "withdrawal", 15)

        summary = cashbox_service.get_summary(box.id)

        assert summary["by_type"]["deposit"] == {"count": 1, "total": 40.0}
        assert summary["total_withdrawals"] == 15.0
        assert summary["transaction_count"] == 3


class TestMoneyBoxes:

    def test_create_with_opening_amount(self, db_session):
        box = money_box_service.create_money_box("bank", amount=300)

        assert box.amount == 300.0
        assert money_box_service.get_summary(box.id)["statistics"]["total_deposits"] == 300.0

    def test_names_are_unique_case_insensitively(self, db_session, money_box):
        with pytest.raises(ConflictError):
            money_box_service.create_money_box("SAFE")

    def test_withdrawal_beyond_balance_refused(self, db_session, money_box):
        with pytest.raises(InsufficientBalanceError) as exc_info:
            money_box_service.add_transaction(money_box.id, "withdraw", 10)

        assert exc_info.value.details["available_balance"] == 0.0
        assert db_session.query(MoneyBoxTransaction).count() == 0

    def test_transfer_between_boxes(self, db_session, money_box):
        bank = money_box_service.create_money_box("bank", amount=500)

        result = money_box_service.transfer_between_boxes(bank.id, money_box.id, 200)

        assert result["from_box"]["amount"] == 300.0
        assert result["to_box"]["amount"] == 200.0
        assert result["withdrawal"]["related_box_id"] == money_box.id

    def test_transfer_to_same_box_rejected(self, db_session, money_box):
        with pytest.raises(ValidationError):
            money_box_service.transfer_between_boxes(money_box.id, money_box.id, 1)

    def test_box_with_history_cannot_be_deleted(self, db_session):
        bank = money_box_service.create_money_box("bank", amount=10)
        with pytest.raises(ConflictError):
            money_box_service.delete_money_box(bank.id)

    def test_all_balances_totals(self, db_session, money_box):
        money_box_service.create_money_box("bank", amount=120)
        money_box_service.add_transaction(money_box.id, "deposit", 30)

        balances = money_box_service.all_balances()

        assert balances["total_balance"] == 150.0
        assert {b["name"] for b in balances["boxes"]} == {"safe", "bank"}
