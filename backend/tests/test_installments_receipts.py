"""
Installment plans, customer receipts and delegate commissions.

All three feed money back into a sale, so they share the rules: a sale's
paid_amount never exceeds what it owes, the debt row follows the sale and
the customer balance grows by money received.
"""

from datetime import date, timedelta

import pytest

from retailpos.models import Debt, DelegateCommission, MoneyBoxTransaction
from retailpos.services import delegate_service, installment_service, receipt_service, sales_service
from retailpos.time_utils import utcnow
from retailpos.validation import ConflictError, ValidationError


def _credit_sale(customer, amount=300, paid=0, **extra):
    data = {
        "customer_id": customer.id,
        "items": [{"name": "Installation", "quantity": 1, "price": amount}],
        "paid_amount": paid,
    }
    data.update(extra)
    return sales_service.create_sale(data)


class TestInstallments:

    def test_split_amount_puts_remainder_last(self):
        assert installment_service.split_amount(100, 3) == [33.33, 33.33, 33.34]

    def test_plan_covers_remaining_amount(self, db_session, customer):
        sale = _credit_sale(customer, 300, paid=60)

        plan = installment_service.create_plan(sale.id, 3, starting_due_date="2026-01-10")

        assert [i.amount for i in plan] == [80.0, 80.0, 80.0]
        assert [i.due_date for i in plan] == [date(2026, 1, 10), date(2026, 2, 9), date(2026, 3, 11)]
        assert all(i.customer_id == customer.id for i in plan)

    def test_plan_requires_customer(self, db_session):
        sale = sales_service.create_sale({"items": [{"name": "Walk-in", "quantity": 1, "price": 10}]})
        with pytest.raises(ValidationError):
            installment_service.create_plan(sale.id, 2)

    def test_paid_sale_cannot_get_plan(self, db_session, customer):
        sale = _credit_sale(customer, 50, paid=50)
        with pytest.raises(ValidationError):
            installment_service.create_plan(sale.id, 2)

    def test_one_open_plan_per_sale(self, db_session, customer):
        sale = _credit_sale(customer)
        installment_service.create_plan(sale.id, 2)
        with pytest.raises(ConflictError):
            installment_service.create_plan(sale.id, 3)

    def test_payment_flows_to_sale_and_debt(self, db_session, customer):
        sale = _credit_sale(customer, 200)
        first, second = installment_service.create_plan(sale.id, 2)

        installment_service.record_payment(first.id, 100)

        assert first.payment_status == "paid"
        assert second.payment_status == "unpaid"
        assert sale.paid_amount == 100.0
        assert sale.payment_status == "partial"
        assert db_session.query(Debt).filter_by(sale_id=sale.id).one().paid_amount == 100.0
        assert customer.current_balance == 100.0

    def test_overpaying_installment_rejected(self, db_session, customer):
        sale = _credit_sale(customer, 200)
        first, _ = installment_service.create_plan(sale.id, 2)

        with pytest.raises(ValidationError):
            installment_service.record_payment(first.id, 150)
        assert sale.paid_amount == 0.0

    def test_overdue_and_summary(self, db_session, customer):
        sale = _credit_sale(customer, 90)
        start = utcnow().date() - timedelta(days=45)
        plan = installment_service.create_plan(sale.id, 3, starting_due_date=start.isoformat())

        overdue = installment_service.get_overdue()
        summary = installment_service.get_summary()

        assert [i.id for i in overdue] == [plan[0].id, plan[1].id]
        assert summary["total_installments"] == 3
        assert summary["overdue_count"] == 2
        assert summary["overdue_amount"] == 60.0

    def test_paid_installment_cannot_be_deleted(self, db_session, customer):
        sale = _credit_sale(customer, 100)
        first, second = installment_service.create_plan(sale.id, 2)
        installment_service.record_payment(first.id, 50)

        with pytest.raises(ConflictError):
            installment_service.delete_installment(first.id)
        installment_service.delete_installment(second.id)


class TestReceipts:

    def test_receipt_against_sale(self, db_session, customer, money_box):
        sale = _credit_sale(customer, 300)

        receipt = receipt_service.create_receipt({
            "customer_id": customer.id, "sale_id": sale.id, "amount": 120, "money_box_id": money_box.id,
        })

        assert receipt.receipt_no.startswith("CR")
        assert sale.paid_amount == 120.0
        assert customer.current_balance == 120.0
        assert money_box.amount == 120.0
        tx = db_session.query(MoneyBoxTransaction).filter_by(reference_id=receipt.id).one()
        assert tx.transaction_type == "customer_receipt"

    def test_receipt_above_remaining_rejected(self, db_session, customer):
        sale = _credit_sale(customer, 100)
        with pytest.raises(ValidationError):
            receipt_service.create_receipt({"customer_id": customer.id, "sale_id": sale.id, "amount": 101})

    def test_receipt_for_other_customers_sale_rejected(self, db_session, customer):
        from retailpos.models import Customer
        other = Customer(name="Someone Else", current_balance=0.0)
        db_session.add(other)
        db_session.commit()
        sale = _credit_sale(customer, 100)

        with pytest.raises(ValidationError):
            receipt_service.create_receipt({"customer_id": other.id, "sale_id": sale.id, "amount": 10})

    def test_delete_receipt_undoes_everything(self, db_session, customer, money_box):
        sale = _credit_sale(customer, 300)
        receipt = receipt_service.create_receipt({
            "customer_id": customer.id, "sale_id": sale.id, "amount": 300, "money_box_id": money_box.id,
        })
        assert sale.payment_status == "paid"

        receipt_service.delete_receipt(receipt.id)

        assert sale.paid_amount == 0.0
        assert sale.payment_status == "unpaid"
        assert customer.current_balance == 0.0
        assert money_box.amount == 0.0

    def test_receipt_numbers_are_sequential(self, db_session, customer):
        first = receipt_service.create_receipt({"customer_id": customer.id, "amount": 10})
        second = receipt_service.create_receipt({"customer_id": customer.id, "amount": 10})

        assert int(second.receipt_no[-4:]) == int(first.receipt_no[-4:]) + 1

    def test_customer_summary(self, db_session, customer):
        sale = _credit_sale(customer, 100)
        receipt_service.create_receipt({"customer_id": customer.id, "sale_id": sale.id, "amount": 40})

        summary = receipt_service.customer_summary(customer.id)

        assert summary["total_receipts"] == 1
        assert summary["total_received"] == 40.0
        assert summary["outstanding_debt"] == 60.0


class TestDelegateCommissions:

    def test_percentage_commission_recorded_with_sale(self, db_session, customer):
        delegate = delegate_service.create_delegate({"name": "Omar", "commission_rate": 5, "sales_target": 1000})

        sale = _credit_sale(customer, 400, delegate_id=delegate.id)

        row = db_session.query(DelegateCommission).filter_by(sale_id=sale.id).one()
        assert row.commission_amount == 20.0
        report = delegate_service.calculate_commission(delegate.id)
        assert report["total_sales_amount"] == 400.0
        assert report["target_achievement"] == 40.0

    def test_fixed_commission(self, db_session, customer):
        delegate = delegate_service.create_delegate({
            "name": "Sara", "commission_type": "fixed", "commission_rate": 7.5,
        })
        _credit_sale(customer, 400, delegate_id=delegate.id)

        assert delegate_service.calculate_commission(delegate.id)["total_commission"] == 7.5

    def test_invalid_commission_type(self, db_session):
        with pytest.raises(ValidationError):
            delegate_service.create_delegate({"name": "X", "commission_type": "bonus"})

    def test_mark_paid_then_delete_blocked(self, db_session, customer):
        delegate = delegate_service.create_delegate({"name": "Omar", "commission_rate": 5})
        _credit_sale(customer, 100, delegate_id=delegate.id)

        assert delegate_service.mark_commissions_paid(delegate.id) == 1
        assert delegate_service.mark_commissions_paid(delegate.id) == 0
        with pytest.raises(ConflictError):
            delegate_service.delete_delegate(delegate.id)
