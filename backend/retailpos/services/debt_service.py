# Overview: Customer debts on underpaid sales, plus the sale-payment bookkeeping shared with receipts and installments.

from __future__ import annotations

import logging

from sqlalchemy import case, func

from ..extensions import db
from ..models import Customer, Debt, Sale
from ..validation import NotFoundError, ValidationError, require_amount
from .concurrency import begin_write, run_with_retry
from .invoice_service import payment_status
from .pagination import paginate

"""
Sale payment invariants:
- A sale owes owed_total = max(net_amount - returned_amount, 0), where
  returned_amount is the sum of its return headers.
- 0 <= paid_amount <= owed_total after every payment operation.
- payment_status is recomputed from paid_amount vs owed_total on every
  change; a sale that owes nothing is 'paid'.
- An underpaid sale has exactly one debts row mirroring it
  (total_amount = owed_total, paid_amount = sale paid). A settled debt is
  kept with status 'paid'.
"""

logger = logging.getLogger(__name__)

DEBT_STATUSES = ("unpaid", "partial", "paid")


def returned_amount(sale: Sale) -> float:
    return round(sum(r.total_amount or 0.0 for r in sale.returns), 2)


def owed_total(sale: Sale) -> float:
    return round(max((sale.net_amount or 0.0) - returned_amount(sale), 0.0), 2)


def outstanding(sale: Sale) -> float:
    return round(max(owed_total(sale) - (sale.paid_amount or 0.0), 0.0), 2)


def _status_for(paid: float, owed: float) -> str:
    if owed <= 0:
        return "paid"
    return payment_status(paid, owed)


def sync_sale_debt(sale: Sale) -> Debt | None:
    """Bring payment_status and the debt row in line with the sale's amounts. Does not commit."""
    owed = owed_total(sale)
    paid = round(min(sale.paid_amount or 0.0, owed), 2)
    sale.payment_status = _status_for(paid, owed)

    debt = db.session.query(Debt).filter_by(sale_id=sale.id).first()
    remaining = round(owed - paid, 2)
    if debt is None:
        if remaining <= 0:
            return None
        debt = Debt(
            sale_id=sale.id,
            customer_id=sale.customer_id,
            total_amount=owed,
            paid_amount=paid,
            due_date=sale.due_date,
            notes=f"Invoice {sale.invoice_no}",
        )
        db.session.add(debt)
    else:
        debt.total_amount = owed
        debt.paid_amount = paid
    debt.status = _status_for(paid, owed)
    db.session.flush()
    return debt


def apply_sale_payment(sale: Sale, amount: float) -> tuple[float, float]:
    """
    Apply a received amount to a sale, capped at what it still owes.

    Returns (applied, excess). Adds the applied part to the customer's
    balance and re-syncs the debt row. Does not commit.
    """
    remaining = outstanding(sale)
    applied = round(min(amount, remaining), 2)
    excess = round(amount - applied, 2)
    if applied > 0:
        sale.paid_amount = round((sale.paid_amount or 0.0) + applied, 2)
        if sale.customer_id is not None:
            customer = db.session.get(Customer, sale.customer_id)
            if customer is not None:
                customer.current_balance = round((customer.current_balance or 0.0) + applied, 2)
    sync_sale_debt(sale)
    return applied, excess


# =============================================================================
# QUERIES
# =============================================================================

def get_debt(debt_id: int) -> Debt:
    debt = db.session.get(Debt, debt_id)
    if debt is None:
        raise NotFoundError(f"Debt {debt_id} not found")
    return debt


def list_debts(*, status: str | None = None, customer_id: int | None = None, page=None, per_page=None) -> dict:
    q = db.session.query(Debt)
    if status:
        if status not in DEBT_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(DEBT_STATUSES)}")
        q = q.filter(Debt.status == status)
    if customer_id is not None:
        q = q.filter(Debt.customer_id == customer_id)
    q = q.order_by(Debt.due_date.is_(None), Debt.due_date.asc(), Debt.id.desc())
    return paginate(q, page, per_page)


def get_statistics(customer_id: int | None = None) -> dict:
    q = db.session.query(
        func.count(Debt.id),
        func.sum(case((Debt.status == "unpaid", 1), else_=0)),
        func.sum(case((Debt.status == "partial", 1), else_=0)),
        func.sum(case((Debt.status == "paid", 1), else_=0)),
        func.coalesce(func.sum(Debt.total_amount - Debt.paid_amount), 0.0),
    )
    if customer_id is not None:
        q = q.filter(Debt.customer_id == customer_id)
    total, unpaid, partial, paid, outstanding_amount = q.one()
    return {
        "total_count": int(total or 0),
        "total_unpaid": int(unpaid or 0),
        "total_partial": int(partial or 0),
        "total_paid": int(paid or 0),
        "total_pending": int(unpaid or 0) + int(partial or 0),
        "total_outstanding_amount": round(float(outstanding_amount or 0.0), 2),
    }


# =============================================================================
# REPAYMENT
# =============================================================================

def repay_debt(
    debt_id: int,
    amount,
    *,
    payment_method: str = "cash",
    money_box_id: int | None = None,
    notes: str | None = None,
    user_id: int | None = None,
) -> dict:
    """
    Apply a payment to a debt. Amounts above the remaining balance are not
    applied and are reported back as excess_amount. A customer receipt is
    written for the applied part.
    """
    from . import receipt_service

    amount = require_amount(amount, "paid_amount")

    def _op():
        begin_write()
        try:
            debt = get_debt(debt_id)
            sale = debt.sale
            if debt.status == "paid" or outstanding(sale) <= 0:
                raise ValidationError("Debt is already fully paid")
            applied, excess = apply_sale_payment(sale, amount)
            receipt = None
            if applied > 0 and sale.customer_id is not None:
                receipt = receipt_service.stage_receipt(
                    customer_id=sale.customer_id,
                    sale_id=sale.id,
                    amount=applied,
                    payment_method=payment_method,
                    money_box_id=money_box_id,
                    notes=notes or f"Debt repayment for invoice {sale.invoice_no}",
                    user_id=user_id,
                )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        logger.info("Debt %s repaid %.2f (excess %.2f)", debt_id, applied, excess)
        return {
            "debt": debt.to_dict(),
            "receipt": receipt.to_dict() if receipt is not None else None,
            "applied_payments": [{"debt_id": debt.id, "sale_id": sale.id, "invoice_no": sale.invoice_no,
                                  "amount": applied}],
            "excess_amount": excess,
            "total_paid": amount,
        }

    return run_with_retry(_op)
