# Overview: Customer payment receipts (numbered CRyyyymmNNNN), optionally banked into a money box.

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import func

from ..extensions import db
from ..models import Customer, CustomerReceipt, Debt, Sale
from ..time_utils import parse_iso_date, utcnow
from ..validation import NotFoundError, ValidationError, optional_id, require_amount
from .concurrency import begin_write, run_with_retry
from .debt_service import apply_sale_payment, outstanding, sync_sale_debt
from .pagination import paginate
from . import money_box_service

logger = logging.getLogger(__name__)

RECEIPT_PAYMENT_METHODS = ("cash", "card", "bank_transfer", "check")


def next_receipt_number(day: date | None = None) -> str:
    day = day or utcnow().date()
    stem = f"CR{day:%Y}{day:%m}"
    count = (
        db.session.query(func.count(CustomerReceipt.id))
        .filter(CustomerReceipt.receipt_no.like(f"{stem}%"))
        .scalar()
        or 0
    )
    seq = count + 1
    while db.session.query(CustomerReceipt.id).filter_by(receipt_no=f"{stem}{seq:04d}").first():
        seq += 1
    return f"{stem}{seq:04d}"


def stage_receipt(
    *,
    customer_id: int,
    amount: float,
    sale_id: int | None = None,
    receipt_date: date | None = None,
    payment_method: str = "cash",
    reference_no: str | None = None,
    money_box_id: int | None = None,
    notes: str | None = None,
    user_id: int | None = None,
) -> CustomerReceipt:
    """
    Insert the receipt row and, when a money box is given, the matching
    customer_receipt deposit. Balances on the sale/customer are the caller's
    job. Does not commit.
    """
    if payment_method not in RECEIPT_PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of {', '.join(RECEIPT_PAYMENT_METHODS)}")
    receipt = CustomerReceipt(
        receipt_no=next_receipt_number(receipt_date),
        customer_id=customer_id,
        sale_id=sale_id,
        receipt_date=receipt_date or utcnow().date(),
        amount=round(amount, 2),
        payment_method=payment_method,
        reference_no=reference_no,
        money_box_id=money_box_id,
        notes=notes,
        created_by=user_id,
    )
    db.session.add(receipt)
    db.session.flush()
    if money_box_id:
        money_box_service.apply_transaction(
            money_box_id, "customer_receipt", receipt.amount,
            notes=f"Receipt {receipt.receipt_no}",
            reference_type="customer_receipt", reference_id=receipt.id, user_id=user_id,
        )
    return receipt


def create_receipt(data: dict, user_id: int | None = None) -> CustomerReceipt:
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    customer_id = optional_id(data.get("customer_id"))
    if customer_id is None:
        raise ValidationError("customer_id is required")
    amount = require_amount(data.get("amount"), "amount")
    sale_id = optional_id(data.get("sale_id"))
    money_box_id = optional_id(data.get("money_box_id"))
    try:
        receipt_date = parse_iso_date(data.get("receipt_date")) if data.get("receipt_date") else None
    except ValueError:
        raise ValidationError("receipt_date must be an ISO-8601 date (YYYY-MM-DD)")

    def _op():
        begin_write()
        try:
            customer = db.session.get(Customer, customer_id)
            if customer is None:
                raise NotFoundError(f"Customer {customer_id} not found")
            if sale_id is not None:
                sale = db.session.get(Sale, sale_id)
                if sale is None:
                    raise NotFoundError(f"Sale {sale_id} not found")
                if sale.customer_id != customer.id:
                    raise ValidationError("Sale does not belong to this customer")
                remaining = outstanding(sale)
                if amount > remaining + 0.005:
                    raise ValidationError(
                        f"Receipt amount {amount:.2f} exceeds the remaining amount {remaining:.2f}"
                    )
                apply_sale_payment(sale, amount)
            else:
                customer.current_balance = round((customer.current_balance or 0.0) + amount, 2)

            receipt = stage_receipt(
                customer_id=customer.id,
                sale_id=sale_id,
                amount=amount,
                receipt_date=receipt_date,
                payment_method=data.get("payment_method") or "cash",
                reference_no=data.get("reference_no"),
                money_box_id=money_box_id,
                notes=data.get("notes"),
                user_id=user_id,
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        logger.info("Receipt %s: %.2f from customer %s", receipt.receipt_no, amount, customer_id)
        return receipt

    return run_with_retry(_op)


def get_receipt(receipt_id: int) -> CustomerReceipt:
    receipt = db.session.get(CustomerReceipt, receipt_id)
    if receipt is None:
        raise NotFoundError(f"Customer receipt {receipt_id} not found")
    return receipt


def list_receipts(filters: dict | None = None, page=None, per_page=None) -> dict:
    filters = filters or {}
    q = db.session.query(CustomerReceipt)
    customer_id = optional_id(filters.get("customer_id"))
    if customer_id is not None:
        q = q.filter(CustomerReceipt.customer_id == customer_id)
    if filters.get("payment_method"):
        q = q.filter(CustomerReceipt.payment_method == filters["payment_method"])
    try:
        start = parse_iso_date(filters.get("date_from")) if filters.get("date_from") else None
        end = parse_iso_date(filters.get("date_to")) if filters.get("date_to") else None
    except ValueError:
        raise ValidationError("date_from/date_to must be ISO-8601 dates")
    if start is not None:
        q = q.filter(CustomerReceipt.receipt_date >= start)
    if end is not None:
        q = q.filter(CustomerReceipt.receipt_date <= end)
    q = q.order_by(CustomerReceipt.receipt_date.desc(), CustomerReceipt.id.desc())
    return paginate(q, page, per_page)


def delete_receipt(receipt_id: int, user_id: int | None = None) -> None:
    """Undo a receipt: the sale payment, the customer balance and any money-box deposit."""
    def _op():
        begin_write()
        try:
            receipt = get_receipt(receipt_id)
            if receipt.sale_id is not None:
                sale = db.session.get(Sale, receipt.sale_id)
                sale.paid_amount = round(max((sale.paid_amount or 0.0) - receipt.amount, 0.0), 2)
                sync_sale_debt(sale)
            customer = db.session.get(Customer, receipt.customer_id)
            if customer is not None:
                customer.current_balance = round((customer.current_balance or 0.0) - receipt.amount, 2)
            if receipt.money_box_id:
                money_box_service.apply_transaction(
                    receipt.money_box_id, "withdrawal", receipt.amount,
                    notes=f"Reversal of receipt {receipt.receipt_no}",
                    reference_type="customer_receipt", reference_id=receipt.id, user_id=user_id,
                )
            db.session.delete(receipt)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        logger.info("Receipt %s deleted", receipt_id)

    run_with_retry(_op)


def customer_summary(customer_id: int) -> dict:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found")
    count, total, last_date = (
        db.session.query(
            func.count(CustomerReceipt.id),
            func.coalesce(func.sum(CustomerReceipt.amount), 0.0),
            func.max(CustomerReceipt.receipt_date),
        )
        .filter(CustomerReceipt.customer_id == customer.id)
        .one()
    )
    debt_outstanding = (
        db.session.query(func.coalesce(func.sum(Debt.total_amount - Debt.paid_amount), 0.0))
        .filter(Debt.customer_id == customer.id, Debt.status != "paid")
        .scalar()
    )
    return {
        "customer_id": customer.id,
        "customer_name": customer.name,
        "current_balance": customer.current_balance,
        "total_receipts": int(count),
        "total_received": round(float(total), 2),
        "last_receipt_date": last_date.isoformat() if last_date else None,
        "outstanding_debt": round(float(debt_outstanding or 0.0), 2),
    }
