# Overview: Installment plans that split a sale's remaining amount into dated payments.

from __future__ import annotations

import logging
from datetime import date, timedelta

from sqlalchemy import func

from ..extensions import db
from ..models import Installment, Sale
from ..time_utils import parse_iso_date, utcnow
from ..validation import ConflictError, NotFoundError, ValidationError, optional_id, require_amount, require_positive_int
from .concurrency import begin_write, run_with_retry
from .debt_service import apply_sale_payment, outstanding
from .invoice_service import payment_status
from .pagination import paginate

logger = logging.getLogger(__name__)

INSTALLMENT_INTERVAL_DAYS = 30
INSTALLMENT_STATUSES = ("unpaid", "partial", "paid")


def split_amount(total: float, count: int) -> list[float]:
    """Equal shares rounded to cents; the rounding remainder goes on the last one."""
    share = round(total / count, 2)
    parts = [share] * count
    parts[-1] = round(total - share * (count - 1), 2)
    return parts


def get_installment(installment_id: int) -> Installment:
    inst = db.session.get(Installment, installment_id)
    if inst is None:
        raise NotFoundError(f"Installment {installment_id} not found")
    return inst


def create_plan(
    sale_id: int,
    months,
    *,
    starting_due_date=None,
    total_amount=None,
    notes: str | None = None,
) -> list[Installment]:
    """
    Create `months` installments for a sale, due every 30 days from
    starting_due_date (default: 30 days from today).

    The plan covers the sale's remaining amount unless total_amount is given;
    it may not exceed what the sale still owes.
    """
    count = require_positive_int(months, "number_of_installments")
    if count > 120:
        raise ValidationError("number_of_installments cannot exceed 120")
    try:
        first_due = parse_iso_date(starting_due_date) if starting_due_date else None
    except ValueError:
        raise ValidationError("starting_due_date must be an ISO-8601 date (YYYY-MM-DD)")
    first_due = first_due or (utcnow().date() + timedelta(days=INSTALLMENT_INTERVAL_DAYS))

    def _op():
        begin_write()
        try:
            sale = db.session.get(Sale, sale_id)
            if sale is None:
                raise NotFoundError(f"Sale {sale_id} not found")
            if sale.customer_id is None:
                raise ValidationError("Installment plans need a sale with a customer")
            remaining = outstanding(sale)
            if remaining <= 0:
                raise ValidationError("Sale is already fully paid")
            open_plan = (
                db.session.query(func.count(Installment.id))
                .filter(Installment.sale_id == sale.id, Installment.payment_status != "paid")
                .scalar()
            )
            if open_plan:
                raise ConflictError(f"Sale {sale.id} already has an open installment plan")

            plan_total = remaining
            if total_amount is not None:
                plan_total = round(require_amount(total_amount, "total_amount"), 2)
                if plan_total > remaining + 0.005:
                    raise ValidationError(
                        f"Plan total {plan_total:.2f} exceeds the sale's remaining amount {remaining:.2f}"
                    )

            rows = []
            for i, amount in enumerate(split_amount(plan_total, count)):
                inst = Installment(
                    sale_id=sale.id,
                    customer_id=sale.customer_id,
                    due_date=first_due + timedelta(days=INSTALLMENT_INTERVAL_DAYS * i),
                    amount=amount,
                    paid_amount=0.0,
                    payment_status="unpaid",
                    notes=notes,
                )
                db.session.add(inst)
                rows.append(inst)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        logger.info("Installment plan for sale %s: %s x %.2f", sale_id, count, plan_total / count)
        return rows

    return run_with_retry(_op)


def record_payment(
    installment_id: int,
    amount,
    *,
    payment_method: str = "cash",
    notes: str | None = None,
    user_id: int | None = None,
) -> Installment:
    """Pay toward one installment. Overpaying the installment is rejected."""
    amount = round(require_amount(amount, "paid_amount"), 2)

    def _op():
        begin_write()
        try:
            inst = get_installment(installment_id)
            remaining = round(inst.amount - (inst.paid_amount or 0.0), 2)
            if remaining <= 0:
                raise ValidationError("Installment is already paid")
            if amount > remaining + 0.005:
                raise ValidationError(
                    f"Payment {amount:.2f} exceeds the installment's remaining amount {remaining:.2f}"
                )
            applied, _ = apply_sale_payment(inst.sale, amount)
            if applied + 0.005 < amount:
                raise ValidationError(
                    f"Payment {amount:.2f} exceeds what sale {inst.sale_id} still owes ({applied:.2f})"
                )
            inst.paid_amount = round((inst.paid_amount or 0.0) + amount, 2)
            inst.payment_status = payment_status(inst.paid_amount, inst.amount)
            inst.payment_method = payment_method
            inst.paid_at = utcnow()
            if notes:
                inst.notes = notes
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        logger.info("Installment %s paid %.2f by user %s (%s)", installment_id, amount, user_id, inst.payment_status)
        return inst

    return run_with_retry(_op)


def list_installments(filters: dict | None = None, page=None, per_page=None) -> dict:
    filters = filters or {}
    q = db.session.query(Installment)
    sale_id = optional_id(filters.get("sale_id"))
    if sale_id is not None:
        q = q.filter(Installment.sale_id == sale_id)
    customer_id = optional_id(filters.get("customer_id"))
    if customer_id is not None:
        q = q.filter(Installment.customer_id == customer_id)
    status = filters.get("payment_status")
    if status:
        if status not in INSTALLMENT_STATUSES:
            raise ValidationError(f"payment_status must be one of {', '.join(INSTALLMENT_STATUSES)}")
        q = q.filter(Installment.payment_status == status)
    q = q.order_by(Installment.due_date.asc(), Installment.id.asc())
    return paginate(q, page, per_page)


def get_overdue(as_of: date | None = None) -> list[Installment]:
    as_of = as_of or utcnow().date()
    return (
        db.session.query(Installment)
        .filter(Installment.due_date < as_of, Installment.payment_status != "paid")
        .order_by(Installment.due_date.asc())
        .all()
    )


def get_summary(as_of: date | None = None) -> dict:
    as_of = as_of or utcnow().date()
    count, total, paid = db.session.query(
        func.count(Installment.id),
        func.coalesce(func.sum(Installment.amount), 0.0),
        func.coalesce(func.sum(Installment.paid_amount), 0.0),
    ).one()
    overdue_count, overdue_amount = (
        db.session.query(
            func.count(Installment.id),
            func.coalesce(func.sum(Installment.amount - Installment.paid_amount), 0.0),
        )
        .filter(Installment.due_date < as_of, Installment.payment_status != "paid")
        .one()
    )
    return {
        "total_installments": int(count),
        "total_amount": round(float(total), 2),
        "total_paid": round(float(paid), 2),
        "total_remaining": round(float(total) - float(paid), 2),
        "overdue_count": int(overdue_count),
        "overdue_amount": round(float(overdue_amount), 2),
    }


def delete_installment(installment_id: int) -> None:
    inst = get_installment(installment_id)
    if (inst.paid_amount or 0.0) > 0:
        raise ConflictError("Cannot delete an installment that has payments")
    db.session.delete(inst)
    db.session.commit()
    logger.info("Installment %s deleted", installment_id)
