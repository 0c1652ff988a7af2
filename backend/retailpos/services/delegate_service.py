# Overview: Sales delegates (representatives), their customers and per-sale commissions.

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import func

from ..extensions import db
from ..models import Customer, Delegate, DelegateCommission, Sale
from ..time_utils import utcnow
from ..validation import ConflictError, NotFoundError, ValidationError, require_percent

logger = logging.getLogger(__name__)

COMMISSION_TYPES = ("percentage", "fixed")
DELEGATE_FIELDS = {
    "name", "phone", "email", "address", "commission_type", "commission_rate",
    "sales_target", "is_active", "notes",
}


def _check_commission(patch: dict) -> None:
    ctype = patch.get("commission_type")
    if ctype is not None and ctype not in COMMISSION_TYPES:
        raise ValidationError(f"commission_type must be one of {', '.join(COMMISSION_TYPES)}")
    rate = patch.get("commission_rate")
    if rate is not None:
        if ctype == "fixed":
            if rate < 0:
                raise ValidationError("commission_rate must be >= 0")
        else:
            require_percent(rate, "commission_rate")
    if patch.get("sales_target") is not None and patch["sales_target"] < 0:
        raise ValidationError("sales_target must be >= 0")


def get_delegate(delegate_id: int) -> Delegate:
    delegate = db.session.get(Delegate, delegate_id)
    if delegate is None:
        raise NotFoundError(f"Delegate {delegate_id} not found")
    return delegate


def list_delegates(*, search: str | None = None, include_inactive: bool = False) -> list[Delegate]:
    q = db.session.query(Delegate)
    if not include_inactive:
        q = q.filter(Delegate.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(Delegate.name.ilike(like) | Delegate.phone.ilike(like))
    return q.order_by(Delegate.name.asc()).all()


def create_delegate(patch: dict) -> Delegate:
    if not patch.get("name"):
        raise ValidationError("name is required")
    patch.setdefault("commission_type", "percentage")
    _check_commission(patch)
    delegate = Delegate()
    for k, v in patch.items():
        if k in DELEGATE_FIELDS:
            setattr(delegate, k, v)
    db.session.add(delegate)
    db.session.commit()
    return delegate


def update_delegate(delegate_id: int, patch: dict) -> Delegate:
    delegate = get_delegate(delegate_id)
    merged = {"commission_type": delegate.commission_type, **patch}
    _check_commission(merged)
    for k, v in patch.items():
        if k in DELEGATE_FIELDS:
            setattr(delegate, k, v)
    db.session.commit()
    return delegate


def delete_delegate(delegate_id: int) -> None:
    delegate = get_delegate(delegate_id)
    sales = db.session.query(func.count(Sale.id)).filter(Sale.delegate_id == delegate.id).scalar() or 0
    if sales:
        raise ConflictError(f"Cannot delete delegate with {sales} sale(s); deactivate instead")
    db.session.query(Customer).filter(Customer.delegate_id == delegate.id).update({"delegate_id": None})
    db.session.delete(delegate)
    db.session.commit()


def assign_customer(delegate_id: int, customer_id: int) -> Customer:
    delegate = get_delegate(delegate_id)
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found")
    customer.delegate_id = delegate.id
    db.session.commit()
    return customer


def commission_for(delegate: Delegate, sale_amount: float) -> float:
    if delegate.commission_type == "fixed":
        return round(delegate.commission_rate or 0.0, 2)
    return round(sale_amount * (delegate.commission_rate or 0.0) / 100.0, 2)


def record_commission(delegate_id: int, sale: Sale) -> DelegateCommission:
    """Stage the commission row for a sale. Does not commit."""
    delegate = get_delegate(delegate_id)
    if not delegate.is_active:
        raise ValidationError(f"Delegate {delegate_id} is inactive")
    existing = (
        db.session.query(DelegateCommission)
        .filter_by(delegate_id=delegate.id, sale_id=sale.id)
        .first()
    )
    if existing is not None:
        return existing
    row = DelegateCommission(
        delegate_id=delegate.id,
        sale_id=sale.id,
        sale_amount=sale.net_amount,
        commission_type=delegate.commission_type,
        commission_rate=delegate.commission_rate,
        commission_amount=commission_for(delegate, sale.net_amount),
        status="pending",
    )
    db.session.add(row)
    db.session.flush()
    return row


def calculate_commission(delegate_id: int, start: date | None = None, end: date | None = None) -> dict:
    """Sales and commission totals for a delegate over an optional invoice-date range."""
    delegate = get_delegate(delegate_id)
    q = (
        db.session.query(
            func.count(DelegateCommission.id),
            func.coalesce(func.sum(DelegateCommission.sale_amount), 0.0),
            func.coalesce(func.sum(DelegateCommission.commission_amount), 0.0),
        )
        .join(Sale, Sale.id == DelegateCommission.sale_id)
        .filter(DelegateCommission.delegate_id == delegate.id, Sale.status != "cancelled")
    )
    if start is not None:
        q = q.filter(Sale.invoice_date >= start)
    if end is not None:
        q = q.filter(Sale.invoice_date <= end)
    count, sales_total, commission_total = q.one()

    target = delegate.sales_target or 0.0
    return {
        "delegate_id": delegate.id,
        "delegate_name": delegate.name,
        "commission_type": delegate.commission_type,
        "commission_rate": delegate.commission_rate,
        "period": {
            "start": start.isoformat() if start else None,
            "end": end.isoformat() if end else None,
        },
        "total_sales": int(count),
        "total_sales_amount": round(float(sales_total), 2),
        "total_commission": round(float(commission_total), 2),
        "sales_target": delegate.sales_target,
        "target_achievement": round(float(sales_total) / target * 100.0, 2) if target > 0 else None,
    }


def mark_commissions_paid(delegate_id: int, start: date | None = None, end: date | None = None) -> int:
    get_delegate(delegate_id)
    q = (
        db.session.query(DelegateCommission)
        .join(Sale, Sale.id == DelegateCommission.sale_id)
        .filter(DelegateCommission.delegate_id == delegate_id, DelegateCommission.status == "pending")
    )
    if start is not None:
        q = q.filter(Sale.invoice_date >= start)
    if end is not None:
        q = q.filter(Sale.invoice_date <= end)
    rows = q.all()
    now = utcnow()
    for row in rows:
        row.status = "paid"
        row.paid_at = now
    db.session.commit()
    logger.info("Marked %s commission(s) paid for delegate %s", len(rows), delegate_id)
    return len(rows)


def list_commissions(delegate_id: int) -> list[DelegateCommission]:
    get_delegate(delegate_id)
    return (
        db.session.query(DelegateCommission)
        .filter(DelegateCommission.delegate_id == delegate_id)
        .order_by(DelegateCommission.created_at.desc(), DelegateCommission.id.desc())
        .all()
    )
