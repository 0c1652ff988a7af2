# Overview: Shared money boxes (daily box, safe, bank) and their append-only transaction log.

from __future__ import annotations

import logging

from sqlalchemy import func

from ..extensions import db
from ..models import MoneyBox, MoneyBoxTransaction
from ..time_utils import parse_iso_datetime, utcnow
from ..validation import ConflictError, NotFoundError, ValidationError, require_amount
from .concurrency import begin_write, lock_for_update, run_with_retry
from .pagination import paginate

"""
Money box invariants:
- amount >= 0 at all times; an outbound transaction larger than the
  balance is rejected (InsufficientBalanceError).
- Every balance change writes exactly one money_box_transactions row with
  balance_before/balance_after; money_boxes.amount equals the balance_after
  of the latest row.
- A transfer writes a transfer_to_money_box row on the source and a
  transfer_from_money_box row on the destination in one transaction.
"""

logger = logging.getLogger(__name__)

INBOUND_TYPES = frozenset({
    "deposit", "transfer_in", "cash_deposit", "transfer_from", "transfer_from_cash_box",
    "transfer_from_daily_box", "transfer_from_money_box", "expense_reversal",
    "customer_receipt", "sale", "purchase_return",
})
OUTBOUND_TYPES = frozenset({
    "withdraw", "withdrawal", "transfer_out", "transfer_to_cashier", "transfer_to_money_box",
    "transfer_to_bank", "cash_box_closing", "expense", "expense_update", "purchase",
    "supplier_payment", "sale_return",
})
TRANSACTION_TYPES = INBOUND_TYPES | OUTBOUND_TYPES


class MoneyBoxError(Exception):
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class InsufficientBalanceError(MoneyBoxError):
    def __init__(self, box: MoneyBox, required: float):
        super().__init__(
            f"Insufficient balance in money box '{box.name}': available {box.amount:.2f}, required {required:.2f}",
            details={"money_box_id": box.id, "available_balance": box.amount, "required_amount": required},
        )


def get_money_box(box_id: int) -> MoneyBox:
    box = db.session.get(MoneyBox, box_id)
    if box is None:
        raise NotFoundError(f"Money box {box_id} not found")
    return box


def get_by_name(name: str) -> MoneyBox | None:
    return db.session.query(MoneyBox).filter(func.lower(MoneyBox.name) == name.lower()).first()


def list_money_boxes() -> list[MoneyBox]:
    return db.session.query(MoneyBox).order_by(MoneyBox.is_default.desc(), MoneyBox.name.asc()).all()


def apply_transaction(
    box_id: int,
    transaction_type: str,
    amount,
    *,
    notes: str | None = None,
    related_box_id: int | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    user_id: int | None = None,
) -> MoneyBoxTransaction:
    """Stage a balance change and its log row. Does not commit."""
    if transaction_type not in TRANSACTION_TYPES:
        raise ValidationError(f"Invalid money box transaction type: {transaction_type}")
    amount = require_amount(amount, "amount")

    box = lock_for_update(db.session.query(MoneyBox).filter_by(id=box_id)).first()
    if box is None:
        raise NotFoundError(f"Money box {box_id} not found")

    before = round(box.amount or 0.0, 2)
    if transaction_type in OUTBOUND_TYPES:
        if before < amount:
            raise InsufficientBalanceError(box, amount)
        after = round(before - amount, 2)
    else:
        after = round(before + amount, 2)

    box.amount = after
    tx = MoneyBoxTransaction(
        box_id=box.id,
        transaction_type=transaction_type,
        amount=amount,
        balance_before=before,
        balance_after=after,
        related_box_id=related_box_id,
        reference_type=reference_type,
        reference_id=reference_id,
        notes=notes,
        created_by=user_id,
        created_at=utcnow(),
    )
    db.session.add(tx)
    db.session.flush()
    return tx


def add_transaction(
    box_id: int,
    transaction_type: str,
    amount,
    *,
    notes: str | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    user_id: int | None = None,
) -> MoneyBoxTransaction:
    def _op():
        begin_write()
        try:
            tx = apply_transaction(
                box_id, transaction_type, amount,
                notes=notes, reference_type=reference_type, reference_id=reference_id, user_id=user_id,
            )
            db.session.commit()
        except (MoneyBoxError, ValidationError, NotFoundError):
            db.session.rollback()
            raise
        logger.info("Money box %s %s %.2f -> %.2f", box_id, transaction_type, tx.amount, tx.balance_after)
        return tx

    return run_with_retry(_op)


def create_money_box(name: str, amount=0, notes: str | None = None, user_id: int | None = None,
                     is_default: bool = False) -> MoneyBox:
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required")
    opening = require_amount(amount or 0, "amount", allow_zero=True)
    if get_by_name(name) is not None:
        raise ConflictError(f"Money box '{name}' already exists")

    def _op():
        begin_write()
        try:
            box = MoneyBox(name=name, amount=0.0, notes=notes, created_by=user_id, is_default=is_default)
            db.session.add(box)
            db.session.flush()
            if opening > 0:
                apply_transaction(box.id, "deposit", opening, notes="Initial deposit", user_id=user_id)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return box

    return run_with_retry(_op)


def update_money_box(box_id: int, *, name: str | None = None, notes: str | None = None) -> MoneyBox:
    box = get_money_box(box_id)
    if name is not None:
        name = name.strip()
        if not name:
            raise ValidationError("name cannot be blank")
        other = get_by_name(name)
        if other is not None and other.id != box.id:
            raise ConflictError(f"Money box '{name}' already exists")
        box.name = name
    if notes is not None:
        box.notes = notes
    db.session.commit()
    return box


def delete_money_box(box_id: int) -> None:
    box = get_money_box(box_id)
    count = (
        db.session.query(func.count(MoneyBoxTransaction.id))
        .filter(MoneyBoxTransaction.box_id == box.id)
        .scalar()
        or 0
    )
    if count:
        raise ConflictError("Cannot delete a money box that has transactions")
    db.session.delete(box)
    db.session.commit()


def transfer_between_boxes(from_box_id: int, to_box_id: int, amount, notes: str | None = None,
                           user_id: int | None = None) -> dict:
    if from_box_id == to_box_id:
        raise ValidationError("Cannot transfer to the same money box")
    amount = require_amount(amount, "amount")
    from_box = get_money_box(from_box_id)
    to_box = get_money_box(to_box_id)

    def _op():
        begin_write()
        try:
            out_tx = apply_transaction(
                from_box.id, "transfer_to_money_box", amount,
                notes=f"Transfer to {to_box.name}" + (f": {notes}" if notes else ""),
                related_box_id=to_box.id, user_id=user_id,
            )
            in_tx = apply_transaction(
                to_box.id, "transfer_from_money_box", amount,
                notes=f"Transfer from {from_box.name}" + (f": {notes}" if notes else ""),
                related_box_id=from_box.id, user_id=user_id,
            )
            db.session.commit()
        except (MoneyBoxError, ValidationError, NotFoundError):
            db.session.rollback()
            raise
        logger.info("Transferred %.2f from money box %s to %s", amount, from_box.id, to_box.id)
        return {
            "from_box": from_box.to_dict(),
            "to_box": to_box.to_dict(),
            "withdrawal": out_tx.to_dict(),
            "deposit": in_tx.to_dict(),
        }

    return run_with_retry(_op)


def get_transactions(box_id: int, filters: dict | None = None, page=None, per_page=None) -> dict:
    get_money_box(box_id)
    filters = filters or {}
    q = db.session.query(MoneyBoxTransaction).filter(MoneyBoxTransaction.box_id == box_id)
    if filters.get("type"):
        q = q.filter(MoneyBoxTransaction.transaction_type == filters["type"])
    try:
        start = parse_iso_datetime(filters.get("start_date"))
        end = parse_iso_datetime(filters.get("end_date"))
    except ValueError:
        raise ValidationError("start_date/end_date must be ISO-8601")
    if start is not None:
        q = q.filter(MoneyBoxTransaction.created_at >= start)
    if end is not None:
        q = q.filter(MoneyBoxTransaction.created_at <= end)
    q = q.order_by(MoneyBoxTransaction.created_at.desc(), MoneyBoxTransaction.id.desc())
    return paginate(q, page, per_page)


def get_summary(box_id: int) -> dict:
    box = get_money_box(box_id)
    rows = (
        db.session.query(MoneyBoxTransaction.transaction_type, func.count(), func.sum(MoneyBoxTransaction.amount))
        .filter(MoneyBoxTransaction.box_id == box.id)
        .group_by(MoneyBoxTransaction.transaction_type)
        .all()
    )
    deposits = sum(float(total or 0) for t, _, total in rows if t in INBOUND_TYPES)
    withdrawals = sum(float(total or 0) for t, _, total in rows if t in OUTBOUND_TYPES)
    return {
        "money_box": box.to_dict(),
        "statistics": {
            "total_transactions": sum(int(c) for _, c, _ in rows),
            "total_deposits": round(deposits, 2),
            "total_withdrawals": round(withdrawals, 2),
            "current_balance": box.amount,
        },
    }


def all_balances() -> dict:
    boxes = list_money_boxes()
    return {
        "boxes": [b.to_dict() for b in boxes],
        "total_balance": round(sum(b.amount or 0.0 for b in boxes), 2),
    }
