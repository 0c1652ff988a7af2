# Overview: Per-user cash drawer sessions and their transaction log.

from __future__ import annotations

import logging

from sqlalchemy import func

from ..extensions import db
from ..models import CashBox, CashBoxTransaction, User, UserCashBoxSettings
from ..time_utils import utcnow
from ..validation import NotFoundError, ValidationError, MAX_AMOUNT
from .concurrency import begin_write, lock_for_update, run_with_retry
from .pagination import paginate
from . import money_box_service
from .money_box_service import MoneyBoxError

"""
Cash box state machine and balance audit.

    closed --open_cash_box--> open --close_cash_box / force_close_cash_box--> closed

- A user has at most one open cash box (uq_cash_boxes_user_open).
- Every balance change is one cash_box_transactions row with
  balance_after = balance_before + amount (credit types) or
  balance_before - amount (debit types); 'adjustment' sets the balance to
  amount. cash_boxes.current_amount equals the latest balance_after.
- Session rows follow the same table: 'opening' credits the opening amount
  onto 0, and a counted close that differs from the book balance writes a
  'closing_surplus' (credit) or 'closing_shortage' (debit) for the difference.
- Zero amounts are rejected. A negative resulting balance is rejected
  unless the owner's settings allow it.
"""

logger = logging.getLogger(__name__)

CREDIT_TYPES = frozenset({
    "deposit", "sale", "customer_receipt", "purchase_return", "cash_deposit",
    "transfer_from", "transfer_from_cash_box", "transfer_from_daily_box",
    "transfer_from_money_box", "expense_reversal", "opening", "closing_surplus",
})
DEBIT_TYPES = frozenset({
    "withdrawal", "purchase", "expense", "expense_update", "supplier_payment",
    "sale_return", "transfer_to_cashier", "transfer_to_money_box", "transfer_to_bank",
    "cash_box_closing", "closing_shortage",
})
MANUAL_TYPES = ("deposit", "withdrawal", "adjustment")

SETTINGS_FIELDS = {
    "default_opening_amount": float,
    "require_opening_amount": bool,
    "require_closing_count": bool,
    "allow_negative_balance": bool,
    "max_withdrawal_amount": float,
    "auto_close_at_end_of_day": bool,
}


class CashBoxError(Exception):
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def signed_balance(transaction_type: str, balance_before: float, amount: float) -> float:
    """balance_after for a transaction type; raises ValidationError for unknown types."""
    if transaction_type in CREDIT_TYPES:
        return round(balance_before + amount, 2)
    if transaction_type in DEBIT_TYPES:
        return round(balance_before - amount, 2)
    if transaction_type == "adjustment":
        return round(amount, 2)
    raise ValidationError(f"Invalid cash box transaction type: {transaction_type}")


# =============================================================================
# SETTINGS
# =============================================================================

def get_settings(user_id: int) -> UserCashBoxSettings:
    """Per-user settings row, created with defaults on first access (flushes, no commit)."""
    settings = db.session.query(UserCashBoxSettings).filter_by(user_id=user_id).first()
    if settings is None:
        settings = UserCashBoxSettings(
            user_id=user_id,
            default_opening_amount=0.0,
            require_opening_amount=False,
            require_closing_count=False,
            allow_negative_balance=False,
            max_withdrawal_amount=0.0,
            auto_close_at_end_of_day=False,
        )
        db.session.add(settings)
        db.session.flush()
    return settings


def update_settings(user_id: int, data: dict) -> UserCashBoxSettings:
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    settings = get_settings(user_id)
    for key, kind in SETTINGS_FIELDS.items():
        if key not in data:
            continue
        value = data[key]
        if kind is bool:
            value = value if isinstance(value, bool) else str(value).strip().lower() in ("1", "true", "yes", "on")
        else:
            try:
                value = float(value)
            except (TypeError, ValueError):
                raise ValidationError(f"{key} must be a number")
            if value < 0 or value > MAX_AMOUNT:
                raise ValidationError(f"{key} must be between 0 and {MAX_AMOUNT:,.0f}")
        setattr(settings, key, value)
    db.session.commit()
    return settings


# =============================================================================
# SESSIONS
# =============================================================================

def get_user_cash_box(user_id: int) -> CashBox | None:
    return (
        db.session.query(CashBox)
        .filter(CashBox.user_id == user_id, CashBox.status == "open")
        .order_by(CashBox.opened_at.desc())
        .first()
    )


def get_cash_box(cash_box_id: int) -> CashBox:
    box = db.session.get(CashBox, cash_box_id)
    if box is None:
        raise NotFoundError(f"Cash box {cash_box_id} not found")
    return box


def _parse_amount(value, field: str, *, allow_zero: bool = True) -> float:
    if value is None or value == "":
        return 0.0
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number")
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationError(f"{field} must be {'>= 0' if allow_zero else '> 0'}")
    if amount > MAX_AMOUNT:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT:,.2f}")
    return round(amount, 2)


def open_cash_box(user_id: int, opening_amount=0, notes: str | None = None) -> CashBox:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")
    settings = get_settings(user_id)
    if opening_amount in (None, "") and settings.default_opening_amount:
        opening_amount = settings.default_opening_amount
    amount = _parse_amount(opening_amount, "opening_amount")
    if settings.require_opening_amount and amount <= 0:
        raise ValidationError("An opening amount is required")

    def _op():
        begin_write()
        try:
            if get_user_cash_box(user_id) is not None:
                raise CashBoxError("User already has an open cash box")
            now = utcnow()
            box = CashBox(
                user_id=user_id,
                name=f"{user.name or user.username} - cash box",
                status="open",
                initial_amount=amount,
                current_amount=amount,
                opened_at=now,
                opened_by=user_id,
                notes=notes,
            )
            db.session.add(box)
            db.session.flush()
            if amount > 0:
                db.session.add(CashBoxTransaction(
                    cash_box_id=box.id,
                    user_id=user_id,
                    transaction_type="opening",
                    amount=amount,
                    balance_before=0.0,
                    balance_after=signed_balance("opening", 0.0, amount),
                    reference_type="opening",
                    notes=notes,
                    created_at=now,
                ))
            db.session.commit()
        except (CashBoxError, ValidationError):
            db.session.rollback()
            raise
        logger.info("Cash box %s opened for user %s with %.2f", box.id, user_id, amount)
        return box

    return run_with_retry(_op)


def _close(box: CashBox, closing_amount: float, closed_by: int, notes: str | None) -> None:
    now = utcnow()
    difference = round(closing_amount - (box.current_amount or 0.0), 2)
    if difference != 0:
        closing_type = "closing_surplus" if difference > 0 else "closing_shortage"
        before = round(box.current_amount or 0.0, 2)
        db.session.add(CashBoxTransaction(
            cash_box_id=box.id,
            user_id=closed_by,
            transaction_type=closing_type,
            amount=abs(difference),
            balance_before=before,
            balance_after=signed_balance(closing_type, before, abs(difference)),
            reference_type="closing",
            notes=notes,
            created_at=now,
        ))
    box.status = "closed"
    box.closing_amount = closing_amount
    box.current_amount = closing_amount
    box.closed_at = now
    box.closed_by = closed_by
    if notes:
        box.notes = notes


def close_cash_box(user_id: int, closing_amount=None, notes: str | None = None) -> CashBox:
    """Close the user's open session. Without a counted amount the book balance is used."""
    def _op():
        begin_write()
        try:
            box = get_user_cash_box(user_id)
            if box is None:
                raise CashBoxError("No open cash box found")
            settings = get_settings(user_id)
            if closing_amount in (None, ""):
                if settings.require_closing_count:
                    raise ValidationError("A counted closing amount is required")
                counted = round(box.current_amount or 0.0, 2)
            else:
                counted = _parse_amount(closing_amount, "closing_amount")
            _close(box, counted, user_id, notes)
            db.session.commit()
        except (CashBoxError, ValidationError):
            db.session.rollback()
            raise
        logger.info("Cash box %s closed by user %s at %.2f", box.id, user_id, box.closing_amount)
        return box

    return run_with_retry(_op)


def force_close_cash_box(cash_box_id: int, admin_user_id: int, reason: str | None = None,
                         money_box_id: int | None = None) -> CashBox:
    """
    Admin close of any user's session. The balance is emptied to zero; when a
    money box is given the balance is deposited there in the same transaction.
    """
    def _op():
        begin_write()
        try:
            box = lock_for_update(db.session.query(CashBox).filter_by(id=cash_box_id)).first()
            if box is None:
                raise NotFoundError(f"Cash box {cash_box_id} not found")
            if box.status == "closed":
                raise CashBoxError("Cash box is already closed")
            balance = round(box.current_amount or 0.0, 2)
            if money_box_id and balance > 0:
                money_box_service.apply_transaction(
                    money_box_id, "transfer_from_cash_box", balance,
                    notes=f"Transfer from force-closed cash box {box.name}",
                    reference_type="cash_box", reference_id=box.id, user_id=admin_user_id,
                )
            _close(box, 0.0, admin_user_id, reason)
            db.session.commit()
        except (CashBoxError, MoneyBoxError, ValidationError, NotFoundError):
            db.session.rollback()
            raise
        logger.warning("Cash box %s force-closed by admin %s (moved %.2f to money box %s)",
                       box.id, admin_user_id, balance, money_box_id)
        return box

    return run_with_retry(_op)


# =============================================================================
# TRANSACTIONS
# =============================================================================

def apply_transaction(
    cash_box_id: int,
    user_id: int | None,
    transaction_type: str,
    amount,
    *,
    reference_type: str | None = None,
    reference_id: int | None = None,
    notes: str | None = None,
) -> CashBoxTransaction:
    """Stage one transaction against an open cash box. Does not commit."""
    if isinstance(amount, bool):
        raise ValidationError("amount must be a number")
    try:
        amount = float(amount)
    except (TypeError, ValueError):
        raise ValidationError("amount must be a number")
    if amount == 0:
        raise ValidationError("Transaction amount cannot be zero")
    if amount < 0:
        raise ValidationError("amount must be positive")
    if amount > MAX_AMOUNT:
        raise ValidationError(f"amount cannot exceed {MAX_AMOUNT:,.2f}")
    amount = round(amount, 2)

    box = lock_for_update(db.session.query(CashBox).filter_by(id=cash_box_id)).first()
    if box is None:
        raise NotFoundError(f"Cash box {cash_box_id} not found")
    if box.status != "open":
        raise CashBoxError("Cash box is not open")

    before = round(box.current_amount or 0.0, 2)
    after = signed_balance(transaction_type, before, amount)

    settings = get_settings(box.user_id)
    if after < 0 and not settings.allow_negative_balance:
        raise CashBoxError(
            "Transaction would result in negative balance",
            details={"balance_before": before, "amount": amount, "balance_after": after},
        )
    if (transaction_type == "withdrawal" and settings.max_withdrawal_amount
            and amount > settings.max_withdrawal_amount):
        raise CashBoxError(
            f"Withdrawal exceeds the allowed maximum of {settings.max_withdrawal_amount:.2f}",
            details={"max_withdrawal_amount": settings.max_withdrawal_amount},
        )

    box.current_amount = after
    tx = CashBoxTransaction(
        cash_box_id=box.id,
        user_id=user_id,
        transaction_type=transaction_type,
        amount=amount,
        balance_before=before,
        balance_after=after,
        reference_type=reference_type,
        reference_id=reference_id,
        notes=notes,
        created_at=utcnow(),
    )
    db.session.add(tx)
    db.session.flush()
    return tx


def add_transaction(
    cash_box_id: int,
    user_id: int | None,
    transaction_type: str,
    amount,
    reference_type: str | None = "manual",
    reference_id: int | None = None,
    notes: str | None = None,
) -> CashBoxTransaction:
    def _op():
        begin_write()
        try:
            tx = apply_transaction(
                cash_box_id, user_id, transaction_type, amount,
                reference_type=reference_type, reference_id=reference_id, notes=notes,
            )
            db.session.commit()
        except (CashBoxError, ValidationError, NotFoundError):
            db.session.rollback()
            raise
        logger.info("Cash box %s %s %.2f: %.2f -> %.2f",
                    cash_box_id, transaction_type, tx.amount, tx.balance_before, tx.balance_after)
        return tx

    return run_with_retry(_op)


def add_manual_transaction(user_id: int, transaction_type: str, amount, notes: str | None = None) -> CashBoxTransaction:
    if transaction_type not in MANUAL_TYPES:
        raise ValidationError(f"transaction_type must be one of {', '.join(MANUAL_TYPES)}")
    box = get_user_cash_box(user_id)
    if box is None:
        raise CashBoxError("No open cash box found")
    return add_transaction(box.id, user_id, transaction_type, amount, "manual", None, notes)


def transfer_to_money_box(user_id: int, money_box_id: int, amount, notes: str | None = None) -> dict:
    """Move cash from the user's open drawer into a money box atomically."""
    box = get_user_cash_box(user_id)
    if box is None:
        raise CashBoxError("No open cash box found")

    def _op():
        begin_write()
        try:
            cash_tx = apply_transaction(
                box.id, user_id, "transfer_to_money_box", amount,
                reference_type="money_box", reference_id=money_box_id, notes=notes,
            )
            money_tx = money_box_service.apply_transaction(
                money_box_id, "transfer_from_cash_box", cash_tx.amount,
                notes=notes or f"Transfer from {box.name}",
                reference_type="cash_box", reference_id=box.id, user_id=user_id,
            )
            db.session.commit()
        except (CashBoxError, MoneyBoxError, ValidationError, NotFoundError):
            db.session.rollback()
            raise
        return {"cash_box_transaction": cash_tx.to_dict(), "money_box_transaction": money_tx.to_dict()}

    return run_with_retry(_op)


def get_transactions(cash_box_id: int, page=None, per_page=None) -> dict:
    get_cash_box(cash_box_id)
    q = (
        db.session.query(CashBoxTransaction)
        .filter(CashBoxTransaction.cash_box_id == cash_box_id)
        .order_by(CashBoxTransaction.created_at.desc(), CashBoxTransaction.id.desc())
    )
    return paginate(q, page, per_page)


def get_summary(cash_box_id: int) -> dict:
    box = get_cash_box(cash_box_id)
    rows = (
        db.session.query(CashBoxTransaction.transaction_type, func.count(), func.sum(CashBoxTransaction.amount))
        .filter(CashBoxTransaction.cash_box_id == box.id)
        .group_by(CashBoxTransaction.transaction_type)
        .all()
    )
    by_type = {t: {"count": int(c), "total": round(float(s or 0.0), 2)} for t, c, s in rows}
    credits = sum(v["total"] for t, v in by_type.items() if t in CREDIT_TYPES)
    debits = sum(v["total"] for t, v in by_type.items() if t in DEBIT_TYPES)
    return {
        "cash_box": box.to_dict(),
        "total_deposits": round(credits, 2),
        "total_withdrawals": round(debits, 2),
        "by_type": by_type,
        "transaction_count": sum(v["count"] for v in by_type.values()),
    }


def list_open_cash_boxes() -> list[CashBox]:
    return db.session.query(CashBox).filter(CashBox.status == "open").order_by(CashBox.opened_at.asc()).all()


def get_history(user_id: int | None = None, page=None, per_page=None) -> dict:
    q = db.session.query(CashBox)
    if user_id is not None:
        q = q.filter(CashBox.user_id == user_id)
    q = q.order_by(CashBox.opened_at.desc(), CashBox.id.desc())
    return paginate(q, page, per_page)
