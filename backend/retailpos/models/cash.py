from __future__ import annotations

from ..extensions import db
from .money import cents_column, money
from ..time_utils import to_utc_z


class CashBox(db.Model):
    """
    A per-user cash drawer session.

    One open session per user, enforced by uq_cash_boxes_user_open.
    current_amount always equals balance_after of the latest transaction.
    """
    __tablename__ = "cash_boxes"
    __table_args__ = (
        db.Index(
            "uq_cash_boxes_user_open",
            "user_id",
            unique=True,
            sqlite_where=db.text("status = 'open'"),
            postgresql_where=db.text("status = 'open'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="open")

    initial_amount_cents = cents_column()
    initial_amount = money("initial_amount_cents")
    current_amount_cents = cents_column()
    current_amount = money("current_amount_cents")
    closing_amount_cents = cents_column(nullable=True, default=None)
    closing_amount = money("closing_amount_cents")

    opened_at = db.Column(db.DateTime, nullable=False)
    closed_at = db.Column(db.DateTime, nullable=True)
    opened_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    closed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User", foreign_keys=[user_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "username": self.user.username if self.user else None,
            "name": self.name,
            "status": self.status,
            "initial_amount": self.initial_amount,
            "current_amount": self.current_amount,
            "closing_amount": self.closing_amount,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at),
            "opened_by": self.opened_by,
            "closed_by": self.closed_by,
            "notes": self.notes,
        }


class CashBoxTransaction(db.Model):
    """Append-only cash box log with balance snapshots."""
    __tablename__ = "cash_box_transactions"
    __table_args__ = (
        db.CheckConstraint("amount_cents >= 0", name="ck_cash_box_transactions_amount"),
        db.Index("ix_cash_box_transactions_box_created", "cash_box_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cash_box_id = db.Column(db.Integer, db.ForeignKey("cash_boxes.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    transaction_type = db.Column(db.String(32), nullable=False, index=True)
    amount_cents = cents_column(default=None)
    amount = money("amount_cents")
    balance_before_cents = cents_column(default=None)
    balance_before = money("balance_before_cents")
    balance_after_cents = cents_column(default=None)
    balance_after = money("balance_after_cents")
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cash_box_id": self.cash_box_id,
            "user_id": self.user_id,
            "transaction_type": self.transaction_type,
            "amount": self.amount,
            "balance_before": self.balance_before,
            "balance_after": self.balance_after,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class UserCashBoxSettings(db.Model):
    __tablename__ = "user_cash_box_settings"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True)
    default_opening_amount_cents = cents_column()
    default_opening_amount = money("default_opening_amount_cents")
    require_opening_amount = db.Column(db.Boolean, nullable=False, default=False)
    require_closing_count = db.Column(db.Boolean, nullable=False, default=False)
    allow_negative_balance = db.Column(db.Boolean, nullable=False, default=False)
    max_withdrawal_amount_cents = cents_column()
    max_withdrawal_amount = money("max_withdrawal_amount_cents")
    auto_close_at_end_of_day = db.Column(db.Boolean, nullable=False, default=False)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "default_opening_amount": self.default_opening_amount,
            "require_opening_amount": self.require_opening_amount,
            "require_closing_count": self.require_closing_count,
            "allow_negative_balance": self.allow_negative_balance,
            "max_withdrawal_amount": self.max_withdrawal_amount,
            "auto_close_at_end_of_day": self.auto_close_at_end_of_day,
        }


class MoneyBox(db.Model):
    """Shared, non-user-scoped cash ledger (daily box, safe, bank)."""
    __tablename__ = "money_boxes"
    __table_args__ = (
        db.CheckConstraint("amount_cents >= 0", name="ck_money_boxes_amount_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128, collation="NOCASE"), nullable=False, unique=True)
    amount_cents = cents_column()
    amount = money("amount_cents")
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "amount": self.amount,
            "is_default": self.is_default,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class MoneyBoxTransaction(db.Model):
    __tablename__ = "money_box_transactions"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_money_box_transactions_amount_positive"),
        db.Index("ix_money_box_transactions_box_created", "box_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    box_id = db.Column(db.Integer, db.ForeignKey("money_boxes.id"), nullable=False)
    transaction_type = db.Column(db.String(32), nullable=False, index=True)
    amount_cents = cents_column(default=None)
    amount = money("amount_cents")
    balance_before_cents = cents_column(default=None)
    balance_before = money("balance_before_cents")
    balance_after_cents = cents_column(default=None)
    balance_after = money("balance_after_cents")
    related_box_id = db.Column(db.Integer, db.ForeignKey("money_boxes.id"), nullable=True)
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "box_id": self.box_id,
            "transaction_type": self.transaction_type,
            "amount": self.amount,
            "balance_before": self.balance_before,
            "balance_after": self.balance_after,
            "related_box_id": self.related_box_id,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
