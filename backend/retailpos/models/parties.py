from __future__ import annotations

from ..extensions import db
from .money import cents_column, money
from ..time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer master data.

    current_balance accumulates money received from the customer: sale
    payments, debt repayments and receipts add to it, refunds subtract.
    Outstanding amounts live on sales and debts.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_name", "name"),
        db.Index("ix_customers_phone", "phone"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(128), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    customer_type = db.Column(db.String(16), nullable=False, default="retail")
    tax_number = db.Column(db.String(64), nullable=True)

    credit_limit_cents = cents_column(nullable=True, default=None)
    credit_limit = money("credit_limit_cents")
    current_balance_cents = cents_column()
    current_balance = money("current_balance_cents")

    delegate_id = db.Column(db.Integer, db.ForeignKey("delegates.id"), nullable=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    delegate = db.relationship("Delegate", backref=db.backref("customers", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "address": self.address,
            "customer_type": self.customer_type,
            "tax_number": self.tax_number,
            "credit_limit": self.credit_limit,
            "current_balance": self.current_balance,
            "delegate_id": self.delegate_id,
            "is_active": self.is_active,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Supplier(db.Model):
    """
    Supplier master data.

    credit_limit NULL means unlimited credit. current_balance decreases by
    every payment made to the supplier and increases by refunds received.
    """
    __tablename__ = "suppliers"
    __table_args__ = (
        db.Index("ix_suppliers_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    contact_person = db.Column(db.String(128), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(128), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    tax_number = db.Column(db.String(64), nullable=True)

    credit_limit_cents = cents_column(nullable=True, default=None)
    credit_limit = money("credit_limit_cents")
    current_balance_cents = cents_column()
    current_balance = money("current_balance_cents")

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    notes = db.Column(db.Text, nullable=True)

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
            "contact_person": self.contact_person,
            "phone": self.phone,
            "email": self.email,
            "address": self.address,
            "tax_number": self.tax_number,
            "credit_limit": self.credit_limit,
            "current_balance": self.current_balance,
            "is_active": self.is_active,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Delegate(db.Model):
    """Sales representative. commission_type is 'percentage' or 'fixed'."""
    __tablename__ = "delegates"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(128), nullable=True)
    address = db.Column(db.String(255), nullable=True)

    commission_type = db.Column(db.String(16), nullable=False, default="percentage")
    commission_rate = db.Column(db.Float, nullable=False, default=0.0)
    sales_target_cents = cents_column(nullable=True, default=None)
    sales_target = money("sales_target_cents")

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "address": self.address,
            "commission_type": self.commission_type,
            "commission_rate": self.commission_rate,
            "sales_target": self.sales_target,
            "is_active": self.is_active,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class DelegateCommission(db.Model):
    """Commission earned by a delegate on one sale."""
    __tablename__ = "delegate_commissions"
    __table_args__ = (
        db.UniqueConstraint("delegate_id", "sale_id", name="uq_delegate_commissions_sale"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    delegate_id = db.Column(db.Integer, db.ForeignKey("delegates.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    sale_amount_cents = cents_column(default=None)
    sale_amount = money("sale_amount_cents")
    commission_type = db.Column(db.String(16), nullable=False)
    commission_rate = db.Column(db.Float, nullable=False)
    commission_amount_cents = cents_column(default=None)
    commission_amount = money("commission_amount_cents")
    status = db.Column(db.String(16), nullable=False, default="pending")
    paid_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "delegate_id": self.delegate_id,
            "sale_id": self.sale_id,
            "sale_amount": self.sale_amount,
            "commission_type": self.commission_type,
            "commission_rate": self.commission_rate,
            "commission_amount": self.commission_amount,
            "status": self.status,
            "paid_at": to_utc_z(self.paid_at),
            "created_at": to_utc_z(self.created_at),
        }
