from __future__ import annotations

from ..extensions import db
from .money import cents_column, money
from ..time_utils import to_iso_date, to_utc_z


SALE_PAYMENT_METHODS = ("cash", "card", "bank_transfer")
PAYMENT_STATUSES = ("unpaid", "partial", "paid")
SALE_STATUSES = ("completed", "pending", "cancelled", "returned", "partially_returned")


class Sale(db.Model):
    """
    Sale invoice header.

    net_amount = total_amount - discount_amount + tax_amount.
    payment_status is derived from paid_amount vs net_amount and is
    recomputed on every payment change (see invoice_service.payment_status).
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.CheckConstraint("paid_amount_cents >= 0", name="ck_sales_paid_non_negative"),
        db.Index("ix_sales_customer", "customer_id"),
        db.Index("ix_sales_status_date", "status", "invoice_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_no = db.Column(db.String(64), nullable=False, unique=True)
    barcode = db.Column(db.String(64), nullable=True, unique=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)
    delegate_id = db.Column(db.Integer, db.ForeignKey("delegates.id"), nullable=True)

    invoice_date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=True)

    total_amount_cents = cents_column()
    total_amount = money("total_amount_cents")
    discount_amount_cents = cents_column()
    discount_amount = money("discount_amount_cents")
    tax_amount_cents = cents_column()
    tax_amount = money("tax_amount_cents")
    net_amount_cents = cents_column()
    net_amount = money("net_amount_cents")
    paid_amount_cents = cents_column()
    paid_amount = money("paid_amount_cents")

    payment_method = db.Column(db.String(16), nullable=False, default="cash")
    payment_status = db.Column(db.String(16), nullable=False, default="unpaid")
    status = db.Column(db.String(24), nullable=False, default="completed")
    bill_type = db.Column(db.String(16), nullable=False, default="retail")
    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    customer = db.relationship("Customer")
    items = db.relationship(
        "SaleItem", backref="sale", lazy=True, cascade="all, delete-orphan", order_by="SaleItem.id"
    )
    returns = db.relationship(
        "SaleReturn", backref="sale", lazy=True, cascade="all, delete-orphan", order_by="SaleReturn.id"
    )

    @property
    def remaining_amount(self) -> float:
        return round(max((self.net_amount or 0.0) - (self.paid_amount or 0.0), 0.0), 2)

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "invoice_no": self.invoice_no,
            "barcode": self.barcode,
            "customer_id": self.customer_id,
            "customer_name": self.customer.name if self.customer else None,
            "delegate_id": self.delegate_id,
            "invoice_date": to_iso_date(self.invoice_date),
            "due_date": to_iso_date(self.due_date),
            "total_amount": self.total_amount,
            "discount_amount": self.discount_amount,
            "tax_amount": self.tax_amount,
            "net_amount": self.net_amount,
            "paid_amount": self.paid_amount,
            "remaining_amount": self.remaining_amount,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "status": self.status,
            "bill_type": self.bill_type,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SaleItem(db.Model):
    """
    Sale line. product_id is NULL for manual (free-text) items.
    returned_quantity never exceeds quantity.
    """
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        db.CheckConstraint(
            "returned_quantity >= 0 AND returned_quantity <= quantity",
            name="ck_sale_items_returned_bounds",
        ),
        db.Index("ix_sale_items_sale", "sale_id"),
        db.Index("ix_sale_items_product", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    stock_id = db.Column(db.Integer, db.ForeignKey("stocks.id"), nullable=True)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    returned_quantity = db.Column(db.Integer, nullable=False, default=0)
    price_cents = cents_column(default=None)
    price = money("price_cents")
    discount_percent = db.Column(db.Float, nullable=False, default=0.0)
    tax_percent = db.Column(db.Float, nullable=False, default=0.0)
    total_cents = cents_column(default=None)
    total = money("total_cents")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def remaining_quantity(self) -> int:
        return self.quantity - (self.returned_quantity or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "stock_id": self.stock_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "returned_quantity": self.returned_quantity,
            "price": self.price,
            "discount_percent": self.discount_percent,
            "tax_percent": self.tax_percent,
            "total": self.total,
        }


class SaleReturn(db.Model):
    __tablename__ = "sale_returns"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    return_date = db.Column(db.DateTime, nullable=False)
    reason = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(16), nullable=False, default="completed")
    refund_method = db.Column(db.String(16), nullable=False, default="cash")
    total_amount_cents = cents_column(default=None)
    total_amount = money("total_amount_cents")

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    items = db.relationship("SaleReturnItem", backref="sale_return", lazy=True, cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "return_date": to_utc_z(self.return_date),
            "reason": self.reason,
            "status": self.status,
            "refund_method": self.refund_method,
            "total_amount": self.total_amount,
            "created_by": self.created_by,
            "items": [item.to_dict() for item in self.items],
        }


class SaleReturnItem(db.Model):
    __tablename__ = "sale_return_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_return_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("sale_returns.id"), nullable=False, index=True)
    sale_item_id = db.Column(db.Integer, db.ForeignKey("sale_items.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    price_cents = cents_column(default=None)
    price = money("price_cents")
    total_cents = cents_column(default=None)
    total = money("total_cents")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "sale_item_id": self.sale_item_id,
            "quantity": self.quantity,
            "price": self.price,
            "total": self.total,
        }


class Debt(db.Model):
    """
    Outstanding balance on an underpaid sale (one row per sale).
    Rows are kept after full repayment with status='paid'.
    """
    __tablename__ = "debts"
    __table_args__ = (
        db.CheckConstraint(
            "paid_amount_cents >= 0 AND paid_amount_cents <= total_amount_cents", name="ck_debts_paid_bounds",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, unique=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    total_amount_cents = cents_column(default=None)
    total_amount = money("total_amount_cents")
    paid_amount_cents = cents_column()
    paid_amount = money("paid_amount_cents")
    status = db.Column(db.String(16), nullable=False, default="unpaid", index=True)
    due_date = db.Column(db.Date, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    sale = db.relationship("Sale", backref=db.backref("debt", uselist=False))
    customer = db.relationship("Customer")

    @property
    def remaining_amount(self) -> float:
        return round(max(self.total_amount - self.paid_amount, 0.0), 2)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "invoice_no": self.sale.invoice_no if self.sale else None,
            "customer_id": self.customer_id,
            "customer_name": self.customer.name if self.customer else None,
            "total_amount": self.total_amount,
            "paid_amount": self.paid_amount,
            "remaining_amount": self.remaining_amount,
            "status": self.status,
            "due_date": to_iso_date(self.due_date),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Installment(db.Model):
    __tablename__ = "installments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_installments_amount_positive"),
        db.CheckConstraint("paid_amount_cents >= 0 AND paid_amount_cents <= amount_cents", name="ck_installments_paid_bounds"),
        db.Index("ix_installments_due", "payment_status", "due_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    due_date = db.Column(db.Date, nullable=False)
    amount_cents = cents_column(default=None)
    amount = money("amount_cents")
    paid_amount_cents = cents_column()
    paid_amount = money("paid_amount_cents")
    payment_status = db.Column(db.String(16), nullable=False, default="unpaid")
    payment_method = db.Column(db.String(16), nullable=True)
    paid_at = db.Column(db.DateTime, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    sale = db.relationship("Sale", backref=db.backref("installments", lazy=True, order_by="Installment.due_date"))
    customer = db.relationship("Customer")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "invoice_no": self.sale.invoice_no if self.sale else None,
            "customer_id": self.customer_id,
            "customer_name": self.customer.name if self.customer else None,
            "due_date": to_iso_date(self.due_date),
            "amount": self.amount,
            "paid_amount": self.paid_amount,
            "remaining_amount": round(self.amount - self.paid_amount, 2),
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "paid_at": to_utc_z(self.paid_at),
            "notes": self.notes,
        }


class CustomerReceipt(db.Model):
    __tablename__ = "customer_receipts"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_customer_receipts_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    receipt_no = db.Column(db.String(32), nullable=False, unique=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    receipt_date = db.Column(db.Date, nullable=False)
    amount_cents = cents_column(default=None)
    amount = money("amount_cents")
    payment_method = db.Column(db.String(16), nullable=False, default="cash")
    reference_no = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    money_box_id = db.Column(db.Integer, db.ForeignKey("money_boxes.id"), nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer")
    sale = db.relationship("Sale")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "receipt_no": self.receipt_no,
            "customer_id": self.customer_id,
            "customer_name": self.customer.name if self.customer else None,
            "sale_id": self.sale_id,
            "invoice_no": self.sale.invoice_no if self.sale else None,
            "receipt_date": to_iso_date(self.receipt_date),
            "amount": self.amount,
            "payment_method": self.payment_method,
            "reference_no": self.reference_no,
            "notes": self.notes,
            "money_box_id": self.money_box_id,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
