from __future__ import annotations

from ..extensions import db
from .money import cents_column, money
from ..time_utils import to_iso_date, to_utc_z


PURCHASE_STATUSES = ("completed", "pending", "cancelled", "returned", "partially_returned")


class Purchase(db.Model):
    """
    Purchase invoice header. (supplier_id, invoice_no) is unique.
    net_amount = total_amount - discount_amount + tax_amount.
    """
    __tablename__ = "purchases"
    __table_args__ = (
        db.UniqueConstraint("supplier_id", "invoice_no", name="uq_purchases_supplier_invoice"),
        db.CheckConstraint("paid_amount_cents >= 0", name="ck_purchases_paid_non_negative"),
        db.Index("ix_purchases_status_date", "status", "invoice_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    invoice_no = db.Column(db.String(64), nullable=False)
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
    notes = db.Column(db.Text, nullable=True)
    money_box_id = db.Column(db.Integer, db.ForeignKey("money_boxes.id"), nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    supplier = db.relationship("Supplier")
    items = db.relationship(
        "PurchaseItem", backref="purchase", lazy=True, cascade="all, delete-orphan", order_by="PurchaseItem.id"
    )
    returns = db.relationship(
        "PurchaseReturn", backref="purchase", lazy=True, cascade="all, delete-orphan", order_by="PurchaseReturn.id"
    )

    @property
    def remaining_amount(self) -> float:
        return round(max((self.net_amount or 0.0) - (self.paid_amount or 0.0), 0.0), 2)

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "supplier_id": self.supplier_id,
            "supplier_name": self.supplier.name if self.supplier else None,
            "invoice_no": self.invoice_no,
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
            "notes": self.notes,
            "money_box_id": self.money_box_id,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class PurchaseItem(db.Model):
    __tablename__ = "purchase_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_purchase_items_quantity_positive"),
        db.CheckConstraint(
            "returned_quantity >= 0 AND returned_quantity <= quantity",
            name="ck_purchase_items_returned_bounds",
        ),
        db.Index("ix_purchase_items_purchase", "purchase_id"),
        db.Index("ix_purchase_items_product", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    stock_id = db.Column(db.Integer, db.ForeignKey("stocks.id"), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    returned_quantity = db.Column(db.Integer, nullable=False, default=0)
    price_cents = cents_column(default=None)
    price = money("price_cents")
    discount_percent = db.Column(db.Float, nullable=False, default=0.0)
    tax_percent = db.Column(db.Float, nullable=False, default=0.0)
    total_cents = cents_column(default=None)
    total = money("total_cents")
    expiry_date = db.Column(db.Date, nullable=True)
    batch_number = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    @property
    def remaining_quantity(self) -> int:
        return self.quantity - (self.returned_quantity or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_id": self.purchase_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "stock_id": self.stock_id,
            "quantity": self.quantity,
            "returned_quantity": self.returned_quantity,
            "price": self.price,
            "discount_percent": self.discount_percent,
            "tax_percent": self.tax_percent,
            "total": self.total,
            "expiry_date": to_iso_date(self.expiry_date),
            "batch_number": self.batch_number,
        }


class PurchaseReturn(db.Model):
    __tablename__ = "purchase_returns"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id"), nullable=False, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True)
    return_date = db.Column(db.DateTime, nullable=False)
    reason = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(16), nullable=False, default="completed")
    refund_method = db.Column(db.String(16), nullable=False, default="cash")
    total_amount_cents = cents_column(default=None)
    total_amount = money("total_amount_cents")

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    items = db.relationship("PurchaseReturnItem", backref="purchase_return", lazy=True, cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_id": self.purchase_id,
            "supplier_id": self.supplier_id,
            "return_date": to_utc_z(self.return_date),
            "reason": self.reason,
            "status": self.status,
            "refund_method": self.refund_method,
            "total_amount": self.total_amount,
            "created_by": self.created_by,
            "items": [item.to_dict() for item in self.items],
        }


class PurchaseReturnItem(db.Model):
    __tablename__ = "purchase_return_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_purchase_return_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("purchase_returns.id"), nullable=False, index=True)
    purchase_item_id = db.Column(db.Integer, db.ForeignKey("purchase_items.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    price_cents = cents_column(default=None)
    price = money("price_cents")
    total_cents = cents_column(default=None)
    total = money("total_cents")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "purchase_item_id": self.purchase_item_id,
            "quantity": self.quantity,
            "price": self.price,
            "total": self.total,
        }
