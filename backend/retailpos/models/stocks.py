from __future__ import annotations

from ..extensions import db
from .money import cents_column, money
from ..time_utils import to_utc_z, utcnow


MOVEMENT_TYPES = ("transfer", "adjustment", "purchase", "sale", "return", "damage", "expiry")


class Stock(db.Model):
    """
    A storage location (warehouse).

    capacity == 0 means unlimited. current_capacity_used is a cache; reads
    that need the real figure recompute it from the movement ledger.

    At most one active stock may carry is_main_stock. This is enforced by the
    partial unique index uq_stocks_single_main, not only by service code.
    """
    __tablename__ = "stocks"
    __table_args__ = (
        db.CheckConstraint("capacity >= 0", name="ck_stocks_capacity"),
        db.Index(
            "uq_stocks_single_main",
            "is_main_stock",
            unique=True,
            sqlite_where=db.text("is_main_stock = 1 AND is_active = 1"),
            postgresql_where=db.text("is_main_stock AND is_active"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    code = db.Column(db.String(32, collation="NOCASE"), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)
    address = db.Column(db.String(255), nullable=False)
    city = db.Column(db.String(64), nullable=True)
    manager_name = db.Column(db.String(128), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(128), nullable=True)

    capacity = db.Column(db.Float, nullable=False, default=0.0)
    current_capacity_used = db.Column(db.Float, nullable=False, default=0.0)

    is_main_stock = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Stock id={self.id} code={self.code!r} main={self.is_main_stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "description": self.description,
            "address": self.address,
            "city": self.city,
            "manager_name": self.manager_name,
            "phone": self.phone,
            "email": self.email,
            "capacity": self.capacity,
            "current_capacity_used": self.current_capacity_used,
            "is_main_stock": self.is_main_stock,
            "is_active": self.is_active,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only inventory ledger row.

    quantity is always positive; direction comes from which side is set:
    to_stock_id adds to that stock, from_stock_id takes from it. Rows are
    never updated or deleted; corrections are new rows (see reverse).
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_positive"),
        db.CheckConstraint(
            "from_stock_id IS NOT NULL OR to_stock_id IS NOT NULL",
            name="ck_stock_movements_has_side",
        ),
        db.CheckConstraint(
            "movement_type IN ('transfer','adjustment','purchase','sale','return','damage','expiry')",
            name="ck_stock_movements_type",
        ),
        db.Index("ix_stock_movements_product_to", "product_id", "to_stock_id"),
        db.Index("ix_stock_movements_product_from", "product_id", "from_stock_id"),
        db.Index("ix_stock_movements_type_date", "movement_type", "movement_date"),
        db.Index("ix_stock_movements_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    movement_type = db.Column(db.String(16), nullable=False)

    from_stock_id = db.Column(db.Integer, db.ForeignKey("stocks.id"), nullable=True)
    to_stock_id = db.Column(db.Integer, db.ForeignKey("stocks.id"), nullable=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_cost_cents = cents_column(nullable=True, default=None)
    unit_cost = money("unit_cost_cents")
    total_value_cents = cents_column(nullable=True, default=None)
    total_value = money("total_value_cents")

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)
    reference_number = db.Column(db.String(64), nullable=True)

    movement_date = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")
    from_stock = db.relationship("Stock", foreign_keys=[from_stock_id])
    to_stock = db.relationship("Stock", foreign_keys=[to_stock_id])

    def __repr__(self) -> str:
        return (
            f"<StockMovement id={self.id} type={self.movement_type} product={self.product_id} "
            f"from={self.from_stock_id} to={self.to_stock_id} qty={self.quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "movement_type": self.movement_type,
            "from_stock_id": self.from_stock_id,
            "from_stock_name": self.from_stock.name if self.from_stock else None,
            "to_stock_id": self.to_stock_id,
            "to_stock_name": self.to_stock.name if self.to_stock else None,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "product_sku": self.product.sku if self.product else None,
            "quantity": self.quantity,
            "unit_cost": self.unit_cost,
            "total_value": self.total_value,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "reference_number": self.reference_number,
            "movement_date": to_utc_z(self.movement_date),
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
