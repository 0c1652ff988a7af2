from __future__ import annotations

from ..extensions import db
from .money import cents_column, money
from ..time_utils import to_utc_z


class Category(db.Model):
    __tablename__ = "categories"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128, collation="NOCASE"), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Product master data.

    STOCK QUANTITY:
    current_stock is a cache of the total quantity across all stocks. The
    authoritative per-stock quantity is derived from stock_movements (see
    stock_movement_service.get_quantity). stock_id is the product's
    denormalized "home" stock and follows the latest transfer.

    SKU is unique case-insensitively (NOCASE collation). Barcode is unique
    when present.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("selling_price_cents >= purchase_price_cents", name="ck_products_price_margin"),
        db.CheckConstraint(
            "max_stock IS NULL OR min_stock IS NULL OR max_stock >= min_stock",
            name="ck_products_stock_bounds",
        ),
        db.Index("ix_products_name", "name"),
        db.Index("ix_products_stock_active", "stock_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64, collation="NOCASE"), nullable=False, unique=True)
    barcode = db.Column(db.String(64), nullable=True, unique=True)
    description = db.Column(db.Text, nullable=True)
    unit = db.Column(db.String(32), nullable=False, default="piece")

    purchase_price_cents = cents_column()
    purchase_price = money("purchase_price_cents")
    selling_price_cents = cents_column()
    selling_price = money("selling_price_cents")
    wholesale_price_cents = cents_column(nullable=True, default=None)
    wholesale_price = money("wholesale_price_cents")

    current_stock = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=True, default=0)
    max_stock = db.Column(db.Integer, nullable=True)

    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)
    stock_id = db.Column(db.Integer, db.ForeignKey("stocks.id"), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    category = db.relationship("Category", backref=db.backref("products", lazy=True))
    stock = db.relationship("Stock", foreign_keys=[stock_id])

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} stock_id={self.stock_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "sku": self.sku,
            "barcode": self.barcode,
            "description": self.description,
            "unit": self.unit,
            "purchase_price": self.purchase_price,
            "selling_price": self.selling_price,
            "wholesale_price": self.wholesale_price,
            "current_stock": self.current_stock,
            "min_stock": self.min_stock,
            "max_stock": self.max_stock,
            "category_id": self.category_id,
            "category_name": self.category.name if self.category else None,
            "stock_id": self.stock_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
