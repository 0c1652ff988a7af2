# backend/retailpos/services/products_service.py
"""
Product catalog service.

- SKU is unique case-insensitively; barcode is unique when present.
- selling_price >= purchase_price and max_stock >= min_stock.
- New products land in the main stock unless a stock is given. Opening
  quantity is recorded as an adjustment movement so ledger and cache agree.
- current_stock is never written directly here; it moves with the ledger.
- Deletion is a soft delete, blocked while sale or purchase lines reference
  the product.
"""
from __future__ import annotations

import logging

from sqlalchemy import func, or_

from ..extensions import db
from ..models import Category, Product, PurchaseItem, SaleItem, Stock
from ..validation import ConflictError, NotFoundError, ValidationError, enforce_rules_product
from .concurrency import begin_write
from .pagination import paginate
from . import stock_movement_service

logger = logging.getLogger(__name__)

PRODUCT_MUTABLE_FIELDS = {
    "name", "sku", "barcode", "description", "unit",
    "purchase_price", "selling_price", "wholesale_price",
    "min_stock", "max_stock", "category_id", "stock_id", "is_active",
}


def get_main_stock() -> Stock | None:
    return (
        db.session.query(Stock)
        .filter(Stock.is_main_stock.is_(True), Stock.is_active.is_(True))
        .first()
    )


def _ensure_unique_codes(sku: str | None, barcode: str | None, exclude_id: int | None = None) -> None:
    if sku:
        q = db.session.query(Product.id).filter(func.lower(Product.sku) == sku.lower())
        if exclude_id is not None:
            q = q.filter(Product.id != exclude_id)
        if q.first():
            raise ConflictError(f"SKU '{sku}' already exists")
    if barcode:
        q = db.session.query(Product.id).filter(Product.barcode == barcode)
        if exclude_id is not None:
            q = q.filter(Product.id != exclude_id)
        if q.first():
            raise ConflictError(f"Barcode '{barcode}' already exists")


def _ensure_refs(patch: dict) -> None:
    if patch.get("category_id") is not None and db.session.get(Category, patch["category_id"]) is None:
        raise NotFoundError(f"Category {patch['category_id']} not found")
    if patch.get("stock_id") is not None:
        stock = db.session.get(Stock, patch["stock_id"])
        if stock is None:
            raise NotFoundError(f"Stock {patch['stock_id']} not found")
        if not stock.is_active:
            raise ValidationError(f"Stock {patch['stock_id']} is inactive")


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def get_product_details(product_id: int) -> dict:
    product = get_product(product_id)
    data = product.to_dict()
    data["ledger_quantity"] = stock_movement_service.get_total_quantity(product.id)
    data["stocks"] = stock_movement_service.get_product_distribution(product.id)
    return data


def get_by_barcode(barcode: str) -> Product:
    code = (barcode or "").strip()
    if not code:
        raise ValidationError("barcode is required")
    product = (
        db.session.query(Product)
        .filter(or_(Product.barcode == code, func.lower(Product.sku) == code.lower()))
        .filter(Product.is_active.is_(True))
        .first()
    )
    if product is None:
        raise NotFoundError(f"No product with barcode '{code}'")
    return product


def list_products(
    *,
    search: str | None = None,
    category_id: int | None = None,
    stock_id: int | None = None,
    low_stock: bool = False,
    include_inactive: bool = False,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Product listing with optional filters.

    stock_id filters to products with a positive ledger balance in that stock
    and reports that balance as stock_quantity.
    """
    q = db.session.query(Product)
    if not include_inactive:
        q = q.filter(Product.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(Product.name.ilike(like), Product.sku.ilike(like), Product.barcode.ilike(like)))
    if category_id is not None:
        q = q.filter(Product.category_id == category_id)
    if low_stock:
        q = q.filter(Product.min_stock.isnot(None), Product.current_stock <= Product.min_stock)

    serialize = None
    if stock_id is not None:
        quantities = stock_movement_service.get_stock_quantities(stock_id)
        present_ids = [pid for pid, qty in quantities.items() if qty > 0]
        q = q.filter(Product.id.in_(present_ids))

        def serialize(p: Product) -> dict:
            data = p.to_dict()
            data["stock_quantity"] = quantities.get(p.id, 0)
            return data

    q = q.order_by(Product.name.asc(), Product.id.asc())
    return paginate(q, page, per_page, serialize=serialize)


def low_stock_products(threshold: int | None = None) -> list[Product]:
    q = db.session.query(Product).filter(Product.is_active.is_(True))
    if threshold is not None:
        q = q.filter(Product.current_stock <= threshold)
    else:
        q = q.filter(Product.min_stock.isnot(None), Product.current_stock <= Product.min_stock)
    return q.order_by(Product.current_stock.asc(), Product.name.asc()).all()


def create_product(*, patch: dict, opening_quantity: int = 0, user_id: int | None = None) -> Product:
    """
    Create a product from a validated patch dict.

    Raises ConflictError for duplicate SKU/barcode, ValidationError for rule
    violations, NotFoundError for missing category/stock.
    """
    if opening_quantity is None:
        opening_quantity = 0
    if isinstance(opening_quantity, bool) or not isinstance(opening_quantity, int) or opening_quantity < 0:
        raise ValidationError("current_stock must be a non-negative integer")

    enforce_rules_product(patch)
    _ensure_unique_codes(patch.get("sku"), patch.get("barcode"))
    _ensure_refs(patch)

    if patch.get("stock_id") is None:
        main = get_main_stock()
        patch["stock_id"] = main.id if main else None

    begin_write()
    try:
        product = Product(current_stock=0)
        for k, v in patch.items():
            if k in PRODUCT_MUTABLE_FIELDS:
                setattr(product, k, v)
        db.session.add(product)
        db.session.flush()

        if opening_quantity > 0:
            if product.stock_id is None:
                raise ValidationError("An opening quantity needs a stock; no main stock is configured")
            stock_movement_service.apply_movement(
                movement_type="adjustment",
                product_id=product.id,
                quantity=opening_quantity,
                to_stock_id=product.stock_id,
                unit_cost=product.purchase_price,
                reference_type="product",
                reference_id=product.id,
                reference_number=f"OPEN-{product.id}",
                notes="Opening stock",
                created_by=user_id,
            )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Product %s created (sku=%s, opening=%s)", product.id, product.sku, opening_quantity)
    return product


def update_product(product_id: int, patch: dict) -> Product:
    product = get_product(product_id)

    enforce_rules_product(patch, existing=product)
    _ensure_unique_codes(patch.get("sku"), patch.get("barcode"), exclude_id=product.id)
    _ensure_refs(patch)

    for k, v in patch.items():
        if k in PRODUCT_MUTABLE_FIELDS:
            setattr(product, k, v)
    db.session.commit()
    return product


def delete_product(product_id: int) -> Product:
    """
    Soft delete. Products referenced by sale or purchase lines cannot be deleted.
    """
    product = get_product(product_id)

    sale_refs = db.session.query(func.count(SaleItem.id)).filter(SaleItem.product_id == product.id).scalar() or 0
    purchase_refs = (
        db.session.query(func.count(PurchaseItem.id)).filter(PurchaseItem.product_id == product.id).scalar() or 0
    )
    if sale_refs or purchase_refs:
        raise ConflictError(
            f"Cannot delete product {product.id}: referenced by {sale_refs} sale line(s) "
            f"and {purchase_refs} purchase line(s)"
        )

    product.is_active = False
    db.session.commit()
    logger.info("Product %s deactivated", product.id)
    return product


# =============================================================================
# CATEGORIES
# =============================================================================

def list_categories() -> list[Category]:
    return db.session.query(Category).order_by(Category.name.asc()).all()


def create_category(name: str, description: str | None = None) -> Category:
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required")
    if db.session.query(Category.id).filter(func.lower(Category.name) == name.lower()).first():
        raise ConflictError(f"Category '{name}' already exists")
    category = Category(name=name, description=description)
    db.session.add(category)
    db.session.commit()
    return category


def delete_category(category_id: int) -> None:
    category = db.session.get(Category, category_id)
    if category is None:
        raise NotFoundError(f"Category {category_id} not found")
    in_use = db.session.query(func.count(Product.id)).filter(Product.category_id == category_id).scalar() or 0
    if in_use:
        raise ConflictError(f"Cannot delete category: {in_use} product(s) assigned")
    db.session.delete(category)
    db.session.commit()
