from __future__ import annotations

import logging
import time

from sqlalchemy import func, or_

from ..extensions import db
from ..models import Product, Stock, StockMovement
from ..validation import ConflictError, NotFoundError, ValidationError, enforce_rules_stock, require_positive_int
from .concurrency import begin_write, run_with_retry
from . import stock_movement_service
from .stock_movement_service import StockMovementError

"""
Stock (warehouse) registry.

- code is unique (case-insensitive, stored upper-case).
- At most one active stock is the main stock. Promoting a stock demotes the
  previous main inside the same transaction; the partial unique index
  uq_stocks_single_main backs this up at the database level.
- Quantities shown for a stock are always summed from the ledger.
- Deleting is a soft delete, refused for the main stock and for stocks that
  still have products assigned or on hand.
"""

logger = logging.getLogger(__name__)

STOCK_MUTABLE_FIELDS = {
    "name", "code", "description", "address", "city", "manager_name",
    "phone", "email", "capacity", "is_main_stock", "is_active", "notes",
}


def get_stock(stock_id: int) -> Stock:
    stock = db.session.get(Stock, stock_id)
    if stock is None:
        raise NotFoundError(f"Stock {stock_id} not found")
    return stock


def stock_to_dict(stock: Stock) -> dict:
    data = stock.to_dict()
    totals = stock_movement_service.get_stock_totals(stock.id)
    data.update(totals)
    data["current_capacity_used"] = float(totals["total_stock_quantity"])
    return data


def _demote_current_main(exclude_id: int | None = None) -> None:
    q = db.session.query(Stock).filter(Stock.is_main_stock.is_(True))
    if exclude_id is not None:
        q = q.filter(Stock.id != exclude_id)
    for other in q.all():
        other.is_main_stock = False
    db.session.flush()


def _ensure_unique_code(code: str, exclude_id: int | None = None) -> None:
    q = db.session.query(Stock.id).filter(func.upper(Stock.code) == code.upper())
    if exclude_id is not None:
        q = q.filter(Stock.id != exclude_id)
    if q.first():
        raise ConflictError(f"Stock code '{code}' already exists")


def create_stock(*, patch: dict, user_id: int | None = None) -> Stock:
    enforce_rules_stock(patch)
    for field in ("name", "code", "address"):
        if not patch.get(field):
            raise ValidationError(f"{field} is required")
    _ensure_unique_code(patch["code"])

    def _op():
        begin_write()
        try:
            if patch.get("is_main_stock"):
                _demote_current_main()
            stock = Stock(created_by=user_id, current_capacity_used=0.0)
            for k, v in patch.items():
                if k in STOCK_MUTABLE_FIELDS:
                    setattr(stock, k, v)
            db.session.add(stock)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        logger.info("Stock %s (%s) created, main=%s", stock.id, stock.code, stock.is_main_stock)
        return stock

    return run_with_retry(_op)


def update_stock(stock_id: int, patch: dict) -> Stock:
    stock = get_stock(stock_id)
    enforce_rules_stock(patch)
    if patch.get("code"):
        _ensure_unique_code(patch["code"], exclude_id=stock.id)

    if stock.is_main_stock and patch.get("is_main_stock") is False:
        raise ValidationError("Promote another stock to main instead of demoting the main stock")
    if stock.is_main_stock and patch.get("is_active") is False:
        raise ValidationError("The main stock cannot be deactivated")

    def _op():
        begin_write()
        try:
            if patch.get("is_main_stock") and not stock.is_main_stock:
                _demote_current_main(exclude_id=stock.id)
            for k, v in patch.items():
                if k in STOCK_MUTABLE_FIELDS:
                    setattr(stock, k, v)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return stock

    return run_with_retry(_op)


def list_stocks(*, search: str | None = None, is_active: bool | None = True) -> list[dict]:
    q = db.session.query(Stock)
    if is_active is not None:
        q = q.filter(Stock.is_active.is_(is_active))
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(Stock.name.ilike(like), Stock.code.ilike(like), Stock.city.ilike(like)))
    stocks = q.order_by(Stock.is_main_stock.desc(), Stock.name.asc()).all()
    return [stock_to_dict(s) for s in stocks]


def delete_stock(stock_id: int) -> Stock:
    stock = get_stock(stock_id)
    if stock.is_main_stock:
        raise ConflictError("Cannot delete the main stock")

    assigned = (
        db.session.query(func.count(Product.id))
        .filter(Product.stock_id == stock.id, Product.is_active.is_(True))
        .scalar()
        or 0
    )
    on_hand = stock_movement_service.get_stock_totals(stock.id)["total_products"]
    if assigned or on_hand:
        raise ConflictError(
            f"Cannot delete stock {stock.code}: {assigned} product(s) assigned, {on_hand} product(s) on hand"
        )

    stock.is_active = False
    db.session.commit()
    logger.info("Stock %s deactivated", stock.id)
    return stock


def get_products(stock_id: int) -> list[dict]:
    """Products with a positive ledger balance in the stock."""
    get_stock(stock_id)
    quantities = stock_movement_service.get_stock_quantities(stock_id)
    present = {pid: qty for pid, qty in quantities.items() if qty > 0}
    if not present:
        return []
    products = (
        db.session.query(Product)
        .filter(Product.id.in_(list(present)))
        .order_by(Product.name.asc())
        .all()
    )
    result = []
    for p in products:
        data = p.to_dict()
        data["stock_quantity"] = present[p.id]
        result.append(data)
    return result


def get_movements(stock_id: int, page: int = 1, limit: int = 50) -> tuple[list[StockMovement], int]:
    get_stock(stock_id)
    return stock_movement_service.list_movements({"stock_id": stock_id}, page=page, limit=limit)


def add_product(
    stock_id: int,
    product_id,
    quantity,
    *,
    unit_cost: float | None = None,
    notes: str | None = None,
    user_id: int | None = None,
) -> StockMovement:
    """
    Put a quantity of a product into a stock as an adjustment.

    Capacity is checked against the ledger-derived usage; a full stock raises
    StockCapacityError and nothing is written.
    """
    product_id = require_positive_int(product_id, "product_id")
    quantity = require_positive_int(quantity, "quantity")
    stock = get_stock(stock_id)
    if not stock.is_active:
        raise ValidationError(f"Stock {stock_id} is inactive")

    def _op():
        begin_write()
        try:
            movement = stock_movement_service.apply_movement(
                movement_type="adjustment",
                product_id=product_id,
                quantity=quantity,
                to_stock_id=stock.id,
                unit_cost=unit_cost,
                reference_type="adjustment",
                reference_number=f"ADD-{int(time.time() * 1000)}",
                notes=notes or "Added to stock",
                created_by=user_id,
                check_capacity=True,
            )
            db.session.commit()
        except (StockMovementError, ValidationError, NotFoundError):
            db.session.rollback()
            raise
        logger.info("Added %s of product %s to stock %s", quantity, product_id, stock.id)
        return movement

    return run_with_retry(_op)


def get_statistics() -> dict:
    stocks = db.session.query(Stock).filter(Stock.is_active.is_(True)).order_by(Stock.name.asc()).all()
    per_stock = []
    for stock in stocks:
        totals = stock_movement_service.get_stock_totals(stock.id)
        capacity = stock.capacity or 0.0
        per_stock.append({
            "stock_id": stock.id,
            "name": stock.name,
            "code": stock.code,
            "is_main_stock": stock.is_main_stock,
            "capacity": capacity,
            "total_stock_quantity": totals["total_stock_quantity"],
            "total_products": totals["total_products"],
            "capacity_utilization": (
                round(totals["total_stock_quantity"] / capacity * 100.0, 2) if capacity > 0 else None
            ),
        })
    total_movements = db.session.query(func.count(StockMovement.id)).scalar() or 0
    return {
        "total_stocks": len(per_stock),
        "total_quantity": sum(s["total_stock_quantity"] for s in per_stock),
        "total_movements": int(total_movements),
        "stocks": per_stock,
    }

