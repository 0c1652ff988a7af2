# Overview: Service-layer operations for the stock-movement ledger; encapsulates business logic and database work.

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import and_, case, func, or_

from ..extensions import db
from ..models import MOVEMENT_TYPES, Product, Stock, StockMovement
from ..time_utils import parse_iso_datetime, utcnow
from ..validation import NotFoundError, ValidationError, require_amount
from .concurrency import begin_write, lock_for_update, run_with_retry
"""
Stock Ledger Invariants (authoritative)

Ledger model:
- stock_movements is append-only. Rows are never updated or deleted; a
  correction is a new mirror-image row (reverse_movement).
- quantity > 0 always. Direction is encoded by which side is set:
    to_stock_id   = W  -> +quantity in W
    from_stock_id = W  -> -quantity in W
  At least one side is set.

Derived quantity:
- qty(P, W, T) = SUM(quantity WHERE to_stock_id = W) - SUM(quantity WHERE from_stock_id = W)
  over rows with product_id = P and movement_date <= T (inclusive).
- This sum is the only source of truth for per-stock quantities. Listing and
  membership queries always recompute it.

Caches (written alongside each movement, never read for decisions):
- products.current_stock: +qty inbound, -qty outbound, unchanged for
  stock-to-stock transfers. recompute_product_cache() rewrites it.
- products.stock_id: follows the destination of the latest transfer.
- stocks.current_capacity_used: rewritten from the ledger for every stock a
  movement touches.

Balance rules:
- A transfer out of a concrete stock requires qty(P, source) >= quantity.
  A product with no positive balance in the source is "not in source stock".
- Other outbound movements are checked the same way unless the
  allow_negative_stock setting is on.
- movement_date may be backdated but not in the future. A backdated outbound
  row must keep qty(P, source, T) >= 0 for every T from its date onward.
- A rejected movement leaves no row behind.
"""

logger = logging.getLogger(__name__)


class StockMovementError(Exception):
    """Raised for stock-movement business rule violations."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class InsufficientStockError(StockMovementError):
    """Source stock does not hold enough of the product."""

    def __init__(self, product_id: int, stock_id: int, available: int, requested: int):
        super().__init__(
            f"Insufficient stock: available {available}, requested {requested}",
            details={
                "product_id": product_id,
                "stock_id": stock_id,
                "available": available,
                "requested": requested,
            },
        )
        self.available = available
        self.requested = requested


class StockCapacityError(StockMovementError):
    """Destination stock would exceed its capacity."""


# =============================================================================
# LEDGER READS
# =============================================================================

def _signed_quantity(stock_id: int):
    return func.coalesce(
        func.sum(
            case((StockMovement.to_stock_id == stock_id, StockMovement.quantity), else_=0)
            - case((StockMovement.from_stock_id == stock_id, StockMovement.quantity), else_=0)
        ),
        0,
    )


def _touches_stock(stock_id: int):
    return or_(StockMovement.to_stock_id == stock_id, StockMovement.from_stock_id == stock_id)


def get_quantity(product_id: int, stock_id: int, as_of: datetime | None = None) -> int:
    """Ledger-derived quantity of a product in one stock (as-of inclusive)."""
    q = db.session.query(_signed_quantity(stock_id)).filter(
        StockMovement.product_id == product_id,
        _touches_stock(stock_id),
    )
    if as_of is not None:
        q = q.filter(StockMovement.movement_date <= as_of)
    return int(q.scalar() or 0)


def get_total_quantity(product_id: int, as_of: datetime | None = None) -> int:
    """Ledger-derived quantity of a product across all stocks."""
    inbound = func.coalesce(
        func.sum(case((StockMovement.to_stock_id.isnot(None), StockMovement.quantity), else_=0)), 0
    )
    outbound = func.coalesce(
        func.sum(case((StockMovement.from_stock_id.isnot(None), StockMovement.quantity), else_=0)), 0
    )
    q = db.session.query(inbound - outbound).filter(StockMovement.product_id == product_id)
    if as_of is not None:
        q = q.filter(StockMovement.movement_date <= as_of)
    return int(q.scalar() or 0)


def get_stock_quantities(stock_id: int, as_of: datetime | None = None) -> dict[int, int]:
    """Map of product_id -> ledger-derived quantity for every product that ever touched the stock."""
    q = (
        db.session.query(StockMovement.product_id, _signed_quantity(stock_id))
        .filter(_touches_stock(stock_id))
        .group_by(StockMovement.product_id)
    )
    if as_of is not None:
        q = q.filter(StockMovement.movement_date <= as_of)
    return {product_id: int(qty or 0) for product_id, qty in q.all()}


def get_stock_totals(stock_id: int) -> dict:
    """Quantity held and number of distinct products present (quantity > 0)."""
    quantities = get_stock_quantities(stock_id)
    present = {pid: qty for pid, qty in quantities.items() if qty > 0}
    return {
        "total_stock_quantity": sum(present.values()),
        "total_products": len(present),
    }


def get_product_distribution(product_id: int) -> list[dict]:
    """Per-stock ledger quantities for one product (stocks with a non-zero balance)."""
    result = []
    stocks = db.session.query(Stock).order_by(Stock.is_main_stock.desc(), Stock.name).all()
    for stock in stocks:
        qty = get_quantity(product_id, stock.id)
        if qty != 0:
            result.append({
                "stock_id": stock.id,
                "stock_name": stock.name,
                "stock_code": stock.code,
                "is_main_stock": stock.is_main_stock,
                "quantity": qty,
            })
    return result


def get_min_balance_since(product_id: int, stock_id: int, since: datetime) -> int:
    """
    Lowest ledger balance of a product in a stock from `since` onward.

    Starts from the as-of balance at `since` and walks every later movement
    touching the stock, so a backdated outbound row can be checked against
    the history that follows it.
    """
    balance = get_quantity(product_id, stock_id, as_of=since)
    lowest = balance
    later = (
        db.session.query(StockMovement.from_stock_id, StockMovement.to_stock_id, StockMovement.quantity)
        .filter(
            StockMovement.product_id == product_id,
            _touches_stock(stock_id),
            StockMovement.movement_date > since,
        )
        .order_by(StockMovement.movement_date.asc(), StockMovement.id.asc())
    )
    for from_id, to_id, qty in later:
        balance += (qty if to_id == stock_id else 0) - (qty if from_id == stock_id else 0)
        lowest = min(lowest, balance)
    return lowest


def _refresh_capacity_used(stock: Stock) -> None:
    stock.current_capacity_used = float(get_stock_totals(stock.id)["total_stock_quantity"])


def _allow_negative_stock() -> bool:
    from .settings_service import get_bool
    return get_bool("allow_negative_stock", default=False)


# =============================================================================
# LEDGER WRITES
# =============================================================================

def _load_active_stock(stock_id: int, role: str) -> Stock:
    stock = db.session.get(Stock, stock_id)
    if stock is None:
        raise NotFoundError(f"{role} stock {stock_id} not found")
    if not stock.is_active:
        raise ValidationError(f"{role} stock {stock_id} is inactive")
    return stock


def apply_movement(
    *,
    movement_type: str,
    product_id: int,
    quantity: int,
    from_stock_id: int | None = None,
    to_stock_id: int | None = None,
    unit_cost: float | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    reference_number: str | None = None,
    movement_date: datetime | None = None,
    notes: str | None = None,
    created_by: int | None = None,
    check_balance: bool | None = None,
    check_capacity: bool | None = None,
) -> StockMovement:
    """
    Validate and stage one ledger row plus its cache updates. Does not commit.

    Sales, purchases and returns call this inside their own transaction so the
    movement commits or rolls back with the invoice.
    """
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"Invalid movement_type: {movement_type}. Must be one of {', '.join(MOVEMENT_TYPES)}")
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer")
    if from_stock_id is None and to_stock_id is None:
        raise ValidationError("Either from_stock_id or to_stock_id is required")
    if from_stock_id is not None and from_stock_id == to_stock_id:
        raise ValidationError("Source and destination stock must differ")
    if unit_cost is not None:
        unit_cost = require_amount(unit_cost, "unit_cost", allow_zero=True)

    product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    if not product.is_active:
        raise ValidationError(f"Product {product_id} is inactive")

    from_stock = _load_active_stock(from_stock_id, "Source") if from_stock_id is not None else None
    to_stock = _load_active_stock(to_stock_id, "Destination") if to_stock_id is not None else None

    is_transfer = movement_type == "transfer"

    now = utcnow()
    if movement_date is None:
        movement_date = now
    elif movement_date > now:
        raise ValidationError("movement_date cannot be in the future")

    if from_stock is not None:
        if check_balance is None:
            check_balance = is_transfer or not _allow_negative_stock()
        if check_balance:
            available = get_quantity(product_id, from_stock.id)
            if movement_date < now:
                # Backdated: the stock must hold enough from that date onward
                available = min(available, get_min_balance_since(product_id, from_stock.id, movement_date))
            if is_transfer and available <= 0:
                raise StockMovementError(
                    f"Product {product_id} not found in source stock {from_stock.id}",
                    details={"product_id": product_id, "stock_id": from_stock.id, "available": available},
                )
            if available < quantity:
                raise InsufficientStockError(product_id, from_stock.id, available, quantity)

    if to_stock is not None:
        if check_capacity is None:
            check_capacity = is_transfer
        if check_capacity and to_stock.capacity and to_stock.capacity > 0:
            used = get_stock_totals(to_stock.id)["total_stock_quantity"]
            if used + quantity > to_stock.capacity:
                raise StockCapacityError(
                    f"Stock capacity exceeded: capacity {to_stock.capacity:g}, used {used}, requested {quantity}",
                    details={"stock_id": to_stock.id, "capacity": to_stock.capacity, "used": used, "requested": quantity},
                )

    movement = StockMovement(
        movement_type=movement_type,
        from_stock_id=from_stock_id,
        to_stock_id=to_stock_id,
        product_id=product_id,
        quantity=quantity,
        unit_cost=unit_cost,
        total_value=round(unit_cost * quantity, 2) if unit_cost is not None else None,
        reference_type=reference_type,
        reference_id=reference_id,
        reference_number=reference_number,
        movement_date=movement_date,
        notes=notes,
        created_by=created_by,
    )
    db.session.add(movement)

    # Cache: total across stocks only changes for one-sided movements
    if to_stock is not None and from_stock is None:
        product.current_stock = (product.current_stock or 0) + quantity
    elif from_stock is not None and to_stock is None:
        product.current_stock = (product.current_stock or 0) - quantity

    if is_transfer and to_stock is not None:
        product.stock_id = to_stock.id

    db.session.flush()

    for stock in (from_stock, to_stock):
        if stock is not None:
            _refresh_capacity_used(stock)

    return movement


def record_movement(
    *,
    movement_type: str,
    product_id: int,
    quantity: int,
    from_stock_id: int | None = None,
    to_stock_id: int | None = None,
    unit_cost: float | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    reference_number: str | None = None,
    movement_date: datetime | str | None = None,
    notes: str | None = None,
    created_by: int | None = None,
) -> StockMovement:
    """
    Record one inventory event in its own transaction.

    Raises ValidationError / NotFoundError for bad input and
    InsufficientStockError when a transfer exceeds the source balance.
    """
    if isinstance(movement_date, str):
        try:
            movement_date = parse_iso_datetime(movement_date)
        except ValueError:
            raise ValidationError("movement_date must be an ISO-8601 datetime")
    elif movement_date is not None and not isinstance(movement_date, datetime):
        raise ValidationError("movement_date must be an ISO-8601 datetime")

    def _op():
        begin_write()
        try:
            movement = apply_movement(
                movement_type=movement_type,
                product_id=product_id,
                quantity=quantity,
                from_stock_id=from_stock_id,
                to_stock_id=to_stock_id,
                unit_cost=unit_cost,
                reference_type=reference_type,
                reference_id=reference_id,
                reference_number=reference_number,
                movement_date=movement_date,
                notes=notes,
                created_by=created_by,
            )
            db.session.commit()
        except (StockMovementError, ValidationError, NotFoundError):
            db.session.rollback()
            raise
        logger.info(
            "Stock movement %s recorded: type=%s product=%s from=%s to=%s qty=%s",
            movement.id, movement_type, product_id, from_stock_id, to_stock_id, quantity,
        )
        return movement

    return run_with_retry(_op)


def stage_reversal(
    original: StockMovement,
    *,
    user_id: int | None = None,
    notes: str | None = None,
    check_balance: bool | None = None,
) -> StockMovement:
    """Stage the mirror image of a movement. Does not commit."""
    reference_number = f"REVERSE-{original.id}"
    already = db.session.query(StockMovement.id).filter_by(reference_number=reference_number).first()
    if already:
        raise StockMovementError(
            f"Stock movement {original.id} has already been reversed",
            details={"reversal_id": already[0]},
        )
    return apply_movement(
        movement_type=original.movement_type,
        product_id=original.product_id,
        quantity=original.quantity,
        from_stock_id=original.to_stock_id,
        to_stock_id=original.from_stock_id,
        unit_cost=original.unit_cost,
        reference_type="adjustment",
        reference_id=original.id,
        reference_number=reference_number,
        notes=notes or f"Reversal of movement {original.id}",
        created_by=user_id,
        check_balance=check_balance,
        check_capacity=False,
    )


def reverse_movement(movement_id: int, user_id: int | None = None, notes: str | None = None) -> StockMovement:
    """
    Append the mirror image of a movement (from/to swapped) instead of deleting it.

    The reversal keeps the original movement_type, references the original
    through reference_type='adjustment' / reference_id, and is numbered
    REVERSE-<id>. A movement can be reversed once.
    """
    def _op():
        begin_write()
        try:
            original = db.session.get(StockMovement, movement_id)
            if original is None:
                raise NotFoundError(f"Stock movement {movement_id} not found")
            reversal = stage_reversal(original, user_id=user_id, notes=notes)
            db.session.commit()
        except (StockMovementError, ValidationError, NotFoundError):
            db.session.rollback()
            raise
        logger.info("Stock movement %s reversed by %s", movement_id, reversal.id)
        return reversal

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_movement(movement_id: int) -> StockMovement:
    movement = db.session.get(StockMovement, movement_id)
    if movement is None:
        raise NotFoundError(f"Stock movement {movement_id} not found")
    return movement


def _filtered_query(filters: dict):
    q = db.session.query(StockMovement)
    conditions = []

    movement_type = filters.get("movement_type")
    if movement_type:
        if movement_type not in MOVEMENT_TYPES:
            raise ValidationError(f"Invalid movement_type: {movement_type}")
        conditions.append(StockMovement.movement_type == movement_type)

    for key, column in (
        ("from_stock_id", StockMovement.from_stock_id),
        ("to_stock_id", StockMovement.to_stock_id),
        ("product_id", StockMovement.product_id),
        ("reference_id", StockMovement.reference_id),
    ):
        value = filters.get(key)
        if value not in (None, ""):
            try:
                conditions.append(column == int(value))
            except (TypeError, ValueError):
                raise ValidationError(f"{key} must be an integer")

    stock_id = filters.get("stock_id")
    if stock_id not in (None, ""):
        conditions.append(_touches_stock(int(stock_id)))

    if filters.get("reference_type"):
        conditions.append(StockMovement.reference_type == filters["reference_type"])

    try:
        date_from = parse_iso_datetime(filters.get("date_from"))
        date_to = parse_iso_datetime(filters.get("date_to"))
    except ValueError:
        raise ValidationError("date_from/date_to must be ISO-8601")
    if date_from is not None:
        conditions.append(StockMovement.movement_date >= date_from)
    if date_to is not None:
        if len(str(filters.get("date_to")).strip()) == 10:
            date_to = date_to + timedelta(days=1) - timedelta(microseconds=1)
        conditions.append(StockMovement.movement_date <= date_to)

    if conditions:
        q = q.filter(and_(*conditions))
    return q


def list_movements(filters: dict | None = None, page: int = 1, limit: int = 50) -> tuple[list[StockMovement], int]:
    """Parameterized filtered listing, newest first. Returns (rows, total)."""
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or 50), 1), 500)
    q = _filtered_query(filters or {})
    total = q.count()
    rows = (
        q.order_by(StockMovement.movement_date.desc(), StockMovement.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


def get_statistics(days: int = 30) -> dict:
    """Movement counts and quantities grouped by movement_type over the last N days."""
    if days <= 0:
        raise ValidationError("days must be > 0")
    since = utcnow() - timedelta(days=days)
    rows = (
        db.session.query(
            StockMovement.movement_type,
            func.count(StockMovement.id),
            func.coalesce(func.sum(StockMovement.quantity), 0),
            func.coalesce(func.sum(StockMovement.total_value), 0.0),
        )
        .filter(StockMovement.movement_date >= since)
        .group_by(StockMovement.movement_type)
        .order_by(StockMovement.movement_type)
        .all()
    )
    by_type = [
        {
            "movement_type": movement_type,
            "count": int(count),
            "total_quantity": int(qty or 0),
            "total_value": round(float(value or 0.0), 2),
        }
        for movement_type, count, qty, value in rows
    ]
    return {
        "period_days": days,
        "by_type": by_type,
        "total_movements": sum(r["count"] for r in by_type),
        "total_quantity": sum(r["total_quantity"] for r in by_type),
    }


def get_product_history(product_id: int, stock_id: int | None = None, limit: int = 100) -> list[dict]:
    """Movements for a product with the running ledger balance of the chosen stock (or all stocks)."""
    if db.session.get(Product, product_id) is None:
        raise NotFoundError(f"Product {product_id} not found")
    q = db.session.query(StockMovement).filter(StockMovement.product_id == product_id)
    if stock_id is not None:
        q = q.filter(_touches_stock(stock_id))
    rows = q.order_by(StockMovement.movement_date.asc(), StockMovement.id.asc()).all()

    balance = 0
    history = []
    for mv in rows:
        if stock_id is None:
            delta = (mv.quantity if mv.to_stock_id is not None else 0) - (
                mv.quantity if mv.from_stock_id is not None else 0
            )
        else:
            delta = (mv.quantity if mv.to_stock_id == stock_id else 0) - (
                mv.quantity if mv.from_stock_id == stock_id else 0
            )
        balance += delta
        entry = mv.to_dict()
        entry["delta"] = delta
        entry["balance_after"] = balance
        history.append(entry)
    return list(reversed(history))[:limit]


def recompute_product_cache(product_id: int | None = None) -> int:
    """
    Rewrite products.current_stock from the ledger.
    Returns the number of products whose cached value drifted.
    """
    q = db.session.query(Product)
    if product_id is not None:
        q = q.filter(Product.id == product_id)
    changed = 0
    for product in q.all():
        derived = get_total_quantity(product.id)
        if product.current_stock != derived:
            logger.warning(
                "Product %s cache drift: cached=%s ledger=%s", product.id, product.current_stock, derived
            )
            product.current_stock = derived
            changed += 1
    for stock in db.session.query(Stock).all():
        _refresh_capacity_used(stock)
    db.session.commit()
    return changed
