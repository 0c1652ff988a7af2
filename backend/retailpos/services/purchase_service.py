# Overview: Purchase invoices from suppliers, their payments and purchase returns.

from __future__ import annotations

import logging
from collections import defaultdict

from sqlalchemy import or_

from ..extensions import db
from ..models import Product, Purchase, PurchaseItem, PurchaseReturn, PurchaseReturnItem, StockMovement, Supplier
from ..models.purchases import PURCHASE_STATUSES
from ..time_utils import parse_iso_date, utcnow
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    optional_id,
    require_amount,
    require_percent,
    require_positive_int,
)
from . import money_box_service, stock_movement_service
from .concurrency import begin_write, run_with_retry
from .invoice_service import compute_totals, fallback_number, line_totals, payment_status, return_status
from .pagination import paginate
from .products_service import get_main_stock

"""
Purchase invariants:
- (supplier_id, invoice_no) is unique.
- Every line writes one 'purchase' movement into its stock (default: the
  main stock) in the same transaction as the invoice.
- A product's purchase_price follows the latest purchase price only while
  it stays <= the selling price.
- Supplier current_balance decreases by every payment made and increases
  by refunds received on returns.
- A purchase owes max(net_amount - returned_amount, 0); paid_amount never
  exceeds it.
- Credit checks warn but never block.
"""

logger = logging.getLogger(__name__)

PURCHASE_PAYMENT_METHODS = ("cash", "card", "bank_transfer", "credit")
CREATE_STATUSES = ("completed", "pending")
RETURNABLE_STATUSES = ("completed", "partially_returned")


class PurchaseError(Exception):
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def returned_amount(purchase: Purchase) -> float:
    return round(sum(r.total_amount or 0.0 for r in purchase.returns), 2)


def owed_total(purchase: Purchase) -> float:
    return round(max((purchase.net_amount or 0.0) - returned_amount(purchase), 0.0), 2)


def _refresh_payment_status(purchase: Purchase) -> None:
    owed = owed_total(purchase)
    purchase.payment_status = "paid" if owed <= 0 else payment_status(purchase.paid_amount or 0.0, owed)


def _parse_date(value, field: str):
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 date (YYYY-MM-DD)")


def _adjust_supplier_balance(supplier: Supplier, delta: float) -> None:
    supplier.current_balance = round((supplier.current_balance or 0.0) + delta, 2)


# =============================================================================
# CREDIT CHECK
# =============================================================================

def credit_warnings(supplier: Supplier, amount: float) -> list[dict]:
    """Warnings for a purchase of `amount` against the supplier's credit limit."""
    if supplier.credit_limit is None:
        return [{
            "code": "NO_CREDIT_LIMIT",
            "message": f"Supplier {supplier.name} has no credit limit set",
            "supplier_id": supplier.id,
        }]
    projected = round((supplier.current_balance or 0.0) + amount, 2)
    if projected > supplier.credit_limit:
        return [{
            "code": "CREDIT_LIMIT_EXCEEDED",
            "message": f"Purchase exceeds the credit limit of supplier {supplier.name}",
            "supplier_id": supplier.id,
            "credit_limit": supplier.credit_limit,
            "current_balance": supplier.current_balance,
            "projected_balance": projected,
        }]
    return []


# =============================================================================
# CREATE
# =============================================================================

def _normalize_item(raw, index: int) -> dict:
    if not isinstance(raw, dict):
        raise ValidationError(f"items[{index}] must be an object")
    product_id = optional_id(raw.get("product_id"))
    if product_id is None:
        raise ValidationError(f"items[{index}].product_id is required")
    return {
        "product_id": product_id,
        "stock_id": optional_id(raw.get("stock_id")),
        "quantity": require_positive_int(raw.get("quantity"), f"items[{index}].quantity"),
        "price": require_amount(raw.get("price"), f"items[{index}].price", allow_zero=True),
        "discount_percent": require_percent(raw.get("discount_percent"), f"items[{index}].discount_percent"),
        "tax_percent": require_percent(raw.get("tax_percent"), f"items[{index}].tax_percent"),
        "expiry_date": _parse_date(raw.get("expiry_date"), f"items[{index}].expiry_date"),
        "batch_number": raw.get("batch_number"),
    }


def create_purchase(data: dict, user_id: int | None = None) -> tuple[Purchase, list[dict]]:
    """
    Record a purchase invoice. Returns (purchase, warnings).

    Goods are received into each line's stock; the paid amount is taken
    from money_box_id when one is given.
    """
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    supplier_id = optional_id(data.get("supplier_id"))
    if supplier_id is None:
        raise ValidationError("supplier_id is required")
    raw_items = data.get("items")
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("Purchase must have at least one item")
    items = [_normalize_item(raw, i) for i, raw in enumerate(raw_items)]

    payment_method = data.get("payment_method") or "cash"
    if payment_method not in PURCHASE_PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of {', '.join(PURCHASE_PAYMENT_METHODS)}")
    status = data.get("status") or "completed"
    if status not in CREATE_STATUSES:
        raise ValidationError(f"A new purchase must be one of: {', '.join(CREATE_STATUSES)}")

    lines = [line_totals(it["quantity"], it["price"], it["discount_percent"], it["tax_percent"]) for it in items]
    totals = compute_totals(
        lines,
        require_amount(data.get("discount_amount") or 0, "discount_amount", allow_zero=True),
        require_amount(data.get("tax_amount") or 0, "tax_amount", allow_zero=True),
    )
    if totals.net_amount < 0:
        raise ValidationError("Invoice discount cannot exceed the invoice total")
    paid = round(require_amount(data.get("paid_amount") or 0, "paid_amount", allow_zero=True), 2)
    if paid > totals.net_amount + 0.005:
        raise ValidationError(f"paid_amount {paid:.2f} exceeds net amount {totals.net_amount:.2f}")
    invoice_no = (data.get("invoice_no") or "").strip() or fallback_number("PUR")
    invoice_date = _parse_date(data.get("invoice_date"), "invoice_date") or utcnow().date()
    due_date = _parse_date(data.get("due_date"), "due_date")
    money_box_id = optional_id(data.get("money_box_id"))

    def _op():
        begin_write()
        try:
            supplier = db.session.get(Supplier, supplier_id)
            if supplier is None:
                raise NotFoundError(f"Supplier {supplier_id} not found")
            if not supplier.is_active:
                raise ValidationError(f"Supplier {supplier_id} is inactive")
            duplicate = (
                db.session.query(Purchase.id)
                .filter(Purchase.supplier_id == supplier.id, Purchase.invoice_no == invoice_no)
                .first()
            )
            if duplicate:
                raise ConflictError(f"Invoice {invoice_no} already exists for this supplier")

            warnings = credit_warnings(supplier, totals.net_amount)

            purchase = Purchase(
                supplier_id=supplier.id,
                invoice_no=invoice_no,
                invoice_date=invoice_date,
                due_date=due_date,
                total_amount=totals.total_amount,
                discount_amount=totals.discount_amount,
                tax_amount=totals.tax_amount,
                net_amount=totals.net_amount,
                paid_amount=paid,
                payment_method=payment_method,
                payment_status=payment_status(paid, totals.net_amount),
                status=status,
                notes=data.get("notes"),
                money_box_id=money_box_id,
                created_by=user_id,
            )
            db.session.add(purchase)
            db.session.flush()

            main_stock = None
            for it, line in zip(items, lines):
                product = db.session.get(Product, it["product_id"])
                if product is None:
                    raise NotFoundError(f"Product {it['product_id']} not found")
                stock_id = it["stock_id"]
                if stock_id is None:
                    main_stock = main_stock or get_main_stock()
                    stock_id = main_stock.id if main_stock else product.stock_id
                if stock_id is None:
                    raise ValidationError(f"No stock to receive product {product.id} into")

                purchase.items.append(PurchaseItem(
                    product_id=product.id,
                    stock_id=stock_id,
                    quantity=it["quantity"],
                    returned_quantity=0,
                    price=it["price"],
                    discount_percent=it["discount_percent"],
                    tax_percent=it["tax_percent"],
                    total=line.total,
                    expiry_date=it["expiry_date"],
                    batch_number=it["batch_number"],
                ))
                stock_movement_service.apply_movement(
                    movement_type="purchase",
                    product_id=product.id,
                    quantity=it["quantity"],
                    to_stock_id=stock_id,
                    unit_cost=it["price"],
                    reference_type="purchase",
                    reference_id=purchase.id,
                    reference_number=purchase.invoice_no,
                    created_by=user_id,
                )
                if it["price"] <= (product.selling_price or 0.0):
                    product.purchase_price = it["price"]

            if paid > 0:
                _adjust_supplier_balance(supplier, -paid)
                if money_box_id is not None:
                    money_box_service.apply_transaction(
                        money_box_id, "purchase", paid,
                        notes=f"Purchase {purchase.invoice_no} from {supplier.name}",
                        reference_type="purchase", reference_id=purchase.id, user_id=user_id,
                    )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        for w in warnings:
            logger.warning("Purchase %s: %s", purchase.invoice_no, w["message"])
        logger.info("Purchase %s (%s) created: net=%.2f paid=%.2f", purchase.id, purchase.invoice_no,
                    purchase.net_amount, purchase.paid_amount)
        return purchase, warnings

    return run_with_retry(_op)


# =============================================================================
# READ
# =============================================================================

def get_purchase(purchase_id: int) -> Purchase:
    purchase = db.session.get(Purchase, purchase_id)
    if purchase is None:
        raise NotFoundError(f"Purchase {purchase_id} not found")
    return purchase


def purchase_details(purchase: Purchase) -> dict:
    data = purchase.to_dict(include_items=True)
    owed = owed_total(purchase)
    data["returns"] = [r.to_dict() for r in purchase.returns]
    data["returned_amount"] = returned_amount(purchase)
    data["owed_amount"] = owed
    data["remaining_amount"] = round(max(owed - (purchase.paid_amount or 0.0), 0.0), 2)
    return data


def list_purchases(filters: dict | None = None, page=None, per_page=None) -> dict:
    filters = filters or {}
    q = db.session.query(Purchase).join(Supplier, Supplier.id == Purchase.supplier_id)
    supplier_id = optional_id(filters.get("supplier_id"))
    if supplier_id is not None:
        q = q.filter(Purchase.supplier_id == supplier_id)
    if filters.get("status"):
        if filters["status"] not in PURCHASE_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(PURCHASE_STATUSES)}")
        q = q.filter(Purchase.status == filters["status"])
    if filters.get("payment_status"):
        q = q.filter(Purchase.payment_status == filters["payment_status"])
    date_from = _parse_date(filters.get("date_from"), "date_from")
    date_to = _parse_date(filters.get("date_to"), "date_to")
    if date_from is not None:
        q = q.filter(Purchase.invoice_date >= date_from)
    if date_to is not None:
        q = q.filter(Purchase.invoice_date <= date_to)
    if filters.get("search"):
        like = f"%{filters['search'].strip()}%"
        q = q.filter(or_(Purchase.invoice_no.ilike(like), Supplier.name.ilike(like)))
    q = q.order_by(Purchase.invoice_date.desc(), Purchase.id.desc())
    return paginate(q, page, per_page, serialize=lambda p: p.to_dict(include_items=False))


# =============================================================================
# PAYMENT / DELETE
# =============================================================================

def update_payment(purchase_id: int, paid_amount, user_id: int | None = None) -> Purchase:
    """Set the total paid on a purchase; the supplier balance moves by the difference."""
    paid = round(require_amount(paid_amount, "paid_amount", allow_zero=True), 2)

    def _op():
        begin_write()
        try:
            purchase = get_purchase(purchase_id)
            if purchase.status == "cancelled":
                raise ValidationError("Cannot pay a cancelled purchase")
            owed = owed_total(purchase)
            if paid > owed + 0.005:
                raise ValidationError(f"paid_amount {paid:.2f} exceeds the amount owed {owed:.2f}")
            delta = round(paid - (purchase.paid_amount or 0.0), 2)
            purchase.paid_amount = paid
            if delta:
                _adjust_supplier_balance(purchase.supplier, -delta)
            _refresh_payment_status(purchase)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        logger.info("Purchase %s payment set to %.2f (%s)", purchase.id, paid, purchase.payment_status)
        return purchase

    return run_with_retry(_op)


def delete_purchase(purchase_id: int, *, force: bool = False, user_id: int | None = None) -> None:
    """
    Delete a purchase and take its goods back out of stock.

    Returned purchases, existing returns and payments block deletion unless
    force is set.
    """
    def _op():
        begin_write()
        try:
            purchase = get_purchase(purchase_id)
            if not force:
                if purchase.status in ("returned", "partially_returned") or purchase.returns:
                    raise ConflictError("Cannot delete a purchase that has returns (use force)")
                if (purchase.paid_amount or 0.0) > 0:
                    raise ConflictError("Cannot delete a purchase that has payments (use force)")

            return_ids = [r.id for r in purchase.returns]
            return_moves = []
            if return_ids:
                return_moves = (
                    db.session.query(StockMovement)
                    .filter(StockMovement.reference_type == "purchase_return",
                            StockMovement.reference_id.in_(return_ids))
                    .order_by(StockMovement.id)
                    .all()
                )
            purchase_moves = (
                db.session.query(StockMovement)
                .filter(StockMovement.reference_type == "purchase", StockMovement.reference_id == purchase.id)
                .order_by(StockMovement.id)
                .all()
            )
            note = f"Purchase {purchase.invoice_no} deleted"
            for mv in return_moves:
                stock_movement_service.stage_reversal(mv, user_id=user_id, notes=note)
            for mv in purchase_moves:
                stock_movement_service.stage_reversal(mv, user_id=user_id, notes=note, check_balance=not force)

            if purchase.paid_amount:
                _adjust_supplier_balance(purchase.supplier, purchase.paid_amount)
            db.session.delete(purchase)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        logger.info("Purchase %s deleted (force=%s)", purchase_id, force)

    run_with_retry(_op)


# =============================================================================
# RETURNS
# =============================================================================

def process_return(
    purchase_id: int,
    items,
    *,
    reason: str | None = None,
    refund_method: str = "cash",
    money_box_id: int | None = None,
    user_id: int | None = None,
) -> dict:
    """
    Send goods back to the supplier.

    Each line leaves the stock it was received into; the stock must still
    hold the quantity. Money paid above the reduced invoice value comes back
    as a refund and is added to the supplier balance (and deposited into
    money_box_id when given).
    """
    if not isinstance(items, list) or not items:
        raise ValidationError("Return must include at least one item")

    def _op():
        begin_write()
        try:
            purchase = get_purchase(purchase_id)
            if purchase.status not in RETURNABLE_STATUSES:
                raise PurchaseError(f"Only completed purchases can be returned (status: {purchase.status})")

            by_id = {item.id: item for item in purchase.items}
            requested: dict[int, int] = defaultdict(int)
            for i, raw in enumerate(items):
                if not isinstance(raw, dict):
                    raise ValidationError(f"items[{i}] must be an object")
                item_id = require_positive_int(raw.get("purchase_item_id"), f"items[{i}].purchase_item_id")
                if item_id not in by_id:
                    raise ValidationError(f"Invalid purchase item id: {item_id}")
                requested[item_id] += require_positive_int(raw.get("quantity"), f"items[{i}].quantity")
            for item_id, qty in requested.items():
                if qty > by_id[item_id].remaining_quantity:
                    raise PurchaseError(
                        f"Return quantity exceeds remaining quantity for item {item_id}",
                        details={"purchase_item_id": item_id, "requested": qty,
                                 "remaining": by_id[item_id].remaining_quantity},
                    )

            total = round(sum(qty * by_id[item_id].price for item_id, qty in requested.items()), 2)
            purchase_return = PurchaseReturn(
                purchase_id=purchase.id,
                supplier_id=purchase.supplier_id,
                return_date=utcnow(),
                reason=reason,
                status="completed",
                refund_method=refund_method or "cash",
                total_amount=total,
                created_by=user_id,
            )
            purchase.returns.append(purchase_return)
            db.session.flush()

            for item_id, qty in requested.items():
                item = by_id[item_id]
                purchase_return.items.append(PurchaseReturnItem(
                    purchase_item_id=item.id,
                    quantity=qty,
                    price=item.price,
                    total=round(qty * item.price, 2),
                ))
                item.returned_quantity = (item.returned_quantity or 0) + qty
                stock_movement_service.apply_movement(
                    movement_type="return",
                    product_id=item.product_id,
                    quantity=qty,
                    from_stock_id=item.stock_id,
                    unit_cost=item.price,
                    reference_type="purchase_return",
                    reference_id=purchase_return.id,
                    reference_number=purchase.invoice_no,
                    notes=reason,
                    created_by=user_id,
                    check_balance=True,
                )

            owed = owed_total(purchase)
            refund = round(max((purchase.paid_amount or 0.0) - owed, 0.0), 2)
            if refund > 0:
                purchase.paid_amount = round(purchase.paid_amount - refund, 2)
                _adjust_supplier_balance(purchase.supplier, refund)
                if money_box_id is not None:
                    money_box_service.apply_transaction(
                        money_box_id, "purchase_return", refund,
                        notes=f"Refund for purchase {purchase.invoice_no}",
                        reference_type="purchase_return", reference_id=purchase_return.id, user_id=user_id,
                    )
            _refresh_payment_status(purchase)

            purchase.status = return_status(
                all(item.returned_quantity >= item.quantity for item in purchase.items),
                returned_amount(purchase),
                purchase.net_amount,
            )

            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        logger.info("Purchase %s return %s: %.2f, status=%s", purchase.id, purchase_return.id, total, purchase.status)
        return {
            "return_id": purchase_return.id,
            "purchase_id": purchase.id,
            "status": purchase.status,
            "total_amount": total,
            "refund_amount": refund,
            "return": purchase_return.to_dict(),
            "purchase": purchase_details(purchase),
        }

    return run_with_retry(_op)
