# backend/retailpos/services/sales_service.py
"""
Sales, sale payments and sale returns.

Invariants:
- net_amount = total_amount - discount_amount + tax_amount (see invoice_service).
- Every stocked line writes one 'sale' movement out of its stock inside the
  same transaction as the invoice; a rejected movement aborts the sale.
- Manual lines (no product) carry a free-text name and never touch the ledger.
- 0 <= returned_quantity <= quantity on every line. A return request is
  validated as a whole before anything is written.
- A sale is 'returned' once every line is fully returned or the cumulative
  returned amount reaches net_amount; otherwise a sale with returns is
  'partially_returned'.
- Customer current_balance increases by money received and decreases by
  refunds. Underpaid sales carry a debts row (debt_service).
"""
from __future__ import annotations

import logging
from collections import defaultdict

from sqlalchemy import or_

from ..extensions import db
from ..models import (
    Customer,
    CustomerReceipt,
    Debt,
    DelegateCommission,
    Installment,
    Product,
    Sale,
    SaleItem,
    SaleReturn,
    SaleReturnItem,
    StockMovement,
)
from ..models.sales import PAYMENT_STATUSES, SALE_PAYMENT_METHODS, SALE_STATUSES
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
from . import cashbox_service, delegate_service, settings_service, stock_movement_service
from .concurrency import begin_write, run_with_retry
from .debt_service import owed_total, returned_amount, sync_sale_debt
from .invoice_service import compute_totals, line_totals, next_invoice_number, return_status
from .pagination import paginate
from .products_service import get_main_stock

logger = logging.getLogger(__name__)

MANUAL_ITEM_NAME = "Other items"
CREATE_STATUSES = ("completed", "pending")
RETURNABLE_STATUSES = ("completed", "partially_returned")


class SaleError(Exception):
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


# =============================================================================
# INPUT NORMALIZATION
# =============================================================================

def _parse_date(value, field: str):
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 date (YYYY-MM-DD)")


def _normalize_item(raw: dict, index: int) -> dict:
    if not isinstance(raw, dict):
        raise ValidationError(f"items[{index}] must be an object")
    product_id = optional_id(raw.get("product_id"))
    name = (raw.get("name") or raw.get("product_name") or "").strip()
    quantity = require_positive_int(raw.get("quantity"), f"items[{index}].quantity")
    price = require_amount(raw.get("price"), f"items[{index}].price")
    return {
        "product_id": product_id,
        "name": name or (MANUAL_ITEM_NAME if product_id is None else ""),
        "stock_id": optional_id(raw.get("stock_id")),
        "quantity": quantity,
        "price": price,
        "discount_percent": require_percent(raw.get("discount_percent"), f"items[{index}].discount_percent"),
        "tax_percent": require_percent(raw.get("tax_percent"), f"items[{index}].tax_percent"),
    }


def _normalize_sale(data: dict) -> dict:
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    items = data.get("items")
    if not isinstance(items, list) or not items:
        raise ValidationError("Sale must have at least one item")

    payment_method = data.get("payment_method") or "cash"
    if payment_method not in SALE_PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment method. Must be one of: {', '.join(SALE_PAYMENT_METHODS)}")
    if data.get("payment_status") and data["payment_status"] not in PAYMENT_STATUSES:
        raise ValidationError(f"Invalid payment status. Must be one of: {', '.join(PAYMENT_STATUSES)}")
    status = data.get("status") or "completed"
    if status not in SALE_STATUSES:
        raise ValidationError(f"Invalid sale status. Must be one of: {', '.join(SALE_STATUSES)}")
    if status not in CREATE_STATUSES:
        raise ValidationError(f"A new sale must be one of: {', '.join(CREATE_STATUSES)}")

    barcode = (data.get("barcode") or "").strip() or None

    return {
        "customer_id": optional_id(data.get("customer_id")),
        "delegate_id": optional_id(data.get("delegate_id")),
        "invoice_date": _parse_date(data.get("invoice_date"), "invoice_date") or utcnow().date(),
        "due_date": _parse_date(data.get("due_date"), "due_date"),
        "items": [_normalize_item(raw, i) for i, raw in enumerate(items)],
        "discount_amount": require_amount(data.get("discount_amount") or 0, "discount_amount", allow_zero=True),
        "tax_amount": require_amount(data.get("tax_amount") or 0, "tax_amount", allow_zero=True),
        "paid_amount": require_amount(data.get("paid_amount") or 0, "paid_amount", allow_zero=True),
        "payment_method": payment_method,
        "status": status,
        "bill_type": data.get("bill_type") or "retail",
        "notes": data.get("notes"),
        "barcode": barcode,
    }


# =============================================================================
# CREATE
# =============================================================================

def create_sale(data: dict, user_id: int | None = None) -> Sale:
    """
    Create a sale with its lines, ledger movements, payment side effects,
    debt row and delegate commission in one transaction.

    Raises ValidationError, NotFoundError, ConflictError (duplicate barcode),
    InsufficientStockError (via the ledger) and CashBoxError.
    """
    sale_data = _normalize_sale(data)
    lines = [
        line_totals(it["quantity"], it["price"], it["discount_percent"], it["tax_percent"])
        for it in sale_data["items"]
    ]
    totals = compute_totals(lines, sale_data["discount_amount"], sale_data["tax_amount"])
    if totals.net_amount < 0:
        raise ValidationError("Invoice discount cannot exceed the invoice total")
    if sale_data["paid_amount"] > totals.net_amount + 0.005:
        raise ValidationError(
            f"paid_amount {sale_data['paid_amount']:.2f} exceeds net amount {totals.net_amount:.2f}"
        )

    def _op():
        begin_write()
        try:
            if sale_data["barcode"] and db.session.query(Sale.id).filter_by(barcode=sale_data["barcode"]).first():
                raise ConflictError(f"Sale with barcode {sale_data['barcode']} already exists")

            customer = None
            if sale_data["customer_id"] is not None:
                customer = db.session.get(Customer, sale_data["customer_id"])
                if customer is None:
                    raise NotFoundError(f"Customer {sale_data['customer_id']} not found")

            prefix = settings_service.get("invoice_prefix", "INV") or "INV"
            sale = Sale(
                invoice_no=next_invoice_number(Sale, prefix, sale_data["invoice_date"]),
                barcode=sale_data["barcode"],
                customer_id=sale_data["customer_id"],
                delegate_id=sale_data["delegate_id"],
                invoice_date=sale_data["invoice_date"],
                due_date=sale_data["due_date"],
                total_amount=totals.total_amount,
                discount_amount=totals.discount_amount,
                tax_amount=totals.tax_amount,
                net_amount=totals.net_amount,
                paid_amount=round(sale_data["paid_amount"], 2),
                payment_method=sale_data["payment_method"],
                status=sale_data["status"],
                bill_type=sale_data["bill_type"],
                notes=sale_data["notes"],
                created_by=user_id,
            )
            db.session.add(sale)
            db.session.flush()

            main_stock = None
            for it, line in zip(sale_data["items"], lines):
                stock_id = None
                name = it["name"]
                if it["product_id"] is not None:
                    product = db.session.get(Product, it["product_id"])
                    if product is None:
                        raise NotFoundError(f"Product {it['product_id']} not found")
                    name = name or product.name
                    stock_id = it["stock_id"] or product.stock_id
                    if stock_id is None:
                        main_stock = main_stock or get_main_stock()
                        stock_id = main_stock.id if main_stock else None
                    if stock_id is None:
                        raise ValidationError(f"No stock to sell product {product.id} from")

                item = SaleItem(
                    sale_id=sale.id,
                    product_id=it["product_id"],
                    stock_id=stock_id,
                    product_name=name,
                    quantity=it["quantity"],
                    returned_quantity=0,
                    price=it["price"],
                    discount_percent=it["discount_percent"],
                    tax_percent=it["tax_percent"],
                    total=line.total,
                )
                sale.items.append(item)

                if it["product_id"] is not None:
                    stock_movement_service.apply_movement(
                        movement_type="sale",
                        product_id=it["product_id"],
                        quantity=it["quantity"],
                        from_stock_id=stock_id,
                        unit_cost=it["price"],
                        reference_type="sale",
                        reference_id=sale.id,
                        reference_number=sale.invoice_no,
                        created_by=user_id,
                    )

            if customer is not None and sale.paid_amount > 0:
                customer.current_balance = round((customer.current_balance or 0.0) + sale.paid_amount, 2)

            sync_sale_debt(sale)

            if sale_data["delegate_id"] is not None:
                delegate_service.record_commission(sale_data["delegate_id"], sale)

            if user_id is not None and sale.paid_amount > 0 and sale.payment_method == "cash":
                box = cashbox_service.get_user_cash_box(user_id)
                if box is not None:
                    cashbox_service.apply_transaction(
                        box.id, user_id, "sale", sale.paid_amount,
                        reference_type="sale", reference_id=sale.id,
                        notes=f"Sale {sale.invoice_no}",
                    )

            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        logger.info("Sale %s (%s) created: net=%.2f paid=%.2f", sale.id, sale.invoice_no,
                    sale.net_amount, sale.paid_amount)
        return sale

    return run_with_retry(_op)


# =============================================================================
# READ
# =============================================================================

def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFoundError(f"Sale {sale_id} not found")
    return sale


def sale_details(sale: Sale) -> dict:
    data = sale.to_dict(include_items=True)
    data["returns"] = [r.to_dict() for r in sale.returns]
    data["returned_amount"] = returned_amount(sale)
    data["owed_amount"] = owed_total(sale)
    data["remaining_amount"] = round(max(owed_total(sale) - sale.paid_amount, 0.0), 2)
    return data


def get_by_invoice(invoice_no: str) -> Sale:
    sale = db.session.query(Sale).filter(Sale.invoice_no == (invoice_no or "").strip()).first()
    if sale is None:
        raise NotFoundError(f"Sale with invoice {invoice_no} not found")
    return sale


def list_sales(filters: dict | None = None, page=None, per_page=None) -> dict:
    filters = filters or {}
    q = db.session.query(Sale).outerjoin(Customer, Customer.id == Sale.customer_id)

    customer_id = optional_id(filters.get("customer_id"))
    if customer_id is not None:
        q = q.filter(Sale.customer_id == customer_id)
    delegate_id = optional_id(filters.get("delegate_id"))
    if delegate_id is not None:
        q = q.filter(Sale.delegate_id == delegate_id)
    if filters.get("status"):
        q = q.filter(Sale.status == filters["status"])
    if filters.get("payment_status"):
        q = q.filter(Sale.payment_status == filters["payment_status"])
    date_from = _parse_date(filters.get("date_from"), "date_from")
    date_to = _parse_date(filters.get("date_to"), "date_to")
    if date_from is not None:
        q = q.filter(Sale.invoice_date >= date_from)
    if date_to is not None:
        q = q.filter(Sale.invoice_date <= date_to)
    if filters.get("search"):
        like = f"%{filters['search'].strip()}%"
        q = q.filter(or_(Sale.invoice_no.ilike(like), Sale.barcode.ilike(like), Customer.name.ilike(like)))

    q = q.order_by(Sale.invoice_date.desc(), Sale.id.desc())
    return paginate(q, page, per_page, serialize=lambda s: s.to_dict(include_items=False))


# =============================================================================
# PAYMENT / DELETE
# =============================================================================

def update_payment(sale_id: int, paid_amount, user_id: int | None = None) -> Sale:
    """Set the total paid on a sale and re-derive payment status, debt and customer balance."""
    paid = require_amount(paid_amount, "paid_amount", allow_zero=True)

    def _op():
        begin_write()
        try:
            sale = get_sale(sale_id)
            if sale.status == "cancelled":
                raise ValidationError("Cannot take payment on a cancelled sale")
            owed = owed_total(sale)
            if paid > owed + 0.005:
                raise ValidationError(f"paid_amount {paid:.2f} exceeds the amount owed {owed:.2f}")
            delta = round(paid - (sale.paid_amount or 0.0), 2)
            sale.paid_amount = round(paid, 2)
            if sale.customer_id is not None and delta:
                customer = db.session.get(Customer, sale.customer_id)
                customer.current_balance = round((customer.current_balance or 0.0) + delta, 2)
            sync_sale_debt(sale)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        logger.info("Sale %s payment set to %.2f (%s)", sale.id, sale.paid_amount, sale.payment_status)
        return sale

    return run_with_retry(_op)


def delete_sale(sale_id: int, *, force: bool = False, user_id: int | None = None) -> None:
    """
    Delete a sale and restore its stock through reversal movements.

    Returns or payments block deletion unless force is set.
    """
    def _op():
        begin_write()
        try:
            sale = get_sale(sale_id)
            if not force:
                if sale.returns:
                    raise ConflictError("Cannot delete a sale that has returns (use force)")
                if (sale.paid_amount or 0.0) > 0:
                    raise ConflictError("Cannot delete a sale that has payments (use force)")

            return_ids = [r.id for r in sale.returns]
            sale_moves = (
                db.session.query(StockMovement)
                .filter(StockMovement.reference_type == "sale", StockMovement.reference_id == sale.id)
                .order_by(StockMovement.id)
                .all()
            )
            return_moves = []
            if return_ids:
                return_moves = (
                    db.session.query(StockMovement)
                    .filter(StockMovement.reference_type == "sale_return", StockMovement.reference_id.in_(return_ids))
                    .order_by(StockMovement.id)
                    .all()
                )
            for mv in sale_moves:
                stock_movement_service.stage_reversal(mv, user_id=user_id, notes=f"Sale {sale.invoice_no} deleted")
            for mv in return_moves:
                stock_movement_service.stage_reversal(
                    mv, user_id=user_id, notes=f"Sale {sale.invoice_no} deleted", check_balance=False,
                )

            if sale.customer_id is not None and sale.paid_amount:
                customer = db.session.get(Customer, sale.customer_id)
                customer.current_balance = round((customer.current_balance or 0.0) - sale.paid_amount, 2)

            db.session.query(CustomerReceipt).filter(CustomerReceipt.sale_id == sale.id).update({"sale_id": None})
            db.session.query(Installment).filter(Installment.sale_id == sale.id).delete()
            db.session.query(DelegateCommission).filter(DelegateCommission.sale_id == sale.id).delete()
            db.session.query(Debt).filter(Debt.sale_id == sale.id).delete()
            db.session.delete(sale)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        logger.info("Sale %s deleted (force=%s)", sale_id, force)

    run_with_retry(_op)


# =============================================================================
# RETURNS
# =============================================================================

def _collect_return_lines(sale: Sale, items) -> dict[int, int]:
    """sale_item_id -> quantity, validated against what is still returnable."""
    if not isinstance(items, list) or not items:
        raise ValidationError("Return must include at least one item")
    by_id = {item.id: item for item in sale.items}
    requested: dict[int, int] = defaultdict(int)
    for i, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{i}] must be an object")
        item_id = require_positive_int(raw.get("sale_item_id"), f"items[{i}].sale_item_id")
        if item_id not in by_id:
            raise ValidationError(f"Invalid sale item id: {item_id}")
        requested[item_id] += require_positive_int(raw.get("quantity"), f"items[{i}].quantity")
    for item_id, qty in requested.items():
        remaining = by_id[item_id].remaining_quantity
        if qty > remaining:
            raise SaleError(
                f"Return quantity exceeds remaining quantity for item {item_id}",
                details={"sale_item_id": item_id, "requested": qty, "remaining": remaining},
            )
    return dict(requested)


def process_return(
    sale_id: int,
    items,
    *,
    reason: str | None = None,
    refund_method: str = "cash",
    user_id: int | None = None,
) -> dict:
    """
    Return some or all of a sale's lines.

    Returned goods go back into the stock each line was sold from. Money
    already paid above the reduced invoice value is refunded: the sale's
    paid_amount and the customer balance go down, and a cash refund is
    taken from the user's open cash box when there is one.
    """
    refund_method = refund_method or "cash"
    if refund_method not in SALE_PAYMENT_METHODS:
        raise ValidationError(f"refund_method must be one of {', '.join(SALE_PAYMENT_METHODS)}")

    def _op():
        begin_write()
        try:
            sale = get_sale(sale_id)
            if sale.status not in RETURNABLE_STATUSES:
                raise SaleError(f"Only completed sales can be returned (status: {sale.status})")
            lines = _collect_return_lines(sale, items)
            by_id = {item.id: item for item in sale.items}

            total = round(sum(qty * by_id[item_id].price for item_id, qty in lines.items()), 2)
            sale_return = SaleReturn(
                sale=sale,
                return_date=utcnow(),
                reason=reason,
                status="completed",
                refund_method=refund_method,
                total_amount=total,
                created_by=user_id,
            )
            db.session.add(sale_return)
            db.session.flush()

            for item_id, qty in lines.items():
                item = by_id[item_id]
                sale_return.items.append(SaleReturnItem(
                    sale_item_id=item.id,
                    quantity=qty,
                    price=item.price,
                    total=round(qty * item.price, 2),
                ))
                item.returned_quantity = (item.returned_quantity or 0) + qty
                if item.product_id is not None and item.stock_id is not None:
                    stock_movement_service.apply_movement(
                        movement_type="return",
                        product_id=item.product_id,
                        quantity=qty,
                        to_stock_id=item.stock_id,
                        unit_cost=item.price,
                        reference_type="sale_return",
                        reference_id=sale_return.id,
                        reference_number=sale.invoice_no,
                        notes=reason,
                        created_by=user_id,
                    )
            db.session.flush()

            owed = owed_total(sale)
            refund = round(max((sale.paid_amount or 0.0) - owed, 0.0), 2)
            if refund > 0:
                sale.paid_amount = round(sale.paid_amount - refund, 2)
                if sale.customer_id is not None:
                    customer = db.session.get(Customer, sale.customer_id)
                    customer.current_balance = round((customer.current_balance or 0.0) - refund, 2)
                if refund_method == "cash" and user_id is not None:
                    box = cashbox_service.get_user_cash_box(user_id)
                    if box is not None:
                        cashbox_service.apply_transaction(
                            box.id, user_id, "sale_return", refund,
                            reference_type="sale_return", reference_id=sale_return.id,
                            notes=f"Refund for {sale.invoice_no}",
                        )
            sync_sale_debt(sale)

            sale.status = return_status(
                all(item.returned_quantity >= item.quantity for item in sale.items),
                returned_amount(sale),
                sale.net_amount,
            )

            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        logger.info("Sale %s return %s: %.2f, status=%s", sale.id, sale_return.id, total, sale.status)
        return {
            "return_id": sale_return.id,
            "sale_id": sale.id,
            "status": sale.status,
            "total_amount": total,
            "refund_amount": refund,
            "return": sale_return.to_dict(),
            "new_sale_amounts": {
                "total": owed,
                "paid": sale.paid_amount,
                "remaining": round(max(owed - sale.paid_amount, 0.0), 2),
                "payment_status": sale.payment_status,
            },
            "sale": sale_details(sale),
        }

    return run_with_retry(_op)


def list_returns(sale_id: int) -> list[SaleReturn]:
    return get_sale(sale_id).returns
