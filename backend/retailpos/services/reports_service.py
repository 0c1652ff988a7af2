# Overview: Dashboard and inventory reports built from invoices and the stock ledger.

from __future__ import annotations

from datetime import date, datetime, time, timedelta

from sqlalchemy import func

from ..extensions import db
from ..models import Product, Purchase, Sale, SaleItem, SaleReturn, SaleReturnItem, Stock
from ..time_utils import parse_iso_date, utcnow
from ..validation import ValidationError
from . import money_box_service
from .products_service import low_stock_products
from .stock_movement_service import get_stock_quantities

COUNTED_SALE_STATUSES = ("completed", "partially_returned", "returned")


class ReportError(Exception):
    """Raised when report generation fails."""
    pass


def _parse_range(start, end) -> tuple[date | None, date | None]:
    try:
        start_d = parse_iso_date(start) if start else None
        end_d = parse_iso_date(end) if end else None
    except ValueError:
        raise ValidationError("start/end must be ISO-8601 dates (YYYY-MM-DD)")
    if start_d and end_d and start_d > end_d:
        raise ReportError("start must be on or before end")
    return start_d, end_d


def _in_range(query, column, start: date | None, end: date | None):
    if start is not None:
        query = query.filter(column >= start)
    if end is not None:
        query = query.filter(column <= end)
    return query


def dashboard_summary(start=None, end=None, *, top: int = 5) -> dict:
    """
    Headline numbers for a date range (invoice dates, inclusive).

    Sales are net of returns; cost of goods uses each product's current
    purchase_price for the quantity kept by the customer.
    """
    start_d, end_d = _parse_range(start, end)

    sales_q = db.session.query(
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.net_amount), 0.0),
        func.coalesce(func.sum(Sale.paid_amount), 0.0),
    ).filter(Sale.status.in_(COUNTED_SALE_STATUSES))
    sales_count, gross_sales, collected = _in_range(sales_q, Sale.invoice_date, start_d, end_d).one()

    returns_q = (
        db.session.query(func.coalesce(func.sum(SaleReturn.total_amount), 0.0))
        .join(Sale, Sale.id == SaleReturn.sale_id)
        .filter(Sale.status.in_(COUNTED_SALE_STATUSES))
    )
    returns_total = _in_range(returns_q, Sale.invoice_date, start_d, end_d).scalar() or 0.0

    kept = SaleItem.quantity - SaleItem.returned_quantity
    cogs_q = (
        db.session.query(func.coalesce(func.sum(kept * Product.purchase_price), 0.0))
        .select_from(SaleItem)
        .join(Sale, Sale.id == SaleItem.sale_id)
        .join(Product, Product.id == SaleItem.product_id)
        .filter(Sale.status.in_(COUNTED_SALE_STATUSES))
    )
    cost_of_goods = _in_range(cogs_q, Sale.invoice_date, start_d, end_d).scalar() or 0.0

    status_q = (
        db.session.query(Sale.payment_status, func.count(Sale.id))
        .filter(Sale.status.in_(COUNTED_SALE_STATUSES))
        .group_by(Sale.payment_status)
    )
    by_payment_status = {"paid": 0, "partial": 0, "unpaid": 0}
    for status, count in _in_range(status_q, Sale.invoice_date, start_d, end_d).all():
        by_payment_status[status] = int(count)

    purchases_q = db.session.query(
        func.count(Purchase.id),
        func.coalesce(func.sum(Purchase.net_amount), 0.0),
        func.coalesce(func.sum(Purchase.paid_amount), 0.0),
    ).filter(Purchase.status != "cancelled")
    purchase_count, purchase_total, purchase_paid = _in_range(
        purchases_q, Purchase.invoice_date, start_d, end_d
    ).one()

    top_q = (
        db.session.query(
            SaleItem.product_id,
            SaleItem.product_name,
            func.sum(kept).label("quantity"),
            func.sum(kept * SaleItem.price).label("revenue"),
        )
        .join(Sale, Sale.id == SaleItem.sale_id)
        .filter(Sale.status.in_(COUNTED_SALE_STATUSES), SaleItem.product_id.isnot(None))
        .group_by(SaleItem.product_id, SaleItem.product_name)
        .order_by(func.sum(kept).desc())
        .limit(top)
    )
    top_products = [
        {
            "product_id": pid,
            "product_name": name,
            "quantity": int(qty or 0),
            "revenue": round(float(revenue or 0.0), 2),
        }
        for pid, name, qty, revenue in _in_range(top_q, Sale.invoice_date, start_d, end_d).all()
        if (qty or 0) > 0
    ]

    net_sales = round(float(gross_sales) - float(returns_total), 2)
    return {
        "period": {
            "start": start_d.isoformat() if start_d else None,
            "end": end_d.isoformat() if end_d else None,
        },
        "sales": {
            "count": int(sales_count),
            "gross_amount": round(float(gross_sales), 2),
            "returns_amount": round(float(returns_total), 2),
            "net_amount": net_sales,
            "collected_amount": round(float(collected), 2),
            "by_payment_status": by_payment_status,
        },
        "cost_of_goods": round(float(cost_of_goods), 2),
        "gross_profit": round(net_sales - float(cost_of_goods), 2),
        "purchases": {
            "count": int(purchase_count),
            "net_amount": round(float(purchase_total), 2),
            "paid_amount": round(float(purchase_paid), 2),
        },
        "top_products": top_products,
        "low_stock_count": len(low_stock_products()),
        "money_boxes": money_box_service.all_balances(),
        "generated_at": utcnow().isoformat(),
    }


def inventory_report() -> dict:
    """Ledger quantity and purchase-price value of every product in every active stock."""
    products = {p.id: p for p in db.session.query(Product).filter(Product.is_active.is_(True)).all()}
    stocks = db.session.query(Stock).filter(Stock.is_active.is_(True)).order_by(Stock.id).all()

    rows = []
    total_quantity = 0
    total_value = 0.0
    for stock in stocks:
        for product_id, qty in sorted(get_stock_quantities(stock.id).items()):
            product = products.get(product_id)
            if product is None or qty == 0:
                continue
            value = round(qty * (product.purchase_price or 0.0), 2)
            rows.append({
                "stock_id": stock.id,
                "stock_name": stock.name,
                "product_id": product.id,
                "product_name": product.name,
                "sku": product.sku,
                "quantity": qty,
                "unit_cost": product.purchase_price,
                "value": value,
            })
            total_quantity += qty
            total_value += value

    return {
        "items": rows,
        "count": len(rows),
        "total_quantity": total_quantity,
        "total_value": round(total_value, 2),
    }


def returns_report(start=None, end=None) -> list[dict]:
    """Returned quantities per product over a return-date range."""
    start_d, end_d = _parse_range(start, end)
    q = (
        db.session.query(
            SaleItem.product_id,
            SaleItem.product_name,
            func.sum(SaleReturnItem.quantity),
            func.sum(SaleReturnItem.total),
        )
        .join(SaleReturnItem, SaleReturnItem.sale_item_id == SaleItem.id)
        .join(SaleReturn, SaleReturn.id == SaleReturnItem.return_id)
        .group_by(SaleItem.product_id, SaleItem.product_name)
    )
    if start_d is not None:
        q = q.filter(SaleReturn.return_date >= datetime.combine(start_d, time.min))
    if end_d is not None:
        q = q.filter(SaleReturn.return_date < datetime.combine(end_d + timedelta(days=1), time.min))
    return [
        {"product_id": pid, "product_name": name, "quantity": int(qty or 0), "amount": round(float(amt or 0.0), 2)}
        for pid, name, qty, amt in q.all()
    ]
