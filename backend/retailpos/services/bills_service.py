# Overview: Combined read-only view over sale and purchase invoices and their returns.

from __future__ import annotations

from datetime import datetime, time, timedelta

from sqlalchemy import func

from ..extensions import db
from ..models import Purchase, PurchaseReturn, Sale, SaleReturn
from ..time_utils import parse_iso_date
from ..validation import ValidationError

BILL_KINDS = ("all", "sale", "purchase")


def _date_range(filters: dict):
    try:
        start = parse_iso_date(filters.get("date_from")) if filters.get("date_from") else None
        end = parse_iso_date(filters.get("date_to")) if filters.get("date_to") else None
    except ValueError:
        raise ValidationError("date_from/date_to must be ISO-8601 dates (YYYY-MM-DD)")
    return start, end


def _kind(filters: dict) -> str:
    kind = filters.get("kind") or "all"
    if kind not in BILL_KINDS:
        raise ValidationError(f"kind must be one of {', '.join(BILL_KINDS)}")
    return kind


def _bill_row(kind: str, record) -> dict:
    data = record.to_dict(include_items=False)
    data["bill_kind"] = kind
    data["party_name"] = data.get("customer_name") if kind == "sale" else data.get("supplier_name")
    return data


def list_bills(filters: dict | None = None, page: int | None = None, per_page: int | None = None) -> dict:
    """
    Sales and purchases merged into one list, newest invoice first.

    Filters: kind (all|sale|purchase), status, payment_status, date_from, date_to.
    """
    filters = filters or {}
    kind = _kind(filters)
    start, end = _date_range(filters)

    rows: list[dict] = []
    for model, label in ((Sale, "sale"), (Purchase, "purchase")):
        if kind not in ("all", label):
            continue
        q = db.session.query(model)
        if filters.get("status"):
            q = q.filter(model.status == filters["status"])
        if filters.get("payment_status"):
            q = q.filter(model.payment_status == filters["payment_status"])
        if start is not None:
            q = q.filter(model.invoice_date >= start)
        if end is not None:
            q = q.filter(model.invoice_date <= end)
        rows.extend(_bill_row(label, r) for r in q.all())

    rows.sort(key=lambda r: (r["invoice_date"] or "", r["created_at"] or ""), reverse=True)

    if page is None:
        return {"items": rows, "count": len(rows)}

    per_page = min(max(int(per_page or 20), 1), 200)
    page = max(int(page), 1)
    total = len(rows)
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    items = rows[(page - 1) * per_page: page * per_page]
    return {
        "items": items,
        "count": len(items),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def list_returns(filters: dict | None = None) -> list[dict]:
    """Sale and purchase returns, newest first."""
    filters = filters or {}
    kind = _kind(filters)
    start, end = _date_range(filters)

    rows: list[dict] = []
    for model, label in ((SaleReturn, "sale"), (PurchaseReturn, "purchase")):
        if kind not in ("all", label):
            continue
        q = db.session.query(model)
        if start is not None:
            q = q.filter(model.return_date >= datetime.combine(start, time.min))
        if end is not None:
            q = q.filter(model.return_date < datetime.combine(end + timedelta(days=1), time.min))
        for r in q.all():
            data = r.to_dict()
            data["bill_kind"] = label
            rows.append(data)
    rows.sort(key=lambda r: r["return_date"] or "", reverse=True)
    return rows


def get_statistics(filters: dict | None = None) -> dict:
    filters = filters or {}
    start, end = _date_range(filters)
    result = {}
    for model, label in ((Sale, "sales"), (Purchase, "purchases")):
        q = db.session.query(
            func.count(model.id),
            func.coalesce(func.sum(model.net_amount), 0.0),
            func.coalesce(func.sum(model.paid_amount), 0.0),
        ).filter(model.status != "cancelled")
        if start is not None:
            q = q.filter(model.invoice_date >= start)
        if end is not None:
            q = q.filter(model.invoice_date <= end)
        count, net, paid = q.one()
        result[label] = {
            "count": int(count),
            "net_amount": round(float(net), 2),
            "paid_amount": round(float(paid), 2),
            "remaining_amount": round(max(float(net) - float(paid), 0.0), 2),
        }
    return result
