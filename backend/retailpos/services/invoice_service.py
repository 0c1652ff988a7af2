# Overview: Invoice arithmetic, payment-status derivation and invoice numbering shared by sales and purchases.

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from datetime import date

from sqlalchemy import func

from ..extensions import db
from ..time_utils import utcnow


def payment_status(paid_amount: float, net_amount: float) -> str:
    """
    paid    iff paid >= net
    partial iff 0 < paid < net
    unpaid  iff paid <= 0
    """
    paid = round(paid_amount or 0.0, 2)
    net = round(net_amount or 0.0, 2)
    if paid <= 0:
        return "unpaid"
    if paid >= net:
        return "paid"
    return "partial"


def return_status(all_lines_returned: bool, returned_amount: float, net_amount: float) -> str:
    """
    Status of an invoice after a return. Either full coverage criterion is
    enough: every line back, or the refunded value reaching net_amount.
    """
    amount_covered = round(returned_amount or 0.0, 2) >= round(net_amount or 0.0, 2) - 0.005
    return "returned" if (all_lines_returned or amount_covered) else "partially_returned"


@dataclass(frozen=True)
class LineTotals:
    subtotal: float
    discount: float
    tax: float
    total: float


def line_totals(quantity: int, price: float, discount_percent: float = 0.0, tax_percent: float = 0.0) -> LineTotals:
    """qty * price, minus discount%, plus tax% on the discounted amount."""
    subtotal = quantity * price
    discount = subtotal * (discount_percent or 0.0) / 100.0
    tax = (subtotal - discount) * (tax_percent or 0.0) / 100.0
    return LineTotals(
        subtotal=round(subtotal, 2),
        discount=round(discount, 2),
        tax=round(tax, 2),
        total=round(subtotal - discount + tax, 2),
    )


@dataclass(frozen=True)
class InvoiceTotals:
    total_amount: float
    discount_amount: float
    tax_amount: float
    net_amount: float


def compute_totals(lines: list[LineTotals], discount_amount: float = 0.0, tax_amount: float = 0.0) -> InvoiceTotals:
    """
    Header totals: total = sum of line subtotals; discount and tax are the line
    discounts/taxes plus the invoice-level amounts; net = total - discount + tax.
    """
    total = sum(line.subtotal for line in lines)
    discount = sum(line.discount for line in lines) + (discount_amount or 0.0)
    tax = sum(line.tax for line in lines) + (tax_amount or 0.0)
    net = total - discount + tax
    return InvoiceTotals(
        total_amount=round(total, 2),
        discount_amount=round(discount, 2),
        tax_amount=round(tax, 2),
        net_amount=round(net, 2),
    )


def fallback_number(prefix: str) -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{random.randint(1000, 9999)}"


def next_invoice_number(model, prefix: str = "INV", day: date | None = None, *, pad: int = 4, attempts: int = 20) -> str:
    """
    Allocate "<prefix>-YYYYMMDD-NNNN" for the given day.

    The sequence starts after the number of invoices already carrying the
    day's stem and skips forward past collisions. When every candidate is
    taken a timestamp+random number is returned instead.
    """
    day = day or utcnow().date()
    stem = f"{prefix}-{day:%Y%m%d}-"
    taken = (
        db.session.query(func.count(model.id))
        .filter(model.invoice_no.like(f"{stem}%"))
        .scalar()
        or 0
    )
    for offset in range(1, attempts + 1):
        candidate = f"{stem}{taken + offset:0{pad}d}"
        exists = db.session.query(model.id).filter(model.invoice_no == candidate).first()
        if not exists:
            return candidate
    return fallback_number(prefix)
