# Overview: Customers and suppliers: master data, deletion guards and financial summaries.

from __future__ import annotations

import logging

from sqlalchemy import func, or_

from ..extensions import db
from ..models import Customer, CustomerReceipt, Debt, Installment, Purchase, PurchaseReturn, Sale, Supplier
from ..validation import ConflictError, ModelValidationPolicy, NotFoundError, ValidationError, validate_payload

logger = logging.getLogger(__name__)

CUSTOMER_TYPES = ("retail", "wholesale", "vip")

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "phone", "email", "address", "customer_type", "tax_number",
        "credit_limit", "delegate_id", "is_active", "notes",
    },
    required_on_create={"name"},
)

SUPPLIER_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "contact_person", "phone", "email", "address", "tax_number",
        "credit_limit", "is_active", "notes",
    },
    required_on_create={"name"},
)


def _check_party(patch: dict) -> None:
    if "name" in patch and not (patch["name"] or "").strip():
        raise ValidationError("name cannot be empty")
    if patch.get("credit_limit") is not None and patch["credit_limit"] < 0:
        raise ValidationError("credit_limit must be >= 0")
    if patch.get("customer_type") is not None and patch["customer_type"] not in CUSTOMER_TYPES:
        raise ValidationError(f"customer_type must be one of {', '.join(CUSTOMER_TYPES)}")


# =============================================================================
# CUSTOMERS
# =============================================================================

def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found")
    return customer


def list_customers(*, search: str | None = None, include_inactive: bool = False) -> list[Customer]:
    q = db.session.query(Customer)
    if not include_inactive:
        q = q.filter(Customer.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(Customer.name.ilike(like), Customer.phone.ilike(like), Customer.email.ilike(like)))
    return q.order_by(Customer.name.asc()).all()


def create_customer(payload: dict) -> Customer:
    patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)
    patch["name"] = patch["name"].strip()
    _check_party(patch)
    customer = Customer(current_balance=0.0, **patch)
    db.session.add(customer)
    db.session.commit()
    logger.info("Customer %s created", customer.id)
    return customer


def update_customer(customer_id: int, payload: dict) -> Customer:
    customer = get_customer(customer_id)
    patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=True)
    _check_party(patch)
    for k, v in patch.items():
        setattr(customer, k, v.strip() if k == "name" else v)
    db.session.commit()
    return customer


def delete_customer(customer_id: int) -> None:
    """Delete a customer without invoices. Customers with sales must be deactivated instead."""
    customer = get_customer(customer_id)
    sales = db.session.query(func.count(Sale.id)).filter(Sale.customer_id == customer.id).scalar() or 0
    if sales:
        raise ConflictError(f"Cannot delete customer with {sales} sale(s); deactivate instead")
    receipts = (
        db.session.query(func.count(CustomerReceipt.id))
        .filter(CustomerReceipt.customer_id == customer.id)
        .scalar()
        or 0
    )
    if receipts:
        raise ConflictError(f"Cannot delete customer with {receipts} receipt(s); deactivate instead")
    db.session.delete(customer)
    db.session.commit()
    logger.info("Customer %s deleted", customer_id)


def customer_financial_summary(customer_id: int) -> dict:
    """
    Sales, payments, debts and installments for one customer.

    total_remaining is what the customer still owes across non-cancelled
    sales after returns.
    """
    customer = get_customer(customer_id)
    sales_count, sales_total, sales_paid, last_sale = (
        db.session.query(
            func.count(Sale.id),
            func.coalesce(func.sum(Sale.net_amount), 0.0),
            func.coalesce(func.sum(Sale.paid_amount), 0.0),
            func.max(Sale.invoice_date),
        )
        .filter(Sale.customer_id == customer.id, Sale.status != "cancelled")
        .one()
    )
    debt_total, debt_paid = (
        db.session.query(
            func.coalesce(func.sum(Debt.total_amount), 0.0),
            func.coalesce(func.sum(Debt.paid_amount), 0.0),
        )
        .filter(Debt.customer_id == customer.id)
        .one()
    )
    open_installments = (
        db.session.query(func.count(Installment.id))
        .filter(Installment.customer_id == customer.id, Installment.payment_status != "paid")
        .scalar()
        or 0
    )
    outstanding = round(float(debt_total) - float(debt_paid), 2)
    return {
        "customer": customer.to_dict(),
        "total_sales": int(sales_count),
        "total_sales_amount": round(float(sales_total), 2),
        "total_paid": round(float(sales_paid), 2),
        "total_remaining": outstanding,
        "last_sale_date": last_sale.isoformat() if last_sale else None,
        "open_installments": int(open_installments),
        "credit_limit": customer.credit_limit,
        "available_credit": (
            round(customer.credit_limit - outstanding, 2) if customer.credit_limit is not None else None
        ),
    }


# =============================================================================
# SUPPLIERS
# =============================================================================

def get_supplier(supplier_id: int) -> Supplier:
    supplier = db.session.get(Supplier, supplier_id)
    if supplier is None:
        raise NotFoundError(f"Supplier {supplier_id} not found")
    return supplier


def list_suppliers(*, search: str | None = None, include_inactive: bool = False) -> list[Supplier]:
    q = db.session.query(Supplier)
    if not include_inactive:
        q = q.filter(Supplier.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(Supplier.name.ilike(like), Supplier.contact_person.ilike(like), Supplier.phone.ilike(like)))
    return q.order_by(Supplier.name.asc()).all()


def create_supplier(payload: dict) -> Supplier:
    patch = validate_payload(model=Supplier, payload=payload, policy=SUPPLIER_POLICY, partial=False)
    patch["name"] = patch["name"].strip()
    _check_party(patch)
    supplier = Supplier(current_balance=0.0, **patch)
    db.session.add(supplier)
    db.session.commit()
    logger.info("Supplier %s created", supplier.id)
    return supplier


def update_supplier(supplier_id: int, payload: dict) -> Supplier:
    supplier = get_supplier(supplier_id)
    patch = validate_payload(model=Supplier, payload=payload, policy=SUPPLIER_POLICY, partial=True)
    _check_party(patch)
    for k, v in patch.items():
        setattr(supplier, k, v.strip() if k == "name" else v)
    db.session.commit()
    return supplier


def delete_supplier(supplier_id: int) -> None:
    supplier = get_supplier(supplier_id)
    purchases = db.session.query(func.count(Purchase.id)).filter(Purchase.supplier_id == supplier.id).scalar() or 0
    if purchases:
        raise ConflictError(f"Cannot delete supplier with {purchases} purchase(s); deactivate instead")
    db.session.delete(supplier)
    db.session.commit()
    logger.info("Supplier %s deleted", supplier_id)


def supplier_financial_summary(supplier_id: int) -> dict:
    supplier = get_supplier(supplier_id)
    count, total, paid = (
        db.session.query(
            func.count(Purchase.id),
            func.coalesce(func.sum(Purchase.net_amount), 0.0),
            func.coalesce(func.sum(Purchase.paid_amount), 0.0),
        )
        .filter(Purchase.supplier_id == supplier.id, Purchase.status != "cancelled")
        .one()
    )
    returned = (
        db.session.query(func.coalesce(func.sum(PurchaseReturn.total_amount), 0.0))
        .filter(PurchaseReturn.supplier_id == supplier.id)
        .scalar()
    )
    return {
        "supplier": supplier.to_dict(),
        "total_purchases": int(count),
        "total_purchase_amount": round(float(total), 2),
        "total_returned": round(float(returned or 0.0), 2),
        "total_paid": round(float(paid), 2),
        "total_remaining": round(max(float(total) - float(returned or 0.0) - float(paid), 0.0), 2),
    }
