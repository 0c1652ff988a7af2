# Overview: Flask API routes for customers and suppliers.

from flask import Blueprint, request

from ..decorators import require_auth
from ..responses import API_ERRORS, error_response, json_body, ok, query_bool
from ..services import party_service

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")
suppliers_bp = Blueprint("suppliers", __name__, url_prefix="/api/suppliers")


# =============================================================================
# CUSTOMERS
# =============================================================================

@customers_bp.get("")
@require_auth
def list_customers_route():
    rows = party_service.list_customers(
        search=request.args.get("search"), include_inactive=query_bool("include_inactive")
    )
    return ok([c.to_dict() for c in rows])


@customers_bp.post("")
@require_auth
def create_customer_route():
    try:
        customer = party_service.create_customer(json_body())
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(customer.to_dict(), 201)


@customers_bp.get("/<int:customer_id>")
@require_auth
def get_customer_route(customer_id: int):
    try:
        return ok(party_service.get_customer(customer_id).to_dict())
    except API_ERRORS as exc:
        return error_response(exc)


@customers_bp.get("/<int:customer_id>/summary")
@require_auth
def customer_summary_route(customer_id: int):
    try:
        return ok(party_service.customer_financial_summary(customer_id))
    except API_ERRORS as exc:
        return error_response(exc)


@customers_bp.put("/<int:customer_id>")
@require_auth
def update_customer_route(customer_id: int):
    try:
        customer = party_service.update_customer(customer_id, json_body())
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(customer.to_dict())


@customers_bp.delete("/<int:customer_id>")
@require_auth
def delete_customer_route(customer_id: int):
    try:
        party_service.delete_customer(customer_id)
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(message="Customer deleted")


# =============================================================================
# SUPPLIERS
# =============================================================================

@suppliers_bp.get("")
@require_auth
def list_suppliers_route():
    rows = party_service.list_suppliers(
        search=request.args.get("search"), include_inactive=query_bool("include_inactive")
    )
    return ok([s.to_dict() for s in rows])


@suppliers_bp.post("")
@require_auth
def create_supplier_route():
    try:
        supplier = party_service.create_supplier(json_body())
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(supplier.to_dict(), 201)


@suppliers_bp.get("/<int:supplier_id>")
@require_auth
def get_supplier_route(supplier_id: int):
    try:
        return ok(party_service.get_supplier(supplier_id).to_dict())
    except API_ERRORS as exc:
        return error_response(exc)


@suppliers_bp.get("/<int:supplier_id>/summary")
@require_auth
def supplier_summary_route(supplier_id: int):
    try:
        return ok(party_service.supplier_financial_summary(supplier_id))
    except API_ERRORS as exc:
        return error_response(exc)


@suppliers_bp.put("/<int:supplier_id>")
@require_auth
def update_supplier_route(supplier_id: int):
    try:
        supplier = party_service.update_supplier(supplier_id, json_body())
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(supplier.to_dict())


@suppliers_bp.delete("/<int:supplier_id>")
@require_auth
def delete_supplier_route(supplier_id: int):
    try:
        party_service.delete_supplier(supplier_id)
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(message="Supplier deleted")
