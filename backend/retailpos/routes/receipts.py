# Overview: Flask API routes for customer receipts (money received outside a sale).

from flask import Blueprint, request

from ..decorators import current_user_id, require_auth
from ..responses import API_ERRORS, error_response, internal_error, json_body, ok, query_int
from ..services import receipt_service

receipts_bp = Blueprint("customer_receipts", __name__, url_prefix="/api/customer-receipts")


@receipts_bp.get("")
@require_auth
def list_receipts_route():
    keys = ("customer_id", "payment_method", "date_from", "date_to")
    filters = {k: request.args.get(k) for k in keys if request.args.get(k)}
    try:
        result = receipt_service.list_receipts(filters, page=query_int("page"), per_page=query_int("per_page"))
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(result)


@receipts_bp.post("")
@require_auth
def create_receipt_route():
    """Body: customer_id, amount, sale_id?, payment_method?, money_box_id?, receipt_date?, notes?"""
    try:
        receipt = receipt_service.create_receipt(json_body(), user_id=current_user_id())
    except API_ERRORS as exc:
        return error_response(exc)
    except Exception:
        return internal_error("create_receipt")
    return ok(receipt.to_dict(), 201)


@receipts_bp.get("/customer/<int:customer_id>/summary")
@require_auth
def customer_summary_route(customer_id: int):
    try:
        return ok(receipt_service.customer_summary(customer_id))
    except API_ERRORS as exc:
        return error_response(exc)


@receipts_bp.get("/<int:receipt_id>")
@require_auth
def get_receipt_route(receipt_id: int):
    try:
        return ok(receipt_service.get_receipt(receipt_id).to_dict())
    except API_ERRORS as exc:
        return error_response(exc)


@receipts_bp.delete("/<int:receipt_id>")
@require_auth
def delete_receipt_route(receipt_id: int):
    try:
        receipt_service.delete_receipt(receipt_id, user_id=current_user_id())
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(message="Receipt deleted")
