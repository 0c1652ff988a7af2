# Overview: Flask API routes for sales, sale payments and sale returns.

from flask import Blueprint, request

from ..decorators import current_user_id, require_admin, require_auth
from ..responses import API_ERRORS, error_response, internal_error, json_body, ok, query_bool, query_int
from ..services import sales_service

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")

FILTER_KEYS = ("customer_id", "delegate_id", "status", "payment_status", "date_from", "date_to", "search")


@sales_bp.get("")
@require_auth
def list_sales_route():
    filters = {k: request.args.get(k) for k in FILTER_KEYS if request.args.get(k)}
    try:
        return ok(sales_service.list_sales(filters, page=query_int("page"), per_page=query_int("per_page")))
    except API_ERRORS as exc:
        return error_response(exc)


@sales_bp.post("")
@require_auth
def create_sale_route():
    """
    Body: items[{product_id?, name?, quantity, price, discount_percent?, tax_percent?}],
    customer_id?, delegate_id?, invoice_date?, due_date?, discount_amount?,
    tax_amount?, paid_amount?, payment_method?, status?, notes?, barcode?
    """
    try:
        sale = sales_service.create_sale(json_body(), user_id=current_user_id())
    except API_ERRORS as exc:
        return error_response(exc)
    except Exception:
        return internal_error("create_sale")
    return ok(sales_service.sale_details(sale), 201)


@sales_bp.get("/invoice/<string:invoice_no>")
@require_auth
def sale_by_invoice_route(invoice_no: str):
    try:
        return ok(sales_service.sale_details(sales_service.get_by_invoice(invoice_no)))
    except API_ERRORS as exc:
        return error_response(exc)


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    try:
        return ok(sales_service.sale_details(sales_service.get_sale(sale_id)))
    except API_ERRORS as exc:
        return error_response(exc)


@sales_bp.put("/<int:sale_id>/payment")
@require_auth
def update_payment_route(sale_id: int):
    data = json_body()
    try:
        sale = sales_service.update_payment(sale_id, data.get("paid_amount"), user_id=current_user_id())
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(sales_service.sale_details(sale))


@sales_bp.delete("/<int:sale_id>")
@require_auth
@require_admin
def delete_sale_route(sale_id: int):
    """Admin only. ?force=true also deletes a sale that has returns."""
    try:
        sales_service.delete_sale(sale_id, force=query_bool("force"), user_id=current_user_id())
    except API_ERRORS as exc:
        return error_response(exc)
    except Exception:
        return internal_error("delete_sale")
    return ok(message="Sale deleted")


@sales_bp.post("/<int:sale_id>/return")
@require_auth
def return_sale_route(sale_id: int):
    """Body: items[{sale_item_id, quantity}], reason?, refund_method?"""
    data = json_body()
    try:
        result = sales_service.process_return(
            sale_id,
            data.get("items"),
            reason=data.get("reason"),
            refund_method=data.get("refund_method") or "cash",
            user_id=current_user_id(),
        )
    except API_ERRORS as exc:
        return error_response(exc)
    except Exception:
        return internal_error("return_sale")
    return ok(result, message="Return processed")


@sales_bp.get("/<int:sale_id>/returns")
@require_auth
def list_sale_returns_route(sale_id: int):
    try:
        return ok([r.to_dict() for r in sales_service.list_returns(sale_id)])
    except API_ERRORS as exc:
        return error_response(exc)
