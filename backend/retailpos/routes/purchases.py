# Overview: Flask API routes for purchases, supplier payments and purchase returns.

from flask import Blueprint, request

from ..decorators import current_user_id, require_admin, require_auth
from ..responses import API_ERRORS, error_response, internal_error, json_body, ok, query_bool, query_int
from ..services import purchase_service
from ..validation import optional_id

purchases_bp = Blueprint("purchases", __name__, url_prefix="/api/purchases")

FILTER_KEYS = ("supplier_id", "status", "payment_status", "date_from", "date_to", "search")


@purchases_bp.get("")
@require_auth
def list_purchases_route():
    filters = {k: request.args.get(k) for k in FILTER_KEYS if request.args.get(k)}
    try:
        result = purchase_service.list_purchases(filters, page=query_int("page"), per_page=query_int("per_page"))
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(result)


@purchases_bp.post("")
@require_auth
def create_purchase_route():
    """
    Credit-limit problems do not block the purchase; they come back as
    warnings next to the created record.
    """
    try:
        purchase, warnings = purchase_service.create_purchase(json_body(), user_id=current_user_id())
    except API_ERRORS as exc:
        return error_response(exc)
    except Exception:
        return internal_error("create_purchase")
    return ok(purchase_service.purchase_details(purchase), 201, warnings=warnings)


@purchases_bp.get("/<int:purchase_id>")
@require_auth
def get_purchase_route(purchase_id: int):
    try:
        return ok(purchase_service.purchase_details(purchase_service.get_purchase(purchase_id)))
    except API_ERRORS as exc:
        return error_response(exc)


@purchases_bp.put("/<int:purchase_id>/payment")
@require_auth
def update_payment_route(purchase_id: int):
    data = json_body()
    try:
        purchase = purchase_service.update_payment(purchase_id, data.get("paid_amount"), user_id=current_user_id())
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(purchase_service.purchase_details(purchase))


@purchases_bp.delete("/<int:purchase_id>")
@require_auth
@require_admin
def delete_purchase_route(purchase_id: int):
    try:
        purchase_service.delete_purchase(purchase_id, force=query_bool("force"), user_id=current_user_id())
    except API_ERRORS as exc:
        return error_response(exc)
    except Exception:
        return internal_error("delete_purchase")
    return ok(message="Purchase deleted")


@purchases_bp.post("/<int:purchase_id>/return")
@require_auth
def return_purchase_route(purchase_id: int):
    """Body: items[{purchase_item_id, quantity}], reason?, refund_method?, money_box_id?"""
    data = json_body()
    try:
        result = purchase_service.process_return(
            purchase_id,
            data.get("items"),
            reason=data.get("reason"),
            refund_method=data.get("refund_method") or "cash",
            money_box_id=optional_id(data.get("money_box_id")),
            user_id=current_user_id(),
        )
    except API_ERRORS as exc:
        return error_response(exc)
    except Exception:
        return internal_error("return_purchase")
    return ok(result, message="Return processed")
