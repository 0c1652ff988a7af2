# Overview: Flask API routes for per-user cash-box sessions.

from flask import Blueprint, g

from ..decorators import require_admin, require_auth
from ..responses import API_ERRORS, error_response, fail, json_body, ok, query_int
from ..services import cashbox_service
from ..validation import optional_id

cashbox_bp = Blueprint("cashbox", __name__, url_prefix="/api/cashbox")


@cashbox_bp.get("/my-cash-box")
@require_auth
def my_cash_box_route():
    box = cashbox_service.get_user_cash_box(g.current_user.id)
    return ok(box.to_dict() if box is not None else None)


@cashbox_bp.post("/open")
@require_auth
def open_cash_box_route():
    data = json_body()
    try:
        box = cashbox_service.open_cash_box(g.current_user.id, data.get("opening_amount"), data.get("notes"))
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(box.to_dict(), 201, message="Cash box opened")


@cashbox_bp.post("/close")
@require_auth
def close_cash_box_route():
    data = json_body()
    try:
        box = cashbox_service.close_cash_box(g.current_user.id, data.get("closing_amount"), data.get("notes"))
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(box.to_dict(), message="Cash box closed")


@cashbox_bp.post("/transaction")
@require_auth
def manual_transaction_route():
    """Body: transaction_type (deposit|withdrawal|adjustment), amount, notes?"""
    data = json_body()
    try:
        tx = cashbox_service.add_manual_transaction(
            g.current_user.id, data.get("transaction_type"), data.get("amount"), data.get("notes")
        )
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(tx.to_dict(), 201)


@cashbox_bp.post("/transfer-to-money-box")
@require_auth
def transfer_to_money_box_route():
    data = json_body()
    money_box_id = optional_id(data.get("money_box_id"))
    if money_box_id is None:
        return fail("money_box_id is required", 400)
    try:
        result = cashbox_service.transfer_to_money_box(
            g.current_user.id, money_box_id, data.get("amount"), data.get("notes")
        )
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(result, 201)


@cashbox_bp.get("/<int:cash_box_id>/transactions")
@require_auth
def transactions_route(cash_box_id: int):
    try:
        return ok(cashbox_service.get_transactions(
            cash_box_id, page=query_int("page"), per_page=query_int("per_page")
        ))
    except API_ERRORS as exc:
        return error_response(exc)


@cashbox_bp.get("/<int:cash_box_id>/summary")
@require_auth
def summary_route(cash_box_id: int):
    try:
        return ok(cashbox_service.get_summary(cash_box_id))
    except API_ERRORS as exc:
        return error_response(exc)


@cashbox_bp.get("/history")
@require_auth
def history_route():
    """Own sessions; admins may pass ?user_id= or omit it to see every user."""
    user_id = g.current_user.id
    if g.current_user.role == "admin":
        user_id = query_int("user_id")
    return ok(cashbox_service.get_history(user_id, page=query_int("page"), per_page=query_int("per_page")))


@cashbox_bp.get("/settings")
@require_auth
def get_settings_route():
    return ok(cashbox_service.get_settings(g.current_user.id).to_dict())


@cashbox_bp.put("/settings")
@require_auth
def update_settings_route():
    try:
        settings = cashbox_service.update_settings(g.current_user.id, json_body())
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(settings.to_dict())


@cashbox_bp.get("/open-boxes")
@require_auth
@require_admin
def open_boxes_route():
    return ok([b.to_dict() for b in cashbox_service.list_open_cash_boxes()])


@cashbox_bp.post("/<int:cash_box_id>/force-close")
@require_auth
@require_admin
def force_close_route(cash_box_id: int):
    data = json_body()
    try:
        box = cashbox_service.force_close_cash_box(
            cash_box_id, g.current_user.id, data.get("reason"), optional_id(data.get("money_box_id"))
        )
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(box.to_dict(), message="Cash box force-closed")
