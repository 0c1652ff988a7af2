# Overview: Flask API routes for named money boxes (safe, bank, daily box, ...).

from flask import Blueprint, request

from ..decorators import current_user_id, require_auth
from ..responses import API_ERRORS, error_response, fail, json_body, ok, query_int
from ..services import money_box_service
from ..validation import optional_id

money_boxes_bp = Blueprint("money_boxes", __name__, url_prefix="/api/money-boxes")


@money_boxes_bp.get("")
@require_auth
def list_money_boxes_route():
    return ok(money_box_service.all_balances())


@money_boxes_bp.post("")
@require_auth
def create_money_box_route():
    data = json_body()
    try:
        box = money_box_service.create_money_box(
            data.get("name"), data.get("amount"), data.get("notes"), user_id=current_user_id()
        )
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(box.to_dict(), 201)


@money_boxes_bp.post("/transfer")
@require_auth
def transfer_route():
    data = json_body()
    from_id = optional_id(data.get("from_box_id"))
    to_id = optional_id(data.get("to_box_id"))
    if from_id is None or to_id is None:
        return fail("from_box_id and to_box_id are required", 400)
    try:
        result = money_box_service.transfer_between_boxes(
            from_id, to_id, data.get("amount"), data.get("notes"), user_id=current_user_id()
        )
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(result, 201)


@money_boxes_bp.get("/<int:box_id>")
@require_auth
def get_money_box_route(box_id: int):
    try:
        return ok(money_box_service.get_summary(box_id))
    except API_ERRORS as exc:
        return error_response(exc)


@money_boxes_bp.put("/<int:box_id>")
@require_auth
def update_money_box_route(box_id: int):
    data = json_body()
    try:
        box = money_box_service.update_money_box(box_id, name=data.get("name"), notes=data.get("notes"))
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(box.to_dict())


@money_boxes_bp.delete("/<int:box_id>")
@require_auth
def delete_money_box_route(box_id: int):
    try:
        money_box_service.delete_money_box(box_id)
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(message="Money box deleted")


@money_boxes_bp.get("/<int:box_id>/transactions")
@require_auth
def transactions_route(box_id: int):
    filters = {k: request.args.get(k) for k in ("type", "start_date", "end_date") if request.args.get(k)}
    try:
        return ok(money_box_service.get_transactions(
            box_id, filters, page=query_int("page"), per_page=query_int("per_page")
        ))
    except API_ERRORS as exc:
        return error_response(exc)


@money_boxes_bp.post("/<int:box_id>/transactions")
@require_auth
def add_transaction_route(box_id: int):
    """Body: type, amount, notes?, reference_id?"""
    data = json_body()
    try:
        tx = money_box_service.add_transaction(
            box_id,
            data.get("type") or data.get("transaction_type"),
            data.get("amount"),
            notes=data.get("notes"),
            reference_id=optional_id(data.get("reference_id")),
            user_id=current_user_id(),
        )
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(tx.to_dict(), 201)
