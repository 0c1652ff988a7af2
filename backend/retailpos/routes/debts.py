# Overview: Flask API routes for customer debts and debt repayment.

from flask import Blueprint, request

from ..decorators import current_user_id, require_auth
from ..responses import API_ERRORS, error_response, json_body, ok, query_int
from ..services import debt_service
from ..validation import optional_id

debts_bp = Blueprint("debts", __name__, url_prefix="/api/debts")


@debts_bp.get("")
@require_auth
def list_debts_route():
    try:
        result = debt_service.list_debts(
            status=request.args.get("status") or None,
            customer_id=query_int("customer_id"),
            page=query_int("page"),
            per_page=query_int("per_page"),
        )
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(result)


@debts_bp.get("/stats")
@require_auth
def debt_statistics_route():
    return ok(debt_service.get_statistics(query_int("customer_id")))


@debts_bp.get("/<int:debt_id>")
@require_auth
def get_debt_route(debt_id: int):
    try:
        return ok(debt_service.get_debt(debt_id).to_dict())
    except API_ERRORS as exc:
        return error_response(exc)


@debts_bp.post("/<int:debt_id>/repay")
@require_auth
def repay_debt_route(debt_id: int):
    """Body: paid_amount, payment_method?, money_box_id?, notes?"""
    data = json_body()
    try:
        result = debt_service.repay_debt(
            debt_id,
            data.get("paid_amount", data.get("amount")),
            payment_method=data.get("payment_method") or "cash",
            money_box_id=optional_id(data.get("money_box_id")),
            notes=data.get("notes"),
            user_id=current_user_id(),
        )
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(result, message="Debt repayment recorded")
