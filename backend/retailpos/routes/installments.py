# Overview: Flask API routes for installment plans and installment payments.

from flask import Blueprint, request

from ..decorators import current_user_id, require_auth
from ..responses import API_ERRORS, error_response, fail, json_body, ok, query_int
from ..services import installment_service
from ..time_utils import parse_iso_date
from ..validation import optional_id

installments_bp = Blueprint("installments", __name__, url_prefix="/api/installments")


def _as_of():
    raw = request.args.get("as_of")
    return parse_iso_date(raw) if raw else None


@installments_bp.get("")
@require_auth
def list_installments_route():
    filters = {k: request.args.get(k) for k in ("sale_id", "customer_id", "payment_status") if request.args.get(k)}
    try:
        result = installment_service.list_installments(filters, page=query_int("page"), per_page=query_int("per_page"))
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(result)


@installments_bp.post("/plan")
@require_auth
def create_plan_route():
    """Body: sale_id, number_of_installments, starting_due_date?, total_amount?, notes?"""
    data = json_body()
    sale_id = optional_id(data.get("sale_id"))
    if sale_id is None:
        return fail("sale_id is required", 400)
    try:
        rows = installment_service.create_plan(
            sale_id,
            data.get("number_of_installments", data.get("months")),
            starting_due_date=data.get("starting_due_date"),
            total_amount=data.get("total_amount"),
            notes=data.get("notes"),
        )
    except API_ERRORS as exc:
        return error_response(exc)
    return ok([r.to_dict() for r in rows], 201)


@installments_bp.get("/overdue")
@require_auth
def overdue_route():
    try:
        return ok([r.to_dict() for r in installment_service.get_overdue(_as_of())])
    except ValueError:
        return fail("as_of must be an ISO-8601 date", 400)


@installments_bp.get("/summary")
@require_auth
def summary_route():
    try:
        return ok(installment_service.get_summary(_as_of()))
    except ValueError:
        return fail("as_of must be an ISO-8601 date", 400)


@installments_bp.get("/<int:installment_id>")
@require_auth
def get_installment_route(installment_id: int):
    try:
        return ok(installment_service.get_installment(installment_id).to_dict())
    except API_ERRORS as exc:
        return error_response(exc)


@installments_bp.post("/<int:installment_id>/payment")
@require_auth
def record_payment_route(installment_id: int):
    data = json_body()
    try:
        row = installment_service.record_payment(
            installment_id,
            data.get("paid_amount", data.get("amount")),
            payment_method=data.get("payment_method") or "cash",
            notes=data.get("notes"),
            user_id=current_user_id(),
        )
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(row.to_dict(), message="Payment recorded")


@installments_bp.delete("/<int:installment_id>")
@require_auth
def delete_installment_route(installment_id: int):
    try:
        installment_service.delete_installment(installment_id)
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(message="Installment deleted")
