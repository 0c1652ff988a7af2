# Overview: Flask API routes for sales delegates and their commissions.

from flask import Blueprint, request

from ..decorators import require_auth
from ..models import Delegate
from ..responses import API_ERRORS, error_response, fail, json_body, ok, query_bool
from ..services import delegate_service
from ..time_utils import parse_iso_date
from ..validation import ModelValidationPolicy, optional_id, validate_payload

DELEGATE_POLICY = ModelValidationPolicy(
    writable_fields=set(delegate_service.DELEGATE_FIELDS),
    required_on_create={"name"},
)

delegates_bp = Blueprint("delegates", __name__, url_prefix="/api/delegates")


def _range():
    start = request.args.get("start")
    end = request.args.get("end")
    return (parse_iso_date(start) if start else None, parse_iso_date(end) if end else None)


@delegates_bp.get("")
@require_auth
def list_delegates_route():
    rows = delegate_service.list_delegates(
        search=request.args.get("search"), include_inactive=query_bool("include_inactive")
    )
    return ok([d.to_dict() for d in rows])


@delegates_bp.post("")
@require_auth
def create_delegate_route():
    try:
        patch = validate_payload(model=Delegate, payload=json_body(), policy=DELEGATE_POLICY, partial=False)
        delegate = delegate_service.create_delegate(patch)
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(delegate.to_dict(), 201)


@delegates_bp.get("/<int:delegate_id>")
@require_auth
def get_delegate_route(delegate_id: int):
    try:
        return ok(delegate_service.get_delegate(delegate_id).to_dict())
    except API_ERRORS as exc:
        return error_response(exc)


@delegates_bp.put("/<int:delegate_id>")
@require_auth
def update_delegate_route(delegate_id: int):
    try:
        patch = validate_payload(model=Delegate, payload=json_body(), policy=DELEGATE_POLICY, partial=True)
        delegate = delegate_service.update_delegate(delegate_id, patch)
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(delegate.to_dict())


@delegates_bp.delete("/<int:delegate_id>")
@require_auth
def delete_delegate_route(delegate_id: int):
    try:
        delegate_service.delete_delegate(delegate_id)
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(message="Delegate deleted")


@delegates_bp.post("/<int:delegate_id>/customers")
@require_auth
def assign_customer_route(delegate_id: int):
    customer_id = optional_id(json_body().get("customer_id"))
    if customer_id is None:
        return fail("customer_id is required", 400)
    try:
        customer = delegate_service.assign_customer(delegate_id, customer_id)
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(customer.to_dict())


@delegates_bp.get("/<int:delegate_id>/commission")
@require_auth
def commission_route(delegate_id: int):
    """?start=YYYY-MM-DD&end=YYYY-MM-DD"""
    try:
        start, end = _range()
        return ok(delegate_service.calculate_commission(delegate_id, start, end))
    except API_ERRORS as exc:
        return error_response(exc)
    except ValueError:
        return fail("start/end must be ISO-8601 dates", 400)


@delegates_bp.get("/<int:delegate_id>/commissions")
@require_auth
def list_commissions_route(delegate_id: int):
    try:
        return ok([c.to_dict() for c in delegate_service.list_commissions(delegate_id)])
    except API_ERRORS as exc:
        return error_response(exc)


@delegates_bp.post("/<int:delegate_id>/commissions/pay")
@require_auth
def pay_commissions_route(delegate_id: int):
    try:
        start, end = _range()
        count = delegate_service.mark_commissions_paid(delegate_id, start, end)
    except API_ERRORS as exc:
        return error_response(exc)
    except ValueError:
        return fail("start/end must be ISO-8601 dates", 400)
    return ok({"paid_count": count})
