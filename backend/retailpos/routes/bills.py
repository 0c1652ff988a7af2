# Overview: Read-only bills view combining sale and purchase invoices and their returns.

from flask import Blueprint, request

from ..decorators import require_auth
from ..responses import API_ERRORS, error_response, ok, query_int
from ..services import bills_service, purchase_service, sales_service

bills_bp = Blueprint("bills", __name__, url_prefix="/api/bills")

FILTER_KEYS = ("kind", "status", "payment_status", "date_from", "date_to")


def _filters() -> dict:
    return {k: request.args.get(k) for k in FILTER_KEYS if request.args.get(k)}


@bills_bp.get("")
@require_auth
def list_bills_route():
    try:
        return ok(bills_service.list_bills(_filters(), page=query_int("page"), per_page=query_int("per_page")))
    except API_ERRORS as exc:
        return error_response(exc)


@bills_bp.get("/returns")
@require_auth
def list_returns_route():
    try:
        return ok(bills_service.list_returns(_filters()))
    except API_ERRORS as exc:
        return error_response(exc)


@bills_bp.get("/stats")
@require_auth
def bills_statistics_route():
    try:
        return ok(bills_service.get_statistics(_filters()))
    except API_ERRORS as exc:
        return error_response(exc)


@bills_bp.get("/sale/<int:sale_id>")
@require_auth
def sale_bill_route(sale_id: int):
    try:
        return ok(sales_service.sale_details(sales_service.get_sale(sale_id)))
    except API_ERRORS as exc:
        return error_response(exc)


@bills_bp.get("/purchase/<int:purchase_id>")
@require_auth
def purchase_bill_route(purchase_id: int):
    try:
        return ok(purchase_service.purchase_details(purchase_service.get_purchase(purchase_id)))
    except API_ERRORS as exc:
        return error_response(exc)
