# Overview: Flask API routes for dashboard, inventory and returns reports.

from flask import Blueprint, request

from ..decorators import require_auth
from ..responses import API_ERRORS, error_response, internal_error, ok, query_int
from ..services import reports_service

reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/dashboard")
@require_auth
def dashboard_route():
    """?start=YYYY-MM-DD&end=YYYY-MM-DD&top=5"""
    try:
        result = reports_service.dashboard_summary(
            request.args.get("start"), request.args.get("end"), top=query_int("top", 5)
        )
    except API_ERRORS as exc:
        return error_response(exc)
    except Exception:
        return internal_error("dashboard_summary")
    return ok(result)


@reports_bp.get("/inventory")
@require_auth
def inventory_route():
    try:
        return ok(reports_service.inventory_report())
    except Exception:
        return internal_error("inventory_report")


@reports_bp.get("/returns")
@require_auth
def returns_route():
    try:
        return ok(reports_service.returns_report(request.args.get("start"), request.args.get("end")))
    except API_ERRORS as exc:
        return error_response(exc)
