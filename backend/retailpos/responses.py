# Overview: JSON response envelope shared by every blueprint.

from __future__ import annotations

from flask import current_app, request

from .validation import ConflictError, NotFoundError, ValidationError
from .services.cashbox_service import CashBoxError
from .services.money_box_service import MoneyBoxError
from .services.purchase_service import PurchaseError
from .services.reports_service import ReportError
from .services.sales_service import SaleError
from .services.settings_service import SettingsError
from .services.stock_movement_service import StockMovementError

# Business-rule failures reported as 400 with their details attached
DOMAIN_ERRORS = (
    StockMovementError,
    SaleError,
    PurchaseError,
    CashBoxError,
    MoneyBoxError,
    ReportError,
)

API_ERRORS = (ValidationError, ConflictError, NotFoundError, SettingsError) + DOMAIN_ERRORS


def ok(data=None, status: int = 200, message: str | None = None, **extra):
    body = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    body.update(extra)
    return body, status


def fail(error: str, status: int = 400, details: dict | None = None):
    body = {"success": False, "error": error}
    if details:
        body["details"] = details
    return body, status


def error_response(exc: Exception):
    """Map a known service exception onto the envelope."""
    if isinstance(exc, NotFoundError):
        return fail(str(exc).strip("'\""), 404)
    if isinstance(exc, ConflictError):
        return fail(str(exc), 409)
    if isinstance(exc, DOMAIN_ERRORS):
        return fail(str(exc), 400, getattr(exc, "details", None))
    return fail(str(exc), 400)


def json_body() -> dict:
    return request.get_json(silent=True) or {}


def query_int(name: str, default: int | None = None) -> int | None:
    raw = request.args.get(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")


def query_bool(name: str, default: bool = False) -> bool:
    raw = request.args.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def internal_error(context: str):
    current_app.logger.exception("Unhandled error in %s", context)
    return fail("Internal server error", 500)
