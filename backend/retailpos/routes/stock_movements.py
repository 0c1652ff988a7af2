# Overview: Flask API routes for the stock-movement ledger; parses input and returns JSON responses.

from flask import Blueprint, request

from ..decorators import current_user_id, require_auth
from ..responses import API_ERRORS, error_response, internal_error, json_body, ok, query_int
from ..services import stock_movement_service
from ..validation import ValidationError, optional_id, require_positive_int

stock_movements_bp = Blueprint("stock_movements", __name__, url_prefix="/api/stock-movements")

FILTER_KEYS = (
    "movement_type", "from_stock_id", "to_stock_id", "product_id", "stock_id",
    "reference_type", "reference_id", "date_from", "date_to",
)


@stock_movements_bp.get("")
@require_auth
def list_movements_route():
    filters = {k: request.args.get(k) for k in FILTER_KEYS if request.args.get(k) not in (None, "")}
    try:
        page = query_int("page", 1)
        limit = query_int("limit", 50)
        rows, total = stock_movement_service.list_movements(filters, page=page, limit=limit)
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(
        [m.to_dict() for m in rows],
        pagination={"page": page, "limit": limit, "total": total, "pages": (total + limit - 1) // limit},
    )


@stock_movements_bp.post("")
@require_auth
def create_movement_route():
    """
    Body: movement_type, product_id, quantity, from_stock_id?, to_stock_id?,
    unit_cost?, reference_type?, reference_id?, reference_number?,
    movement_date?, notes?
    """
    data = json_body()
    try:
        if not data.get("movement_type"):
            raise ValidationError("movement_type is required")
        product_id = optional_id(data.get("product_id"))
        if product_id is None:
            raise ValidationError("product_id is required")
        movement = stock_movement_service.record_movement(
            movement_type=data["movement_type"],
            product_id=product_id,
            quantity=require_positive_int(data.get("quantity"), "quantity"),
            from_stock_id=optional_id(data.get("from_stock_id")),
            to_stock_id=optional_id(data.get("to_stock_id")),
            unit_cost=data.get("unit_cost"),
            reference_type=data.get("reference_type"),
            reference_id=optional_id(data.get("reference_id")),
            reference_number=data.get("reference_number"),
            movement_date=data.get("movement_date"),
            notes=data.get("notes"),
            created_by=current_user_id(),
        )
    except API_ERRORS as exc:
        return error_response(exc)
    except Exception:
        return internal_error("create_movement")
    return ok(movement.to_dict(), 201)


@stock_movements_bp.get("/stats")
@require_auth
def movement_statistics_route():
    try:
        return ok(stock_movement_service.get_statistics(query_int("days", 30)))
    except API_ERRORS as exc:
        return error_response(exc)


@stock_movements_bp.get("/product/<int:product_id>")
@require_auth
def product_history_route(product_id: int):
    try:
        rows = stock_movement_service.get_product_history(
            product_id, stock_id=query_int("stock_id"), limit=query_int("limit", 100)
        )
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(rows)


@stock_movements_bp.get("/<int:movement_id>")
@require_auth
def get_movement_route(movement_id: int):
    try:
        return ok(stock_movement_service.get_movement(movement_id).to_dict())
    except API_ERRORS as exc:
        return error_response(exc)


@stock_movements_bp.post("/<int:movement_id>/reverse")
@require_auth
def reverse_movement_route(movement_id: int):
    data = json_body()
    try:
        reversal = stock_movement_service.reverse_movement(
            movement_id, user_id=current_user_id(), notes=data.get("notes")
        )
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(reversal.to_dict(), 201)
