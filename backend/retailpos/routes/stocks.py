# Overview: Flask API routes for stocks (warehouses); parses input and returns JSON responses.

from flask import Blueprint, request

from ..decorators import current_user_id, require_auth
from ..models import Stock
from ..responses import API_ERRORS, error_response, internal_error, json_body, ok, query_bool, query_int
from ..services import stock_service
from ..validation import ModelValidationPolicy, validate_payload

STOCK_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "code", "description", "address", "city", "manager_name",
        "phone", "email", "capacity", "is_main_stock", "is_active", "notes",
    },
    required_on_create={"name", "code", "address"},
)

stocks_bp = Blueprint("stocks", __name__, url_prefix="/api/stocks")


@stocks_bp.get("")
@require_auth
def list_stocks_route():
    include_inactive = query_bool("include_inactive")
    rows = stock_service.list_stocks(
        search=request.args.get("search"),
        is_active=None if include_inactive else True,
    )
    return ok(rows)


@stocks_bp.post("")
@require_auth
def create_stock_route():
    try:
        patch = validate_payload(model=Stock, payload=json_body(), policy=STOCK_POLICY, partial=False)
        stock = stock_service.create_stock(patch=patch, user_id=current_user_id())
    except API_ERRORS as exc:
        return error_response(exc)
    except Exception:
        return internal_error("create_stock")
    return ok(stock_service.stock_to_dict(stock), 201)


@stocks_bp.get("/stats")
@require_auth
def stock_statistics_route():
    return ok(stock_service.get_statistics())


@stocks_bp.get("/<int:stock_id>")
@require_auth
def get_stock_route(stock_id: int):
    try:
        return ok(stock_service.stock_to_dict(stock_service.get_stock(stock_id)))
    except API_ERRORS as exc:
        return error_response(exc)


@stocks_bp.put("/<int:stock_id>")
@require_auth
def update_stock_route(stock_id: int):
    try:
        patch = validate_payload(model=Stock, payload=json_body(), policy=STOCK_POLICY, partial=True)
        stock = stock_service.update_stock(stock_id, patch)
    except API_ERRORS as exc:
        return error_response(exc)
    except Exception:
        return internal_error("update_stock")
    return ok(stock_service.stock_to_dict(stock))


@stocks_bp.delete("/<int:stock_id>")
@require_auth
def delete_stock_route(stock_id: int):
    try:
        stock_service.delete_stock(stock_id)
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(message="Stock deleted")


@stocks_bp.get("/<int:stock_id>/products")
@require_auth
def stock_products_route(stock_id: int):
    try:
        return ok(stock_service.get_products(stock_id))
    except API_ERRORS as exc:
        return error_response(exc)


@stocks_bp.post("/<int:stock_id>/products")
@require_auth
def add_product_route(stock_id: int):
    data = json_body()
    try:
        movement = stock_service.add_product(
            stock_id,
            data.get("product_id"),
            data.get("quantity"),
            unit_cost=data.get("unit_cost"),
            notes=data.get("notes"),
            user_id=current_user_id(),
        )
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(movement.to_dict(), 201)


@stocks_bp.get("/<int:stock_id>/movements")
@require_auth
def stock_movements_route(stock_id: int):
    try:
        page = query_int("page", 1)
        limit = query_int("limit", 50)
        rows, total = stock_service.get_movements(stock_id, page=page, limit=limit)
    except API_ERRORS as exc:
        return error_response(exc)
    return ok([m.to_dict() for m in rows], pagination={"page": page, "limit": limit, "total": total})
