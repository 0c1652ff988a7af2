# Overview: Flask API routes for products and categories; parses input and returns JSON responses.

# backend/retailpos/routes/products.py
from flask import Blueprint, request

from ..decorators import current_user_id, require_auth
from ..models import Product
from ..responses import API_ERRORS, error_response, internal_error, json_body, ok, query_bool, query_int
from ..services import products_service, stock_movement_service
from ..validation import ModelValidationPolicy, ValidationError, validate_payload

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "sku", "barcode", "description", "unit",
        "purchase_price", "selling_price", "wholesale_price",
        "min_stock", "max_stock", "category_id", "stock_id", "is_active",
    },
    required_on_create={"name", "sku"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")
categories_bp = Blueprint("categories", __name__, url_prefix="/api/categories")


@products_bp.get("")
@require_auth
def list_products():
    """
    Query params:
    - search, category_id, stock_id, low_stock, include_inactive
    - page / per_page (omit page to get every row)
    """
    try:
        result = products_service.list_products(
            search=request.args.get("search"),
            category_id=query_int("category_id"),
            stock_id=query_int("stock_id"),
            low_stock=query_bool("low_stock"),
            include_inactive=query_bool("include_inactive"),
            page=query_int("page"),
            per_page=query_int("per_page"),
        )
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(result)


@products_bp.post("")
@require_auth
def create_product_route():
    payload = json_body()
    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        opening = payload.get("current_stock", payload.get("opening_quantity", 0))
        product = products_service.create_product(
            patch=patch, opening_quantity=opening, user_id=current_user_id()
        )
    except API_ERRORS as exc:
        return error_response(exc)
    except Exception:
        return internal_error("create_product")
    return ok(product.to_dict(), 201)


@products_bp.get("/low-stock")
@require_auth
def low_stock_route():
    try:
        rows = products_service.low_stock_products(query_int("threshold"))
    except API_ERRORS as exc:
        return error_response(exc)
    return ok([p.to_dict() for p in rows])


@products_bp.get("/barcode/<string:barcode>")
@require_auth
def product_by_barcode(barcode: str):
    try:
        product = products_service.get_by_barcode(barcode)
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(product.to_dict())


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    try:
        return ok(products_service.get_product_details(product_id))
    except API_ERRORS as exc:
        return error_response(exc)


@products_bp.get("/<int:product_id>/stocks")
@require_auth
def product_distribution_route(product_id: int):
    try:
        products_service.get_product(product_id)
        return ok(stock_movement_service.get_product_distribution(product_id))
    except API_ERRORS as exc:
        return error_response(exc)


@products_bp.put("/<int:product_id>")
@require_auth
def update_product_route(product_id: int):
    payload = json_body()
    try:
        if "current_stock" in payload:
            raise ValidationError("current_stock is derived from stock movements and cannot be set directly")
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        product = products_service.update_product(product_id, patch)
    except API_ERRORS as exc:
        return error_response(exc)
    except Exception:
        return internal_error("update_product")
    return ok(product.to_dict())


@products_bp.delete("/<int:product_id>")
@require_auth
def delete_product_route(product_id: int):
    try:
        products_service.delete_product(product_id)
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(message="Product deleted")


# =============================================================================
# CATEGORIES
# =============================================================================

@categories_bp.get("")
@require_auth
def list_categories_route():
    return ok([c.to_dict() for c in products_service.list_categories()])


@categories_bp.post("")
@require_auth
def create_category_route():
    data = json_body()
    try:
        category = products_service.create_category(data.get("name"), data.get("description"))
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(category.to_dict(), 201)


@categories_bp.delete("/<int:category_id>")
@require_auth
def delete_category_route(category_id: int):
    try:
        products_service.delete_category(category_id)
    except API_ERRORS as exc:
        return error_response(exc)
    return ok(message="Category deleted")
