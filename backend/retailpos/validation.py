# Overview: Input validation shared by every service; error classes map to HTTP 400/409/404.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from sqlalchemy import Boolean, Date, DateTime, Float, Integer, String, Text

from .models.money import money_keys
from .time_utils import parse_iso_date, parse_iso_datetime


# Largest money value accepted in any single field
MAX_AMOUNT = 999_999_999.0


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """Duplicate or state conflict: taken SKU, second open cash box, entity still referenced."""


class NotFoundError(LookupError):
    """404-level missing entity."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """Which columns a client may write for one model, and which a create must carry."""
    writable_fields: set[str]
    required_on_create: set[str] = field(default_factory=set)


def _columns_by_key(model) -> dict[str, Any]:
    cols = {c.key: c for c in model.__mapper__.columns}
    # money attributes are written in currency units and land in their *_cents column
    for key, cents_key in money_keys(model).items():
        cols[key] = cols.pop(cents_key)
    return cols


def _coerce_number(key: str, value: Any) -> float:
    try:
        number = float(value) if not isinstance(value, bool) else None
    except (TypeError, ValueError):
        number = None
    if number is None or number != number or abs(number) == float("inf"):
        raise ValidationError(f"{key} must be a finite number")
    return number


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if col.key.endswith("_cents"):
        return _coerce_number(col.key[: -len("_cents")], value)

    if isinstance(coltype, Integer):
        # quantities are whole units: 2.0 passes, 2.5 and "1e3" do not
        if isinstance(value, bool):
            raise ValidationError(f"{col.key} must be an integer")
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str) and value.strip().lstrip("-").isdigit():
            return int(value.strip())
        if isinstance(value, int):
            return value
        raise ValidationError(f"{col.key} must be a whole number")

    if isinstance(coltype, Float):
        return _coerce_number(col.key, value)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)

    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    if isinstance(coltype, Date):
        try:
            d = parse_iso_date(value)
        except ValueError:
            raise ValidationError(f"{col.key} must be an ISO-8601 date (YYYY-MM-DD)")
        if not isinstance(d, date):
            raise ValidationError(f"{col.key} must be a date")
        return d

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Turn a JSON body into a patch dict for `model`.

    Values are coerced by column type and checked for nullability and
    String length. Keys outside `policy.writable_fields` are dropped
    silently (clients post whole form objects). With partial=False every
    field in `policy.required_on_create` must be present and non-empty.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)
    patch: dict = {}

    for k, raw in payload.items():
        if k not in policy.writable_fields or k not in cols:
            continue
        col = cols[k]

        if raw is None or (raw == "" and not isinstance(col.type, (String, Text))):
            if not col.nullable and col.default is None:
                raise ValidationError(f"{k} cannot be null")
            if not col.nullable:
                continue
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")
        if isinstance(col.type, (String, Text)) and col.nullable and val == "":
            val = None

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def require_positive_int(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a positive integer")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{field} must be a positive integer")
    return value


def require_amount(value: Any, field: str, *, allow_zero: bool = False) -> float:
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} is required")
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number")
    if amount != amount:
        raise ValidationError(f"{field} must be a number")
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationError(f"{field} must be greater than 0" if not allow_zero else f"{field} must be >= 0")
    if amount > MAX_AMOUNT:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT:,.2f}")
    return amount


def require_percent(value: Any, field: str) -> float:
    if value is None or value == "":
        return 0.0
    try:
        pct = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number")
    if pct < 0 or pct > 100:
        raise ValidationError(f"{field} must be between 0 and 100")
    return pct


def optional_id(value: Any) -> int | None:
    """Normalize an optional foreign-key id; 0, negatives and blanks mean 'none'."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid id: {value!r}")
    return number if number > 0 else None


def enforce_rules_product(patch: dict, existing=None) -> None:
    """Price margin and stock bound rules, checked against `existing` for partial updates."""
    def current(field):
        if field in patch:
            return patch[field]
        return getattr(existing, field, None) if existing is not None else None

    for field in ("purchase_price", "selling_price", "wholesale_price"):
        if field in patch and patch[field] is not None:
            if patch[field] < 0:
                raise ValidationError(f"{field} must be >= 0")
            if patch[field] > MAX_AMOUNT:
                raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT:,.2f}")

    purchase_price = current("purchase_price") or 0.0
    selling_price = current("selling_price") or 0.0
    if selling_price < purchase_price:
        raise ValidationError("selling_price must be greater than or equal to purchase_price")

    for field in ("current_stock", "min_stock", "max_stock"):
        if field in patch and patch[field] is not None and patch[field] < 0:
            raise ValidationError(f"{field} must be >= 0")

    min_stock = current("min_stock")
    max_stock = current("max_stock")
    if min_stock is not None and max_stock is not None and max_stock < min_stock:
        raise ValidationError("max_stock must be greater than or equal to min_stock")


def enforce_rules_stock(patch: dict) -> None:
    if "capacity" in patch and patch["capacity"] is not None and patch["capacity"] < 0:
        raise ValidationError("capacity must be >= 0 (0 means unlimited)")
    if "code" in patch and patch["code"] is not None:
        patch["code"] = patch["code"].upper()
