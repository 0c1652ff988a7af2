from __future__ import annotations

import json
from typing import Any

from ..extensions import db
from ..models import Setting


# key -> default value (stored JSON-encoded)
DEFAULT_SETTINGS: dict[str, Any] = {
    "company_name": "",
    "company_phone": "",
    "company_address": "",
    "currency": "IQD",
    "currency_symbol": "د.ع",
    "exchange_rate": 1.0,
    "tax_rate": 0.0,
    "invoice_prefix": "INV",
    "allow_negative_stock": False,
    "low_stock_threshold": 5,
    "receipt_footer": "",
    "language": "ar",
}


class SettingsError(ValueError):
    pass


def _decode(raw: str | None) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return raw


def ensure_defaults() -> int:
    """Insert any missing default keys. Returns the number inserted."""
    existing = {key for (key,) in db.session.query(Setting.key).all()}
    created = 0
    for key, value in DEFAULT_SETTINGS.items():
        if key not in existing:
            db.session.add(Setting(key=key, value=json.dumps(value)))
            created += 1
    if created:
        db.session.flush()
    return created


def get(key: str, default: Any = None) -> Any:
    row = db.session.query(Setting).filter_by(key=key).first()
    if row is None:
        return DEFAULT_SETTINGS.get(key, default)
    return _decode(row.value)


def get_bool(key: str, default: bool = False) -> bool:
    value = get(key, default)
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def get_all() -> dict[str, Any]:
    values = dict(DEFAULT_SETTINGS)
    for row in db.session.query(Setting).all():
        values[row.key] = _decode(row.value)
    return values


def update(data: dict) -> dict[str, Any]:
    """Upsert several keys at once. Unknown keys are accepted; values must be JSON-serializable."""
    if not isinstance(data, dict) or not data:
        raise SettingsError("No settings provided")
    for key, value in data.items():
        if not isinstance(key, str) or not key.strip() or len(key) > 64:
            raise SettingsError(f"Invalid setting key: {key!r}")
        try:
            encoded = json.dumps(value)
        except (TypeError, ValueError):
            raise SettingsError(f"Setting {key} is not serializable")
        row = db.session.query(Setting).filter_by(key=key).first()
        if row is None:
            db.session.add(Setting(key=key, value=encoded))
        else:
            row.value = encoded
    db.session.commit()
    return get_all()
