from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy.ext.hybrid import hybrid_property

from ..extensions import db


def to_cents(value) -> int | None:
    """Currency units to integer cents, half-up at the third decimal."""
    if value is None:
        return None
    return int((Decimal(str(value)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int | None) -> float | None:
    if cents is None:
        return None
    return cents / 100


def cents_column(*, nullable: bool = False, default: int | None = 0):
    return db.Column(db.BigInteger, nullable=nullable, default=default)


def money(cents_key: str) -> hybrid_property:
    """
    Money attribute stored as integer cents in `cents_key`.

    Reads and writes are in currency units (float), so services and to_dict
    never see cents; SQL expressions divide the stored column by 100.
    """
    name = cents_key[: -len("_cents")]

    def fget(self):
        return from_cents(getattr(self, cents_key))

    def fset(self, value):
        setattr(self, cents_key, to_cents(value))

    def expr(cls):
        return getattr(cls, cents_key) / 100.0

    # hybrid labels its SQL expression with the getter name
    fget.__name__ = fset.__name__ = expr.__name__ = name
    prop = hybrid_property(fget, fset, expr=expr)
    prop.info["cents_key"] = cents_key
    return prop


def money_keys(model) -> dict[str, str]:
    """{attribute: cents column key} for every money attribute on `model`."""
    out = {}
    for key, attr in model.__mapper__.all_orm_descriptors.items():
        info = getattr(attr, "info", None) or {}
        if isinstance(info, dict) and "cents_key" in info:
            out[key] = info["cents_key"]
    return out
