# Overview: Idempotent first-run seeding and a lightweight schema health check.

from __future__ import annotations

import logging

from sqlalchemy import inspect

from ..extensions import db
from ..models import MigrationRecord, MoneyBox, Stock, User
from . import settings_service
from .auth_service import ensure_permissions, hash_password

logger = logging.getLogger(__name__)

ADMIN_USERNAME = "admin"
MAIN_STOCK_CODE = "MAIN"
DEFAULT_MONEY_BOXES = (
    ("daily", "Daily cash box"),
    ("safe", "Safe"),
    ("bank", "Bank account"),
)
SEED_STEPS = (
    "0001_admin_user",
    "0002_permissions",
    "0003_main_stock",
    "0004_money_boxes",
    "0005_settings",
)
REQUIRED_TABLES = (
    "users", "products", "categories", "stocks", "stock_movements", "customers",
    "suppliers", "sales", "sale_items", "purchases", "purchase_items", "debts",
    "installments", "customer_receipts", "cash_boxes", "cash_box_transactions",
    "money_boxes", "money_box_transactions", "settings", "migrations",
)
REQUIRED_COLUMNS = {"stock_movements": ("movement_date",)}


def bootstrap(admin_password: str | None = None) -> dict:
    """
    Create tables and seed the rows a fresh install needs. Safe to re-run:
    existing rows are left alone.

    Returns a summary of what was created.
    """
    db.create_all()
    summary = {
        "admin_created": False,
        "permissions_created": 0,
        "main_stock_created": False,
        "money_boxes_created": [],
        "settings_created": 0,
    }

    try:
        admin = db.session.query(User).filter(User.role == "admin").first()
        if admin is None and admin_password:
            db.session.add(User(
                username=ADMIN_USERNAME,
                name="Administrator",
                password_hash=hash_password(admin_password),
                role="admin",
            ))
            summary["admin_created"] = True

        summary["permissions_created"] = ensure_permissions()

        main = db.session.query(Stock).filter(Stock.is_main_stock.is_(True), Stock.is_active.is_(True)).first()
        if main is None and db.session.query(Stock.id).filter(Stock.code == MAIN_STOCK_CODE).first() is None:
            db.session.add(Stock(
                name="Main stock",
                code=MAIN_STOCK_CODE,
                address="Main warehouse",
                capacity=0.0,
                is_main_stock=True,
                is_active=True,
            ))
            summary["main_stock_created"] = True

        existing_boxes = {name.lower() for (name,) in db.session.query(MoneyBox.name).all()}
        for name, notes in DEFAULT_MONEY_BOXES:
            if name not in existing_boxes:
                db.session.add(MoneyBox(name=name, amount=0.0, notes=notes, is_default=True))
                summary["money_boxes_created"].append(name)

        summary["settings_created"] = settings_service.ensure_defaults()

        applied = {name for (name,) in db.session.query(MigrationRecord.name).all()}
        for step in SEED_STEPS:
            if step not in applied:
                db.session.add(MigrationRecord(name=step))

        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Bootstrap complete: %s", summary)
    return summary


def check_schema() -> dict:
    """Report missing tables/columns without changing anything."""
    inspector = inspect(db.engine)
    tables = set(inspector.get_table_names())
    missing_tables = [t for t in REQUIRED_TABLES if t not in tables]
    missing_columns = []
    for table, columns in REQUIRED_COLUMNS.items():
        if table not in tables:
            continue
        present = {c["name"] for c in inspector.get_columns(table)}
        missing_columns.extend(f"{table}.{c}" for c in columns if c not in present)
    return {
        "ok": not missing_tables and not missing_columns,
        "missing_tables": missing_tables,
        "missing_columns": missing_columns,
    }
