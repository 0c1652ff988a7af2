# backend/retailpos/__init__.py
from __future__ import annotations

from pathlib import Path

from flask import Flask, request
from sqlalchemy import event
from sqlalchemy.engine import Engine
from werkzeug.exceptions import HTTPException

from .config import Config
from .extensions import db, migrate

MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "migrations"


def _install_sqlite_pragmas(app: Flask) -> None:
    """WAL + foreign keys on every new SQLite connection."""
    uri = app.config["SQLALCHEMY_DATABASE_URI"]
    if not uri.startswith("sqlite"):
        return
    file_backed = ":memory:" not in uri and uri not in ("sqlite://", "sqlite:///")

    if file_backed:
        db_path = uri.split("sqlite:///", 1)[-1]
        Path(db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)

    engine: Engine = db.engine

    @event.listens_for(engine, "connect")
    def _set_pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        if file_backed:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(404)
    def not_found(exc):
        return {"success": False, "error": "Not found"}, 404

    @app.errorhandler(405)
    def method_not_allowed(exc):
        return {"success": False, "error": "Method not allowed"}, 405

    @app.errorhandler(Exception)
    def unhandled(exc):
        if isinstance(exc, HTTPException):
            return {"success": False, "error": exc.description}, exc.code
        db.session.rollback()
        app.logger.exception("Unhandled error on %s %s", request.method, request.path)
        return {"success": False, "error": "Internal server error"}, 500


def _init_license_service(app: Flask) -> None:
    from .services.license_cache import TTLCache
    from .services.license_client import LicenseApiClient
    from .services.license_service import LicenseService

    client = LicenseApiClient(app.config["LICENSE_API_URL"], timeout=app.config["LICENSE_HTTP_TIMEOUT"])
    app.extensions["license_service"] = LicenseService(app.config["LICENSE_DIR"], client, TTLCache())


def create_app(overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    db.init_app(app)
    migrate.init_app(app, db, directory=str(MIGRATIONS_DIR))

    # Import models so Alembic and create_all see the metadata
    from . import models  # noqa: F401

    with app.app_context():
        _install_sqlite_pragmas(app)

    if not app.config.get("TESTING"):
        from .logging_config import setup_logging
        setup_logging(app)

    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.products import categories_bp, products_bp
    from .routes.stocks import stocks_bp
    from .routes.stock_movements import stock_movements_bp
    from .routes.sales import sales_bp
    from .routes.purchases import purchases_bp
    from .routes.bills import bills_bp
    from .routes.parties import customers_bp, suppliers_bp
    from .routes.cashbox import cashbox_bp
    from .routes.money_boxes import money_boxes_bp
    from .routes.debts import debts_bp
    from .routes.installments import installments_bp
    from .routes.receipts import receipts_bp
    from .routes.delegates import delegates_bp
    from .routes.reports import reports_bp
    from .routes.settings import settings_bp
    from .routes.license import license_bp

    for bp in (
        system_bp, auth_bp, products_bp, categories_bp, stocks_bp, stock_movements_bp, sales_bp,
        purchases_bp, bills_bp, customers_bp, suppliers_bp, cashbox_bp, money_boxes_bp,
        debts_bp, installments_bp, receipts_bp, delegates_bp, reports_bp, settings_bp,
        license_bp,
    ):
        app.register_blueprint(bp)

    _register_error_handlers(app)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:4173",
            "http://127.0.0.1:4173",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    _init_license_service(app)

    if app.config.get("BOOTSTRAP_ON_START"):
        from .services.schema_service import bootstrap
        with app.app_context():
            bootstrap(admin_password=app.config.get("ADMIN_DEFAULT_PASSWORD"))

    from .cli import register_commands
    register_commands(app)

    return app
