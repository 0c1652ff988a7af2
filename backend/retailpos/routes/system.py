# backend/retailpos/routes/system.py
"""
Health and schema endpoints. No authentication; used by launchers and
load balancers to decide whether the backend is up.
"""

import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import Product, Stock, User
from ..services import schema_service
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        details = {
            "users": db.session.query(User).count(),
            "stocks": db.session.query(Stock).count(),
            "products": db.session.query(Product).count(),
        }
        return {
            "status": "healthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "details": details,
        }
    except Exception:
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
@system_bp.get("/api/health")
@system_bp.get("/api/system/health")
def health():
    database = check_database_health()
    healthy = database["status"] == "healthy"
    body = {
        "success": healthy,
        "data": {
            "status": "ok" if healthy else "degraded",
            "timestamp": to_utc_z(utcnow()),
            "database": database,
        },
    }
    return body, 200 if healthy else 503


@system_bp.get("/api/system/schema")
def schema_status():
    try:
        result = schema_service.check_schema()
    except Exception:
        current_app.logger.exception("Schema check failed")
        return {"success": False, "error": "Internal server error"}, 500
    return {"success": True, "data": result}
