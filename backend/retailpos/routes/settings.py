# Overview: Flask API routes for application settings.

from flask import Blueprint

from ..decorators import require_admin, require_auth
from ..responses import API_ERRORS, error_response, json_body, ok
from ..services import settings_service

settings_bp = Blueprint("settings", __name__, url_prefix="/api/settings")


@settings_bp.get("")
@require_auth
def get_settings_route():
    return ok(settings_service.get_all())


@settings_bp.put("")
@require_auth
@require_admin
def update_settings_route():
    try:
        return ok(settings_service.update(json_body()), message="Settings updated")
    except API_ERRORS as exc:
        return error_response(exc)
