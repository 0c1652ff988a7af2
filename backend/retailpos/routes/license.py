# Overview: Flask API routes for device licensing (fingerprint, offline-first check, activation).

from flask import Blueprint, current_app

from ..decorators import require_admin, require_auth
from ..responses import json_body, ok, query_bool

license_bp = Blueprint("license", __name__, url_prefix="/api/license")


def _service():
    return current_app.extensions["license_service"]


def _activation_response(result: dict):
    if result.get("success"):
        return {"success": True, "data": result, "message": result.get("message")}, 200
    status = 503 if result.get("error_code") == "NETWORK_ERROR" else 400
    return {
        "success": False,
        "error": result.get("message") or "Activation failed",
        "error_code": result.get("error_code"),
        "data": result,
    }, status


@license_bp.get("/fingerprint")
def fingerprint_route():
    return ok({"fingerprint": _service().generate_fingerprint()})


@license_bp.get("/status")
def status_route():
    """
    Offline-first verification. Always 200; the body's success flag says
    whether the device is licensed.
    """
    result = _service().verify_offline_first(force_remote=query_bool("force_remote"))
    return {"success": bool(result.get("success")), "data": result}, 200


@license_bp.get("/local")
def local_route():
    result = _service().check_local_license()
    return {"success": bool(result.get("success")), "data": result}, 200


@license_bp.post("/first-activation")
def first_activation_route():
    """Body: location?{latitude, longitude}, code?"""
    data = json_body()
    result = _service().first_activation(location=data.get("location"), code=data.get("code"))
    return _activation_response(result)


@license_bp.post("/activate")
def activate_route():
    """Body: activation_code, location?"""
    data = json_body()
    code = data.get("activation_code") or data.get("code")
    result = _service().activate(code, location=data.get("location"))
    return _activation_response(result)


@license_bp.post("/cache/clear")
@require_auth
@require_admin
def clear_cache_route():
    _service().clear_cache()
    return ok(message="License cache cleared")


@license_bp.get("/diagnose")
@require_auth
@require_admin
def diagnose_route():
    return ok(_service().diagnose())
