# Overview: Login, logout and current-user routes.

from flask import Blueprint, current_app, g

from ..decorators import require_auth
from ..responses import API_ERRORS, error_response, fail, json_body, ok
from ..services import auth_service, session_service
from ..time_utils import to_utc_z

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Exchange username/password for a bearer token.

    The token is returned once; only its hash is stored.
    """
    data = json_body()
    username = data.get("username")
    password = data.get("password")
    if not username or not password:
        return fail("username and password are required", 400)

    user = auth_service.authenticate(username, password)
    if user is None:
        current_app.logger.warning("Failed login for %s", username)
        return fail("Invalid username or password", 401)

    session, token = session_service.create_session(user.id)
    return ok({
        "user": user.to_dict(),
        "token": token,
        "expires_at": to_utc_z(session.expires_at),
    })


@auth_bp.post("/logout")
@require_auth
def logout_route():
    session_service.revoke_session(g.session_token)
    return ok(message="Logged out")


@auth_bp.get("/me")
@require_auth
def me_route():
    return ok(g.current_user.to_dict())


@auth_bp.post("/change-password")
@require_auth
def change_password_route():
    data = json_body()
    try:
        auth_service.change_password(g.current_user.id, data.get("current_password"), data.get("new_password"))
    except API_ERRORS as exc:
        return error_response(exc)
    session_service.revoke_all_user_sessions(g.current_user.id)
    return ok(message="Password changed; please log in again")
