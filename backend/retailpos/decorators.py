# Overview: Request decorators for API routes.

from functools import wraps

from flask import g, request

from .services import session_service


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a valid bearer session.

    Sets g.current_user and g.session_token. Returns 401 when the header is
    missing, the token is unknown, expired or revoked, or the user is inactive.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if token is None:
            return {"success": False, "error": "Authentication required"}, 401

        user = session_service.validate_session(token)
        if user is None:
            return {"success": False, "error": "Invalid or expired token"}, 401

        g.current_user = user
        g.session_token = token
        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """Must be stacked under @require_auth."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = getattr(g, "current_user", None)
        if user is None:
            return {"success": False, "error": "Authentication required"}, 401
        if user.role != "admin":
            return {"success": False, "error": "Admin privileges required"}, 403
        return f(*args, **kwargs)

    return decorated_function


def current_user_id() -> int | None:
    user = getattr(g, "current_user", None)
    return user.id if user is not None else None
