# Overview: User accounts, bcrypt password hashing and the permission catalog.

"""
Authentication Service

- Passwords are hashed with bcrypt (cost factor 12); minimum 6 characters.
- Usernames are unique case-insensitively (NOCASE collation).
- role is 'admin' or 'user'. Admins implicitly hold every permission.
- Session tokens are handled separately (see session_service.py).
"""

from __future__ import annotations

import logging

import bcrypt

from ..extensions import db
from ..models import Permission, User
from ..time_utils import utcnow
from ..validation import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

USER_ROLES = ("admin", "user")
MIN_PASSWORD_LENGTH = 6

# code -> (name, category)
DEFAULT_PERMISSIONS: dict[str, tuple[str, str]] = {
    "sales.view": ("View sales", "sales"),
    "sales.create": ("Create sales", "sales"),
    "sales.return": ("Return sales", "sales"),
    "sales.delete": ("Delete sales", "sales"),
    "purchases.view": ("View purchases", "purchases"),
    "purchases.create": ("Create purchases", "purchases"),
    "purchases.return": ("Return purchases", "purchases"),
    "inventory.view": ("View inventory", "inventory"),
    "inventory.manage": ("Manage products and stocks", "inventory"),
    "customers.manage": ("Manage customers", "customers"),
    "suppliers.manage": ("Manage suppliers", "suppliers"),
    "cashbox.manage": ("Operate cash box", "cashbox"),
    "money_boxes.manage": ("Manage money boxes", "cashbox"),
    "reports.view": ("View reports", "reports"),
    "settings.manage": ("Manage settings", "settings"),
    "users.manage": ("Manage users", "users"),
}


class PasswordValidationError(ValidationError):
    """Raised when a password doesn't meet the length requirement."""


def validate_password_strength(password: str) -> None:
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")


def hash_password(password: str) -> str:
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt check. Malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except (TypeError, ValueError):
        return False


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")
    return user


def create_user(username: str, password: str, *, name: str | None = None, role: str = "user") -> User:
    """
    Create a user with a bcrypt-hashed password.

    Raises:
        ValidationError: bad username, role or password
        ConflictError: username already taken
    """
    username = (username or "").strip()
    if not username:
        raise ValidationError("username is required")
    if role not in USER_ROLES:
        raise ValidationError(f"role must be one of {', '.join(USER_ROLES)}")
    if db.session.query(User.id).filter(User.username == username).first():
        raise ConflictError(f"Username {username} already exists")

    user = User(username=username, name=name, password_hash=hash_password(password), role=role)
    db.session.add(user)
    db.session.commit()
    logger.info("User %s created (role=%s)", username, role)
    return user


def authenticate(username: str, password: str) -> User | None:
    """Return the active user for valid credentials and stamp last_login_at; None otherwise."""
    user = (
        db.session.query(User)
        .filter(User.username == (username or "").strip(), User.is_active.is_(True))
        .first()
    )
    if user is None or not verify_password(password or "", user.password_hash):
        return None
    user.last_login_at = utcnow()
    db.session.commit()
    return user


def change_password(user_id: int, current_password: str, new_password: str) -> None:
    user = get_user(user_id)
    if not verify_password(current_password or "", user.password_hash):
        raise ValidationError("Current password is incorrect")
    user.password_hash = hash_password(new_password)
    db.session.commit()


def ensure_permissions() -> int:
    """Insert missing catalog permissions. Does not commit."""
    existing = {code for (code,) in db.session.query(Permission.code).all()}
    created = 0
    for code, (name, category) in DEFAULT_PERMISSIONS.items():
        if code not in existing:
            db.session.add(Permission(code=code, name=name, category=category))
            created += 1
    if created:
        db.session.flush()
    return created

