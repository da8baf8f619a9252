# Overview: Service-layer operations for staff PINs and manager authorization.

"""
Staff PIN Authorization Service

WHY: Sensitive operations (void, transaction cancel, shift handover)
re-verify a PIN at the moment of the action instead of trusting whoever
is logged in on the tablet.

SECURITY NOTES:
- PINs are exactly 4 digits, hashed with bcrypt
- authorize() scans active users holding an allowed role and returns the
  first whose hash matches
- Callers receive authorize as an injectable capability so tests and
  alternative identity providers can replace it
"""

from __future__ import annotations

import re
from typing import Callable, Iterable

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import User
from ..models.auth import VALID_ROLES, ROLE_ADMIN, ROLE_MANAGER, ROLE_CASHIER


MANAGER_ROLES = (ROLE_MANAGER, ROLE_ADMIN)

_PIN_PATTERN = re.compile(r"^\d{4}$")


class AuthorizationError(Exception):
    """Raised when a PIN is malformed or matches no authorized user."""
    pass


class UserError(Exception):
    """Raised for staff account errors."""
    pass


Authorizer = Callable[[Iterable[str], str], User]


def is_valid_pin(pin: str | None) -> bool:
    return bool(pin) and bool(_PIN_PATTERN.match(pin))


def hash_pin(pin: str) -> str:
    """Hash a 4-digit PIN with bcrypt."""
    if not is_valid_pin(pin):
        raise AuthorizationError("PIN must be exactly 4 digits")
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    hashed = bcrypt.hashpw(pin.encode("utf-8"), bcrypt.gensalt(rounds=rounds))
    return hashed.decode("utf-8")


def verify_user_pin(user: User, pin: str) -> bool:
    """Timing-safe PIN check for one user. False when no PIN is set."""
    if not user.pin_hash or not is_valid_pin(pin):
        return False
    try:
        return bcrypt.checkpw(pin.encode("utf-8"), user.pin_hash.encode("utf-8"))
    except ValueError:
        return False


def authorize(roles: Iterable[str], pin: str) -> User:
    """
    Resolve the active user with one of roles whose PIN matches.

    Linear scan, first match wins.

    Raises:
        AuthorizationError: PIN malformed or no matching user
    """
    if not is_valid_pin(pin):
        raise AuthorizationError("PIN must be exactly 4 digits")

    candidates = (
        db.session.query(User)
        .filter(User.is_active.is_(True), User.role.in_(list(roles)))
        .order_by(User.id)
        .all()
    )
    for user in candidates:
        if verify_user_pin(user, pin):
            return user

    raise AuthorizationError("Invalid PIN or not authorized")


def create_staff_user(
    username: str,
    role: str,
    pin: str | None = None,
    full_name: str | None = None,
) -> User:
    """Create a staff account with an optional PIN."""
    username = (username or "").strip()
    if not username:
        raise UserError("username is required")
    if role not in VALID_ROLES:
        raise UserError(f"Invalid role: {role}. Must be one of {list(VALID_ROLES)}")

    existing = db.session.query(User).filter_by(username=username).first()
    if existing:
        raise UserError(f"User '{username}' already exists")

    user = User(
        username=username,
        full_name=full_name,
        role=role,
        pin_hash=hash_pin(pin) if pin else None,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def list_cashier_users() -> list[User]:
    """Active cashiers, for the handover picker."""
    return (
        db.session.query(User)
        .filter(User.is_active.is_(True), User.role == ROLE_CASHIER)
        .order_by(User.full_name, User.username)
        .all()
    )


def get_user_display_name(user_id: int | None) -> str:
    if not user_id:
        return ""
    user = db.session.query(User).filter_by(id=user_id).first()
    return user.display_name if user else ""
