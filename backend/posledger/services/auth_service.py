# Overview: Password hashing, user creation and credential checks.

"""
Authentication Service

Passwords are hashed with bcrypt (cost factor BCRYPT_ROUNDS, default 12).
Users belong to exactly one organization; usernames are unique across the
installation so that a login needs no tenant hint.
"""

from __future__ import annotations

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import User, Organization
from ..permissions import VALID_ROLES
from ..time_utils import utcnow

MIN_PASSWORD_LENGTH = 8


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )


def hash_password(password: str) -> str:
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_ROUNDS", 12))
    hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe comparison; malformed hashes never verify."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_user(username: str, password: str, org_id: int, role: str = "cashier") -> User:
    """
    Raises:
        ValueError: unknown/inactive organization, unknown role, duplicate username
        PasswordValidationError: password too weak
    """
    org = db.session.query(Organization).filter_by(id=org_id).first()
    if not org:
        raise ValueError("Organization not found")
    if not org.is_active:
        raise ValueError("Organization is not active")

    if role not in VALID_ROLES:
        raise ValueError(f"Role must be one of {', '.join(VALID_ROLES)}")

    if db.session.query(User).filter_by(username=username).first():
        raise ValueError("Username already exists")

    user = User(
        org_id=org_id,
        username=username,
        password_hash=hash_password(password),
        role=role,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(username: str, password: str) -> User | None:
    """
    Returns the User if credentials are valid and both user and organization
    are active, None otherwise. Updates last_login_at on success.
    """
    user = db.session.query(User).filter(
        User.username == username,
        User.is_active.is_(True),
    ).first()

    if not user:
        return None

    org = db.session.query(Organization).filter_by(id=user.org_id).first()
    if not org or not org.is_active:
        return None

    if not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user
