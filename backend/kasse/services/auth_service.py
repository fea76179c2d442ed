# Overview: Password hashing, user creation, authentication and role assignment.

"""
Authentication Service

WHY: Every cart, payment, register shift and fiscal submission must be
attributable to a named user. Passwords are bcrypt-hashed (cost factor 12)
and must meet a minimum strength policy.

ROLES:
- Administrator: register setup, FinanzOnline config, credit notes, payment status
- Manager: credit notes, payment status changes, invoice deletion
- Cashier: carts, payments, signing, submissions
- Admin: legacy name that gates the invoice backfill (see Role docstring)
"""

import re

import bcrypt

from ..extensions import db
from ..models import User, Role, UserRole
from ..validation import ValidationError, ConflictError, NotFoundError
from kasse.time_utils import utcnow


ROLE_ADMINISTRATOR = "Administrator"
ROLE_MANAGER = "Manager"
ROLE_CASHIER = "Cashier"
ROLE_ADMIN = "Admin"

DEFAULT_ROLES = [
    (ROLE_ADMINISTRATOR, "Full system access"),
    (ROLE_MANAGER, "Shift management, credit notes and payment corrections"),
    (ROLE_CASHIER, "Orders, payments and receipts"),
    (ROLE_ADMIN, "Maintenance jobs such as invoice backfill"),
]


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter, one lowercase letter and one digit
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str, *, rounds: int = 12) -> str:
    """Hash password using bcrypt. Password is validated for strength before hashing."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt comparison. Malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_user(
    username: str,
    email: str,
    password: str,
    *,
    display_name: str | None = None,
    roles: list[str] | None = None,
    rounds: int = 12,
) -> User:
    """
    Create new user with bcrypt password hashing and optional roles.

    Raises:
        ConflictError: username or email already taken
        PasswordValidationError: password too weak
    """
    existing = db.session.query(User).filter(
        db.or_(User.username == username, User.email == email)
    ).first()
    if existing:
        raise ConflictError("Username or email already exists")

    user = User(
        username=username,
        email=email,
        display_name=display_name,
        password_hash=hash_password(password, rounds=rounds),
    )
    db.session.add(user)
    db.session.commit()

    for role_name in roles or []:
        assign_role(user.id, role_name)

    return user


def authenticate(username: str, password: str) -> User | None:
    """
    Authenticate user with username (or email) and password.

    Returns User if credentials valid, None otherwise.
    Updates last_login_at timestamp on successful authentication.
    """
    user = db.session.query(User).filter(
        db.or_(User.username == username, User.email == username),
        User.is_active.is_(True),
    ).first()

    if not user:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None


def assign_role(user_id: int, role_name: str) -> UserRole:
    """Assign role to user (idempotent)."""
    role = db.session.query(Role).filter_by(name=role_name).first()
    if not role:
        raise NotFoundError(f"Role {role_name} not found")

    existing = db.session.query(UserRole).filter_by(
        user_id=user_id,
        role_id=role.id
    ).first()

    if existing:
        return existing

    user_role = UserRole(user_id=user_id, role_id=role.id)

    db.session.add(user_role)
    db.session.commit()
    db.session.expire(db.session.get(User, user_id), ["roles"])
    return user_role


def create_default_roles() -> int:
    """Create the standard roles if they don't exist. Returns how many were added."""
    created = 0
    for name, desc in DEFAULT_ROLES:
        existing = db.session.query(Role).filter_by(name=name).first()
        if not existing:
            db.session.add(Role(name=name, description=desc))
            created += 1

    db.session.commit()
    return created


def user_has_any_role(user: User, *role_names: str) -> bool:
    return any(name in user.role_names for name in role_names)
