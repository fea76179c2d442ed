# Overview: Opaque bearer-token sessions (issue, validate, revoke).

"""
Session Tokens

WHY: Tills are shared devices. A waiter logs in for a shift and the token
must die at shift end, after inactivity, on logout, or when the account
is deactivated.

- 32 random bytes, handed out once in plaintext; only the SHA-256 is stored
- Absolute lifetime SESSION_TTL_HOURS, idle limit SESSION_IDLE_MINUTES
- Revocation records a reason so the session table doubles as a login audit
"""

import hashlib
import secrets
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import SessionToken, User
from kasse.time_utils import utcnow


DEFAULT_TTL_HOURS = 12
DEFAULT_IDLE_MINUTES = 120


def _ttl() -> timedelta:
    return timedelta(hours=current_app.config.get("SESSION_TTL_HOURS", DEFAULT_TTL_HOURS))


def _idle_limit() -> timedelta:
    return timedelta(minutes=current_app.config.get("SESSION_IDLE_MINUTES", DEFAULT_IDLE_MINUTES))


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """SHA-256 is enough for 256-bit random tokens; bcrypt is for passwords."""
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def _live_session(token: str) -> SessionToken | None:
    return db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()


def create_session(
    user_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None
) -> tuple[SessionToken, str]:
    """
    Open a session for an active user.

    Returns (session_record, plaintext_token); the plaintext is not
    recoverable afterwards.
    """
    user = db.session.get(User, user_id)
    if not user or not user.is_active:
        raise ValueError("User not found or inactive")

    plaintext_token = generate_token()
    now = utcnow()

    session = SessionToken(
        user_id=user_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + _ttl(),
        user_agent=(user_agent or "")[:255] or None,
        ip_address=ip_address,
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()

    current_app.logger.info("Session opened for user %s from %s", user.username, ip_address or "-")
    return session, plaintext_token


def _revoke(session: SessionToken, reason: str) -> None:
    session.is_revoked = True
    session.revoked_at = utcnow()
    session.revoked_reason = reason
    db.session.commit()


def validate_session(token: str) -> User | None:
    """
    Resolve a bearer token to its user, or None.

    Expired, idle, revoked and deactivated-user sessions all yield None;
    idle and deactivated ones are revoked on the spot. A successful check
    slides the idle window forward.
    """
    session = _live_session(token)
    if not session:
        return None

    now = utcnow()
    if session.expires_at < now:
        _revoke(session, "Expired")
        return None

    if now - session.last_used_at > _idle_limit():
        _revoke(session, "Idle timeout")
        return None

    user = session.user
    if not user or not user.is_active:
        _revoke(session, "User account deactivated")
        return None

    session.last_used_at = now
    db.session.commit()
    return user


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """False when the token is unknown or already revoked."""
    session = _live_session(token)
    if not session:
        return False

    _revoke(session, reason)
    return True
