# Overview: Service-layer operations for session tokens; issue, validate, refresh, revoke.

"""
Session Token Management Service with Multi-Tenant Support

WHY: Secure session management with automatic timeout and revocation.
Tokens are cryptographically secure, hashed in database, and time-limited.

MULTI-TENANT: Unlike the identity, the tenant context is resolved from the
Account row on every validation. An identity without a profile still gets a
valid session (tenant_id=None); table and RPC access then fails closed.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage (fast, one-way)
- Absolute timeout (SESSION_ABSOLUTE_TIMEOUT_HOURS)
- Idle timeout (SESSION_IDLE_TIMEOUT_HOURS)
- Single-use refresh tokens: refreshing revokes the old pair
"""

import secrets
import hashlib
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import SessionToken, Identity, Account
from facturapro_service.time_utils import utcnow, to_utc_z


@dataclass
class SessionContext:
    """
    Complete session context returned by validate_session.

    MULTI-TENANT: account/tenant_id/role are None for an identity that has
    no profile row.
    """
    identity: Identity
    session: SessionToken
    account: Account | None
    tenant_id: int | None
    role: str | None


class SessionError(Exception):
    """Raised when a session cannot be issued or refreshed."""


def _hours(key: str, default: int) -> timedelta:
    return timedelta(hours=current_app.config.get(key, default))


def generate_token() -> str:
    """
    Generate cryptographically secure random token.

    Returns 64-character hex string (32 bytes of entropy).
    This is the plaintext token sent to client (never stored).
    """
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """Hash token for database storage using SHA-256."""
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def create_session(
    identity_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None
) -> tuple[SessionToken, str, str]:
    """
    Create new session for an identity.

    Returns (session_record, access_token, refresh_token).
    Client receives plaintext tokens, database stores only the hashes.

    Raises SessionError if the identity does not exist or is inactive.
    """
    identity = db.session.query(Identity).filter_by(id=identity_id).first()
    if not identity or not identity.is_active:
        raise SessionError("Identity not found or inactive")

    access_token = generate_token()
    refresh_token = generate_token()

    now = utcnow()
    session = SessionToken(
        identity_id=identity_id,
        token_hash=hash_token(access_token),
        refresh_token_hash=hash_token(refresh_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + _hours("SESSION_ABSOLUTE_TIMEOUT_HOURS", 24),
        refresh_expires_at=now + _hours("REFRESH_TOKEN_TIMEOUT_HOURS", 720),
        user_agent=user_agent,
        ip_address=ip_address,
        is_revoked=False
    )

    db.session.add(session)
    db.session.commit()

    return session, access_token, refresh_token


def _revoke(session: SessionToken, reason: str) -> None:
    session.is_revoked = True
    session.revoked_at = utcnow()
    session.revoked_reason = reason


def validate_session(token: str) -> SessionContext | None:
    """
    Validate access token and return SessionContext if valid.

    Returns None if:
    - Token is invalid, expired, or revoked
    - Identity is deactivated

    Updates last_used_at on successful validation (activity tracking).

    WHY: Central validation point. All protected routes call this.
    """
    now = utcnow()

    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False
    ).first()

    if not session:
        return None

    # Check absolute timeout
    if session.expires_at < now:
        return None

    # Check idle timeout
    if now - session.last_used_at > _hours("SESSION_IDLE_TIMEOUT_HOURS", 2):
        _revoke(session, "Idle timeout")
        db.session.commit()
        return None

    identity = session.identity
    if not identity or not identity.is_active:
        _revoke(session, "Identity deactivated")
        db.session.commit()
        return None

    session.last_used_at = now
    db.session.commit()

    account = identity.account
    return SessionContext(
        identity=identity,
        session=session,
        account=account,
        tenant_id=account.tenant_id if account else None,
        role=account.role if account else None,
    )


def refresh_session(
    refresh_token: str,
    user_agent: str | None = None,
    ip_address: str | None = None
) -> tuple[SessionToken, str, str]:
    """
    Exchange a refresh token for a new token pair.

    The old pair is revoked, so a refresh token works exactly once.

    Raises SessionError if the refresh token is unknown, used, or expired.
    """
    session = db.session.query(SessionToken).filter_by(
        refresh_token_hash=hash_token(refresh_token),
        is_revoked=False
    ).first()

    if not session or session.refresh_expires_at < utcnow():
        raise SessionError("Invalid Refresh Token")

    _revoke(session, "Refreshed")
    db.session.flush()

    return create_session(session.identity_id, user_agent=user_agent, ip_address=ip_address)


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """
    Revoke session by access token.

    Returns True if session was revoked, False if not found.
    """
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False
    ).first()

    if not session:
        return False

    _revoke(session, reason)
    db.session.commit()
    return True


def session_payload(session: SessionToken, access_token: str, refresh_token: str) -> dict:
    """Wire representation of a freshly issued session."""
    identity = session.identity
    return {
        "session": {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "token_type": "bearer",
            "expires_at": to_utc_z(session.expires_at),
        },
        "user": identity.to_dict(),
    }
