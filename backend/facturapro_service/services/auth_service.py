# Overview: Service-layer operations for identities; password hashing and credential checks.

"""
Authentication Service

WHY: Every action must be attributable to an identity. Uses bcrypt for
password hashing; identities are global (one email, one login) while the
tenant-scoped profile lives in the accounts table.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost from BCRYPT_ROUNDS, default 12)
- Minimum 6 characters (the dashboard enforces the same floor before calling)
- Session tokens managed separately (see session_service.py)
- Identities without an Account row can sign in; the dashboard is expected
  to sign them straight back out when their profile cannot be resolved
"""

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import Identity
from ..validation import ValidationError, ConflictError, validate_email
from facturapro_service.time_utils import utcnow


MIN_PASSWORD_LENGTH = 6


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet the length policy."""

    def __init__(self, message: str):
        super().__init__(message, "password")


def validate_password_strength(password: str | None) -> None:
    """
    Validate password meets the policy.

    Requirements:
    - Minimum 6 characters

    Raises PasswordValidationError if requirements not met.
    """
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt.

    Password is validated against the policy before hashing.
    """
    validate_password_strength(password)
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    WHY timing-safe: bcrypt.checkpw() prevents timing attacks automatically.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash in storage
        return False


def create_identity(email: str, password: str) -> Identity:
    """
    Create a new identity without committing.

    Callers (register_tenant, provision_account) add the Account row in the
    same transaction so identity and profile are created as a unit.

    Raises:
        ValidationError: bad email
        PasswordValidationError: password too short
        ConflictError(code="duplicate_identity"): email already registered
    """
    email = validate_email(email)
    password_hash = hash_password(password)

    existing = db.session.query(Identity).filter_by(email=email).first()
    if existing:
        raise ConflictError(
            "A user with this email address has already been registered",
            code="duplicate_identity",
            detail=f"Key (email)=({email}) already exists.",
        )

    identity = Identity(email=email, password_hash=password_hash, is_active=True)
    db.session.add(identity)
    db.session.flush()  # ensure identity.id exists for the profile row
    return identity


def authenticate(email: str, password: str) -> Identity | None:
    """
    Authenticate with email and password.

    Returns Identity if credentials valid, None otherwise.
    Updates last_sign_in_at on success.
    """
    identity = db.session.query(Identity).filter(
        Identity.email == (email or "").strip().lower(),
        Identity.is_active.is_(True),
    ).first()

    if not identity:
        return None

    if verify_password(password, identity.password_hash):
        identity.last_sign_in_at = utcnow()
        db.session.commit()
        return identity

    return None
