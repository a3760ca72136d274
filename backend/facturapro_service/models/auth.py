from __future__ import annotations

from ..extensions import db
from facturapro_service.time_utils import to_utc_z


class Identity(db.Model):
    """
    Authentication identity (the "auth user").

    WHY: Credentials live apart from the tenant-scoped profile so that an
    identity can exist before its Account row is resolved, exactly like a
    hosted auth provider. Email is globally unique: one login per person.

    SECURITY: password_hash is bcrypt; never serialized.
    """
    __tablename__ = "identities"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_sign_in_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "created_at": to_utc_z(self.created_at),
            "last_sign_in_at": to_utc_z(self.last_sign_in_at) if self.last_sign_in_at else None,
        }


class Account(db.Model):
    """
    Tenant-scoped profile of an identity.

    MULTI-TENANT: Belongs to exactly one tenant. The primary key IS the
    identity id, so a profile can never be attached to two identities.

    Only name and role are mutable from the dashboard; email is a copy of
    the identity email taken at provisioning time.
    """
    __tablename__ = "accounts"
    __table_args__ = (
        db.Index("ix_accounts_tenant_id", "tenant_id"),
    )

    id = db.Column(db.Integer, db.ForeignKey("identities.id"), primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(16), nullable=False, default="employee")
    email = db.Column(db.String(255), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    identity = db.relationship("Identity", backref=db.backref("account", uselist=False, lazy=True))
    tenant = db.relationship("Tenant", backref=db.backref("accounts", lazy=True))

    def __repr__(self) -> str:
        return f"<Account id={self.id} tenant_id={self.tenant_id} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "role": self.role,
            "email": self.email,
            "created_at": to_utc_z(self.created_at),
        }


class SessionToken(db.Model):
    """
    Access/refresh token pair for an identity.

    SECURITY: Only SHA-256 hashes are stored. The access token has absolute
    and idle timeouts; the refresh token is single-use (rotated on refresh).
    """
    __tablename__ = "session_tokens"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    identity_id = db.Column(db.Integer, db.ForeignKey("identities.id"), nullable=False, index=True)

    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)
    refresh_token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    refresh_expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    user_agent = db.Column(db.String(255), nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)

    identity = db.relationship("Identity", backref=db.backref("sessions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "identity_id": self.identity_id,
            "created_at": to_utc_z(self.created_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_revoked": self.is_revoked,
        }
