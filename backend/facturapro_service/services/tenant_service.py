"""
Multi-Tenant Service: Caller Context and Tenant Scoping Helpers

WHY: Centralize tenant validation logic for reuse across the table API and
the RPC functions. Every request is scoped to the caller's tenant, and any
reference to a row in another tenant is rejected as if the row did not exist.

SECURITY INVARIANTS:
1. Every authenticated request has g.caller set (see decorators.require_auth)
2. Foreign keys from client input are validated against the caller's tenant
3. Cross-tenant attempts are logged as warnings and never reveal existence

USAGE:
    from facturapro_service.services.tenant_service import require_row_in_tenant

    client = require_row_in_tenant(Client, payload["client_id"], caller.tenant_id)
"""

from dataclasses import dataclass

from flask import current_app, g, has_request_context, request

from ..extensions import db


class TenantAccessError(Exception):
    """Raised when a write or reference violates the row-level tenant policy."""

    code = "rls_violation"


@dataclass(frozen=True)
class Caller:
    """Who is calling: identity, resolved tenant and role (None without a profile)."""
    identity_id: int
    tenant_id: int | None
    role: str | None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def get_current_caller() -> Caller:
    """
    Get the Caller established by @require_auth.

    SECURITY: Raises TenantAccessError if no caller was established.
    """
    caller = getattr(g, "caller", None)
    if caller is None:
        raise TenantAccessError("Tenant context not established")
    return caller


def require_tenant(caller: Caller) -> int:
    """Return the caller's tenant id or fail closed when the identity has no profile."""
    if caller.tenant_id is None:
        log_cross_tenant_attempt("Identity has no account profile", caller=caller)
        raise TenantAccessError("No profile is associated with this identity")
    return caller.tenant_id


def require_row_in_tenant(model, row_id, tenant_id: int, *, label: str | None = None):
    """
    Validate that a row referenced by client input belongs to the tenant.

    Returns the row. Raises TenantAccessError (with a "not found" message so
    existence in another tenant is not revealed) otherwise.
    """
    label = label or model.__tablename__.rstrip("s")
    row = db.session.get(model, row_id) if row_id is not None else None

    if row is None:
        raise TenantAccessError(f"{label} not found")

    if row.tenant_id != tenant_id:
        log_cross_tenant_attempt(
            f"{model.__tablename__} {row_id} belongs to tenant {row.tenant_id}, not {tenant_id}",
        )
        raise TenantAccessError(f"{label} not found")

    return row


def log_cross_tenant_attempt(reason: str, caller: Caller | None = None) -> None:
    """
    Log a row-level policy denial.

    These entries should be monitored; repeated hits usually mean a client
    is probing ids of other tenants.
    """
    if caller is None:
        caller = getattr(g, "caller", None) if has_request_context() else None

    current_app.logger.warning(
        "Row-level policy denied: %s (identity=%s tenant=%s path=%s)",
        reason,
        caller.identity_id if caller else None,
        caller.tenant_id if caller else None,
        request.path if has_request_context() else None,
    )
