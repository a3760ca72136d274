# Overview: Privileged account provisioning and tenant registration over RPC.

"""
Account Provisioning

WHY: Creating a user through the public sign-in/sign-up entry point would
start a session for the new user and could replace the admin's own. Both
operations here are single RPCs executed with elevated rights on the
service, which creates the identity and its profile row as a unit.

Error taxonomy (ProvisioningError.kind), decided from the RPC error code:

    duplicate_identity  -> DUPLICATE_IDENTITY
    function_not_found  -> FUNCTION_MISSING
    validation_failed   -> VALIDATION_FAILURE
    anything else       -> UNKNOWN
"""

from __future__ import annotations

import logging
import re

from .errors import (
    ValidationError,
    RpcError,
    ProvisioningError,
    ProvisioningErrorKind,
)
from .models import Account, Tenant
from .roles import Role

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_KIND_BY_CODE = {
    "duplicate_identity": ProvisioningErrorKind.DUPLICATE_IDENTITY,
    "function_not_found": ProvisioningErrorKind.FUNCTION_MISSING,
    "validation_failed": ProvisioningErrorKind.VALIDATION_FAILURE,
}


def validate_email(email: str | None, field: str = "email") -> str:
    value = (email or "").strip().lower()
    if not EMAIL_PATTERN.match(value):
        raise ValidationError("A valid email address is required", field)
    return value


def validate_password(password: str | None) -> str:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long", "password"
        )
    return password


def _required(value, field: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{field} is required", field)
    return value


def _provisioning_error(e: RpcError) -> ProvisioningError:
    kind = _KIND_BY_CODE.get(e.code, ProvisioningErrorKind.UNKNOWN)
    if kind is ProvisioningErrorKind.FUNCTION_MISSING:
        logger.error("Provisioning function is not deployed: %s", e)
    return ProvisioningError(kind, str(e), cause=e)


class AccountProvisioner:
    def __init__(self, remote):
        self._remote = remote

    def provision(self, *, name: str, email: str, password: str, role: Role | str = Role.EMPLOYEE) -> Account:
        """
        Create identity + profile in the caller's tenant.

        Local checks raise ValidationError and nothing is sent. Service
        rejections raise ProvisioningError.
        """
        args = {
            "name": _required(name, "name"),
            "email": validate_email(email),
            "password": validate_password(password),
            "role": Role.parse(role).value,
        }
        try:
            row = self._remote.rpc("provision_account", args)
        except RpcError as e:
            raise _provisioning_error(e) from e
        logger.info("Provisioned account %s (%s)", row["id"], row["role"])
        return Account.from_row(row)

    def register_tenant(self, *, tenant_name: str, admin_name: str, email: str, password: str,
                        tax_id: str | None = None, address: str | None = None,
                        phone: str | None = None) -> tuple[Tenant, Account]:
        """
        Signup: create a tenant and its first admin in one call.

        The new admin is not signed in by this call; sign in afterwards with
        the same credentials.
        """
        args = {
            "tenant_name": _required(tenant_name, "tenant_name"),
            "admin_name": _required(admin_name, "admin_name"),
            "email": validate_email(email),
            "password": validate_password(password),
            "tax_id": tax_id,
            "address": address,
            "phone": phone,
        }
        try:
            result = self._remote.rpc("register_tenant", args)
        except RpcError as e:
            raise _provisioning_error(e) from e
        return Tenant.from_row(result["tenant"]), Account.from_row(result["account"])
