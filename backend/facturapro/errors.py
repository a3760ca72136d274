# Overview: Error taxonomy of the dashboard core and user-facing messages.

"""
Every failure the core reports derives from FacturaError.

Local problems (ValidationError, OperationInProgress, ConfirmationRequired)
are raised before anything is sent to the Remote Data Service. Remote
problems keep the service's `code` and `detail` so callers can branch on the
code and show the detail verbatim.
"""

from __future__ import annotations

from enum import Enum


class FacturaError(Exception):
    """Base class for all dashboard core errors."""


class ConfigurationError(FacturaError):
    """Service URL or public key missing; raised at startup."""


class ValidationError(FacturaError):
    """Local, pre-flight, field-level problem. Never reaches the remote layer."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class OperationInProgress(FacturaError):
    """A mutation is already in flight on this controller (duplicate submission)."""


class ConfirmationRequired(FacturaError):
    """A destructive action was requested without an explicit confirmation step."""


class RemoteError(FacturaError):
    """
    Error reported by (or while talking to) the Remote Data Service.

    code: machine-readable code from the service ("unique_violation", ...)
          or "network_error" when the service could not be reached
    detail: the original constraint detail, surfaced verbatim
    status: HTTP status, None for transport failures
    """

    def __init__(self, message: str, code: str | None = None, detail=None, status: int | None = None):
        super().__init__(message)
        self.code = code
        self.detail = detail
        self.status = status


class AuthError(RemoteError):
    """Bad credentials or expired/invalid session."""


class QueryError(RemoteError):
    """A remote select failed."""


class WriteError(RemoteError):
    """A remote insert/update/delete failed, constraint violations included."""


class RpcError(RemoteError):
    """Privileged function missing, misconfigured, or business-rule rejection."""


class PartialCommitError(FacturaError):
    """
    The multi-step invoice write stopped after the header was created.

    step: the CommitStep that failed (lines or stock)
    invoice_id: the header that now exists without its full effects
    cause: the remote error that stopped the sequence
    """

    def __init__(self, step, invoice_id: int, cause: RemoteError, completed_product_ids=()):
        super().__init__(f"Invoice {invoice_id} was only partially saved: step '{step.label}' failed ({cause})")
        self.step = step
        self.invoice_id = invoice_id
        self.cause = cause
        self.completed_product_ids = tuple(completed_product_ids)


class ProvisioningErrorKind(Enum):
    DUPLICATE_IDENTITY = "duplicate_identity"
    FUNCTION_MISSING = "function_missing"
    VALIDATION_FAILURE = "validation_failure"
    UNKNOWN = "unknown"


class ProvisioningError(FacturaError):
    """Account provisioning or tenant registration rejected by the service."""

    def __init__(self, kind: ProvisioningErrorKind, message: str, cause: RemoteError | None = None):
        super().__init__(message)
        self.kind = kind
        self.cause = cause


_FRIENDLY_MESSAGES = {
    "unique_violation": "A record with these details already exists.",
    "duplicate_identity": "A user with this email address is already registered.",
    "foreign_key_violation": "This record is still referenced by other records and cannot be removed.",
    "check_violation": "One of the values is out of the allowed range.",
    "rls_violation": "You do not have permission to change this record.",
    "insufficient_stock": "There is not enough stock for this product.",
    "network_error": "The service could not be reached. Please try again.",
}


def friendly_message(error: Exception) -> str:
    """
    Text to show inline for a failed operation.

    Constraint violations get friendly text; everything else surfaces the
    underlying message for diagnosis.
    """
    if isinstance(error, PartialCommitError):
        return str(error)
    if isinstance(error, ProvisioningError):
        if error.kind is ProvisioningErrorKind.DUPLICATE_IDENTITY:
            return _FRIENDLY_MESSAGES["duplicate_identity"]
        if error.kind is ProvisioningErrorKind.FUNCTION_MISSING:
            return "User provisioning is not available on this deployment. Contact support."
        return str(error)
    code = getattr(error, "code", None)
    if code in _FRIENDLY_MESSAGES:
        return _FRIENDLY_MESSAGES[code]
    return str(error)
