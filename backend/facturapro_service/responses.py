# Overview: JSON error bodies shared by every /api route.

"""
Every error leaves the service as {"error", "code", "details"} so that the
dashboard can branch on `code` (unique_violation, rls_violation, ...) and show
`error` to a human.
"""

from flask import current_app, jsonify

from .validation import ValidationError, ConflictError
from .services.tenant_service import TenantAccessError
from .services.table_service import QueryError, UnknownTableError
from .services.rpc_service import RpcError


def error_response(message: str, code: str, status: int, details=None):
    return jsonify({"error": message, "code": code, "details": details}), status


def service_error_response(e: Exception):
    """
    Map a known service exception to its HTTP response.

    Returns None for anything unexpected; the caller logs and answers 500.
    """
    if isinstance(e, ValidationError):
        return error_response(str(e), "validation_failed", 400, {"field": e.field} if e.field else None)
    if isinstance(e, QueryError):
        return error_response(str(e), e.code, 400)
    if isinstance(e, UnknownTableError):
        return error_response(str(e), e.code, 404)
    if isinstance(e, ConflictError):
        return error_response(str(e), e.code, 409, e.detail)
    if isinstance(e, TenantAccessError):
        return error_response(str(e), e.code, 403)
    if isinstance(e, RpcError):
        return error_response(str(e), e.code, e.status, e.details or None)
    return None


def handle_errors(e: Exception, what: str):
    response = service_error_response(e)
    if response is not None:
        return response
    current_app.logger.exception("Failed to %s", what)
    return error_response("Internal server error", "internal_error", 500)
