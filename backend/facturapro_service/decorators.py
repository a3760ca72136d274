# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, g

from .services import session_service
from .services.tenant_service import Caller
from .responses import error_response


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def _establish_caller(token: str) -> bool:
    context = session_service.validate_session(token)
    if not context:
        return False

    g.session_context = context
    g.caller = Caller(
        identity_id=context.identity.id,
        tenant_id=context.tenant_id,
        role=context.role,
    )
    return True


def require_auth(f):
    """
    Require a valid access token and establish the caller.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.caller: Caller(identity_id, tenant_id, role)
    - g.session_context: the full SessionContext

    An identity without an account profile is still authenticated
    (tenant_id=None); the table and RPC layers fail closed for it.

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, expired or revoked token
    - Identity deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if not token:
            return error_response("Authentication required", "unauthorized", 401)

        if not _establish_caller(token):
            return error_response("Invalid or expired token", "unauthorized", 401)

        return f(*args, **kwargs)

    return decorated_function


def optional_auth(f):
    """
    Establish g.caller when a valid token is presented, else leave it None.

    Used by the RPC route, where some functions are public.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.caller = None
        token = _bearer_token()
        if token and not _establish_caller(token):
            return error_response("Invalid or expired token", "unauthorized", 401)
        return f(*args, **kwargs)

    return decorated_function
