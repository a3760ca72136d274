# Overview: Flask API routes for sign-in, sign-out, token refresh and the current user.

"""
Authentication API routes

The dashboard holds an access token (Bearer) and a single-use refresh token.
Sign-up is not exposed here: tenants are created through the register_tenant
RPC and further users through provision_account.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..services import auth_service
from ..services import session_service
from ..services.session_service import SessionError
from ..decorators import require_auth
from ..responses import error_response


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate with email + password and issue a token pair.

    Returns {session: {access_token, refresh_token, token_type, expires_at}, user}.
    """
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email")
        password = data.get("password")

        if not all([email, password]):
            return error_response("email and password required", "validation_failed", 400)

        identity = auth_service.authenticate(email, password)
        if not identity:
            return error_response("Invalid login credentials", "invalid_credentials", 401)

        session, access_token, refresh_token = session_service.create_session(
            identity.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )
        return jsonify(session_service.session_payload(session, access_token, refresh_token)), 200

    except Exception:
        current_app.logger.exception("Failed to login user")
        return error_response("Internal server error", "internal_error", 500)


@auth_bp.post("/logout")
def logout_route():
    """
    Revoke the presented access token.

    WHY: Explicit logout prevents token reuse. An already revoked or unknown
    token is still answered 200; the client ends up signed out either way.
    """
    try:
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return error_response("Authorization header required", "unauthorized", 401)

        token = auth_header.split(" ", 1)[1]
        session_service.revoke_session(token, reason="User logout")
        return jsonify({"message": "Logout successful"}), 200

    except Exception:
        current_app.logger.exception("Failed to logout user")
        return error_response("Internal server error", "internal_error", 500)


@auth_bp.post("/refresh")
def refresh_route():
    """Exchange a refresh token for a new token pair (the old pair is revoked)."""
    try:
        data = request.get_json(silent=True) or {}
        refresh_token = data.get("refresh_token")
        if not refresh_token:
            return error_response("refresh_token required", "validation_failed", 400)

        session, access_token, new_refresh_token = session_service.refresh_session(
            refresh_token,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )
        return jsonify(session_service.session_payload(session, access_token, new_refresh_token)), 200

    except SessionError as e:
        return error_response(str(e), "invalid_grant", 401)
    except Exception:
        current_app.logger.exception("Failed to refresh session")
        return error_response("Internal server error", "internal_error", 500)


@auth_bp.get("/user")
@require_auth
def current_user_route():
    """The identity behind the access token (profile lookup is a separate table read)."""
    return jsonify({"user": g.session_context.identity.to_dict()}), 200
