# Overview: Flask API route for remote procedure calls.

from flask import Blueprint, request, jsonify, g

from ..decorators import optional_auth
from ..responses import error_response, handle_errors
from ..services import rpc_service


rpc_bp = Blueprint("rpc", __name__, url_prefix="/api/rpc")


@rpc_bp.post("/<name>")
@optional_auth
def call_route(name: str):
    """
    Invoke a registered function with the JSON body as arguments.

    Returns {"data": <result>}. Functions other than register_tenant need a
    valid access token.
    """
    try:
        function = rpc_service.get_function(name)
        if function.requires_auth and g.caller is None:
            return error_response("Authentication required", "unauthorized", 401)

        result = rpc_service.call(name, g.caller, request.get_json(silent=True))
        return jsonify({"data": result}), 200
    except Exception as e:
        return handle_errors(e, f"call {name}")
