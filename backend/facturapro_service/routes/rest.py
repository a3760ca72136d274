# Overview: Flask API routes for row-level-secured table access.

"""
Table API routes: /api/rest/<table>

GET     select rows        ?select=&col=op.value&order=&limit=&offset=
POST    insert row(s)      body: object or array of objects
PATCH   update rows        body: patch object, filters required
DELETE  delete rows        filters required

All work is delegated to table_service, which enforces the tenant policy.
"""

from flask import Blueprint, request, jsonify

from ..decorators import require_auth
from ..responses import handle_errors
from ..services import table_service
from ..services.tenant_service import get_current_caller


rest_bp = Blueprint("rest", __name__, url_prefix="/api/rest")


def _filters():
    return [
        (key, value)
        for key, value in request.args.items(multi=True)
        if key not in table_service.RESERVED_PARAMS
    ]


@rest_bp.get("/<table>")
@require_auth
def select_route(table: str):
    try:
        rows = table_service.select_rows(
            get_current_caller(),
            table,
            _filters(),
            select=request.args.get("select"),
            order=request.args.get("order"),
            limit=request.args.get("limit"),
            offset=request.args.get("offset"),
        )
        return jsonify(rows), 200
    except Exception as e:
        return handle_errors(e, f"select from {table}")


@rest_bp.post("/<table>")
@require_auth
def insert_route(table: str):
    try:
        payload = request.get_json(silent=True)
        created = table_service.insert_rows(
            get_current_caller(),
            table,
            payload,
            select=request.args.get("select"),
        )
        return jsonify(created), 201
    except Exception as e:
        return handle_errors(e, f"insert into {table}")


@rest_bp.patch("/<table>")
@require_auth
def update_route(table: str):
    try:
        rows = table_service.update_rows(
            get_current_caller(),
            table,
            _filters(),
            request.get_json(silent=True),
            select=request.args.get("select"),
        )
        return jsonify(rows), 200
    except Exception as e:
        return handle_errors(e, f"update {table}")


@rest_bp.delete("/<table>")
@require_auth
def delete_route(table: str):
    try:
        rows = table_service.delete_rows(get_current_caller(), table, _filters())
        return jsonify(rows), 200
    except Exception as e:
        return handle_errors(e, f"delete from {table}")
