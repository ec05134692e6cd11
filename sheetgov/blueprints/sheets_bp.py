"""
Sheet definitions blueprint.

Endpoints:
    GET    /api/v1/sheets                     — all sheets (super-admin)
    POST   /api/v1/sheets                     — define a sheet (super-admin)
    GET    /api/v1/sheets/mine                — sheets the caller may open
    GET    /api/v1/sheets/<key>               — definition + caller's access
    PUT    /api/v1/sheets/<key>               — update metadata / policies
    DELETE /api/v1/sheets/<key>               — delete an empty sheet
    PUT    /api/v1/sheets/<key>/columns       — replace column specs
    POST   /api/v1/sheets/<key>/deactivate    — deactivate
    GET    /api/v1/sheets/<key>/stats         — row statistics
"""

from flask import Blueprint, jsonify, request

from sheetgov.blueprints import arg_flag, json_body
from sheetgov.middleware.jwt_auth import current_actor
from sheetgov.services import access_service, sheet_service

sheets_bp = Blueprint("sheets", __name__, url_prefix="/api/v1/sheets")


@sheets_bp.route("", methods=["GET"])
def list_sheets():
    """
    Query params:
        category — filter by category
        status   — filter by status
    """
    sheets = sheet_service.list_sheets(
        current_actor(),
        category=request.args.get("category"),
        status=request.args.get("status"),
    )
    include_columns = arg_flag("include_columns")
    return jsonify({"items": [s.to_dict(include_columns=include_columns) for s in sheets], "total": len(sheets)})


@sheets_bp.route("", methods=["POST"])
def create_sheet():
    sheet = sheet_service.create_sheet(current_actor(), json_body())
    return jsonify(sheet.to_dict()), 201


@sheets_bp.route("/mine", methods=["GET"])
def my_sheets():
    items = access_service.list_allowed_sheets(current_actor())
    return jsonify({"items": items, "total": len(items)})


@sheets_bp.route("/<sheet_key>", methods=["GET"])
def get_sheet(sheet_key):
    sheet, access = sheet_service.get_sheet_for_actor(current_actor(), sheet_key)
    result = sheet.to_dict()
    result["access"] = access
    return jsonify(result)


@sheets_bp.route("/<sheet_key>", methods=["PUT"])
def update_sheet(sheet_key):
    sheet = sheet_service.update_sheet(current_actor(), sheet_key, json_body())
    return jsonify(sheet.to_dict())


@sheets_bp.route("/<sheet_key>", methods=["DELETE"])
def delete_sheet(sheet_key):
    sheet_service.delete_sheet(current_actor(), sheet_key)
    return jsonify({"message": f"Sheet '{sheet_key}' deleted"})


@sheets_bp.route("/<sheet_key>/columns", methods=["PUT"])
def update_columns(sheet_key):
    body = json_body()
    sheet = sheet_service.update_columns(current_actor(), sheet_key, body.get("columns"))
    return jsonify(sheet.to_dict())


@sheets_bp.route("/<sheet_key>/deactivate", methods=["POST"])
def deactivate_sheet(sheet_key):
    sheet = sheet_service.deactivate_sheet(current_actor(), sheet_key)
    return jsonify(sheet.to_dict(include_columns=False))


@sheets_bp.route("/<sheet_key>/stats", methods=["GET"])
def sheet_stats(sheet_key):
    return jsonify(sheet_service.sheet_stats(current_actor(), sheet_key))
