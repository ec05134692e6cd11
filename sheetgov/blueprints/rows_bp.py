"""
Sheet rows blueprint.

Endpoints:
    GET    /api/v1/sheets/<key>/rows                    — list visible rows
    POST   /api/v1/sheets/<key>/rows                    — create a row
    POST   /api/v1/sheets/<key>/rows/bulk               — create many rows
    GET    /api/v1/sheets/<key>/rows/<id>               — single row
    PUT    /api/v1/sheets/<key>/rows/<id>               — update cells / attributes
    PATCH  /api/v1/sheets/<key>/rows/<id>               — update one cell
    DELETE /api/v1/sheets/<key>/rows/<id>               — soft delete
    POST   /api/v1/sheets/<key>/rows/<id>/restore       — restore (super-admin)
    GET    /api/v1/sheets/<key>/rows/<id>/lock          — current lock
    POST   /api/v1/sheets/<key>/rows/<id>/lock          — take the edit lock
    POST   /api/v1/sheets/<key>/rows/<id>/unlock        — release the edit lock
    POST   /api/v1/sheets/<key>/rows/<id>/assign        — add an assignee
    POST   /api/v1/sheets/<key>/rows/<id>/unassign      — remove an assignee
    POST   /api/v1/sheets/<key>/rows/bulk-assign        — assign many rows
    GET    /api/v1/sheets/<key>/export                  — CSV / Excel export
"""

import io

from flask import Blueprint, jsonify, request, send_file

from sheetgov.blueprints import arg_flag, json_body
from sheetgov.middleware.jwt_auth import current_actor
from sheetgov.services import export_service, row_service
from sheetgov.services.row_service import serialize_row

rows_bp = Blueprint("rows", __name__, url_prefix="/api/v1/sheets/<sheet_key>")

_LIST_FILTERS = (
    "status", "priority", "assigned_to", "created_by", "date_from", "date_to",
    "search", "sort_by", "sort_order", "page", "per_page",
)


# ── Collection ───────────────────────────────────────────────────────────────

@rows_bp.route("/rows", methods=["GET"])
def list_rows(sheet_key):
    """
    Query params:
        status, priority, assigned_to, created_by — exact filters
        date_from, date_to                        — created_at range (ISO)
        search                                    — substring over cells and tags
        sort_by, sort_order                       — ordering (default created_at desc)
        page, per_page                            — pagination
        include_all                               — ignored unless the caller bypasses row security
    """
    filters = {k: request.args.get(k) for k in _LIST_FILTERS if request.args.get(k)}
    result = row_service.list_rows(
        current_actor(), sheet_key, filters, include_all=arg_flag("include_all")
    )
    return jsonify(result)


@rows_bp.route("/rows", methods=["POST"])
def create_row(sheet_key):
    body = json_body()
    access, row = row_service.create_row(
        current_actor(),
        sheet_key,
        body.get("data") or {},
        assigned_to=body.get("assigned_to"),
        meta=body,
    )
    return jsonify(serialize_row(access, row)), 201


@rows_bp.route("/rows/bulk", methods=["POST"])
def bulk_create_rows(sheet_key):
    body = json_body()
    result = row_service.bulk_create_rows(current_actor(), sheet_key, body.get("rows"))
    status = 201 if result["created"] else 422
    return jsonify(result), status


# ── Single row ───────────────────────────────────────────────────────────────

@rows_bp.route("/rows/<int:row_id>", methods=["GET"])
def get_row(sheet_key, row_id):
    access, row = row_service.get_row(current_actor(), sheet_key, row_id)
    return jsonify(serialize_row(access, row))


@rows_bp.route("/rows/<int:row_id>", methods=["PUT"])
def update_row(sheet_key, row_id):
    body = json_body()
    access, row = row_service.update_row(
        current_actor(),
        sheet_key,
        row_id,
        body.get("data") or {},
        meta=body,
        expected_version=body.get("expected_version"),
        reason=body.get("reason"),
    )
    return jsonify(serialize_row(access, row))


@rows_bp.route("/rows/<int:row_id>", methods=["PATCH"])
def patch_row_field(sheet_key, row_id):
    body = json_body()
    access, row = row_service.patch_row_field(
        current_actor(),
        sheet_key,
        row_id,
        body.get("field"),
        body.get("value"),
        expected_version=body.get("expected_version"),
    )
    return jsonify(serialize_row(access, row))


@rows_bp.route("/rows/<int:row_id>", methods=["DELETE"])
def delete_row(sheet_key, row_id):
    body = json_body()
    row_service.soft_delete_row(current_actor(), sheet_key, row_id, reason=body.get("reason"))
    return jsonify({"message": f"Row {row_id} deleted"})


@rows_bp.route("/rows/<int:row_id>/restore", methods=["POST"])
def restore_row(sheet_key, row_id):
    body = json_body()
    access, row = row_service.restore_row(current_actor(), sheet_key, row_id, reason=body.get("reason"))
    return jsonify(serialize_row(access, row))


# ── Locks ────────────────────────────────────────────────────────────────────

@rows_bp.route("/rows/<int:row_id>/lock", methods=["GET"])
def get_row_lock(sheet_key, row_id):
    lock = row_service.get_row_lock(current_actor(), sheet_key, row_id)
    return jsonify({"row_id": row_id, "is_locked": lock is not None, "lock": lock.to_dict() if lock else None})


@rows_bp.route("/rows/<int:row_id>/lock", methods=["POST"])
def lock_row(sheet_key, row_id):
    body = json_body()
    access, row, lock = row_service.lock_row(
        current_actor(), sheet_key, row_id, timeout_minutes=body.get("timeout_minutes")
    )
    return jsonify({"row_id": row.id, "lock": lock.to_dict()})


@rows_bp.route("/rows/<int:row_id>/unlock", methods=["POST"])
def unlock_row(sheet_key, row_id):
    released = row_service.unlock_row(current_actor(), sheet_key, row_id)
    return jsonify({"row_id": row_id, "released": released})


# ── Row assignment ───────────────────────────────────────────────────────────

@rows_bp.route("/rows/<int:row_id>/assign", methods=["POST"])
def assign_row(sheet_key, row_id):
    body = json_body()
    access, row = row_service.assign_row(
        current_actor(), sheet_key, row_id, body.get("staff_id"), make_primary=bool(body.get("make_primary"))
    )
    return jsonify(serialize_row(access, row))


@rows_bp.route("/rows/<int:row_id>/unassign", methods=["POST"])
def unassign_row(sheet_key, row_id):
    body = json_body()
    access, row = row_service.unassign_row(current_actor(), sheet_key, row_id, body.get("staff_id"))
    return jsonify(serialize_row(access, row))


@rows_bp.route("/rows/bulk-assign", methods=["POST"])
def bulk_assign_rows(sheet_key):
    body = json_body()
    result = row_service.bulk_assign_rows(
        current_actor(),
        sheet_key,
        body.get("row_ids"),
        body.get("staff_id"),
        make_primary=bool(body.get("make_primary")),
    )
    return jsonify(result)


# ── Export ───────────────────────────────────────────────────────────────────

@rows_bp.route("/export", methods=["GET"])
def export_sheet_rows(sheet_key):
    """
    Query params:
        format — csv (default) or xlsx
        status — only rows in this status
    """
    content, mimetype, filename = export_service.export_rows(
        current_actor(),
        sheet_key,
        fmt=request.args.get("format", "csv"),
        status=request.args.get("status"),
    )
    return send_file(io.BytesIO(content), mimetype=mimetype, as_attachment=True, download_name=filename)
