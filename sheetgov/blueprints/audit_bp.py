"""
Sheet audit blueprint — read-only views over the audit ledger.

Endpoints:
    GET /api/v1/sheet-audit/sheet/<key>               — sheet activity (view_audit)
    GET /api/v1/sheet-audit/sheet/<key>/row/<id>      — one row's history (view_audit)
    GET /api/v1/sheet-audit/staff/<id>                — a staff member's activity
    GET /api/v1/sheet-audit/report                    — grouped counts (super-admin)
    GET /api/v1/sheet-audit/all                       — all entries (super-admin)
    GET /api/v1/sheet-audit/denied                    — failed attempts
"""

from flask import Blueprint, jsonify, request

from sheetgov.blueprints import page_args
from sheetgov.middleware.jwt_auth import current_actor
from sheetgov.services import audit_query_service

audit_bp = Blueprint("sheet_audit", __name__, url_prefix="/api/v1/sheet-audit")

_FILTER_ARGS = ("action", "result", "actor_id", "sheet_key", "start_date", "end_date")


def _filters(*exclude):
    return {k: request.args.get(k) for k in _FILTER_ARGS if k not in exclude and request.args.get(k)}


@audit_bp.route("/sheet/<sheet_key>", methods=["GET"])
def sheet_activity(sheet_key):
    """
    Query params:
        action, result, actor_id   — exact filters
        start_date, end_date       — ISO timestamps
        page, per_page             — pagination (per_page max 500)
    """
    page, per_page = page_args()
    result = audit_query_service.get_sheet_activity(
        current_actor(), sheet_key, _filters("sheet_key"), page=page, per_page=per_page
    )
    return jsonify(result)


@audit_bp.route("/sheet/<sheet_key>/row/<int:row_id>", methods=["GET"])
def row_history(sheet_key, row_id):
    entries = audit_query_service.get_row_history(current_actor(), sheet_key, row_id)
    return jsonify({"row_id": row_id, "items": entries, "total": len(entries)})


@audit_bp.route("/staff/<int:staff_id>", methods=["GET"])
def staff_activity(staff_id):
    page, per_page = page_args()
    result = audit_query_service.get_actor_activity(
        current_actor(),
        staff_id,
        start_date=request.args.get("start_date"),
        end_date=request.args.get("end_date"),
        page=page,
        per_page=per_page,
    )
    return jsonify(result)


@audit_bp.route("/report", methods=["GET"])
def audit_report():
    """
    Query params:
        group_by — action (default), actor, sheet or result
        plus the list filters
    """
    result = audit_query_service.get_audit_report(
        current_actor(), group_by=request.args.get("group_by", "action"), filters=_filters()
    )
    return jsonify(result)


@audit_bp.route("/all", methods=["GET"])
def all_entries():
    page, per_page = page_args()
    result = audit_query_service.list_audit_entries(current_actor(), _filters(), page=page, per_page=per_page)
    return jsonify(result)


@audit_bp.route("/denied", methods=["GET"])
def denied_attempts():
    """
    Query params:
        sheet_key — limit to one sheet (view_audit on it suffices)
        days      — look-back window (default 7)
    """
    entries = audit_query_service.get_denied_attempts(
        current_actor(),
        sheet_key=request.args.get("sheet_key"),
        days=request.args.get("days"),
    )
    return jsonify({"items": [e.to_dict() for e in entries], "total": len(entries)})
