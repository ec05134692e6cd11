"""
Row workflow blueprint — review transitions and administrative actions.

Endpoints:
    POST /api/v1/sheets/<key>/rows/<id>/submit      — draft|returned -> pending_review
    POST /api/v1/sheets/<key>/rows/<id>/approve     — pending_review -> approved
    POST /api/v1/sheets/<key>/rows/<id>/reject      — pending_review -> rejected (reason required)
    POST /api/v1/sheets/<key>/rows/<id>/return      — pending_review -> returned
    POST /api/v1/sheets/<key>/approve-bulk          — approve many rows
    GET  /api/v1/sheets/pending-approvals           — rows awaiting the caller's review
    GET  /api/v1/sheets/<key>/pending-approvals     — same, one sheet
    POST /api/v1/sheets/<key>/admin/lock-rows       — freeze rows (super-admin)
    POST /api/v1/sheets/<key>/admin/unlock-rows     — unfreeze rows (super-admin)
    POST /api/v1/sheets/<key>/admin/reassign-rows   — move rows to another assignee
"""

from flask import Blueprint, jsonify

from sheetgov.blueprints import json_body
from sheetgov.middleware.jwt_auth import current_actor
from sheetgov.services import row_service, workflow_service
from sheetgov.services.access_service import resolve_access
from sheetgov.services.row_service import serialize_row

workflow_bp = Blueprint("workflow", __name__, url_prefix="/api/v1/sheets")


def _row_response(actor, sheet_key, row):
    access = resolve_access(actor, sheet_key, None)
    return jsonify(serialize_row(access, row))


# ── Transitions ──────────────────────────────────────────────────────────────

@workflow_bp.route("/<sheet_key>/rows/<int:row_id>/submit", methods=["POST"])
def submit_row(sheet_key, row_id):
    actor = current_actor()
    body = json_body()
    row = workflow_service.submit_row(actor, sheet_key, row_id, notes=body.get("notes"))
    return _row_response(actor, sheet_key, row)


@workflow_bp.route("/<sheet_key>/rows/<int:row_id>/approve", methods=["POST"])
def approve_row(sheet_key, row_id):
    actor = current_actor()
    body = json_body()
    row = workflow_service.approve_row(actor, sheet_key, row_id, notes=body.get("notes"))
    return _row_response(actor, sheet_key, row)


@workflow_bp.route("/<sheet_key>/rows/<int:row_id>/reject", methods=["POST"])
def reject_row(sheet_key, row_id):
    actor = current_actor()
    body = json_body()
    row = workflow_service.reject_row(actor, sheet_key, row_id, reason=body.get("reason"))
    return _row_response(actor, sheet_key, row)


@workflow_bp.route("/<sheet_key>/rows/<int:row_id>/return", methods=["POST"])
def return_row(sheet_key, row_id):
    actor = current_actor()
    body = json_body()
    row = workflow_service.return_row(actor, sheet_key, row_id, notes=body.get("notes"))
    return _row_response(actor, sheet_key, row)


@workflow_bp.route("/<sheet_key>/approve-bulk", methods=["POST"])
def bulk_approve(sheet_key):
    body = json_body()
    result = workflow_service.bulk_approve(current_actor(), sheet_key, body.get("row_ids"), notes=body.get("notes"))
    return jsonify(result)


# ── Review queue ─────────────────────────────────────────────────────────────

def _pending(sheet_key=None):
    pending = workflow_service.list_pending_approvals(current_actor(), sheet_key)
    items = []
    for access, row in pending:
        item = serialize_row(access, row)
        item["sheet_key"] = access.sheet_key
        item["sheet_name"] = access.sheet.name
        items.append(item)
    return jsonify({"items": items, "total": len(items)})


@workflow_bp.route("/pending-approvals", methods=["GET"])
def pending_approvals():
    return _pending()


@workflow_bp.route("/<sheet_key>/pending-approvals", methods=["GET"])
def sheet_pending_approvals(sheet_key):
    return _pending(sheet_key)


# ── Administrative actions ───────────────────────────────────────────────────

@workflow_bp.route("/<sheet_key>/admin/lock-rows", methods=["POST"])
def admin_lock_rows(sheet_key):
    body = json_body()
    result = workflow_service.admin_lock_rows(current_actor(), sheet_key, body.get("row_ids"), reason=body.get("reason"))
    return jsonify(result)


@workflow_bp.route("/<sheet_key>/admin/unlock-rows", methods=["POST"])
def admin_unlock_rows(sheet_key):
    body = json_body()
    result = workflow_service.admin_unlock_rows(
        current_actor(),
        sheet_key,
        body.get("row_ids"),
        target_status=body.get("unlock_status"),
        reason=body.get("reason"),
    )
    return jsonify(result)


@workflow_bp.route("/<sheet_key>/admin/reassign-rows", methods=["POST"])
def admin_reassign_rows(sheet_key):
    body = json_body()
    result = row_service.reassign_rows(
        current_actor(),
        sheet_key,
        body.get("to_staff_id"),
        row_ids=body.get("row_ids"),
        from_staff_id=body.get("from_staff_id"),
        reason=body.get("reason"),
    )
    return jsonify(result)
