"""
Sheet assignments blueprint — who may do what on which sheet.

Endpoints:
    POST /api/v1/sheet-assignments                    — grant access (super-admin)
    GET  /api/v1/sheet-assignments/sheet/<key>        — assignments on a sheet
    GET  /api/v1/sheet-assignments/staff/<id>         — assignments of a staff member
    GET  /api/v1/sheet-assignments/<id>               — one assignment
    PUT  /api/v1/sheet-assignments/<id>               — change permissions / scope
    POST /api/v1/sheet-assignments/<id>/revoke        — revoke (reason required)
"""

from flask import Blueprint, jsonify

from sheetgov.blueprints import arg_flag, json_body
from sheetgov.middleware.jwt_auth import current_actor
from sheetgov.services import access_service

assignments_bp = Blueprint("assignments", __name__, url_prefix="/api/v1/sheet-assignments")


@assignments_bp.route("", methods=["POST"])
def create_assignment():
    body = json_body()
    assignment = access_service.assign_staff(
        current_actor(),
        body.get("sheet_key"),
        body.get("staff_id"),
        permissions=body.get("permissions"),
        scope=body.get("scope"),
        restricted_columns=body.get("restricted_columns"),
        expires_at=body.get("expires_at"),
        notes=body.get("notes"),
    )
    return jsonify(assignment.to_dict()), 201


@assignments_bp.route("/sheet/<sheet_key>", methods=["GET"])
def list_sheet_assignments(sheet_key):
    items = access_service.list_sheet_assignments(
        current_actor(), sheet_key, include_inactive=arg_flag("include_inactive")
    )
    return jsonify({"items": [a.to_dict() for a in items], "total": len(items)})


@assignments_bp.route("/staff/<int:staff_id>", methods=["GET"])
def list_staff_assignments(staff_id):
    items = access_service.list_staff_assignments(
        current_actor(), staff_id, include_inactive=arg_flag("include_inactive")
    )
    return jsonify({"items": [a.to_dict() for a in items], "total": len(items)})


@assignments_bp.route("/<int:assignment_id>", methods=["GET"])
def get_assignment(assignment_id):
    actor = current_actor()
    assignment = access_service.get_assignment(assignment_id)
    if assignment.staff_id != actor.id:
        access_service.require_super_admin(actor)
    return jsonify(assignment.to_dict())


@assignments_bp.route("/<int:assignment_id>", methods=["PUT"])
def update_assignment(assignment_id):
    assignment = access_service.update_assignment(current_actor(), assignment_id, json_body())
    return jsonify(assignment.to_dict())


@assignments_bp.route("/<int:assignment_id>/revoke", methods=["POST"])
def revoke_assignment(assignment_id):
    body = json_body()
    assignment = access_service.revoke_assignment(current_actor(), assignment_id, body.get("reason"))
    return jsonify(assignment.to_dict())
