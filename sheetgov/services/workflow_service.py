"""
Workflow Engine — review state machine for sheet rows.

    draft | returned  --submit-->  pending_review
    pending_review    --approve--> approved
    pending_review    --reject-->  rejected      (reason required)
    pending_review    --return-->  returned
    any but locked    --admin_lock-->   locked   (super-admin, no expiry)
    locked            --admin_unlock--> target   (super-admin)

Reviews (approve / reject / return) need the ``approve`` permission and are
never allowed on one's own submission, whatever the reviewer's role.
Submitting releases the submitter's edit lock; every review drops the
row's lock regardless of holder.

Every successful transition appends exactly one audit entry carrying the
previous and new status. Rejected transitions append nothing.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import select

from sheetgov.core.exceptions import AccessDenied, InvalidTransition, NotFoundError, ValidationError
from sheetgov.models import db
from sheetgov.models.row import SheetRow
from sheetgov.models.sheet import ROW_STATUSES, SheetDefinition
from sheetgov.services import lock_service
from sheetgov.services.access_service import Actor, require_super_admin, resolve_access
from sheetgov.services.audit_service import record_audit
from sheetgov.services.row_security import apply_row_filter, check_row_ownership
from sheetgov.utils.helpers import get_row_or_404, parse_id_list

logger = logging.getLogger(__name__)

# action -> (allowed source statuses, target status, permission)
TRANSITIONS = {
    "submit": (frozenset({"draft", "returned"}), "pending_review", "submit"),
    "approve": (frozenset({"pending_review"}), "approved", "approve"),
    "reject": (frozenset({"pending_review"}), "rejected", "approve"),
    "return": (frozenset({"pending_review"}), "returned", "approve"),
}

REVIEW_ACTIONS = frozenset({"approve", "reject", "return"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Validation ───────────────────────────────────────────────────────────────


def validate_transition(sheet: SheetDefinition, row: SheetRow, action: str, actor_id: int | None = None) -> str:
    """Return the target status for ``action`` on ``row`` or raise InvalidTransition."""
    sources, target, _permission = TRANSITIONS[action]
    workflow = sheet.workflow_settings

    if not workflow["enable_approval"]:
        raise InvalidTransition(
            f"Approval workflow is disabled for sheet '{sheet.sheet_key}'",
            current_status=row.status, action=action,
        )
    if row.status not in sources:
        raise InvalidTransition(
            f"Cannot {action} a row in status '{row.status}'",
            current_status=row.status, action=action,
        )
    allowed = workflow.get("allowed_statuses") or []
    if allowed and target not in allowed:
        raise InvalidTransition(
            f"Status '{target}' is not allowed on sheet '{sheet.sheet_key}'",
            current_status=row.status, action=action,
        )
    if action in REVIEW_ACTIONS and actor_id is not None and row.submitted_by_id == actor_id:
        raise InvalidTransition(
            "You cannot review your own submission",
            current_status=row.status, action=action,
        )
    return target


def demote_on_edit(sheet: SheetDefinition, row: SheetRow) -> bool:
    """Send an edited approved row back to the sheet's default status.

    Applies only when the sheet sets ``require_approval_for_edit``.
    Returns True when the status changed.
    """
    if row.status != "approved" or not sheet.workflow_settings["require_approval_for_edit"]:
        return False
    row.status = sheet.workflow_settings.get("default_status") or "draft"
    row.reviewed_by_id = None
    row.reviewed_at = None
    return True


# ── Transitions ──────────────────────────────────────────────────────────────


def submit_row(actor: Actor, sheet_key: str, row_id: int, notes: str | None = None) -> SheetRow:
    """draft|returned -> pending_review. Releases the submitter's edit lock."""
    access = resolve_access(actor, sheet_key, "submit")
    row = get_row_or_404(access.sheet, row_id)
    check_row_ownership(access, row, "submit")
    target = validate_transition(access.sheet, row, "submit")

    previous = row.status
    row.status = target
    row.submitted_by_id = actor.id
    row.submitted_at = _utcnow()
    row.review_notes = None
    row.reviewed_by_id = None
    row.reviewed_at = None
    row.updated_by_id = actor.id
    lock_service.release_lock(row.id, actor.id)

    record_audit(
        "submit",
        actor=actor,
        sheet=access.sheet,
        row_id=row.id,
        changes=[{"field": "status", "old_value": previous, "new_value": target}],
        context={"previous_status": previous, "new_status": target, "notes": notes},
    )
    db.session.commit()

    logger.info(
        "Row submitted for review",
        extra={"sheet_key": access.sheet_key, "row_id": row.id, "actor_id": actor.id},
    )
    return row


def _review(actor: Actor, sheet_key: str, row_id: int, action: str, notes: str | None, bulk_operation_id: str | None = None) -> SheetRow:
    access = resolve_access(actor, sheet_key, "approve")
    row = get_row_or_404(access.sheet, row_id)
    target = validate_transition(access.sheet, row, action, actor_id=actor.id)
    if action == "reject" and not (notes or "").strip():
        raise InvalidTransition("A reason is required to reject a row", current_status=row.status, action=action)

    previous = row.status
    row.status = target
    row.reviewed_by_id = actor.id
    row.reviewed_at = _utcnow()
    row.review_notes = (notes or "").strip() or None
    row.updated_by_id = actor.id
    # A reviewed row is no longer being edited, whoever held it
    lock_service.force_release_lock(row.id)

    record_audit(
        action,
        actor=actor,
        sheet=access.sheet,
        row_id=row.id,
        changes=[{"field": "status", "old_value": previous, "new_value": target}],
        context={
            "previous_status": previous,
            "new_status": target,
            "notes": notes if action != "reject" else None,
            "reason": notes if action == "reject" else None,
            "bulk_operation_id": bulk_operation_id,
        },
    )
    return row


def approve_row(actor: Actor, sheet_key: str, row_id: int, notes: str | None = None) -> SheetRow:
    """pending_review -> approved."""
    row = _review(actor, sheet_key, row_id, "approve", notes)
    db.session.commit()
    logger.info("Row approved", extra={"sheet_key": sheet_key, "row_id": row.id, "actor_id": actor.id})
    return row


def reject_row(actor: Actor, sheet_key: str, row_id: int, reason: str) -> SheetRow:
    """pending_review -> rejected. ``reason`` is mandatory."""
    row = _review(actor, sheet_key, row_id, "reject", reason)
    db.session.commit()
    logger.info("Row rejected", extra={"sheet_key": sheet_key, "row_id": row.id, "actor_id": actor.id})
    return row


def return_row(actor: Actor, sheet_key: str, row_id: int, notes: str | None = None) -> SheetRow:
    """pending_review -> returned, for corrections by the submitter."""
    row = _review(actor, sheet_key, row_id, "return", notes)
    db.session.commit()
    logger.info("Row returned for corrections", extra={"sheet_key": sheet_key, "row_id": row.id, "actor_id": actor.id})
    return row


def bulk_approve(actor: Actor, sheet_key: str, row_ids: list, notes: str | None = None) -> dict:
    """Approve many pending rows. Own submissions and rows that are not
    pending are skipped; the rest are approved.

    Appends one ``approve`` entry per approved row, plus a ``bulk_update``
    summary entry with result ``partial`` when anything was skipped.
    """
    access = resolve_access(actor, sheet_key, "approve")
    row_ids = parse_id_list(row_ids)
    bulk_operation_id = uuid.uuid4().hex
    approved, skipped = [], []

    for row_id in row_ids:
        try:
            row = _review(actor, access.sheet_key, row_id, "approve", notes, bulk_operation_id)
        except (InvalidTransition, NotFoundError) as exc:
            skipped.append({"row_id": row_id, "error": str(exc)})
            continue
        approved.append(row.id)

    record_audit(
        "bulk_update",
        actor=actor,
        sheet=access.sheet,
        result="partial" if skipped else "success",
        error_message=f"{len(skipped)} row(s) skipped" if skipped else None,
        context={"bulk_operation_id": bulk_operation_id, "notes": notes, "new_status": "approved"},
    )
    db.session.commit()

    logger.info(
        "Bulk approval: %d approved, %d skipped", len(approved), len(skipped),
        extra={"sheet_key": access.sheet_key, "actor_id": actor.id},
    )
    return {
        "bulk_operation_id": bulk_operation_id,
        "approved": approved,
        "skipped": skipped,
    }


def list_pending_approvals(actor: Actor, sheet_key: str | None = None) -> list[tuple]:
    """Rows awaiting review that the actor could review.

    Own submissions are excluded and the row filter applies.

    Returns:
        [(EffectiveAccess, SheetRow), …] ordered by submission time.
    """
    if sheet_key:
        accesses = [resolve_access(actor, sheet_key, "approve")]
    else:
        sheets = db.session.execute(select(SheetDefinition).order_by(SheetDefinition.name)).scalars()
        accesses = []
        for sheet in sheets:
            try:
                accesses.append(resolve_access(actor, sheet, "approve"))
            except (AccessDenied, NotFoundError):
                continue

    pending = []
    for access in accesses:
        query = select(SheetRow).where(
            SheetRow.sheet_id == access.sheet.id,
            SheetRow.status == "pending_review",
            SheetRow.deleted_at.is_(None),
            (SheetRow.submitted_by_id != actor.id) | SheetRow.submitted_by_id.is_(None),
        )
        query = apply_row_filter(query, access).order_by(SheetRow.submitted_at, SheetRow.id)
        pending.extend((access, row) for row in db.session.execute(query).scalars())
    return pending


# ── Administrative lock ──────────────────────────────────────────────────────


def admin_lock_rows(actor: Actor, sheet_key: str, row_ids: list, reason: str | None = None) -> dict:
    """Freeze rows in ``locked`` status until explicitly unlocked. Super-admin only."""
    require_super_admin(actor)
    access = resolve_access(actor, sheet_key, None)
    bulk_operation_id = uuid.uuid4().hex
    locked, skipped = [], []

    for row_id in parse_id_list(row_ids):
        try:
            row = get_row_or_404(access.sheet, row_id)
        except NotFoundError as exc:
            skipped.append({"row_id": row_id, "error": str(exc)})
            continue
        if row.status == "locked":
            skipped.append({"row_id": row.id, "error": "Row is already locked"})
            continue

        lock_service.force_release_lock(row.id)
        previous = row.status
        row.status_before_lock = previous
        row.status = "locked"
        row.locked_by_id = actor.id
        row.locked_at = _utcnow()
        row.lock_expires_at = None
        row.updated_by_id = actor.id
        record_audit(
            "lock",
            actor=actor,
            sheet=access.sheet,
            row_id=row.id,
            changes=[{"field": "status", "old_value": previous, "new_value": "locked"}],
            context={
                "previous_status": previous,
                "new_status": "locked",
                "reason": reason,
                "bulk_operation_id": bulk_operation_id,
            },
        )
        locked.append(row.id)

    db.session.commit()
    logger.info("Rows locked by admin: %d", len(locked), extra={"sheet_key": sheet_key, "actor_id": actor.id})
    return {"bulk_operation_id": bulk_operation_id, "locked": locked, "skipped": skipped}


def admin_unlock_rows(
    actor: Actor,
    sheet_key: str,
    row_ids: list,
    target_status: str | None = None,
    reason: str | None = None,
) -> dict:
    """Lift the administrative lock. Rows go to ``target_status`` or back to
    the status they had when locked. Super-admin only."""
    require_super_admin(actor)
    access = resolve_access(actor, sheet_key, None)
    if target_status is not None:
        if target_status not in ROW_STATUSES or target_status == "locked":
            raise ValidationError(f"Invalid unlock status '{target_status}'", details={"unlock_status": "invalid"})
        allowed = access.sheet.workflow_settings.get("allowed_statuses") or []
        if allowed and target_status not in allowed:
            raise InvalidTransition(f"Status '{target_status}' is not allowed on sheet '{sheet_key}'")

    bulk_operation_id = uuid.uuid4().hex
    unlocked, skipped = [], []
    for row_id in parse_id_list(row_ids):
        try:
            row = get_row_or_404(access.sheet, row_id)
        except NotFoundError as exc:
            skipped.append({"row_id": row_id, "error": str(exc)})
            continue
        if row.status != "locked":
            skipped.append({"row_id": row.id, "error": "Row is not locked"})
            continue

        new_status = target_status or row.status_before_lock or access.sheet.workflow_settings["default_status"]
        row.status = new_status
        row.status_before_lock = None
        row.locked_by_id = None
        row.locked_at = None
        row.lock_expires_at = None
        row.updated_by_id = actor.id
        record_audit(
            "unlock",
            actor=actor,
            sheet=access.sheet,
            row_id=row.id,
            changes=[{"field": "status", "old_value": "locked", "new_value": new_status}],
            context={
                "previous_status": "locked",
                "new_status": new_status,
                "reason": reason,
                "bulk_operation_id": bulk_operation_id,
            },
        )
        unlocked.append(row.id)

    db.session.commit()
    logger.info("Rows unlocked by admin: %d", len(unlocked), extra={"sheet_key": sheet_key, "actor_id": actor.id})
    return {"bulk_operation_id": bulk_operation_id, "unlocked": unlocked, "skipped": skipped}
