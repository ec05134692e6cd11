"""
Row Store — governed CRUD over sheet rows.

Every operation follows the same pipeline:

    resolve_access -> row lookup -> check_row_ownership -> column checks
    -> (lock) -> mutation -> (unlock) -> audit append -> commit

Row data is validated against the sheet's column specs by
``column_validation``; the version counter goes up by one on every
content change and is only used as a concurrency token when the caller
passes ``expected_version``.
"""

from __future__ import annotations

import logging
import uuid

from flask import current_app
from sqlalchemy import String, cast, func, or_, select

from sheetgov.core.exceptions import AccessDenied, NotFoundError, StaleVersion, ValidationError
from sheetgov.models import db
from sheetgov.models.assignment import SheetAssignment
from sheetgov.models.auth import StaffMember
from sheetgov.models.row import ROW_PRIORITIES, SheetRow
from sheetgov.models.sheet import ROW_STATUSES, SheetDefinition
from sheetgov.services import lock_service, workflow_service
from sheetgov.services.access_service import Actor, EffectiveAccess, require_super_admin, resolve_access
from sheetgov.services.audit_service import record_audit
from sheetgov.services.column_validation import diff_row_data, is_empty, validate_row_data
from sheetgov.services.row_security import (
    apply_row_filter,
    build_row_filter,
    check_editable_columns,
    check_row_ownership,
    visible_columns,
    visible_data,
)
from sheetgov.utils.helpers import get_row_or_404, parse_date, parse_datetime, parse_id_list, parse_int

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = {
    "id": SheetRow.id,
    "created_at": SheetRow.created_at,
    "updated_at": SheetRow.updated_at,
    "status": SheetRow.status,
    "priority": SheetRow.priority,
    "version": SheetRow.version,
    "submitted_at": SheetRow.submitted_at,
}

_META_FIELDS = ("priority", "tags", "due_date")


# ── Serialisation ────────────────────────────────────────────────────────────


def serialize_row(access: EffectiveAccess, row: SheetRow, lock=None) -> dict:
    """Row dict as the actor may see it: restricted columns removed, lock state attached."""
    result = row.to_dict(data=visible_data(access, row))
    if lock is None and row.locked_by_id is not None and row.status != "locked":
        lock = lock_service.get_lock_info(row.id)
    result["lock"] = lock.to_dict() if lock is not None else None
    result["is_locked"] = lock is not None or row.status == "locked"
    result["is_locked_by_me"] = lock is not None and lock.holder_id == access.actor.id
    return result


# ── Private helpers ──────────────────────────────────────────────────────────


def _check_unique(sheet: SheetDefinition, data: dict, exclude_row_id: int | None = None, keys=None) -> None:
    unique_keys = [
        c["key"] for c in sheet.column_specs
        if c.get("unique") and not is_empty(data.get(c["key"])) and (keys is None or c["key"] in keys)
    ]
    if not unique_keys:
        return
    query = select(SheetRow.id, SheetRow.data).where(
        SheetRow.sheet_id == sheet.id,
        SheetRow.deleted_at.is_(None),
    )
    if exclude_row_id is not None:
        query = query.where(SheetRow.id != exclude_row_id)
    clashes = {}
    for other_id, other_data in db.session.execute(query):
        for key in unique_keys:
            if (other_data or {}).get(key) == data[key]:
                clashes[key] = f"value already used by row {other_id}"
    if clashes:
        raise ValidationError("Duplicate values in unique columns", details=clashes)


def _clean_meta(meta: dict | None) -> dict:
    """Validate the non-cell row attributes: priority, tags, due_date."""
    meta = {k: v for k, v in (meta or {}).items() if k in _META_FIELDS}
    if "priority" in meta:
        if meta["priority"] not in ROW_PRIORITIES:
            raise ValidationError(
                f"Invalid priority '{meta['priority']}'",
                details={"priority": f"must be one of {sorted(ROW_PRIORITIES)}"},
            )
    if "tags" in meta:
        tags = meta["tags"] or []
        if not isinstance(tags, list):
            raise ValidationError("tags must be a list", details={"tags": "invalid"})
        meta["tags"] = sorted({str(t).strip() for t in tags if str(t).strip()})
    if "due_date" in meta and meta["due_date"] not in (None, ""):
        parsed = parse_date(meta["due_date"])
        if parsed is None:
            raise ValidationError("due_date must be a date (YYYY-MM-DD)", details={"due_date": "invalid"})
        meta["due_date"] = parsed
    elif "due_date" in meta:
        meta["due_date"] = None
    return meta


def _meta_changes(row: SheetRow, meta: dict) -> list[dict]:
    changes = []
    for key, value in meta.items():
        current = getattr(row, key)
        if key == "tags":
            current = list(current or [])
        if current != value:
            changes.append({
                "field": key,
                "old_value": current.isoformat() if key == "due_date" and current else current,
                "new_value": value.isoformat() if key == "due_date" and value else value,
            })
    return changes


def _assignable_staff(sheet: SheetDefinition, staff_id) -> StaffMember:
    """A staff member rows of ``sheet`` can be assigned to: active, and either
    a super-admin or holding a valid assignment on the sheet."""
    try:
        staff = db.session.get(StaffMember, int(staff_id))
    except (TypeError, ValueError):
        staff = None
    if staff is None or not staff.is_active:
        raise ValidationError(f"Staff member {staff_id} cannot be assigned", details={"staff_id": "unknown or inactive"})
    if staff.is_super_admin:
        return staff
    assignment = db.session.execute(
        select(SheetAssignment).where(SheetAssignment.staff_id == staff.id, SheetAssignment.sheet_id == sheet.id)
    ).scalar_one_or_none()
    if assignment is None or not assignment.is_valid():
        raise ValidationError(
            f"{staff.name} has no active assignment on sheet '{sheet.sheet_key}'",
            details={"staff_id": "not assigned to sheet"},
        )
    return staff


def _require_row_assignment_enabled(sheet: SheetDefinition) -> dict:
    settings = sheet.row_assignment_settings
    if not settings["enabled"]:
        raise ValidationError(f"Row assignment is disabled for sheet '{sheet.sheet_key}'")
    return settings


def _initial_assignees(access: EffectiveAccess, assigned_to) -> list[StaffMember]:
    sheet = access.sheet
    settings = sheet.row_assignment_settings
    if not settings["enabled"]:
        if assigned_to:
            raise ValidationError(f"Row assignment is disabled for sheet '{sheet.sheet_key}'")
        return []

    if assigned_to:
        ids = assigned_to if isinstance(assigned_to, list) else [assigned_to]
        if len(ids) > 1 and not settings["allow_multiple_assignees"]:
            raise ValidationError("This sheet allows a single assignee per row", details={"assigned_to": "too many"})
        staff = []
        for staff_id in ids:
            member = _assignable_staff(sheet, staff_id)
            if member.id != access.actor.id:
                access.require("assign_rows")
            if member not in staff:
                staff.append(member)
        return staff

    if settings["auto_assign_on_create"]:
        return [db.session.get(StaffMember, access.actor.id)]
    return []


def _build_row(access: EffectiveAccess, data: dict, assigned_to=None, meta: dict | None = None) -> SheetRow:
    sheet = access.sheet
    data = data or {}
    check_editable_columns(access, data.keys(), creating=True)
    row_data = validate_row_data(sheet.column_specs, data, creating=True)
    _check_unique(sheet, row_data)
    meta = _clean_meta(meta)
    assignees = _initial_assignees(access, assigned_to)

    row = SheetRow(
        sheet_id=sheet.id,
        data=row_data,
        status=sheet.workflow_settings.get("default_status") or "draft",
        version=1,
        created_by_id=access.actor.id,
        updated_by_id=access.actor.id,
        primary_assignee_id=assignees[0].id if assignees else None,
        priority=meta.get("priority", "medium"),
        tags=meta.get("tags", []),
        due_date=meta.get("due_date"),
    )
    row.assignees = [a for a in assignees if a is not None]
    db.session.add(row)
    db.session.flush()
    return row


def _create_changes(row: SheetRow) -> list[dict]:
    return [
        {"field": key, "old_value": None, "new_value": value}
        for key, value in (row.data or {}).items()
        if value is not None
    ]


# ── Create ───────────────────────────────────────────────────────────────────


def create_row(
    actor: Actor,
    sheet_key: str,
    data: dict,
    assigned_to=None,
    meta: dict | None = None,
) -> tuple[EffectiveAccess, SheetRow]:
    """Create a row in the sheet's default status.

    Args:
        data: Column key -> value. Missing keys take column defaults.
        assigned_to: Staff id or list of ids. Defaults to the creator when
            the sheet auto-assigns on create.
        meta: Optional priority / tags / due_date.

    Raises:
        PermissionDenied: actor lacks ``create``.
        MissingRequiredFields: required columns left empty.
        ValidationError: bad values, unknown or duplicate columns.
    """
    access = resolve_access(actor, sheet_key, "create")
    row = _build_row(access, data, assigned_to, meta)
    record_audit(
        "create",
        actor=actor,
        sheet=access.sheet,
        row_id=row.id,
        changes=_create_changes(row),
        context={"new_status": row.status},
    )
    db.session.commit()

    logger.info("Row created", extra={"sheet_key": access.sheet_key, "row_id": row.id, "actor_id": actor.id})
    return access, row


def bulk_create_rows(actor: Actor, sheet_key: str, rows: list) -> dict:
    """Create many rows. Invalid items are reported, valid ones are created.

    Appends one ``create`` entry per row and a ``bulk_update`` summary whose
    result is ``partial`` if any item failed.
    """
    access = resolve_access(actor, sheet_key, "create")
    if not isinstance(rows, list) or not rows:
        raise ValidationError("rows must be a non-empty list", details={"rows": "required"})
    limit = current_app.config.get("SHEET_MAX_BULK_ROWS", 500)
    if len(rows) > limit:
        raise ValidationError(f"At most {limit} rows per bulk request", details={"rows": "too many"})

    bulk_operation_id = uuid.uuid4().hex
    created, errors = [], []
    for index, item in enumerate(rows):
        item = item if isinstance(item, dict) else {}
        try:
            row = _build_row(access, item.get("data") or {}, item.get("assigned_to"), item)
        except (ValidationError, AccessDenied) as exc:
            errors.append({"index": index, "error": str(exc), "details": getattr(exc, "details", {})})
            continue
        record_audit(
            "create",
            actor=actor,
            sheet=access.sheet,
            row_id=row.id,
            changes=_create_changes(row),
            context={"new_status": row.status, "bulk_operation_id": bulk_operation_id},
        )
        created.append(row)

    record_audit(
        "bulk_update",
        actor=actor,
        sheet=access.sheet,
        result="partial" if errors else "success",
        error_message=f"{len(errors)} of {len(rows)} rows failed" if errors else None,
        context={"bulk_operation_id": bulk_operation_id, "created": len(created)},
    )
    db.session.commit()

    logger.info(
        "Bulk create: %d created, %d failed", len(created), len(errors),
        extra={"sheet_key": access.sheet_key, "actor_id": actor.id},
    )
    return {
        "bulk_operation_id": bulk_operation_id,
        "created": [serialize_row(access, r) for r in created],
        "errors": errors,
    }


# ── Read ─────────────────────────────────────────────────────────────────────


def get_row(actor: Actor, sheet_key: str, row_id) -> tuple[EffectiveAccess, SheetRow]:
    """A single row, subject to the row filter. Rows outside scope are denied."""
    access = resolve_access(actor, sheet_key, "view")
    row = get_row_or_404(access.sheet, row_id)
    check_row_ownership(access, row, "read")
    record_audit("read", actor=actor, sheet=access.sheet, row_id=row.id, commit=True)
    return access, row


def list_rows(actor: Actor, sheet_key: str, filters: dict | None = None, include_all: bool = False) -> dict:
    """Paginated, filtered rows visible to the actor.

    Filters: status, priority, assigned_to, created_by, date_from, date_to,
    search, sort_by, sort_order, page, per_page.
    """
    access = resolve_access(actor, sheet_key, "view")
    sheet = access.sheet
    filters = filters or {}

    query = select(SheetRow).where(SheetRow.sheet_id == sheet.id, SheetRow.deleted_at.is_(None))
    query = apply_row_filter(query, access, include_all=include_all)

    if filters.get("status"):
        if filters["status"] not in ROW_STATUSES:
            raise ValidationError(f"Unknown status '{filters['status']}'")
        query = query.where(SheetRow.status == filters["status"])
    if filters.get("priority"):
        query = query.where(SheetRow.priority == filters["priority"])
    if filters.get("assigned_to"):
        query = query.where(SheetRow.primary_assignee_id == parse_int(filters["assigned_to"], "assigned_to"))
    if filters.get("created_by"):
        query = query.where(SheetRow.created_by_id == parse_int(filters["created_by"], "created_by"))
    date_from = parse_datetime(filters.get("date_from"), "date_from")
    if date_from is not None:
        query = query.where(SheetRow.created_at >= date_from)
    date_to = parse_datetime(filters.get("date_to"), "date_to")
    if date_to is not None:
        query = query.where(SheetRow.created_at <= date_to)
    if filters.get("search"):
        term = f"%{str(filters['search']).strip()}%"
        query = query.where(or_(
            cast(SheetRow.data, String).ilike(term),
            cast(SheetRow.tags, String).ilike(term),
        ))

    total = db.session.execute(select(func.count()).select_from(query.subquery())).scalar_one()

    sort_column = SORTABLE_FIELDS.get(filters.get("sort_by") or "created_at", SheetRow.created_at)
    ordering = sort_column.asc() if filters.get("sort_order") == "asc" else sort_column.desc()
    page = parse_int(filters.get("page"), "page", default=1, minimum=1)
    default_size = sheet.ui_settings.get("rows_per_page") or current_app.config.get("SHEET_DEFAULT_PAGE_SIZE", 50)
    per_page = parse_int(filters.get("per_page"), "per_page", default=default_size, minimum=1, maximum=500)

    rows = list(db.session.execute(
        query.order_by(ordering, SheetRow.id.desc()).limit(per_page).offset((page - 1) * per_page)
    ).scalars())
    locks = lock_service.get_active_locks([r.id for r in rows])
    row_filter = build_row_filter(access)

    return {
        "items": [serialize_row(access, r, locks.get(r.id)) for r in rows],
        "total": total,
        "page": page,
        "per_page": per_page,
        "pages": (total + per_page - 1) // per_page,
        "columns": visible_columns(access),
        "access": access.to_dict(),
        "row_filter": {"enforced": row_filter.enforced, "scope": row_filter.scope},
    }


# ── Update ───────────────────────────────────────────────────────────────────


def update_row(
    actor: Actor,
    sheet_key: str,
    row_id,
    data: dict | None = None,
    *,
    meta: dict | None = None,
    expected_version: int | None = None,
    acquire_lock: bool = True,
    reason: str | None = None,
) -> tuple[EffectiveAccess, SheetRow]:
    """Apply a partial update to a row's cells and attributes.

    On sheets with locking enabled the actor's lock is acquired (or
    refreshed) before the write and released after it. Editing an approved
    row on a sheet that requires re-approval sends it back to the default
    status. A no-op update writes nothing.

    Raises:
        AccessDenied: scope, permission, column or workflow-state denial.
        LockHeld: another actor holds the row's lock.
        StaleVersion: ``expected_version`` given and not current.
        ValidationError / MissingRequiredFields: invalid data.
    """
    access = resolve_access(actor, sheet_key, "edit")
    sheet = access.sheet
    row = get_row_or_404(sheet, row_id)
    check_row_ownership(access, row, "update")

    expected_version = parse_int(expected_version, "expected_version")
    if expected_version is not None and expected_version != row.version:
        raise StaleVersion(row.id, expected_version, row.version)

    data = data or {}
    check_editable_columns(access, data.keys())
    new_data = validate_row_data(sheet.column_specs, data, existing=row.data or {})
    _check_unique(sheet, new_data, exclude_row_id=row.id, keys=set(data))
    meta = _clean_meta(meta)

    locked_here = False
    if acquire_lock and sheet.locking_enabled:
        lock_service.acquire_lock(row, actor.id)
        locked_here = True

    changes = diff_row_data(row.data or {}, new_data) + _meta_changes(row, meta)
    if not changes:
        if locked_here:
            lock_service.release_lock(row.id, actor.id)
        db.session.commit()
        return access, row

    previous_status = row.status
    row.data = new_data
    for key, value in meta.items():
        setattr(row, key, value)
    row.version = row.version + 1
    row.updated_by_id = actor.id
    demoted = workflow_service.demote_on_edit(sheet, row)
    if locked_here:
        lock_service.release_lock(row.id, actor.id)

    record_audit(
        "update",
        actor=actor,
        sheet=sheet,
        row_id=row.id,
        changes=changes,
        context={
            "previous_status": previous_status if demoted else None,
            "new_status": row.status if demoted else None,
            "reason": reason,
        },
    )
    db.session.commit()

    logger.info(
        "Row updated (v%d)", row.version,
        extra={"sheet_key": sheet.sheet_key, "row_id": row.id, "actor_id": actor.id},
    )
    return access, row


def patch_row_field(actor: Actor, sheet_key: str, row_id, field: str, value, expected_version: int | None = None):
    """Update a single cell."""
    field = (field or "").strip().lower()
    if not field:
        raise ValidationError("field is required", details={"field": "required"})
    return update_row(actor, sheet_key, row_id, {field: value}, expected_version=expected_version)


# ── Delete / restore ─────────────────────────────────────────────────────────


def soft_delete_row(actor: Actor, sheet_key: str, row_id, reason: str | None = None) -> SheetRow:
    """Tombstone a row and drop the actor's lock on it."""
    access = resolve_access(actor, sheet_key, "delete")
    row = get_row_or_404(access.sheet, row_id)
    check_row_ownership(access, row, "delete")

    row.soft_delete(deleted_by_id=actor.id)
    row.updated_by_id = actor.id
    lock_service.release_lock(row.id, actor.id)

    record_audit(
        "delete",
        actor=actor,
        sheet=access.sheet,
        row_id=row.id,
        context={"reason": reason, "previous_status": row.status},
    )
    db.session.commit()

    logger.info("Row deleted", extra={"sheet_key": access.sheet_key, "row_id": row.id, "actor_id": actor.id})
    return row


def restore_row(actor: Actor, sheet_key: str, row_id, reason: str | None = None) -> tuple[EffectiveAccess, SheetRow]:
    """Bring a soft-deleted row back. Super-admin only."""
    require_super_admin(actor)
    access = resolve_access(actor, sheet_key, None)
    row = get_row_or_404(access.sheet, row_id, include_deleted=True)
    if not row.is_deleted:
        raise ValidationError(f"Row {row.id} is not deleted")
    _check_unique(access.sheet, row.data or {}, exclude_row_id=row.id)

    row.restore()
    row.updated_by_id = actor.id
    record_audit("restore", actor=actor, sheet=access.sheet, row_id=row.id, context={"reason": reason})
    db.session.commit()
    return access, row


# ── Explicit locks ───────────────────────────────────────────────────────────


def lock_row(actor: Actor, sheet_key: str, row_id, timeout_minutes: int | None = None):
    """Take the edit lock on a row ahead of editing it."""
    access = resolve_access(actor, sheet_key, "edit")
    if not access.sheet.locking_enabled:
        raise ValidationError(f"Row locking is disabled for sheet '{access.sheet_key}'")
    row = get_row_or_404(access.sheet, row_id)
    check_row_ownership(access, row, "update")
    timeout_minutes = parse_int(timeout_minutes, "timeout_minutes")
    if timeout_minutes is not None and not 1 <= timeout_minutes <= 240:
        raise ValidationError("timeout_minutes must be between 1 and 240")

    lock = lock_service.acquire_lock(row, actor.id, timeout_minutes=timeout_minutes)
    record_audit(
        "lock",
        actor=actor,
        sheet=access.sheet,
        row_id=row.id,
        context={"lock_type": "edit", "expires_at": lock.expires_at.isoformat()},
    )
    db.session.commit()
    return access, row, lock


def unlock_row(actor: Actor, sheet_key: str, row_id) -> bool:
    """Release the actor's lock. Super-admins may release anyone's lock."""
    access = resolve_access(actor, sheet_key, "view")
    row = get_row_or_404(access.sheet, row_id)
    if access.bypass_row_security:
        released = lock_service.force_release_lock(row.id)
    else:
        released = lock_service.release_lock(row.id, actor.id)
    if released:
        record_audit("unlock", actor=actor, sheet=access.sheet, row_id=row.id, context={"lock_type": "edit"})
    db.session.commit()
    return released


def get_row_lock(actor: Actor, sheet_key: str, row_id):
    access = resolve_access(actor, sheet_key, "view")
    row = get_row_or_404(access.sheet, row_id)
    check_row_ownership(access, row, "read")
    return lock_service.get_lock_info(row.id)


# ── Row assignment ───────────────────────────────────────────────────────────


def _assign(row: SheetRow, staff: StaffMember, settings: dict, make_primary: bool) -> list[int]:
    before = row.assignee_ids
    if settings["allow_multiple_assignees"]:
        if staff.id not in before:
            row.assignees.append(staff)
        if make_primary or row.primary_assignee_id is None:
            row.primary_assignee_id = staff.id
    else:
        row.assignees = [staff]
        row.primary_assignee_id = staff.id
    return before


def assign_row(actor: Actor, sheet_key: str, row_id, staff_id, make_primary: bool = False):
    """Add a staff member to a row's assignees."""
    access = resolve_access(actor, sheet_key, "assign_rows")
    settings = _require_row_assignment_enabled(access.sheet)
    row = get_row_or_404(access.sheet, row_id)
    check_row_ownership(access, row, "assign")
    staff = _assignable_staff(access.sheet, staff_id)

    before = _assign(row, staff, settings, make_primary)
    if before != row.assignee_ids:
        row.updated_by_id = actor.id
        record_audit(
            "assign",
            actor=actor,
            sheet=access.sheet,
            row_id=row.id,
            changes=[{"field": "assigned_to", "old_value": before, "new_value": row.assignee_ids}],
            context={"staff_id": staff.id, "primary_assignee_id": row.primary_assignee_id},
        )
    db.session.commit()
    return access, row


def unassign_row(actor: Actor, sheet_key: str, row_id, staff_id):
    """Remove a staff member from a row. If they were primary, the next
    remaining assignee becomes primary."""
    access = resolve_access(actor, sheet_key, "assign_rows")
    _require_row_assignment_enabled(access.sheet)
    row = get_row_or_404(access.sheet, row_id)
    check_row_ownership(access, row, "assign")
    try:
        staff_id = int(staff_id)
    except (TypeError, ValueError):
        raise ValidationError("staff_id must be an integer", details={"staff_id": "invalid"}) from None
    if staff_id not in row.assignee_ids and row.primary_assignee_id != staff_id:
        raise NotFoundError(resource="RowAssignee", resource_id=staff_id)

    before = row.assignee_ids
    row.assignees = [s for s in row.assignees if s.id != staff_id]
    if row.primary_assignee_id == staff_id:
        row.primary_assignee_id = row.assignees[0].id if row.assignees else None
    row.updated_by_id = actor.id

    record_audit(
        "unassign",
        actor=actor,
        sheet=access.sheet,
        row_id=row.id,
        changes=[{"field": "assigned_to", "old_value": before, "new_value": row.assignee_ids}],
        context={"staff_id": staff_id, "primary_assignee_id": row.primary_assignee_id},
    )
    db.session.commit()
    return access, row


def bulk_assign_rows(actor: Actor, sheet_key: str, row_ids: list, staff_id, make_primary: bool = False) -> dict:
    """Assign one staff member to many rows; rows the actor can't touch are skipped."""
    access = resolve_access(actor, sheet_key, "assign_rows")
    settings = _require_row_assignment_enabled(access.sheet)
    staff = _assignable_staff(access.sheet, staff_id)
    bulk_operation_id = uuid.uuid4().hex
    assigned, skipped = [], []

    for row_id in parse_id_list(row_ids):
        try:
            row = get_row_or_404(access.sheet, row_id)
            check_row_ownership(access, row, "assign")
        except (NotFoundError, AccessDenied) as exc:
            skipped.append({"row_id": row_id, "error": str(exc)})
            continue
        before = _assign(row, staff, settings, make_primary)
        if before != row.assignee_ids:
            row.updated_by_id = actor.id
            record_audit(
                "assign",
                actor=actor,
                sheet=access.sheet,
                row_id=row.id,
                changes=[{"field": "assigned_to", "old_value": before, "new_value": row.assignee_ids}],
                context={"staff_id": staff.id, "bulk_operation_id": bulk_operation_id},
            )
        assigned.append(row.id)

    record_audit(
        "bulk_update",
        actor=actor,
        sheet=access.sheet,
        result="partial" if skipped else "success",
        error_message=f"{len(skipped)} row(s) skipped" if skipped else None,
        context={"bulk_operation_id": bulk_operation_id, "staff_id": staff.id},
    )
    db.session.commit()
    return {"bulk_operation_id": bulk_operation_id, "assigned": assigned, "skipped": skipped}


def reassign_rows(
    actor: Actor,
    sheet_key: str,
    to_staff_id,
    row_ids: list | None = None,
    from_staff_id=None,
    reason: str | None = None,
) -> dict:
    """Move rows to another staff member, either a list of rows or every row
    held by ``from_staff_id``.

    With explicit row ids the new member replaces all assignees. With
    ``from_staff_id`` only that member is swapped out.
    """
    access = resolve_access(actor, sheet_key, "reassign")
    _require_row_assignment_enabled(access.sheet)
    to_staff = _assignable_staff(access.sheet, to_staff_id)
    if not row_ids and from_staff_id in (None, ""):
        raise ValidationError("Provide row_ids or from_staff_id", details={"row_ids": "required"})

    query = select(SheetRow).where(SheetRow.sheet_id == access.sheet.id, SheetRow.deleted_at.is_(None))
    if row_ids:
        query = query.where(SheetRow.id.in_(parse_id_list(row_ids)))
    else:
        from_id = int(from_staff_id)
        query = query.where(or_(
            SheetRow.primary_assignee_id == from_id,
            SheetRow.assignees.any(StaffMember.id == from_id),
        ))
    query = apply_row_filter(query, access)

    bulk_operation_id = uuid.uuid4().hex
    moved = []
    for row in db.session.execute(query.order_by(SheetRow.id)).scalars():
        before = row.assignee_ids
        if row_ids:
            row.assignees = [to_staff]
            row.primary_assignee_id = to_staff.id
        else:
            kept = [s for s in row.assignees if s.id != int(from_staff_id)]
            if to_staff not in kept:
                kept.insert(0, to_staff)
            row.assignees = kept
            if row.primary_assignee_id in (None, int(from_staff_id)):
                row.primary_assignee_id = to_staff.id
        row.updated_by_id = actor.id
        record_audit(
            "reassign",
            actor=actor,
            sheet=access.sheet,
            row_id=row.id,
            changes=[{"field": "assigned_to", "old_value": before, "new_value": row.assignee_ids}],
            context={"reason": reason, "bulk_operation_id": bulk_operation_id, "staff_id": to_staff.id},
        )
        moved.append(row.id)

    db.session.commit()
    logger.info(
        "Reassigned %d rows to staff %d", len(moved), to_staff.id,
        extra={"sheet_key": access.sheet_key, "actor_id": actor.id},
    )
    return {"bulk_operation_id": bulk_operation_id, "reassigned": moved, "to_staff_id": to_staff.id}
