"""
SheetDefinition administration.

Creating and reshaping sheets is super-admin work. Every change bumps the
sheet ``version`` and appends a ``configure`` audit entry. A sheet that
still has rows (soft-deleted ones included) can be deactivated or
archived but never deleted.
"""

from __future__ import annotations

import logging
import re

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from sheetgov.core.exceptions import ConflictError, ValidationError
from sheetgov.models import db
from sheetgov.models.assignment import PERMISSIONS
from sheetgov.models.row import SheetRow
from sheetgov.models.sheet import (
    DEFAULT_CONCURRENCY,
    DEFAULT_ROW_ASSIGNMENT,
    DEFAULT_UI,
    DEFAULT_WORKFLOW,
    ROW_STATUSES,
    SHEET_CATEGORIES,
    SHEET_STATUSES,
    SheetDefinition,
)
from sheetgov.services.access_service import Actor, get_sheet, require_super_admin, resolve_access
from sheetgov.services.audit_service import record_audit
from sheetgov.services.column_validation import normalise_columns

logger = logging.getLogger(__name__)

_SHEET_KEY_RE = re.compile(r"^[a-z0-9][a-z0-9_-]{1,99}$")


# ── Policy validation ────────────────────────────────────────────────────────


def _pick(defaults: dict, raw: dict | None, block: str) -> dict:
    raw = dict(raw or {})
    unknown = sorted(k for k in raw if k not in defaults)
    if unknown:
        raise ValidationError(f"Unknown {block} settings", details={block: unknown})
    return raw


def _check_workflow(raw: dict | None) -> dict:
    workflow = _pick(DEFAULT_WORKFLOW, raw, "workflow")
    merged = {**DEFAULT_WORKFLOW, **workflow}
    allowed = merged.get("allowed_statuses") or []
    bad = [s for s in allowed if s not in ROW_STATUSES]
    if bad:
        raise ValidationError("Unknown row statuses", details={"allowed_statuses": bad})
    if merged["default_status"] not in ROW_STATUSES:
        raise ValidationError("Unknown default status", details={"default_status": merged["default_status"]})
    if allowed and merged["default_status"] not in allowed:
        raise ValidationError(
            "default_status must be one of allowed_statuses",
            details={"default_status": merged["default_status"]},
        )
    return workflow


def _check_concurrency(raw: dict | None) -> dict:
    concurrency = _pick(DEFAULT_CONCURRENCY, raw, "concurrency")
    if "lock_timeout_minutes" in concurrency:
        try:
            minutes = int(concurrency["lock_timeout_minutes"])
        except (TypeError, ValueError):
            minutes = 0
        if not 1 <= minutes <= 240:
            raise ValidationError("lock_timeout_minutes must be between 1 and 240")
        concurrency["lock_timeout_minutes"] = minutes
    return concurrency


def _check_default_permissions(raw: dict | None) -> dict:
    raw = dict(raw or {})
    unknown = sorted(k for k in raw if k not in PERMISSIONS)
    if unknown:
        raise ValidationError("Unknown permissions", details={"default_permissions": unknown})
    return {k: bool(v) for k, v in raw.items()}


def _check_enum(value: str, allowed, field: str) -> str:
    if value not in allowed:
        raise ValidationError(f"Invalid {field} '{value}'", details={field: f"must be one of {sorted(allowed)}"})
    return value


# ── Public API ───────────────────────────────────────────────────────────────


def create_sheet(actor: Actor, data: dict) -> SheetDefinition:
    """Define a new sheet.

    Body keys: sheet_key, name, description, category, columns, workflow,
    concurrency, row_assignment, default_permissions, ui.
    """
    require_super_admin(actor)
    sheet_key = str(data.get("sheet_key") or "").strip().lower()
    if not _SHEET_KEY_RE.match(sheet_key):
        raise ValidationError(
            "sheet_key must be 2-100 chars of a-z, 0-9, '-' or '_'",
            details={"sheet_key": "invalid"},
        )
    name = str(data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required", details={"name": "required"})

    sheet = SheetDefinition(
        sheet_key=sheet_key,
        name=name,
        description=data.get("description"),
        category=_check_enum(data.get("category") or "operations", SHEET_CATEGORIES, "category"),
        columns=normalise_columns(data.get("columns")),
        workflow=_check_workflow(data.get("workflow")),
        concurrency=_check_concurrency(data.get("concurrency")),
        row_assignment=_pick(DEFAULT_ROW_ASSIGNMENT, data.get("row_assignment"), "row_assignment"),
        default_permissions=_check_default_permissions(data.get("default_permissions")),
        ui=_pick(DEFAULT_UI, data.get("ui"), "ui"),
        status="active",
        version=1,
        created_by_id=actor.id,
        updated_by_id=actor.id,
    )
    db.session.add(sheet)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Sheet", "sheet_key", sheet_key) from None

    record_audit(
        "configure",
        actor=actor,
        sheet=sheet,
        changes=[{"field": "sheet", "old_value": None, "new_value": sheet_key}],
        context={"notes": "sheet created", "column_count": len(sheet.columns)},
    )
    db.session.commit()

    logger.info("Sheet created", extra={"sheet_key": sheet_key, "actor_id": actor.id})
    return sheet


_UPDATABLE = {
    "name": lambda v: str(v or "").strip() or None,
    "description": lambda v: v,
    "category": lambda v: _check_enum(v, SHEET_CATEGORIES, "category"),
    "workflow": _check_workflow,
    "concurrency": _check_concurrency,
    "row_assignment": lambda v: _pick(DEFAULT_ROW_ASSIGNMENT, v, "row_assignment"),
    "default_permissions": _check_default_permissions,
    "ui": lambda v: _pick(DEFAULT_UI, v, "ui"),
    "status": lambda v: _check_enum(v, SHEET_STATUSES, "status"),
}


def update_sheet(actor: Actor, sheet_key: str, data: dict) -> SheetDefinition:
    """Change sheet metadata and policy blocks (not columns)."""
    require_super_admin(actor)
    sheet = get_sheet(sheet_key)

    changes = []
    for field, check in _UPDATABLE.items():
        if field not in data:
            continue
        value = check(data[field])
        if field == "name" and value is None:
            raise ValidationError("name cannot be empty", details={"name": "required"})
        old = getattr(sheet, field)
        if old != value:
            changes.append({"field": field, "old_value": old, "new_value": value})
            setattr(sheet, field, value)

    if changes:
        sheet.version = sheet.version + 1
        sheet.updated_by_id = actor.id
        record_audit("configure", actor=actor, sheet=sheet, changes=changes, context={"notes": "sheet updated"})
    db.session.commit()
    return sheet


def update_columns(actor: Actor, sheet_key: str, columns: list[dict]) -> SheetDefinition:
    """Replace the sheet's column specs.

    Existing row data is left as is; keys of removed columns stay in stored
    rows but are no longer accepted on write.
    """
    require_super_admin(actor)
    sheet = get_sheet(sheet_key)
    normalised = normalise_columns(columns)
    old_keys = [c["key"] for c in sheet.column_specs]
    new_keys = [c["key"] for c in normalised]

    sheet.columns = normalised
    sheet.version = sheet.version + 1
    sheet.updated_by_id = actor.id
    record_audit(
        "configure",
        actor=actor,
        sheet=sheet,
        changes=[{"field": "columns", "old_value": old_keys, "new_value": new_keys}],
        context={"notes": "columns updated"},
    )
    db.session.commit()
    return sheet


def deactivate_sheet(actor: Actor, sheet_key: str) -> SheetDefinition:
    return update_sheet(actor, sheet_key, {"status": "inactive"})


def delete_sheet(actor: Actor, sheet_key: str) -> None:
    """Remove a sheet that has never held rows."""
    require_super_admin(actor)
    sheet = get_sheet(sheet_key)
    row_count = db.session.execute(
        select(func.count(SheetRow.id)).where(SheetRow.sheet_id == sheet.id)
    ).scalar_one()
    if row_count:
        raise ValidationError(
            f"Sheet '{sheet_key}' has {row_count} rows; deactivate or archive it instead",
            details={"row_count": row_count},
        )

    record_audit(
        "configure",
        actor=actor,
        sheet=sheet,
        changes=[{"field": "sheet", "old_value": sheet.sheet_key, "new_value": None}],
        context={"notes": "sheet deleted"},
    )
    db.session.delete(sheet)
    db.session.commit()
    logger.info("Sheet deleted", extra={"sheet_key": sheet_key, "actor_id": actor.id})


def get_sheet_for_actor(actor: Actor, sheet_key: str) -> tuple[SheetDefinition, dict]:
    """The sheet definition plus the actor's effective access on it."""
    access = resolve_access(actor, sheet_key, "view")
    return access.sheet, access.to_dict()


def list_sheets(actor: Actor, category: str | None = None, status: str | None = None) -> list[SheetDefinition]:
    """All sheet definitions (super-admin)."""
    require_super_admin(actor)
    query = select(SheetDefinition)
    if category:
        query = query.where(SheetDefinition.category == category)
    if status:
        query = query.where(SheetDefinition.status == status)
    return list(db.session.execute(query.order_by(SheetDefinition.category, SheetDefinition.name)).scalars())


def sheet_stats(actor: Actor, sheet_key: str) -> dict:
    """Row counts by status, average version and deleted-row count (super-admin)."""
    require_super_admin(actor)
    sheet = get_sheet(sheet_key)

    live = (SheetRow.sheet_id == sheet.id, SheetRow.deleted_at.is_(None))
    total, avg_version = db.session.execute(
        select(func.count(SheetRow.id), func.avg(SheetRow.version)).where(*live)
    ).one()
    by_status = dict(db.session.execute(
        select(SheetRow.status, func.count(SheetRow.id)).where(*live).group_by(SheetRow.status)
    ).all())
    deleted = db.session.execute(
        select(func.count(SheetRow.id)).where(SheetRow.sheet_id == sheet.id, SheetRow.deleted_at.isnot(None))
    ).scalar_one()

    return {
        "sheet_key": sheet.sheet_key,
        "total_rows": total or 0,
        "deleted_rows": deleted or 0,
        "average_version": round(float(avg_version), 2) if avg_version is not None else 0.0,
        "status_breakdown": {status: by_status.get(status, 0) for status in ROW_STATUSES},
    }
