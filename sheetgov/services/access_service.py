"""
Assignment Registry — capability resolution and assignment administration.

``resolve_access`` is the single place where an actor's capability on a
sheet is decided:

    super-admin  -> an all-permissions EffectiveAccess, no stored assignment
    otherwise    -> the actor's active, unexpired SheetAssignment

Everything downstream (row security, workflow, row store) works only with
the returned ``EffectiveAccess`` and never looks at the actor's role again.

Assignment administration (assign / update / revoke) is super-admin only
and leaves ``assign`` / ``permission_change`` entries in the audit ledger.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from sheetgov.core.exceptions import (
    AccessDenied,
    ConflictError,
    NoAssignment,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from sheetgov.models import db
from sheetgov.models.assignment import (
    DEFAULT_PERMISSION_FLAGS,
    DEFAULT_SCOPE,
    PERMISSIONS,
    SCOPES,
    SheetAssignment,
)
from sheetgov.models.auth import SUPER_ADMIN_ROLE, StaffMember
from sheetgov.models.sheet import SheetDefinition
from sheetgov.services.audit_service import record_audit

logger = logging.getLogger(__name__)


# ── Value objects ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Actor:
    """Snapshot of the authenticated staff member performing an operation."""

    id: int
    name: str
    email: str
    role: str
    status: str = "active"

    @property
    def is_super_admin(self) -> bool:
        return self.role == SUPER_ADMIN_ROLE

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @classmethod
    def from_staff(cls, staff: StaffMember) -> "Actor":
        return cls(id=staff.id, name=staff.name, email=staff.email, role=staff.role, status=staff.status)


@dataclass(frozen=True)
class EffectiveAccess:
    """What one actor may do on one sheet, after capability resolution."""

    actor: Actor
    sheet: SheetDefinition
    permissions: frozenset[str]
    scope: str
    restricted_columns: frozenset[str] = field(default_factory=frozenset)
    bypass_row_security: bool = False
    assignment_id: int | None = None

    @property
    def sheet_key(self) -> str:
        return self.sheet.sheet_key

    def can(self, permission: str) -> bool:
        return permission in self.permissions

    def require(self, permission: str) -> None:
        if permission not in self.permissions:
            raise PermissionDenied(permission, self.sheet.sheet_key)

    def to_dict(self) -> dict:
        return {
            "sheet_key": self.sheet.sheet_key,
            "permissions": {p: p in self.permissions for p in sorted(PERMISSIONS)},
            "scope": self.scope,
            "restricted_columns": sorted(self.restricted_columns),
            "bypass_row_security": self.bypass_row_security,
        }


# ── Lookups ──────────────────────────────────────────────────────────────────


def get_sheet(sheet_key: str) -> SheetDefinition:
    """Fetch a sheet by key regardless of status; NotFoundError if absent."""
    sheet = db.session.execute(
        select(SheetDefinition).where(SheetDefinition.sheet_key == (sheet_key or "").strip().lower())
    ).scalar_one_or_none()
    if sheet is None:
        raise NotFoundError(resource="Sheet", resource_id=sheet_key)
    return sheet


def get_staff(staff_id: int) -> StaffMember:
    staff = db.session.get(StaffMember, staff_id)
    if staff is None:
        raise NotFoundError(resource="StaffMember", resource_id=staff_id)
    return staff


def _active_assignment(actor_id: int, sheet_id: int) -> SheetAssignment | None:
    assignment = db.session.execute(
        select(SheetAssignment).where(
            SheetAssignment.staff_id == actor_id,
            SheetAssignment.sheet_id == sheet_id,
        )
    ).scalar_one_or_none()
    if assignment is None or not assignment.is_valid():
        return None
    return assignment


def require_super_admin(actor: Actor) -> None:
    if not actor.is_active:
        raise AccessDenied("Staff account is not active", reason="inactive_actor")
    if not actor.is_super_admin:
        raise AccessDenied("Super admin access required", reason="super_admin_required")


def _super_admin_access(actor: Actor, sheet: SheetDefinition) -> EffectiveAccess:
    return EffectiveAccess(
        actor=actor,
        sheet=sheet,
        permissions=frozenset(PERMISSIONS),
        scope="all",
        bypass_row_security=True,
    )


def _assignment_access(actor: Actor, sheet: SheetDefinition, assignment: SheetAssignment) -> EffectiveAccess:
    return EffectiveAccess(
        actor=actor,
        sheet=sheet,
        permissions=frozenset(p for p, granted in assignment.permissions.items() if granted),
        scope=assignment.scope,
        restricted_columns=frozenset(assignment.restricted_columns or []),
        assignment_id=assignment.id,
    )


# ── Capability resolution ────────────────────────────────────────────────────


def resolve_access(actor: Actor, sheet: str | SheetDefinition, required_permission: str | None = "view") -> EffectiveAccess:
    """Resolve the actor's effective access on a sheet.

    Args:
        actor: The authenticated actor.
        sheet: Sheet key or an already-loaded SheetDefinition.
        required_permission: Permission the caller needs, or None to only
            resolve.

    Raises:
        NotFoundError: unknown sheet, or an inactive sheet for non-super-admins.
        AccessDenied: inactive actor.
        NoAssignment: no active, unexpired assignment.
        PermissionDenied: the assignment lacks ``required_permission``.
    """
    if required_permission is not None and required_permission not in PERMISSIONS:
        raise ValueError(f"Unknown permission: {required_permission}")
    if isinstance(sheet, str):
        sheet = get_sheet(sheet)

    if not actor.is_active:
        raise AccessDenied("Staff account is not active", sheet_key=sheet.sheet_key, reason="inactive_actor")

    if actor.is_super_admin:
        return _super_admin_access(actor, sheet)

    if not sheet.is_active:
        raise NotFoundError(resource="Sheet", resource_id=sheet.sheet_key)

    assignment = _active_assignment(actor.id, sheet.id)
    if assignment is None:
        logger.warning(
            "No active assignment",
            extra={"event_type": "access_denied", "sheet_key": sheet.sheet_key, "actor_id": actor.id},
        )
        raise NoAssignment(sheet.sheet_key)

    access = _assignment_access(actor, sheet, assignment)
    if required_permission is not None and not access.can(required_permission):
        logger.warning(
            "Permission %s missing",
            required_permission,
            extra={"event_type": "access_denied", "sheet_key": sheet.sheet_key, "actor_id": actor.id},
        )
        raise PermissionDenied(required_permission, sheet.sheet_key)
    return access


def list_allowed_sheets(actor: Actor) -> list[dict]:
    """Every active sheet the actor can view, with the effective access on each.

    Super-admins see every sheet, including inactive ones, plus a
    ``can_manage`` flag.
    """
    if not actor.is_active:
        return []

    if actor.is_super_admin:
        sheets = db.session.execute(
            select(SheetDefinition).order_by(SheetDefinition.category, SheetDefinition.name)
        ).scalars().all()
        return [
            {**s.to_dict(include_columns=False), "access": _super_admin_access(actor, s).to_dict(), "can_manage": True}
            for s in sheets
        ]

    assignments = db.session.execute(
        select(SheetAssignment)
        .join(SheetDefinition, SheetAssignment.sheet_id == SheetDefinition.id)
        .where(
            SheetAssignment.staff_id == actor.id,
            SheetAssignment.status == "active",
            SheetDefinition.status == "active",
        )
        .order_by(SheetDefinition.category, SheetDefinition.name)
    ).scalars().all()

    result = []
    for assignment in assignments:
        if not assignment.is_valid() or not assignment.can_view:
            continue
        access = _assignment_access(actor, assignment.sheet, assignment)
        result.append({
            **assignment.sheet.to_dict(include_columns=False),
            "access": access.to_dict(),
            "can_manage": False,
        })
    return result


# ── Assignment administration ────────────────────────────────────────────────


def _check_scope(scope: str) -> str:
    if scope not in SCOPES:
        raise ValidationError(f"Invalid scope '{scope}'", details={"scope": f"must be one of {sorted(SCOPES)}"})
    return scope


def _check_restricted_columns(sheet: SheetDefinition, columns) -> list[str]:
    columns = [str(c).strip().lower() for c in (columns or [])]
    unknown = [c for c in columns if c not in sheet.column_map]
    if unknown:
        raise ValidationError(
            "Restricted columns must exist on the sheet",
            details={"restricted_columns": unknown},
        )
    return columns


def _check_permission_flags(flags: dict | None) -> dict:
    flags = dict(flags or {})
    unknown = sorted(k for k in flags if k not in PERMISSIONS)
    if unknown:
        raise ValidationError("Unknown permissions", details={"permissions": unknown})
    return flags


def _parse_expiry(value) -> datetime | None:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        expires_at = value
    else:
        try:
            expires_at = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError("expires_at must be an ISO-8601 timestamp") from None
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at


def assign_staff(
    actor: Actor,
    sheet_key: str,
    staff_id: int,
    permissions: dict | None = None,
    scope: str | None = None,
    restricted_columns: list[str] | None = None,
    expires_at=None,
    notes: str | None = None,
) -> SheetAssignment:
    """Grant a staff member access to a sheet.

    Permission flags default to the sheet's ``default_permissions`` and then
    to DEFAULT_PERMISSION_FLAGS.
    """
    require_super_admin(actor)
    sheet = get_sheet(sheet_key)
    staff = get_staff(staff_id)
    if staff.is_super_admin:
        raise ValidationError("Super admins have access to every sheet and need no assignment")

    flags = dict(DEFAULT_PERMISSION_FLAGS)
    flags.update(_check_permission_flags(sheet.default_permissions))
    flags.update(_check_permission_flags(permissions))

    assignment = SheetAssignment(
        staff_id=staff.id,
        sheet_id=sheet.id,
        scope=_check_scope(scope or DEFAULT_SCOPE),
        restricted_columns=_check_restricted_columns(sheet, restricted_columns),
        expires_at=_parse_expiry(expires_at),
        notes=notes,
        assigned_by_id=actor.id,
        status="active",
    )
    assignment.set_permissions(flags)
    db.session.add(assignment)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("SheetAssignment", "staff_id", f"{staff.id}@{sheet.sheet_key}") from None

    record_audit(
        "assign",
        actor=actor,
        sheet=sheet,
        changes=[{"field": "permissions", "old_value": None, "new_value": flags}],
        context={"notes": notes, "staff_id": staff.id, "scope": assignment.scope},
    )
    db.session.commit()

    logger.info(
        "Sheet assignment created",
        extra={"sheet_key": sheet.sheet_key, "actor_id": actor.id, "staff_id": staff.id},
    )
    return assignment


def get_assignment(assignment_id: int) -> SheetAssignment:
    assignment = db.session.get(SheetAssignment, assignment_id)
    if assignment is None:
        raise NotFoundError(resource="SheetAssignment", resource_id=assignment_id)
    return assignment


def update_assignment(actor: Actor, assignment_id: int, data: dict) -> SheetAssignment:
    """Change permissions, scope, restricted columns, expiry, status or notes."""
    require_super_admin(actor)
    assignment = get_assignment(assignment_id)
    sheet = assignment.sheet

    changes: list[dict] = []
    if "permissions" in data:
        for name, (old, new) in assignment.set_permissions(_check_permission_flags(data["permissions"])).items():
            changes.append({"field": f"permissions.{name}", "old_value": old, "new_value": new})
    if "scope" in data and _check_scope(data["scope"]) != assignment.scope:
        changes.append({"field": "scope", "old_value": assignment.scope, "new_value": data["scope"]})
        assignment.scope = data["scope"]
    if "restricted_columns" in data:
        columns = _check_restricted_columns(sheet, data["restricted_columns"])
        if columns != list(assignment.restricted_columns or []):
            changes.append({
                "field": "restricted_columns",
                "old_value": list(assignment.restricted_columns or []),
                "new_value": columns,
            })
            assignment.restricted_columns = columns
    if "expires_at" in data:
        expires_at = _parse_expiry(data["expires_at"])
        changes.append({
            "field": "expires_at",
            "old_value": assignment.expires_at.isoformat() if assignment.expires_at else None,
            "new_value": expires_at.isoformat() if expires_at else None,
        })
        assignment.expires_at = expires_at
    if "status" in data and data["status"] != assignment.status:
        if data["status"] not in ("active", "suspended"):
            raise ValidationError("status must be active or suspended; use revoke to revoke")
        changes.append({"field": "status", "old_value": assignment.status, "new_value": data["status"]})
        assignment.status = data["status"]
    if "notes" in data:
        assignment.notes = data["notes"]

    if changes:
        record_audit(
            "permission_change",
            actor=actor,
            sheet=sheet,
            changes=changes,
            context={"staff_id": assignment.staff_id},
        )
    db.session.commit()
    return assignment


def revoke_assignment(actor: Actor, assignment_id: int, reason: str) -> SheetAssignment:
    """Revoke an assignment. A reason is mandatory."""
    require_super_admin(actor)
    if not (reason or "").strip():
        raise ValidationError("A reason is required to revoke an assignment", details={"reason": "required"})
    assignment = get_assignment(assignment_id)
    if assignment.status == "revoked":
        raise ValidationError("Assignment is already revoked")

    previous = assignment.status
    assignment.status = "revoked"
    assignment.revoked_by_id = actor.id
    assignment.revoked_at = datetime.now(timezone.utc)
    assignment.revocation_reason = reason.strip()

    record_audit(
        "permission_change",
        actor=actor,
        sheet=assignment.sheet,
        changes=[{"field": "status", "old_value": previous, "new_value": "revoked"}],
        context={"reason": reason.strip(), "staff_id": assignment.staff_id},
    )
    db.session.commit()

    logger.info(
        "Sheet assignment revoked",
        extra={"sheet_key": assignment.sheet.sheet_key, "actor_id": actor.id, "staff_id": assignment.staff_id},
    )
    return assignment


def list_sheet_assignments(actor: Actor, sheet_key: str, include_inactive: bool = False) -> list[SheetAssignment]:
    """Assignments on a sheet. Visible to super-admins and to staff assigned to the sheet."""
    sheet = get_sheet(sheet_key)
    if not actor.is_super_admin:
        resolve_access(actor, sheet, "view")
    query = select(SheetAssignment).where(SheetAssignment.sheet_id == sheet.id)
    if not include_inactive:
        query = query.where(SheetAssignment.status == "active")
    return list(db.session.execute(query.order_by(SheetAssignment.assigned_at)).scalars())


def list_staff_assignments(actor: Actor, staff_id: int, include_inactive: bool = False) -> list[SheetAssignment]:
    """A staff member's assignments. Visible to that member and to super-admins."""
    if actor.id != staff_id:
        require_super_admin(actor)
    get_staff(staff_id)
    query = select(SheetAssignment).where(SheetAssignment.staff_id == staff_id)
    if not include_inactive:
        query = query.where(SheetAssignment.status == "active")
    return list(db.session.execute(query.order_by(SheetAssignment.assigned_at)).scalars())
