"""
Sheet Governance Service
Sheet assignment model: which staff member may do what on which sheet.

One assignment per (staff member, sheet). Super-admins never need one;
their capability is resolved in ``access_service``.

Models:
    - SheetAssignment
"""

from datetime import datetime, timezone

from sheetgov.models import db

# ── Constants ────────────────────────────────────────────────────────────────

# Permission name -> column. The names are what services ask for.
PERMISSION_COLUMNS = {
    "view": "can_view",
    "edit": "can_edit",
    "create": "can_create",
    "delete": "can_delete",
    "submit": "can_submit",
    "approve": "can_approve",
    "assign_rows": "can_assign_rows",
    "reassign": "can_reassign",
    "export": "can_export",
    "view_audit": "can_view_audit",
}

PERMISSIONS = frozenset(PERMISSION_COLUMNS)

# Flag defaults for a new assignment when neither the caller nor the sheet says otherwise.
DEFAULT_PERMISSION_FLAGS = {
    "view": True,
    "edit": False,
    "create": False,
    "delete": False,
    "submit": False,
    "approve": False,
    "assign_rows": False,
    "reassign": False,
    "export": True,
    "view_audit": False,
}

SCOPES = frozenset({"all", "assigned_rows", "own_rows"})
DEFAULT_SCOPE = "assigned_rows"

ASSIGNMENT_STATUSES = frozenset({"active", "suspended", "revoked"})


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SheetAssignment(db.Model):
    """Permission grant for one staff member on one sheet."""

    __tablename__ = "sheet_assignments"
    __table_args__ = (
        db.UniqueConstraint("staff_id", "sheet_id", name="uq_assignment_staff_sheet"),
        db.Index("idx_assignment_sheet_status", "sheet_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    staff_id = db.Column(
        db.Integer, db.ForeignKey("staff_members.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    sheet_id = db.Column(
        db.Integer, db.ForeignKey("sheet_definitions.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )

    can_view = db.Column(db.Boolean, nullable=False, default=True)
    can_edit = db.Column(db.Boolean, nullable=False, default=False)
    can_create = db.Column(db.Boolean, nullable=False, default=False)
    can_delete = db.Column(db.Boolean, nullable=False, default=False)
    can_submit = db.Column(db.Boolean, nullable=False, default=False)
    can_approve = db.Column(db.Boolean, nullable=False, default=False)
    can_assign_rows = db.Column(db.Boolean, nullable=False, default=False)
    can_reassign = db.Column(db.Boolean, nullable=False, default=False)
    can_export = db.Column(db.Boolean, nullable=False, default=True)
    can_view_audit = db.Column(db.Boolean, nullable=False, default=False)

    scope = db.Column(
        db.String(20), nullable=False, default=DEFAULT_SCOPE,
        comment="all | assigned_rows | own_rows",
    )
    restricted_columns = db.Column(
        db.JSON, nullable=False, default=list,
        comment="Column keys hidden from and not editable by this staff member",
    )

    status = db.Column(
        db.String(20), nullable=False, default="active",
        comment="active | suspended | revoked",
    )
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)

    assigned_by_id = db.Column(db.Integer, db.ForeignKey("staff_members.id", ondelete="SET NULL"), nullable=True)
    assigned_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    revoked_by_id = db.Column(db.Integer, db.ForeignKey("staff_members.id", ondelete="SET NULL"), nullable=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revocation_reason = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    staff = db.relationship("StaffMember", foreign_keys=[staff_id], lazy="joined")
    sheet = db.relationship("SheetDefinition", foreign_keys=[sheet_id], lazy="joined")

    # ── Helpers ──────────────────────────────────────────────────────────

    def is_valid(self, now: datetime | None = None) -> bool:
        """Active and not past its expiry."""
        if self.status != "active":
            return False
        expires_at = _as_utc(self.expires_at)
        if expires_at is None:
            return True
        return expires_at > (now or datetime.now(timezone.utc))

    def has_permission(self, permission: str) -> bool:
        column = PERMISSION_COLUMNS.get(permission)
        if column is None:
            raise ValueError(f"Unknown permission: {permission}")
        return bool(getattr(self, column))

    @property
    def permissions(self) -> dict[str, bool]:
        return {name: bool(getattr(self, column)) for name, column in PERMISSION_COLUMNS.items()}

    def set_permissions(self, flags: dict) -> dict[str, tuple]:
        """Apply permission flags; returns {permission: (old, new)} for changed flags."""
        changed = {}
        for name, value in flags.items():
            column = PERMISSION_COLUMNS.get(name)
            if column is None:
                raise ValueError(f"Unknown permission: {name}")
            old = bool(getattr(self, column))
            setattr(self, column, bool(value))
            if old != bool(value):
                changed[name] = (old, bool(value))
        return changed

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "staff_id": self.staff_id,
            "staff_name": self.staff.name if self.staff else None,
            "staff_email": self.staff.email if self.staff else None,
            "sheet_id": self.sheet_id,
            "sheet_key": self.sheet.sheet_key if self.sheet else None,
            "permissions": self.permissions,
            "scope": self.scope,
            "restricted_columns": list(self.restricted_columns or []),
            "status": self.status,
            "is_valid": self.is_valid(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "assigned_by_id": self.assigned_by_id,
            "assigned_at": self.assigned_at.isoformat() if self.assigned_at else None,
            "revoked_by_id": self.revoked_by_id,
            "revoked_at": self.revoked_at.isoformat() if self.revoked_at else None,
            "revocation_reason": self.revocation_reason,
            "notes": self.notes,
        }

    def __repr__(self):
        return f"<SheetAssignment staff={self.staff_id} sheet={self.sheet_id} {self.status}>"
