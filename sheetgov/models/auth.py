"""
Sheet Governance Service
Staff identity model.

Authentication lives outside this service; it only needs enough of the
staff record to resolve the current actor: identity, role and status.

Models:
    - StaffMember: an operations staff account that can act on sheets.
"""

from datetime import datetime, timezone

from sqlalchemy.orm import validates

from sheetgov.models import db

# ── Constants ────────────────────────────────────────────────────────────────

SUPER_ADMIN_ROLE = "super_admin"

STAFF_ROLES = frozenset({
    SUPER_ADMIN_ROLE,
    "finance",
    "operations",
    "compliance",
    "member_support",
    "investment",
    "technology",
})

STAFF_STATUSES = frozenset({"active", "pending_approval", "suspended", "inactive"})


class StaffMember(db.Model):
    """A staff account. Only ``active`` members may act on sheets."""

    __tablename__ = "staff_members"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    role = db.Column(
        db.String(30), nullable=False, default="operations",
        comment="super_admin | finance | operations | compliance | member_support | investment | technology",
    )
    status = db.Column(
        db.String(20), nullable=False, default="active",
        comment="active | pending_approval | suspended | inactive",
    )
    department = db.Column(db.String(100), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @validates("email")
    def _normalise_email(self, _key, value):
        return (value or "").strip().lower()

    @validates("role")
    def _check_role(self, _key, value):
        if value not in STAFF_ROLES:
            raise ValueError(f"Unknown staff role: {value}")
        return value

    @property
    def is_super_admin(self) -> bool:
        return self.role == SUPER_ADMIN_ROLE

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "status": self.status,
            "department": self.department,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<StaffMember {self.id}: {self.email} ({self.role})>"
