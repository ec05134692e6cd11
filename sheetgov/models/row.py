"""
Sheet Governance Service
Sheet row model.

``data`` is an ordered mapping of column key to value, validated and
normalised against the owning sheet's column specs by
``sheetgov.services.column_validation`` before it is stored.

Rows are never hard-deleted; ``SoftDeleteMixin`` tombstones them.

Models:
    - SheetRow
    - sheet_row_assignees (association table)
"""

from datetime import datetime, timezone

from sheetgov.models import db
from sheetgov.models.soft_delete import SoftDeleteMixin

# ── Constants ────────────────────────────────────────────────────────────────

ROW_PRIORITIES = frozenset({"low", "medium", "high", "urgent"})

sheet_row_assignees = db.Table(
    "sheet_row_assignees",
    db.Column("row_id", db.Integer, db.ForeignKey("sheet_rows.id", ondelete="CASCADE"), primary_key=True),
    db.Column("staff_id", db.Integer, db.ForeignKey("staff_members.id", ondelete="CASCADE"), primary_key=True),
    db.Index("idx_row_assignee_staff", "staff_id"),
)


class SheetRow(SoftDeleteMixin, db.Model):
    """One governed record in a sheet."""

    __tablename__ = "sheet_rows"
    __table_args__ = (
        db.Index("idx_row_sheet_status", "sheet_id", "status"),
        db.Index("idx_row_sheet_primary", "sheet_id", "primary_assignee_id"),
        db.Index("idx_row_sheet_creator", "sheet_id", "created_by_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    sheet_id = db.Column(
        db.Integer, db.ForeignKey("sheet_definitions.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    data = db.Column(db.JSON, nullable=False, default=dict)
    status = db.Column(
        db.String(20), nullable=False, default="draft",
        comment="draft | pending_review | approved | rejected | returned | locked",
    )
    status_before_lock = db.Column(
        db.String(20), nullable=True,
        comment="Status to restore when an administrative lock is lifted",
    )
    version = db.Column(db.Integer, nullable=False, default=1)

    primary_assignee_id = db.Column(
        db.Integer, db.ForeignKey("staff_members.id", ondelete="SET NULL"), nullable=True,
    )
    created_by_id = db.Column(db.Integer, db.ForeignKey("staff_members.id", ondelete="SET NULL"), nullable=True)
    updated_by_id = db.Column(db.Integer, db.ForeignKey("staff_members.id", ondelete="SET NULL"), nullable=True)

    # Review trail
    submitted_by_id = db.Column(db.Integer, db.ForeignKey("staff_members.id", ondelete="SET NULL"), nullable=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reviewed_by_id = db.Column(db.Integer, db.ForeignKey("staff_members.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    review_notes = db.Column(db.Text, nullable=True)

    # Mirror of the current lock; row_locks is authoritative
    locked_by_id = db.Column(db.Integer, db.ForeignKey("staff_members.id", ondelete="SET NULL"), nullable=True)
    locked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    lock_expires_at = db.Column(db.DateTime(timezone=True), nullable=True)

    priority = db.Column(db.String(10), nullable=False, default="medium", comment="low | medium | high | urgent")
    tags = db.Column(db.JSON, nullable=False, default=list)
    due_date = db.Column(db.Date, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    sheet = db.relationship("SheetDefinition", lazy="joined")
    assignees = db.relationship(
        "StaffMember",
        secondary=sheet_row_assignees,
        lazy="selectin",
        order_by="StaffMember.id",
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def assignee_ids(self) -> list[int]:
        return [s.id for s in self.assignees]

    def is_assigned_to(self, staff_id: int) -> bool:
        return self.primary_assignee_id == staff_id or staff_id in self.assignee_ids

    def to_dict(self, data: dict | None = None) -> dict:
        """Serialise the row. ``data`` overrides the stored mapping
        (used to hide restricted columns)."""
        return {
            "id": self.id,
            "sheet_id": self.sheet_id,
            "data": dict(self.data or {}) if data is None else data,
            "status": self.status,
            "version": self.version,
            "primary_assignee_id": self.primary_assignee_id,
            "assigned_to": self.assignee_ids,
            "created_by_id": self.created_by_id,
            "updated_by_id": self.updated_by_id,
            "submitted_by_id": self.submitted_by_id,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "reviewed_by_id": self.reviewed_by_id,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "review_notes": self.review_notes,
            "locked_by_id": self.locked_by_id,
            "locked_at": self.locked_at.isoformat() if self.locked_at else None,
            "lock_expires_at": self.lock_expires_at.isoformat() if self.lock_expires_at else None,
            "priority": self.priority,
            "tags": list(self.tags or []),
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "is_deleted": self.is_deleted,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<SheetRow {self.id} sheet={self.sheet_id} {self.status} v{self.version}>"
