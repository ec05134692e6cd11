"""
Sheet Governance Service
Sheet definition model.

A sheet is a named, versioned table schema plus the policies that govern
its rows: approval workflow, row locking and row assignment. Column specs
and policy blocks are stored as JSON and always read through the
``*_settings`` helpers below, which fill in defaults for missing keys.

Models:
    - SheetDefinition
"""

from datetime import datetime, timezone

from flask import current_app, has_app_context

from sheetgov.models import db

# ── Constants ────────────────────────────────────────────────────────────────

SHEET_CATEGORIES = frozenset({
    "loans", "repayments", "compliance", "referrals",
    "members", "investments", "operations", "other",
})

SHEET_STATUSES = frozenset({"active", "inactive", "archived"})

COLUMN_TYPES = frozenset({
    "text", "number", "date", "currency", "enum",
    "boolean", "email", "phone", "textarea",
})

ROW_STATUSES = ("draft", "pending_review", "approved", "rejected", "returned", "locked")

DEFAULT_LOCK_TIMEOUT_MINUTES = 15

DEFAULT_WORKFLOW = {
    "enable_approval": True,
    "require_approval_for_edit": False,
    "allowed_statuses": list(ROW_STATUSES),
    "default_status": "draft",
}

DEFAULT_CONCURRENCY = {
    "enable_locking": True,
    # None defers to SHEET_LOCK_TIMEOUT_MINUTES
    "lock_timeout_minutes": None,
}

DEFAULT_ROW_ASSIGNMENT = {
    "enabled": True,
    "allow_multiple_assignees": True,
    "auto_assign_on_create": True,
}

DEFAULT_UI = {
    "rows_per_page": 50,
    "enable_export": True,
    "enable_import": False,
}


def _merged(defaults: dict, stored: dict | None) -> dict:
    merged = dict(defaults)
    merged.update(stored or {})
    return merged


class SheetDefinition(db.Model):
    """Schema and governance policy for one sheet."""

    __tablename__ = "sheet_definitions"
    __table_args__ = (
        db.Index("idx_sheet_category_status", "category", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    sheet_key = db.Column(
        db.String(100), nullable=False, unique=True, index=True,
        comment="Stable lowercase identifier, e.g. loans-q1",
    )
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(
        db.String(30), nullable=False, default="operations",
        comment="loans | repayments | compliance | referrals | members | investments | operations | other",
    )

    columns = db.Column(db.JSON, nullable=False, default=list, comment="Ordered column specs")
    workflow = db.Column(db.JSON, nullable=False, default=dict)
    concurrency = db.Column(db.JSON, nullable=False, default=dict)
    row_assignment = db.Column(db.JSON, nullable=False, default=dict)
    default_permissions = db.Column(
        db.JSON, nullable=False, default=dict,
        comment="Permission flags applied to new assignments when none are given",
    )
    ui = db.Column(db.JSON, nullable=False, default=dict)

    status = db.Column(
        db.String(20), nullable=False, default="active",
        comment="active | inactive | archived",
    )
    version = db.Column(db.Integer, nullable=False, default=1)

    created_by_id = db.Column(db.Integer, db.ForeignKey("staff_members.id", ondelete="SET NULL"), nullable=True)
    updated_by_id = db.Column(db.Integer, db.ForeignKey("staff_members.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # ── Policy helpers ───────────────────────────────────────────────────

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def column_specs(self) -> list[dict]:
        """Columns in display order."""
        return sorted(self.columns or [], key=lambda c: c.get("display_order", 0))

    @property
    def column_map(self) -> dict[str, dict]:
        return {c["key"]: c for c in self.column_specs}

    @property
    def workflow_settings(self) -> dict:
        return _merged(DEFAULT_WORKFLOW, self.workflow)

    @property
    def concurrency_settings(self) -> dict:
        return _merged(DEFAULT_CONCURRENCY, self.concurrency)

    @property
    def row_assignment_settings(self) -> dict:
        return _merged(DEFAULT_ROW_ASSIGNMENT, self.row_assignment)

    @property
    def ui_settings(self) -> dict:
        return _merged(DEFAULT_UI, self.ui)

    @property
    def locking_enabled(self) -> bool:
        return bool(self.concurrency_settings["enable_locking"])

    @property
    def lock_timeout_minutes(self) -> int:
        stored = self.concurrency_settings["lock_timeout_minutes"]
        if stored:
            return int(stored)
        if has_app_context():
            return int(current_app.config.get("SHEET_LOCK_TIMEOUT_MINUTES", DEFAULT_LOCK_TIMEOUT_MINUTES))
        return DEFAULT_LOCK_TIMEOUT_MINUTES

    def to_dict(self, include_columns: bool = True) -> dict:
        result = {
            "id": self.id,
            "sheet_key": self.sheet_key,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "workflow": self.workflow_settings,
            "concurrency": {**self.concurrency_settings, "lock_timeout_minutes": self.lock_timeout_minutes},
            "row_assignment": self.row_assignment_settings,
            "default_permissions": self.default_permissions or {},
            "ui": self.ui_settings,
            "status": self.status,
            "version": self.version,
            "created_by_id": self.created_by_id,
            "updated_by_id": self.updated_by_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_columns:
            result["columns"] = self.column_specs
        return result

    def __repr__(self):
        return f"<SheetDefinition {self.sheet_key} v{self.version}>"
