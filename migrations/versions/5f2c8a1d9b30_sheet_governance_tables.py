"""Sheet governance tables

Staff, sheet definitions, assignments, rows, row assignees, row locks and
the audit ledger.

Revision ID: 5f2c8a1d9b30
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "5f2c8a1d9b30"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade():
    # ── Staff ──
    op.create_table(
        "staff_members",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("role", sa.String(30), nullable=False, server_default="operations"),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("department", sa.String(100), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_staff_members_email", "staff_members", ["email"], unique=True)

    # ── Sheet definitions ──
    op.create_table(
        "sheet_definitions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("sheet_key", sa.String(100), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(30), nullable=False, server_default="operations"),
        sa.Column("columns", sa.JSON(), nullable=False),
        sa.Column("workflow", sa.JSON(), nullable=False),
        sa.Column("concurrency", sa.JSON(), nullable=False),
        sa.Column("row_assignment", sa.JSON(), nullable=False),
        sa.Column("default_permissions", sa.JSON(), nullable=False),
        sa.Column("ui", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_by_id", sa.Integer(), sa.ForeignKey("staff_members.id", ondelete="SET NULL"), nullable=True),
        sa.Column("updated_by_id", sa.Integer(), sa.ForeignKey("staff_members.id", ondelete="SET NULL"), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_sheet_definitions_sheet_key", "sheet_definitions", ["sheet_key"], unique=True)
    op.create_index("idx_sheet_category_status", "sheet_definitions", ["category", "status"])

    # ── Assignments ──
    op.create_table(
        "sheet_assignments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("staff_id", sa.Integer(), sa.ForeignKey("staff_members.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sheet_id", sa.Integer(), sa.ForeignKey("sheet_definitions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("can_view", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("can_edit", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("can_create", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("can_delete", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("can_submit", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("can_approve", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("can_assign_rows", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("can_reassign", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("can_export", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("can_view_audit", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("scope", sa.String(20), nullable=False, server_default="assigned_rows"),
        sa.Column("restricted_columns", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("assigned_by_id", sa.Integer(), sa.ForeignKey("staff_members.id", ondelete="SET NULL"), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked_by_id", sa.Integer(), sa.ForeignKey("staff_members.id", ondelete="SET NULL"), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revocation_reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("staff_id", "sheet_id", name="uq_assignment_staff_sheet"),
    )
    op.create_index("ix_sheet_assignments_staff_id", "sheet_assignments", ["staff_id"])
    op.create_index("ix_sheet_assignments_sheet_id", "sheet_assignments", ["sheet_id"])
    op.create_index("idx_assignment_sheet_status", "sheet_assignments", ["sheet_id", "status"])

    # ── Rows ──
    op.create_table(
        "sheet_rows",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("sheet_id", sa.Integer(), sa.ForeignKey("sheet_definitions.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("status_before_lock", sa.String(20), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("primary_assignee_id", sa.Integer(), sa.ForeignKey("staff_members.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_by_id", sa.Integer(), sa.ForeignKey("staff_members.id", ondelete="SET NULL"), nullable=True),
        sa.Column("updated_by_id", sa.Integer(), sa.ForeignKey("staff_members.id", ondelete="SET NULL"), nullable=True),
        sa.Column("submitted_by_id", sa.Integer(), sa.ForeignKey("staff_members.id", ondelete="SET NULL"), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_by_id", sa.Integer(), sa.ForeignKey("staff_members.id", ondelete="SET NULL"), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_notes", sa.Text(), nullable=True),
        sa.Column("locked_by_id", sa.Integer(), sa.ForeignKey("staff_members.id", ondelete="SET NULL"), nullable=True),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("lock_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("priority", sa.String(10), nullable=False, server_default="medium"),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_by_id", sa.Integer(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_sheet_rows_sheet_id", "sheet_rows", ["sheet_id"])
    op.create_index("ix_sheet_rows_deleted_at", "sheet_rows", ["deleted_at"])
    op.create_index("idx_row_sheet_status", "sheet_rows", ["sheet_id", "status"])
    op.create_index("idx_row_sheet_primary", "sheet_rows", ["sheet_id", "primary_assignee_id"])
    op.create_index("idx_row_sheet_creator", "sheet_rows", ["sheet_id", "created_by_id"])

    op.create_table(
        "sheet_row_assignees",
        sa.Column("row_id", sa.Integer(), sa.ForeignKey("sheet_rows.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("staff_id", sa.Integer(), sa.ForeignKey("staff_members.id", ondelete="CASCADE"), primary_key=True),
    )
    op.create_index("idx_row_assignee_staff", "sheet_row_assignees", ["staff_id"])

    # ── Row locks ──
    op.create_table(
        "row_locks",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("sheet_id", sa.Integer(), sa.ForeignKey("sheet_definitions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("row_id", sa.Integer(), sa.ForeignKey("sheet_rows.id", ondelete="CASCADE"), nullable=False),
        sa.Column("holder_id", sa.Integer(), sa.ForeignKey("staff_members.id", ondelete="CASCADE"), nullable=False),
        sa.Column("lock_type", sa.String(10), nullable=False, server_default="edit"),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("session_id", sa.String(100), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.String(500), nullable=True),
        sa.UniqueConstraint("row_id", name="uq_row_lock_row"),
    )
    op.create_index("ix_row_locks_sheet_id", "row_locks", ["sheet_id"])
    op.create_index("idx_row_lock_holder", "row_locks", ["holder_id"])
    op.create_index("idx_row_lock_expires", "row_locks", ["expires_at"])

    # ── Audit ledger (no FKs: history outlives rows and staff) ──
    op.create_table(
        "sheet_audit_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("action", sa.String(30), nullable=False),
        sa.Column("sheet_key", sa.String(100), nullable=True),
        sa.Column("sheet_name", sa.String(200), nullable=True),
        sa.Column("row_id", sa.Integer(), nullable=True),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("actor_name", sa.String(200), nullable=True),
        sa.Column("actor_email", sa.String(255), nullable=True),
        sa.Column("actor_role", sa.String(30), nullable=True),
        sa.Column("changes", sa.JSON(), nullable=False),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.String(500), nullable=True),
        sa.Column("session_id", sa.String(100), nullable=True),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("result", sa.String(10), nullable=False, server_default="success"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("context", sa.JSON(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_sheet_audit_sheet_ts", "sheet_audit_entries", ["sheet_key", "timestamp"])
    op.create_index("idx_sheet_audit_row_ts", "sheet_audit_entries", ["row_id", "timestamp"])
    op.create_index("idx_sheet_audit_actor_ts", "sheet_audit_entries", ["actor_id", "timestamp"])
    op.create_index("idx_sheet_audit_action_ts", "sheet_audit_entries", ["action", "timestamp"])
    op.create_index("idx_sheet_audit_result", "sheet_audit_entries", ["result"])


def downgrade():
    op.drop_table("sheet_audit_entries")
    op.drop_table("row_locks")
    op.drop_table("sheet_row_assignees")
    op.drop_table("sheet_rows")
    op.drop_table("sheet_assignments")
    op.drop_table("sheet_definitions")
    op.drop_table("staff_members")
