"""
Sheet Governance Service
Audit ledger model.

Models:
    - SheetAuditEntry: append-only record of every governed action.

Entries are immutable once flushed. Three guards enforce that:
    - mapper ``before_update`` / ``before_delete`` for ORM unit-of-work changes,
    - a session ``do_orm_execute`` hook for bulk UPDATE / DELETE statements
      aimed at the ledger table.
All three raise ``ImmutableRecord``.

The actor is stored as a plain integer plus a name/email/role snapshot, so
history survives the staff record being removed.
"""

from datetime import datetime, timezone

from sqlalchemy import event
from sqlalchemy.orm import Session

from sheetgov.core.exceptions import ImmutableRecord
from sheetgov.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ACTIONS = frozenset({
    "create", "read", "update", "delete", "restore",
    "submit", "approve", "reject", "return",
    "lock", "unlock",
    "assign", "reassign", "unassign",
    "bulk_update", "bulk_delete",
    "export", "import",
    "configure", "permission_change",
})

AUDIT_RESULTS = frozenset({"success", "failure", "partial"})


class SheetAuditEntry(db.Model):
    """Immutable audit trail entry for sheet, row and assignment actions."""

    __tablename__ = "sheet_audit_entries"
    __table_args__ = (
        db.Index("idx_sheet_audit_sheet_ts", "sheet_key", "timestamp"),
        db.Index("idx_sheet_audit_row_ts", "row_id", "timestamp"),
        db.Index("idx_sheet_audit_actor_ts", "actor_id", "timestamp"),
        db.Index("idx_sheet_audit_action_ts", "action", "timestamp"),
        db.Index("idx_sheet_audit_result", "result"),
    )

    id = db.Column(db.Integer, primary_key=True)
    action = db.Column(db.String(30), nullable=False, comment="create | update | submit | approve | …")

    sheet_key = db.Column(db.String(100), nullable=True)
    sheet_name = db.Column(db.String(200), nullable=True)
    row_id = db.Column(db.Integer, nullable=True, comment="No FK: history outlives the row")

    # Actor snapshot
    actor_id = db.Column(db.Integer, nullable=True, comment="No FK: history outlives the staff record")
    actor_name = db.Column(db.String(200), nullable=True)
    actor_email = db.Column(db.String(255), nullable=True)
    actor_role = db.Column(db.String(30), nullable=True)

    changes = db.Column(db.JSON, nullable=False, default=list, comment="[{field, old_value, new_value}]")

    # Request metadata
    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(500), nullable=True)
    session_id = db.Column(db.String(100), nullable=True)
    request_id = db.Column(db.String(64), nullable=True)

    result = db.Column(db.String(10), nullable=False, default="success", comment="success | failure | partial")
    error_message = db.Column(db.Text, nullable=True)

    context = db.Column(
        db.JSON, nullable=False, default=dict,
        comment="reason, notes, previous_status, new_status, bulk_operation_id, …",
    )

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action": self.action,
            "sheet_key": self.sheet_key,
            "sheet_name": self.sheet_name,
            "row_id": self.row_id,
            "actor": {
                "id": self.actor_id,
                "name": self.actor_name,
                "email": self.actor_email,
                "role": self.actor_role,
            },
            "changes": list(self.changes or []),
            "metadata": {
                "ip_address": self.ip_address,
                "user_agent": self.user_agent,
                "session_id": self.session_id,
                "request_id": self.request_id,
            },
            "result": self.result,
            "error_message": self.error_message,
            "context": dict(self.context or {}),
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<SheetAuditEntry {self.id}: {self.action} {self.sheet_key}/{self.row_id}>"


# ── Immutability guards ──────────────────────────────────────────────────────


@event.listens_for(SheetAuditEntry, "before_update")
def _reject_entry_update(mapper, connection, target):
    raise ImmutableRecord(f"Audit entry {target.id} cannot be modified")


@event.listens_for(SheetAuditEntry, "before_delete")
def _reject_entry_delete(mapper, connection, target):
    raise ImmutableRecord(f"Audit entry {target.id} cannot be deleted")


@event.listens_for(Session, "do_orm_execute")
def _reject_bulk_ledger_writes(orm_execute_state):
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return
    table = getattr(orm_execute_state.statement, "table", None)
    if getattr(table, "name", None) == SheetAuditEntry.__tablename__:
        raise ImmutableRecord("Audit entries cannot be updated or deleted")
