"""
Sheet Governance Service
Row lock model.

At most one lock record exists per row (UNIQUE row_id). A record whose
``expires_at`` has passed counts as absent; ``lock_service`` takes such
records over atomically and the ``lock_reaper`` job purges them.

Models:
    - RowLock
"""

from datetime import datetime, timezone

from sheetgov.models import db

LOCK_TYPES = frozenset({"edit", "view"})


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class RowLock(db.Model):
    """Pessimistic, time-bounded edit lock on a single row."""

    __tablename__ = "row_locks"
    __table_args__ = (
        db.UniqueConstraint("row_id", name="uq_row_lock_row"),
        db.Index("idx_row_lock_holder", "holder_id"),
        db.Index("idx_row_lock_expires", "expires_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    sheet_id = db.Column(
        db.Integer, db.ForeignKey("sheet_definitions.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    row_id = db.Column(
        db.Integer, db.ForeignKey("sheet_rows.id", ondelete="CASCADE"),
        nullable=False,
    )
    holder_id = db.Column(
        db.Integer, db.ForeignKey("staff_members.id", ondelete="CASCADE"),
        nullable=False,
    )
    lock_type = db.Column(db.String(10), nullable=False, default="edit", comment="edit | view")
    acquired_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    session_id = db.Column(db.String(100), nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(500), nullable=True)

    holder = db.relationship("StaffMember", lazy="joined")

    def is_active(self, now: datetime | None = None) -> bool:
        return _as_utc(self.expires_at) > (now or datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sheet_id": self.sheet_id,
            "row_id": self.row_id,
            "locked_by": self.holder_id,
            "locked_by_name": self.holder.name if self.holder else None,
            "lock_type": self.lock_type,
            "locked_at": _as_utc(self.acquired_at).isoformat() if self.acquired_at else None,
            "expires_at": _as_utc(self.expires_at).isoformat() if self.expires_at else None,
            "is_active": self.is_active(),
        }

    def __repr__(self):
        return f"<RowLock row={self.row_id} holder={self.holder_id}>"
