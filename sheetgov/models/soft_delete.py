"""
Soft Delete Mixin.

Adds tombstone columns. Rows that include this mixin
are marked deleted rather than physically removed, so their audit history
keeps pointing at something.

Usage:
    class SheetRow(SoftDeleteMixin, db.Model):
        ...

    row.soft_delete(deleted_by_id=actor.id)
    db.session.commit()

    row.restore()
"""

from datetime import datetime, timezone

from sheetgov.models import db


class SoftDeleteMixin:
    """Mixin that adds soft delete support to any SQLAlchemy model."""

    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, default=None, index=True)
    deleted_by_id = db.Column(db.Integer, nullable=True, comment="Staff member who deleted the record")

    def soft_delete(self, deleted_by_id: int | None = None):
        """Mark this record as deleted."""
        self.deleted_at = datetime.now(timezone.utc)
        self.deleted_by_id = deleted_by_id

    def restore(self):
        """Restore a soft-deleted record."""
        self.deleted_at = None
        self.deleted_by_id = None

    @property
    def is_deleted(self):
        return self.deleted_at is not None

