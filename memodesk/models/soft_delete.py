"""
Soft Delete Mixin.

Adds an `archived_at` timestamp column for logical deletion. Memos are
never physically removed once a workflow history entry references them,
so "delete" archives the row instead.

Usage:
    class MyModel(SoftDeleteMixin, db.Model):
        ...

    obj.archive()
    db.session.commit()
"""

from datetime import datetime, timezone

from memodesk.models import db


class SoftDeleteMixin:
    """Mixin that adds logical deletion to any SQLAlchemy model."""

    archived_at = db.Column(db.DateTime(timezone=True), nullable=True, default=None, index=True)

    def archive(self):
        """Mark this record as archived."""
        self.archived_at = datetime.now(timezone.utc)

    @property
    def is_archived(self):
        return self.archived_at is not None
