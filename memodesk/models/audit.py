"""
Memo Desk — Audit domain model.

Models:
    - AuditLog: immutable, append-only trail for content edits that are not
      workflow transitions (those live in memo_workflow_history).
"""

import json
from datetime import UTC, datetime

from memodesk.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ENTITY_TYPES = {"memo"}

AUDIT_ACTIONS = {
    "memo.update",
    "memo.attachment_detached",
    "memo.archive",
}


class AuditLog(db.Model):
    """
    Immutable audit trail for memo content edits.

    One row per action.  ``diff_json`` carries an old→new snapshot
    for each changed field.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_actor", "actor_user_id"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)

    entity_type = db.Column(db.String(30), nullable=False, comment="memo")
    entity_id = db.Column(db.String(36), nullable=False)

    action = db.Column(
        db.String(60), nullable=False,
        comment="memo.update | memo.attachment_detached | memo.archive",
    )
    actor_user_id = db.Column(db.Integer, nullable=True)

    diff_json = db.Column(db.Text, default="{}", comment="JSON: {field: {old, new}}")

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def diff(self) -> dict:
        """Deserialise *diff_json* to a Python dict."""
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor_user_id": self.actor_user_id,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    entity_type: str,
    entity_id: str,
    action: str,
    actor_user_id: int | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``add`` only so callers keep
    transaction control; the row commits with the change it describes.
    """
    log = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor_user_id=actor_user_id,
        diff_json=json.dumps(diff or {}, default=str, ensure_ascii=False),
    )
    db.session.add(log)
    return log
