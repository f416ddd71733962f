"""
Memo domain models.

Models:
    - Memo: the document moving through the approval workflow.
    - MemoRecipient: actors a memo is addressed to.
    - MemoAttachment: named pointer into the external attachment store.
    - WorkflowHistoryEntry: immutable, append-only record of one transition.

Status is cached on Memo for fast reads; the history log is the source of
truth. ``Memo.status`` must always equal the ``resulting_status`` of the
latest history entry, which is why status changes go through
``MemoRepository.append_history`` and never through direct assignment.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import event

from memodesk.models import db
from memodesk.models.soft_delete import SoftDeleteMixin


__all__ = [
    "Memo",
    "MemoRecipient",
    "MemoAttachment",
    "WorkflowHistoryEntry",
    "HistoryImmutableError",
]


# ── Helpers ──────────────────────────────────────────────────────────────────

def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


def _as_utc(value):
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _iso(value):
    value = _as_utc(value)
    return value.isoformat() if value else None


# ── Constants ────────────────────────────────────────────────────────────────

MEMO_TYPES = ("GENERAL", "INSTRUCTIONAL", "INFORMATIONAL")
PRIORITY_LEVELS = ("NORMAL", "URGENT", "CONFIDENTIAL")

STATUS_DRAFT = "DRAFT"
STATUS_PENDING_DESK_HEAD = "PENDING_DESK_HEAD"
STATUS_PENDING_LEO = "PENDING_LEO"
STATUS_APPROVED = "APPROVED"
STATUS_RETURNED_TO_CREATOR = "RETURNED_TO_CREATOR"
STATUS_REJECTED = "REJECTED"

MEMO_STATUSES = (
    STATUS_DRAFT,
    STATUS_PENDING_DESK_HEAD,
    STATUS_PENDING_LEO,
    STATUS_APPROVED,
    STATUS_RETURNED_TO_CREATOR,
    STATUS_REJECTED,
)
TERMINAL_STATUSES = frozenset({STATUS_APPROVED, STATUS_REJECTED})
EDITABLE_STATUSES = frozenset({STATUS_DRAFT, STATUS_RETURNED_TO_CREATOR})


# ═════════════════════════════════════════════════════════════════════════════
# MEMO
# ═════════════════════════════════════════════════════════════════════════════

class Memo(SoftDeleteMixin, db.Model):
    """
    Office memo routed creator → desk head → LEO.

    Business rules:
    - Created in DRAFT; content editable only in DRAFT / RETURNED_TO_CREATOR.
    - ``version`` is the optimistic-concurrency counter; SQLAlchemy adds
      ``WHERE version = :read_version`` to every UPDATE and raises
      StaleDataError when another writer got there first.
    - ``history_count`` mirrors the sequence of the latest history entry.
    - Reviewer display names are snapshotted so the record stays readable
      if the User row is later removed.
    """

    __tablename__ = "memos"
    __table_args__ = (
        db.Index("idx_memo_status", "status"),
        db.Index("idx_memo_department", "department"),
        db.Index("idx_memo_creator", "creator_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    memo_number = db.Column(db.String(40), nullable=False, unique=True)

    # ── Content ──────────────────────────────────────────────────────────
    title = db.Column(db.String(255), nullable=False)
    memo_type = db.Column(
        db.String(20), nullable=False, default="GENERAL",
        comment="GENERAL | INSTRUCTIONAL | INFORMATIONAL",
    )
    department = db.Column(db.String(100), nullable=False)
    body = db.Column(db.Text, nullable=False)
    priority_level = db.Column(
        db.String(20), nullable=False, default="NORMAL",
        comment="NORMAL | URGENT | CONFIDENTIAL",
    )
    signature = db.Column(db.String(255), nullable=False, default="")
    date_of_issue = db.Column(db.Date, nullable=False)
    tags = db.Column(db.JSON, default=list)

    # ── Workflow ─────────────────────────────────────────────────────────
    status = db.Column(db.String(30), nullable=False, default=STATUS_DRAFT)
    creator_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    creator_name = db.Column(db.String(200), nullable=True)

    desk_head_reviewer_id = db.Column(db.Integer, nullable=True)
    desk_head_reviewer_name = db.Column(db.String(200), nullable=True)
    desk_head_comment = db.Column(db.Text, nullable=True)
    desk_head_reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    leo_reviewer_id = db.Column(db.Integer, nullable=True)
    leo_reviewer_name = db.Column(db.String(200), nullable=True)
    leo_comment = db.Column(db.Text, nullable=True)
    leo_reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    submitted_to_desk_head_at = db.Column(db.DateTime(timezone=True), nullable=True)
    submitted_to_leo_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    history_count = db.Column(db.Integer, nullable=False, default=0)
    version = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )

    __mapper_args__ = {"version_id_col": version}

    # ── Relationships ────────────────────────────────────────────────────
    recipients = db.relationship(
        "MemoRecipient", back_populates="memo",
        cascade="all, delete-orphan", order_by="MemoRecipient.id",
    )
    attachments = db.relationship(
        "MemoAttachment", back_populates="memo",
        cascade="all, delete-orphan", order_by="MemoAttachment.id",
    )
    history = db.relationship(
        "WorkflowHistoryEntry", back_populates="memo",
        order_by="WorkflowHistoryEntry.sequence", lazy="dynamic",
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def recipient_ids(self):
        return [r.actor_id for r in self.recipients]

    @property
    def is_terminal(self):
        return self.status in TERMINAL_STATUSES

    @property
    def is_editable(self):
        return self.status in EDITABLE_STATUSES

    def clear_desk_head_review(self):
        self.desk_head_reviewer_id = None
        self.desk_head_reviewer_name = None
        self.desk_head_comment = None
        self.desk_head_reviewed_at = None

    def clear_leo_review(self):
        self.leo_reviewer_id = None
        self.leo_reviewer_name = None
        self.leo_comment = None
        self.leo_reviewed_at = None

    def to_dict(self, include_history=False):
        d = {
            "id": self.id,
            "memo_number": self.memo_number,
            "title": self.title,
            "memo_type": self.memo_type,
            "department": self.department,
            "body": self.body,
            "priority_level": self.priority_level,
            "signature": self.signature,
            "date_of_issue": self.date_of_issue.isoformat() if self.date_of_issue else None,
            "tags": list(self.tags or []),
            "attachments": [a.to_dict() for a in self.attachments],
            "recipient_ids": self.recipient_ids,
            "status": self.status,
            "creator_id": self.creator_id,
            "creator_name": self.creator_name,
            "desk_head_reviewer_id": self.desk_head_reviewer_id,
            "desk_head_reviewer_name": self.desk_head_reviewer_name,
            "desk_head_comment": self.desk_head_comment,
            "desk_head_reviewed_at": _iso(self.desk_head_reviewed_at),
            "leo_reviewer_id": self.leo_reviewer_id,
            "leo_reviewer_name": self.leo_reviewer_name,
            "leo_comment": self.leo_comment,
            "leo_reviewed_at": _iso(self.leo_reviewed_at),
            "submitted_to_desk_head_at": _iso(self.submitted_to_desk_head_at),
            "submitted_to_leo_at": _iso(self.submitted_to_leo_at),
            "approved_at": _iso(self.approved_at),
            "version": self.version,
            "archived": self.is_archived,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_history:
            d["history"] = [h.to_dict() for h in self.history]
        return d

    def __repr__(self):
        return f"<Memo {self.memo_number} status={self.status} v{self.version}>"


class MemoRecipient(db.Model):
    __tablename__ = "memo_recipients"
    __table_args__ = (
        db.UniqueConstraint("memo_id", "actor_id", name="uq_memo_recipient"),
        db.Index("idx_memo_recipient_actor", "actor_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    memo_id = db.Column(
        db.String(36), db.ForeignKey("memos.id", ondelete="CASCADE"), nullable=False,
    )
    actor_id = db.Column(db.Integer, nullable=False)

    memo = db.relationship("Memo", back_populates="recipients")


class MemoAttachment(db.Model):
    """
    Reference to a file held by the attachment store.

    Exclusively owned by its memo. Detaching deletes this row only; the
    blob in the store follows the store's own lifecycle.
    """

    __tablename__ = "memo_attachments"
    __table_args__ = (
        db.UniqueConstraint("memo_id", "file_name", name="uq_memo_attachment_name"),
    )

    id = db.Column(db.Integer, primary_key=True)
    memo_id = db.Column(
        db.String(36), db.ForeignKey("memos.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    file_id = db.Column(db.String(255), nullable=False, comment="Identifier returned by the store")
    file_name = db.Column(db.String(255), nullable=False)
    mime_type = db.Column(db.String(100), nullable=True)
    file_size = db.Column(db.Integer, nullable=True, comment="Size in bytes")
    uploaded_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    memo = db.relationship("Memo", back_populates="attachments")

    def to_dict(self):
        return {
            "file_id": self.file_id,
            "file_name": self.file_name,
            "mime_type": self.mime_type,
            "file_size": self.file_size,
            "uploaded_at": _iso(self.uploaded_at),
        }


# ═════════════════════════════════════════════════════════════════════════════
# WORKFLOW HISTORY
# ═════════════════════════════════════════════════════════════════════════════

class HistoryImmutableError(RuntimeError):
    """Raised when code attempts to modify or delete a persisted history entry."""


class WorkflowHistoryEntry(db.Model):
    """
    Immutable record of one workflow transition.

    Business rules:
    - Rows are NEVER updated or deleted (enforced by mapper events below).
    - ``sequence`` is 1-based and unique per memo; the highest sequence is
      the current state.
    - ``actor_name_snapshot`` is captured at transition time.
    - The memo's creation is itself an entry (action ``create``,
      from_status NULL, resulting_status DRAFT).
    """

    __tablename__ = "memo_workflow_history"
    __table_args__ = (
        db.UniqueConstraint("memo_id", "sequence", name="uq_memo_history_sequence"),
        db.Index("idx_memo_history_memo", "memo_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    memo_id = db.Column(
        db.String(36), db.ForeignKey("memos.id", ondelete="RESTRICT"), nullable=False,
    )
    sequence = db.Column(db.Integer, nullable=False)
    action = db.Column(
        db.String(30), nullable=False,
        comment="create | submit_to_desk_head | approve | return_to_creator | reject",
    )
    actor_id = db.Column(db.Integer, nullable=True)
    actor_name_snapshot = db.Column(db.String(200), nullable=True)
    actor_role = db.Column(db.String(20), nullable=True)
    comment = db.Column(db.Text, nullable=True)
    from_status = db.Column(db.String(30), nullable=True)
    resulting_status = db.Column(db.String(30), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    memo = db.relationship("Memo", back_populates="history")

    def to_dict(self):
        return {
            "id": self.id,
            "memo_id": self.memo_id,
            "sequence": self.sequence,
            "action": self.action,
            "actor_id": self.actor_id,
            "actor_name": self.actor_name_snapshot,
            "actor_role": self.actor_role,
            "comment": self.comment,
            "from_status": self.from_status,
            "resulting_status": self.resulting_status,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return (
            f"<WorkflowHistoryEntry {self.memo_id}#{self.sequence} "
            f"{self.action} -> {self.resulting_status}>"
        )


@event.listens_for(WorkflowHistoryEntry, "before_update")
def _refuse_history_update(mapper, connection, target):
    raise HistoryImmutableError(
        f"Workflow history entry {target.memo_id}#{target.sequence} is immutable"
    )


@event.listens_for(WorkflowHistoryEntry, "before_delete")
def _refuse_history_delete(mapper, connection, target):
    raise HistoryImmutableError(
        f"Workflow history entry {target.memo_id}#{target.sequence} cannot be deleted"
    )
