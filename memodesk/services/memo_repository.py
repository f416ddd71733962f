"""
Memo Repository — durable storage of memos and their workflow history.

Rules:
  - This module owns db.session.commit() for memo writes; services build
    the objects and hand them over.
  - A memo's status change and its history entry commit in ONE transaction
    (append_history); a failure rolls back both.
  - Optimistic concurrency: Memo.version is SQLAlchemy's version_id_col, so
    an UPDATE that matches zero rows (another writer advanced the version)
    raises StaleDataError, surfaced here as ConflictError.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from memodesk.core.exceptions import ConflictError, NotFoundError
from memodesk.models import db
from memodesk.models.memo import Memo, MemoRecipient, WorkflowHistoryEntry, _uuid

logger = logging.getLogger(__name__)


class MemoRepository:
    """Persistence boundary for Memo + WorkflowHistoryEntry."""

    # ── Reads ────────────────────────────────────────────────────────────

    def find(self, memo_id: str, *, include_archived: bool = False) -> Memo:
        """Load a memo fresh from the database.

        ``populate_existing`` overwrites any stale copy in the identity map
        so callers validate against the stored status and version.

        Raises:
            NotFoundError: no such memo, or it is archived.
        """
        memo = db.session.get(Memo, memo_id, populate_existing=True)
        if memo is None or (memo.is_archived and not include_archived):
            raise NotFoundError("Memo", memo_id)
        return memo

    def current_version(self, memo_id: str) -> int | None:
        return db.session.execute(
            select(Memo.version).where(Memo.id == memo_id)
        ).scalar_one_or_none()

    def list_history(self, memo_id: str) -> list[WorkflowHistoryEntry]:
        """Return history entries oldest-first."""
        return list(db.session.execute(
            select(WorkflowHistoryEntry)
            .where(WorkflowHistoryEntry.memo_id == memo_id)
            .order_by(WorkflowHistoryEntry.sequence.asc())
        ).scalars().all())

    def list_memos(
        self,
        *,
        department: str | None = None,
        recipient_id: int | None = None,
        status: str | None = None,
    ) -> list[Memo]:
        """Non-archived memos, newest first, with optional filters."""
        stmt = select(Memo).where(Memo.archived_at.is_(None))
        if department:
            stmt = stmt.where(Memo.department == department)
        if status:
            stmt = stmt.where(Memo.status == status)
        if recipient_id is not None:
            stmt = stmt.join(MemoRecipient, MemoRecipient.memo_id == Memo.id).where(
                MemoRecipient.actor_id == recipient_id
            )
        stmt = stmt.order_by(Memo.created_at.desc(), Memo.memo_number.desc())
        return list(db.session.execute(stmt).scalars().all())

    def list_by_status(self, status: str, department: str | None = None) -> list[Memo]:
        return self.list_memos(department=department, status=status)

    def next_memo_number(self, prefix: str, year: int) -> str:
        """Next sequential number for the issue year, e.g. MEMO-2026-0007."""
        stem = f"{prefix}-{year}-"
        issued = db.session.execute(
            select(func.count(Memo.id)).where(Memo.memo_number.like(f"{stem}%"))
        ).scalar_one()
        return f"{stem}{issued + 1:04d}"

    # ── Writes ───────────────────────────────────────────────────────────

    def create(self, memo: Memo, entry: WorkflowHistoryEntry) -> Memo:
        """Insert a new memo together with its ``create`` history entry."""
        if memo.id is None:
            memo.id = _uuid()
        entry.sequence = 1
        entry.from_status = None
        entry.memo = memo
        memo.history_count = 1
        memo.status = entry.resulting_status
        db.session.add(memo)
        db.session.add(entry)
        self._commit(memo.id, None)
        return memo

    def save(self, memo: Memo) -> Memo:
        """Insert or update a memo's content fields.

        Raises:
            ConflictError: the stored version moved past the one read.
        """
        read_version = memo.version
        db.session.add(memo)
        self._commit(memo.id, read_version)
        return memo

    def append_history(self, memo: Memo, entry: WorkflowHistoryEntry) -> WorkflowHistoryEntry:
        """Append ``entry`` and move ``memo.status`` to its resulting status.

        Both rows are written in a single transaction; either both persist
        or neither does.

        Raises:
            ConflictError: a concurrent transition already advanced the memo.
        """
        read_version = memo.version
        entry.sequence = (memo.history_count or 0) + 1
        if entry.from_status is None:
            entry.from_status = memo.status
        entry.memo = memo
        memo.history_count = entry.sequence
        memo.status = entry.resulting_status
        db.session.add(entry)
        self._commit(memo.id, read_version)
        return entry

    # ── Internal ─────────────────────────────────────────────────────────

    def _commit(self, memo_id: str, read_version: int | None) -> None:
        try:
            db.session.commit()
        except StaleDataError:
            db.session.rollback()
            current = self.current_version(memo_id)
            logger.warning(
                "Memo write lost optimistic-concurrency race",
                extra={"memo_id": memo_id},
            )
            raise ConflictError("Memo", memo_id, read_version, current)
        except IntegrityError as exc:
            db.session.rollback()
            logger.warning(
                "Memo write violated a uniqueness constraint: %s", exc.orig,
                extra={"memo_id": memo_id},
            )
            raise ConflictError("Memo", memo_id, read_version, self.current_version(memo_id))
        except Exception:
            db.session.rollback()
            raise
