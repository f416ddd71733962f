"""
Memo Workflow Engine

Manages memo status transitions with:
  - Comment validation (return_to_creator / reject need a reason)
  - Stage authorization (creator → desk head → LEO), enforced here and
    never in the blueprint
  - Transition validation against MEMO_TRANSITIONS
  - Side effects on reviewer / timestamp fields
  - Atomic history append through MemoRepository

4 actions:
  submit_to_desk_head, approve, return_to_creator, reject

The engine is stateless between calls. It re-reads the memo immediately
before validating and relies on the repository's optimistic-concurrency
check to reject a write that raced another transition. It never retries;
that is the caller's policy.

Usage:
    from memodesk.services.memo_workflow import transition_memo

    memo = transition_memo(
        memo_id="abc",
        action="approve",
        actor_id=7,
        comment="ok",
    )
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from memodesk.core.exceptions import (
    ConflictError,
    InvalidTransitionError,
    UnauthorizedActionError,
    ValidationError,
)
from memodesk.models.auth import ROLE_DESK_HEAD, ROLE_LEO
from memodesk.models.memo import (
    STATUS_APPROVED,
    STATUS_DRAFT,
    STATUS_PENDING_DESK_HEAD,
    STATUS_PENDING_LEO,
    STATUS_REJECTED,
    STATUS_RETURNED_TO_CREATOR,
    TERMINAL_STATUSES,
    Memo,
    WorkflowHistoryEntry,
)
from memodesk.services.actor_directory import Actor, resolve_actor
from memodesk.services.memo_repository import MemoRepository

logger = logging.getLogger(__name__)


ACTION_CREATE = "create"
ACTION_SUBMIT_TO_DESK_HEAD = "submit_to_desk_head"
ACTION_APPROVE = "approve"
ACTION_RETURN_TO_CREATOR = "return_to_creator"
ACTION_REJECT = "reject"

WORKFLOW_ACTIONS = frozenset({
    ACTION_SUBMIT_TO_DESK_HEAD,
    ACTION_APPROVE,
    ACTION_RETURN_TO_CREATOR,
    ACTION_REJECT,
})
COMMENT_REQUIRED_ACTIONS = frozenset({ACTION_RETURN_TO_CREATOR, ACTION_REJECT})

# Memo transition rules: current status → {action: resulting status}
MEMO_TRANSITIONS = {
    STATUS_DRAFT: {
        ACTION_SUBMIT_TO_DESK_HEAD: STATUS_PENDING_DESK_HEAD,
    },
    STATUS_RETURNED_TO_CREATOR: {
        ACTION_SUBMIT_TO_DESK_HEAD: STATUS_PENDING_DESK_HEAD,
    },
    STATUS_PENDING_DESK_HEAD: {
        ACTION_APPROVE: STATUS_PENDING_LEO,
        ACTION_RETURN_TO_CREATOR: STATUS_RETURNED_TO_CREATOR,
        ACTION_REJECT: STATUS_REJECTED,
    },
    STATUS_PENDING_LEO: {
        ACTION_APPROVE: STATUS_APPROVED,
        ACTION_RETURN_TO_CREATOR: STATUS_RETURNED_TO_CREATOR,
        ACTION_REJECT: STATUS_REJECTED,
    },
    STATUS_APPROVED: {},
    STATUS_REJECTED: {},
}

# Who may act on a memo's outgoing edges, per status
ROLE_CREATOR = "CREATOR"
_STAGE_ROLE = {
    STATUS_DRAFT: ROLE_CREATOR,
    STATUS_RETURNED_TO_CREATOR: ROLE_CREATOR,
    STATUS_PENDING_DESK_HEAD: ROLE_DESK_HEAD,
    STATUS_PENDING_LEO: ROLE_LEO,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Rules ────────────────────────────────────────────────────────────────────


def required_role_for(status: str) -> str | None:
    """Role needed to act on a memo in ``status``; None for terminal states."""
    return _STAGE_ROLE.get(status)


def is_authorized(memo: Memo, actor: Actor) -> bool:
    """True when ``actor`` holds the role the memo's current stage requires."""
    role = required_role_for(memo.status)
    if role is None:
        return False
    if role == ROLE_CREATOR:
        return memo.creator_id is not None and memo.creator_id == actor.id
    return actor.role == role


def validate_transition(memo: Memo, action: str) -> dict:
    """
    Validate whether an action is valid for the memo's current status.

    Returns:
        {"valid": bool, "from": str, "to": str|None, "reason": str|None}
    """
    if action not in WORKFLOW_ACTIONS:
        return {"valid": False, "from": memo.status, "to": None,
                "reason": f"Unknown action: {action}"}

    target = MEMO_TRANSITIONS.get(memo.status, {}).get(action)
    if target is None:
        return {"valid": False, "from": memo.status, "to": None,
                "reason": f"Cannot '{action}' from status '{memo.status}'"}

    return {"valid": True, "from": memo.status, "to": target, "reason": None}


def available_actions(memo: Memo, actor: Actor) -> list[str]:
    """Actions ``actor`` could take on ``memo`` right now."""
    if not is_authorized(memo, actor):
        return []
    return sorted(MEMO_TRANSITIONS.get(memo.status, {}))


def replay_status(entries) -> str:
    """Fold a history log into the status it implies.

    The first entry must be the ``create`` entry; every following entry must
    be a legal transition from the status the log has reached so far.

    Raises:
        InvalidTransitionError: the log is empty or contains an illegal step.
    """
    status = None
    for entry in entries:
        if status is None:
            if entry.action != ACTION_CREATE:
                raise InvalidTransitionError(None, entry.action, "history must start with 'create'")
            status = entry.resulting_status
            continue
        target = MEMO_TRANSITIONS.get(status, {}).get(entry.action)
        if target is None or target != entry.resulting_status:
            raise InvalidTransitionError(
                status, entry.action,
                f"history entry #{entry.sequence} does not follow the transition table",
            )
        status = target
    if status is None:
        raise InvalidTransitionError(None, ACTION_CREATE, "history is empty")
    return status


# ── Side effects ─────────────────────────────────────────────────────────────


def _apply_side_effects(memo: Memo, action: str, actor: Actor, comment: str | None, now: datetime) -> None:
    previous = memo.status

    if action == ACTION_SUBMIT_TO_DESK_HEAD:
        # A re-submission restarts review from the desk head.
        memo.clear_desk_head_review()
        memo.clear_leo_review()
        memo.submitted_to_leo_at = None
        memo.submitted_to_desk_head_at = now
        return

    if previous == STATUS_PENDING_DESK_HEAD:
        memo.desk_head_reviewer_id = actor.id
        memo.desk_head_reviewer_name = actor.display_name
        memo.desk_head_comment = comment
        memo.desk_head_reviewed_at = now
        if action == ACTION_APPROVE:
            memo.submitted_to_leo_at = now

    elif previous == STATUS_PENDING_LEO:
        memo.leo_reviewer_id = actor.id
        memo.leo_reviewer_name = actor.display_name
        memo.leo_comment = comment
        memo.leo_reviewed_at = now
        if action == ACTION_APPROVE:
            memo.approved_at = now
        elif action == ACTION_RETURN_TO_CREATOR:
            memo.clear_desk_head_review()


# ── Public API ───────────────────────────────────────────────────────────────


def transition_memo(
    memo_id: str,
    action: str,
    actor_id,
    *,
    comment: str | None = None,
    expected_version: int | None = None,
    expected_status: str | None = None,
    repository: MemoRepository | None = None,
) -> Memo:
    """
    Execute a memo workflow transition.

    Args:
        memo_id: UUID of the memo
        action: One of WORKFLOW_ACTIONS
        actor_id: Who is performing the action (resolved via the directory)
        comment: Required for return_to_creator and reject
        expected_version: Version the caller last read; a mismatch means the
            caller acted on a stale view
        expected_status: Stage the caller is acting on (stage endpoints)
        repository: Injected for tests; defaults to MemoRepository()

    Returns:
        The updated Memo.

    Raises:
        ValidationError, InvalidTransitionError, UnauthorizedActionError,
        ConflictError, NotFoundError
    """
    repo = repository or MemoRepository()
    comment = (comment or "").strip() or None

    # 1. Comment rule applies regardless of state or actor
    if action in COMMENT_REQUIRED_ACTIONS and not comment:
        raise ValidationError("comment required", field="comment")

    # 2. Unknown action
    if action not in WORKFLOW_ACTIONS:
        raise InvalidTransitionError(None, action, f"Unknown action: {action}")

    # 3. Fresh read
    memo = repo.find(memo_id)
    actor = resolve_actor(actor_id)

    # 4. Stale caller view
    if expected_version is not None and memo.version != expected_version:
        raise ConflictError("Memo", memo.id, expected_version, memo.version)

    # 5. Stage-specific endpoint called on the wrong stage
    if expected_status is not None and memo.status != expected_status:
        raise InvalidTransitionError(
            memo.status, action, f"memo is not {expected_status}",
        )

    # 6. Terminal
    if memo.status in TERMINAL_STATUSES:
        raise InvalidTransitionError(memo.status, action, "memo is in a terminal state")

    # 7. Authorization before the transition table
    if not is_authorized(memo, actor):
        raise UnauthorizedActionError(
            required_role_for(memo.status), actor.role, memo.status, actor_id=actor.id,
        )

    # 8. Transition table
    validation = validate_transition(memo, action)
    if not validation["valid"]:
        raise InvalidTransitionError(memo.status, action, validation["reason"])

    # 9. Apply + append atomically
    previous_status = memo.status
    now = _utcnow()
    _apply_side_effects(memo, action, actor, comment, now)
    entry = WorkflowHistoryEntry(
        action=action,
        actor_id=actor.id,
        actor_name_snapshot=actor.display_name,
        actor_role=actor.role,
        comment=comment,
        from_status=previous_status,
        resulting_status=validation["to"],
        created_at=now,
    )
    repo.append_history(memo, entry)

    logger.info(
        "Memo transition applied: %s → %s", previous_status, memo.status,
        extra={
            "memo_id": memo.id,
            "memo_number": memo.memo_number,
            "actor_id": actor.id,
            "action": action,
            "memo_status": memo.status,
        },
    )
    return memo
