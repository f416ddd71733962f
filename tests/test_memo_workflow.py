"""
Memo workflow engine tests.

Tests cover:
  - Happy path creator → desk head → LEO → APPROVED
  - LEO return clears both review groups on resubmission
  - Every (status, action) pair outside the transition table is refused
  - Terminal statuses accept nothing
  - Comment rule for return_to_creator / reject
  - Stage authorization (creator, DESK_HEAD, LEO) enforced in the engine
  - Stale expected_version / expected_status
  - Status always equals the latest history entry; replay_status folds the log
"""
import pytest

from memodesk.core.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedActionError,
    ValidationError,
)
from memodesk.models.memo import (
    MEMO_STATUSES,
    STATUS_APPROVED,
    STATUS_DRAFT,
    STATUS_PENDING_DESK_HEAD,
    STATUS_PENDING_LEO,
    STATUS_REJECTED,
    STATUS_RETURNED_TO_CREATOR,
    WorkflowHistoryEntry,
)
from memodesk.services.memo_repository import MemoRepository
from memodesk.services.memo_workflow import (
    ACTION_APPROVE,
    ACTION_CREATE,
    ACTION_REJECT,
    ACTION_RETURN_TO_CREATOR,
    ACTION_SUBMIT_TO_DESK_HEAD,
    MEMO_TRANSITIONS,
    WORKFLOW_ACTIONS,
    available_actions,
    replay_status,
    required_role_for,
    transition_memo,
    validate_transition,
)
from memodesk.services.actor_directory import resolve_actor


# ── Helpers ─────────────────────────────────────────────────────────────

def _history(memo_id):
    return MemoRepository().list_history(memo_id)


def _assert_status_matches_history(memo):
    entries = _history(memo.id)
    assert entries, "every memo has at least its create entry"
    assert memo.status == entries[-1].resulting_status
    assert memo.history_count == entries[-1].sequence
    assert replay_status(entries) == memo.status


def _drive(memo, target, creator, desk_head, leo):
    """Move a fresh DRAFT memo to ``target`` through legal transitions."""
    paths = {
        STATUS_DRAFT: [],
        STATUS_PENDING_DESK_HEAD: [(ACTION_SUBMIT_TO_DESK_HEAD, creator, None)],
        STATUS_PENDING_LEO: [
            (ACTION_SUBMIT_TO_DESK_HEAD, creator, None),
            (ACTION_APPROVE, desk_head, None),
        ],
        STATUS_APPROVED: [
            (ACTION_SUBMIT_TO_DESK_HEAD, creator, None),
            (ACTION_APPROVE, desk_head, None),
            (ACTION_APPROVE, leo, None),
        ],
        STATUS_RETURNED_TO_CREATOR: [
            (ACTION_SUBMIT_TO_DESK_HEAD, creator, None),
            (ACTION_RETURN_TO_CREATOR, desk_head, "Needs figures"),
        ],
        STATUS_REJECTED: [
            (ACTION_SUBMIT_TO_DESK_HEAD, creator, None),
            (ACTION_REJECT, desk_head, "Out of scope"),
        ],
    }
    for action, actor, comment in paths[target]:
        memo = transition_memo(memo.id, action, actor.id, comment=comment)
    assert memo.status == target
    return memo


def _actor_for(status, creator, desk_head, leo):
    return {
        STATUS_DRAFT: creator,
        STATUS_RETURNED_TO_CREATOR: creator,
        STATUS_PENDING_DESK_HEAD: desk_head,
        STATUS_PENDING_LEO: leo,
        STATUS_APPROVED: leo,
        STATUS_REJECTED: desk_head,
    }[status]


# ═════════════════════════════════════════════════════════════════════════
# HAPPY PATHS
# ═════════════════════════════════════════════════════════════════════════

class TestApprovalPath:
    def test_full_approval(self, make_memo, creator, desk_head, leo):
        memo = make_memo()
        assert memo.status == STATUS_DRAFT

        memo = transition_memo(memo.id, ACTION_SUBMIT_TO_DESK_HEAD, creator.id)
        assert memo.status == STATUS_PENDING_DESK_HEAD
        assert memo.submitted_to_desk_head_at is not None

        memo = transition_memo(memo.id, ACTION_APPROVE, desk_head.id, comment="Looks right")
        assert memo.status == STATUS_PENDING_LEO
        assert memo.desk_head_reviewer_id == desk_head.id
        assert memo.desk_head_reviewer_name == "Dana Head"
        assert memo.desk_head_comment == "Looks right"
        assert memo.submitted_to_leo_at is not None
        assert memo.leo_reviewer_id is None

        memo = transition_memo(memo.id, ACTION_APPROVE, leo.id)
        assert memo.status == STATUS_APPROVED
        assert memo.leo_reviewer_name == "Lee Officer"
        assert memo.approved_at is not None

        entries = _history(memo.id)
        assert [e.action for e in entries] == [
            ACTION_CREATE, ACTION_SUBMIT_TO_DESK_HEAD, ACTION_APPROVE, ACTION_APPROVE,
        ]
        assert [e.sequence for e in entries] == [1, 2, 3, 4]
        assert entries[2].actor_name_snapshot == "Dana Head"
        assert entries[2].actor_role == "DESK_HEAD"
        _assert_status_matches_history(memo)

    def test_leo_return_then_resubmit_restarts_review(self, make_memo, creator, desk_head, leo):
        memo = make_memo()
        memo = transition_memo(memo.id, ACTION_SUBMIT_TO_DESK_HEAD, creator.id)
        memo = transition_memo(memo.id, ACTION_APPROVE, desk_head.id)
        memo = transition_memo(memo.id, ACTION_RETURN_TO_CREATOR, leo.id, comment="Fix dates")

        assert memo.status == STATUS_RETURNED_TO_CREATOR
        assert memo.leo_comment == "Fix dates"
        assert memo.desk_head_reviewer_id is None
        assert memo.desk_head_reviewer_name is None

        memo = transition_memo(memo.id, ACTION_SUBMIT_TO_DESK_HEAD, creator.id)
        assert memo.status == STATUS_PENDING_DESK_HEAD
        assert memo.leo_reviewer_id is None
        assert memo.leo_comment is None
        assert memo.desk_head_reviewer_id is None
        assert memo.submitted_to_leo_at is None

        assert len(_history(memo.id)) == 5
        _assert_status_matches_history(memo)

    def test_desk_head_return_goes_back_to_creator(self, make_memo, creator, desk_head):
        memo = make_memo()
        transition_memo(memo.id, ACTION_SUBMIT_TO_DESK_HEAD, creator.id)
        memo = transition_memo(memo.id, ACTION_RETURN_TO_CREATOR, desk_head.id, comment="Add budget")
        assert memo.status == STATUS_RETURNED_TO_CREATOR
        assert memo.desk_head_comment == "Add budget"
        entry = _history(memo.id)[-1]
        assert entry.comment == "Add budget"
        assert entry.from_status == STATUS_PENDING_DESK_HEAD

    @pytest.mark.parametrize("stage", [STATUS_PENDING_DESK_HEAD, STATUS_PENDING_LEO])
    def test_reject_is_terminal(self, make_memo, creator, desk_head, leo, stage):
        memo = _drive(make_memo(), stage, creator, desk_head, leo)
        actor = desk_head if stage == STATUS_PENDING_DESK_HEAD else leo
        memo = transition_memo(memo.id, ACTION_REJECT, actor.id, comment="No")
        assert memo.status == STATUS_REJECTED
        assert memo.is_terminal
        _assert_status_matches_history(memo)


# ═════════════════════════════════════════════════════════════════════════
# TRANSITION TABLE
# ═════════════════════════════════════════════════════════════════════════

class TestTransitionTable:
    @pytest.mark.parametrize("status", MEMO_STATUSES)
    @pytest.mark.parametrize("action", sorted(WORKFLOW_ACTIONS))
    def test_pairs_outside_table_are_refused(self, make_memo, creator, desk_head, leo, status, action):
        if action in MEMO_TRANSITIONS[status]:
            pytest.skip("legal transition")
        memo = _drive(make_memo(), status, creator, desk_head, leo)
        before = len(_history(memo.id))
        actor = _actor_for(status, creator, desk_head, leo)

        with pytest.raises(InvalidTransitionError):
            transition_memo(memo.id, action, actor.id, comment="because")

        memo = MemoRepository().find(memo.id)
        assert memo.status == status
        assert len(_history(memo.id)) == before

    @pytest.mark.parametrize("terminal", [STATUS_APPROVED, STATUS_REJECTED])
    def test_terminal_refuses_every_actor(self, make_memo, creator, desk_head, leo, terminal):
        memo = _drive(make_memo(), terminal, creator, desk_head, leo)
        for actor in (creator, desk_head, leo):
            for action in WORKFLOW_ACTIONS:
                with pytest.raises(InvalidTransitionError):
                    transition_memo(memo.id, action, actor.id, comment="again")

    def test_unknown_action(self, make_memo, creator):
        memo = make_memo()
        with pytest.raises(InvalidTransitionError):
            transition_memo(memo.id, "publish", creator.id)

    def test_validate_transition_result(self, make_memo):
        memo = make_memo()
        ok = validate_transition(memo, ACTION_SUBMIT_TO_DESK_HEAD)
        assert ok == {"valid": True, "from": STATUS_DRAFT, "to": STATUS_PENDING_DESK_HEAD, "reason": None}
        bad = validate_transition(memo, ACTION_APPROVE)
        assert bad["valid"] is False
        assert "Cannot" in bad["reason"]


# ═════════════════════════════════════════════════════════════════════════
# COMMENTS
# ═════════════════════════════════════════════════════════════════════════

class TestCommentRule:
    @pytest.mark.parametrize("action", [ACTION_RETURN_TO_CREATOR, ACTION_REJECT])
    @pytest.mark.parametrize("comment", [None, "", "   \n\t"])
    def test_blank_comment_rejected(self, make_memo, creator, desk_head, action, comment):
        memo = make_memo()
        transition_memo(memo.id, ACTION_SUBMIT_TO_DESK_HEAD, creator.id)
        with pytest.raises(ValidationError) as exc:
            transition_memo(memo.id, action, desk_head.id, comment=comment)
        assert exc.value.field == "comment"
        assert MemoRepository().find(memo.id).status == STATUS_PENDING_DESK_HEAD

    def test_comment_checked_before_state(self, make_memo, creator, desk_head, leo):
        memo = _drive(make_memo(), STATUS_APPROVED, creator, desk_head, leo)
        with pytest.raises(ValidationError):
            transition_memo(memo.id, ACTION_REJECT, leo.id, comment=" ")

    def test_comment_is_trimmed(self, make_memo, creator, desk_head):
        memo = make_memo()
        transition_memo(memo.id, ACTION_SUBMIT_TO_DESK_HEAD, creator.id)
        memo = transition_memo(memo.id, ACTION_REJECT, desk_head.id, comment="  duplicate  ")
        assert memo.desk_head_comment == "duplicate"


# ═════════════════════════════════════════════════════════════════════════
# AUTHORIZATION
# ═════════════════════════════════════════════════════════════════════════

class TestAuthorization:
    def test_only_creator_submits(self, make_memo, other_staff, desk_head, leo):
        memo = make_memo()
        for actor in (other_staff, desk_head, leo):
            with pytest.raises(UnauthorizedActionError) as exc:
                transition_memo(memo.id, ACTION_SUBMIT_TO_DESK_HEAD, actor.id)
            assert exc.value.required_role == "CREATOR"
        assert len(_history(memo.id)) == 1

    def test_desk_head_stage_requires_desk_head(self, make_memo, creator, other_staff, leo):
        memo = make_memo()
        transition_memo(memo.id, ACTION_SUBMIT_TO_DESK_HEAD, creator.id)
        for actor in (creator, other_staff, leo):
            with pytest.raises(UnauthorizedActionError) as exc:
                transition_memo(memo.id, ACTION_APPROVE, actor.id)
            assert exc.value.required_role == "DESK_HEAD"
        memo = MemoRepository().find(memo.id)
        assert memo.status == STATUS_PENDING_DESK_HEAD
        assert memo.desk_head_reviewer_id is None

    def test_leo_stage_requires_leo(self, make_memo, creator, desk_head, leo):
        memo = _drive(make_memo(), STATUS_PENDING_LEO, creator, desk_head, leo)
        with pytest.raises(UnauthorizedActionError) as exc:
            transition_memo(memo.id, ACTION_APPROVE, desk_head.id)
        assert exc.value.actor_role == "DESK_HEAD"
        assert exc.value.required_role == "LEO"
        assert MemoRepository().find(memo.id).status == STATUS_PENDING_LEO

    @pytest.mark.parametrize("terminal", [STATUS_APPROVED, STATUS_REJECTED])
    def test_closed_stage_has_no_required_role(self, terminal):
        assert required_role_for(terminal) is None
        err = UnauthorizedActionError(required_role_for(terminal), "LEO", terminal, actor_id=3)
        assert err.required_role is None
        assert err.details["required_role"] is None
        assert "no role" in str(err)

    def test_authorization_checked_before_table(self, make_memo, other_staff):
        memo = make_memo()
        with pytest.raises(UnauthorizedActionError):
            transition_memo(memo.id, ACTION_APPROVE, other_staff.id)

    def test_unknown_actor(self, make_memo):
        memo = make_memo()
        with pytest.raises(NotFoundError):
            transition_memo(memo.id, ACTION_SUBMIT_TO_DESK_HEAD, 9999)

    def test_unknown_memo(self, creator):
        with pytest.raises(NotFoundError):
            transition_memo("missing", ACTION_SUBMIT_TO_DESK_HEAD, creator.id)

    def test_available_actions(self, make_memo, creator, desk_head, leo):
        memo = make_memo()
        assert available_actions(memo, resolve_actor(creator.id)) == [ACTION_SUBMIT_TO_DESK_HEAD]
        assert available_actions(memo, resolve_actor(desk_head.id)) == []
        memo = transition_memo(memo.id, ACTION_SUBMIT_TO_DESK_HEAD, creator.id)
        assert available_actions(memo, resolve_actor(desk_head.id)) == sorted(
            [ACTION_APPROVE, ACTION_REJECT, ACTION_RETURN_TO_CREATOR]
        )
        assert available_actions(memo, resolve_actor(leo.id)) == []


# ═════════════════════════════════════════════════════════════════════════
# CALLER VIEW CHECKS
# ═════════════════════════════════════════════════════════════════════════

class TestCallerView:
    def test_stale_expected_version(self, make_memo, creator):
        memo = make_memo()
        read_version = memo.version
        transition_memo(memo.id, ACTION_SUBMIT_TO_DESK_HEAD, creator.id, expected_version=read_version)
        with pytest.raises(ConflictError) as exc:
            transition_memo(memo.id, ACTION_SUBMIT_TO_DESK_HEAD, creator.id, expected_version=read_version)
        assert exc.value.expected_version == read_version
        assert exc.value.current_version == read_version + 1

    def test_expected_status_mismatch(self, make_memo, creator, desk_head, leo):
        memo = _drive(make_memo(), STATUS_PENDING_LEO, creator, desk_head, leo)
        with pytest.raises(InvalidTransitionError):
            transition_memo(
                memo.id, ACTION_APPROVE, leo.id, expected_status=STATUS_PENDING_DESK_HEAD,
            )

    def test_version_advances_per_transition(self, make_memo, creator, desk_head):
        memo = make_memo()
        v1 = memo.version
        memo = transition_memo(memo.id, ACTION_SUBMIT_TO_DESK_HEAD, creator.id)
        assert memo.version == v1 + 1
        memo = transition_memo(memo.id, ACTION_APPROVE, desk_head.id)
        assert memo.version == v1 + 2


# ═════════════════════════════════════════════════════════════════════════
# HISTORY REPLAY
# ═════════════════════════════════════════════════════════════════════════

def _entry(seq, action, resulting):
    return WorkflowHistoryEntry(sequence=seq, action=action, resulting_status=resulting)


class TestReplayStatus:
    def test_replay_matches_stored_status(self, make_memo, creator, desk_head, leo):
        memo = make_memo()
        steps = [
            (ACTION_SUBMIT_TO_DESK_HEAD, creator, None),
            (ACTION_RETURN_TO_CREATOR, desk_head, "again"),
            (ACTION_SUBMIT_TO_DESK_HEAD, creator, None),
            (ACTION_APPROVE, desk_head, None),
            (ACTION_APPROVE, leo, None),
        ]
        for action, actor, comment in steps:
            memo = transition_memo(memo.id, action, actor.id, comment=comment)
            _assert_status_matches_history(memo)

    def test_replay_rejects_illegal_log(self):
        entries = [
            _entry(1, ACTION_CREATE, STATUS_DRAFT),
            _entry(2, ACTION_APPROVE, STATUS_APPROVED),
        ]
        with pytest.raises(InvalidTransitionError):
            replay_status(entries)

    def test_replay_requires_create_first(self):
        with pytest.raises(InvalidTransitionError):
            replay_status([_entry(1, ACTION_SUBMIT_TO_DESK_HEAD, STATUS_PENDING_DESK_HEAD)])

    def test_replay_empty_log(self):
        with pytest.raises(InvalidTransitionError):
            replay_status([])

    def test_replay_folds_legal_log(self):
        entries = [
            _entry(1, ACTION_CREATE, STATUS_DRAFT),
            _entry(2, ACTION_SUBMIT_TO_DESK_HEAD, STATUS_PENDING_DESK_HEAD),
            _entry(3, ACTION_REJECT, STATUS_REJECTED),
        ]
        assert replay_status(entries) == STATUS_REJECTED
