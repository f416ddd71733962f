"""
Memo Service — the façade calling clients use.

Composes the attachment store, actor directory, repository, workflow engine
and document renderer behind one set of operations. The blueprint calls
only this module.

Design decisions:
    - Attachment uploads run in parallel and are joined before the memo row
      is written. Any failed upload aborts the call and already-uploaded
      blobs are deleted again, so no memo references a missing file and no
      orphaned upload survives a failed create/update.
    - Content edits are creator-only and allowed only in DRAFT or
      RETURNED_TO_CREATOR; they never touch workflow fields.
    - A write race on a transition (ConflictError raised by the repository,
      not by a stale expected_version) is retried once from a fresh read
      when MEMO_RETRY_ON_CONFLICT is enabled.
    - Content edits are written to the audit log; transitions are recorded in
      workflow history.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass

from flask import current_app

from memodesk.core.exceptions import (
    AttachmentUploadError,
    ConflictError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedActionError,
    ValidationError,
)
from memodesk.integrations.attachment_store import AttachmentStore, AttachmentStoreError
from memodesk.models.audit import write_audit
from memodesk.models.memo import (
    EDITABLE_STATUSES,
    MEMO_STATUSES,
    MEMO_TYPES,
    PRIORITY_LEVELS,
    STATUS_DRAFT,
    STATUS_PENDING_DESK_HEAD,
    STATUS_PENDING_LEO,
    Memo,
    MemoAttachment,
    MemoRecipient,
    WorkflowHistoryEntry,
    _uuid,
)
from memodesk.services import memo_document
from memodesk.services.actor_directory import Actor, resolve_actor, resolve_actors
from memodesk.services.memo_repository import MemoRepository
from memodesk.services.memo_workflow import (
    ACTION_APPROVE,
    ACTION_CREATE,
    ACTION_SUBMIT_TO_DESK_HEAD,
    ROLE_CREATOR,
    replay_status,
    transition_memo,
)
from memodesk.utils.helpers import normalize_tags, parse_date_input

logger = logging.getLogger(__name__)

_TEXT_FIELDS = {
    # field: (required on create, max length)
    "title": (True, 255),
    "department": (True, 100),
    "body": (True, None),
    "signature": (True, 255),
}
_ACTION_ALIASES = {"submit_to_leo": ACTION_APPROVE}
_ARCHIVABLE_STATUSES = frozenset(MEMO_STATUSES) - {STATUS_PENDING_DESK_HEAD, STATUS_PENDING_LEO}


@dataclass(frozen=True)
class UploadedFile:
    """A file received from the client, not yet in the attachment store."""

    file_name: str
    content: bytes
    mime_type: str | None = None


# ── Private helpers ────────────────────────────────────────────────────────────


def _repo() -> MemoRepository:
    return MemoRepository()


def _store() -> AttachmentStore:
    return current_app.extensions["attachment_store"]


def _clean_content(data: dict, *, partial: bool) -> dict:
    """Validate content fields; ``partial`` skips absent keys (PATCH)."""
    errors: dict[str, str] = {}
    cleaned: dict = {}

    for key, (required, max_len) in _TEXT_FIELDS.items():
        if partial and key not in data:
            continue
        value = data.get(key)
        value = value.strip() if isinstance(value, str) else value
        if required and not value:
            errors[key] = f"{key} is required"
            continue
        if value is not None and not isinstance(value, str):
            errors[key] = f"{key} must be a string"
            continue
        if max_len and value and len(value) > max_len:
            errors[key] = f"{key} must be ≤ {max_len} characters"
            continue
        cleaned[key] = value

    if not partial or "memo_type" in data:
        memo_type = (data.get("memo_type") or "GENERAL").upper()
        if memo_type not in MEMO_TYPES:
            errors["memo_type"] = f"memo_type must be one of: {', '.join(MEMO_TYPES)}"
        else:
            cleaned["memo_type"] = memo_type

    if not partial or "priority_level" in data:
        priority = (data.get("priority_level") or "NORMAL").upper()
        if priority not in PRIORITY_LEVELS:
            errors["priority_level"] = f"priority_level must be one of: {', '.join(PRIORITY_LEVELS)}"
        else:
            cleaned["priority_level"] = priority

    if not partial or "date_of_issue" in data:
        try:
            issued = parse_date_input(data.get("date_of_issue"))
        except ValueError as exc:
            errors["date_of_issue"] = str(exc)
        else:
            if issued is None:
                errors["date_of_issue"] = "date_of_issue is required"
            else:
                cleaned["date_of_issue"] = issued

    if not partial or "tags" in data:
        cleaned["tags"] = normalize_tags(data.get("tags"))

    if errors:
        field = next(iter(errors)) if len(errors) == 1 else None
        message = errors[field] if field else "Invalid memo data"
        raise ValidationError(message, field=field, details={"fields": errors})
    return cleaned


def _resolve_recipients(recipient_ids) -> list[Actor]:
    if recipient_ids is None:
        return []
    if not isinstance(recipient_ids, (list, tuple)):
        raise ValidationError("recipient_ids must be a list", field="recipient_ids")
    try:
        return resolve_actors(recipient_ids)
    except NotFoundError as exc:
        raise ValidationError(
            f"Unknown recipient {exc.resource_id}", field="recipient_ids",
        ) from exc


def _check_file_names(files, existing_names=()) -> None:
    seen = set(existing_names)
    for f in files or []:
        if not (f.file_name or "").strip():
            raise ValidationError("Attachment file name is required", field="files")
        if f.file_name in seen:
            raise ValidationError(
                f"Attachment '{f.file_name}' is already attached", field="files",
            )
        seen.add(f.file_name)


def _discard_uploads(file_ids) -> None:
    """Best-effort compensation: remove blobs uploaded for an aborted call."""
    store = _store()
    for file_id in file_ids:
        try:
            store.delete(file_id)
        except AttachmentStoreError:
            logger.warning("Could not discard uploaded attachment %s", file_id, exc_info=True)


def _upload_all(files) -> list[tuple[UploadedFile, str]]:
    """Upload every file concurrently; all succeed or the call fails.

    Returns:
        [(file, file_id), ...] in the order the files were given.

    Raises:
        AttachmentUploadError: at least one upload failed. Successful uploads
            from the same batch have been deleted again.
    """
    if not files:
        return []
    store = _store()
    workers = max(1, min(len(files), current_app.config.get("ATTACHMENT_UPLOAD_WORKERS", 4)))
    uploaded: dict[int, str] = {}
    failures: dict[int, Exception] = {}

    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = {
            pool.submit(
                store.upload,
                f.content,
                {"file_name": f.file_name, "mime_type": f.mime_type, "module": "MEMO"},
            ): idx
            for idx, f in enumerate(files)
        }
        for future in as_completed(futures):
            idx = futures[future]
            try:
                uploaded[idx] = future.result()
            except Exception as exc:
                failures[idx] = exc

    if failures:
        _discard_uploads(uploaded.values())
        idx = min(failures)
        logger.warning(
            "Attachment upload failed; aborting",
            extra={"file_count": len(files)},
        )
        raise AttachmentUploadError(files[idx].file_name, str(failures[idx])) from failures[idx]

    return [(f, uploaded[idx]) for idx, f in enumerate(files)]


def _require_creator(memo: Memo, actor: Actor) -> None:
    if memo.creator_id != actor.id:
        raise UnauthorizedActionError(ROLE_CREATOR, actor.role, memo.status, actor_id=actor.id)


def _require_editable(memo: Memo, operation: str) -> None:
    if not memo.is_editable:
        raise InvalidStateError(memo.status, EDITABLE_STATUSES, operation)


def _check_version(memo: Memo, expected_version: int | None) -> None:
    if expected_version is not None and memo.version != expected_version:
        raise ConflictError("Memo", memo.id, expected_version, memo.version)


def _attachment_rows(uploaded) -> list[MemoAttachment]:
    return [
        MemoAttachment(
            file_id=file_id,
            file_name=f.file_name,
            mime_type=f.mime_type,
            file_size=len(f.content),
        )
        for f, file_id in uploaded
    ]


# ── Content operations ─────────────────────────────────────────────────────────


def create_memo(data: dict, files=None, *, actor_id) -> Memo:
    """Create a memo in DRAFT, uploading its attachments first.

    Args:
        data: Content fields plus optional ``recipient_ids``.
        files: Iterable of UploadedFile.
        actor_id: Creator.

    Raises:
        NotFoundError: unknown creator.
        ValidationError: invalid content, unknown recipient, duplicate file name.
        AttachmentUploadError: any upload failed; nothing was persisted.
    """
    files = list(files or [])
    creator = resolve_actor(actor_id)
    fields = _clean_content(data or {}, partial=False)
    recipients = _resolve_recipients((data or {}).get("recipient_ids"))
    _check_file_names(files)

    uploaded = _upload_all(files)
    repo = _repo()
    try:
        prefix = current_app.config.get("MEMO_NUMBER_PREFIX", "MEMO")
        memo = Memo(
            id=_uuid(),
            memo_number=repo.next_memo_number(prefix, fields["date_of_issue"].year),
            creator_id=creator.id,
            creator_name=creator.display_name,
            **fields,
        )
        memo.recipients = [MemoRecipient(actor_id=a.id) for a in recipients]
        memo.attachments = _attachment_rows(uploaded)
        entry = WorkflowHistoryEntry(
            action=ACTION_CREATE,
            actor_id=creator.id,
            actor_name_snapshot=creator.display_name,
            actor_role=creator.role,
            resulting_status=STATUS_DRAFT,
        )
        repo.create(memo, entry)
    except Exception:
        _discard_uploads(file_id for _, file_id in uploaded)
        raise

    logger.info(
        "Memo created",
        extra={
            "memo_id": memo.id,
            "memo_number": memo.memo_number,
            "actor_id": creator.id,
            "file_count": len(uploaded),
        },
    )
    return memo


def update_memo(
    memo_id: str,
    data: dict,
    new_files=None,
    *,
    actor_id,
    expected_version: int | None = None,
) -> Memo:
    """Edit content and add attachments while the memo is with its creator.

    Raises:
        UnauthorizedActionError: actor is not the creator.
        InvalidStateError: memo is not DRAFT / RETURNED_TO_CREATOR.
        ConflictError: stale ``expected_version`` or concurrent write.
        ValidationError, AttachmentUploadError
    """
    data = data or {}
    new_files = list(new_files or [])
    repo = _repo()
    memo = repo.find(memo_id)
    actor = resolve_actor(actor_id)
    _require_creator(memo, actor)
    _require_editable(memo, "update")
    _check_version(memo, expected_version)

    fields = _clean_content(data, partial=True)
    recipients = _resolve_recipients(data["recipient_ids"]) if "recipient_ids" in data else None
    _check_file_names(new_files, [a.file_name for a in memo.attachments])

    diff = {}
    for key, value in fields.items():
        old = getattr(memo, key)
        if old != value:
            diff[key] = {"old": old, "new": value}
    if recipients is not None:
        new_ids = [a.id for a in recipients]
        if new_ids != memo.recipient_ids:
            diff["recipient_ids"] = {"old": memo.recipient_ids, "new": new_ids}

    uploaded = _upload_all(new_files)
    try:
        for key, value in fields.items():
            setattr(memo, key, value)
        if recipients is not None:
            memo.recipients = [MemoRecipient(actor_id=a.id) for a in recipients]
        if uploaded:
            memo.attachments.extend(_attachment_rows(uploaded))
            diff["attachments"] = {"old": None, "new": [f.file_name for f, _ in uploaded]}
        write_audit(
            entity_type="memo",
            entity_id=memo.id,
            action="memo.update",
            actor_user_id=actor.id,
            diff=diff,
        )
        repo.save(memo)
    except Exception:
        _discard_uploads(file_id for _, file_id in uploaded)
        raise

    logger.info(
        "Memo updated",
        extra={"memo_id": memo.id, "actor_id": actor.id, "file_count": len(uploaded)},
    )
    return memo


def delete_attachment(memo_id: str, file_name: str, *, actor_id) -> Memo:
    """Detach ``file_name`` from the memo. Workflow state is untouched."""
    repo = _repo()
    memo = repo.find(memo_id)
    actor = resolve_actor(actor_id)
    _require_creator(memo, actor)
    _require_editable(memo, "detach an attachment from")

    attachment = next((a for a in memo.attachments if a.file_name == file_name), None)
    if attachment is None:
        raise NotFoundError("Attachment", file_name)

    memo.attachments.remove(attachment)
    write_audit(
        entity_type="memo",
        entity_id=memo.id,
        action="memo.attachment_detached",
        actor_user_id=actor.id,
        diff={"attachments": {"old": file_name, "new": None}, "file_id": attachment.file_id},
    )
    repo.save(memo)
    logger.info("Memo attachment detached", extra={"memo_id": memo.id, "actor_id": actor.id})
    return memo


def delete_memo(memo_id: str, *, actor_id) -> None:
    """Archive a memo. History is retained; the memo disappears from reads."""
    repo = _repo()
    memo = repo.find(memo_id)
    actor = resolve_actor(actor_id)
    _require_creator(memo, actor)
    if memo.status not in _ARCHIVABLE_STATUSES:
        raise InvalidStateError(memo.status, _ARCHIVABLE_STATUSES, "archive")

    memo.archive()
    write_audit(
        entity_type="memo",
        entity_id=memo.id,
        action="memo.archive",
        actor_user_id=actor.id,
        diff={"status": memo.status},
    )
    repo.save(memo)
    logger.info("Memo archived", extra={"memo_id": memo.id, "actor_id": actor.id})


# ── Reads ──────────────────────────────────────────────────────────────────────


def get_memo(memo_id: str) -> Memo:
    return _repo().find(memo_id)


def list_memos(
    *,
    department: str | None = None,
    recipient_id: int | None = None,
    status: str | None = None,
) -> list[Memo]:
    if status and status not in MEMO_STATUSES:
        raise ValidationError(
            f"status must be one of: {', '.join(MEMO_STATUSES)}", field="status",
        )
    return _repo().list_memos(department=department, recipient_id=recipient_id, status=status)


def list_pending_for_desk_head(department: str | None = None) -> list[Memo]:
    return _repo().list_by_status(STATUS_PENDING_DESK_HEAD, department)


def list_pending_for_leo(department: str | None = None) -> list[Memo]:
    return _repo().list_by_status(STATUS_PENDING_LEO, department)


def get_workflow_history(memo_id: str) -> dict:
    """Return the immutable transition log plus the status it folds to."""
    repo = _repo()
    memo = repo.find(memo_id, include_archived=True)
    entries = repo.list_history(memo.id)
    return {
        "memo_id": memo.id,
        "memo_number": memo.memo_number,
        "status": memo.status,
        "derived_status": replay_status(entries),
        "history": [e.to_dict() for e in entries],
        "total": len(entries),
    }


# ── Workflow operations ────────────────────────────────────────────────────────


def _run_transition(
    memo_id: str,
    action: str,
    actor_id,
    comment: str | None,
    expected_version: int | None,
    expected_status: str | None,
) -> Memo:
    kwargs = dict(comment=comment, expected_version=expected_version, expected_status=expected_status)
    try:
        return transition_memo(memo_id, action, actor_id, **kwargs)
    except ConflictError as lost:
        # A stale caller view is the caller's to resolve; only a write race
        # between our own read and write is re-validated here.
        if expected_version is not None or not current_app.config.get("MEMO_RETRY_ON_CONFLICT", True):
            raise
        logger.warning(
            "Memo transition lost a write race; re-reading and retrying once",
            extra={"memo_id": memo_id, "actor_id": actor_id, "action": action},
        )
        try:
            return transition_memo(memo_id, action, actor_id, **kwargs)
        except (ConflictError, InvalidTransitionError, UnauthorizedActionError) as retry_exc:
            # The winner moved the memo on; what this caller lost is the race.
            raise lost from retry_exc


def _normalize_action(action) -> str:
    action = (action or "").strip().lower()
    return _ACTION_ALIASES.get(action, action)


def submit_to_desk_head(
    memo_id: str,
    *,
    actor_id,
    comment: str | None = None,
    expected_version: int | None = None,
) -> Memo:
    return _run_transition(memo_id, ACTION_SUBMIT_TO_DESK_HEAD, actor_id, comment, expected_version, None)


def desk_head_action(
    memo_id: str,
    action: str,
    *,
    actor_id,
    comment: str | None = None,
    expected_version: int | None = None,
) -> Memo:
    """approve (forward to LEO) | return_to_creator | reject at desk-head review."""
    return _run_transition(
        memo_id, _normalize_action(action), actor_id, comment, expected_version, STATUS_PENDING_DESK_HEAD,
    )


def leo_action(
    memo_id: str,
    action: str,
    *,
    actor_id,
    comment: str | None = None,
    expected_version: int | None = None,
) -> Memo:
    """approve | return_to_creator | reject at LEO review."""
    return _run_transition(
        memo_id, _normalize_action(action), actor_id, comment, expected_version, STATUS_PENDING_LEO,
    )


# ── Documents ──────────────────────────────────────────────────────────────────


def generate_document(memo_id: str, *, preview: bool = False) -> dict:
    return memo_document.render_document(get_memo(memo_id), strict=not preview)


def generate_html_document(memo_id: str, *, preview: bool = False) -> str:
    return memo_document.render_html(get_memo(memo_id), strict=not preview)
