"""
Memo Blueprint — HTTP surface of the memo approval workflow.

Endpoints:
    POST   /api/v1/memos                                  create (JSON, or multipart
                                                          with a ``data`` JSON field
                                                          and ``files`` parts)
    GET    /api/v1/memos                                  ?department=&recipient_id=&status=
    GET    /api/v1/memos/<id>
    PATCH  /api/v1/memos/<id>                             edit content / add files
    DELETE /api/v1/memos/<id>                             archive
    DELETE /api/v1/memos/<id>/attachments/<file_name>

    POST   /api/v1/memos/<id>/submit-to-desk-head
    POST   /api/v1/memos/<id>/desk-head-action            {"action", "comment"}
    POST   /api/v1/memos/<id>/leo-action                  {"action", "comment"}
    GET    /api/v1/memos/<id>/workflow-history

    GET    /api/v1/memos/<id>/document                    ?preview=true
    GET    /api/v1/memos/<id>/document/html               ?preview=true

    GET    /api/v1/memos/pending/desk-head                ?department=
    GET    /api/v1/memos/pending/leo                      ?department=

Layer contract:
    - Blueprint: parse the request, identify the caller, call memo_service,
      serialise the result.
    - NO db.session calls here — all writes are owned by the repository.
    - NO role checks here — authorization lives in the workflow engine and
      memo_service. The caller is identified by ``X-Actor-Id`` (or
      ``actor_id`` in the body); their role is always looked up server-side.
"""

import json
import logging

from flask import Blueprint, Response, jsonify, request
from werkzeug.exceptions import HTTPException

from memodesk.core.exceptions import MemoDeskError, ValidationError
from memodesk.services import memo_service
from memodesk.services.memo_service import UploadedFile
from memodesk.utils.errors import E, api_error
from memodesk.utils.helpers import parse_bool

logger = logging.getLogger(__name__)

memo_bp = Blueprint("memo", __name__, url_prefix="/api/v1")


# ── Error handlers ─────────────────────────────────────────────────────────────


@memo_bp.errorhandler(MemoDeskError)
def _handle_domain_error(error: MemoDeskError):
    return api_error(error.code, str(error), status=error.http_status, details=error.details or None)


@memo_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in memo_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


# ── Request helpers ────────────────────────────────────────────────────────────


def _payload() -> tuple[dict, list[UploadedFile]]:
    """Return (data, files) from a JSON or multipart request."""
    if request.mimetype == "multipart/form-data":
        raw = request.form.get("data")
        if raw:
            try:
                data = json.loads(raw)
            except ValueError as exc:
                raise ValidationError("Field 'data' must be a JSON object", field="data") from exc
        else:
            data = {k: v for k, v in request.form.items()}
        if not isinstance(data, dict):
            raise ValidationError("Field 'data' must be a JSON object", field="data")
        files = [
            UploadedFile(
                file_name=storage.filename or "",
                content=storage.read(),
                mime_type=storage.mimetype or None,
            )
            for storage in request.files.getlist("files")
        ]
        return data, files

    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data, []


def _actor_id(data: dict | None = None):
    actor_id = request.headers.get("X-Actor-Id") or (data or {}).get("actor_id")
    if actor_id in (None, ""):
        raise ValidationError("Actor is required (X-Actor-Id header)", field="actor_id")
    return actor_id


def _expected_version(data: dict | None = None) -> int | None:
    raw = (data or {}).get("expected_version")
    if raw is None:
        raw = request.headers.get("If-Match")
        if raw:
            raw = raw.strip().strip('"').removeprefix("W/").strip('"')
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ValidationError("expected_version must be an integer", field="expected_version") from exc


def _memo_response(memo, status: int = 200):
    resp = jsonify(memo.to_dict())
    resp.status_code = status
    resp.headers["ETag"] = f'"{memo.version}"'
    return resp


def _optional_int(name: str):
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ValidationError(f"{name} must be an integer", field=name) from exc


# ═════════════════════════════════════════════════════════════════════════
# Content  (/api/v1/memos)
# ═════════════════════════════════════════════════════════════════════════


@memo_bp.route("/memos", methods=["POST"])
def create_memo():
    """Create a memo in DRAFT. Attachments are uploaded before the memo exists.

    Returns 201 with the memo, 422 on invalid content, 502 when any upload
    fails (nothing is persisted in that case).
    """
    data, files = _payload()
    memo = memo_service.create_memo(data, files, actor_id=_actor_id(data))
    return _memo_response(memo, 201)


@memo_bp.route("/memos", methods=["GET"])
def list_memos():
    memos = memo_service.list_memos(
        department=request.args.get("department") or None,
        recipient_id=_optional_int("recipient_id"),
        status=(request.args.get("status") or "").upper() or None,
    )
    return jsonify({"items": [m.to_dict() for m in memos], "total": len(memos)})


@memo_bp.route("/memos/pending/desk-head", methods=["GET"])
def pending_desk_head():
    memos = memo_service.list_pending_for_desk_head(request.args.get("department") or None)
    return jsonify({"items": [m.to_dict() for m in memos], "total": len(memos)})


@memo_bp.route("/memos/pending/leo", methods=["GET"])
def pending_leo():
    memos = memo_service.list_pending_for_leo(request.args.get("department") or None)
    return jsonify({"items": [m.to_dict() for m in memos], "total": len(memos)})


@memo_bp.route("/memos/<memo_id>", methods=["GET"])
def get_memo(memo_id):
    return _memo_response(memo_service.get_memo(memo_id))


@memo_bp.route("/memos/<memo_id>", methods=["PATCH"])
def update_memo(memo_id):
    """Edit content or add attachments. Only in DRAFT / RETURNED_TO_CREATOR."""
    data, files = _payload()
    memo = memo_service.update_memo(
        memo_id,
        data,
        files,
        actor_id=_actor_id(data),
        expected_version=_expected_version(data),
    )
    return _memo_response(memo)


@memo_bp.route("/memos/<memo_id>", methods=["DELETE"])
def delete_memo(memo_id):
    data = request.get_json(silent=True) or {}
    memo_service.delete_memo(memo_id, actor_id=_actor_id(data))
    return "", 204


@memo_bp.route("/memos/<memo_id>/attachments/<path:file_name>", methods=["DELETE"])
def delete_attachment(memo_id, file_name):
    data = request.get_json(silent=True) or {}
    memo = memo_service.delete_attachment(memo_id, file_name, actor_id=_actor_id(data))
    return _memo_response(memo)


# ═════════════════════════════════════════════════════════════════════════
# Workflow
# ═════════════════════════════════════════════════════════════════════════


@memo_bp.route("/memos/<memo_id>/submit-to-desk-head", methods=["POST"])
def submit_to_desk_head(memo_id):
    data = request.get_json(silent=True) or {}
    memo = memo_service.submit_to_desk_head(
        memo_id,
        actor_id=_actor_id(data),
        comment=data.get("comment"),
        expected_version=_expected_version(data),
    )
    return _memo_response(memo)


@memo_bp.route("/memos/<memo_id>/desk-head-action", methods=["POST"])
def desk_head_action(memo_id):
    """Body: {"action": "approve|submit_to_leo|return_to_creator|reject", "comment": "..."}"""
    data = request.get_json(silent=True) or {}
    memo = memo_service.desk_head_action(
        memo_id,
        data.get("action"),
        actor_id=_actor_id(data),
        comment=data.get("comment"),
        expected_version=_expected_version(data),
    )
    return _memo_response(memo)


@memo_bp.route("/memos/<memo_id>/leo-action", methods=["POST"])
def leo_action(memo_id):
    """Body: {"action": "approve|return_to_creator|reject", "comment": "..."}"""
    data = request.get_json(silent=True) or {}
    memo = memo_service.leo_action(
        memo_id,
        data.get("action"),
        actor_id=_actor_id(data),
        comment=data.get("comment"),
        expected_version=_expected_version(data),
    )
    return _memo_response(memo)


@memo_bp.route("/memos/<memo_id>/workflow-history", methods=["GET"])
def workflow_history(memo_id):
    return jsonify(memo_service.get_workflow_history(memo_id))


# ═════════════════════════════════════════════════════════════════════════
# Documents
# ═════════════════════════════════════════════════════════════════════════


@memo_bp.route("/memos/<memo_id>/document", methods=["GET"])
def memo_document(memo_id):
    preview = parse_bool(request.args.get("preview"))
    return jsonify(memo_service.generate_document(memo_id, preview=preview))


@memo_bp.route("/memos/<memo_id>/document/html", methods=["GET"])
def memo_document_html(memo_id):
    preview = parse_bool(request.args.get("preview"))
    html = memo_service.generate_html_document(memo_id, preview=preview)
    return Response(html, mimetype="text/html")
