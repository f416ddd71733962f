"""Standardised API error responses.

Usage
-----
    from memodesk.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Memo not found")
    return api_error(E.VALIDATION_REQUIRED, "title is required", details={"field": "title"})
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Validation – HTTP 400 / 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Workflow / state – HTTP 409
    INVALID_TRANSITION = "ERR_INVALID_TRANSITION"
    INVALID_STATE = "ERR_INVALID_STATE"
    CONFLICT_VERSION = "ERR_CONFLICT_VERSION"
    NOT_READY = "ERR_NOT_READY"

    # Permissions – HTTP 403
    FORBIDDEN = "ERR_FORBIDDEN"

    # Upstream – HTTP 502
    ATTACHMENT_UPLOAD = "ERR_ATTACHMENT_UPLOAD"

    # Server – HTTP 500
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 422,
    E.NOT_FOUND: 404,
    E.INVALID_TRANSITION: 409,
    E.INVALID_STATE: 409,
    E.CONFLICT_VERSION: 409,
    E.NOT_READY: 409,
    E.FORBIDDEN: 403,
    E.ATTACHMENT_UPLOAD: 502,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (current status, required role, field).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status
