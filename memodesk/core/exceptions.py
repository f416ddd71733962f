"""
Memo Desk exception hierarchy.

Every service raises one of these types; the memo blueprint registers a
single handler against ``MemoDeskError`` and renders ``code``,
``http_status`` and ``details`` without parsing message text.

Usage:
    from memodesk.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Memo", resource_id=memo_id)
    raise ValidationError("comment required", field="comment")
"""

from __future__ import annotations

from memodesk.utils.errors import E


class MemoDeskError(Exception):
    """Base class carrying a machine-readable code and structured details."""

    code = E.INTERNAL
    http_status = 500

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class NotFoundError(MemoDeskError):
    """Raised when a memo, attachment or actor does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Memo", "Attachment").
        resource_id: The identifier that was looked up.
    """

    code = E.NOT_FOUND
    http_status = 404

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg, {"resource": resource, "resource_id": resource_id})


class ValidationError(MemoDeskError):
    """Raised when input is well-formed but violates a business rule.

    Args:
        message: Human-readable explanation of what failed.
        field: Name of the offending field, when there is exactly one.
        details: Optional field-level breakdown; keys are field names.
    """

    code = E.VALIDATION_INVALID
    http_status = 422

    def __init__(self, message: str, field: str | None = None, details: dict | None = None) -> None:
        self.field = field
        details = dict(details or {})
        if field is not None:
            details.setdefault("field", field)
        super().__init__(message, details)


class InvalidTransitionError(MemoDeskError):
    """Raised when an action is not allowed from the memo's current status."""

    code = E.INVALID_TRANSITION
    http_status = 409

    def __init__(self, current_status: str | None, action: str, reason: str | None = None) -> None:
        self.current_status = current_status
        self.action = action
        self.reason = reason
        msg = f"Cannot '{action}' memo in status {current_status}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, {"current_status": current_status, "action": action})


class UnauthorizedActionError(MemoDeskError):
    """Raised when the acting user lacks the role the memo's stage requires."""

    code = E.FORBIDDEN
    http_status = 403

    def __init__(
        self,
        required_role: str | None,
        actor_role: str | None,
        current_status: str,
        actor_id: int | None = None,
    ) -> None:
        self.required_role = required_role
        self.actor_role = actor_role
        self.current_status = current_status
        self.actor_id = actor_id
        super().__init__(
            f"Actor {actor_id} (role={actor_role}) may not act on a memo in "
            f"{current_status}; requires {required_role or 'no role (closed stage)'}",
            {
                "required_role": required_role,
                "actor_role": actor_role,
                "current_status": current_status,
                "actor_id": actor_id,
            },
        )


class InvalidStateError(MemoDeskError):
    """Raised when memo content is mutated outside the editable statuses."""

    code = E.INVALID_STATE
    http_status = 409

    def __init__(self, current_status: str, allowed_statuses, operation: str) -> None:
        self.current_status = current_status
        self.allowed_statuses = sorted(allowed_statuses)
        self.operation = operation
        super().__init__(
            f"Cannot {operation} memo in status {current_status}; "
            f"allowed in {', '.join(self.allowed_statuses)}",
            {
                "current_status": current_status,
                "allowed_statuses": self.allowed_statuses,
                "operation": operation,
            },
        )


class ConflictError(MemoDeskError):
    """Raised when a concurrent writer advanced the memo past the version read.

    The caller is expected to re-read the memo and retry.
    """

    code = E.CONFLICT_VERSION
    http_status = 409

    def __init__(
        self,
        resource: str,
        resource_id: str,
        expected_version: int | None = None,
        current_version: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.expected_version = expected_version
        self.current_version = current_version
        msg = f"{resource} id={resource_id} was modified concurrently"
        if expected_version is not None:
            msg += f" (expected version {expected_version}, found {current_version})"
        super().__init__(
            msg,
            {
                "resource": resource,
                "resource_id": resource_id,
                "expected_version": expected_version,
                "current_version": current_version,
            },
        )


class NotReadyError(MemoDeskError):
    """Raised when a final document is requested for a memo not yet APPROVED."""

    code = E.NOT_READY
    http_status = 409

    def __init__(self, current_status: str, required_status: str = "APPROVED") -> None:
        self.current_status = current_status
        self.required_status = required_status
        super().__init__(
            f"Document not available: memo is {current_status}, requires {required_status}",
            {"current_status": current_status, "required_status": required_status},
        )


class AttachmentUploadError(MemoDeskError):
    """Raised when any attachment upload fails; the whole operation is aborted."""

    code = E.ATTACHMENT_UPLOAD
    http_status = 502

    def __init__(self, file_name: str, reason: str) -> None:
        self.file_name = file_name
        self.reason = reason
        super().__init__(
            f"Upload of '{file_name}' failed: {reason}",
            {"file_name": file_name},
        )
