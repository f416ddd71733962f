"""Attachment store adapters.

The memo service treats file storage as an external collaborator with a
two-call contract:

    upload(content, metadata) -> file_id
    delete(file_id)           -> None   (idempotent)

Adapters (Strategy pattern):
  - LocalAttachmentStore     — files under ATTACHMENT_STORAGE_DIR
  - HttpAttachmentStore      — remote upload service over HTTP (``requests``)
  - InMemoryAttachmentStore  — process-local dict, used by the testing config

Adapters raise ``AttachmentStoreError`` on failure. They never touch the
database session: uploads run on worker threads.

Usage:
    store = build_attachment_store(app.config)
    file_id = store.upload(b"...", {"file_name": "brief.pdf", "mime_type": "application/pdf"})
"""

from __future__ import annotations

import logging
import os
import threading
import uuid
from abc import ABC, abstractmethod

import requests
from werkzeug.utils import secure_filename

logger = logging.getLogger(__name__)


class AttachmentStoreError(Exception):
    """Raised when the store cannot complete an upload or delete."""


# ── Adapter interface ────────────────────────────────────────────────────────


class AttachmentStore(ABC):
    """Abstract adapter — every storage backend implements this interface."""

    @abstractmethod
    def upload(self, content: bytes, metadata: dict) -> str:
        """Persist ``content`` and return a stable file identifier."""

    @abstractmethod
    def delete(self, file_id: str) -> None:
        """Remove a stored file. Deleting an unknown id is not an error."""

    @staticmethod
    def _new_file_id(metadata: dict) -> str:
        name = secure_filename(metadata.get("file_name") or "") or "file"
        return f"{uuid.uuid4().hex}_{name}"


class LocalAttachmentStore(AttachmentStore):
    """Filesystem-backed store; file ids are names inside ``root``."""

    def __init__(self, root: str) -> None:
        self.root = root

    def _path(self, file_id: str) -> str:
        safe = secure_filename(file_id)
        if not safe or safe != file_id:
            raise AttachmentStoreError(f"Invalid file id {file_id!r}")
        return os.path.join(self.root, safe)

    def upload(self, content: bytes, metadata: dict) -> str:
        os.makedirs(self.root, exist_ok=True)
        file_id = self._new_file_id(metadata)
        try:
            with open(self._path(file_id), "wb") as fh:
                fh.write(content)
        except OSError as exc:
            raise AttachmentStoreError(str(exc)) from exc
        return file_id

    def delete(self, file_id: str) -> None:
        try:
            os.remove(self._path(file_id))
        except FileNotFoundError:
            return
        except OSError as exc:
            raise AttachmentStoreError(str(exc)) from exc


class HttpAttachmentStore(AttachmentStore):
    """Remote upload service.

    POST {base_url}/upload           multipart ``file`` → {"file_id": "..."}
    DELETE {base_url}/files/<id>     404 is treated as already deleted

    Every call carries ``timeout``; no retries here, retry is caller policy.
    """

    def __init__(self, base_url: str, timeout: float = 30, session: requests.Session | None = None) -> None:
        if not base_url:
            raise AttachmentStoreError("ATTACHMENT_SERVICE_URL is not configured")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def upload(self, content: bytes, metadata: dict) -> str:
        file_name = metadata.get("file_name") or "file"
        try:
            resp = self.session.post(
                f"{self.base_url}/upload",
                files={"file": (file_name, content, metadata.get("mime_type") or "application/octet-stream")},
                data={"module": "MEMO"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise AttachmentStoreError(f"upload request failed: {exc}") from exc
        if not resp.ok:
            raise AttachmentStoreError(f"upload rejected: HTTP {resp.status_code}")
        try:
            payload = resp.json()
        except ValueError as exc:
            raise AttachmentStoreError("upload response is not JSON") from exc
        file_id = payload.get("file_id") if isinstance(payload, dict) else None
        if not file_id:
            raise AttachmentStoreError("upload response has no file_id")
        return str(file_id)

    def delete(self, file_id: str) -> None:
        try:
            resp = self.session.delete(f"{self.base_url}/files/{file_id}", timeout=self.timeout)
        except requests.RequestException as exc:
            raise AttachmentStoreError(f"delete request failed: {exc}") from exc
        if resp.status_code == 404:
            return
        if not resp.ok:
            raise AttachmentStoreError(f"delete rejected: HTTP {resp.status_code}")


class InMemoryAttachmentStore(AttachmentStore):
    """Process-local store for tests and throwaway environments."""

    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def upload(self, content: bytes, metadata: dict) -> str:
        file_id = self._new_file_id(metadata)
        with self._lock:
            self.files[file_id] = content
        return file_id

    def delete(self, file_id: str) -> None:
        with self._lock:
            self.files.pop(file_id, None)


# ── Factory ──────────────────────────────────────────────────────────────────


def build_attachment_store(config) -> AttachmentStore:
    """Instantiate the adapter named by ``ATTACHMENT_STORE``."""
    kind = (config.get("ATTACHMENT_STORE") or "local").lower()
    if kind == "local":
        return LocalAttachmentStore(config["ATTACHMENT_STORAGE_DIR"])
    if kind == "http":
        return HttpAttachmentStore(
            config.get("ATTACHMENT_SERVICE_URL"),
            timeout=config.get("ATTACHMENT_TIMEOUT_SECONDS", 30),
        )
    if kind == "memory":
        return InMemoryAttachmentStore()
    raise AttachmentStoreError(f"Unknown ATTACHMENT_STORE {kind!r}")
