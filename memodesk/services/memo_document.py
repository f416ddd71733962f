"""
Memo document renderer.

Projects a memo into a printable document:
  - render_document(memo, strict=True) → structured dict
  - render_html(memo, strict=True)     → fixed HTML serialisation of that dict

Rendering is a pure function of the memo's persisted state: no clock reads,
no session writes, no network calls. Two renders of an unchanged memo are
byte-identical, which is why ``generated_at`` is the approval time (or the
last update time for a preview) rather than "now".

Strict mode is the default and requires APPROVED. Preview mode renders any
status and marks the result ``is_preview``.
"""

from __future__ import annotations

import hashlib

from jinja2 import Environment, select_autoescape

from memodesk.core.exceptions import NotReadyError
from memodesk.models.memo import STATUS_APPROVED, Memo, _as_utc

TEMPLATE_BY_TYPE = {
    "GENERAL": "memo-general",
    "INSTRUCTIONAL": "memo-instructional",
    "INFORMATIONAL": "memo-informational",
}

_HTML_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>{{ doc.memo_number }} {{ doc.title }}</title>
<style>
body { font-family: "Times New Roman", serif; margin: 2.5cm; }
.memo-header { border-bottom: 2px solid #000; margin-bottom: 1em; }
.memo-body { white-space: pre-wrap; line-height: 1.5; }
.memo-signature { margin-top: 3em; }
.memo-preview { color: #b00; font-weight: bold; text-transform: uppercase; }
</style>
</head>
<body class="{{ doc.template }}">
{% if doc.is_preview %}<p class="memo-preview">Preview - not a final document</p>
{% endif %}<div class="memo-header">
<p><strong>Document ID:</strong> {{ doc.document_id }}</p>
<p><strong>Memo No:</strong> {{ doc.memo_number }}</p>
<p><strong>Date:</strong> {{ doc.date }}</p>
<p><strong>Department:</strong> {{ doc.department }}</p>
<p><strong>Priority:</strong> {{ doc.priority_level }}</p>
<h1>{{ doc.title }}</h1>
</div>
<div class="memo-body">{{ doc.content }}</div>
<div class="memo-signature">
{% for line in doc.signature.splitlines() %}<p>{{ line }}</p>
{% endfor %}</div>
<footer><small>Generated {{ doc.generated_at }}</small></footer>
</body>
</html>
"""

_env = Environment(autoescape=select_autoescape(default=True, default_for_string=True))
_template = _env.from_string(_HTML_TEMPLATE)


def _digest(*parts) -> str:
    raw = ":".join(str(p) for p in parts)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16].upper()


def _signature_block(memo: Memo, final: bool) -> str:
    lines = [memo.signature] if memo.signature else []
    if final and memo.leo_reviewer_name:
        lines.append(f"Approved by {memo.leo_reviewer_name}")
    return "\n".join(lines)


def render_document(memo: Memo, *, strict: bool = True) -> dict:
    """
    Build the structured document for ``memo``.

    Args:
        memo: Memo to render (any status when strict=False).
        strict: Require APPROVED status.

    Returns:
        dict with keys document_id, memo_number, title, content, date,
        signature, department, template, generated_at, priority_level,
        is_preview.

    Raises:
        NotReadyError: strict mode on a memo that is not APPROVED.
    """
    final = memo.status == STATUS_APPROVED
    if strict and not final:
        raise NotReadyError(memo.status)

    if final:
        approved_at = _as_utc(memo.approved_at)
        document_id = f"DOC-{_digest(memo.id, approved_at.isoformat())}"
        generated_at = approved_at.isoformat()
    else:
        document_id = f"PREVIEW-{_digest(memo.id, memo.version)}"
        updated_at = _as_utc(memo.updated_at)
        generated_at = updated_at.isoformat() if updated_at else None

    return {
        "document_id": document_id,
        "memo_number": memo.memo_number,
        "title": memo.title,
        "content": memo.body,
        "date": memo.date_of_issue.isoformat() if memo.date_of_issue else None,
        "signature": _signature_block(memo, final),
        "department": memo.department,
        "template": TEMPLATE_BY_TYPE.get(memo.memo_type, TEMPLATE_BY_TYPE["GENERAL"]),
        "generated_at": generated_at,
        "priority_level": memo.priority_level,
        "is_preview": not final,
    }


def render_html(memo: Memo, *, strict: bool = True) -> str:
    """Serialise the structured document as print-ready HTML."""
    return _template.render(doc=render_document(memo, strict=strict))
