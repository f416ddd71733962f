"""
Memo HTTP API tests (Flask test client).

Tests cover:
  - create via JSON and multipart, including the upload failure path
  - error payloads: {"error", "code", "details"} with the mapped status
  - workflow endpoints, If-Match / expected_version
  - documents (JSON + HTML), history, pending queues, health
"""
import io
import json

import pytest

BASE = "/api/v1/memos"


def _hdr(actor):
    return {"X-Actor-Id": str(actor.id)}


@pytest.fixture()
def created(client, creator, store, memo_data):
    res = client.post(BASE, json=memo_data(), headers=_hdr(creator))
    assert res.status_code == 201
    return res.get_json()


def _approve(client, memo_id, creator, desk_head, leo):
    assert client.post(f"{BASE}/{memo_id}/submit-to-desk-head", headers=_hdr(creator)).status_code == 200
    assert client.post(
        f"{BASE}/{memo_id}/desk-head-action", json={"action": "approve"}, headers=_hdr(desk_head),
    ).status_code == 200
    res = client.post(f"{BASE}/{memo_id}/leo-action", json={"action": "approve"}, headers=_hdr(leo))
    assert res.status_code == 200
    return res.get_json()


# ═════════════════════════════════════════════════════════════════════════
# CREATE / READ
# ═════════════════════════════════════════════════════════════════════════

class TestCreateApi:
    def test_create_json(self, created, creator):
        assert created["status"] == "DRAFT"
        assert created["creator_id"] == creator.id
        assert created["memo_number"] == "MEMO-2026-0001"
        assert created["version"] == 1

    def test_create_sets_etag(self, client, creator, store, memo_data):
        res = client.post(BASE, json=memo_data(), headers=_hdr(creator))
        assert res.headers["ETag"] == '"1"'

    def test_actor_in_body(self, client, creator, store, memo_data):
        res = client.post(BASE, json=memo_data(actor_id=creator.id))
        assert res.status_code == 201

    def test_missing_actor(self, client, store, memo_data):
        res = client.post(BASE, json=memo_data())
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_INVALID"
        assert body["details"]["field"] == "actor_id"

    def test_validation_error_payload(self, client, creator, store):
        res = client.post(BASE, json={"title": "t"}, headers=_hdr(creator))
        assert res.status_code == 422
        body = res.get_json()
        assert "error" in body
        assert "department" in body["details"]["fields"]

    def test_create_multipart(self, client, creator, store, memo_data):
        res = client.post(
            BASE,
            data={
                "data": json.dumps(memo_data()),
                "files": [
                    (io.BytesIO(b"alpha"), "alpha.txt"),
                    (io.BytesIO(b"beta"), "beta.txt"),
                ],
            },
            headers=_hdr(creator),
            content_type="multipart/form-data",
        )
        assert res.status_code == 201
        body = res.get_json()
        assert [a["file_name"] for a in body["attachments"]] == ["alpha.txt", "beta.txt"]
        assert len(store.files) == 2

    def test_create_multipart_upload_failure(self, client, creator, failing_store, memo_data):
        flaky = failing_store(2)
        res = client.post(
            BASE,
            data={
                "data": json.dumps(memo_data()),
                "files": [
                    (io.BytesIO(b"1"), "one.txt"),
                    (io.BytesIO(b"2"), "two.txt"),
                    (io.BytesIO(b"3"), "three.txt"),
                ],
            },
            headers=_hdr(creator),
            content_type="multipart/form-data",
        )
        assert res.status_code == 502
        assert res.get_json()["code"] == "ERR_ATTACHMENT_UPLOAD"
        assert flaky.files == {}
        assert client.get(BASE).get_json()["total"] == 0

    def test_get_and_list(self, client, created):
        res = client.get(f"{BASE}/{created['id']}")
        assert res.status_code == 200
        assert res.get_json()["title"] == created["title"]

        listing = client.get(f"{BASE}?department=Operations&status=draft").get_json()
        assert listing["total"] == 1
        assert client.get(f"{BASE}?department=Finance").get_json()["total"] == 0

    def test_get_missing(self, client):
        res = client.get(f"{BASE}/does-not-exist")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_bad_status_filter(self, client):
        assert client.get(f"{BASE}?status=LOST").status_code == 422


# ═════════════════════════════════════════════════════════════════════════
# EDIT / ARCHIVE
# ═════════════════════════════════════════════════════════════════════════

class TestEditApi:
    def test_patch_with_if_match(self, client, created, creator):
        res = client.patch(
            f"{BASE}/{created['id']}",
            json={"title": "New title"},
            headers={**_hdr(creator), "If-Match": '"1"'},
        )
        assert res.status_code == 200
        assert res.get_json()["title"] == "New title"
        assert res.headers["ETag"] == '"2"'

    def test_patch_stale_version(self, client, created, creator):
        client.patch(f"{BASE}/{created['id']}", json={"title": "A"}, headers=_hdr(creator))
        res = client.patch(
            f"{BASE}/{created['id']}",
            json={"title": "B", "expected_version": 1},
            headers=_hdr(creator),
        )
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_CONFLICT_VERSION"
        assert body["details"]["current_version"] == 2

    def test_patch_while_pending(self, client, created, creator):
        client.post(f"{BASE}/{created['id']}/submit-to-desk-head", headers=_hdr(creator))
        res = client.patch(f"{BASE}/{created['id']}", json={"title": "X"}, headers=_hdr(creator))
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_INVALID_STATE"

    def test_patch_by_other(self, client, created, other_staff):
        res = client.patch(f"{BASE}/{created['id']}", json={"title": "X"}, headers=_hdr(other_staff))
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_delete_attachment(self, client, creator, store, memo_data):
        res = client.post(
            BASE,
            data={"data": json.dumps(memo_data()), "files": [(io.BytesIO(b"x"), "x.txt")]},
            headers=_hdr(creator),
            content_type="multipart/form-data",
        )
        memo_id = res.get_json()["id"]
        res = client.delete(f"{BASE}/{memo_id}/attachments/x.txt", headers=_hdr(creator))
        assert res.status_code == 200
        assert res.get_json()["attachments"] == []
        res = client.delete(f"{BASE}/{memo_id}/attachments/x.txt", headers=_hdr(creator))
        assert res.status_code == 404

    def test_archive(self, client, created, creator):
        res = client.delete(f"{BASE}/{created['id']}", headers=_hdr(creator))
        assert res.status_code == 204
        assert client.get(f"{BASE}/{created['id']}").status_code == 404


# ═════════════════════════════════════════════════════════════════════════
# WORKFLOW
# ═════════════════════════════════════════════════════════════════════════

class TestWorkflowApi:
    def test_full_approval_and_document(self, client, created, creator, desk_head, leo):
        approved = _approve(client, created["id"], creator, desk_head, leo)
        assert approved["status"] == "APPROVED"

        doc = client.get(f"{BASE}/{created['id']}/document")
        assert doc.status_code == 200
        assert doc.get_json()["document_id"].startswith("DOC-")

        html = client.get(f"{BASE}/{created['id']}/document/html")
        assert html.status_code == 200
        assert html.mimetype == "text/html"
        assert created["memo_number"] in html.get_data(as_text=True)

    def test_document_not_ready(self, client, created):
        res = client.get(f"{BASE}/{created['id']}/document")
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_NOT_READY"
        preview = client.get(f"{BASE}/{created['id']}/document?preview=true")
        assert preview.status_code == 200
        assert preview.get_json()["is_preview"] is True

    def test_return_requires_comment(self, client, created, creator, desk_head):
        client.post(f"{BASE}/{created['id']}/submit-to-desk-head", headers=_hdr(creator))
        res = client.post(
            f"{BASE}/{created['id']}/desk-head-action",
            json={"action": "return_to_creator", "comment": "  "},
            headers=_hdr(desk_head),
        )
        assert res.status_code == 422
        assert res.get_json()["details"]["field"] == "comment"

    def test_wrong_role(self, client, created, creator, leo):
        client.post(f"{BASE}/{created['id']}/submit-to-desk-head", headers=_hdr(creator))
        res = client.post(
            f"{BASE}/{created['id']}/desk-head-action",
            json={"action": "approve"},
            headers=_hdr(leo),
        )
        assert res.status_code == 403
        details = res.get_json()["details"]
        assert details["required_role"] == "DESK_HEAD"
        assert details["actor_role"] == "LEO"

    def test_role_in_body_is_ignored(self, client, created, other_staff):
        res = client.post(
            f"{BASE}/{created['id']}/submit-to-desk-head",
            json={"role": "CREATOR", "actor_role": "LEO"},
            headers=_hdr(other_staff),
        )
        assert res.status_code == 403

    def test_invalid_transition(self, client, created, leo):
        res = client.post(
            f"{BASE}/{created['id']}/leo-action", json={"action": "approve"}, headers=_hdr(leo),
        )
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_INVALID_TRANSITION"

    def test_history_and_queues(self, client, created, creator, desk_head):
        client.post(f"{BASE}/{created['id']}/submit-to-desk-head", headers=_hdr(creator))
        queue = client.get(f"{BASE}/pending/desk-head").get_json()
        assert [m["id"] for m in queue["items"]] == [created["id"]]

        client.post(
            f"{BASE}/{created['id']}/desk-head-action",
            json={"action": "submit_to_leo"},
            headers=_hdr(desk_head),
        )
        assert client.get(f"{BASE}/pending/desk-head").get_json()["total"] == 0
        assert client.get(f"{BASE}/pending/leo").get_json()["total"] == 1

        history = client.get(f"{BASE}/{created['id']}/workflow-history").get_json()
        assert [h["action"] for h in history["history"]] == ["create", "submit_to_desk_head", "approve"]
        assert history["derived_status"] == history["status"] == "PENDING_LEO"


class TestHealth:
    def test_health(self, client):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"

    def test_request_id_echoed_and_duration_reported(self, client, created):
        res = client.get(f"{BASE}/{created['id']}", headers={"X-Request-ID": "trace-42"})
        assert res.headers["X-Request-ID"] == "trace-42"
        assert float(res.headers["X-Request-Duration-Ms"]) >= 0

    def test_request_id_generated(self, client):
        res = client.get("/api/v1/health")
        assert len(res.headers["X-Request-ID"]) == 12
