"""
End-to-end tests of the document and download request endpoints.
"""

import pytest
from fastapi.testclient import TestClient

from xdocs.main import create_app

from conftest import ADMIN_PASSWORD, PASSWORD, login, upload


@pytest.fixture
def alice(api_user):
    return api_user("alice")


@pytest.fixture
def bob(api_user):
    return api_user("bob")


@pytest.fixture
def carol(api_user):
    return api_user("carol")


APPLICANT = {
    "applicant_name": "Bob Builder",
    "applicant_company": "Builders Ltd",
    "applicant_contact": "bob@builders.example",
    "message": "site survey",
}


def request_download(client, headers, document_id, **overrides):
    body = dict(APPLICANT, **overrides)
    return client.post(f"/documents/{document_id}/download-requests", json=body, headers=headers)


def test_health_check(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_endpoints_require_a_bearer_token(client):
    response = client.get("/documents")
    assert response.status_code == 401
    assert response.json() == {"detail": "missing authorization", "code": "unauthenticated"}
    assert response.headers["WWW-Authenticate"] == "Bearer"

    response = client.get("/documents", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
    assert response.json()["code"] == "unauthenticated"


def test_upload_and_read_back(client, alice):
    _, headers = alice
    created = upload(client, headers, notes="quarterly", permission="private")

    assert created["name"] == "report.pdf"
    assert created["content_type"] == "application/pdf"
    assert created["notes"] == "quarterly"
    assert created["owner_name"] == "alice"
    assert created["can_edit"] is True

    response = client.get(f"/documents/{created['id']}", headers=headers)
    assert response.status_code == 200
    assert response.json()["id"] == created["id"]

    listed = client.get("/documents", headers=headers).json()
    assert [d["id"] for d in listed] == [created["id"]]


def test_upload_rejects_empty_file(client, alice):
    _, headers = alice
    response = client.post(
        "/documents",
        files={"file": ("empty.txt", b"", "text/plain")},
        data={"permission": "public"},
        headers=headers,
    )
    assert response.status_code == 400
    assert response.json()["code"] == "validation_failed"


def test_upload_with_specific_users(client, alice, bob, carol):
    _, alice_headers = alice
    bob_id, bob_headers = bob
    _, carol_headers = carol

    doc = upload(client, alice_headers, permission="specific", allowed_users=f"{bob_id}, {bob_id}")
    assert doc["allowed_users"] == [bob_id]

    assert client.get(f"/documents/{doc['id']}", headers=bob_headers).status_code == 200
    assert client.get(f"/documents/{doc['id']}", headers=carol_headers).status_code == 404


def test_scenario_private_document_is_hidden_not_approval_gated(client, alice, bob):
    _, alice_headers = alice
    _, bob_headers = bob
    doc = upload(client, alice_headers, permission="private")

    response = client.get(f"/documents/{doc['id']}/download", headers=bob_headers)
    assert response.status_code == 404
    assert response.json()["code"] == "not_found"

    response = request_download(client, bob_headers, doc["id"])
    assert response.status_code == 404

    assert client.get("/documents", headers=bob_headers).json() == []


def test_scenario_private_document_forbidden_when_not_hidden(test_settings, clock):
    settings = test_settings.model_copy(update={"HIDE_UNVIEWABLE_DOCUMENTS": False})
    with TestClient(create_app(settings, clock=clock)) as client:
        owner_headers = _register_active(client, "dora")
        viewer_headers = _register_active(client, "eve")
        doc = upload(client, owner_headers, permission="private")

        response = client.get(f"/documents/{doc['id']}/download", headers=viewer_headers)
        assert response.status_code == 403
        assert response.json() == {"detail": "access denied", "code": "forbidden"}


def _register_active(client, username):
    admin = login(client, "admin", ADMIN_PASSWORD)
    response = client.post("/users", json={"username": username, "password": PASSWORD}, headers=admin)
    assert response.status_code == 201
    return login(client, username, PASSWORD)


def test_scenario_approval_grants_download(client, alice, bob, clock):
    alice_id, alice_headers = alice
    bob_id, bob_headers = bob
    doc = upload(client, alice_headers, permission="public")

    response = client.get(f"/documents/{doc['id']}/download", headers=bob_headers)
    assert response.status_code == 403
    assert response.json() == {"detail": "download approval required", "code": "approval_required"}

    response = request_download(client, bob_headers, doc["id"])
    assert response.status_code == 201
    pending = response.json()
    assert pending["status"] == "pending"
    assert pending["requester_id"] == bob_id
    assert pending["requester_name"] == "bob"
    assert pending["expires_at"] is None

    queue = client.get("/download-requests/pending", headers=alice_headers).json()
    assert [r["id"] for r in queue] == [pending["id"]]
    assert client.get("/download-requests/pending", headers=bob_headers).json() == []

    response = client.post(f"/download-requests/{pending['id']}/approve", headers=alice_headers)
    assert response.status_code == 200
    approved = response.json()
    assert approved["status"] == "approved"
    assert approved["approver_id"] == alice_id
    assert approved["expires_at"] is not None
    assert approved["active"] is True

    response = client.get(f"/documents/{doc['id']}/download", headers=bob_headers)
    assert response.status_code == 200
    assert response.content == b"%PDF-1.4 quarterly numbers"
    assert response.headers["content-type"] == "application/pdf"
    assert response.headers["content-disposition"] == "attachment; filename*=UTF-8''report.pdf"

    response = request_download(client, bob_headers, doc["id"])
    assert response.status_code == 409
    assert response.json()["code"] == "already_authorized"

    clock.advance(hours=24)
    response = client.get(f"/documents/{doc['id']}/download", headers=bob_headers)
    assert response.status_code == 403
    assert response.json()["code"] == "approval_required"


def test_scenario_rejection_keeps_download_closed(client, alice, bob, clock):
    _, alice_headers = alice
    _, bob_headers = bob
    doc = upload(client, alice_headers, permission="public")

    first = request_download(client, bob_headers, doc["id"]).json()
    response = client.post(f"/download-requests/{first['id']}/reject", headers=alice_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "rejected"
    assert response.json()["rejected_at"] is not None

    response = client.get(f"/documents/{doc['id']}/download", headers=bob_headers)
    assert response.json()["code"] == "approval_required"

    response = client.post(f"/download-requests/{first['id']}/approve", headers=alice_headers)
    assert response.status_code == 409
    assert response.json()["code"] == "invalid_transition"

    clock.advance(minutes=1)
    second = request_download(client, bob_headers, doc["id"])
    assert second.status_code == 201

    mine = client.get("/download-requests/mine", headers=bob_headers).json()
    assert [(r["id"], r["status"]) for r in mine] == [
        (second.json()["id"], "pending"),
        (first["id"], "rejected"),
    ]


def test_scenario_specific_document_with_preauthorization(client, alice, bob, carol):
    _, alice_headers = alice
    _, bob_headers = bob
    carol_id, carol_headers = carol
    doc = upload(
        client,
        alice_headers,
        permission="specific",
        allowed_users=carol_id,
        download_preauthorized=True,
    )

    response = client.get(f"/documents/{doc['id']}/download", headers=bob_headers)
    missing = client.get("/documents/no-such-document/download", headers=bob_headers)
    assert response.status_code == missing.status_code == 404
    assert response.json() == missing.json()

    response = client.get(f"/documents/{doc['id']}/download", headers=carol_headers)
    assert response.status_code == 200
    assert client.get("/download-requests/mine", headers=carol_headers).json() == []


def test_scenario_second_pending_request_is_duplicate(client, alice, bob):
    _, alice_headers = alice
    _, bob_headers = bob
    doc = upload(client, alice_headers)

    assert request_download(client, bob_headers, doc["id"]).status_code == 201
    response = request_download(client, bob_headers, doc["id"], message="again")
    assert response.status_code == 409
    assert response.json()["code"] == "duplicate_request"


def test_scenario_approve_after_delete_reports_missing_document(client, admin_headers, alice, bob):
    _, alice_headers = alice
    _, bob_headers = bob
    doc = upload(client, alice_headers)
    pending = request_download(client, bob_headers, doc["id"]).json()

    response = client.delete(f"/documents/{doc['id']}", headers=admin_headers)
    assert response.status_code == 204

    assert client.get("/download-requests/mine", headers=bob_headers).json() == []
    response = client.post(f"/download-requests/{pending['id']}/approve", headers=alice_headers)
    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


def test_request_body_is_validated(client, alice, bob):
    _, alice_headers = alice
    _, bob_headers = bob
    doc = upload(client, alice_headers)

    response = request_download(client, bob_headers, doc["id"], applicant_company="   ")
    assert response.status_code == 422


def test_only_owner_or_admin_decides(client, admin_headers, alice, bob, carol):
    _, alice_headers = alice
    _, bob_headers = bob
    _, carol_headers = carol
    doc = upload(client, alice_headers)
    pending = request_download(client, bob_headers, doc["id"]).json()

    response = client.post(f"/download-requests/{pending['id']}/approve", headers=carol_headers)
    assert response.status_code == 403
    assert response.json()["code"] == "forbidden"

    queue = client.get("/download-requests/pending", headers=admin_headers).json()
    assert [r["id"] for r in queue] == [pending["id"]]

    response = client.post(f"/download-requests/{pending['id']}/approve", headers=admin_headers)
    assert response.status_code == 200


def test_patch_and_delete_permissions(client, alice, bob):
    _, alice_headers = alice
    bob_id, bob_headers = bob
    doc = upload(client, alice_headers, permission="private")

    response = client.patch(f"/documents/{doc['id']}", json={"notes": "hi"}, headers=bob_headers)
    assert response.status_code == 404

    response = client.patch(
        f"/documents/{doc['id']}",
        json={"permission": "specific", "allowed_users": [bob_id], "notes": "shared"},
        headers=alice_headers,
    )
    assert response.status_code == 200
    assert response.json()["allowed_users"] == [bob_id]

    response = client.patch(f"/documents/{doc['id']}", json={"notes": "hijack"}, headers=bob_headers)
    assert response.status_code == 403
    response = client.delete(f"/documents/{doc['id']}", headers=bob_headers)
    assert response.status_code == 403

    response = client.patch(f"/documents/{doc['id']}", json={"permission": "everyone"}, headers=alice_headers)
    assert response.status_code == 422

    assert client.delete(f"/documents/{doc['id']}", headers=alice_headers).status_code == 204
    assert client.get(f"/documents/{doc['id']}", headers=alice_headers).status_code == 404


def test_stale_client_hint_is_not_trusted(client, alice, bob):
    _, alice_headers = alice
    _, bob_headers = bob
    doc = upload(client, alice_headers, download_preauthorized=True)
    assert client.get(f"/documents/{doc['id']}", headers=bob_headers).json()["can_download"] is True

    client.patch(f"/documents/{doc['id']}", json={"download_preauthorized": False}, headers=alice_headers)

    response = client.get(f"/documents/{doc['id']}/download", headers=bob_headers)
    assert response.status_code == 403
    assert response.json()["code"] == "approval_required"
