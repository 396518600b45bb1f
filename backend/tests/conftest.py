"""
Shared fixtures for xdocs tests.

Fixtures are organized by layer:
- Service fixtures build the core against a temporary SQLite file and a
  temporary local blob store
- API fixtures build the FastAPI app and a TestClient on top of them
"""

import os

os.environ.setdefault("JWT_SECRET", "test-secret")

import uuid
from datetime import datetime, timedelta
from typing import Dict, Optional

import pytest
from fastapi.testclient import TestClient

from xdocs.config import Settings
from xdocs.main import create_app
from xdocs.models.user import Identity
from xdocs.services.database_service import DatabaseService, User
from xdocs.services.document_registry import DocumentRegistry
from xdocs.services.download_request_service import DownloadRequestService
from xdocs.services.storage_service import LocalStorageService
from xdocs.services.user_service import UserService, hash_password

PASSWORD = "password123"
PASSWORD_HASH = hash_password(PASSWORD)
ADMIN_PASSWORD = "admin-pass"
APPROVAL_TTL = timedelta(hours=24)


class FakeClock:
    """Settable naive-UTC clock."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 5, 9, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


# =============================================================================
# SERVICE FIXTURES
# =============================================================================


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'xdocs.db'}"


@pytest.fixture
def db(database_url):
    service = DatabaseService(database_url=database_url)
    service.initialize()
    yield service
    service.close()


@pytest.fixture
def storage(tmp_path):
    return LocalStorageService(str(tmp_path / "blobs"))


@pytest.fixture
def user_service(db, clock):
    return UserService(db, clock=clock)


@pytest.fixture
def request_service(db, clock):
    return DownloadRequestService(db, APPROVAL_TTL, clock=clock)


@pytest.fixture
def registry(db, storage, request_service):
    return DocumentRegistry(db, storage, request_service, max_upload_bytes=1024 * 1024)


@pytest.fixture
def make_identity(db):
    """Insert a user row directly and return its identity."""
    def _make(username: Optional[str] = None, role: str = "user", status: str = "active") -> Identity:
        user_id = str(uuid.uuid4())
        with db.session_scope() as session:
            session.add(User(
                id=user_id,
                username=username or f"user-{user_id[:8]}",
                password_hash=PASSWORD_HASH,
                role=role,
                status=status,
                note="",
            ))
        return Identity(user_id=user_id, role=role)
    return _make


@pytest.fixture
def owner(make_identity):
    return make_identity("owner")


@pytest.fixture
def requester(make_identity):
    return make_identity("requester")


@pytest.fixture
def admin(make_identity):
    return make_identity("root", role="admin")


@pytest.fixture
def make_document(registry):
    def _make(identity: Identity, permission: str = "public", **kwargs):
        return registry.upload(
            identity,
            filename=kwargs.pop("filename", "report.pdf"),
            content_type="application/pdf",
            data=kwargs.pop("data", b"%PDF-1.4 quarterly numbers"),
            permission=permission,
            **kwargs
        )
    return _make


@pytest.fixture
def applicant():
    from xdocs.models.download_request import ApplicantInfo
    return ApplicantInfo(
        applicant_name="Jane Doe",
        applicant_company="Acme Corp",
        applicant_contact="jane@acme.example",
        message="for the audit",
    )


# =============================================================================
# API FIXTURES
# =============================================================================


@pytest.fixture
def test_settings(database_url, tmp_path):
    return Settings(
        JWT_SECRET="test-secret",
        DATABASE_URL=database_url,
        STORAGE_BACKEND="local",
        STORAGE_ROOT=str(tmp_path / "api-blobs"),
        DOWNLOAD_APPROVAL_TTL_HOURS=24,
        DEFAULT_ADMIN_USERNAME="admin",
        DEFAULT_ADMIN_PASSWORD=ADMIN_PASSWORD,
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def app(test_settings, clock):
    return create_app(test_settings, clock=clock)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


def login(client: TestClient, username: str, password: str) -> Dict[str, str]:
    response = client.post("/auth/login", json={"username": username, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['token']}"}


@pytest.fixture
def admin_headers(client):
    return login(client, "admin", ADMIN_PASSWORD)


@pytest.fixture
def api_user(client, admin_headers):
    """Create an active account through the admin API; returns (user_id, headers)."""
    def _make(username: str, role: str = "user"):
        response = client.post(
            "/users",
            json={"username": username, "password": PASSWORD, "role": role},
            headers=admin_headers,
        )
        assert response.status_code == 201, response.text
        return response.json()["id"], login(client, username, PASSWORD)
    return _make


def upload(client: TestClient, headers: Dict[str, str], **form) -> dict:
    data = {"permission": "public"}
    data.update({k: str(v).lower() if isinstance(v, bool) else v for k, v in form.items()})
    response = client.post(
        "/documents",
        files={"file": ("report.pdf", b"%PDF-1.4 quarterly numbers", "application/pdf")},
        data=data,
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()
