"""
Tests for the audit trail.
"""

import json
import logging
from datetime import datetime
from unittest.mock import MagicMock

from xdocs.services import logging_service
from xdocs.services.logging_service import AuditLoggingService


def audit_entries(caplog):
    return [record.audit for record in caplog.records if record.name == "xdocs.audit"]


def test_local_sink_records_structured_event(caplog):
    audit = AuditLoggingService()
    with caplog.at_level(logging.INFO, logger="xdocs.audit"):
        audit.log_document_uploaded(
            user_id="u1", document_id="d1", filename="a.pdf", file_size=10,
            permission="public", ip_address="10.0.0.1"
        )

    [entry] = audit_entries(caplog)
    assert entry["event_type"] == "document_uploaded"
    assert entry["user_id"] == "u1"
    assert entry["document_id"] == "d1"
    assert entry["ip_address"] == "10.0.0.1"
    assert entry["details"] == {"filename": "a.pdf", "file_size_bytes": 10, "permission": "public"}
    assert "request_id" not in entry


def test_decision_events_are_named_by_outcome(caplog):
    audit = AuditLoggingService()
    with caplog.at_level(logging.INFO, logger="xdocs.audit"):
        audit.log_download_request_decided(
            user_id="owner", document_id="d1", request_id="r1",
            status="approved", expires_at=datetime(2026, 1, 6, 9, 0)
        )
        audit.log_download_request_decided(
            user_id="owner", document_id="d1", request_id="r2", status="rejected"
        )

    approved, rejected = audit_entries(caplog)
    assert approved["event_type"] == "download_request_approved"
    assert approved["details"] == {"status": "approved", "expires_at": "2026-01-06T09:00:00"}
    assert rejected["event_type"] == "download_request_rejected"
    assert rejected["severity"] == "WARNING"
    assert [r.levelno for r in caplog.records if r.name == "xdocs.audit"] == [logging.INFO, logging.WARNING]


def test_user_change_event_type(caplog):
    audit = AuditLoggingService()
    with caplog.at_level(logging.INFO, logger="xdocs.audit"):
        audit.log_user_changed(user_id="admin", target_user_id="u1", change="role:admin")
        audit.log_user_changed(user_id="admin", target_user_id="u1", change="status:disabled")

    assert [e["event_type"] for e in audit_entries(caplog)] == ["user_role_changed", "user_status_changed"]


def test_account_creation_and_deletion_have_own_events(caplog):
    audit = AuditLoggingService()
    with caplog.at_level(logging.INFO, logger="xdocs.audit"):
        audit.log_user_created(user_id="admin", target_user_id="u1", username="alice", role="user")
        audit.log_user_deleted(user_id="admin", target_user_id="u1")

    created, deleted = audit_entries(caplog)
    assert created["event_type"] == "user_created"
    assert created["details"] == {"target_user_id": "u1", "username": "alice", "role": "user"}
    assert deleted["event_type"] == "user_deleted"
    assert deleted["severity"] == "WARNING"


def test_local_sink_line_carries_event_fields(caplog):
    audit = AuditLoggingService()
    with caplog.at_level(logging.INFO, logger="xdocs.audit"):
        audit.log_download_request_created(
            user_id="u2", document_id="d1", request_id="r1", applicant_company="Acme", ip_address="10.0.0.2"
        )

    [record] = [r for r in caplog.records if r.name == "xdocs.audit"]
    line = logging.Formatter("%(name)s: %(message)s").format(record)
    assert line.startswith("xdocs.audit: ")
    for value in ("download_request_created", "u2", "d1", "r1", "Acme", "10.0.0.2"):
        assert value in line
    assert json.loads(record.getMessage()) == record.audit


def test_cloud_sink(monkeypatch):
    client = MagicMock()
    monkeypatch.setattr(logging_service.cloud_logging, "Client", MagicMock(return_value=client))

    audit = AuditLoggingService(project_id="proj", use_cloud_logging=True)
    audit.log_unauthorized_access(user_id="u2", reason="Download refused", document_id="d1")

    client.logger.assert_called_once_with("xdocs-audit")
    cloud_logger = client.logger.return_value
    entry = cloud_logger.log_struct.call_args.args[0]
    assert entry["event_type"] == "unauthorized_access"
    assert entry["details"] == {"reason": "Download refused"}
    assert cloud_logger.log_struct.call_args.kwargs == {"severity": "WARNING"}


def test_failing_sink_does_not_break_caller(monkeypatch, caplog):
    client = MagicMock()
    client.logger.return_value.log_struct.side_effect = RuntimeError("logging API down")
    monkeypatch.setattr(logging_service.cloud_logging, "Client", MagicMock(return_value=client))

    audit = AuditLoggingService(project_id="proj", use_cloud_logging=True)
    with caplog.at_level(logging.ERROR, logger="xdocs.services.logging_service"):
        audit.log_user_login(user_id="u1", username="alice")

    assert "Failed to write audit event user_login" in caplog.text


def test_api_operations_are_audited(client, caplog):
    from conftest import ADMIN_PASSWORD, login

    with caplog.at_level(logging.INFO, logger="xdocs.audit"):
        client.post("/auth/login", json={"username": "admin", "password": "wrong"})
        login(client, "admin", ADMIN_PASSWORD)

    events = [e["event_type"] for e in audit_entries(caplog)]
    assert events == ["authentication_failed", "user_login"]
