import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from google.cloud import logging as cloud_logging

logger = logging.getLogger(__name__)

_SEVERITY_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class AuditLoggingService:
    def __init__(self, project_id: Optional[str] = None, use_cloud_logging: bool = False):
        """
        Initialize audit logging service.

        Args:
            project_id: GCP project ID
            use_cloud_logging: Send events to Cloud Logging instead of the
                local ``xdocs.audit`` logger
        """
        self.project_id = project_id

        if use_cloud_logging:
            self.client = cloud_logging.Client(project=project_id)
            self.cloud_logger = self.client.logger("xdocs-audit")
        else:
            self.client = None
            self.cloud_logger = None
        self.local_logger = logging.getLogger("xdocs.audit")

    def log_event(
        self,
        event_type: str,
        user_id: Optional[str],
        severity: str = "INFO",
        document_id: Optional[str] = None,
        request_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Record an audit event.

        Args:
            event_type: Type of event (e.g., "document_uploaded", "download_request_approved")
            user_id: User who performed the action
            severity: Log severity (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            document_id: Document ID (if applicable)
            request_id: Download request ID (if applicable)
            ip_address: Client IP address
            details: Additional event details
        """
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
            "user_id": user_id or "unknown",
            "severity": severity
        }

        if document_id:
            log_entry["document_id"] = document_id

        if request_id:
            log_entry["request_id"] = request_id

        if ip_address:
            log_entry["ip_address"] = ip_address

        if details:
            log_entry["details"] = details

        try:
            if self.cloud_logger is not None:
                self.cloud_logger.log_struct(log_entry, severity=severity)
            else:
                self.local_logger.log(
                    _SEVERITY_LEVELS.get(severity, logging.INFO),
                    json.dumps(log_entry, default=str),
                    extra={"audit": log_entry},
                )
        except Exception as e:
            # An unavailable audit sink must not fail the audited operation
            logger.error(f"Failed to write audit event {event_type}: {e}")

    # Convenience methods for common events

    def log_document_uploaded(self, user_id: str, document_id: str, filename: str,
                              file_size: int, permission: str, ip_address: Optional[str] = None):
        """Log document upload event"""
        self.log_event(
            event_type="document_uploaded",
            user_id=user_id,
            document_id=document_id,
            ip_address=ip_address,
            details={
                "filename": filename,
                "file_size_bytes": file_size,
                "permission": permission,
            }
        )

    def log_document_updated(self, user_id: str, document_id: str,
                             changes: Dict[str, Any], ip_address: Optional[str] = None):
        """Log document metadata or permission change"""
        self.log_event(
            event_type="document_updated",
            user_id=user_id,
            document_id=document_id,
            ip_address=ip_address,
            details={"changes": changes}
        )

    def log_document_deleted(self, user_id: str, document_id: str,
                             ip_address: Optional[str] = None):
        """Log document deletion event"""
        self.log_event(
            event_type="document_deleted",
            user_id=user_id,
            document_id=document_id,
            severity="WARNING",
            ip_address=ip_address,
            details={"action": "Document and its download requests deleted"}
        )

    def log_document_downloaded(self, user_id: str, document_id: str,
                                filename: str, ip_address: Optional[str] = None):
        """Log document download event"""
        self.log_event(
            event_type="document_downloaded",
            user_id=user_id,
            document_id=document_id,
            ip_address=ip_address,
            details={"filename": filename}
        )

    def log_download_approval_required(self, user_id: str, document_id: str,
                                       ip_address: Optional[str] = None):
        """Log a download refused pending approval"""
        self.log_event(
            event_type="download_approval_required",
            user_id=user_id,
            document_id=document_id,
            ip_address=ip_address,
        )

    def log_download_request_created(self, user_id: str, document_id: str, request_id: str,
                                     applicant_company: str, ip_address: Optional[str] = None):
        """Log download request submission"""
        self.log_event(
            event_type="download_request_created",
            user_id=user_id,
            document_id=document_id,
            request_id=request_id,
            ip_address=ip_address,
            details={"applicant_company": applicant_company}
        )

    def log_download_request_decided(self, user_id: str, document_id: str, request_id: str,
                                      status: str, expires_at: Optional[datetime] = None,
                                      ip_address: Optional[str] = None):
        """Log approval or rejection of a download request"""
        details = {"status": status}
        if expires_at:
            details["expires_at"] = expires_at.isoformat()

        self.log_event(
            event_type=f"download_request_{status}",
            user_id=user_id,
            document_id=document_id,
            request_id=request_id,
            severity="INFO" if status == "approved" else "WARNING",
            ip_address=ip_address,
            details=details
        )

    def log_unauthorized_access(self, user_id: str, reason: str,
                                document_id: Optional[str] = None,
                                ip_address: Optional[str] = None):
        """Log unauthorized access attempt"""
        self.log_event(
            event_type="unauthorized_access",
            user_id=user_id,
            document_id=document_id,
            severity="WARNING",
            ip_address=ip_address,
            details={"reason": reason}
        )

    def log_user_registered(self, user_id: str, username: str,
                            ip_address: Optional[str] = None):
        """Log self-service registration"""
        self.log_event(
            event_type="user_registered",
            user_id=user_id,
            ip_address=ip_address,
            details={"username": username}
        )

    def log_user_login(self, user_id: str, username: str,
                       ip_address: Optional[str] = None):
        """Log user login event"""
        self.log_event(
            event_type="user_login",
            user_id=user_id,
            ip_address=ip_address,
            details={"username": username}
        )

    def log_authentication_failed(self, error: str,
                                  ip_address: Optional[str] = None):
        """Log authentication failure"""
        self.log_event(
            event_type="authentication_failed",
            user_id="unknown",
            severity="WARNING",
            ip_address=ip_address,
            details={"error": error}
        )

    def log_user_created(self, user_id: str, target_user_id: str, username: str, role: str,
                         ip_address: Optional[str] = None):
        """Log an admin creating an account"""
        self.log_event(
            event_type="user_created",
            user_id=user_id,
            ip_address=ip_address,
            details={"target_user_id": target_user_id, "username": username, "role": role}
        )

    def log_user_deleted(self, user_id: str, target_user_id: str,
                         ip_address: Optional[str] = None):
        """Log an admin deleting an account"""
        self.log_event(
            event_type="user_deleted",
            user_id=user_id,
            severity="WARNING",
            ip_address=ip_address,
            details={"target_user_id": target_user_id}
        )

    def log_user_changed(self, user_id: str, target_user_id: str, change: str,
                         ip_address: Optional[str] = None):
        """Log an admin changing another account's status or role"""
        self.log_event(
            event_type="user_role_changed" if change.startswith("role:") else "user_status_changed",
            user_id=user_id,
            ip_address=ip_address,
            details={"target_user_id": target_user_id, "change": change}
        )
