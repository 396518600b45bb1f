"""
Download request data models and schemas.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class DownloadRequestStatus(str, Enum):
    """
    Lifecycle of a download approval request. Both decisions are terminal.
    """
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ApplicantInfo(BaseModel):
    """Applicant details submitted with a download request."""
    applicant_name: str = Field(..., min_length=1, max_length=200)
    applicant_company: str = Field(..., min_length=1, max_length=200)
    applicant_contact: str = Field(..., min_length=1, max_length=200)
    message: Optional[str] = Field(None, max_length=2000)

    class Config:
        """Pydantic configuration."""
        str_strip_whitespace = True
        json_schema_extra = {
            "example": {
                "applicant_name": "Jane Doe",
                "applicant_company": "Acme Corp",
                "applicant_contact": "jane@acme.example",
                "message": "Needed for the quarterly audit"
            }
        }


class DownloadRequestOut(BaseModel):
    """
    Download request as shown to its requester or an approver.

    Attributes:
        active: Approved and not yet expired at the time it was read
    """
    id: str
    document_id: str
    document_name: Optional[str] = None
    owner_id: Optional[str] = None
    requester_id: str
    requester_name: Optional[str] = None
    applicant_name: str
    applicant_company: str
    applicant_contact: str
    message: str = ""
    status: DownloadRequestStatus
    approver_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    active: bool = False

    class Config:
        """Pydantic configuration."""
        from_attributes = True
        use_enum_values = True
