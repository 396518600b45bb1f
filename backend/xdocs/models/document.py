"""
Document data models and schemas.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field


class Permission(str, Enum):
    """
    Enumeration of document visibility levels.
    """
    PUBLIC = "public"
    PRIVATE = "private"
    SPECIFIC = "specific"


class DocumentOut(BaseModel):
    """
    Document metadata as returned to a caller who may view it.

    Attributes:
        id: Unique identifier for the document
        name: Display name (original filename unless renamed)
        content_type: MIME type of the stored bytes
        size: Size of the stored bytes
        notes: Free-text notes maintained by the owner
        owner_id: ID of the owning user
        owner_name: Username of the owning user
        permission: Visibility level
        allowed_users: Users allowed to view when permission is "specific"
        download_preauthorized: Any viewer may download without approval
        can_edit: Display hint, the caller may edit or delete
        can_download: Display hint, the caller may download right now
    """
    id: str = Field(..., description="Unique document identifier")
    name: str
    content_type: str
    size: int
    notes: str = ""
    owner_id: str
    owner_name: Optional[str] = None
    permission: Permission
    allowed_users: List[str] = Field(default_factory=list)
    download_preauthorized: bool = False
    can_edit: bool = False
    can_download: bool = False
    created_at: datetime
    updated_at: datetime

    class Config:
        """Pydantic configuration."""
        from_attributes = True
        use_enum_values = True


class DocumentPatch(BaseModel):
    """
    Partial update of a document. Omitted fields are left unchanged;
    ownership cannot be changed.
    """
    name: Optional[str] = Field(None, min_length=1, max_length=500)
    notes: Optional[str] = None
    permission: Optional[Permission] = None
    allowed_users: Optional[List[str]] = None
    download_preauthorized: Optional[bool] = None
