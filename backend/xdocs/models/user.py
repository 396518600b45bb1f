"""
User and identity data models and schemas.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class Role(str, Enum):
    """Roles recognised by the access policy."""
    ADMIN = "admin"
    USER = "user"


class UserStatus(str, Enum):
    """
    Account lifecycle: registration creates a pending account, an admin
    activates or disables it.
    """
    PENDING = "pending"
    ACTIVE = "active"
    DISABLED = "disabled"


class Identity(BaseModel):
    """
    Request-scoped caller identity resolved from a bearer token.

    Attributes:
        user_id: ID of the authenticated user
        role: Role stored for the user at resolution time
    """
    user_id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    class Config:
        """Pydantic configuration."""
        frozen = True


class UserOut(BaseModel):
    """Public view of a user account."""
    id: str
    username: str
    role: Role
    status: UserStatus
    note: str = ""
    created_at: datetime

    class Config:
        """Pydantic configuration."""
        from_attributes = True
        use_enum_values = True


class DirectoryUser(BaseModel):
    """Minimal user entry for the allowed-users picker."""
    id: str
    username: str

    class Config:
        """Pydantic configuration."""
        from_attributes = True


class RegisterRequest(BaseModel):
    """Self-service registration; the account starts pending."""
    username: str = Field(..., min_length=3, max_length=64)
    password: str = Field(..., min_length=6, max_length=256)
    note: Optional[str] = Field(None, max_length=1000)


class CreateUserRequest(BaseModel):
    """Admin-created account; active immediately."""
    username: str = Field(..., min_length=3, max_length=64)
    password: str = Field(..., min_length=6, max_length=256)
    role: Role = Role.USER


class LoginRequest(BaseModel):
    username: str
    password: str


class LoginResponse(BaseModel):
    token: str
    user: UserOut


class RoleUpdate(BaseModel):
    role: Role
