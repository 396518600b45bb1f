"""
Authentication: bearer token issuance and verification.

A verified token only names a user; the role and account status used for
authorization are re-read from the database on every request.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from xdocs.config import Settings
from xdocs.errors import Unauthenticated
from xdocs.models.user import Identity


security = HTTPBearer(auto_error=False)


def create_access_token(user_id: str, role: str, settings: Settings) -> str:
    """
    Issue a signed JWT for a user.

    Args:
        user_id: User ID placed in the 'sub' claim
        role: Role at issuance (informational; not trusted on verification)
        settings: Application settings holding the secret and lifetime

    Returns:
        Encoded token
    """
    expires = datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRE_HOURS)
    claims = {"sub": user_id, "role": role, "exp": expires}
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def verify_token(token: str, settings: Settings) -> str:
    """
    Verify a JWT and return the user ID it names.

    Raises:
        Unauthenticated: If the token is invalid, expired, or has no subject
    """
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM]
        )
    except JWTError as e:
        raise Unauthenticated(f"Invalid token: {str(e)}")

    user_id: Optional[str] = payload.get("sub")
    if not user_id:
        raise Unauthenticated("Invalid token: missing user ID")
    return user_id


def client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Identity:
    """
    Resolve the caller of the current request.

    Returns:
        Request-scoped identity carrying the role stored for the user

    Raises:
        Unauthenticated: If the credential is missing or invalid, or the
            account is unknown or not active
    """
    audit_logger = request.app.state.audit_logger
    if credentials is None or not credentials.credentials:
        raise Unauthenticated("missing authorization")

    try:
        user_id = verify_token(credentials.credentials, request.app.state.settings)
        return request.app.state.user_service.resolve_identity(user_id)
    except Unauthenticated as e:
        audit_logger.log_authentication_failed(error=e.message, ip_address=client_ip(request))
        raise
