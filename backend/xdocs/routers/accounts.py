"""
Registration, login and profile endpoints.
"""

from typing import List

from fastapi import APIRouter, Depends, Request, status

from xdocs.auth import client_ip, create_access_token, get_current_user
from xdocs.errors import Forbidden, Unauthenticated
from xdocs.models.user import DirectoryUser, Identity, LoginRequest, LoginResponse, RegisterRequest, UserOut


router = APIRouter(tags=["accounts"])


@router.post("/auth/register", response_model=UserOut, status_code=status.HTTP_201_CREATED)
def register(body: RegisterRequest, request: Request):
    """
    Register a new account. It cannot log in until an admin approves it.

    Raises:
        Conflict: If the username is taken
    """
    user = request.app.state.user_service.register(body.username, body.password, body.note or "")
    request.app.state.audit_logger.log_user_registered(
        user_id=user.id,
        username=user.username,
        ip_address=client_ip(request)
    )
    return user


@router.post("/auth/login", response_model=LoginResponse)
def login(body: LoginRequest, request: Request):
    """
    Exchange credentials for a bearer token.

    Raises:
        Unauthenticated: If the credentials are wrong
        Forbidden: If the account is pending approval or disabled
    """
    audit_logger = request.app.state.audit_logger
    try:
        user = request.app.state.user_service.authenticate(body.username, body.password)
    except (Unauthenticated, Forbidden) as e:
        audit_logger.log_authentication_failed(
            error=f"{body.username}: {e.message}",
            ip_address=client_ip(request)
        )
        raise

    token = create_access_token(user.id, user.role, request.app.state.settings)
    audit_logger.log_user_login(
        user_id=user.id,
        username=user.username,
        ip_address=client_ip(request)
    )
    return LoginResponse(token=token, user=user)


@router.get("/me", response_model=UserOut)
def me(request: Request, identity: Identity = Depends(get_current_user)):
    """Profile of the authenticated caller."""
    return request.app.state.user_service.get(identity, identity.user_id)


@router.get("/user-directory", response_model=List[DirectoryUser])
def user_directory(request: Request, identity: Identity = Depends(get_current_user)):
    """Active users, for picking who may view a "specific" document."""
    return request.app.state.user_service.directory(identity)
