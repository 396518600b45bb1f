"""
Admin user management endpoints.
"""

from typing import List

from fastapi import APIRouter, Depends, Request, Response, status

from xdocs.auth import client_ip, get_current_user
from xdocs.models.user import CreateUserRequest, Identity, RoleUpdate, UserOut


router = APIRouter(prefix="/users", tags=["users"])


@router.get("", response_model=List[UserOut])
def list_users(request: Request, identity: Identity = Depends(get_current_user)):
    """All accounts, newest first. Admin only."""
    return request.app.state.user_service.list_users(identity)


@router.post("", response_model=UserOut, status_code=status.HTTP_201_CREATED)
def create_user(body: CreateUserRequest, request: Request, identity: Identity = Depends(get_current_user)):
    """Create an active account. Admin only."""
    user = request.app.state.user_service.create_user(identity, body.username, body.password, body.role)
    request.app.state.audit_logger.log_user_created(
        user_id=identity.user_id,
        target_user_id=user.id,
        username=user.username,
        role=user.role,
        ip_address=client_ip(request)
    )
    return user


@router.get("/pending", response_model=List[UserOut])
def list_pending_users(request: Request, identity: Identity = Depends(get_current_user)):
    """Accounts awaiting approval, oldest first. Admin only."""
    return request.app.state.user_service.list_pending(identity)


def _transition(user_id: str, action: str, request: Request, identity: Identity) -> UserOut:
    user = request.app.state.user_service.transition(identity, user_id, action)
    request.app.state.audit_logger.log_user_changed(
        user_id=identity.user_id,
        target_user_id=user_id,
        change=f"status:{user.status}",
        ip_address=client_ip(request)
    )
    return user


@router.post("/{user_id}/approve", response_model=UserOut)
def approve_user(user_id: str, request: Request, identity: Identity = Depends(get_current_user)):
    """Activate a pending account. Admin only."""
    return _transition(user_id, "approve", request, identity)


@router.post("/{user_id}/disable", response_model=UserOut)
def disable_user(user_id: str, request: Request, identity: Identity = Depends(get_current_user)):
    """Disable a pending or active account. Admin only."""
    return _transition(user_id, "disable", request, identity)


@router.post("/{user_id}/enable", response_model=UserOut)
def enable_user(user_id: str, request: Request, identity: Identity = Depends(get_current_user)):
    """Re-activate a disabled account. Admin only."""
    return _transition(user_id, "enable", request, identity)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(user_id: str, request: Request, identity: Identity = Depends(get_current_user)):
    """
    Delete an account and its download requests. Admin only.

    Raises:
        NotFound: If the user does not exist
        Forbidden: If an admin tries to delete their own account
        Conflict: If the user still owns documents
    """
    request.app.state.user_service.delete_user(identity, user_id)
    request.app.state.audit_logger.log_user_deleted(
        user_id=identity.user_id,
        target_user_id=user_id,
        ip_address=client_ip(request)
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/{user_id}/role", response_model=UserOut)
def set_role(user_id: str, body: RoleUpdate, request: Request, identity: Identity = Depends(get_current_user)):
    """Change an account's role. Admin only."""
    user = request.app.state.user_service.set_role(identity, user_id, body.role)
    request.app.state.audit_logger.log_user_changed(
        user_id=identity.user_id,
        target_user_id=user_id,
        change=f"role:{user.role}",
        ip_address=client_ip(request)
    )
    return user
