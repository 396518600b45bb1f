"""
Download approval request endpoints.
"""

from typing import List

from fastapi import APIRouter, Depends, Request, status

from xdocs.auth import client_ip, get_current_user
from xdocs.errors import Forbidden
from xdocs.models.download_request import ApplicantInfo, DownloadRequestOut
from xdocs.models.user import Identity


router = APIRouter(tags=["download-requests"])


@router.post(
    "/documents/{document_id}/download-requests",
    response_model=DownloadRequestOut,
    status_code=status.HTTP_201_CREATED
)
def create_download_request(
    document_id: str,
    applicant: ApplicantInfo,
    request: Request,
    identity: Identity = Depends(get_current_user)
):
    """
    Ask the document's owner (or an admin) for permission to download it.

    Raises:
        NotFound: If the caller may not view the document
        AlreadyAuthorized: If the caller can already download it
        DuplicateRequest: If the caller already has a pending request for it
    """
    download_request = request.app.state.download_request_service.create(identity, document_id, applicant)

    request.app.state.audit_logger.log_download_request_created(
        user_id=identity.user_id,
        document_id=document_id,
        request_id=download_request.id,
        applicant_company=download_request.applicant_company,
        ip_address=client_ip(request)
    )
    return download_request


@router.get("/download-requests/mine", response_model=List[DownloadRequestOut])
def list_my_requests(request: Request, identity: Identity = Depends(get_current_user)):
    """All requests submitted by the caller, newest first."""
    return list(request.app.state.download_request_service.list_mine(identity))


@router.get("/download-requests/pending", response_model=List[DownloadRequestOut])
def list_pending_requests(request: Request, identity: Identity = Depends(get_current_user)):
    """
    Pending requests the caller may decide, oldest first: on documents the
    caller owns, or all of them for admins.
    """
    return list(request.app.state.download_request_service.list_pending_for(identity))


def _decide(request_id: str, request: Request, identity: Identity, approve: bool) -> DownloadRequestOut:
    service = request.app.state.download_request_service
    audit_logger = request.app.state.audit_logger
    try:
        if approve:
            decided = service.approve(identity, request_id)
        else:
            decided = service.reject(identity, request_id)
    except Forbidden as e:
        audit_logger.log_unauthorized_access(
            user_id=identity.user_id,
            reason=f"Attempted to decide download request {request_id}: {e.message}",
            ip_address=client_ip(request)
        )
        raise

    audit_logger.log_download_request_decided(
        user_id=identity.user_id,
        document_id=decided.document_id,
        request_id=decided.id,
        status=decided.status,
        expires_at=decided.expires_at,
        ip_address=client_ip(request)
    )
    return decided


@router.post("/download-requests/{request_id}/approve", response_model=DownloadRequestOut)
def approve_request(request_id: str, request: Request, identity: Identity = Depends(get_current_user)):
    """
    Approve a pending request. The approval stays active for the configured
    validity window.
    """
    return _decide(request_id, request, identity, approve=True)


@router.post("/download-requests/{request_id}/reject", response_model=DownloadRequestOut)
def reject_request(request_id: str, request: Request, identity: Identity = Depends(get_current_user)):
    """Reject a pending request. The requester may submit a new one later."""
    return _decide(request_id, request, identity, approve=False)
