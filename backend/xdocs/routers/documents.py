"""
Document management endpoints.
"""

from typing import List
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, Request, Response, UploadFile, status

from xdocs.auth import client_ip, get_current_user
from xdocs.errors import ApprovalRequired, Forbidden, NotFound
from xdocs.models.document import DocumentOut, DocumentPatch
from xdocs.models.user import Identity
from xdocs.utils.validators import parse_user_list


router = APIRouter(prefix="/documents", tags=["documents"])


@router.get("", response_model=List[DocumentOut])
def list_documents(request: Request, identity: Identity = Depends(get_current_user)):
    """
    List every document the caller may view, newest first. Documents the
    caller may not view are simply absent.
    """
    return request.app.state.document_registry.list_visible(identity)


@router.post("", response_model=DocumentOut, status_code=status.HTTP_201_CREATED)
def upload_document(
    request: Request,
    file: UploadFile = File(...),
    notes: str = Form(""),
    permission: str = Form("public"),
    allowed_users: str = Form(""),
    download_preauthorized: bool = Form(False),
    identity: Identity = Depends(get_current_user)
):
    """
    Upload a document owned by the caller.

    Args:
        file: Document bytes
        notes: Free-text notes
        permission: public, private or specific
        allowed_users: Comma-separated user IDs (only kept for "specific")
        download_preauthorized: Let any viewer download without approval

    Returns:
        The created document
    """
    data = file.file.read()
    document = request.app.state.document_registry.upload(
        identity,
        filename=file.filename,
        content_type=file.content_type,
        data=data,
        notes=notes,
        permission=permission,
        allowed_users=parse_user_list(allowed_users),
        download_preauthorized=download_preauthorized,
    )

    request.app.state.audit_logger.log_document_uploaded(
        user_id=identity.user_id,
        document_id=document.id,
        filename=document.name,
        file_size=document.size,
        permission=document.permission,
        ip_address=client_ip(request)
    )
    return document


@router.get("/{document_id}", response_model=DocumentOut)
def get_document(document_id: str, request: Request, identity: Identity = Depends(get_current_user)):
    """
    Get a document's metadata.

    Raises:
        NotFound: If the document does not exist or the caller may not view it
    """
    return request.app.state.document_registry.get(identity, document_id)


@router.patch("/{document_id}", response_model=DocumentOut)
def update_document(
    document_id: str,
    patch: DocumentPatch,
    request: Request,
    identity: Identity = Depends(get_current_user)
):
    """
    Update name, notes, permission, allowed users or the download
    preauthorization flag. Owner or admin only.
    """
    audit_logger = request.app.state.audit_logger
    try:
        document = request.app.state.document_registry.update(identity, document_id, patch)
    except Forbidden as e:
        audit_logger.log_unauthorized_access(
            user_id=identity.user_id,
            document_id=document_id,
            reason=f"Attempted to modify a document: {e.message}",
            ip_address=client_ip(request)
        )
        raise

    audit_logger.log_document_updated(
        user_id=identity.user_id,
        document_id=document_id,
        changes=patch.model_dump(exclude_none=True, mode="json"),
        ip_address=client_ip(request)
    )
    return document


@router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_document(document_id: str, request: Request, identity: Identity = Depends(get_current_user)):
    """
    Delete a document and all of its download requests. Owner or admin only.
    """
    audit_logger = request.app.state.audit_logger
    try:
        request.app.state.document_registry.delete(identity, document_id)
    except Forbidden as e:
        audit_logger.log_unauthorized_access(
            user_id=identity.user_id,
            document_id=document_id,
            reason=f"Attempted to delete a document: {e.message}",
            ip_address=client_ip(request)
        )
        raise

    audit_logger.log_document_deleted(
        user_id=identity.user_id,
        document_id=document_id,
        ip_address=client_ip(request)
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{document_id}/download")
def download_document(document_id: str, request: Request, identity: Identity = Depends(get_current_user)):
    """
    Download a document's bytes.

    Raises:
        NotFound: If the caller may not view the document
        ApprovalRequired: If the caller may view it but needs an approved
            download request (clients should offer to submit one)
    """
    audit_logger = request.app.state.audit_logger
    try:
        document, data = request.app.state.document_registry.fetch_bytes(identity, document_id)
    except ApprovalRequired:
        audit_logger.log_download_approval_required(
            user_id=identity.user_id,
            document_id=document_id,
            ip_address=client_ip(request)
        )
        raise
    except (Forbidden, NotFound) as e:
        audit_logger.log_unauthorized_access(
            user_id=identity.user_id,
            document_id=document_id,
            reason=f"Download refused: {e.message}",
            ip_address=client_ip(request)
        )
        raise

    audit_logger.log_document_downloaded(
        user_id=identity.user_id,
        document_id=document_id,
        filename=document.name,
        ip_address=client_ip(request)
    )
    return Response(
        content=data,
        media_type=document.content_type,
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(document.name)}"},
    )
