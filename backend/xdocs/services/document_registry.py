"""
Document registry: ownership and permission metadata for documents.

Every read is filtered through the access policy and every mutation is
gated on edit permission. Callers that fail the view check get the same
"not found" outcome as for a document that does not exist.
"""

import logging
import uuid
from typing import Iterable, List, Optional, Set, Tuple

from sqlalchemy import delete, or_
from sqlalchemy.orm import Session

from xdocs.errors import ApprovalRequired, Forbidden, NotFound, ValidationFailed
from xdocs.models.document import DocumentOut, DocumentPatch, Permission
from xdocs.models.download_request import DownloadRequestStatus
from xdocs.models.user import Identity
from xdocs.services import access_policy
from xdocs.services.database_service import (
    DatabaseService,
    Document,
    DownloadRequest,
    User,
    retry_transient,
)
from xdocs.services.download_request_service import DownloadRequestService, load_document_with_approval
from xdocs.services.storage_service import BlobMissing
from xdocs.utils.validators import DEFAULT_CONTENT_TYPE, sanitize_filename, validate_file_size

logger = logging.getLogger(__name__)


class DocumentRegistry:
    """
    Create, read, update and delete documents under the access policy.

    Attributes:
        db: Database service
        storage: Blob store holding document bytes
        requests: Download request service (source of active approvals and the clock)
        max_upload_bytes: Largest accepted upload
        hide_unviewable: Report unviewable documents as not found on download
    """

    def __init__(
        self,
        db: DatabaseService,
        storage,
        requests: DownloadRequestService,
        max_upload_bytes: int,
        hide_unviewable: bool = True
    ):
        self.db = db
        self.storage = storage
        self.requests = requests
        self.max_upload_bytes = max_upload_bytes
        self.hide_unviewable = hide_unviewable

    # Helpers

    def _view(
        self,
        document: Document,
        owner_name: Optional[str],
        identity: Identity,
        approved_ids: Set[str]
    ) -> DocumentOut:
        active = True if document.id in approved_ids else None
        view = DocumentOut.model_validate(document)
        return view.model_copy(update={
            "owner_name": owner_name,
            "can_edit": access_policy.may_edit(document, identity),
            "can_download": access_policy.may_fetch_bytes(document, identity, active),
        })

    def _approved_ids(self, session: Session, identity: Identity, document_ids: Iterable[str]) -> Set[str]:
        """IDs among ``document_ids`` for which the caller holds an active approval."""
        document_ids = set(document_ids)
        # Admins download without approvals
        if not document_ids or identity.is_admin:
            return set()
        now = self.requests.clock()
        rows = (
            session.query(DownloadRequest.document_id)
            .filter(
                DownloadRequest.requester_id == identity.user_id,
                DownloadRequest.status == DownloadRequestStatus.APPROVED.value,
                or_(DownloadRequest.expires_at.is_(None), DownloadRequest.expires_at > now),
            )
            .distinct()
            .all()
        )
        return {row[0] for row in rows} & document_ids

    def _load_visible(self, session: Session, identity: Identity, document_id: str) -> Tuple[Document, Optional[str]]:
        row = (
            session.query(Document, User.username)
            .outerjoin(User, User.id == Document.owner_id)
            .filter(Document.id == document_id)
            .first()
        )
        if row is None or not access_policy.may_view(row[0], identity):
            raise NotFound("document not found")
        return row[0], row[1]

    def _load_editable(self, session: Session, identity: Identity, document_id: str) -> Tuple[Document, Optional[str]]:
        document, owner_name = self._load_visible(session, identity, document_id)
        if not access_policy.may_edit(document, identity):
            raise Forbidden("only the owner or an admin can modify this document")
        return document, owner_name

    def _check_allowed_users(self, session: Session, permission: str, allowed_users: Optional[List[str]]) -> List[str]:
        if permission != Permission.SPECIFIC:
            return []
        allowed_users = list(dict.fromkeys(allowed_users or []))
        if allowed_users:
            known = {
                row[0] for row in session.query(User.id).filter(User.id.in_(allowed_users)).all()
            }
            unknown = [user_id for user_id in allowed_users if user_id not in known]
            if unknown:
                raise ValidationFailed(f"unknown users in allowed_users: {', '.join(unknown)}")
        return allowed_users

    # Operations

    def upload(
        self,
        identity: Identity,
        filename: Optional[str],
        content_type: Optional[str],
        data: bytes,
        notes: str = "",
        permission: str = Permission.PUBLIC.value,
        allowed_users: Optional[List[str]] = None,
        download_preauthorized: bool = False
    ) -> DocumentOut:
        """
        Store a new document owned by the caller.

        Bytes are written first; if the row cannot be inserted the blob is
        removed again.

        Raises:
            ValidationFailed: If the permission or allowed users are invalid, or the file is empty
            PayloadTooLarge: If the file exceeds the upload limit
        """
        validate_file_size(len(data), self.max_upload_bytes)
        try:
            permission = Permission(permission).value
        except ValueError:
            raise ValidationFailed(f"invalid permission: {permission}")

        now = self.requests.clock()
        doc_id = str(uuid.uuid4())
        name = filename or "upload.bin"
        rel_path = f"{doc_id}/{sanitize_filename(name)}"
        content_type = content_type or DEFAULT_CONTENT_TYPE

        self.storage.save(rel_path, data, content_type)
        try:
            with self.db.session_scope() as session:
                document = Document(
                    id=doc_id,
                    owner_id=identity.user_id,
                    name=name,
                    content_type=content_type,
                    size=len(data),
                    notes=notes or "",
                    permission=permission,
                    allowed_users=self._check_allowed_users(session, permission, allowed_users),
                    download_preauthorized=bool(download_preauthorized),
                    storage_rel_path=rel_path,
                    created_at=now,
                    updated_at=now,
                )
                session.add(document)
                session.flush()
                document, owner_name = self._load_visible(session, identity, doc_id)
                view = self._view(document, owner_name, identity, set())
        except Exception:
            logger.error(f"Failed to record uploaded document {doc_id}; removing stored bytes")
            self.storage.delete(rel_path)
            raise

        logger.info(f"Created document record: {doc_id}")
        return view

    @retry_transient
    def list_visible(self, identity: Identity) -> List[DocumentOut]:
        """All documents the caller may view, newest first."""
        with self.db.session_scope() as session:
            rows = (
                session.query(Document, User.username)
                .outerjoin(User, User.id == Document.owner_id)
                .order_by(Document.created_at.desc(), Document.id.desc())
                .all()
            )
            visible = [(doc, owner) for doc, owner in rows if access_policy.may_view(doc, identity)]
            approved = self._approved_ids(session, identity, (doc.id for doc, _ in visible))
            return [self._view(doc, owner, identity, approved) for doc, owner in visible]

    @retry_transient
    def get(self, identity: Identity, document_id: str) -> DocumentOut:
        """
        Get a document the caller may view.

        Raises:
            NotFound: If it does not exist or the caller may not view it
        """
        with self.db.session_scope() as session:
            document, owner_name = self._load_visible(session, identity, document_id)
            approved = self._approved_ids(session, identity, [document.id])
            return self._view(document, owner_name, identity, approved)

    @retry_transient
    def update(self, identity: Identity, document_id: str, patch: DocumentPatch) -> DocumentOut:
        """
        Apply a partial update. ``allowed_users`` is cleared whenever the
        resulting permission is not "specific".

        Raises:
            NotFound: If the caller may not view the document
            Forbidden: If the caller may view but not edit it
            ValidationFailed: If allowed users reference unknown accounts
        """
        with self.db.session_scope() as session:
            document, owner_name = self._load_editable(session, identity, document_id)

            if patch.name is not None:
                document.name = patch.name
            if patch.notes is not None:
                document.notes = patch.notes
            if patch.download_preauthorized is not None:
                document.download_preauthorized = patch.download_preauthorized

            permission = Permission(patch.permission).value if patch.permission is not None else document.permission
            allowed_users = patch.allowed_users if patch.allowed_users is not None else document.allowed_users
            document.permission = permission
            document.allowed_users = self._check_allowed_users(session, permission, allowed_users)
            document.updated_at = self.requests.clock()

            session.flush()
            approved = self._approved_ids(session, identity, [document.id])
            view = self._view(document, owner_name, identity, approved)

        logger.info(f"Updated document: {document_id}")
        return view

    @retry_transient
    def delete(self, identity: Identity, document_id: str) -> None:
        """
        Delete a document together with all of its download requests in one
        transaction, then remove its bytes from the blob store.

        Raises:
            NotFound: If the caller may not view the document
            Forbidden: If the caller may view but not delete it
        """
        with self.db.session_scope() as session:
            document, _ = self._load_editable(session, identity, document_id)
            rel_path = document.storage_rel_path
            session.execute(
                delete(DownloadRequest)
                .where(DownloadRequest.document_id == document_id)
                .execution_options(synchronize_session=False)
            )
            result = session.execute(
                delete(Document)
                .where(Document.id == document_id)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise NotFound("document not found")

        logger.info(f"Deleted document: {document_id}")
        try:
            self.storage.delete(rel_path)
        except Exception as e:
            logger.warning(f"Document {document_id} deleted but its bytes could not be removed: {e}")

    @retry_transient
    def fetch_bytes(self, identity: Identity, document_id: str) -> Tuple[DocumentOut, bytes]:
        """
        Authorize and read a document's bytes. The permission descriptor and
        the caller's active approval are read by one statement, so the
        decision never mixes two snapshots.

        Raises:
            NotFound: If the caller may not view the document (or its bytes are missing)
            Forbidden: Instead of NotFound when unviewable documents are not hidden
            ApprovalRequired: If the caller may view but needs an approved download request
        """
        now = self.requests.clock()
        with self.db.session_scope() as session:
            row = load_document_with_approval(session, document_id, identity.user_id, now)
            if row is None:
                raise NotFound("document not found")
            document, owner_name, active = row
            if not access_policy.may_view(document, identity):
                if self.hide_unviewable:
                    raise NotFound("document not found")
                raise Forbidden("access denied")

            if not access_policy.may_fetch_bytes(document, identity, active):
                raise ApprovalRequired()

            view = self._view(document, owner_name, identity, {document.id} if active else set())
            rel_path = document.storage_rel_path

        try:
            data = self.storage.read(rel_path)
        except BlobMissing:
            logger.error(f"Bytes for document {document_id} missing at {rel_path}")
            raise NotFound("file missing")
        return view, data
