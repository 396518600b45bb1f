"""
Download request state machine.

    pending -> approved   (terminal; inactive once now >= expires_at)
    pending -> rejected   (terminal)

Uniqueness of pending requests is enforced by the partial unique index on
(document_id, requester_id) WHERE status = 'pending', so concurrent
submissions resolve in the database rather than through a read-then-write
check. Decisions are compare-and-swap updates on ``status``.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, Iterator, Optional, Tuple

from sqlalchemy import and_, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session, aliased

from xdocs.errors import (
    AlreadyAuthorized,
    DocumentNotFound,
    DuplicateRequest,
    Forbidden,
    InvalidTransition,
    NotFound,
)
from xdocs.models.download_request import ApplicantInfo, DownloadRequestOut, DownloadRequestStatus
from xdocs.models.user import Identity
from xdocs.services import access_policy
from xdocs.services.database_service import (
    DatabaseService,
    Document,
    DownloadRequest,
    User,
    retry_transient,
    utcnow,
)

logger = logging.getLogger(__name__)


def is_active(request: DownloadRequest, now: datetime) -> bool:
    """Approved and not yet past its expiry."""
    if request.status != DownloadRequestStatus.APPROVED:
        return False
    return request.expires_at is None or now < request.expires_at


def load_document_with_approval(
    session: Session,
    document_id: str,
    requester_id: str,
    now: datetime
) -> Optional[Tuple[Document, Optional[str], Optional[DownloadRequest]]]:
    """
    Read a document, its owner's username and the requester's most recent
    active approval in a single statement, so the permission descriptor
    and the approval come from one snapshot.

    Returns:
        ``(document, owner_name, approval_or_None)``, or None if the
        document does not exist
    """
    approval = aliased(DownloadRequest)
    return (
        session.query(Document, User.username, approval)
        .outerjoin(User, User.id == Document.owner_id)
        .outerjoin(approval, and_(
            approval.document_id == Document.id,
            approval.requester_id == requester_id,
            approval.status == DownloadRequestStatus.APPROVED.value,
            or_(approval.expires_at.is_(None), approval.expires_at > now),
        ))
        .filter(Document.id == document_id)
        .order_by(approval.approved_at.desc())
        .first()
    )


class RequestListing:
    """
    Lazy, finite, restartable sequence of download requests. Each
    iteration opens a fresh session and re-runs the query.
    """

    def __init__(self, service: "DownloadRequestService", build_query: Callable[[Session], Query]):
        self._service = service
        self._build_query = build_query

    def __iter__(self) -> Iterator[DownloadRequestOut]:
        now = self._service.clock()
        with self._service.db.session_scope() as session:
            for row in self._build_query(session).yield_per(100):
                yield self._service._to_view(*row, now=now)


class DownloadRequestService:
    """
    Creation, decision and lookup of download approval requests.

    Attributes:
        db: Database service
        approval_ttl: Validity window applied at approval; None means approvals never expire
        clock: Source of "now" (naive UTC)
    """

    def __init__(
        self,
        db: DatabaseService,
        approval_ttl: Optional[timedelta],
        clock: Callable[[], datetime] = utcnow
    ):
        self.db = db
        self.approval_ttl = approval_ttl
        self.clock = clock

    def _to_view(
        self,
        request: DownloadRequest,
        document_name: Optional[str],
        owner_id: Optional[str],
        requester_name: Optional[str],
        now: datetime
    ) -> DownloadRequestOut:
        view = DownloadRequestOut.model_validate(request)
        return view.model_copy(update={
            "document_name": document_name,
            "owner_id": owner_id,
            "requester_name": requester_name,
            "active": is_active(request, now),
        })

    def _view_query(self, session: Session) -> Query:
        return (
            session.query(DownloadRequest, Document.name, Document.owner_id, User.username)
            .join(Document, Document.id == DownloadRequest.document_id)
            .join(User, User.id == DownloadRequest.requester_id)
        )

    def _load_view(self, session: Session, request_id: str, now: datetime) -> DownloadRequestOut:
        row = self._view_query(session).filter(DownloadRequest.id == request_id).one()
        return self._to_view(*row, now=now)

    @retry_transient
    def create(self, identity: Identity, document_id: str, applicant: ApplicantInfo) -> DownloadRequestOut:
        """
        Submit a download request for a document the caller can view but
        cannot yet download.

        Raises:
            DocumentNotFound: If the document does not exist (or was just deleted)
            NotFound: If the caller cannot view the document
            AlreadyAuthorized: If the caller can already download it
            DuplicateRequest: If the caller already has a pending request for it
        """
        now = self.clock()
        with self.db.session_scope() as session:
            row = load_document_with_approval(session, document_id, identity.user_id, now)
            if row is None:
                raise DocumentNotFound()
            document, _, active = row
            if not access_policy.may_view(document, identity):
                raise NotFound("document not found")

            if access_policy.may_fetch_bytes(document, identity, active):
                raise AlreadyAuthorized()

            request = DownloadRequest(
                id=str(uuid.uuid4()),
                document_id=document.id,
                requester_id=identity.user_id,
                applicant_name=applicant.applicant_name,
                applicant_company=applicant.applicant_company,
                applicant_contact=applicant.applicant_contact,
                message=applicant.message or "",
                status=DownloadRequestStatus.PENDING.value,
                created_at=now,
                updated_at=now,
                expires_at=None,
            )
            session.add(request)
            try:
                session.flush()
            except IntegrityError:
                session.rollback()
                # Classify the constraint that fired: a vanished document
                # trips the foreign key, a racing submission the pending index.
                still_there = session.query(Document.id).filter(Document.id == document_id).first()
                if still_there is None:
                    raise DocumentNotFound()
                raise DuplicateRequest()

            logger.info(f"Created download request {request.id} for document {document_id}")
            return self._load_view(session, request.id, now)

    def _decide(self, identity: Identity, request_id: str, outcome: DownloadRequestStatus) -> DownloadRequestOut:
        now = self.clock()
        with self.db.session_scope() as session:
            row = (
                session.query(DownloadRequest, Document)
                .join(Document, Document.id == DownloadRequest.document_id)
                .filter(DownloadRequest.id == request_id)
                .first()
            )
            if row is None:
                # Requests are only ever removed together with their document.
                raise DocumentNotFound("download request not found")
            request, document = row

            if not access_policy.may_decide(document, identity):
                if not access_policy.may_view(document, identity):
                    raise NotFound("download request not found")
                raise Forbidden("only the document owner or an admin can decide this request")

            values = {
                "status": outcome.value,
                "approver_id": identity.user_id,
                "updated_at": now,
            }
            if outcome == DownloadRequestStatus.APPROVED:
                values["approved_at"] = now
                values["expires_at"] = now + self.approval_ttl if self.approval_ttl else None
            else:
                values["rejected_at"] = now

            result = session.execute(
                update(DownloadRequest)
                .where(
                    DownloadRequest.id == request_id,
                    DownloadRequest.status == DownloadRequestStatus.PENDING.value,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise InvalidTransition("download request has already been decided")

            session.refresh(request)
            logger.info(f"Download request {request_id} {outcome.value} by {identity.user_id}")
            return self._load_view(session, request_id, now)

    @retry_transient
    def approve(self, identity: Identity, request_id: str) -> DownloadRequestOut:
        """
        Approve a pending request. Sets approver, approved_at and expires_at.

        Raises:
            DocumentNotFound: If the request (and so its document) no longer exists
            Forbidden: If the caller is neither the document owner nor an admin
            InvalidTransition: If the request is not pending
        """
        return self._decide(identity, request_id, DownloadRequestStatus.APPROVED)

    @retry_transient
    def reject(self, identity: Identity, request_id: str) -> DownloadRequestOut:
        """Reject a pending request. Same preconditions as approve."""
        return self._decide(identity, request_id, DownloadRequestStatus.REJECTED)

    @retry_transient
    def find_active_approval(
        self,
        document_id: str,
        requester_id: str,
        now: Optional[datetime] = None
    ) -> Optional[DownloadRequestOut]:
        """Active approval for (document, requester) at ``now``, or None."""
        now = now or self.clock()
        with self.db.session_scope() as session:
            request = (
                session.query(DownloadRequest)
                .filter(
                    DownloadRequest.document_id == document_id,
                    DownloadRequest.requester_id == requester_id,
                    DownloadRequest.status == DownloadRequestStatus.APPROVED.value,
                    or_(DownloadRequest.expires_at.is_(None), DownloadRequest.expires_at > now),
                )
                .order_by(DownloadRequest.approved_at.desc())
                .first()
            )
            if request is None:
                return None
            return self._load_view(session, request.id, now)

    def list_pending_for(self, approver: Identity) -> RequestListing:
        """
        Pending requests the approver may decide, oldest first: every
        pending request for admins, otherwise those on documents they own.
        """
        def build(session: Session) -> Query:
            query = self._view_query(session).filter(
                DownloadRequest.status == DownloadRequestStatus.PENDING.value
            )
            if not approver.is_admin:
                query = query.filter(Document.owner_id == approver.user_id)
            return query.order_by(DownloadRequest.created_at.asc(), DownloadRequest.id.asc())

        return RequestListing(self, build)

    def list_mine(self, requester: Identity) -> RequestListing:
        """All requests submitted by ``requester``, newest first."""
        def build(session: Session) -> Query:
            return (
                self._view_query(session)
                .filter(DownloadRequest.requester_id == requester.user_id)
                .order_by(DownloadRequest.created_at.desc(), DownloadRequest.id.desc())
            )

        return RequestListing(self, build)
