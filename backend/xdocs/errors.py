"""
Typed failures raised by the access-control core.

Every error carries the HTTP status it maps to at the API boundary and a
stable machine-readable code, so clients can tell "approval required"
apart from "access denied".
"""

from typing import Dict, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse


class XDocsError(Exception):
    """Base class for all domain errors."""
    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "error"
    default_message: str = "request failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationFailed(XDocsError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_failed"
    default_message = "invalid request"


class PayloadTooLarge(ValidationFailed):
    status_code = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
    code = "payload_too_large"
    default_message = "file too large"


class Unauthenticated(XDocsError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "unauthenticated"
    default_message = "authentication required"


class Forbidden(XDocsError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"
    default_message = "forbidden"


class ApprovalRequired(Forbidden):
    """The caller may view the document but needs an approved download request."""
    code = "approval_required"
    default_message = "download approval required"


class NotFound(XDocsError):
    """Absent, or present but not viewable by the caller."""
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    default_message = "not found"


class DocumentNotFound(NotFound):
    """
    The targeted document does not exist, e.g. it was deleted concurrently.
    Rendered exactly like NotFound so clients cannot tell whether the document exists.
    """
    default_message = "document not found"


class Conflict(XDocsError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"
    default_message = "conflict"


class DuplicateRequest(Conflict):
    code = "duplicate_request"
    default_message = "a pending download request already exists for this document"


class AlreadyAuthorized(Conflict):
    code = "already_authorized"
    default_message = "you can already download this document"


class InvalidTransition(Conflict):
    code = "invalid_transition"
    default_message = "invalid state transition"


async def xdocs_error_handler(request: Request, exc: XDocsError) -> JSONResponse:
    """Render a domain error as ``{"detail", "code"}`` with its mapped status."""
    headers: Dict[str, str] = {}
    if isinstance(exc, Unauthenticated):
        headers["WWW-Authenticate"] = "Bearer"
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
        headers=headers or None,
    )
