"""
Access policy: pure decision functions over a document's permission
descriptor and the acting identity.

Nothing here touches the database. An active download approval is looked
up by the caller and passed in, so every predicate is a function of its
arguments only.
"""

from typing import Any, Optional

from xdocs.errors import Unauthenticated
from xdocs.models.document import Permission
from xdocs.models.user import Identity


def _require_identity(user: Optional[Identity]) -> Identity:
    if user is None:
        raise Unauthenticated()
    return user


def may_view(doc: Any, user: Optional[Identity]) -> bool:
    """
    Whether ``user`` may see the document's metadata.

    Args:
        doc: Document record (owner_id, permission, allowed_users)
        user: Acting identity

    Returns:
        True for admins, the owner, public documents, and listed users of
        "specific" documents

    Raises:
        Unauthenticated: If no identity is given
    """
    user = _require_identity(user)
    if user.is_admin:
        return True
    if doc.owner_id == user.user_id:
        return True
    if doc.permission == Permission.PUBLIC:
        return True
    if doc.permission == Permission.SPECIFIC and user.user_id in (doc.allowed_users or []):
        return True
    return False


def may_edit(doc: Any, user: Optional[Identity]) -> bool:
    """Admins and the owner may edit, re-permission, or delete a document."""
    user = _require_identity(user)
    return user.is_admin or doc.owner_id == user.user_id


def may_fetch_bytes(doc: Any, user: Optional[Identity], active_approval: Optional[Any] = None) -> bool:
    """
    Whether ``user`` may retrieve the document's bytes.

    Requires view permission, plus one of: admin, owner, the document is
    preauthorized for download, or an active approval for this
    (document, user) pair.
    """
    if not may_view(doc, user):
        return False
    if user.is_admin or doc.owner_id == user.user_id:
        return True
    if doc.download_preauthorized:
        return True
    return active_approval is not None


def may_decide(doc: Any, user: Optional[Identity]) -> bool:
    """Approvers of a document's download requests: its owner or any admin."""
    return may_edit(doc, user)
