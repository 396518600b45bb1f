"""
User accounts: registration, login, and the admin-driven account lifecycle.

    pending  -> active    (approve)
    pending  -> disabled  (disable)
    active   -> disabled  (disable)
    disabled -> active    (enable)
"""

import logging
import uuid
from typing import Callable, Dict, FrozenSet, List, Tuple

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError

from xdocs.errors import Conflict, Forbidden, InvalidTransition, NotFound, Unauthenticated
from xdocs.models.user import DirectoryUser, Identity, Role, UserOut, UserStatus
from xdocs.services.database_service import (
    DatabaseService,
    Document,
    DownloadRequest,
    User,
    retry_transient,
    utcnow,
)

logger = logging.getLogger(__name__)

_hasher = PasswordHasher()

# action -> (allowed source statuses, target status)
USER_TRANSITIONS: Dict[str, Tuple[FrozenSet[str], str]] = {
    "approve": (frozenset({UserStatus.PENDING.value}), UserStatus.ACTIVE.value),
    "disable": (frozenset({UserStatus.PENDING.value, UserStatus.ACTIVE.value}), UserStatus.DISABLED.value),
    "enable": (frozenset({UserStatus.DISABLED.value}), UserStatus.ACTIVE.value),
}


def hash_password(password: str) -> str:
    return _hasher.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return _hasher.verify(password_hash, password)
    except (VerificationError, InvalidHashError):
        return False


def _require_admin(identity: Identity) -> None:
    if not identity.is_admin:
        raise Forbidden("admin only")


class UserService:
    """Service for user accounts and their approval lifecycle"""

    def __init__(self, db: DatabaseService, clock: Callable = utcnow):
        self.db = db
        self.clock = clock

    def _insert(self, username: str, password: str, role: str, status: str, note: str = "") -> UserOut:
        now = self.clock()
        try:
            with self.db.session_scope() as session:
                user = User(
                    id=str(uuid.uuid4()),
                    username=username,
                    password_hash=hash_password(password),
                    role=role,
                    status=status,
                    note=note or "",
                    created_at=now,
                    updated_at=now,
                )
                session.add(user)
                session.flush()
                return UserOut.model_validate(user)
        except IntegrityError:
            raise Conflict("username already exists")

    def register(self, username: str, password: str, note: str = "") -> UserOut:
        """Self-service registration. The account waits for admin approval."""
        user = self._insert(username.strip(), password, Role.USER.value, UserStatus.PENDING.value, note)
        logger.info(f"Registered user {user.id} ({user.username}), pending approval")
        return user

    def create_user(self, admin: Identity, username: str, password: str, role: Role) -> UserOut:
        """Admin-created account, active immediately."""
        _require_admin(admin)
        user = self._insert(username.strip(), password, Role(role).value, UserStatus.ACTIVE.value)
        logger.info(f"Admin {admin.user_id} created user {user.id} ({user.username})")
        return user

    @retry_transient
    def authenticate(self, username: str, password: str) -> UserOut:
        """
        Check credentials for login.

        Raises:
            Unauthenticated: If the username or password is wrong
            Forbidden: If the account is pending approval or disabled
        """
        with self.db.session_scope() as session:
            user = session.query(User).filter(User.username == username.strip()).first()
            if user is None or not verify_password(password, user.password_hash):
                raise Unauthenticated("invalid credentials")
            if user.status == UserStatus.PENDING:
                raise Forbidden("account is pending admin approval")
            if user.status == UserStatus.DISABLED:
                raise Forbidden("account is disabled")
            return UserOut.model_validate(user)

    @retry_transient
    def resolve_identity(self, user_id: str) -> Identity:
        """
        Resolve a token subject to an identity using the role stored now,
        not the one baked into the token.

        Raises:
            Unauthenticated: If the user is unknown or not active
        """
        with self.db.session_scope() as session:
            user = session.get(User, user_id)
            if user is None or user.status != UserStatus.ACTIVE:
                raise Unauthenticated("account is not active")
            return Identity(user_id=user.id, role=user.role)

    @retry_transient
    def get(self, identity: Identity, user_id: str) -> UserOut:
        if user_id != identity.user_id:
            _require_admin(identity)
        with self.db.session_scope() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFound("user not found")
            return UserOut.model_validate(user)

    @retry_transient
    def list_users(self, admin: Identity) -> List[UserOut]:
        _require_admin(admin)
        with self.db.session_scope() as session:
            users = session.query(User).order_by(User.created_at.desc()).all()
            return [UserOut.model_validate(u) for u in users]

    @retry_transient
    def list_pending(self, admin: Identity) -> List[UserOut]:
        """Accounts awaiting approval, oldest first."""
        _require_admin(admin)
        with self.db.session_scope() as session:
            users = (
                session.query(User)
                .filter(User.status == UserStatus.PENDING.value)
                .order_by(User.created_at.asc())
                .all()
            )
            return [UserOut.model_validate(u) for u in users]

    @retry_transient
    def directory(self, identity: Identity) -> List[DirectoryUser]:
        """Active users, for choosing who may view a "specific" document."""
        with self.db.session_scope() as session:
            users = (
                session.query(User)
                .filter(User.status == UserStatus.ACTIVE.value)
                .order_by(User.username.asc())
                .all()
            )
            return [DirectoryUser.model_validate(u) for u in users]

    @retry_transient
    def transition(self, admin: Identity, user_id: str, action: str) -> UserOut:
        """
        Apply an account lifecycle action as a compare-and-swap on status.

        Raises:
            Forbidden: If the caller is not an admin, or disables themselves
            NotFound: If the user does not exist
            InvalidTransition: If the action is not allowed from the current status
        """
        _require_admin(admin)
        sources, target = USER_TRANSITIONS[action]
        if user_id == admin.user_id and target != UserStatus.ACTIVE:
            raise Forbidden("admins cannot disable their own account")

        with self.db.session_scope() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFound("user not found")
            result = session.execute(
                update(User)
                .where(User.id == user_id, User.status.in_(sources))
                .values(status=target, updated_at=self.clock())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise InvalidTransition(f"cannot {action} a {user.status} account")
            session.refresh(user)
            logger.info(f"Admin {admin.user_id} applied {action} to user {user_id}")
            return UserOut.model_validate(user)

    @retry_transient
    def set_role(self, admin: Identity, user_id: str, role: Role) -> UserOut:
        _require_admin(admin)
        role = Role(role)
        if user_id == admin.user_id and role != Role.ADMIN:
            raise Forbidden("admins cannot demote themselves")
        with self.db.session_scope() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFound("user not found")
            user.role = role.value
            user.updated_at = self.clock()
            session.flush()
            logger.info(f"Admin {admin.user_id} set role of {user_id} to {role.value}")
            return UserOut.model_validate(user)

    @retry_transient
    def delete_user(self, admin: Identity, user_id: str) -> None:
        """
        Delete an account. Its download requests go with it and decisions it
        made keep their outcome without an approver.

        Raises:
            Forbidden: If the caller is not an admin, or deletes themselves
            NotFound: If the user does not exist
            Conflict: If the user still owns documents
        """
        _require_admin(admin)
        if user_id == admin.user_id:
            raise Forbidden("admins cannot delete their own account")

        try:
            with self.db.session_scope() as session:
                if session.get(User, user_id) is None:
                    raise NotFound("user not found")
                if session.query(Document.id).filter(Document.owner_id == user_id).first() is not None:
                    raise Conflict("user still owns documents")
                session.execute(
                    delete(DownloadRequest)
                    .where(DownloadRequest.requester_id == user_id)
                    .execution_options(synchronize_session=False)
                )
                session.execute(
                    update(DownloadRequest)
                    .where(DownloadRequest.approver_id == user_id)
                    .values(approver_id=None)
                    .execution_options(synchronize_session=False)
                )
                result = session.execute(
                    delete(User)
                    .where(User.id == user_id)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise NotFound("user not found")
        except IntegrityError:
            # A document was uploaded for the user after the ownership check
            raise Conflict("user still owns documents")

        logger.info(f"Admin {admin.user_id} deleted user {user_id}")

    def ensure_default_admin(self, username: str, password: str) -> None:
        """Create the bootstrap administrator, or restore its role, status and password."""
        with self.db.session_scope() as session:
            user = session.query(User).filter(User.username == username).first()
            if user is not None:
                user.role = Role.ADMIN.value
                user.status = UserStatus.ACTIVE.value
                if not verify_password(password, user.password_hash):
                    user.password_hash = hash_password(password)
                logger.info(f"Default admin '{username}' verified")
                return

            now = self.clock()
            session.add(User(
                id=str(uuid.uuid4()),
                username=username,
                password_hash=hash_password(password),
                role=Role.ADMIN.value,
                status=UserStatus.ACTIVE.value,
                note="",
                created_at=now,
                updated_at=now,
            ))
            logger.info(f"Created default admin '{username}'")
