"""
Database service for the document repository.
Owns the relational schema (users, documents, download_requests) and
connection/session management for plain SQLAlchemy URLs or Cloud SQL.
"""

import functools
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Optional, TypeVar

from google.cloud import secretmanager
from google.cloud.sql.connector import Connector
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    create_engine,
    event,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

logger = logging.getLogger(__name__)

Base = declarative_base()

F = TypeVar("F", bound=Callable[..., Any])


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    """SQLAlchemy model for user accounts"""
    __tablename__ = 'users'

    id = Column(String(36), primary_key=True)
    username = Column(String(64), nullable=False, unique=True)
    password_hash = Column(Text, nullable=False)
    role = Column(String(16), nullable=False, default='user')
    status = Column(String(16), nullable=False, default='pending', index=True)
    note = Column(Text, nullable=False, default='')
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class Document(Base):
    """SQLAlchemy model for documents"""
    __tablename__ = 'documents'

    id = Column(String(36), primary_key=True)
    owner_id = Column(String(36), ForeignKey('users.id', ondelete='RESTRICT'), nullable=False, index=True)

    name = Column(String(500), nullable=False)
    content_type = Column(String(200), nullable=False)
    size = Column(Integer, nullable=False)
    notes = Column(Text, nullable=False, default='')

    # Access control
    permission = Column(String(16), nullable=False, default='public')
    allowed_users = Column(JSON().with_variant(JSONB(), 'postgresql'), nullable=False, default=list)
    download_preauthorized = Column(Boolean, nullable=False, default=False)

    # Blob store key
    storage_rel_path = Column(Text, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class DownloadRequest(Base):
    """SQLAlchemy model for download approval requests"""
    __tablename__ = 'download_requests'
    __table_args__ = (
        # At most one pending request per (document, requester)
        Index(
            'idx_download_requests_pending_unique',
            'document_id',
            'requester_id',
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    id = Column(String(36), primary_key=True)
    document_id = Column(String(36), ForeignKey('documents.id', ondelete='CASCADE'), nullable=False, index=True)
    requester_id = Column(String(36), ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)

    applicant_name = Column(Text, nullable=False)
    applicant_company = Column(Text, nullable=False)
    applicant_contact = Column(Text, nullable=False)
    message = Column(Text, nullable=False, default='')

    status = Column(String(16), nullable=False, default='pending', index=True)
    approver_id = Column(String(36), ForeignKey('users.id', ondelete='SET NULL'), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)
    approved_at = Column(DateTime, nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def retry_transient(func: F) -> F:
    """
    Retry a single-transaction operation once on a transient storage error
    (connection loss, lock contention). A second failure propagates.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except OperationalError as e:
            logger.warning(f"Transient database error in {func.__name__}, retrying once: {e}")
            return func(*args, **kwargs)
    return wrapper  # type: ignore[return-value]


class DatabaseService:
    """Service for managing database connections and sessions"""

    def __init__(
        self,
        database_url: str,
        cloud_sql_instance: Optional[str] = None,
        project_id: Optional[str] = None,
        region: Optional[str] = None,
        database_name: Optional[str] = None,
        db_user: Optional[str] = None,
        secret_name: Optional[str] = None
    ):
        """
        Initialize database service

        Args:
            database_url: SQLAlchemy URL, used unless a Cloud SQL instance is given
            cloud_sql_instance: Cloud SQL instance name (enables the connector)
            project_id: GCP project ID
            region: Cloud SQL instance region
            database_name: Database name
            db_user: Database user
            secret_name: Secret Manager secret name for database password
        """
        self.database_url = database_url
        self.cloud_sql_instance = cloud_sql_instance
        self.project_id = project_id
        self.region = region
        self.database_name = database_name
        self.db_user = db_user
        self.secret_name = secret_name

        self.connector = None
        self.engine = None
        self.SessionLocal = None

    def _get_db_password(self) -> str:
        """Fetch database password from Secret Manager"""
        try:
            client = secretmanager.SecretManagerServiceClient()
            secret_path = f"projects/{self.project_id}/secrets/{self.secret_name}/versions/latest"
            response = client.access_secret_version(request={"name": secret_path})
            password = response.payload.data.decode("UTF-8")
            logger.info("Successfully retrieved database password from Secret Manager")
            return password
        except Exception as e:
            logger.error(f"Failed to retrieve database password from Secret Manager: {e}")
            raise

    def _get_connection(self) -> Any:
        """Create a database connection using Cloud SQL Connector"""
        try:
            instance_connection_string = f"{self.project_id}:{self.region}:{self.cloud_sql_instance}"
            conn = self.connector.connect(
                instance_connection_string,
                "pg8000",
                user=self.db_user,
                password=self._get_db_password(),
                db=self.database_name
            )
            return conn
        except Exception as e:
            logger.error(f"Failed to create database connection: {e}")
            raise

    def _create_engine(self):
        if self.cloud_sql_instance:
            logger.info("Initializing Cloud SQL connector...")
            self.connector = Connector()
            return create_engine(
                "postgresql+pg8000://",
                creator=self._get_connection,
                pool_size=5,
                max_overflow=2,
                pool_timeout=30,
                pool_recycle=1800,  # Recycle connections after 30 minutes
                pool_pre_ping=True,
            )

        if self.database_url.startswith("sqlite"):
            engine = create_engine(
                self.database_url,
                connect_args={"check_same_thread": False, "timeout": 30},
            )
            event.listen(engine, "connect", _enable_sqlite_foreign_keys)
            return engine

        return create_engine(self.database_url, pool_pre_ping=True)

    def initialize(self):
        """Initialize database connection pool and create tables"""
        try:
            self.engine = self._create_engine()

            self.SessionLocal = sessionmaker(
                autocommit=False,
                autoflush=False,
                expire_on_commit=False,
                bind=self.engine
            )

            # Create tables if they don't exist
            Base.metadata.create_all(bind=self.engine)
            logger.info("Database initialization complete. Tables created/verified.")

        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise

    def get_session(self) -> Session:
        """Get a new database session"""
        if not self.SessionLocal:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self.SessionLocal()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """One transaction: commit on success, roll back on any error."""
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self):
        """Close database connections and cleanup"""
        if self.engine is not None:
            self.engine.dispose()
        if self.connector:
            self.connector.close()
            logger.info("Database connector closed successfully")
