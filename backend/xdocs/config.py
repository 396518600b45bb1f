"""
Application configuration management.
"""

from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Attributes:
        DATABASE_URL: SQLAlchemy URL used when no Cloud SQL instance is configured
        CLOUD_SQL_INSTANCE: Cloud SQL instance name (enables the Cloud SQL connector)
        PROJECT_ID: GCP project identifier
        REGION: GCP region for resources
        DB_NAME: Database name (Cloud SQL mode)
        DB_USER: Database user (Cloud SQL mode)
        DB_SECRET_NAME: Secret Manager secret holding the database password
        JWT_SECRET: Secret used to sign and verify bearer tokens
        JWT_ALGORITHM: JWT signing algorithm
        JWT_EXPIRE_HOURS: Lifetime of issued tokens
        STORAGE_BACKEND: "local" for the filesystem, "gcs" for a bucket
        STORAGE_ROOT: Root directory of the local blob store
        STORAGE_BUCKET: GCS bucket holding document bytes
        MAX_UPLOAD_BYTES: Largest accepted upload
        DOWNLOAD_APPROVAL_TTL_HOURS: Validity window of an approved download
            request; 0 means approvals never expire
        HIDE_UNVIEWABLE_DOCUMENTS: Report unviewable documents as not found
            on download instead of forbidden
        AUDIT_CLOUD_LOGGING: Send audit events to Google Cloud Logging
        DEFAULT_ADMIN_USERNAME: Bootstrap administrator username
        DEFAULT_ADMIN_PASSWORD: Bootstrap administrator password
        CORS_ORIGINS: Origins allowed to call the API from a browser
        LOG_LEVEL: Root log level
    """
    DATABASE_URL: str = "sqlite:///./xdocs.db"
    CLOUD_SQL_INSTANCE: Optional[str] = None
    PROJECT_ID: Optional[str] = None
    REGION: str = "us-central1"
    DB_NAME: str = "xdocs"
    DB_USER: str = "xdocs"
    DB_SECRET_NAME: str = "xdocs-db-credentials"

    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRE_HOURS: int = 24

    STORAGE_BACKEND: str = "local"
    STORAGE_ROOT: str = "./data/documents"
    STORAGE_BUCKET: Optional[str] = None
    MAX_UPLOAD_BYTES: int = 50 * 1024 * 1024

    DOWNLOAD_APPROVAL_TTL_HOURS: float = 72
    HIDE_UNVIEWABLE_DOCUMENTS: bool = True

    AUDIT_CLOUD_LOGGING: bool = False

    DEFAULT_ADMIN_USERNAME: str = "admin"
    DEFAULT_ADMIN_PASSWORD: str = "admin123"

    CORS_ORIGINS: List[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:8080",
        "http://127.0.0.1:8080",
    ]
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )


# Global settings instance
settings = Settings()
