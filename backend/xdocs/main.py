"""
xdocs FastAPI Application

Main application entry point for the document repository backend.
"""

import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from xdocs.config import Settings, settings as default_settings
from xdocs.errors import XDocsError, xdocs_error_handler
from xdocs.routers import accounts, documents, download_requests, users
from xdocs.services.database_service import DatabaseService, utcnow
from xdocs.services.document_registry import DocumentRegistry
from xdocs.services.download_request_service import DownloadRequestService
from xdocs.services.logging_service import AuditLoggingService
from xdocs.services.storage_service import build_storage_service
from xdocs.services.user_service import UserService

logger = logging.getLogger(__name__)


async def storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error(f"Database failure on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": "storage failure", "code": "storage_error"},
    )


def create_app(app_settings: Optional[Settings] = None, clock: Callable = utcnow) -> FastAPI:
    """
    Build the application and its services.

    Args:
        app_settings: Settings to use (defaults to the environment)
        clock: Source of "now" for approvals and expiry

    Returns:
        Configured FastAPI application
    """
    app_settings = app_settings or default_settings
    logging.basicConfig(
        level=app_settings.LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    )

    database_service = DatabaseService(
        database_url=app_settings.DATABASE_URL,
        cloud_sql_instance=app_settings.CLOUD_SQL_INSTANCE,
        project_id=app_settings.PROJECT_ID,
        region=app_settings.REGION,
        database_name=app_settings.DB_NAME,
        db_user=app_settings.DB_USER,
        secret_name=app_settings.DB_SECRET_NAME
    )

    storage_service = build_storage_service(
        app_settings.STORAGE_BACKEND,
        root=app_settings.STORAGE_ROOT,
        bucket_name=app_settings.STORAGE_BUCKET,
        project_id=app_settings.PROJECT_ID
    )

    approval_ttl = None
    if app_settings.DOWNLOAD_APPROVAL_TTL_HOURS > 0:
        approval_ttl = timedelta(hours=app_settings.DOWNLOAD_APPROVAL_TTL_HOURS)

    user_service = UserService(database_service, clock=clock)
    download_request_service = DownloadRequestService(database_service, approval_ttl, clock=clock)
    document_registry = DocumentRegistry(
        database_service,
        storage_service,
        download_request_service,
        max_upload_bytes=app_settings.MAX_UPLOAD_BYTES,
        hide_unviewable=app_settings.HIDE_UNVIEWABLE_DOCUMENTS
    )
    audit_logger = AuditLoggingService(
        project_id=app_settings.PROJECT_ID,
        use_cloud_logging=app_settings.AUDIT_CLOUD_LOGGING
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("=" * 60)
        logger.info("Starting xdocs backend")
        logger.info("=" * 60)
        logger.info(f"  - Storage backend: {app_settings.STORAGE_BACKEND}")
        logger.info(f"  - Download approval validity: {approval_ttl or 'unlimited'}")

        database_service.initialize()
        logger.info("✓ Database connection established and schema verified")

        user_service.ensure_default_admin(
            app_settings.DEFAULT_ADMIN_USERNAME,
            app_settings.DEFAULT_ADMIN_PASSWORD
        )
        logger.info("✓ xdocs backend ready")
        try:
            yield
        finally:
            logger.info("Shutting down xdocs backend...")
            database_service.close()
            logger.info("✓ Database connections closed")

    app = FastAPI(
        title="xdocs API",
        description="Document repository with per-document access control and download approval",
        version="0.1.0",
        lifespan=lifespan
    )

    # Make services available to routers
    app.state.settings = app_settings
    app.state.database_service = database_service
    app.state.storage_service = storage_service
    app.state.user_service = user_service
    app.state.download_request_service = download_request_service
    app.state.document_registry = document_registry
    app.state.audit_logger = audit_logger

    app.add_exception_handler(XDocsError, xdocs_error_handler)
    app.add_exception_handler(SQLAlchemyError, storage_error_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    app.include_router(accounts.router)
    app.include_router(users.router)
    app.include_router(documents.router)
    app.include_router(download_requests.router)

    @app.get("/healthz", tags=["health"])
    def health_check():
        """
        Health check endpoint.

        Returns:
            Dictionary containing service status
        """
        return {
            "status": "healthy",
            "service": "xdocs-api",
            "version": "0.1.0"
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8752)
