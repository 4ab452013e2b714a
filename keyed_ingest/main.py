from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from keyed_ingest import __version__
from keyed_ingest.core.config import Settings, get_settings
from keyed_ingest.core.exceptions import AppException
from keyed_ingest.core.logging import get_logger, setup_logging
from keyed_ingest.infrastructure.db.connection import DatabaseManager
from keyed_ingest.interfaces.http.middleware import LoggingMiddleware
from keyed_ingest.interfaces.http.routes import api_router
from keyed_ingest.schemas.base import ErrorResponse
from keyed_ingest.services.workspace import UploadWorkspace

logger = get_logger(__name__)


def create_application(settings: Optional[Settings] = None, db: Optional[DatabaseManager] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        setup_logging(settings.logging)
        logger.info("Starting application...")

        database = db or DatabaseManager.from_settings(settings.database)
        database.connect()
        app.state.workspace = UploadWorkspace(database, settings)
        logger.info("Database connection established")

        try:
            yield
        finally:
            logger.info("Shutting down...")
            app.state.workspace = None
            database.disconnect()
            logger.info("Database connection closed")

    app = FastAPI(
        title=settings.app_name,
        description="Streaming ingestion into a keyed, deduplicated record store",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(LoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_settings.allowed_origins,
        allow_credentials=settings.cors_settings.allow_credentials,
        allow_methods=settings.cors_settings.allowed_methods,
        allow_headers=settings.cors_settings.allowed_headers,
    )

    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
        """Handle application-specific exceptions."""
        body = ErrorResponse(message=exc.message, error_code=exc.error_code, error_details=exc.details)
        return JSONResponse(status_code=exc.status_code, content=body.model_dump(mode="json"))

    @app.get("/health")
    async def health_check(request: Request) -> dict:
        workspace = getattr(request.app.state, "workspace", None)
        healthy = workspace is not None and workspace.db.is_connected and workspace.db.health_check()
        return {"status": "healthy" if healthy else "unhealthy", "version": __version__}

    app.include_router(api_router, prefix=settings.api_prefix)

    return app


app = create_application()


def main():
    uvicorn.run(
        "keyed_ingest.main:app",
        host="0.0.0.0",
        port=8000,
        log_level="info",
        access_log=True,
        server_header=False,
        date_header=False,
    )


if __name__ == "__main__":
    main()
