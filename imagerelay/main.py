"""
FastAPI application entry point.

This module creates and configures the FastAPI application.
Using an application factory pattern (create_app function) because:
- Easier to test with different configurations
- Explicit about initialization order
- Can create multiple app instances if needed (e.g., for testing)

Components (database, object store client, scheduler) are built in the
lifespan handler, not at import time. A missing key, IV or credential
raises ConfigError there and the server refuses to start.

For local development:
    uvicorn imagerelay.main:app --reload
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .api.routes import health, images, maintenance
from .components import build_components
from .config.settings import Settings, get_settings
from .core.errors import (
    ConfigError,
    ConflictError,
    ImageRelayError,
    NotFoundError,
    PayloadTooLargeError,
    RemoteStorageDriftError,
    RemoteUnavailableError,
    StorageIOError,
    ValidationError,
)

# Configure logging
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=logging.INFO,
)

logger = logging.getLogger(__name__)

# Checked in order; the first matching class wins.
ERROR_STATUS_CODES: list[tuple[type[ImageRelayError], int]] = [
    (PayloadTooLargeError, status.HTTP_413_REQUEST_ENTITY_TOO_LARGE),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (RemoteStorageDriftError, status.HTTP_502_BAD_GATEWAY),
    (RemoteUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (StorageIOError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (ConfigError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def status_code_for(exc: ImageRelayError) -> int:
    for error_class, code in ERROR_STATUS_CODES:
        if isinstance(exc, error_class):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup builds every component and starts the maintenance tickers.
    Shutdown stops the tickers and waits for them to finish.
    """
    settings: Settings = app.state.settings

    logger.info(
        "ImageRelay API starting",
        extra={
            "version": settings.api_version,
            "storage_mock_mode": settings.storage_mock_mode,
        }
    )

    try:
        components = build_components(settings)
    except ConfigError as e:
        logger.critical(
            "Refusing to start: invalid configuration",
            extra={"error": e.message, "details": e.details}
        )
        raise

    app.state.components = components

    if settings.scheduler_enabled:
        await components.scheduler.start()

    try:
        yield
    finally:
        # Shutdown
        logger.info("ImageRelay API shutting down")
        await components.scheduler.stop()
        app.state.components = None


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Application factory.

    Pass settings explicitly in tests; production reads them from the
    environment.
    """
    settings = settings or get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="""
        Image relay: accepts uploads, stores them in an S3-compatible object
        store and hands out opaque public tokens for fetching them.

        ## Authentication

        Fetching an image by token and uploading are public. Listing,
        deleting and triggering maintenance require an API key in the
        `X-API-Key` header.
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.components = None

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(
        health.router,
        prefix="/health",
        tags=["Health"],
    )

    app.include_router(
        images.router,
        prefix="/api/images",
        tags=["Images"],
    )

    app.include_router(
        maintenance.router,
        prefix="/api/maintenance",
        tags=["Maintenance"],
    )

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "message": "ImageRelay API",
            "version": __version__,
            "docs": "/docs",
            "health": "/health",
        }

    @app.exception_handler(ImageRelayError)
    async def image_relay_exception_handler(request: Request, exc: ImageRelayError):
        code = status_code_for(exc)
        log = logger.error if code >= 500 else logger.info
        log(
            "Request failed",
            extra={
                "path": request.url.path,
                "method": request.method,
                "error_code": exc.code,
                "error": exc.message,
            }
        )
        return JSONResponse(status_code=code, content=exc.to_dict())

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """
        Catch-all exception handler.

        In production, this prevents stack traces from leaking to clients.
        We log the full error server-side but return a generic message.
        """
        logger.error(
            "Unhandled exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "error": str(exc),
            },
            exc_info=exc,
        )

        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error. Please contact support if this persists."
            }
        )

    logger.info(
        "FastAPI application created",
        extra={
            "title": settings.api_title,
            "version": settings.api_version,
        }
    )

    return app


# Create the application instance
# This is what uvicorn will import
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "imagerelay.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.log_level.lower(),
    )
