"""
FastAPI application entry point.

This module creates and configures the FastAPI application.
Using an application factory pattern (create_app function) because:
- Easier to test with different configurations
- Explicit about initialization order

For local development:
    uvicorn reelpush.main:app --reload

For production:
    gunicorn reelpush.main:app -w 4 -k uvicorn.workers.UvicornWorker
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .api.routes import auth, health, uploads
from .config.settings import get_settings
from .core.upload.errors import (
    ProtocolInvariantViolation,
    RangeNotSatisfiable,
    StorageUnavailable,
    UploadError,
)

# Configure logging
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=get_settings().log_level.upper(),
)

logger = logging.getLogger(__name__)


def upload_error_status(exc: UploadError) -> int:
    """HTTP status for a failed upload."""
    if isinstance(exc, StorageUnavailable):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(exc, RangeNotSatisfiable):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, ProtocolInvariantViolation):
        return status.HTTP_502_BAD_GATEWAY
    # start, transfer and finish rejections all come from the remote side
    return status.HTTP_502_BAD_GATEWAY


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Runs on startup and shutdown. FastAPI calls this automatically when
    the application starts/stops.
    """
    settings = get_settings()

    logger.info(
        "ReelPush API starting",
        extra={
            "version": settings.api_version,
            "mock_mode": {
                "r2": settings.r2_mock_mode,
                "facebook": settings.fb_mock_mode,
            }
        }
    )

    missing_fields = settings.validate_required_fields()
    if missing_fields:
        logger.error(
            "Missing required configuration",
            extra={"missing_fields": missing_fields}
        )
        # Keep serving; /health/ready reports not_ready until this is fixed

    yield

    logger.info("ReelPush API shutting down")


def create_app() -> FastAPI:
    """
    Application factory.

    Creates and configures the FastAPI application.
    This function is called once at startup (in production) or
    multiple times (in tests with different configurations).
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="""
        Publish videos stored in Cloudflare R2 to Facebook Pages.

        ## Authentication

        Upload endpoints require an API key provided in the `X-API-Key` header.
        The Facebook Page access token travels in the request body.

        ## Workflow

        1. **Get a token**: `GET /auth/facebook`
           - Log in with Facebook and receive an access token

        2. **Publish**: `POST /api/v1/uploads`
           - Name the object key, the Page id, a title and description
           - The video is streamed from R2 to Facebook in chunks
           - Returns the published video id
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

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
        auth.router,
        prefix="/auth",
        tags=["Auth"],
    )

    app.include_router(
        uploads.router,
        prefix="/api/v1/uploads",
        tags=["Uploads"],
    )

    @app.get("/", include_in_schema=False)
    async def root():
        """Root endpoint - points at docs."""
        return {
            "message": "ReelPush API",
            "version": __version__,
            "docs": "/docs",
            "health": "/health",
        }

    @app.exception_handler(UploadError)
    async def upload_error_handler(request: Request, exc: UploadError):
        """
        Turn a failed upload into a structured error body.

        The raw remote payload is passed through so the caller can see
        exactly what the endpoint said.
        """
        return JSONResponse(
            status_code=upload_error_status(exc),
            content=exc.to_dict(),
        )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc):
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
# This is what uvicorn/gunicorn will import
app = create_app()


# For debugging/development
if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "reelpush.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.log_level.lower(),
    )
