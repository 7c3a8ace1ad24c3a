"""
FastAPI dependency injection.

Dependencies provide instances of services, clients, and configuration
to route handlers. Using dependency injection means:
- Routes don't instantiate their own dependencies (easier to test)
- Dependencies can be mocked for testing
- Configuration is centralized

Each dependency is a function that FastAPI calls when needed.
"""

import logging
from typing import Annotated

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import APIKeyHeader

from ..config.settings import Settings, get_settings
from ..core.upload.orchestrator import UploadOrchestrator
from ..core.upload.protocols import RangeSource, UploadEndpoint
from ..infrastructure.facebook.client import create_video_endpoint
from ..infrastructure.facebook.oauth import FacebookOAuthClient
from ..infrastructure.storage.client import create_storage_client

logger = logging.getLogger(__name__)

# API Key security scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

# Global mock instances (shared across requests for testing)
_mock_storage_client = None
_mock_video_endpoint = None


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

async def verify_api_key(
    settings: Annotated[Settings, Depends(get_settings)],
    api_key: str = Security(api_key_header),
) -> str:
    """
    Validate API key from request header.

    Raises 403 if key is invalid or missing.
    """
    if not api_key:
        logger.warning("Request missing API key")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="API key required. Provide X-API-Key header.",
        )

    if api_key not in settings.api_keys_list:
        logger.warning(
            "Invalid API key attempt",
            extra={"key_prefix": api_key[:8] if api_key else ""}
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )

    return api_key


# ---------------------------------------------------------------------------
# Service Dependencies
# ---------------------------------------------------------------------------

def get_storage_client(
    settings: Annotated[Settings, Depends(get_settings)],
) -> RangeSource:
    """
    Provide storage client for range reads.

    Returns either R2 client or mock client based on settings.

    In mock mode, we reuse the same client across requests
    so that seeded objects persist during the testing session.
    """
    global _mock_storage_client

    if settings.r2_mock_mode:
        if _mock_storage_client is None:
            _mock_storage_client = create_storage_client(mock_mode=True)
            logger.info("Created shared mock storage client for session")
        return _mock_storage_client

    client = create_storage_client(config=settings.storage_config())
    logger.debug("Created R2 storage client")
    return client


def get_video_endpoint(
    settings: Annotated[Settings, Depends(get_settings)],
) -> UploadEndpoint:
    """
    Provide the Graph video endpoint, or a shared in-memory one in mock mode.
    """
    global _mock_video_endpoint

    if settings.fb_mock_mode:
        if _mock_video_endpoint is None:
            _mock_video_endpoint = create_video_endpoint(mock_mode=True)
            logger.info("Created shared mock video endpoint for session")
        return _mock_video_endpoint

    return create_video_endpoint(config=settings.graph_config())


def get_upload_orchestrator(
    settings: Annotated[Settings, Depends(get_settings)],
    storage: Annotated[RangeSource, Depends(get_storage_client)],
    endpoint: Annotated[UploadEndpoint, Depends(get_video_endpoint)],
) -> UploadOrchestrator:
    """
    Provide an UploadOrchestrator wired to storage and the Graph endpoint.

    The orchestrator holds no per-upload state, so a fresh one per request
    is cheap and safe.
    """
    return UploadOrchestrator(
        source=storage,
        endpoint=endpoint,
        config=settings.upload_config(),
    )


def get_oauth_client(
    settings: Annotated[Settings, Depends(get_settings)],
) -> FacebookOAuthClient:
    """Provide the Facebook login helper. 503 if the app is not configured."""
    try:
        config = settings.oauth_config()
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Facebook login is not configured: {e}",
        )
    return FacebookOAuthClient(config)


# ---------------------------------------------------------------------------
# Convenience Type Aliases
# ---------------------------------------------------------------------------

# These type aliases make route signatures cleaner
AuthenticatedUser = Annotated[str, Depends(verify_api_key)]
StorageClientDep = Annotated[RangeSource, Depends(get_storage_client)]
VideoEndpointDep = Annotated[UploadEndpoint, Depends(get_video_endpoint)]
UploadOrchestratorDep = Annotated[UploadOrchestrator, Depends(get_upload_orchestrator)]
OAuthClientDep = Annotated[FacebookOAuthClient, Depends(get_oauth_client)]
SettingsDep = Annotated[Settings, Depends(get_settings)]
