"""
Upload API endpoints.

One endpoint: publish a video that already lives in R2 to a Facebook Page.
The request blocks until the upload has finished or failed; the driver
holds no state once the request returns.

Upload errors are turned into JSON by the handler registered in main.py,
so the caller always sees the failing phase, the session id and the last
acknowledged offset.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from ..dependencies import AuthenticatedUser, UploadOrchestratorDep

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------

class UploadRequest(BaseModel):
    """Which stored video to publish, and where."""
    object_key: str = Field(min_length=1, description="Key of the video in the bucket")
    target_id: str = Field(min_length=1, description="Facebook Page id to publish to")
    access_token: str = Field(min_length=1, description="Page access token with publish_video")
    title: str = Field(min_length=1, description="Title shown on the published video")
    description: str = Field(default="", description="Description shown on the published video")


class UploadResponse(BaseModel):
    """Result of a completed upload."""
    remote_object_id: Optional[str] = Field(
        description="Id of the published video, or null if the endpoint named none"
    )
    raw_metadata: dict[str, Any] = Field(description="Raw finish response from the endpoint")
    session_id: str = Field(description="Upload session id used for the transfer")
    total_size: int = Field(description="Bytes transferred")
    transfer_calls: int = Field(description="Number of chunk transfer calls made")


class UploadErrorResponse(BaseModel):
    """Body returned when an upload fails."""
    error: str
    detail: str
    phase: str
    session_id: Optional[str] = None
    last_offset: Optional[int] = None
    remote_error: Any = None


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=UploadResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Publish a stored video",
    description="Transfer a video from object storage to a Facebook Page via resumable upload",
    responses={
        409: {"model": UploadErrorResponse, "description": "Object changed during transfer"},
        502: {"model": UploadErrorResponse, "description": "Endpoint rejected the upload"},
        503: {"model": UploadErrorResponse, "description": "Object storage unavailable"},
    },
)
async def create_upload(
    request: UploadRequest,
    orchestrator: UploadOrchestratorDep,
    api_key: AuthenticatedUser,
) -> UploadResponse:
    logger.info(
        "Upload requested",
        extra={"object_key": request.object_key, "target_id": request.target_id}
    )

    try:
        result = await orchestrator.upload(
            object_key=request.object_key,
            target_id=request.target_id,
            auth_token=request.access_token,
            display_name=request.title,
            description=request.description,
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )

    return UploadResponse(
        remote_object_id=result.remote_object_id,
        raw_metadata=dict(result.raw_metadata),
        session_id=result.session_id,
        total_size=result.total_size,
        transfer_calls=result.transfer_calls,
    )
