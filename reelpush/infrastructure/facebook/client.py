"""
Graph API client for resumable video uploads.

Facebook's resumable upload is three POSTs against /{target_id}/videos:
- upload_phase=start: declare file_size, get upload_session_id and a window
- upload_phase=transfer: send bytes from start_offset as a multipart
  `video_file_chunk`, get the next window back
- upload_phase=finish: attach title/description, close the session

Offsets come back as numeric strings. When start_offset equals end_offset
the endpoint has everything it wants.

This client translates HTTP into domain types and domain errors. It makes
no decisions about chunking or retrying; that belongs to the driver.

Mock mode keeps sessions in memory, enabling end-to-end runs without a
Facebook app or page token.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, BinaryIO, Optional
from uuid import uuid4

import httpx

from ...core.upload.errors import (
    ChunkTransferFailed,
    FinishRejected,
    ProtocolInvariantViolation,
    SessionStartRejected,
    UploadPhase,
)
from ...core.upload.models import Chunk, OffsetWindow, StartResponse
from ...core.upload.protocols import UploadEndpoint

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

# bytes pulled from the range stream per worker-thread read
STREAM_READ_SIZE = 64 * 1024


@dataclass
class GraphConfig:
    """
    Configuration for the Graph API video endpoint.

    Video uploads go to graph-video.facebook.com, not graph.facebook.com.
    The timeout covers one whole request, so it must allow a full chunk
    to cross a slow link.
    """
    base_url: str = "https://graph-video.facebook.com"
    api_version: str = "v19.0"
    timeout_seconds: float = 300.0
    connect_timeout_seconds: float = 10.0

    def __post_init__(self) -> None:
        if not self.base_url.startswith(("http://", "https://")):
            raise ValueError(f"Invalid base_url: {self.base_url}")
        if self.timeout_seconds <= 0 or self.connect_timeout_seconds <= 0:
            raise ValueError("timeouts must be positive")


def _error_payload(response: httpx.Response) -> Any:
    """Raw error body, as JSON when possible, otherwise text."""
    try:
        return response.json()
    except ValueError:
        return response.text


def _json_object(response: httpx.Response) -> dict[str, Any]:
    body = response.json()
    if not isinstance(body, dict):
        return {"response": body}
    return body


def _is_transient(payload: Any) -> bool:
    """Graph marks retryable failures with error.is_transient."""
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            return bool(error.get("is_transient"))
    return False


def parse_offset(value: Any, field_name: str, phase: str) -> Optional[int]:
    """Parse an offset field. Missing or empty means None."""
    if value is None or value == "":
        return None
    try:
        offset = int(value)
    except (TypeError, ValueError):
        raise ProtocolInvariantViolation(
            f"Endpoint returned non-numeric {field_name}: {value!r}",
            phase=phase,
        )
    if offset < 0:
        raise ProtocolInvariantViolation(
            f"Endpoint returned negative {field_name}: {offset}",
            phase=phase,
        )
    return offset


async def multipart_chunk_body(
    boundary: str,
    fields: dict[str, str],
    file_field: str,
    filename: str,
    stream: BinaryIO,
) -> AsyncIterator[bytes]:
    """
    Encode form fields plus one file part as a multipart/form-data body.

    httpx only reads multipart files synchronously, which would block the
    event loop on every storage read. Here each piece of the file is read
    in a worker thread and yielded as soon as it arrives.
    """
    for name, value in fields.items():
        yield (
            f"--{boundary}\r\n"
            f'Content-Disposition: form-data; name="{name}"\r\n\r\n'
            f"{value}\r\n"
        ).encode()

    yield (
        f"--{boundary}\r\n"
        f'Content-Disposition: form-data; name="{file_field}"; filename="{filename}"\r\n'
        f"Content-Type: application/octet-stream\r\n\r\n"
    ).encode()

    while True:
        piece = await asyncio.to_thread(stream.read, STREAM_READ_SIZE)
        if not piece:
            break
        yield piece

    yield f"\r\n--{boundary}--\r\n".encode()


class GraphVideoClient:
    """
    UploadEndpoint implementation for Facebook Page videos.

    A fresh httpx.AsyncClient is opened per call, so one instance can be
    shared across requests and event loops. Tests inject an
    httpx.MockTransport through `transport`.
    """

    def __init__(
        self,
        config: Optional[GraphConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config or GraphConfig()
        self._transport = transport

    def _videos_path(self, target_id: str) -> str:
        return f"/{self._config.api_version}/{target_id}/videos"

    async def _post(
        self,
        target_id: str,
        data: Optional[dict[str, str]] = None,
        content: Optional[AsyncIterator[bytes]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> httpx.Response:
        timeout = httpx.Timeout(
            self._config.timeout_seconds,
            connect=self._config.connect_timeout_seconds,
        )
        async with httpx.AsyncClient(
            base_url=self._config.base_url,
            timeout=timeout,
            transport=self._transport,
        ) as client:
            return await client.post(
                self._videos_path(target_id),
                data=data,
                content=content,
                headers=headers,
            )

    async def start_session(
        self,
        target_id: str,
        auth_token: str,
        file_size: int,
    ) -> StartResponse:
        data = {
            "upload_phase": "start",
            "file_size": str(file_size),
            "access_token": auth_token,
        }

        try:
            response = await self._post(target_id, data)
        except httpx.HTTPError as e:
            logger.error(
                "Session start request failed",
                extra={"target_id": target_id, "error": str(e)}
            )
            raise SessionStartRejected(f"Session start request failed: {e}") from e

        if not response.is_success:
            payload = _error_payload(response)
            logger.error(
                "Session start rejected",
                extra={"target_id": target_id, "status_code": response.status_code}
            )
            raise SessionStartRejected(
                f"Endpoint rejected session start (HTTP {response.status_code})",
                payload=payload,
            )

        try:
            body = _json_object(response)
        except ValueError as e:
            raise SessionStartRejected(
                "Session start response was not JSON",
                payload=response.text,
            ) from e

        session_id = body.get("upload_session_id")
        if not session_id:
            raise SessionStartRejected(
                "Session start response carried no upload_session_id",
                payload=body,
            )

        start_offset = parse_offset(body.get("start_offset"), "start_offset", UploadPhase.START)
        end_offset = parse_offset(body.get("end_offset"), "end_offset", UploadPhase.START)

        return StartResponse(
            session_id=str(session_id),
            window=OffsetWindow(
                start_offset=start_offset if start_offset is not None else 0,
                end_offset=end_offset,
            ),
            raw=body,
        )

    async def transfer_chunk(
        self,
        target_id: str,
        session_id: str,
        auth_token: str,
        chunk: Chunk,
    ) -> OffsetWindow:
        fields = {
            "upload_phase": "transfer",
            "upload_session_id": session_id,
            "start_offset": str(chunk.offset),
            "access_token": auth_token,
        }
        boundary = uuid4().hex
        multipart = multipart_chunk_body(
            boundary,
            fields,
            "video_file_chunk",
            f"chunk-{chunk.offset}",
            chunk.stream,
        )

        # storage errors raised while the body streams propagate unchanged
        try:
            response = await self._post(
                target_id,
                content=multipart,
                headers={"Content-Type": f"multipart/form-data; boundary={boundary}"},
            )
        except httpx.HTTPError as e:
            # network errors and timeouts are worth another try
            logger.warning(
                "Chunk transfer request failed",
                extra={
                    "session_id": session_id,
                    "start_offset": chunk.offset,
                    "error": str(e),
                }
            )
            raise ChunkTransferFailed(
                f"Chunk transfer at offset {chunk.offset} failed: {e}",
                retryable=isinstance(e, httpx.TransportError),
                session_id=session_id,
            ) from e

        if not response.is_success:
            payload = _error_payload(response)
            retryable = (
                response.status_code in RETRYABLE_STATUS_CODES
                or _is_transient(payload)
            )
            raise ChunkTransferFailed(
                f"Endpoint rejected chunk at offset {chunk.offset} "
                f"(HTTP {response.status_code})",
                retryable=retryable,
                status_code=response.status_code,
                session_id=session_id,
                payload=payload,
            )

        try:
            body = _json_object(response)
        except ValueError as e:
            raise ProtocolInvariantViolation(
                "Transfer response was not JSON",
                session_id=session_id,
                payload=response.text,
            ) from e

        return OffsetWindow(
            start_offset=parse_offset(body.get("start_offset"), "start_offset", UploadPhase.TRANSFER),
            end_offset=parse_offset(body.get("end_offset"), "end_offset", UploadPhase.TRANSFER),
        )

    async def finish_session(
        self,
        target_id: str,
        session_id: str,
        auth_token: str,
        title: str,
        description: str,
    ) -> dict[str, Any]:
        data = {
            "upload_phase": "finish",
            "upload_session_id": session_id,
            "title": title,
            "description": description,
            "access_token": auth_token,
        }

        try:
            response = await self._post(target_id, data)
        except httpx.HTTPError as e:
            logger.error(
                "Session finish request failed",
                extra={"session_id": session_id, "error": str(e)}
            )
            raise FinishRejected(
                f"Session finish request failed: {e}",
                session_id=session_id,
            ) from e

        if not response.is_success:
            raise FinishRejected(
                f"Endpoint rejected session finish (HTTP {response.status_code})",
                session_id=session_id,
                payload=_error_payload(response),
            )

        try:
            return _json_object(response)
        except ValueError:
            return {"response": response.text}


# ---------------------------------------------------------------------------
# Mock Endpoint for Local Development
# ---------------------------------------------------------------------------

@dataclass
class MockUploadSession:
    target_id: str
    file_size: int
    video_id: str
    data: bytearray
    finished: bool = False
    title: str = ""
    description: str = ""


class MockGraphVideoClient:
    """
    In-memory stand-in for the Graph video endpoint.

    Behaves like the real thing from the driver's point of view: it hands
    out windows of `window_size` bytes, only accepts bytes at the offset it
    asked for, and reports start_offset == end_offset once it has the
    whole file.
    """

    def __init__(self, window_size: int = 4 * 1024 * 1024) -> None:
        if window_size < 1:
            raise ValueError("window_size must be positive")
        self._window_size = window_size
        self.sessions: dict[str, MockUploadSession] = {}
        logger.info("Initialized mock Graph video client (in-memory)")

    def _window(self, session: MockUploadSession) -> OffsetWindow:
        start = len(session.data)
        end = min(start + self._window_size, session.file_size)
        return OffsetWindow(start_offset=start, end_offset=end)

    async def start_session(
        self,
        target_id: str,
        auth_token: str,
        file_size: int,
    ) -> StartResponse:
        session_id = uuid4().hex
        session = MockUploadSession(
            target_id=target_id,
            file_size=file_size,
            video_id=str(uuid4().int)[:15],
            data=bytearray(),
        )
        self.sessions[session_id] = session
        window = self._window(session)
        return StartResponse(
            session_id=session_id,
            window=window,
            raw={
                "upload_session_id": session_id,
                "video_id": session.video_id,
                "start_offset": str(window.start_offset),
                "end_offset": str(window.end_offset),
            },
        )

    async def transfer_chunk(
        self,
        target_id: str,
        session_id: str,
        auth_token: str,
        chunk: Chunk,
    ) -> OffsetWindow:
        session = self.sessions.get(session_id)
        if session is None:
            raise ChunkTransferFailed(
                f"Unknown upload session: {session_id}",
                session_id=session_id,
                payload={"error": {"message": "Invalid upload session"}},
            )

        payload = chunk.stream.read()
        if chunk.offset == len(session.data):
            # accept only what fits in the current window
            window = self._window(session)
            session.data.extend(payload[:window.end_offset - window.start_offset])

        return self._window(session)

    async def finish_session(
        self,
        target_id: str,
        session_id: str,
        auth_token: str,
        title: str,
        description: str,
    ) -> dict[str, Any]:
        session = self.sessions.get(session_id)
        if session is None or len(session.data) != session.file_size:
            raise FinishRejected(
                "Upload session is incomplete or unknown",
                session_id=session_id,
                payload={"error": {"message": "Incomplete upload"}},
            )
        session.finished = True
        session.title = title
        session.description = description
        return {"success": True, "video_id": session.video_id}


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

def create_video_endpoint(
    config: Optional[GraphConfig] = None,
    mock_mode: bool = False,
) -> UploadEndpoint:
    """
    Create the upload endpoint based on configuration.

    Args:
        config: Graph API configuration (defaults apply if omitted)
        mock_mode: If True, return the in-memory endpoint

    Returns:
        UploadEndpoint implementation (Graph or Mock)
    """
    if mock_mode:
        return MockGraphVideoClient()
    return GraphVideoClient(config)
