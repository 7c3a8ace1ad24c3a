"""
Unit tests for the Graph API video client.

httpx.MockTransport stands in for graph-video.facebook.com, so these tests
check the wire format (paths, form fields, multipart chunk) and the way
HTTP outcomes become domain types and domain errors.
"""

import asyncio
import io
import time
from urllib.parse import parse_qs

import httpx
import pytest
from botocore.exceptions import ReadTimeoutError

from reelpush.core.upload.errors import (
    ChunkTransferFailed,
    FinishRejected,
    ProtocolInvariantViolation,
    SessionStartRejected,
    StorageUnavailable,
)
from reelpush.core.upload.models import Chunk
from reelpush.infrastructure.facebook.client import GraphConfig, GraphVideoClient
from reelpush.infrastructure.storage.client import RangeStream


def form(request: httpx.Request) -> dict[str, str]:
    """Decode a urlencoded request body into a flat dict."""
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


def client_for(handler) -> GraphVideoClient:
    return GraphVideoClient(
        GraphConfig(base_url="https://graph-video.test", api_version="v19.0"),
        transport=httpx.MockTransport(handler),
    )


def make_chunk(offset: int = 0, data: bytes = b"abcdef") -> Chunk:
    return Chunk(offset=offset, length=len(data), stream=io.BytesIO(data))


class TestStartSession:

    @pytest.mark.asyncio
    async def test_sends_start_phase_and_parses_window(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={
                "video_id": "987",
                "upload_session_id": "sess-42",
                "start_offset": "0",
                "end_offset": "1048576",
            })

        response = await client_for(handler).start_session("page-1", "tok", 20_000_000)

        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/v19.0/page-1/videos"
        assert form(request) == {
            "upload_phase": "start",
            "file_size": "20000000",
            "access_token": "tok",
        }
        assert response.session_id == "sess-42"
        assert response.window.start_offset == 0
        assert response.window.end_offset == 1_048_576
        assert response.raw["video_id"] == "987"

    @pytest.mark.asyncio
    async def test_missing_offsets_default(self):
        def handler(request):
            return httpx.Response(200, json={"upload_session_id": "sess-42"})

        response = await client_for(handler).start_session("page-1", "tok", 100)

        assert response.window.start_offset == 0
        assert response.window.end_offset is None

    @pytest.mark.asyncio
    async def test_rejection_preserves_error_body(self):
        body = {"error": {"message": "Invalid OAuth access token.", "code": 190}}

        def handler(request):
            return httpx.Response(400, json=body)

        with pytest.raises(SessionStartRejected) as exc_info:
            await client_for(handler).start_session("page-1", "tok", 100)

        assert exc_info.value.payload == body
        assert "HTTP 400" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_network_failure_is_a_rejection(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(SessionStartRejected, match="connection refused"):
            await client_for(handler).start_session("page-1", "tok", 100)

    @pytest.mark.asyncio
    async def test_missing_session_id_is_a_rejection(self):
        def handler(request):
            return httpx.Response(200, json={"video_id": "987"})

        with pytest.raises(SessionStartRejected, match="upload_session_id"):
            await client_for(handler).start_session("page-1", "tok", 100)

    @pytest.mark.asyncio
    async def test_non_numeric_offset_is_a_violation(self):
        def handler(request):
            return httpx.Response(200, json={"upload_session_id": "s", "end_offset": "lots"})

        with pytest.raises(ProtocolInvariantViolation, match="non-numeric"):
            await client_for(handler).start_session("page-1", "tok", 100)


class TestTransferChunk:

    @pytest.mark.asyncio
    async def test_sends_chunk_as_multipart(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"start_offset": "1006", "end_offset": "2006"})

        window = await client_for(handler).transfer_chunk(
            "page-1", "sess-42", "tok", make_chunk(offset=1000, data=b"abcdef")
        )

        request = seen[0]
        assert request.headers["content-type"].startswith("multipart/form-data")
        body = request.content
        assert b'name="upload_phase"' in body and b"transfer" in body
        assert b'name="upload_session_id"' in body and b"sess-42" in body
        assert b'name="start_offset"' in body and b"1000" in body
        assert b'name="video_file_chunk"' in body
        assert b"abcdef" in body
        assert window.start_offset == 1006
        assert window.end_offset == 2006

    @pytest.mark.asyncio
    async def test_completion_window(self):
        def handler(request):
            return httpx.Response(200, json={"start_offset": "6", "end_offset": "6"})

        window = await client_for(handler).transfer_chunk("page-1", "sess-42", "tok", make_chunk())

        assert window.is_complete

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [429, 500, 502, 503, 504])
    async def test_server_errors_are_retryable(self, status_code):
        def handler(request):
            return httpx.Response(status_code, json={"error": {"message": "try later"}})

        with pytest.raises(ChunkTransferFailed) as exc_info:
            await client_for(handler).transfer_chunk("page-1", "sess-42", "tok", make_chunk(offset=6))

        error = exc_info.value
        assert error.retryable
        assert error.status_code == status_code
        assert error.session_id == "sess-42"
        assert error.payload == {"error": {"message": "try later"}}

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retryable(self):
        def handler(request):
            return httpx.Response(400, json={"error": {"message": "Invalid upload session"}})

        with pytest.raises(ChunkTransferFailed) as exc_info:
            await client_for(handler).transfer_chunk("page-1", "sess-42", "tok", make_chunk())

        assert not exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_transient_flag_makes_client_error_retryable(self):
        def handler(request):
            return httpx.Response(400, json={"error": {"message": "blip", "is_transient": True}})

        with pytest.raises(ChunkTransferFailed) as exc_info:
            await client_for(handler).transfer_chunk("page-1", "sess-42", "tok", make_chunk())

        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_timeout_is_retryable(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(ChunkTransferFailed) as exc_info:
            await client_for(handler).transfer_chunk("page-1", "sess-42", "tok", make_chunk())

        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_response_without_offsets_passes_through(self):
        """The driver, not the client, decides what missing offsets mean."""
        def handler(request):
            return httpx.Response(200, json={"success": True})

        window = await client_for(handler).transfer_chunk("page-1", "sess-42", "tok", make_chunk())

        assert window.start_offset is None
        assert window.end_offset is None


class PartialBody(io.BytesIO):
    """Storage body that hands out a few bytes, then times out."""

    def __init__(self, data: bytes) -> None:
        super().__init__(data)
        self.reads = 0

    def read(self, size=-1):
        self.reads += 1
        if self.reads > 1:
            raise ReadTimeoutError(endpoint_url="https://r2.test")
        return super().read(min(size, 4))


class SlowBody(io.BytesIO):
    """Storage body whose reads block the calling thread."""

    def __init__(self, data: bytes, delay: float) -> None:
        super().__init__(data)
        self.delay = delay

    def read(self, size=-1):
        time.sleep(self.delay)
        return super().read(size)


class TestChunkBodyStreaming:
    """The chunk body is pulled from storage while the request is sent."""

    @pytest.mark.asyncio
    async def test_storage_failure_mid_body_is_storage_error(self):
        handled = []

        def handler(request):
            handled.append(request)
            return httpx.Response(200, json={"start_offset": "10", "end_offset": "10"})

        stream = RangeStream(PartialBody(b"0123456789"), 10, "videos/clip.mp4")
        chunk = Chunk(offset=0, length=10, stream=stream)

        with pytest.raises(StorageUnavailable, match="after 4 of 10 bytes"):
            await client_for(handler).transfer_chunk("page-1", "sess-42", "tok", chunk)

        assert handled == []

    @pytest.mark.asyncio
    async def test_slow_storage_read_does_not_block_event_loop(self):
        def handler(request):
            return httpx.Response(200, json={"start_offset": "6", "end_offset": "6"})

        ticks = 0

        async def ticker():
            nonlocal ticks
            while True:
                await asyncio.sleep(0.01)
                ticks += 1

        ticker_task = asyncio.create_task(ticker())
        chunk = Chunk(offset=0, length=6, stream=SlowBody(b"abcdef", delay=0.3))
        try:
            await client_for(handler).transfer_chunk("page-1", "sess-42", "tok", chunk)
        finally:
            ticker_task.cancel()

        assert ticks >= 10

    @pytest.mark.asyncio
    async def test_cancel_does_not_wait_for_storage_read(self):
        def handler(request):
            return httpx.Response(200, json={"start_offset": "6", "end_offset": "6"})

        chunk = Chunk(offset=0, length=6, stream=SlowBody(b"abcdef", delay=0.5))
        task = asyncio.create_task(
            client_for(handler).transfer_chunk("page-1", "sess-42", "tok", chunk)
        )
        await asyncio.sleep(0.05)

        cancelled_at = time.monotonic()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert time.monotonic() - cancelled_at < 0.3


class TestFinishSession:

    @pytest.mark.asyncio
    async def test_sends_finish_phase_with_metadata(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"success": True, "video_id": "987"})

        raw = await client_for(handler).finish_session(
            "page-1", "sess-42", "tok", "Launch day", "First demo"
        )

        assert form(seen[0]) == {
            "upload_phase": "finish",
            "upload_session_id": "sess-42",
            "title": "Launch day",
            "description": "First demo",
            "access_token": "tok",
        }
        assert raw == {"success": True, "video_id": "987"}

    @pytest.mark.asyncio
    async def test_rejection_preserves_error_body(self):
        def handler(request):
            return httpx.Response(500, text="upstream exploded")

        with pytest.raises(FinishRejected) as exc_info:
            await client_for(handler).finish_session("page-1", "sess-42", "tok", "T", "")

        assert exc_info.value.payload == "upstream exploded"
        assert exc_info.value.session_id == "sess-42"
