"""
Unit tests for the upload orchestrator.

Covers the full probe/start/transfer/finish sequence against the in-memory
storage and Graph mocks, plus the failure boundary: which calls happen
after a phase fails, and what the caller gets back.
"""

import asyncio
import io

import httpx
import pytest
from botocore.exceptions import ReadTimeoutError

from reelpush.core.upload import (
    ChunkTransferFailed,
    FinishRejected,
    RangeNotSatisfiable,
    SessionStartRejected,
    SessionState,
    StorageUnavailable,
    UploadConfig,
    UploadOrchestrator,
    UploadPhase,
)
from reelpush.infrastructure.facebook.client import (
    GraphConfig,
    GraphVideoClient,
    MockGraphVideoClient,
)
from reelpush.infrastructure.storage.client import MockStorageClient, RangeStream

KEY = "videos/clip.mp4"


class TestHappyPath:
    """A complete upload end to end."""

    @pytest.mark.asyncio
    async def test_upload_against_mock_endpoint(self, storage, video_bytes):
        endpoint = MockGraphVideoClient(window_size=4096)
        orchestrator = UploadOrchestrator(storage, endpoint)

        result = await orchestrator.upload(
            object_key=KEY,
            target_id="page-1",
            auth_token="token",
            display_name="Launch day",
            description="First public demo",
        )

        session = endpoint.sessions[result.session_id]
        assert bytes(session.data) == video_bytes
        assert session.finished
        assert session.title == "Launch day"
        assert session.description == "First public demo"
        assert result.remote_object_id == session.video_id
        assert result.raw_metadata["success"] is True
        assert result.total_size == len(video_bytes)
        assert result.transfer_calls == 3  # 4096 + 4096 + 1808

    @pytest.mark.asyncio
    async def test_probed_size_is_negotiated(self, storage, scripted_endpoint_cls, video_bytes):
        endpoint = scripted_endpoint_cls()
        orchestrator = UploadOrchestrator(storage, endpoint)

        await orchestrator.upload(KEY, "page-1", "token", "Title")

        assert endpoint.calls[0] == ("start", "page-1", len(video_bytes))

    @pytest.mark.asyncio
    async def test_sequence_is_start_transfer_finish(self, storage, scripted_endpoint_cls):
        endpoint = scripted_endpoint_cls()
        orchestrator = UploadOrchestrator(storage, endpoint, UploadConfig(chunk_ceiling=4000))

        await orchestrator.upload(KEY, "page-1", "token", "Title", "Desc")

        assert endpoint.call_names == ["start", "transfer", "transfer", "transfer", "finish"]
        assert endpoint.calls[-1] == ("finish", "sess-1", "Title", "Desc")

    @pytest.mark.asyncio
    async def test_missing_identifier_is_not_fatal(self, storage, scripted_endpoint_cls):
        endpoint = scripted_endpoint_cls(finish_response={"success": True})
        orchestrator = UploadOrchestrator(storage, endpoint)

        result = await orchestrator.upload(KEY, "page-1", "token", "Title")

        assert result.remote_object_id is None
        assert result.raw_metadata == {"success": True}

    @pytest.mark.asyncio
    async def test_progress_callback_sees_each_chunk(self, storage, scripted_endpoint_cls):
        endpoint = scripted_endpoint_cls()
        orchestrator = UploadOrchestrator(storage, endpoint, UploadConfig(chunk_ceiling=2500))
        snapshots = []

        await orchestrator.upload(KEY, "page-1", "token", "Title", progress_callback=snapshots.append)

        assert [s.current_offset for s in snapshots] == [2500, 5000, 7500, 10_000]
        assert snapshots[-1].progress == 1.0


class TestFailureShortCircuit:
    """A failed phase stops everything after it."""

    @pytest.mark.asyncio
    async def test_start_failure_skips_transfer_and_finish(self, storage, scripted_endpoint_cls):
        rejection = SessionStartRejected("HTTP 400", payload={"error": {"message": "Invalid file size"}})
        endpoint = scripted_endpoint_cls(start_error=rejection)
        orchestrator = UploadOrchestrator(storage, endpoint)

        with pytest.raises(SessionStartRejected) as exc_info:
            await orchestrator.upload(KEY, "page-1", "token", "Title")

        assert endpoint.call_names == ["start"]
        assert exc_info.value.phase == UploadPhase.START
        assert exc_info.value.payload == {"error": {"message": "Invalid file size"}}

    @pytest.mark.asyncio
    async def test_transfer_failure_skips_finish(self, storage, scripted_endpoint_cls):
        endpoint = scripted_endpoint_cls(
            transfer_errors=[None, ChunkTransferFailed("HTTP 400", payload={"error": {"code": 100}})],
        )
        orchestrator = UploadOrchestrator(storage, endpoint, UploadConfig(chunk_ceiling=4000))
        snapshots = []

        with pytest.raises(ChunkTransferFailed) as exc_info:
            await orchestrator.upload(KEY, "page-1", "token", "Title", progress_callback=snapshots.append)

        assert "finish" not in endpoint.call_names
        error = exc_info.value
        assert error.phase == UploadPhase.TRANSFER
        assert error.session_id == "sess-1"
        assert error.last_offset == 4000
        assert error.payload == {"error": {"code": 100}}
        assert snapshots[-1].state == SessionState.FAILED
        assert snapshots[-1].current_offset == 4000

    @pytest.mark.asyncio
    async def test_finish_failure_is_tagged(self, storage, scripted_endpoint_cls):
        endpoint = scripted_endpoint_cls(finish_error=FinishRejected("HTTP 500", payload="oops"))
        orchestrator = UploadOrchestrator(storage, endpoint)

        with pytest.raises(FinishRejected) as exc_info:
            await orchestrator.upload(KEY, "page-1", "token", "Title")

        assert exc_info.value.phase == UploadPhase.FINISH
        assert exc_info.value.session_id == "sess-1"
        assert exc_info.value.last_offset == 10_000

    @pytest.mark.asyncio
    async def test_missing_object_fails_before_start(self, storage, scripted_endpoint_cls):
        endpoint = scripted_endpoint_cls()
        orchestrator = UploadOrchestrator(storage, endpoint)

        with pytest.raises(StorageUnavailable) as exc_info:
            await orchestrator.upload("videos/missing.mp4", "page-1", "token", "Title")

        assert endpoint.calls == []
        assert exc_info.value.phase == UploadPhase.PROBE
        assert exc_info.value.session_id is None

    @pytest.mark.asyncio
    async def test_empty_object_fails_before_start(self, storage, scripted_endpoint_cls):
        storage.put_object("videos/empty.mp4", b"")
        endpoint = scripted_endpoint_cls()
        orchestrator = UploadOrchestrator(storage, endpoint)

        with pytest.raises(RangeNotSatisfiable, match="empty"):
            await orchestrator.upload("videos/empty.mp4", "page-1", "token", "Title")

        assert endpoint.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["object_key", "target_id", "auth_token"])
    async def test_rejects_empty_arguments(self, storage, scripted_endpoint_cls, field):
        endpoint = scripted_endpoint_cls()
        orchestrator = UploadOrchestrator(storage, endpoint)
        kwargs = {
            "object_key": KEY,
            "target_id": "page-1",
            "auth_token": "token",
            "display_name": "Title",
        }
        kwargs[field] = ""

        with pytest.raises(ValueError, match=field):
            await orchestrator.upload(**kwargs)

        assert endpoint.calls == []


    @pytest.mark.asyncio
    async def test_storage_failure_while_sending_chunk(self, video_bytes):
        """A body read that times out mid-push fails the transfer phase."""

        class FlakyStorage(MockStorageClient):
            async def fetch_range(self, object_key, start_byte, end_byte_inclusive):
                stream = await super().fetch_range(object_key, start_byte, end_byte_inclusive)
                if start_byte == 0:
                    return stream
                stream.close()
                return RangeStream(TimingOutBody(), stream.expected_length, object_key)

        class TimingOutBody(io.BytesIO):
            def read(self, size=-1):
                raise ReadTimeoutError(endpoint_url="https://r2.test")

        def handler(request):
            if b"upload_phase=start" in request.content:
                return httpx.Response(200, json={
                    "upload_session_id": "sess-42",
                    "start_offset": "0",
                    "end_offset": "4000",
                })
            return httpx.Response(200, json={"start_offset": "4000", "end_offset": "8000"})

        storage = FlakyStorage()
        storage.put_object(KEY, video_bytes)
        endpoint = GraphVideoClient(
            GraphConfig(base_url="https://graph-video.test"),
            transport=httpx.MockTransport(handler),
        )
        orchestrator = UploadOrchestrator(storage, endpoint)
        snapshots = []

        with pytest.raises(StorageUnavailable) as exc_info:
            await orchestrator.upload(KEY, "page-1", "token", "Title", progress_callback=snapshots.append)

        error = exc_info.value
        assert error.phase == UploadPhase.TRANSFER
        assert error.session_id == "sess-42"
        assert error.last_offset == 4000
        assert snapshots[-1].state == SessionState.FAILED
        assert snapshots[-1].current_offset == 4000


class TestCancellation:
    """Cancelling the caller's task fails the session and propagates."""

    @pytest.mark.asyncio
    async def test_cancel_mid_transfer(self, storage, scripted_endpoint_cls):
        pushed = asyncio.Event()
        release = asyncio.Event()

        class SlowEndpoint(scripted_endpoint_cls):
            async def transfer_chunk(self, target_id, session_id, auth_token, chunk):
                if chunk.offset > 0:
                    pushed.set()
                    await release.wait()
                return await super().transfer_chunk(target_id, session_id, auth_token, chunk)

        endpoint = SlowEndpoint()
        orchestrator = UploadOrchestrator(storage, endpoint, UploadConfig(chunk_ceiling=4000))
        snapshots = []

        task = asyncio.create_task(
            orchestrator.upload(KEY, "page-1", "token", "Title", progress_callback=snapshots.append)
        )
        await pushed.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert "finish" not in endpoint.call_names
        assert snapshots[-1].state == SessionState.FAILED
        assert snapshots[-1].current_offset == 4000
