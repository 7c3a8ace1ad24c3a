"""
Shared fakes for upload driver tests.

The scripted endpoint records every call the driver makes and answers
transfers with whatever the test scripts. Storage comes from the real
in-memory MockStorageClient, so range arithmetic is checked against
actual bytes.
"""

import io
from typing import Any, Callable, Optional

import pytest

from reelpush.core.upload.models import Chunk, OffsetWindow, StartResponse
from reelpush.infrastructure.storage.client import MockStorageClient


class ScriptedEndpoint:
    """
    UploadEndpoint fake driven by a response function.

    By default every chunk is accepted in full, the endpoint never names
    an end offset, and it reports start == end once it has everything.
    """

    def __init__(
        self,
        start_window: Optional[OffsetWindow] = None,
        respond: Optional[Callable[["ScriptedEndpoint", Chunk], OffsetWindow]] = None,
        finish_response: Optional[dict[str, Any]] = None,
        start_error: Optional[Exception] = None,
        transfer_errors: Optional[list[Optional[Exception]]] = None,
        finish_error: Optional[Exception] = None,
        session_id: str = "sess-1",
    ) -> None:
        self.start_window = start_window or OffsetWindow(start_offset=0, end_offset=None)
        self.respond = respond or ScriptedEndpoint.accept_all
        self.finish_response = finish_response if finish_response is not None else {"video_id": "vid-1"}
        self.start_error = start_error
        self.transfer_errors = list(transfer_errors or [])
        self.finish_error = finish_error
        self.session_id = session_id
        self.file_size = 0
        self.calls: list[tuple] = []
        self.received = bytearray()

    @staticmethod
    def accept_all(endpoint: "ScriptedEndpoint", chunk: Chunk) -> OffsetWindow:
        next_start = chunk.offset + chunk.length
        if next_start >= endpoint.file_size:
            return OffsetWindow(start_offset=endpoint.file_size, end_offset=endpoint.file_size)
        return OffsetWindow(start_offset=next_start, end_offset=None)

    @property
    def transfer_ranges(self) -> list[tuple[int, int]]:
        return [(call[1], call[2]) for call in self.calls if call[0] == "transfer"]

    @property
    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]

    async def start_session(self, target_id: str, auth_token: str, file_size: int) -> StartResponse:
        self.calls.append(("start", target_id, file_size))
        self.file_size = file_size
        if self.start_error is not None:
            raise self.start_error
        return StartResponse(session_id=self.session_id, window=self.start_window)

    async def transfer_chunk(
        self,
        target_id: str,
        session_id: str,
        auth_token: str,
        chunk: Chunk,
    ) -> OffsetWindow:
        self.calls.append(("transfer", chunk.offset, chunk.end_inclusive))
        if self.transfer_errors:
            error = self.transfer_errors.pop(0)
            if error is not None:
                raise error
        data = chunk.stream.read()
        if chunk.offset == len(self.received):
            self.received.extend(data)
        return self.respond(self, chunk)

    async def finish_session(
        self,
        target_id: str,
        session_id: str,
        auth_token: str,
        title: str,
        description: str,
    ) -> dict[str, Any]:
        self.calls.append(("finish", session_id, title, description))
        if self.finish_error is not None:
            raise self.finish_error
        return self.finish_response


class SizedSource:
    """
    RangeSource fake for large sizes: records ranges, serves no real bytes.

    Keeps the 20 MB scenario from allocating the whole object.
    """

    def __init__(self, size: int) -> None:
        self.size = size
        self.ranges: list[tuple[int, int]] = []

    async def get_object_size(self, object_key: str) -> int:
        return self.size

    async def fetch_range(self, object_key: str, start_byte: int, end_byte_inclusive: int):
        self.ranges.append((start_byte, end_byte_inclusive))
        return io.BytesIO(b"")


class RecordingSleep:
    """Stands in for asyncio.sleep so backoff tests run instantly."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def scripted_endpoint_cls():
    return ScriptedEndpoint


@pytest.fixture
def sized_source_cls():
    return SizedSource


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def video_bytes():
    """A small 'video' whose bytes encode their own position."""
    return bytes(i % 251 for i in range(10_000))


@pytest.fixture
def storage(video_bytes):
    client = MockStorageClient()
    client.put_object("videos/clip.mp4", video_bytes)
    return client
