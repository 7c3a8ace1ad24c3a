"""
Interfaces the upload driver depends on.

Using Protocols here means the driver doesn't know or care whether bytes
come from R2, S3 or a dict in memory, or whether they go to the Graph API
or a scripted fake in a test. It just needs something that can serve byte
ranges and something that speaks start/transfer/finish.
"""

from typing import Any, BinaryIO, Protocol

from .models import Chunk, OffsetWindow, StartResponse


class RangeSource(Protocol):
    """Reads byte ranges from an object store."""

    async def get_object_size(self, object_key: str) -> int:
        """Return the object's exact byte length (metadata probe, no body)."""
        ...

    async def fetch_range(
        self,
        object_key: str,
        start_byte: int,
        end_byte_inclusive: int,
    ) -> BinaryIO:
        """
        Return a reader yielding exactly end - start + 1 bytes.

        Raises StorageUnavailable or RangeNotSatisfiable.
        """
        ...


class UploadEndpoint(Protocol):
    """A remote ingestion endpoint with a three-phase session protocol."""

    async def start_session(
        self,
        target_id: str,
        auth_token: str,
        file_size: int,
    ) -> StartResponse:
        """Open a session. Raises SessionStartRejected."""
        ...

    async def transfer_chunk(
        self,
        target_id: str,
        session_id: str,
        auth_token: str,
        chunk: Chunk,
    ) -> OffsetWindow:
        """Push one chunk. Raises ChunkTransferFailed."""
        ...

    async def finish_session(
        self,
        target_id: str,
        session_id: str,
        auth_token: str,
        title: str,
        description: str,
    ) -> dict[str, Any]:
        """Close the session and return the raw response. Raises FinishRejected."""
        ...
