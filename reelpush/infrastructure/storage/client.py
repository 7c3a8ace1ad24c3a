"""
Object storage client for source videos.

Supports Cloudflare R2 (S3-compatible) with mock mode for local development.
The upload driver only ever needs two things from storage:
- The exact size of an object (a HEAD request, no body)
- A byte range of an object, as a stream

Ranges are streamed straight from the GET response into the outgoing
request body, so a multi-gigabyte video never sits in memory at once.

Mock mode stores objects in memory, enabling API testing without
provisioning actual object storage.
"""

import asyncio
import io
import logging
from collections import deque
from dataclasses import dataclass
from typing import BinaryIO, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ...core.upload.errors import RangeNotSatisfiable, StorageUnavailable
from ...core.upload.protocols import RangeSource

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}
INVALID_RANGE_CODES = {"416", "InvalidRange"}

# mock mode keeps only the most recent range reads
RANGE_READ_HISTORY = 1000


@dataclass
class StorageConfig:
    """
    Configuration for R2/S3-compatible storage.

    Timeouts apply per network operation. A range read of a full chunk
    can take a while on a slow link, hence the generous read timeout.
    """
    access_key_id: str
    secret_access_key: str
    bucket_name: str
    endpoint_url: str
    region: str = "auto"  # R2 uses 'auto' for region
    connect_timeout_seconds: float = 10.0
    read_timeout_seconds: float = 300.0

    def __post_init__(self) -> None:
        if not self.bucket_name:
            raise ValueError("bucket_name is required")
        if self.read_timeout_seconds <= 0 or self.connect_timeout_seconds <= 0:
            raise ValueError("timeouts must be positive")


class RangeStream(io.RawIOBase):
    """
    Read-only stream over one byte range.

    Yields at most `expected_length` bytes from the wrapped body and raises
    RangeNotSatisfiable if the body ends early (the object shrank while we
    were reading it).

    Reads happen lazily, while the chunk is already being sent, so a store
    failure mid-body is raised from here as StorageUnavailable.
    """

    def __init__(self, body: BinaryIO, expected_length: int, object_key: str = "") -> None:
        super().__init__()
        self._body = body
        self._remaining = expected_length
        self._expected_length = expected_length
        self._object_key = object_key

    @property
    def expected_length(self) -> int:
        return self._expected_length

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        if self._remaining <= 0:
            return b""
        if size is None or size < 0 or size > self._remaining:
            size = self._remaining

        try:
            data = self._body.read(size)
        except (BotoCoreError, OSError) as e:
            consumed = self._expected_length - self._remaining
            logger.error(
                "Range body read failed",
                extra={
                    "object_key": self._object_key,
                    "bytes_read": consumed,
                    "error": str(e),
                }
            )
            raise StorageUnavailable(
                f"Reading {self._object_key or 'object'} failed after "
                f"{consumed} of {self._expected_length} bytes: {e}"
            ) from e

        if not data:
            raise RangeNotSatisfiable(
                f"Stream for {self._object_key or 'object'} ended "
                f"{self._remaining} bytes short of the requested range"
            )
        self._remaining -= len(data)
        return data

    def readinto(self, buffer) -> int:
        data = self.read(len(buffer))
        buffer[:len(data)] = data
        return len(data)

    def close(self) -> None:
        if not self.closed:
            self._body.close()
        super().close()


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


def _validate_range(start_byte: int, end_byte_inclusive: int) -> None:
    if start_byte < 0 or end_byte_inclusive < start_byte:
        raise RangeNotSatisfiable(
            f"Invalid byte range {start_byte}-{end_byte_inclusive}",
            last_offset=start_byte,
        )


class R2StorageClient:
    """
    Cloudflare R2 object storage client.

    Uses boto3 because R2 is S3-compatible. This abstraction means
    we could swap to actual S3, MinIO, or other S3-compatible storage
    with minimal changes.

    boto3 is synchronous, so every S3 call runs in a worker thread to keep
    the event loop free for other requests while a range is fetched.
    """

    def __init__(self, config: StorageConfig) -> None:
        self._config = config

        # R2 requires v4 signatures and has specific endpoint patterns
        boto_config = Config(
            signature_version='s3v4',
            s3={'addressing_style': 'path'},
            connect_timeout=config.connect_timeout_seconds,
            read_timeout=config.read_timeout_seconds,
        )

        self._s3_client = boto3.client(
            's3',
            endpoint_url=config.endpoint_url,
            aws_access_key_id=config.access_key_id,
            aws_secret_access_key=config.secret_access_key,
            region_name=config.region,
            config=boto_config,
        )

        logger.info(
            "Initialized R2 storage client",
            extra={
                "bucket": config.bucket_name,
                "endpoint": config.endpoint_url,
            }
        )

    async def get_object_size(self, object_key: str) -> int:
        """Return the object's size from a HEAD request."""
        try:
            response = await asyncio.to_thread(
                self._s3_client.head_object,
                Bucket=self._config.bucket_name,
                Key=object_key,
            )
        except ClientError as e:
            code = _error_code(e)
            logger.error(
                "Failed to probe object size",
                extra={"object_key": object_key, "code": code, "error": str(e)}
            )
            if code in NOT_FOUND_CODES:
                raise StorageUnavailable(f"Object not found: {object_key}") from e
            raise StorageUnavailable(f"Size probe failed: {e}") from e
        except BotoCoreError as e:
            logger.error(
                "Storage unreachable during size probe",
                extra={"object_key": object_key, "error": str(e)}
            )
            raise StorageUnavailable(f"Size probe failed: {e}") from e

        return int(response['ContentLength'])

    async def fetch_range(
        self,
        object_key: str,
        start_byte: int,
        end_byte_inclusive: int,
    ) -> BinaryIO:
        """
        Open a stream over bytes [start_byte, end_byte_inclusive].

        The store must return exactly the requested length; anything else
        means the object changed underneath us.
        """
        _validate_range(start_byte, end_byte_inclusive)
        expected = end_byte_inclusive - start_byte + 1

        try:
            response = await asyncio.to_thread(
                self._s3_client.get_object,
                Bucket=self._config.bucket_name,
                Key=object_key,
                Range=f"bytes={start_byte}-{end_byte_inclusive}",
            )
        except ClientError as e:
            code = _error_code(e)
            logger.error(
                "Failed to read object range",
                extra={
                    "object_key": object_key,
                    "range": f"{start_byte}-{end_byte_inclusive}",
                    "code": code,
                    "error": str(e),
                }
            )
            if code in INVALID_RANGE_CODES:
                raise RangeNotSatisfiable(
                    f"Range {start_byte}-{end_byte_inclusive} not satisfiable "
                    f"for {object_key}",
                    last_offset=start_byte,
                ) from e
            if code in NOT_FOUND_CODES:
                raise StorageUnavailable(f"Object not found: {object_key}") from e
            raise StorageUnavailable(f"Range read failed: {e}") from e
        except BotoCoreError as e:
            logger.error(
                "Storage unreachable during range read",
                extra={"object_key": object_key, "error": str(e)}
            )
            raise StorageUnavailable(f"Range read failed: {e}") from e

        body = response['Body']
        content_length = int(response.get('ContentLength', expected))
        if content_length != expected:
            body.close()
            raise RangeNotSatisfiable(
                f"Store returned {content_length} bytes for a "
                f"{expected}-byte range of {object_key}",
                last_offset=start_byte,
            )

        logger.debug(
            "Opened range stream",
            extra={
                "object_key": object_key,
                "range": f"{start_byte}-{end_byte_inclusive}",
                "size_bytes": expected,
            }
        )

        return RangeStream(body, expected, object_key)

    async def check_connection(self) -> None:
        """Confirm the bucket is reachable. Used by the readiness probe."""
        try:
            await asyncio.to_thread(
                self._s3_client.head_bucket,
                Bucket=self._config.bucket_name,
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageUnavailable(f"Bucket not reachable: {e}") from e


# ---------------------------------------------------------------------------
# Mock Storage for Local Development
# ---------------------------------------------------------------------------

class MockStorageClient:
    """
    In-memory storage for local development.

    This mock enables testing the full upload flow without provisioning
    real object storage. Objects are stored in a dictionary and seeded
    with put_object(). `range_reads` keeps the most recent reads only,
    since the mock is shared across requests in mock mode.

    Not suitable for production, but perfect for development and testing.
    """

    def __init__(self, range_read_history: int = RANGE_READ_HISTORY) -> None:
        # {object_key: bytes}
        self._objects: dict[str, bytes] = {}
        self.range_reads: deque[tuple[str, int, int]] = deque(maxlen=range_read_history)
        logger.info("Initialized mock storage client (in-memory)")

    def put_object(self, object_key: str, data: bytes) -> None:
        """Store an object in memory."""
        self._objects[object_key] = data

    async def get_object_size(self, object_key: str) -> int:
        if object_key not in self._objects:
            raise StorageUnavailable(f"Object not found: {object_key}")
        return len(self._objects[object_key])

    async def fetch_range(
        self,
        object_key: str,
        start_byte: int,
        end_byte_inclusive: int,
    ) -> BinaryIO:
        """Serve a slice of the stored object."""
        _validate_range(start_byte, end_byte_inclusive)
        if object_key not in self._objects:
            raise StorageUnavailable(f"Object not found: {object_key}")

        data = self._objects[object_key]
        if end_byte_inclusive >= len(data):
            raise RangeNotSatisfiable(
                f"Range {start_byte}-{end_byte_inclusive} not satisfiable "
                f"for {len(data)}-byte object {object_key}",
                last_offset=start_byte,
            )

        self.range_reads.append((object_key, start_byte, end_byte_inclusive))
        expected = end_byte_inclusive - start_byte + 1
        return RangeStream(
            io.BytesIO(data[start_byte:end_byte_inclusive + 1]),
            expected,
            object_key,
        )

    async def check_connection(self) -> None:
        return None


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

def create_storage_client(
    config: Optional[StorageConfig] = None,
    mock_mode: bool = False,
) -> RangeSource:
    """
    Create storage client based on configuration.

    Args:
        config: Storage configuration (required if not mock_mode)
        mock_mode: If True, return mock client for testing

    Returns:
        RangeSource implementation (R2 or Mock)
    """
    if mock_mode:
        return MockStorageClient()

    if config is None:
        raise ValueError("config is required when not in mock mode")

    return R2StorageClient(config)
