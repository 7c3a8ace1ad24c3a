"""
The chunk transfer loop: the transfer phase.

The endpoint, not the client, decides how much of the object it has
durably received. After every push the loop re-synchronizes on the offsets
the endpoint returned, so a chunk the endpoint only partly accepted is
simply re-sent from wherever the endpoint says to resume.

Chunk size is the endpoint's window when it names one. Otherwise the loop
caps chunks at UploadConfig.chunk_ceiling, never reading past the end of
the object.

Loop per iteration:
    1. Work out [range_start, range_end] from the session cursor
    2. Open a range reader on the object store (one network read)
    3. Push it to the endpoint (one network write), retrying at the same
       offset on retryable failures with bounded exponential backoff
    4. Move the cursor to the offsets the endpoint returned
    5. Stop once the endpoint asks for no further bytes
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .errors import ChunkTransferFailed, ProtocolInvariantViolation, StorageError
from .models import (
    Chunk,
    OffsetWindow,
    SessionSnapshot,
    SessionState,
    UploadConfig,
    UploadSession,
)
from .protocols import RangeSource, UploadEndpoint

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[SessionSnapshot], None]


def compute_chunk_end(
    range_start: int,
    next_end_offset: Optional[int],
    total_size: int,
    chunk_ceiling: int,
) -> int:
    """
    Inclusive end byte of the next chunk.

    Follows the endpoint's window when known (its end offset is exclusive),
    otherwise min(range_start + chunk_ceiling - 1, total_size - 1).
    """
    if next_end_offset is not None:
        return next_end_offset - 1
    return min(range_start + chunk_ceiling - 1, total_size - 1)


class ChunkTransferLoop:
    """Pushes an object to an open session until the endpoint is satisfied."""

    def __init__(
        self,
        source: RangeSource,
        endpoint: UploadEndpoint,
        config: Optional[UploadConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._source = source
        self._endpoint = endpoint
        self._config = config or UploadConfig()
        self._sleep = sleep

    async def run(
        self,
        session: UploadSession,
        auth_token: str,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> None:
        """
        Transfer until the endpoint reports no further bytes are needed.

        Raises:
            ChunkTransferFailed: If a push fails (after retries, if retryable)
            StorageUnavailable / RangeNotSatisfiable: If a range read fails
            ProtocolInvariantViolation: If the endpoint's offsets are invalid
        """
        if session.session_id is None:
            raise ValueError("session has not been negotiated")

        session.state = SessionState.TRANSFERRING

        while not session.is_complete:
            range_start = session.current_offset
            range_end = compute_chunk_end(
                range_start,
                session.next_end_offset,
                session.total_size,
                self._config.chunk_ceiling,
            )

            window = await self._push_with_retry(session, auth_token, range_start, range_end)
            session.acknowledge(window)

            if session.stalled_transfers >= self._config.max_stalled_transfers:
                raise ProtocolInvariantViolation(
                    f"Endpoint made no progress in {session.stalled_transfers} "
                    f"consecutive transfers",
                    session_id=session.session_id,
                    last_offset=session.current_offset,
                )

            logger.debug(
                "Chunk acknowledged",
                extra={
                    "session_id": session.session_id,
                    "range_start": range_start,
                    "range_end": range_end,
                    "current_offset": session.current_offset,
                    "next_end_offset": session.next_end_offset,
                    "total_size": session.total_size,
                }
            )

            if progress_callback is not None:
                progress_callback(session.snapshot())

        logger.info(
            "All bytes acknowledged",
            extra={
                "session_id": session.session_id,
                "total_size": session.total_size,
                "transfer_calls": session.transfer_calls,
            }
        )

    async def _push_with_retry(
        self,
        session: UploadSession,
        auth_token: str,
        range_start: int,
        range_end: int,
    ) -> OffsetWindow:
        """
        Push [range_start, range_end], re-reading the same range on retry.

        Retrying at the same offset is safe because the endpoint keys the
        bytes it receives by offset.
        """
        max_attempts = self._config.max_attempts

        for attempt in range(max_attempts):
            try:
                stream = await self._source.fetch_range(
                    session.object_key, range_start, range_end
                )
            except StorageError as e:
                e.session_id = e.session_id or session.session_id
                if e.last_offset is None:
                    e.last_offset = session.current_offset
                raise

            chunk = Chunk(
                offset=range_start,
                length=range_end - range_start + 1,
                stream=stream,
            )

            try:
                async with session.transfer_lock:
                    return await self._endpoint.transfer_chunk(
                        target_id=session.target_id,
                        session_id=session.session_id,
                        auth_token=auth_token,
                        chunk=chunk,
                    )
            except ChunkTransferFailed as e:
                e.session_id = e.session_id or session.session_id
                e.last_offset = session.current_offset

                if not e.retryable or attempt == max_attempts - 1:
                    raise

                delay = self._config.backoff_delay(attempt)
                logger.warning(
                    "Chunk transfer failed, retrying at same offset",
                    extra={
                        "session_id": session.session_id,
                        "range_start": range_start,
                        "attempt": attempt + 1,
                        "max_attempts": max_attempts,
                        "delay_seconds": delay,
                        "error": str(e),
                    }
                )
                await self._sleep(delay)
            except StorageError as e:
                # the range body is read lazily, during the push
                e.session_id = e.session_id or session.session_id
                if e.last_offset is None:
                    e.last_offset = session.current_offset
                raise
            finally:
                stream.close()

        # unreachable: the last attempt either returns or raises
        raise ChunkTransferFailed(
            f"Chunk transfer failed after {max_attempts} attempts",
            session_id=session.session_id,
            last_offset=session.current_offset,
        )
