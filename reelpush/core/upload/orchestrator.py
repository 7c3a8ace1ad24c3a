"""
Upload orchestration: probe, start, transfer, finish.

This is the only public entry point of the driver. It owns the
UploadSession for the duration of one call and defines the failure
boundary: the caller gets a complete UploadResult or exactly one
phase-tagged UploadError, never anything in between.

The orchestrator itself never retries. Retrying lives in the transfer
loop and is scoped to retryable chunk failures.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .errors import RangeNotSatisfiable, StorageError, UploadError, UploadPhase
from .finalizer import Finalizer
from .models import SessionState, UploadConfig, UploadResult, UploadSession
from .negotiator import SessionNegotiator
from .protocols import RangeSource, UploadEndpoint
from .transfer import ChunkTransferLoop, ProgressCallback

logger = logging.getLogger(__name__)


class UploadOrchestrator:
    """
    Moves one stored object to a remote endpoint.

    Stateless between calls, so one instance can serve concurrent uploads
    of different objects. Everything mutable lives in the per-call session.
    """

    def __init__(
        self,
        source: RangeSource,
        endpoint: UploadEndpoint,
        config: Optional[UploadConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._source = source
        self._config = config or UploadConfig()
        self._negotiator = SessionNegotiator(endpoint)
        self._transfer_loop = ChunkTransferLoop(source, endpoint, self._config, sleep)
        self._finalizer = Finalizer(endpoint)

    async def upload(
        self,
        object_key: str,
        target_id: str,
        auth_token: str,
        display_name: str,
        description: str = "",
        progress_callback: Optional[ProgressCallback] = None,
    ) -> UploadResult:
        """
        Upload a stored object and return the remote object's id.

        Args:
            object_key: Key of the object in the store
            target_id: Remote target (e.g. a Facebook Page id)
            auth_token: Token authorizing uploads to the target
            display_name: Title given to the remote object
            description: Description given to the remote object
            progress_callback: Called with a snapshot after every
                acknowledged chunk and once on terminal failure

        Raises:
            ValueError: If a required argument is empty
            UploadError: Phase-tagged failure of any step
            asyncio.CancelledError: If the calling task is cancelled; the
                session is marked failed before the cancellation propagates
        """
        if not object_key:
            raise ValueError("object_key is required")
        if not target_id:
            raise ValueError("target_id is required")
        if not auth_token:
            raise ValueError("auth_token is required")

        phase = UploadPhase.PROBE
        session: Optional[UploadSession] = None

        try:
            total_size = await self._probe_size(object_key)
            session = UploadSession(
                object_key=object_key,
                target_id=target_id,
                total_size=total_size,
            )

            phase = UploadPhase.START
            start = await self._negotiator.start(target_id, auth_token, total_size)
            session.negotiate(start.session_id, start.window)

            phase = UploadPhase.TRANSFER
            await self._transfer_loop.run(session, auth_token, progress_callback)

            phase = UploadPhase.FINISH
            finished = await self._finalizer.finish(
                target_id=target_id,
                session_id=session.session_id,
                auth_token=auth_token,
                title=display_name,
                description=description,
            )
            session.state = SessionState.FINISHED

        except asyncio.CancelledError:
            self._fail(session, progress_callback)
            logger.warning(
                "Upload cancelled",
                extra={
                    "object_key": object_key,
                    "phase": phase,
                    "session_id": session.session_id if session else None,
                    "last_offset": session.current_offset if session else None,
                }
            )
            raise

        except UploadError as e:
            e.phase = phase
            if session is not None:
                e.session_id = e.session_id or session.session_id
                if e.last_offset is None and session.session_id is not None:
                    e.last_offset = session.current_offset
            self._fail(session, progress_callback)
            logger.error(
                "Upload failed",
                extra={"object_key": object_key, **e.to_dict()}
            )
            raise

        logger.info(
            "Upload complete",
            extra={
                "object_key": object_key,
                "target_id": target_id,
                "session_id": session.session_id,
                "remote_object_id": finished.remote_object_id,
                "total_size": session.total_size,
                "transfer_calls": session.transfer_calls,
            }
        )

        return UploadResult(
            remote_object_id=finished.remote_object_id,
            raw_metadata=finished.raw_metadata,
            session_id=session.session_id,
            total_size=session.total_size,
            transfer_calls=session.transfer_calls,
        )

    def upload_sync(self, *args, **kwargs) -> UploadResult:
        """Blocking wrapper around upload() for scripts and CLI commands."""
        return asyncio.run(self.upload(*args, **kwargs))

    async def _probe_size(self, object_key: str) -> int:
        """Ask the store for the object's exact size (not a range read)."""
        try:
            total_size = await self._source.get_object_size(object_key)
        except StorageError as e:
            e.phase = UploadPhase.PROBE
            raise

        if total_size <= 0:
            raise RangeNotSatisfiable(
                f"Object is empty: {object_key}",
                phase=UploadPhase.PROBE,
            )
        return total_size

    @staticmethod
    def _fail(
        session: Optional[UploadSession],
        progress_callback: Optional[ProgressCallback],
    ) -> None:
        if session is None:
            return
        session.state = SessionState.FAILED
        if progress_callback is not None:
            progress_callback(session.snapshot())
