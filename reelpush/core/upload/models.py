"""
Domain models for resumable uploads.

These models describe one in-flight transfer and what it produces. They have
no dependencies on boto3, httpx or FastAPI. The offset bookkeeping lives here
so the invariants are checked in one place, whatever drives the session.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, BinaryIO, Mapping, Optional

from .errors import ProtocolInvariantViolation


# Cap on client-chosen chunk size when the endpoint has not named a window
DEFAULT_CHUNK_CEILING = 8 * 1024 * 1024


@dataclass
class UploadConfig:
    """
    Tuning knobs for the upload driver.

    None of these change the protocol. The chunk ceiling only applies
    while the endpoint has not stated its own window, and the retry
    settings only apply to retryable chunk transfer failures.
    """
    chunk_ceiling: int = DEFAULT_CHUNK_CEILING
    max_attempts: int = 3
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 30.0
    max_stalled_transfers: int = 3

    def __post_init__(self) -> None:
        if self.chunk_ceiling < 1:
            raise ValueError("chunk_ceiling must be positive")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff_base_seconds < 0 or self.backoff_max_seconds < 0:
            raise ValueError("backoff delays cannot be negative")
        if self.max_stalled_transfers < 1:
            raise ValueError("max_stalled_transfers must be at least 1")

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number `attempt` (0-based), capped."""
        return min(self.backoff_base_seconds * (2 ** attempt), self.backoff_max_seconds)


class SessionState(Enum):
    """Lifecycle of an upload session."""
    CREATED = "created"
    NEGOTIATED = "negotiated"
    TRANSFERRING = "transferring"
    FINISHED = "finished"
    FAILED = "failed"


@dataclass(frozen=True)
class OffsetWindow:
    """
    The (start, end) byte range the endpoint is willing to accept next.

    `end_offset` is exclusive and may be None when the endpoint did not
    say; the client then picks its own bound. `start_offset` may be None
    only on transfer responses that carried no offsets at all.
    """
    start_offset: Optional[int] = None
    end_offset: Optional[int] = None

    @property
    def is_complete(self) -> bool:
        """True when the endpoint wants no further bytes."""
        return (
            self.start_offset is not None
            and self.end_offset is not None
            and self.start_offset == self.end_offset
        )


@dataclass(frozen=True)
class StartResponse:
    """What the endpoint hands back when a session is opened."""
    session_id: str
    window: OffsetWindow
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FinishResponse:
    """Identifier and raw body returned when a session is closed."""
    remote_object_id: Optional[str]
    raw_metadata: dict[str, Any]


@dataclass
class Chunk:
    """
    One contiguous byte range on its way to the endpoint.

    `stream` yields exactly `length` bytes. Chunks are never persisted and
    are dropped as soon as the push returns.
    """
    offset: int
    length: int
    stream: BinaryIO

    @property
    def end_inclusive(self) -> int:
        return self.offset + self.length - 1


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only copy of a session's cursor, handed to progress callbacks."""
    session_id: Optional[str]
    object_key: str
    target_id: str
    total_size: int
    current_offset: int
    next_end_offset: Optional[int]
    state: SessionState
    transfer_calls: int

    @property
    def bytes_acknowledged(self) -> int:
        return self.current_offset

    @property
    def progress(self) -> float:
        """Fraction of the object the endpoint has acknowledged."""
        if self.total_size <= 0:
            return 0.0
        return self.current_offset / self.total_size


@dataclass
class UploadSession:
    """
    One in-flight transfer.

    Owned by the orchestrator for the lifetime of a single upload call.
    The cursor only moves through `negotiate` and `acknowledge`, both of
    which enforce 0 <= current_offset <= next_end_offset <= total_size.
    """
    object_key: str
    target_id: str
    total_size: int
    session_id: Optional[str] = None
    current_offset: int = 0
    next_end_offset: Optional[int] = None
    state: SessionState = SessionState.CREATED
    transfer_calls: int = 0
    stalled_transfers: int = 0
    transfer_lock: asyncio.Lock = field(
        default_factory=asyncio.Lock, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        if self.total_size <= 0:
            raise ValueError("total_size must be positive")

    def negotiate(self, session_id: str, window: OffsetWindow) -> None:
        """Bind the remote session id and the initial offset window."""
        if self.session_id is not None:
            raise ValueError("session id is already assigned")
        start = window.start_offset if window.start_offset is not None else 0
        self._check_window(start, window.end_offset, session_id)

        self.session_id = session_id
        self.current_offset = start
        self.next_end_offset = window.end_offset
        self.state = SessionState.NEGOTIATED

    def acknowledge(self, window: OffsetWindow) -> None:
        """
        Re-synchronize on the offsets returned by a transfer call.

        Raises ProtocolInvariantViolation if the offsets are missing, move
        backward, or fall outside the object.
        """
        if window.start_offset is None:
            raise ProtocolInvariantViolation(
                "Transfer response carried no start offset",
                session_id=self.session_id,
                last_offset=self.current_offset,
            )
        if window.start_offset < self.current_offset:
            raise ProtocolInvariantViolation(
                f"Endpoint moved start offset backward "
                f"({self.current_offset} -> {window.start_offset})",
                session_id=self.session_id,
                last_offset=self.current_offset,
            )
        self._check_window(window.start_offset, window.end_offset, self.session_id)

        if window.start_offset == self.current_offset:
            self.stalled_transfers += 1
        else:
            self.stalled_transfers = 0

        self.current_offset = window.start_offset
        self.next_end_offset = window.end_offset
        self.transfer_calls += 1

    @property
    def is_complete(self) -> bool:
        """True once the endpoint has asked for no further bytes."""
        if self.next_end_offset is None:
            return self.current_offset == self.total_size
        return self.current_offset == self.next_end_offset

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self.session_id,
            object_key=self.object_key,
            target_id=self.target_id,
            total_size=self.total_size,
            current_offset=self.current_offset,
            next_end_offset=self.next_end_offset,
            state=self.state,
            transfer_calls=self.transfer_calls,
        )

    def _check_window(
        self,
        start: int,
        end: Optional[int],
        session_id: Optional[str],
    ) -> None:
        if start < 0 or start > self.total_size:
            raise ProtocolInvariantViolation(
                f"Start offset {start} outside object of {self.total_size} bytes",
                session_id=session_id,
                last_offset=self.current_offset,
            )
        if end is None:
            return
        if end > self.total_size:
            raise ProtocolInvariantViolation(
                f"End offset {end} exceeds object size {self.total_size}",
                session_id=session_id,
                last_offset=self.current_offset,
            )
        if end < start:
            raise ProtocolInvariantViolation(
                f"End offset {end} is before start offset {start}",
                session_id=session_id,
                last_offset=self.current_offset,
            )


@dataclass(frozen=True)
class UploadResult:
    """
    The outcome of a complete upload.

    `remote_object_id` is None when the finish response named no id; the
    raw response is kept either way, copied into a read-only mapping.
    """
    remote_object_id: Optional[str]
    raw_metadata: Mapping[str, Any]
    session_id: str
    total_size: int
    transfer_calls: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "raw_metadata", MappingProxyType(dict(self.raw_metadata)))
