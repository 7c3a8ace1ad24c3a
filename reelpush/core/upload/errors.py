"""
Error taxonomy for the resumable upload driver.

Every error carries the phase it happened in plus whatever session context
was known at the time. Callers get exactly one of these (or a complete
UploadResult), never a half-populated result.

The hierarchy is shallow on purpose: routes and CLI code usually only need
to catch UploadError and read its attributes.
"""

from typing import Any, Optional


class UploadPhase:
    """Names of the protocol phases, used to tag errors and logs."""
    PROBE = "probe"
    START = "start"
    TRANSFER = "transfer"
    FINISH = "finish"


class UploadError(Exception):
    """
    Base class for all upload driver failures.

    Attributes:
        phase: Which protocol phase failed (see UploadPhase)
        session_id: Remote session id, if one had been issued
        last_offset: Last offset the endpoint acknowledged, if any
        payload: Raw remote error body (dict or text), if any
    """

    phase: str = UploadPhase.TRANSFER

    def __init__(
        self,
        message: str,
        *,
        phase: Optional[str] = None,
        session_id: Optional[str] = None,
        last_offset: Optional[int] = None,
        payload: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if phase is not None:
            self.phase = phase
        self.session_id = session_id
        self.last_offset = last_offset
        self.payload = payload

    def to_dict(self) -> dict[str, Any]:
        """Serializable view for API error bodies and logs."""
        return {
            "error": type(self).__name__,
            "detail": self.message,
            "phase": self.phase,
            "session_id": self.session_id,
            "last_offset": self.last_offset,
            "remote_error": self.payload,
        }


class StorageError(UploadError):
    """Raised when the object store cannot serve what we asked for."""
    phase = UploadPhase.TRANSFER


class StorageUnavailable(StorageError):
    """The store is unreachable, or the object does not exist."""
    pass


class RangeNotSatisfiable(StorageError):
    """The requested byte range cannot be served in full (object shrank)."""
    pass


class SessionStartRejected(UploadError):
    """The endpoint refused to open an upload session."""
    phase = UploadPhase.START


class ChunkTransferFailed(UploadError):
    """
    A chunk push failed.

    `retryable` is True for failures worth repeating at the same offset
    (network errors, timeouts, throttling, 5xx). Client errors such as an
    expired token are not.
    """
    phase = UploadPhase.TRANSFER

    def __init__(
        self,
        message: str,
        *,
        retryable: bool = False,
        status_code: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.retryable = retryable
        self.status_code = status_code


class FinishRejected(UploadError):
    """The endpoint refused to close the session."""
    phase = UploadPhase.FINISH


class ProtocolInvariantViolation(UploadError):
    """The endpoint returned offsets that break the session invariants."""
    phase = UploadPhase.TRANSFER
