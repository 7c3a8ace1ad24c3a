"""
Resumable upload driver.

Moves an object from a byte-range source to an endpoint that speaks a
three-phase session protocol (start, transfer, finish).
"""

from .errors import (
    ChunkTransferFailed,
    FinishRejected,
    ProtocolInvariantViolation,
    RangeNotSatisfiable,
    SessionStartRejected,
    StorageError,
    StorageUnavailable,
    UploadError,
    UploadPhase,
)
from .models import (
    Chunk,
    OffsetWindow,
    SessionSnapshot,
    SessionState,
    StartResponse,
    UploadConfig,
    UploadResult,
    UploadSession,
)
from .orchestrator import UploadOrchestrator

__all__ = [
    "Chunk",
    "ChunkTransferFailed",
    "FinishRejected",
    "OffsetWindow",
    "ProtocolInvariantViolation",
    "RangeNotSatisfiable",
    "SessionSnapshot",
    "SessionStartRejected",
    "SessionState",
    "StartResponse",
    "StorageError",
    "StorageUnavailable",
    "UploadConfig",
    "UploadError",
    "UploadOrchestrator",
    "UploadPhase",
    "UploadResult",
    "UploadSession",
]
