"""
Session negotiation: the start phase.
"""

import logging

from .models import StartResponse
from .protocols import UploadEndpoint

logger = logging.getLogger(__name__)


class SessionNegotiator:
    """Opens an upload session for an object of known size."""

    def __init__(self, endpoint: UploadEndpoint) -> None:
        self._endpoint = endpoint

    async def start(
        self,
        target_id: str,
        auth_token: str,
        total_size: int,
    ) -> StartResponse:
        """
        Open a session and return its id and initial offset window.

        A missing start offset means 0 and a missing end offset stays None;
        the transfer loop picks its own chunk bound in that case.

        Raises:
            ValueError: If the inputs are empty or the size is not positive
            SessionStartRejected: If the endpoint refuses the session
        """
        if not target_id:
            raise ValueError("target_id is required")
        if not auth_token:
            raise ValueError("auth_token is required")
        if total_size <= 0:
            raise ValueError("total_size must be positive")

        response = await self._endpoint.start_session(
            target_id=target_id,
            auth_token=auth_token,
            file_size=total_size,
        )

        logger.info(
            "Upload session started",
            extra={
                "target_id": target_id,
                "session_id": response.session_id,
                "total_size": total_size,
                "start_offset": response.window.start_offset,
                "end_offset": response.window.end_offset,
            }
        )

        return response
