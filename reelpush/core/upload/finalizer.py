"""
Session finalization: the finish phase.
"""

import logging
from typing import Any, Optional

from .models import FinishResponse
from .protocols import UploadEndpoint

logger = logging.getLogger(__name__)

# Response fields that may carry the new object's id, in order of preference
ID_FIELDS = ("video_id", "id")


def extract_remote_object_id(raw: dict[str, Any]) -> Optional[str]:
    """Return the first id field present in a finish response, or None."""
    for name in ID_FIELDS:
        value = raw.get(name)
        if value is not None and value != "":
            return str(value)
    return None


class Finalizer:
    """Closes a session with display metadata."""

    def __init__(self, endpoint: UploadEndpoint) -> None:
        self._endpoint = endpoint

    async def finish(
        self,
        target_id: str,
        session_id: str,
        auth_token: str,
        title: str,
        description: str,
    ) -> FinishResponse:
        """
        Close the session and pull the remote object id out of the response.

        A response without an id is not an error: remote_object_id is None
        and the raw body is still returned.

        Raises:
            FinishRejected: If the endpoint refuses to close the session
        """
        raw = await self._endpoint.finish_session(
            target_id=target_id,
            session_id=session_id,
            auth_token=auth_token,
            title=title,
            description=description,
        )
        raw = dict(raw or {})
        remote_object_id = extract_remote_object_id(raw)

        if remote_object_id is None:
            logger.warning(
                "Finish response named no object id",
                extra={"session_id": session_id, "fields": sorted(raw)}
            )
        else:
            logger.info(
                "Upload session finished",
                extra={"session_id": session_id, "remote_object_id": remote_object_id}
            )

        return FinishResponse(remote_object_id=remote_object_id, raw_metadata=raw)
