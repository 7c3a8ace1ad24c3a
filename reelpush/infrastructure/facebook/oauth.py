"""
Facebook login helpers.

A thin pass-through: build the login dialog URL, and trade the callback
code for an access token. Tokens are handed back to the caller and never
stored here.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

logger = logging.getLogger(__name__)

# Permissions needed to publish videos to a Page
DEFAULT_SCOPES = (
    "pages_show_list",
    "pages_manage_posts",
    "pages_read_engagement",
    "publish_video",
)


class OAuthExchangeError(Exception):
    """Raised when the code-for-token exchange fails."""

    def __init__(self, message: str, payload: Any = None) -> None:
        super().__init__(message)
        self.payload = payload


@dataclass
class OAuthConfig:
    """Facebook app credentials and login endpoints."""
    app_id: str
    app_secret: str
    redirect_uri: str
    api_version: str = "v19.0"
    dialog_base_url: str = "https://www.facebook.com"
    graph_base_url: str = "https://graph.facebook.com"
    scopes: tuple[str, ...] = field(default=DEFAULT_SCOPES)
    timeout_seconds: float = 30.0

    def __post_init__(self) -> None:
        if not self.app_id:
            raise ValueError("app_id is required")
        if not self.redirect_uri:
            raise ValueError("redirect_uri is required")


class FacebookOAuthClient:
    """Builds login URLs and exchanges authorization codes."""

    def __init__(
        self,
        config: OAuthConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config
        self._transport = transport

    def login_url(self, state: Optional[str] = None) -> str:
        params = {
            "client_id": self._config.app_id,
            "redirect_uri": self._config.redirect_uri,
            "scope": ",".join(self._config.scopes),
            "response_type": "code",
        }
        if state:
            params["state"] = state
        return (
            f"{self._config.dialog_base_url}/{self._config.api_version}"
            f"/dialog/oauth?{urlencode(params)}"
        )

    async def exchange_code(self, code: str) -> dict[str, Any]:
        """
        Trade an authorization code for an access token.

        Returns the raw token response (access_token, token_type, expires_in).
        """
        if not code:
            raise ValueError("code is required")

        params = {
            "client_id": self._config.app_id,
            "redirect_uri": self._config.redirect_uri,
            "client_secret": self._config.app_secret,
            "code": code,
        }
        url = f"/{self._config.api_version}/oauth/access_token"

        try:
            async with httpx.AsyncClient(
                base_url=self._config.graph_base_url,
                timeout=self._config.timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.get(url, params=params)
        except httpx.HTTPError as e:
            logger.error("Token exchange request failed", extra={"error": str(e)})
            raise OAuthExchangeError(f"Token exchange request failed: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {"response": response.text}

        if not response.is_success or "error" in data or "access_token" not in data:
            logger.error(
                "Token exchange rejected",
                extra={"status_code": response.status_code}
            )
            raise OAuthExchangeError("Error exchanging code for token", payload=data)

        logger.info("Exchanged authorization code for access token")
        return data
