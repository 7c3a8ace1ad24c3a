"""
Facebook Graph API integration.

Resumable video uploads to Pages, plus the login code exchange.
Includes an in-memory endpoint for local development.
"""

from .client import (
    GraphConfig,
    GraphVideoClient,
    MockGraphVideoClient,
    create_video_endpoint,
)
from .oauth import FacebookOAuthClient, OAuthConfig, OAuthExchangeError

__all__ = [
    "FacebookOAuthClient",
    "GraphConfig",
    "GraphVideoClient",
    "MockGraphVideoClient",
    "OAuthConfig",
    "OAuthExchangeError",
    "create_video_endpoint",
]
