"""
Facebook login endpoints.

Thin pass-through to the Facebook login dialog and the code-for-token
exchange. The token is returned to the caller; nothing is stored.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from ...infrastructure.facebook.oauth import OAuthExchangeError
from ..dependencies import OAuthClientDep

logger = logging.getLogger(__name__)

router = APIRouter()


class TokenResponse(BaseModel):
    """Token returned by the code exchange."""
    access_token: str
    token_type: Optional[str] = None
    expires_in: Optional[int] = None


@router.get(
    "/facebook",
    summary="Start Facebook login",
    response_class=RedirectResponse,
)
async def facebook_login(oauth: OAuthClientDep) -> RedirectResponse:
    return RedirectResponse(oauth.login_url())


@router.get(
    "/facebook/callback",
    response_model=TokenResponse,
    summary="Handle Facebook login callback",
)
async def facebook_callback(
    oauth: OAuthClientDep,
    code: Optional[str] = None,
) -> TokenResponse:
    if not code:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No code returned from Facebook",
        )

    try:
        data = await oauth.exchange_code(code)
    except OAuthExchangeError as e:
        logger.error("Facebook token exchange failed", extra={"payload": e.payload})
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Error exchanging code for token",
        )

    return TokenResponse(
        access_token=data["access_token"],
        token_type=data.get("token_type"),
        expires_in=data.get("expires_in"),
    )
