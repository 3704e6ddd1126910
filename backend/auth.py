"""Request authentication with Supabase-issued access tokens (HS256 JWT)."""

import logging
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException

from backend.settings import Settings, get_settings

logger = logging.getLogger(__name__)

SUPABASE_AUDIENCE = "authenticated"


def decode_access_token(token: str, secret: str) -> dict:
    return jwt.decode(token, secret, algorithms=["HS256"], audience=SUPABASE_AUDIENCE)


async def get_current_user(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> str:
    """
    Resolve the user ID from a ``Bearer <supabase access token>`` header.

    Raises:
        HTTPException: 401 if the header is missing or the token is invalid,
            503 if no JWT secret is configured
    """
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    if not settings.supabase_jwt_secret:
        raise HTTPException(status_code=503, detail="Authentication not configured")

    token = authorization.split(" ", 1)[1].strip()
    try:
        claims = decode_access_token(token, settings.supabase_jwt_secret)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Your session has expired. Please log in again.")
    except jwt.InvalidTokenError as e:
        logger.warning("Rejected access token: %s", e)
        raise HTTPException(status_code=401, detail="Invalid access token")

    user_id = claims.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Access token has no subject")
    return user_id
