"""Domain models for external OAuth integrations (Gmail, Outlook, Google Calendar).

Credential rows live in the Supabase ``integrations`` table, one row per
(user_id, provider).
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class Provider(str, Enum):
    gmail = "gmail"
    outlook = "outlook"
    google_calendar = "google_calendar"


class ConnectionState(str, Enum):
    disconnected = "disconnected"
    code_received = "code_received"
    connected = "connected"
    refreshing = "refreshing"


class OAuthTokens(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: float = Field(description="Unix timestamp (seconds) when the access token expires")
    scope: str = ""
    token_type: str = "Bearer"

    @classmethod
    def from_token_response(
        cls,
        payload: Dict[str, Any],
        previous: Optional["OAuthTokens"] = None,
        now: Optional[float] = None,
    ) -> "OAuthTokens":
        """Build tokens from a token-endpoint response.

        On refresh, providers may omit refresh_token and scope; the previous
        values are kept in that case.
        """
        now = time.time() if now is None else now
        expires_in = payload.get("expires_in")
        if expires_in is not None:
            expires_at = now + float(expires_in)
        else:
            expires_at = float(payload.get("expires_at") or now)
        return cls(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token") or (previous.refresh_token if previous else None),
            expires_at=expires_at,
            scope=payload.get("scope") or (previous.scope if previous else ""),
            token_type=payload.get("token_type") or "Bearer",
        )

    def expires_within(self, seconds: float, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return self.expires_at - now < seconds


class CredentialRecord(BaseModel):
    """Stored credentials for one user's connection to one provider."""

    provider: Provider
    user_id: str
    email: str = ""
    tokens: OAuthTokens
    is_active: bool = True
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def with_tokens(self, tokens: OAuthTokens) -> "CredentialRecord":
        return self.model_copy(update={"tokens": tokens, "updated_at": datetime.now(timezone.utc)})


class PendingAuthorization(BaseModel):
    """State kept between initiating consent and receiving the callback."""

    provider: Provider
    user_id: str
    state: str
    code_verifier: Optional[str] = None


class AuthorizationRequest(BaseModel):
    """Where to send the user agent to grant consent."""

    provider: Provider
    url: str
    state: str


class ConnectionStatus(BaseModel):
    provider: Provider
    state: ConnectionState
    email: Optional[str] = None
    expires_at: Optional[float] = None
    scope: Optional[str] = None
