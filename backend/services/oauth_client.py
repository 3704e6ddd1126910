"""HTTP client for provider OAuth endpoints (token exchange, refresh, userinfo)."""

import base64
import hashlib
import logging
import secrets
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from backend.errors import ExchangeFailed, RefreshFailed, UpstreamError, UpstreamUnauthorized
from backend.services.oauth_providers import ProviderConfig

logger = logging.getLogger(__name__)

UNRESERVED_CHARS = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-._~"
STATE_LENGTH = 32
CODE_VERIFIER_LENGTH = 128


def generate_random_string(length: int) -> str:
    return "".join(secrets.choice(UNRESERVED_CHARS) for _ in range(length))


def generate_code_challenge(verifier: str) -> str:
    """S256 PKCE challenge: base64url(sha256(verifier)) without padding."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def build_authorization_url(
    config: ProviderConfig,
    state: str,
    code_challenge: Optional[str] = None,
) -> str:
    params = {
        "client_id": config.client_id,
        "redirect_uri": config.redirect_uri,
        "response_type": "code",
        "scope": config.scope,
        "state": state,
    }
    if code_challenge:
        params["code_challenge"] = code_challenge
        params["code_challenge_method"] = "S256"
    params.update(config.extra_auth_params)
    return f"{config.auth_url}?{urlencode(params)}"


def error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return error.get("message") or str(error)
        return body.get("error_description") or error or response.text
    return response.text


class OAuthClient:
    """Talks to provider token and userinfo endpoints."""

    def __init__(self, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def exchange_code(
        self,
        config: ProviderConfig,
        code: str,
        code_verifier: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Exchange an authorization code for tokens.

        Args:
            config: Provider configuration
            code: Authorization code from the OAuth callback
            code_verifier: PKCE verifier, for providers that use PKCE

        Returns:
            Raw token response (access_token, refresh_token, expires_in, scope, token_type)

        Raises:
            ExchangeFailed: Token endpoint returned a non-2xx status
            UpstreamError: Token endpoint unreachable
        """
        data = {
            "client_id": config.client_id,
            "client_secret": config.client_secret,
            "code": code,
            "redirect_uri": config.redirect_uri,
            "grant_type": "authorization_code",
        }
        if code_verifier:
            data["code_verifier"] = code_verifier

        try:
            response = await self.client.post(config.token_url, data=data)
        except httpx.HTTPError as e:
            logger.error("Token exchange request to %s failed: %s", config.provider.value, e)
            raise UpstreamError(f"Token exchange error: {e}") from e

        if not response.is_success:
            detail = error_detail(response)
            logger.error(
                "Failed to exchange %s code (status %d): %s",
                config.provider.value,
                response.status_code,
                detail,
            )
            raise ExchangeFailed(f"Failed to exchange code: {detail}")

        logger.info("Exchanged authorization code for %s tokens", config.provider.value)
        return response.json()

    async def refresh(self, config: ProviderConfig, refresh_token: str) -> Dict[str, Any]:
        """
        Obtain a new access token with a refresh token.

        Raises:
            RefreshFailed: Provider rejected the refresh token (400/401)
            UpstreamError: Any other failure
        """
        data = {
            "client_id": config.client_id,
            "client_secret": config.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }

        try:
            response = await self.client.post(config.token_url, data=data)
        except httpx.HTTPError as e:
            logger.error("Token refresh request to %s failed: %s", config.provider.value, e)
            raise UpstreamError(f"Token refresh error: {e}") from e

        if not response.is_success:
            detail = error_detail(response)
            logger.error(
                "Failed to refresh %s token (status %d): %s",
                config.provider.value,
                response.status_code,
                detail,
            )
            if response.status_code in (400, 401):
                raise RefreshFailed(
                    f"Refresh token expired or invalid for {config.provider.value}. "
                    "Reauthorization required."
                )
            raise UpstreamError(f"Failed to refresh token: {detail}", response.status_code)

        logger.info("Refreshed %s access token", config.provider.value)
        return response.json()

    async def fetch_identity(self, config: ProviderConfig, access_token: str) -> Dict[str, Any]:
        """Fetch the authenticated account's profile from the provider."""
        headers = {"Authorization": f"Bearer {access_token}"}
        try:
            response = await self.client.get(config.userinfo_url, headers=headers)
        except httpx.HTTPError as e:
            raise UpstreamError(f"Failed to fetch account info: {e}") from e

        if response.status_code == 401:
            raise UpstreamUnauthorized("Unauthorized - token expired or invalid")
        if not response.is_success:
            raise UpstreamError(
                f"Failed to fetch account info: {error_detail(response)}",
                response.status_code,
            )
        return response.json()


def identity_email(config: ProviderConfig, identity: Dict[str, Any]) -> str:
    for field_name in config.email_fields:
        value = identity.get(field_name)
        if value:
            return value
    return ""
