"""Bearer-token HTTP client for provider REST APIs.

Every call gets a fresh-enough token from the OAuthTokenManager. If the
provider still answers 401, the token is force-refreshed and the call is
repeated AUTH_RETRY_LIMIT times; a further 401 raises UpstreamUnauthorized.

Idempotent reads are additionally retried on 5xx and network failures
under the client's RetryPolicy. Writes (sending mail, creating events) are
never repeated.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import httpx

from application.models.integrations import Provider
from backend.errors import UpstreamError, UpstreamUnauthorized
from backend.services.oauth_client import error_detail
from backend.services.retry import AUTH_RETRY_LIMIT, DEFAULT_RETRY_POLICY, RetryPolicy, call_with_retry
from backend.services.token_manager import OAuthTokenManager

logger = logging.getLogger(__name__)

IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


class AuthorizedClient:
    def __init__(
        self,
        token_manager: OAuthTokenManager,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
        retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._tokens = token_manager
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self._retry_policy = retry_policy
        self._sleep = sleep

    async def aclose(self) -> None:
        await self.client.aclose()

    async def request(
        self,
        provider: Provider,
        user_id: str,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Send an authenticated request on behalf of a user.

        Raises:
            IntegrationNotConnected: User has no active connection to the provider
            NoRefreshToken: Token cannot be renewed
            UpstreamUnauthorized: 401 persisted after a forced refresh
            UpstreamError: Any other non-2xx status or a network failure
        """
        provider = Provider(provider)
        if method.upper() not in IDEMPOTENT_METHODS:
            return await self._request_once(provider, user_id, method, url, **kwargs)
        return await call_with_retry(
            lambda: self._request_once(provider, user_id, method, url, **kwargs),
            self._retry_policy,
            sleep=self._sleep,
        )

    async def request_json(
        self,
        provider: Provider,
        user_id: str,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> Any:
        response = await self.request(provider, user_id, method, url, **kwargs)
        if not response.content:
            return {}
        return response.json()

    async def _request_once(
        self,
        provider: Provider,
        user_id: str,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> httpx.Response:
        record = await self._tokens.require_credential(provider, user_id)
        record = await self._tokens.ensure_fresh(record)

        auth_retries = 0
        while True:
            response = await self._send(method, url, record.tokens.access_token, **kwargs)
            if response.status_code != 401:
                break
            if auth_retries >= AUTH_RETRY_LIMIT:
                logger.warning(
                    "%s still unauthorized after token refresh for user %s",
                    provider.value,
                    user_id,
                )
                raise UpstreamUnauthorized(
                    f"{provider.value} rejected the access token. Please reconnect."
                )
            auth_retries += 1
            logger.info("401 from %s for user %s, refreshing token and retrying", provider.value, user_id)
            record = await self._tokens.ensure_fresh(record, force_refresh=True)

        if not response.is_success:
            detail = error_detail(response)
            logger.error(
                "%s %s returned %d: %s",
                method,
                url,
                response.status_code,
                detail,
            )
            raise UpstreamError(detail, response.status_code)
        return response

    async def _send(self, method: str, url: str, access_token: str, **kwargs: Any) -> httpx.Response:
        options = dict(kwargs)
        headers = dict(options.pop("headers", None) or {})
        headers["Authorization"] = f"Bearer {access_token}"
        try:
            return await self.client.request(method, url, headers=headers, **options)
        except httpx.HTTPError as e:
            logger.error("%s %s failed: %s", method, url, e)
            raise UpstreamError(f"Network error calling provider: {e}") from e
