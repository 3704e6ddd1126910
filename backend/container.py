"""Construction of the service graph.

One ServiceContainer per application instance. Rate limiters, token manager
and HTTP clients are created here and handed to the API layer through
``app.state.container``; nothing is a module-level singleton.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import anthropic

from application.ports.credential_repository import CredentialRepository
from backend.crypto_utils import TokenEncryption, generate_key
from backend.services.auth_state_store import PendingAuthStore
from backend.services.authorized_client import AuthorizedClient
from backend.services.calendar_service import GoogleCalendarService
from backend.services.insights_service import InsightsService
from backend.services.mail_service import GmailService, OutlookService
from backend.services.oauth_client import OAuthClient
from backend.services.oauth_providers import build_provider_configs
from backend.services.rate_limiter import RateLimiterRegistry
from backend.services.retry import DEFAULT_RETRY_POLICY, RetryPolicy
from backend.services.token_manager import OAuthTokenManager
from backend.services.twilio_service import TwilioService
from backend.settings import Settings
from infrastructure.db.memory_credential_repository import InMemoryCredentialRepository

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    rate_limiters: RateLimiterRegistry
    token_manager: OAuthTokenManager
    oauth_client: OAuthClient
    authorized_client: AuthorizedClient
    calendar: GoogleCalendarService
    gmail: GmailService
    outlook: OutlookService
    insights: InsightsService
    twilio: TwilioService

    async def aclose(self) -> None:
        await self.oauth_client.aclose()
        await self.authorized_client.aclose()
        await self.twilio.aclose()
        self.rate_limiters.reset()


def build_container(
    settings: Settings,
    repository: Optional[CredentialRepository] = None,
    rate_limiters: Optional[RateLimiterRegistry] = None,
    oauth_client: Optional[OAuthClient] = None,
    authorized_http_client=None,
    ai_client: Optional[anthropic.AsyncAnthropic] = None,
    twilio_http_client=None,
    retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
) -> ServiceContainer:
    """Wire services together. Every collaborator can be overridden for tests."""
    if repository is None:
        logger.warning("No credential repository configured, using in-memory storage")
        repository = InMemoryCredentialRepository()

    rate_limiters = rate_limiters or RateLimiterRegistry.from_settings(settings)
    oauth_client = oauth_client or OAuthClient(timeout=settings.http_timeout_seconds)

    token_manager = OAuthTokenManager(
        providers=build_provider_configs(settings),
        repository=repository,
        oauth_client=oauth_client,
        state_store=PendingAuthStore(ttl_seconds=settings.auth_state_ttl_seconds),
        refresh_margin_seconds=settings.token_refresh_margin_seconds,
    )
    authorized_client = AuthorizedClient(
        token_manager,
        client=authorized_http_client,
        timeout=settings.http_timeout_seconds,
        retry_policy=retry_policy,
    )

    if ai_client is None and settings.anthropic_api_key:
        ai_client = anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)

    return ServiceContainer(
        settings=settings,
        rate_limiters=rate_limiters,
        token_manager=token_manager,
        oauth_client=oauth_client,
        authorized_client=authorized_client,
        calendar=GoogleCalendarService(authorized_client, rate_limiters),
        gmail=GmailService(authorized_client, rate_limiters),
        outlook=OutlookService(authorized_client, rate_limiters),
        insights=InsightsService(ai_client, rate_limiters, model=settings.insights_model),
        twilio=TwilioService.from_settings(
            settings, rate_limiters, client=twilio_http_client, retry_policy=retry_policy
        ),
    )


def token_encryption_from_settings(settings: Settings) -> TokenEncryption:
    """Encryption for stored tokens. Production requires ENCRYPTION_KEY."""
    if settings.encryption_key:
        return TokenEncryption(settings.encryption_key)
    if settings.is_production:
        raise RuntimeError("ENCRYPTION_KEY must be set in production")
    logger.warning("ENCRYPTION_KEY not set, using an ephemeral key; stored tokens won't survive restarts")
    return TokenEncryption(generate_key())


async def build_default_container(settings: Settings) -> ServiceContainer:
    """Container backed by Supabase when configured, in-memory otherwise."""
    repository: Optional[CredentialRepository] = None
    if settings.supabase_url and settings.supabase_key:
        from supabase import create_async_client

        from infrastructure.db.credential_repository import AsyncSupabaseCredentialRepository

        client = await create_async_client(settings.supabase_url, settings.supabase_key)
        repository = AsyncSupabaseCredentialRepository(client, token_encryption_from_settings(settings))
        logger.info("Using Supabase credential repository")
    return build_container(settings, repository=repository)
