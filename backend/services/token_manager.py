"""OAuth token lifecycle for Gmail, Outlook and Google Calendar.

Flow per (provider, user):

    initiate_auth -> provider consent -> handle_callback -> connected
    connected -> (token near expiry) -> refresh -> connected
    connected -> disconnect / rejected refresh -> disconnected

Callers never deal with expiry: they ask get_valid_access_token() and get a
token that is good for at least the refresh margin.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, Mapping, Optional, Set, Tuple

from application.models.integrations import (
    AuthorizationRequest,
    ConnectionState,
    ConnectionStatus,
    CredentialRecord,
    OAuthTokens,
    PendingAuthorization,
    Provider,
)
from application.ports.credential_repository import CredentialRepository
from backend.errors import (
    ExchangeFailed,
    IntegrationNotConnected,
    InvalidState,
    NoRefreshToken,
    RefreshFailed,
)
from backend.services.auth_state_store import PendingAuthStore
from backend.services.oauth_client import (
    CODE_VERIFIER_LENGTH,
    STATE_LENGTH,
    OAuthClient,
    build_authorization_url,
    generate_code_challenge,
    generate_random_string,
    identity_email,
)
from backend.services.oauth_providers import ProviderConfig

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_MARGIN_SECONDS = 5 * 60

_Key = Tuple[str, str]


class OAuthTokenManager:
    """Manages provider tokens with refresh-before-expiry."""

    def __init__(
        self,
        providers: Mapping[Provider, ProviderConfig],
        repository: CredentialRepository,
        oauth_client: OAuthClient,
        state_store: PendingAuthStore,
        refresh_margin_seconds: float = DEFAULT_REFRESH_MARGIN_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._providers = dict(providers)
        self._repository = repository
        self._oauth = oauth_client
        self._state_store = state_store
        self._refresh_margin = refresh_margin_seconds
        self._clock = clock
        self._refresh_locks: Dict[_Key, asyncio.Lock] = {}
        self._exchanging: Set[_Key] = set()
        self._refreshing: Set[_Key] = set()

    @property
    def providers(self) -> Dict[Provider, ProviderConfig]:
        return dict(self._providers)

    def provider_config(self, provider: Provider) -> ProviderConfig:
        return self._providers[Provider(provider)]

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def initiate_auth(self, provider: Provider, user_id: str) -> AuthorizationRequest:
        """
        Start an authorization: create the state nonce (and PKCE verifier),
        remember them, and build the consent URL.

        The API layer redirects the user agent to ``AuthorizationRequest.url``.
        """
        provider = Provider(provider)
        config = self.provider_config(provider)

        state = generate_random_string(STATE_LENGTH)
        code_verifier = None
        code_challenge = None
        if config.use_pkce:
            code_verifier = generate_random_string(CODE_VERIFIER_LENGTH)
            code_challenge = generate_code_challenge(code_verifier)

        self._state_store.put(
            PendingAuthorization(
                provider=provider,
                user_id=user_id,
                state=state,
                code_verifier=code_verifier,
            )
        )
        logger.info("Initiated %s authorization for user %s", provider.value, user_id)
        return AuthorizationRequest(
            provider=provider,
            url=build_authorization_url(config, state, code_challenge),
            state=state,
        )

    async def handle_callback(
        self,
        provider: Provider,
        user_id: str,
        code: str,
        state: Optional[str],
    ) -> CredentialRecord:
        """
        Complete an authorization after the provider redirects back.

        Raises:
            InvalidState: State missing, expired, reused or issued for another
                provider/user; or the PKCE verifier is missing
            ExchangeFailed: Token endpoint rejected the code
        """
        provider = Provider(provider)
        pending = self._state_store.pop(state) if state else None
        if pending is None or pending.provider != provider or pending.user_id != user_id:
            logger.warning("Rejected %s callback for user %s: invalid state", provider.value, user_id)
            raise InvalidState()

        config = self.provider_config(provider)
        if config.use_pkce and not pending.code_verifier:
            raise InvalidState("Code verifier not found")

        key = (provider.value, user_id)
        self._exchanging.add(key)
        try:
            payload = await self._oauth.exchange_code(config, code, pending.code_verifier)
            if not payload.get("access_token"):
                raise ExchangeFailed("Failed to exchange code: no access token in response")
            tokens = OAuthTokens.from_token_response(payload, now=self._clock())
            identity = await self._oauth.fetch_identity(config, tokens.access_token)
        finally:
            self._exchanging.discard(key)

        record = CredentialRecord(
            provider=provider,
            user_id=user_id,
            email=identity_email(config, identity),
            tokens=tokens,
            is_active=True,
        )
        await self._repository.save(record)
        logger.info("Connected %s for user %s", provider.value, user_id)
        return record

    # ------------------------------------------------------------------
    # Token use
    # ------------------------------------------------------------------

    async def get_credential(self, provider: Provider, user_id: str) -> Optional[CredentialRecord]:
        """Active credential record, or None."""
        record = await self._repository.get(Provider(provider), user_id)
        if record is None or not record.is_active:
            return None
        return record

    async def require_credential(self, provider: Provider, user_id: str) -> CredentialRecord:
        record = await self.get_credential(provider, user_id)
        if record is None:
            raise IntegrationNotConnected(Provider(provider).value)
        return record

    async def get_valid_access_token(self, record: CredentialRecord, force_refresh: bool = False) -> str:
        """
        Return an access token valid for at least the refresh margin.

        Refreshes (and persists) when the token expires within the margin, or
        when ``force_refresh`` is set after an upstream 401.

        Raises:
            NoRefreshToken: Token is expired (or rejected) and there is no
                refresh token; the user must re-authorize
            RefreshFailed: Provider rejected the refresh token
        """
        valid = await self.ensure_fresh(record, force_refresh=force_refresh)
        return valid.tokens.access_token

    async def ensure_fresh(self, record: CredentialRecord, force_refresh: bool = False) -> CredentialRecord:
        """Like get_valid_access_token, but returns the (possibly refreshed) record."""
        now = self._clock()
        tokens = record.tokens
        if not force_refresh and not tokens.expires_within(self._refresh_margin, now):
            return record

        if not tokens.refresh_token:
            if not force_refresh and tokens.expires_at > now:
                # Near expiry but still usable; nothing to renew it with.
                return record
            raise NoRefreshToken()

        return await self.refresh(record)

    async def refresh(self, record: CredentialRecord) -> CredentialRecord:
        """
        Refresh the record's access token and persist it.

        Concurrent refreshes of the same connection are serialized; a caller
        that waited behind another refresh reuses its result.
        """
        key = (record.provider.value, record.user_id)
        lock = self._refresh_locks.setdefault(key, asyncio.Lock())
        async with lock:
            stored = await self._repository.get(record.provider, record.user_id)
            if (
                stored is not None
                and stored.is_active
                and stored.tokens.access_token != record.tokens.access_token
                and not stored.tokens.expires_within(self._refresh_margin, self._clock())
            ):
                logger.debug("Reusing token refreshed concurrently for %s/%s", *key)
                return stored
            return await self._refresh_locked(stored if stored is not None else record)

    async def _refresh_locked(self, record: CredentialRecord) -> CredentialRecord:
        if not record.tokens.refresh_token:
            raise NoRefreshToken()

        config = self.provider_config(record.provider)
        key = (record.provider.value, record.user_id)
        logger.info("Refreshing %s token for user %s", record.provider.value, record.user_id)

        self._refreshing.add(key)
        try:
            payload = await self._oauth.refresh(config, record.tokens.refresh_token)
        except RefreshFailed:
            await self._repository.deactivate(record.provider, record.user_id)
            logger.warning(
                "Deactivated %s for user %s after rejected refresh",
                record.provider.value,
                record.user_id,
            )
            raise
        finally:
            self._refreshing.discard(key)

        tokens = OAuthTokens.from_token_response(payload, previous=record.tokens, now=self._clock())
        if tokens.refresh_token != record.tokens.refresh_token:
            logger.info("%s issued a new refresh token for user %s", record.provider.value, record.user_id)

        await self._repository.update_tokens(record.provider, record.user_id, tokens)
        return record.with_tokens(tokens)

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    async def disconnect(self, provider: Provider, user_id: str) -> bool:
        """Mark the stored credentials inactive. Tokens are not revoked at the provider."""
        provider = Provider(provider)
        found = await self._repository.deactivate(provider, user_id)
        if found:
            logger.info("Disconnected %s for user %s", provider.value, user_id)
        return found

    async def connection_status(self, provider: Provider, user_id: str) -> ConnectionStatus:
        provider = Provider(provider)
        key = (provider.value, user_id)
        record = await self.get_credential(provider, user_id)

        if key in self._refreshing:
            state = ConnectionState.refreshing
        elif key in self._exchanging:
            state = ConnectionState.code_received
        elif record is not None:
            state = ConnectionState.connected
        else:
            state = ConnectionState.disconnected

        if record is None:
            return ConnectionStatus(provider=provider, state=state)
        return ConnectionStatus(
            provider=provider,
            state=state,
            email=record.email,
            expires_at=record.tokens.expires_at,
            scope=record.tokens.scope,
        )
