"""
Shared fixtures for the CRM integrations tests.

Provider HTTP goes through httpx.MockTransport, credentials through the
in-memory repository, and the AI client is an AsyncMock. No real network
calls are made.
"""

import os

import httpx
import pytest
from fastapi.testclient import TestClient

# ---------------------------------------------------------------------------
# Environment setup (must precede backend imports)
# ---------------------------------------------------------------------------
os.environ.setdefault("ENVIRONMENT", "test")

from api.deps import get_current_user
from backend.container import ServiceContainer, build_container
from backend.main import create_app
from backend.services.oauth_client import OAuthClient
from backend.services.rate_limiter import RateLimitConfig, RateLimiterRegistry
from backend.services.retry import RetryPolicy
from backend.settings import Settings, get_settings
from infrastructure.db.memory_credential_repository import InMemoryCredentialRepository
from tests.fixtures import RecordingTransport, mock_get_current_user


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        environment="test",
        app_origin="https://crm.example.com",
        google_client_id="google-client",
        google_client_secret="google-secret",
        microsoft_client_id="ms-client",
        microsoft_client_secret="ms-secret",
        supabase_jwt_secret="test-jwt-secret",
        twilio_account_sid="AC123",
        twilio_auth_token="twilio-token",
        twilio_phone_number="+15550000001",
        twilio_whatsapp_number="+15550000002",
        anthropic_api_key=None,
    )


@pytest.fixture
def repository() -> InMemoryCredentialRepository:
    return InMemoryCredentialRepository()


@pytest.fixture
def provider_transport() -> RecordingTransport:
    """Default provider API: 200 with an empty JSON object. Tests replace ``handler``."""
    return RecordingTransport(lambda request: httpx.Response(200, json={}))


@pytest.fixture
def container(test_settings, repository, provider_transport) -> ServiceContainer:
    # Roomy limits so router tests never queue.
    rate_limiters = RateLimiterRegistry.from_configs(
        {
            name: RateLimitConfig(max_requests=100, window_seconds=60)
            for name in ("api", "search", "upload", "ai", "email", "sms")
        }
    )
    return build_container(
        test_settings,
        repository=repository,
        rate_limiters=rate_limiters,
        oauth_client=OAuthClient(client=provider_transport.client()),
        authorized_http_client=provider_transport.client(),
        twilio_http_client=provider_transport.client(),
        retry_policy=RetryPolicy(max_attempts=1),
    )


@pytest.fixture
def app(test_settings, container):
    application = create_app(settings=test_settings, container=container)
    application.dependency_overrides[get_current_user] = mock_get_current_user
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
def api_client(app) -> TestClient:
    return TestClient(app)


@pytest.fixture
def noauth_client(test_settings, container) -> TestClient:
    """Client without the auth override; requests need a real bearer token."""
    application = create_app(settings=test_settings, container=container)
    application.dependency_overrides[get_settings] = lambda: test_settings
    return TestClient(application)
