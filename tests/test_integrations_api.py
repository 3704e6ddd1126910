"""API tests for the integrations router."""

from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from fastapi.testclient import TestClient

from api.deps import get_current_user
from application.models.integrations import Provider
from backend.container import build_container
from backend.main import create_app
from backend.services.oauth_client import OAuthClient
from backend.services.oauth_providers import GOOGLE_TOKEN_URL, GOOGLE_USERINFO_URL
from backend.services.rate_limiter import RateLimitConfig, RateLimiterRegistry
from backend.services.retry import RetryPolicy
from tests.fixtures import make_record, mock_get_current_user

EVENT_BODY = {
    "summary": "Discovery call",
    "start": "2025-03-04T15:00:00Z",
    "end": "2025-03-04T15:30:00Z",
    "attendees": ["buyer@acme.com"],
}


def google_provider(token_status=200):
    def handler(request):
        url = str(request.url)
        if url.startswith(GOOGLE_TOKEN_URL):
            if token_status != 200:
                return httpx.Response(token_status, json={"error": "invalid_grant", "error_description": "Bad code"})
            return httpx.Response(
                200,
                json={
                    "access_token": "ya29.new",
                    "refresh_token": "1//refresh",
                    "expires_in": 3599,
                    "scope": "https://www.googleapis.com/auth/gmail.send",
                    "token_type": "Bearer",
                },
            )
        if url.startswith(GOOGLE_USERINFO_URL):
            return httpx.Response(200, json={"email": "rep@example.com"})
        return httpx.Response(404)

    return handler


class TestAuthorize:
    def test_redirects_to_consent_screen(self, api_client):
        response = api_client.get("/integrations/gmail/authorize", follow_redirects=False)

        assert response.status_code == 302
        location = urlparse(response.headers["location"])
        assert location.netloc == "accounts.google.com"
        query = parse_qs(location.query)
        assert query["client_id"] == ["google-client"]
        assert query["redirect_uri"] == ["https://crm.example.com/integrations/gmail/callback"]
        assert query["code_challenge_method"] == ["S256"]
        assert query["access_type"] == ["offline"]

    def test_json_mode(self, api_client):
        response = api_client.get("/integrations/outlook/authorize", params={"redirect": "false"})

        assert response.status_code == 200
        data = response.json()
        assert data["provider"] == "outlook"
        assert data["url"].startswith("https://login.microsoftonline.com/")
        assert data["state"]

    def test_unknown_provider(self, api_client):
        response = api_client.get("/integrations/slack/authorize")

        assert response.status_code == 422

    def test_unconfigured_provider(self, test_settings, repository):
        settings = test_settings.model_copy(update={"microsoft_client_id": ""})
        app = create_app(settings=settings, container=build_container(settings, repository=repository))
        app.dependency_overrides[get_current_user] = mock_get_current_user

        response = TestClient(app).get("/integrations/outlook/authorize")

        assert response.status_code == 503


class TestCallback:
    def _state(self, api_client, provider="gmail"):
        response = api_client.get(f"/integrations/{provider}/authorize", params={"redirect": "false"})
        return response.json()["state"]

    def test_completes_connection(self, api_client, provider_transport, repository):
        provider_transport.handler = google_provider()
        state = self._state(api_client)

        response = api_client.get("/integrations/gmail/callback", params={"code": "4/abc", "state": state})

        assert response.status_code == 200
        data = response.json()
        assert data["provider"] == "gmail"
        assert data["email"] == "rep@example.com"
        token_request = provider_transport.requests[0]
        assert parse_qs(token_request.content.decode())["code_verifier"][0]

        status = api_client.get("/integrations/gmail").json()
        assert status["state"] == "connected"
        assert status["email"] == "rep@example.com"

    def test_state_is_single_use(self, api_client, provider_transport):
        provider_transport.handler = google_provider()
        state = self._state(api_client)
        api_client.get("/integrations/gmail/callback", params={"code": "4/abc", "state": state})

        response = api_client.get("/integrations/gmail/callback", params={"code": "4/abc", "state": state})

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_invalid_state(self, api_client, provider_transport):
        response = api_client.get("/integrations/gmail/callback", params={"code": "4/abc", "state": "forged"})

        assert response.status_code == 400
        assert response.json() == {"detail": "Invalid state parameter", "code": "VALIDATION_ERROR"}
        assert provider_transport.requests == []

    def test_state_for_other_provider_rejected(self, api_client, provider_transport):
        state = self._state(api_client, provider="google_calendar")

        response = api_client.get("/integrations/gmail/callback", params={"code": "4/abc", "state": state})

        assert response.status_code == 400

    def test_consent_denied(self, api_client):
        response = api_client.get(
            "/integrations/gmail/callback",
            params={"error": "access_denied", "error_description": "The user denied access"},
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "The user denied access"

    def test_missing_code(self, api_client):
        response = api_client.get("/integrations/gmail/callback", params={"state": "abc"})

        assert response.status_code == 400

    def test_exchange_failure(self, api_client, provider_transport):
        provider_transport.handler = google_provider(token_status=400)
        state = self._state(api_client)

        response = api_client.get("/integrations/gmail/callback", params={"code": "4/bad", "state": state})

        assert response.status_code == 502
        assert response.json()["code"] == "AUTHENTICATION_ERROR"
        assert "Bad code" in response.json()["detail"]


class TestConnectionManagement:
    def test_status_disconnected(self, api_client):
        response = api_client.get("/integrations/google_calendar")

        assert response.status_code == 200
        assert response.json() == {
            "provider": "google_calendar",
            "state": "disconnected",
            "email": None,
            "expires_at": None,
            "scope": None,
        }

    @pytest.mark.asyncio
    async def test_disconnect(self, api_client, repository):
        await repository.save(make_record(provider=Provider.outlook))

        response = api_client.delete("/integrations/outlook")

        assert response.status_code == 200
        assert response.json() == {"provider": "outlook", "disconnected": True}
        assert api_client.get("/integrations/outlook").json()["state"] == "disconnected"

    def test_disconnect_when_not_connected(self, api_client):
        response = api_client.delete("/integrations/gmail")

        assert response.status_code == 404


class TestCalendarEvents:
    @pytest.mark.asyncio
    async def test_create_event(self, api_client, repository, provider_transport):
        await repository.save(make_record(provider=Provider.google_calendar))
        provider_transport.handler = lambda request: httpx.Response(
            200, json={"id": "evt-1", "htmlLink": "https://calendar.google.com/evt-1"}
        )

        response = api_client.post("/integrations/google_calendar/events", json=EVENT_BODY)

        assert response.status_code == 201
        data = response.json()
        assert data["id"] == "evt-1"
        assert data["html_link"] == "https://calendar.google.com/evt-1"
        assert data["hangout_link"] is None

    @pytest.mark.asyncio
    async def test_end_before_start(self, api_client, repository):
        await repository.save(make_record(provider=Provider.google_calendar))
        body = dict(EVENT_BODY, start=EVENT_BODY["end"], end=EVENT_BODY["start"])

        response = api_client.post("/integrations/google_calendar/events", json=body)

        assert response.status_code == 400

    def test_not_connected(self, api_client):
        response = api_client.post("/integrations/google_calendar/events", json=EVENT_BODY)

        assert response.status_code == 404
        assert response.json() == {"detail": "google_calendar not connected", "code": "NOT_FOUND"}

    @pytest.mark.asyncio
    async def test_upstream_rejection(self, api_client, repository, provider_transport):
        await repository.save(make_record(provider=Provider.google_calendar))
        provider_transport.handler = lambda request: httpx.Response(403, json={"error": {"message": "Forbidden"}})

        response = api_client.post("/integrations/google_calendar/events", json=EVENT_BODY)

        assert response.status_code == 502
        assert response.json()["code"] == "VALIDATION_ERROR"


class TestMessages:
    def test_calendar_has_no_mail(self, api_client):
        response = api_client.get("/integrations/google_calendar/messages")

        assert response.status_code == 400

    def test_not_connected(self, api_client):
        response = api_client.get("/integrations/gmail/messages")

        assert response.status_code == 404
        assert response.json() == {"detail": "gmail not connected", "code": "NOT_FOUND"}

    def test_max_results_bounds(self, api_client):
        assert api_client.get("/integrations/gmail/messages", params={"max_results": 0}).status_code == 422
        assert api_client.get("/integrations/gmail/messages", params={"max_results": 101}).status_code == 422

    @pytest.mark.asyncio
    async def test_list_outlook_messages(self, api_client, repository, provider_transport):
        await repository.save(make_record(provider=Provider.outlook))
        provider_transport.handler = lambda request: httpx.Response(
            200,
            json={"value": [{"id": "AAMk1", "subject": "Contract", "from": {"emailAddress": {"address": "a@b.com"}}}]},
        )

        response = api_client.get("/integrations/outlook/messages", params={"max_results": 5})

        assert response.status_code == 200
        data = response.json()
        assert data["provider"] == "outlook"
        assert data["messages"][0]["subject"] == "Contract"
        assert data["next_page_token"] is None

    @pytest.mark.asyncio
    async def test_send_gmail_message(self, api_client, repository, provider_transport):
        await repository.save(make_record(provider=Provider.gmail))
        provider_transport.handler = lambda request: httpx.Response(200, json={"id": "sent-1", "threadId": "t-1"})

        response = api_client.post(
            "/integrations/gmail/messages",
            json={"to": ["buyer@acme.com"], "subject": "Proposal", "body": "Attached."},
        )

        assert response.status_code == 202
        assert response.json()["result"]["id"] == "sent-1"

    def test_send_requires_recipient(self, api_client):
        response = api_client.post(
            "/integrations/gmail/messages",
            json={"to": [], "subject": "Proposal", "body": "Attached."},
        )

        assert response.status_code == 422


class TestRateLimitResponse:
    @pytest.mark.asyncio
    async def test_429_with_retry_after(self, test_settings, repository, provider_transport):
        await repository.save(make_record(provider=Provider.gmail))
        provider_transport.handler = lambda request: httpx.Response(200, json={"id": "sent"})
        rate_limiters = RateLimiterRegistry.from_configs(
            {
                "api": RateLimitConfig(max_requests=100, window_seconds=60),
                "search": RateLimitConfig(max_requests=100, window_seconds=60),
                "ai": RateLimitConfig(max_requests=100, window_seconds=60),
                "email": RateLimitConfig(max_requests=1, window_seconds=60, queue_enabled=False),
            }
        )
        container = build_container(
            test_settings,
            repository=repository,
            rate_limiters=rate_limiters,
            oauth_client=OAuthClient(client=provider_transport.client()),
            authorized_http_client=provider_transport.client(),
            retry_policy=RetryPolicy(max_attempts=1),
        )
        app = create_app(settings=test_settings, container=container)
        app.dependency_overrides[get_current_user] = mock_get_current_user
        client = TestClient(app)
        body = {"to": ["buyer@acme.com"], "subject": "Hi", "body": "Hello"}

        first = client.post("/integrations/gmail/messages", json=body)
        second = client.post("/integrations/gmail/messages", json=body)

        assert first.status_code == 202
        assert second.status_code == 429
        assert second.json()["code"] == "RATE_LIMIT"
        assert 1 <= int(second.headers["retry-after"]) <= 60
        assert rate_limiters.get("email").get_status().requests_in_window == 1
