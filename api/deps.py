"""Dependency providers shared by the API routers.

Services are built once per app and held on ``app.state.container``; each
provider below hands one of them to a route.
"""

from fastapi import Depends, HTTPException, Request

from backend.auth import get_current_user as _get_current_user
from backend.container import ServiceContainer
from backend.services.calendar_service import GoogleCalendarService
from backend.services.insights_service import InsightsService
from backend.services.mail_service import GmailService, OutlookService
from backend.services.rate_limiter import RateLimiterRegistry
from backend.services.token_manager import OAuthTokenManager
from backend.services.twilio_service import TwilioService


async def get_current_user(user_id: str = Depends(_get_current_user)) -> str:
    """Authenticated user ID (Supabase JWT ``sub`` claim)."""
    return user_id


# -----------------------------------------------------------------------------
# Services
# -----------------------------------------------------------------------------


def get_container(request: Request) -> ServiceContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return container


def get_token_manager(container: ServiceContainer = Depends(get_container)) -> OAuthTokenManager:
    return container.token_manager


def get_rate_limiters(container: ServiceContainer = Depends(get_container)) -> RateLimiterRegistry:
    return container.rate_limiters


def get_calendar_service(container: ServiceContainer = Depends(get_container)) -> GoogleCalendarService:
    return container.calendar


def get_gmail_service(container: ServiceContainer = Depends(get_container)) -> GmailService:
    return container.gmail


def get_outlook_service(container: ServiceContainer = Depends(get_container)) -> OutlookService:
    return container.outlook


def get_insights_service(container: ServiceContainer = Depends(get_container)) -> InsightsService:
    return container.insights


def get_twilio_service(container: ServiceContainer = Depends(get_container)) -> TwilioService:
    return container.twilio
