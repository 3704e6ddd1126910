"""
Integrations router.

OAuth connection management for Gmail, Outlook and Google Calendar, plus the
provider operations that use those connections:
- GET    /integrations/{provider}/authorize: Redirect to the consent screen
- GET    /integrations/{provider}/callback: Complete the authorization
- GET    /integrations/{provider}: Connection status
- DELETE /integrations/{provider}: Disconnect
- POST   /integrations/google_calendar/events: Create a calendar event
- GET    /integrations/{provider}/messages: List mail (gmail/outlook)
- POST   /integrations/{provider}/messages: Send mail (gmail/outlook)
"""

import logging
from typing import Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse

from api.deps import (
    get_calendar_service,
    get_current_user,
    get_gmail_service,
    get_outlook_service,
    get_token_manager,
)
from api.schemas.integrations import (
    CallbackResponse,
    CreateEventRequest,
    CreateEventResponse,
    DisconnectResponse,
    MessageListResponse,
    SendMessageRequest,
)
from application.models.crm import GoogleEventParams, OutgoingEmail
from application.models.integrations import AuthorizationRequest, ConnectionStatus, Provider
from backend.services.calendar_service import GoogleCalendarService
from backend.services.mail_service import GmailService, OutlookService
from backend.services.token_manager import OAuthTokenManager

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/integrations",
    tags=["Integrations"],
)

MAIL_PROVIDERS = (Provider.gmail, Provider.outlook)


def _mail_service(
    provider: Provider,
    gmail: GmailService,
    outlook: OutlookService,
) -> Union[GmailService, OutlookService]:
    if provider not in MAIL_PROVIDERS:
        raise HTTPException(status_code=400, detail=f"{provider.value} does not support mail")
    return gmail if provider == Provider.gmail else outlook


@router.get("/{provider}/authorize", response_model=None)
def authorize(
    provider: Provider,
    redirect: bool = Query(True, description="Respond with a 302 instead of the consent URL as JSON"),
    user_id: str = Depends(get_current_user),
    token_manager: OAuthTokenManager = Depends(get_token_manager),
) -> Union[RedirectResponse, AuthorizationRequest]:
    """
    Start the OAuth flow for a provider.

    Returns a 302 to the provider's consent screen. Single-page clients that
    cannot follow cross-origin redirects pass ``redirect=false`` and get the
    URL back as JSON.
    """
    if not token_manager.provider_config(provider).is_configured:
        raise HTTPException(status_code=503, detail=f"{provider.value} is not configured")

    request = token_manager.initiate_auth(provider, user_id)
    if not redirect:
        return request
    return RedirectResponse(request.url, status_code=302)


@router.get("/{provider}/callback", response_model=CallbackResponse)
async def callback(
    provider: Provider,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    error_description: Optional[str] = None,
    user_id: str = Depends(get_current_user),
    token_manager: OAuthTokenManager = Depends(get_token_manager),
):
    """
    Complete the OAuth flow with the code and state the provider sent back.

    Raises:
        400: Consent denied, code missing, or state invalid
        502: Token exchange failed
    """
    if error:
        logger.info("User %s denied %s consent: %s", user_id, provider.value, error)
        raise HTTPException(status_code=400, detail=error_description or error)
    if not code:
        raise HTTPException(status_code=400, detail="Missing authorization code")

    record = await token_manager.handle_callback(provider, user_id, code, state)
    return CallbackResponse(
        provider=record.provider,
        email=record.email,
        expires_at=record.tokens.expires_at,
        scope=record.tokens.scope,
    )


@router.get("/{provider}", response_model=ConnectionStatus)
async def connection_status(
    provider: Provider,
    user_id: str = Depends(get_current_user),
    token_manager: OAuthTokenManager = Depends(get_token_manager),
):
    return await token_manager.connection_status(provider, user_id)


@router.delete("/{provider}", response_model=DisconnectResponse)
async def disconnect(
    provider: Provider,
    user_id: str = Depends(get_current_user),
    token_manager: OAuthTokenManager = Depends(get_token_manager),
):
    """Mark the connection inactive. Tokens are not revoked at the provider."""
    found = await token_manager.disconnect(provider, user_id)
    if not found:
        raise HTTPException(status_code=404, detail=f"{provider.value} not connected")
    return DisconnectResponse(provider=provider, disconnected=True)


@router.post("/google_calendar/events", response_model=CreateEventResponse, status_code=201)
async def create_calendar_event(
    body: CreateEventRequest,
    user_id: str = Depends(get_current_user),
    calendar: GoogleCalendarService = Depends(get_calendar_service),
):
    try:
        event = await calendar.create_event(user_id, GoogleEventParams(**body.model_dump()))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return CreateEventResponse(
        id=event.get("id"),
        html_link=event.get("htmlLink"),
        hangout_link=event.get("hangoutLink"),
        event=event,
    )


@router.get("/{provider}/messages", response_model=MessageListResponse)
async def list_messages(
    provider: Provider,
    max_results: int = Query(50, ge=1, le=100),
    page_token: Optional[str] = None,
    user_id: str = Depends(get_current_user),
    gmail: GmailService = Depends(get_gmail_service),
    outlook: OutlookService = Depends(get_outlook_service),
):
    service = _mail_service(provider, gmail, outlook)
    page = await service.list_messages(user_id, max_results=max_results, page_token=page_token)
    return MessageListResponse(
        provider=provider,
        messages=page.messages,
        next_page_token=page.next_page_token,
    )


@router.post("/{provider}/messages", status_code=202)
async def send_message(
    provider: Provider,
    body: SendMessageRequest,
    user_id: str = Depends(get_current_user),
    gmail: GmailService = Depends(get_gmail_service),
    outlook: OutlookService = Depends(get_outlook_service),
):
    service = _mail_service(provider, gmail, outlook)
    result = await service.send_message(user_id, OutgoingEmail(**body.model_dump()))
    return {"provider": provider.value, "result": result}
