"""Request and response bodies for the integrations endpoints."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from application.models.crm import EmailMessage
from application.models.integrations import Provider


class CallbackResponse(BaseModel):
    """Connection summary returned after a successful authorization."""
    provider: Provider
    email: str
    connected: bool = True
    expires_at: float
    scope: str = ""


class DisconnectResponse(BaseModel):
    provider: Provider
    disconnected: bool


class CreateEventRequest(BaseModel):
    summary: str
    description: str = ""
    start: datetime
    end: datetime
    time_zone: str = "UTC"
    attendees: List[str] = Field(default_factory=list)
    use_meet: bool = False


class CreateEventResponse(BaseModel):
    id: Optional[str] = None
    html_link: Optional[str] = None
    hangout_link: Optional[str] = None
    event: Dict[str, Any] = Field(default_factory=dict)


class MessageListResponse(BaseModel):
    provider: Provider
    messages: List[EmailMessage] = Field(default_factory=list)
    next_page_token: Optional[str] = None


class SendMessageRequest(BaseModel):
    to: List[str] = Field(min_length=1)
    subject: str
    body: str
    cc: List[str] = Field(default_factory=list)
    html: bool = False
