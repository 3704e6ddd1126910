"""CRM entities consumed by the insights service and provider clients."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class DealStage(str, Enum):
    lead = "Lead"
    qualified = "Qualified"
    proposal = "Proposal"
    negotiation = "Negotiation"
    closed_won = "Closed Won"
    closed_lost = "Closed Lost"


class ActivityType(str, Enum):
    call = "Call"
    email = "Email"
    meeting = "Meeting"
    task = "Task"


class RiskLevel(str, Enum):
    low = "Low"
    medium = "Medium"
    high = "High"


class Contact(BaseModel):
    id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None


class Deal(BaseModel):
    id: str
    title: str
    value: float = 0
    currency: str = "$"
    stage: DealStage = DealStage.lead
    contact_id: Optional[str] = None
    owner_id: Optional[str] = None
    expected_close_date: Optional[str] = None


class Activity(BaseModel):
    id: str
    type: ActivityType
    subject: str
    due_date: Optional[str] = None
    deal_id: Optional[str] = None
    contact_id: Optional[str] = None
    completed: bool = False


class DealInsights(BaseModel):
    summary: str
    risk_level: RiskLevel
    next_steps: List[str] = Field(default_factory=list, max_length=3)
    suggested_email_draft: str


class GoogleEventParams(BaseModel):
    summary: str
    description: str = ""
    start: datetime
    end: datetime
    time_zone: str = "UTC"
    attendees: List[str] = Field(default_factory=list)
    use_meet: bool = False


class EmailMessage(BaseModel):
    id: str
    thread_id: Optional[str] = None
    sender: str = ""
    to: List[str] = Field(default_factory=list)
    cc: List[str] = Field(default_factory=list)
    subject: str = ""
    snippet: str = ""
    received_at: Optional[datetime] = None
    labels: List[str] = Field(default_factory=list)


class MessagePage(BaseModel):
    messages: List[EmailMessage] = Field(default_factory=list)
    next_page_token: Optional[str] = None


class OutgoingEmail(BaseModel):
    to: List[str]
    subject: str
    body: str
    cc: List[str] = Field(default_factory=list)
    html: bool = False


class MessageChannel(str, Enum):
    sms = "sms"
    whatsapp = "whatsapp"


class TextMessage(BaseModel):
    """An SMS or WhatsApp message as Twilio reports it."""

    sid: str
    channel: MessageChannel = MessageChannel.sms
    sender: str = ""
    to: str = ""
    body: str = ""
    status: str = ""
    date_sent: Optional[datetime] = None
    media_urls: List[str] = Field(default_factory=list)


class CallInfo(BaseModel):
    sid: str
    status: str = ""


class CallRecording(BaseModel):
    sid: str
    url: str
    duration: int = 0
