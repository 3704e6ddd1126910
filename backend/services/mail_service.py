"""Gmail and Outlook mail clients: list recent messages and send mail."""

import base64
import logging
from datetime import datetime, timezone
from email.message import EmailMessage as MIMEMessage
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

from application.models.crm import EmailMessage, MessagePage, OutgoingEmail
from application.models.integrations import Provider
from backend.services.authorized_client import AuthorizedClient
from backend.services.rate_limiter import RateLimiterRegistry, rate_limited

logger = logging.getLogger(__name__)

GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1/users/me"
GRAPH_API_BASE = "https://graph.microsoft.com/v1.0/me"


def _split_addresses(value: str) -> List[str]:
    return [addr.strip() for addr in value.split(",") if addr.strip()]


def parse_gmail_message(message: Dict[str, Any]) -> EmailMessage:
    headers = {
        h.get("name", "").lower(): h.get("value", "")
        for h in message.get("payload", {}).get("headers", [])
    }
    received_at = None
    if message.get("internalDate"):
        received_at = datetime.fromtimestamp(int(message["internalDate"]) / 1000, tz=timezone.utc)
    return EmailMessage(
        id=message["id"],
        thread_id=message.get("threadId"),
        sender=headers.get("from", ""),
        to=_split_addresses(headers.get("to", "")),
        cc=_split_addresses(headers.get("cc", "")),
        subject=headers.get("subject", ""),
        snippet=message.get("snippet", ""),
        received_at=received_at,
        labels=message.get("labelIds", []),
    )


def build_mime_message(email: OutgoingEmail, sender: str = "") -> str:
    """RFC 2822 message, base64url encoded as Gmail's ``raw`` field expects."""
    mime = MIMEMessage()
    if sender:
        mime["From"] = sender
    mime["To"] = ", ".join(email.to)
    if email.cc:
        mime["Cc"] = ", ".join(email.cc)
    mime["Subject"] = email.subject
    if email.html:
        mime.set_content(email.body, subtype="html")
    else:
        mime.set_content(email.body)
    return base64.urlsafe_b64encode(mime.as_bytes()).decode("ascii")


class GmailService:
    def __init__(
        self,
        client: AuthorizedClient,
        rate_limiters: RateLimiterRegistry,
        base_url: str = GMAIL_API_BASE,
    ):
        self._client = client
        self.rate_limiters = rate_limiters
        self._base_url = base_url.rstrip("/")

    @rate_limited("api")
    async def list_messages(
        self,
        user_id: str,
        max_results: int = 50,
        page_token: Optional[str] = None,
    ) -> MessagePage:
        query: Dict[str, Any] = {"maxResults": max_results}
        if page_token:
            query["pageToken"] = page_token

        listing = await self._client.request_json(
            Provider.gmail, user_id, "GET", f"{self._base_url}/messages", params=query
        )
        messages = []
        for item in listing.get("messages") or []:
            detail = await self._client.request_json(
                Provider.gmail,
                user_id,
                "GET",
                f"{self._base_url}/messages/{item['id']}",
                params={"format": "metadata"},
            )
            messages.append(parse_gmail_message(detail))

        return MessagePage(messages=messages, next_page_token=listing.get("nextPageToken"))

    @rate_limited("email")
    async def send_message(self, user_id: str, email: OutgoingEmail) -> Dict[str, Any]:
        result = await self._client.request_json(
            Provider.gmail,
            user_id,
            "POST",
            f"{self._base_url}/messages/send",
            json={"raw": build_mime_message(email)},
        )
        logger.info("Sent Gmail message %s for user %s", result.get("id"), user_id)
        return result


def _graph_addresses(recipients: Optional[List[Dict[str, Any]]]) -> List[str]:
    return [
        r["emailAddress"]["address"]
        for r in recipients or []
        if r.get("emailAddress", {}).get("address")
    ]


def parse_outlook_message(message: Dict[str, Any]) -> EmailMessage:
    received_at = None
    if message.get("receivedDateTime"):
        received_at = datetime.fromisoformat(message["receivedDateTime"].replace("Z", "+00:00"))
    sender = (message.get("from") or {}).get("emailAddress", {}).get("address", "")
    return EmailMessage(
        id=message["id"],
        thread_id=message.get("conversationId"),
        sender=sender,
        to=_graph_addresses(message.get("toRecipients")),
        cc=_graph_addresses(message.get("ccRecipients")),
        subject=message.get("subject") or "",
        snippet=message.get("bodyPreview") or "",
        received_at=received_at,
        labels=message.get("categories") or [],
    )


class OutlookService:
    SELECT_FIELDS = "id,conversationId,from,toRecipients,ccRecipients,subject,bodyPreview,receivedDateTime,categories"

    def __init__(
        self,
        client: AuthorizedClient,
        rate_limiters: RateLimiterRegistry,
        base_url: str = GRAPH_API_BASE,
    ):
        self._client = client
        self.rate_limiters = rate_limiters
        self._base_url = base_url.rstrip("/")

    @rate_limited("api")
    async def list_messages(
        self,
        user_id: str,
        max_results: int = 50,
        page_token: Optional[str] = None,
    ) -> MessagePage:
        """List messages, newest first.

        ``page_token`` is the opaque skip value from a previous page.
        """
        query: Dict[str, Any] = {
            "$top": max_results,
            "$select": self.SELECT_FIELDS,
            "$orderby": "receivedDateTime desc",
        }
        if page_token:
            query["$skiptoken"] = page_token

        data = await self._client.request_json(
            Provider.outlook, user_id, "GET", f"{self._base_url}/messages", params=query
        )
        return MessagePage(
            messages=[parse_outlook_message(m) for m in data.get("value", [])],
            next_page_token=_skiptoken(data.get("@odata.nextLink")),
        )

    @rate_limited("email")
    async def send_message(self, user_id: str, email: OutgoingEmail) -> Dict[str, Any]:
        payload = {
            "message": {
                "subject": email.subject,
                "body": {"contentType": "HTML" if email.html else "Text", "content": email.body},
                "toRecipients": [{"emailAddress": {"address": a}} for a in email.to],
                "ccRecipients": [{"emailAddress": {"address": a}} for a in email.cc],
            },
            "saveToSentItems": True,
        }
        await self._client.request(Provider.outlook, user_id, "POST", f"{self._base_url}/sendMail", json=payload)
        logger.info("Sent Outlook message for user %s", user_id)
        return {"status": "sent"}


def _skiptoken(next_link: Optional[str]) -> Optional[str]:
    if not next_link:
        return None
    values = parse_qs(urlparse(next_link).query).get("$skiptoken")
    return values[0] if values else None
