"""Twilio messaging and voice: SMS, WhatsApp, outbound calls and recordings.

Twilio authenticates the whole account with HTTP basic auth (account SID and
auth token), so these calls do not go through a user's OAuth connection.
Sends use the ``sms`` limiter; status lookups and calls use ``api``.
"""

import asyncio
import logging
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from application.models.crm import CallInfo, CallRecording, MessageChannel, TextMessage
from backend.errors import APIError, ErrorType, ServiceNotConfigured, UpstreamError
from backend.services.oauth_client import error_detail
from backend.services.rate_limiter import RateLimiterRegistry, rate_limited
from backend.services.retry import DEFAULT_RETRY_POLICY, RetryPolicy, call_with_retry
from backend.settings import Settings

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com"
TWILIO_API_VERSION = "2010-04-01"
WHATSAPP_PREFIX = "whatsapp:"


def whatsapp_address(number: str) -> str:
    if number.startswith(WHATSAPP_PREFIX):
        return number
    return f"{WHATSAPP_PREFIX}{number}"


def _strip_channel(address: Optional[str]) -> str:
    address = address or ""
    if address.startswith(WHATSAPP_PREFIX):
        return address[len(WHATSAPP_PREFIX):]
    return address


def parse_twilio_message(data: Dict[str, Any]) -> TextMessage:
    """Message resource from the REST API. ``date_sent`` is RFC 2822."""
    date_sent = None
    if data.get("date_sent"):
        date_sent = parsedate_to_datetime(data["date_sent"])
    sender = data.get("from") or ""
    channel = MessageChannel.whatsapp if sender.startswith(WHATSAPP_PREFIX) else MessageChannel.sms
    return TextMessage(
        sid=data["sid"],
        channel=channel,
        sender=_strip_channel(sender),
        to=_strip_channel(data.get("to")),
        body=data.get("body") or "",
        status=data.get("status") or "",
        date_sent=date_sent,
        media_urls=[m["url"] for m in data.get("media") or [] if m.get("url")],
    )


def twilio_error_detail(response: httpx.Response) -> str:
    # Twilio errors look like {"code": 21211, "message": "...", "status": 400}
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("message"):
        return body["message"]
    return error_detail(response)


class TwilioService:
    def __init__(
        self,
        account_sid: Optional[str],
        auth_token: Optional[str],
        rate_limiters: RateLimiterRegistry,
        phone_number: Optional[str] = None,
        whatsapp_number: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
        retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        base_url: str = TWILIO_API_BASE,
    ):
        self._account_sid = account_sid
        self._auth_token = auth_token
        self.rate_limiters = rate_limiters
        self.phone_number = phone_number
        self.whatsapp_number = whatsapp_number
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self._retry_policy = retry_policy
        self._sleep = sleep
        self._base_url = base_url.rstrip("/")

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        rate_limiters: RateLimiterRegistry,
        client: Optional[httpx.AsyncClient] = None,
        retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    ) -> "TwilioService":
        return cls(
            settings.twilio_account_sid,
            settings.twilio_auth_token,
            rate_limiters,
            phone_number=settings.twilio_phone_number,
            whatsapp_number=settings.twilio_whatsapp_number,
            client=client,
            timeout=settings.http_timeout_seconds,
            retry_policy=retry_policy,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self._account_sid and self._auth_token)

    async def aclose(self) -> None:
        await self.client.aclose()

    @rate_limited("sms")
    async def send_sms(self, to: str, body: str, media_urls: Optional[List[str]] = None) -> TextMessage:
        sender = self._sender(self.phone_number, "TWILIO_PHONE_NUMBER")
        message = await self._create_message(to, sender, body, media_urls)
        logger.info("Sent SMS %s (%s)", message.sid, message.status)
        return message

    @rate_limited("sms")
    async def send_whatsapp(self, to: str, body: str, media_urls: Optional[List[str]] = None) -> TextMessage:
        sender = self._sender(self.whatsapp_number, "TWILIO_WHATSAPP_NUMBER")
        message = await self._create_message(whatsapp_address(to), whatsapp_address(sender), body, media_urls)
        logger.info("Sent WhatsApp message %s (%s)", message.sid, message.status)
        return message

    @rate_limited("api")
    async def get_message_status(self, message_sid: str) -> TextMessage:
        data = await self._get(f"Messages/{message_sid}.json")
        return parse_twilio_message(data)

    @rate_limited("api")
    async def make_call(self, to: str, callback_url: str) -> CallInfo:
        """Place an outbound call; Twilio fetches TwiML instructions from ``callback_url``."""
        sender = self._sender(self.phone_number, "TWILIO_PHONE_NUMBER")
        data = await self._request("POST", "Calls.json", data={"To": to, "From": sender, "Url": callback_url})
        logger.info("Started call %s (%s)", data.get("sid"), data.get("status"))
        return CallInfo(sid=data["sid"], status=data.get("status") or "")

    @rate_limited("api")
    async def get_call_recording(self, call_sid: str) -> CallRecording:
        """First recording of a call, as a playable MP3 URL."""
        data = await self._get(f"Calls/{call_sid}/Recordings.json")
        recordings = data.get("recordings") or []
        if not recordings:
            raise APIError(f"No recording found for call {call_sid}", ErrorType.NOT_FOUND, 404)
        recording = recordings[0]
        uri = recording["uri"]
        if uri.endswith(".json"):
            uri = uri[: -len(".json")] + ".mp3"
        return CallRecording(
            sid=recording["sid"],
            url=f"{self._base_url}{uri}",
            duration=int(recording.get("duration") or 0),
        )

    async def _create_message(
        self,
        to: str,
        sender: str,
        body: str,
        media_urls: Optional[List[str]],
    ) -> TextMessage:
        form: Dict[str, Any] = {"To": to, "From": sender, "Body": body}
        if media_urls:
            form["MediaUrl"] = list(media_urls)
        data = await self._request("POST", "Messages.json", data=form)
        return parse_twilio_message(data)

    def _sender(self, number: Optional[str], setting: str) -> str:
        if not number:
            raise ServiceNotConfigured(f"Twilio sender number is not configured ({setting})")
        return number

    def _require_configured(self) -> None:
        if not self.is_configured:
            raise ServiceNotConfigured("Twilio is not configured")

    async def _get(self, path: str) -> Dict[str, Any]:
        self._require_configured()
        # Reads are safe to repeat on 5xx and network failures.
        return await call_with_retry(
            lambda: self._request("GET", path),
            self._retry_policy,
            sleep=self._sleep,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        self._require_configured()
        url = f"{self._base_url}/{TWILIO_API_VERSION}/Accounts/{self._account_sid}/{path}"
        try:
            response = await self.client.request(
                method,
                url,
                auth=(self._account_sid, self._auth_token),
                **kwargs,
            )
        except httpx.HTTPError as e:
            logger.error("Twilio %s %s failed: %s", method, path, e)
            raise UpstreamError(f"Network error calling Twilio: {e}") from e

        if not response.is_success:
            detail = twilio_error_detail(response)
            logger.error("Twilio %s %s returned %d: %s", method, path, response.status_code, detail)
            raise UpstreamError(detail, response.status_code)
        return response.json()
