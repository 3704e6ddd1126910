"""Google Calendar client: create events (optionally with a Meet link) and list them."""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from application.models.crm import GoogleEventParams
from application.models.integrations import Provider
from backend.services.authorized_client import AuthorizedClient
from backend.services.rate_limiter import RateLimiterRegistry, rate_limited

logger = logging.getLogger(__name__)

CALENDAR_API_BASE = "https://www.googleapis.com/calendar/v3"


def build_event_body(params: GoogleEventParams, request_id: Optional[str] = None) -> Dict[str, Any]:
    """Calendar API event resource for the given parameters."""
    event: Dict[str, Any] = {
        "summary": params.summary,
        "description": params.description,
        "start": {"dateTime": params.start.isoformat(), "timeZone": params.time_zone},
        "end": {"dateTime": params.end.isoformat(), "timeZone": params.time_zone},
        "attendees": [{"email": email} for email in params.attendees],
        "reminders": {"useDefault": True},
    }
    if params.use_meet:
        event["conferenceData"] = {
            "createRequest": {
                "requestId": request_id or uuid.uuid4().hex,
                "conferenceSolutionKey": {"type": "hangoutsMeet"},
            }
        }
    return event


class GoogleCalendarService:
    def __init__(
        self,
        client: AuthorizedClient,
        rate_limiters: RateLimiterRegistry,
        base_url: str = CALENDAR_API_BASE,
    ):
        self._client = client
        self.rate_limiters = rate_limiters
        self._base_url = base_url.rstrip("/")

    @rate_limited("api")
    async def create_event(self, user_id: str, params: GoogleEventParams) -> Dict[str, Any]:
        """Create an event on the user's primary calendar.

        Returns the created event resource, including ``hangoutLink`` when a
        Meet conference was requested.
        """
        if params.end <= params.start:
            raise ValueError("Event end must be after its start")

        event = await self._client.request_json(
            Provider.google_calendar,
            user_id,
            "POST",
            f"{self._base_url}/calendars/primary/events",
            params={"conferenceDataVersion": 1},
            json=build_event_body(params),
        )
        logger.info("Created calendar event %s for user %s", event.get("id"), user_id)
        return event

    @rate_limited("search")
    async def list_events(
        self,
        user_id: str,
        time_min: Optional[datetime] = None,
        time_max: Optional[datetime] = None,
        max_results: int = 25,
    ) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {
            "maxResults": max_results,
            "singleEvents": "true",
            "orderBy": "startTime",
        }
        if time_min:
            query["timeMin"] = time_min.isoformat()
        if time_max:
            query["timeMax"] = time_max.isoformat()

        data = await self._client.request_json(
            Provider.google_calendar,
            user_id,
            "GET",
            f"{self._base_url}/calendars/primary/events",
            params=query,
        )
        return data.get("items", [])
