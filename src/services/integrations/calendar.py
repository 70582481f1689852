"""Google Calendar client for booking appointments with a Meet link."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from urllib.parse import quote

import aiohttp

from src.errors import IntegrationError
from src.logging_config import get_logger

logger: Any = get_logger(__name__)

CALENDAR_API_BASE = "https://www.googleapis.com/calendar/v3"


@dataclass(frozen=True, slots=True)
class CalendarEvent:
    """Event created on the tenant's calendar."""

    event_id: str
    meet_link: str | None = None
    html_link: str | None = None


@dataclass(slots=True)
class GoogleCalendarClient:
    """Create events through the Calendar REST API.

    Usage:
        async with GoogleCalendarClient(access_token=token) as calendar:
            event = await calendar.create_event(...)
    """

    access_token: str
    timeout_seconds: int = 10
    base_url: str = CALENDAR_API_BASE

    _session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> GoogleCalendarClient:
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        self._session = aiohttp.ClientSession(timeout=timeout)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def create_event(
        self,
        calendar_id: str,
        *,
        summary: str,
        description: str,
        start: datetime,
        duration_minutes: int,
        timezone: str,
        attendee_email: str,
        attendee_name: str,
        request_id: str,
    ) -> CalendarEvent:
        """Insert an event with a Google Meet conference and email invites.

        Raises:
            IntegrationError: On transport failure, a non-2xx response or a
                body that is not an event
        """
        if not self._session:
            raise IntegrationError("google_calendar", "Client session not initialized")

        end = start + timedelta(minutes=duration_minutes)
        payload = {
            "summary": summary,
            "description": description,
            "start": {"dateTime": start.isoformat(), "timeZone": timezone},
            "end": {"dateTime": end.isoformat(), "timeZone": timezone},
            "attendees": [{"email": attendee_email, "displayName": attendee_name}],
            "conferenceData": {
                "createRequest": {
                    "requestId": request_id,
                    "conferenceSolutionKey": {"type": "hangoutsMeet"},
                },
            },
        }
        url = f"{self.base_url}/calendars/{quote(calendar_id, safe='')}/events"
        params = {"conferenceDataVersion": "1", "sendUpdates": "all"}
        headers = {"Authorization": f"Bearer {self.access_token}"}

        try:
            async with self._session.post(
                url, json=payload, params=params, headers=headers
            ) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    raise IntegrationError(
                        "google_calendar", f"Event insert failed: {resp.status} {body}"
                    )
                data = await resp.json()
        except (aiohttp.ClientError, TimeoutError) as e:
            raise IntegrationError("google_calendar", f"Request failed: {e}") from e
        except ValueError as e:
            raise IntegrationError("google_calendar", f"Unreadable response: {e}") from e

        if not isinstance(data, dict):
            raise IntegrationError("google_calendar", "Unexpected response body")
        try:
            return CalendarEvent(
                event_id=str(data.get("id") or ""),
                meet_link=data.get("hangoutLink") or _video_entry_point(data),
                html_link=data.get("htmlLink"),
            )
        except (AttributeError, TypeError) as e:
            raise IntegrationError("google_calendar", f"Unexpected response body: {e}") from e


def _video_entry_point(data: dict[str, Any]) -> str | None:
    conference = data.get("conferenceData") or {}
    for entry in conference.get("entryPoints", []):
        if entry.get("entryPointType") == "video":
            return entry.get("uri")
    return None
