"""Outbound business integrations (calendar, CRM)."""

from src.services.integrations.calendar import CalendarEvent, GoogleCalendarClient
from src.services.integrations.crm import HubSpotClient

__all__ = [
    "CalendarEvent",
    "GoogleCalendarClient",
    "HubSpotClient",
]
