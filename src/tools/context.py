"""Per-call context and injected handles for tool execution."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Protocol
from urllib.parse import urlencode

from src.db.store import CallStore
from src.services.integrations import GoogleCalendarClient, HubSpotClient


@dataclass(frozen=True, slots=True)
class CallContext:
    """Identity of the call a tool acts on.

    Captured when the session starts and never mutated; the telephony leg
    id may be discovered later and is set through `with_telephony_call_id`.
    """

    business_id: str
    call_id: str
    caller_phone: str | None = None
    telephony_call_id: str | None = None

    def with_telephony_call_id(self, telephony_call_id: str | None) -> CallContext:
        return replace(self, telephony_call_id=telephony_call_id)


class CallTransferrer(Protocol):
    """Carrier capable of redirecting a live call leg."""

    async def transfer_call(self, call_uuid: str, transfer_url: str) -> None: ...


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True)
class ToolDependencies:
    """Handles the tools use, passed in explicitly at construction.

    Calendar and CRM clients are built per invocation from tenant
    credentials, so factories are injected rather than clients.
    """

    store: CallStore
    telephony: CallTransferrer | None = None
    calendar_factory: Callable[[str], GoogleCalendarClient] = GoogleCalendarClient
    crm_factory: Callable[[str], HubSpotClient] = HubSpotClient
    public_base_url: str = "http://localhost:8000"
    clock: Callable[[], datetime] = _utcnow

    def transfer_url(self, number: str) -> str:
        """URL Plivo fetches to get the Dial XML for a transfer."""
        base = self.public_base_url.rstrip("/")
        return f"{base}/api/plivo/transfer?{urlencode({'to': number})}"
