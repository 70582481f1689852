"""SQLModel database models.

Tables for tenants, inbound lines, calls and the artifacts tools create:
- table=True for SQLModel table generation
- Primary key configuration
- Default values (timestamps, UUIDs)
- Indexes for common queries

JSON columns are stored as text and validated on the way in.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from sqlmodel import Field, SQLModel

# Valid day names for business hours
VALID_DAYS = frozenset({
    "monday", "tuesday", "wednesday", "thursday",
    "friday", "saturday", "sunday",
})

# =============================================================================
# Enums (shared across models)
# =============================================================================


class CallDirection(str, Enum):
    """Which side placed the call."""

    inbound = "inbound"
    outbound = "outbound"


class CallStatus(str, Enum):
    """Lifecycle status of a call. Moves forward only."""

    in_progress = "in_progress"
    completed = "completed"
    failed = "failed"
    abandoned = "abandoned"


TERMINAL_CALL_STATUSES = frozenset({
    CallStatus.completed,
    CallStatus.failed,
    CallStatus.abandoned,
})


class CallOutcome(str, Enum):
    """What the call accomplished."""

    appointment_booked = "appointment_booked"
    lead_captured = "lead_captured"
    transferred = "transferred"
    voicemail = "voicemail"
    hung_up = "hung_up"


class Speaker(str, Enum):
    """Who said a transcript line."""

    agent = "agent"
    user = "user"


class LeadStatus(str, Enum):
    """Sales lifecycle of a lead."""

    new = "new"
    contacted = "contacted"
    qualified = "qualified"
    converted = "converted"
    lost = "lost"


class InterestLevel(str, Enum):
    """How interested the caller sounded."""

    low = "low"
    medium = "medium"
    high = "high"


class AppointmentStatus(str, Enum):
    """Status of a booked appointment."""

    scheduled = "scheduled"
    confirmed = "confirmed"
    canceled = "canceled"
    completed = "completed"
    no_show = "no_show"


class CallEventType(str, Enum):
    """Audit event types emitted during a call."""

    call_started = "call_started"
    session_started = "session_started"
    user_started_speaking = "user_started_speaking"
    user_stopped_speaking = "user_stopped_speaking"
    agent_started_speaking = "agent_started_speaking"
    agent_stopped_speaking = "agent_stopped_speaking"
    tool_invoked = "tool_invoked"
    tool_failed = "tool_failed"
    turn_failed = "turn_failed"
    appointment_booked = "appointment_booked"
    lead_captured = "lead_captured"
    customer_looked_up = "customer_looked_up"
    transfer_initiated = "transfer_initiated"
    transfer_redirect_failed = "transfer_redirect_failed"
    call_completed = "call_completed"


def dump_business_hours(value: Any) -> str | None:
    """Serialize a day -> hours mapping for `Business.business_hours_json`.

    Raises:
        ValueError: Not a JSON object keyed by day names
    """
    if value is None:
        return None
    data = json.loads(value) if isinstance(value, str) else value
    if not isinstance(data, dict):
        raise ValueError("business_hours must be an object")
    for day in data:
        if str(day).lower() not in VALID_DAYS:
            raise ValueError(f"Invalid day name: {day}")
    return json.dumps(data)


def dump_json_list(value: Any) -> str:
    """Serialize a list-valued column (transcript, tags)."""
    data = json.loads(value) if isinstance(value, str) else value
    if not isinstance(data, list):
        raise ValueError("must be a JSON array")
    return json.dumps(data)


def _load_json(v: str | None, default: Any) -> Any:
    if not v:
        return default
    return json.loads(v)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; they are stored as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


# =============================================================================
# Tenant Configuration
# =============================================================================


class Business(SQLModel, table=True):
    """Tenant: a business answering calls through the agent."""

    __tablename__ = "businesses"

    id: str = Field(
        default_factory=lambda: str(uuid4()),
        primary_key=True,
        description="Unique identifier",
    )
    name: str = Field(max_length=200, description="Display name of the business")
    agent_name: str | None = Field(default=None, max_length=100)
    system_prompt: str | None = Field(
        default=None, description="Persona/instructions for the agent"
    )
    agent_voice: str | None = Field(
        default=None, max_length=100, description="Synthesizer voice identifier"
    )
    timezone: str = Field(default="America/New_York", max_length=50)
    business_hours_json: str | None = Field(
        default=None, description="JSON object mapping day names to open/close hours"
    )
    google_calendar_connected: bool = Field(default=False)
    google_calendar_id: str | None = Field(default=None, max_length=200)
    google_calendar_token: str | None = Field(
        default=None, description="OAuth access token for the calendar API"
    )
    hubspot_api_key: str | None = Field(default=None, description="HubSpot private app token")
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def business_hours(self) -> dict[str, Any]:
        return _load_json(self.business_hours_json, {})


class PhoneNumber(SQLModel, table=True):
    """Inbound line owned by a business."""

    __tablename__ = "phone_numbers"

    id: str = Field(
        default_factory=lambda: str(uuid4()),
        primary_key=True,
    )
    business_id: str = Field(foreign_key="businesses.id", index=True)
    phone_number: str = Field(
        unique=True, index=True, max_length=20, description="E.164 number"
    )
    forward_to: str | None = Field(
        default=None, max_length=20, description="Human forwarding number"
    )
    greeting_message: str | None = Field(default=None, max_length=500)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


# =============================================================================
# Calls
# =============================================================================


class Call(SQLModel, table=True):
    """Authoritative record of one phone conversation."""

    __tablename__ = "calls"

    id: str = Field(
        default_factory=lambda: str(uuid4()),
        primary_key=True,
        description="Unique identifier",
    )
    business_id: str = Field(foreign_key="businesses.id", index=True)
    phone_number_id: str | None = Field(default=None, foreign_key="phone_numbers.id")
    direction: CallDirection = Field(default=CallDirection.inbound)
    from_number: str | None = Field(default=None, max_length=20)
    to_number: str | None = Field(default=None, max_length=20)
    caller_name: str | None = Field(default=None, max_length=200)
    caller_email: str | None = Field(default=None, max_length=200)

    # Real-time session and telephony leg linkage
    session_name: str | None = Field(default=None, unique=True, index=True)
    session_id: str | None = Field(default=None)
    telephony_call_id: str | None = Field(default=None, index=True)
    telephony_status: str | None = Field(default=None, max_length=50)

    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    answered_at: datetime | None = Field(default=None)
    ended_at: datetime | None = Field(default=None)
    duration_seconds: int | None = Field(default=None, ge=0)

    status: CallStatus = Field(default=CallStatus.in_progress, index=True)
    outcome: CallOutcome | None = Field(default=None)
    outcome_history_json: str | None = Field(
        default=None, description="JSON array of every outcome set, in order"
    )
    transferred_to_human: bool = Field(default=False)

    transcript_json: str | None = Field(
        default=None, description="JSON array of {speaker, text, timestamp}"
    )
    summary: str | None = Field(default=None)
    tags_json: str | None = Field(default=None, description="JSON array of tags")
    notes: str | None = Field(default=None)

    # Costs in integer cents
    cost_stt: int = Field(default=0, ge=0)
    cost_llm: int = Field(default=0, ge=0)
    cost_tts: int = Field(default=0, ge=0)
    cost_telephony: int = Field(default=0, ge=0)
    cost_total: int = Field(default=0, ge=0)

    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC), index=True)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def transcript(self) -> list[dict[str, Any]]:
        return _load_json(self.transcript_json, [])

    @property
    def outcome_history(self) -> list[str]:
        return _load_json(self.outcome_history_json, [])

    @property
    def tags(self) -> list[str]:
        return _load_json(self.tags_json, [])


class CallEvent(SQLModel, table=True):
    """Immutable audit record of a notable call transition."""

    __tablename__ = "call_events"

    id: str = Field(
        default_factory=lambda: str(uuid4()),
        primary_key=True,
    )
    call_id: str = Field(foreign_key="calls.id", index=True)
    event_type: str = Field(max_length=50, index=True)
    event_data_json: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC), index=True)

    @property
    def event_data(self) -> dict[str, Any]:
        return _load_json(self.event_data_json, {})


# =============================================================================
# Tool Artifacts
# =============================================================================


class Lead(SQLModel, table=True):
    """Sales lead captured during a call."""

    __tablename__ = "leads"

    id: str = Field(
        default_factory=lambda: str(uuid4()),
        primary_key=True,
    )
    business_id: str = Field(foreign_key="businesses.id", index=True)
    call_id: str | None = Field(
        default=None, foreign_key="calls.id", description="Originating call (nullable)"
    )
    name: str = Field(max_length=200)
    email: str | None = Field(default=None, max_length=200)
    phone: str | None = Field(default=None, max_length=20, index=True)
    company: str | None = Field(default=None, max_length=200)
    source: str = Field(default="voice_call", max_length=50)
    status: LeadStatus = Field(default=LeadStatus.new, index=True)
    interest_level: InterestLevel = Field(default=InterestLevel.medium)
    notes: str | None = Field(default=None)
    hubspot_contact_id: str | None = Field(default=None, max_length=100)
    synced_at: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC), index=True)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class Appointment(SQLModel, table=True):
    """Appointment booked during a call."""

    __tablename__ = "appointments"

    id: str = Field(
        default_factory=lambda: str(uuid4()),
        primary_key=True,
    )
    business_id: str = Field(foreign_key="businesses.id", index=True)
    call_id: str | None = Field(
        default=None, foreign_key="calls.id", description="Originating call (nullable)"
    )
    title: str = Field(max_length=300)
    description: str | None = Field(default=None)
    scheduled_at: datetime = Field(index=True)
    duration_minutes: int = Field(default=30, ge=5, le=480)
    attendee_name: str = Field(max_length=200)
    attendee_email: str | None = Field(default=None, max_length=200)
    attendee_phone: str | None = Field(default=None, max_length=20)
    google_calendar_event_id: str | None = Field(default=None)
    google_meet_link: str | None = Field(default=None)
    status: AppointmentStatus = Field(default=AppointmentStatus.scheduled)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
