"""Typed arguments for each tool and the closed union the registry dispatches on.

Each argument model carries a literal `tool` tag. The model never sees the
tag: it is stripped from the JSON schema offered to the responder and
injected from the tool name when a call is parsed.
"""

from __future__ import annotations

from datetime import date, time
from typing import Annotated, Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from src.db.models import InterestLevel
from src.errors import ValidationError

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class ToolArguments(BaseModel):
    """Base for tool argument models."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    description: ClassVar[str] = ""

    @classmethod
    def parameters_schema(cls) -> dict[str, Any]:
        """JSON schema for the responder, without the `tool` tag."""
        schema = cls.model_json_schema()
        schema.get("properties", {}).pop("tool", None)
        if "required" in schema:
            schema["required"] = [name for name in schema["required"] if name != "tool"]
        schema.pop("title", None)
        return schema


class BookAppointmentArgs(ToolArguments):
    description: ClassVar[str] = (
        "Book an appointment for the customer. Use this when the caller wants to "
        "schedule a meeting, consultation or appointment. Collect the date, time, "
        "customer name and email first; ask for anything missing before calling."
    )

    tool: Literal["book_appointment"] = "book_appointment"
    date: str = Field(description="Appointment date in YYYY-MM-DD format, e.g. 2025-11-20")
    time: str = Field(description="Appointment time in 24-hour HH:MM format, e.g. 14:30")
    customer_name: str = Field(min_length=1, description="Full name of the customer")
    customer_email: str = Field(pattern=EMAIL_PATTERN, description="Customer email address")
    customer_phone: str | None = Field(default=None, description="Customer phone number")
    purpose: str | None = Field(default=None, description="What the appointment is about")
    duration_minutes: int = Field(
        default=30, ge=5, le=480, description="Length of the appointment in minutes"
    )

    @field_validator("date")
    @classmethod
    def validate_date(cls, v: str) -> str:
        try:
            date.fromisoformat(v)
        except ValueError as e:
            raise ValueError("date must be YYYY-MM-DD") from e
        return v

    @field_validator("time")
    @classmethod
    def validate_time(cls, v: str) -> str:
        try:
            parsed = time.fromisoformat(v.zfill(5))
        except ValueError as e:
            raise ValueError("time must be HH:MM (24-hour)") from e
        return parsed.strftime("%H:%M")


class CreateLeadArgs(ToolArguments):
    description: ClassVar[str] = (
        "Save a potential customer's details for follow-up. Use this when the caller "
        "shows interest, wants information sent to them, or wants to be contacted "
        "later. Collect a name and an email or phone number."
    )

    tool: Literal["create_lead"] = "create_lead"
    name: str = Field(min_length=1, description="Full name of the lead")
    email: str | None = Field(default=None, pattern=EMAIL_PATTERN, description="Email address")
    phone: str | None = Field(default=None, description="Phone number")
    company: str | None = Field(default=None, description="Company name, if any")
    interest_level: InterestLevel = Field(
        default=InterestLevel.medium, description="How interested the lead seems"
    )
    notes: str | None = Field(default=None, description="Interests or requirements")


class LookupCustomerArgs(ToolArguments):
    description: ClassVar[str] = (
        "Check whether the caller is an existing customer by phone number, to "
        "personalize the conversation. Without a number, the caller's own is used."
    )

    tool: Literal["lookup_customer"] = "lookup_customer"
    phone: str | None = Field(default=None, description="Phone number to look up")


class TransferToHumanArgs(ToolArguments):
    description: ClassVar[str] = (
        "Transfer the call to a human team member. Use this when the caller asks for "
        "a person, is upset, or needs help beyond what you can do."
    )

    tool: Literal["transfer_to_human"] = "transfer_to_human"
    reason: str = Field(min_length=1, description="Why the caller needs a human")
    urgency: Literal["low", "medium", "high"] = Field(
        default="medium", description="How urgent the transfer is"
    )
    notes: str | None = Field(default=None, description="Context for the team member")


class CheckBusinessHoursArgs(ToolArguments):
    description: ClassVar[str] = (
        "Check whether the business is open right now. Use this before offering a "
        "transfer or when the caller asks about opening hours."
    )

    tool: Literal["check_business_hours"] = "check_business_hours"


ToolInvocation = Annotated[
    BookAppointmentArgs
    | CreateLeadArgs
    | LookupCustomerArgs
    | TransferToHumanArgs
    | CheckBusinessHoursArgs,
    Field(discriminator="tool"),
]

TOOL_ARGUMENT_MODELS: dict[str, type[ToolArguments]] = {
    "book_appointment": BookAppointmentArgs,
    "create_lead": CreateLeadArgs,
    "lookup_customer": LookupCustomerArgs,
    "transfer_to_human": TransferToHumanArgs,
    "check_business_hours": CheckBusinessHoursArgs,
}

_invocation_adapter: TypeAdapter[ToolInvocation] = TypeAdapter(ToolInvocation)


def parse_tool_call(name: str, arguments: dict[str, Any]) -> ToolInvocation:
    """Build a typed invocation from a tool name and raw JSON arguments.

    Models often send explicit nulls for optional fields; those fall back
    to the defaults.

    Raises:
        ValidationError: Unknown tool or arguments that do not fit its schema
    """
    if name not in TOOL_ARGUMENT_MODELS:
        raise ValidationError(f"Unknown tool {name!r}", field=name)

    payload = {key: value for key, value in arguments.items() if value is not None}
    payload["tool"] = name
    try:
        return _invocation_adapter.validate_python(payload)
    except PydanticValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"][1:]) or None
        raise ValidationError(
            f"Invalid arguments for {name}: {first['msg']}", field=location
        ) from e
