"""lookup_customer: greet returning callers by their most recent lead."""

from __future__ import annotations

from typing import Any

from src.db.models import CallEventType, LeadStatus, as_utc
from src.logging_config import get_logger, mask_phone
from src.tools.context import CallContext, ToolDependencies
from src.tools.formatting import spoken_date
from src.tools.result import ToolResult
from src.tools.schemas import LookupCustomerArgs

logger: Any = get_logger(__name__)

MISSING_PHONE_MESSAGE = (
    "I don't have a phone number to look up. "
    "Could you provide the phone number you'd like me to check?"
)
NEW_CUSTOMER_MESSAGE = (
    "I don't see any previous records for this phone number. "
    "It looks like you're a new customer - welcome! How can I help you today?"
)
NEUTRAL_MESSAGE = "How can I help you today?"


async def lookup_customer(
    context: CallContext,
    deps: ToolDependencies,
    args: LookupCustomerArgs,
) -> ToolResult:
    phone = args.phone or context.caller_phone
    if not phone:
        return ToolResult(MISSING_PHONE_MESSAGE)

    try:
        logger.info(f"Looking up customer {mask_phone(phone)} for call {context.call_id}")
        lead = await deps.store.find_latest_lead_by_phone(context.business_id, phone)
        if lead is None:
            return ToolResult(NEW_CUSTOMER_MESSAGE)

        last_contact = as_utc(lead.created_at)
        first_name = lead.name.split(" ")[0] if lead.name else ""
        message = f"Welcome back, {first_name}! " if first_name else "Welcome back! "
        message += f"I see we last spoke on {spoken_date(last_contact)}. "
        if lead.status == LeadStatus.converted:
            message += "Thank you for being a valued customer. "
        message += "How can I assist you today?"

        await deps.store.append_call_event(
            context.call_id,
            CallEventType.customer_looked_up.value,
            {
                "lead_id": lead.id,
                "customer_name": lead.name,
                "last_contact": last_contact.isoformat(),
            },
        )
        return ToolResult(message)

    except Exception as e:
        logger.error(f"Customer lookup failed for call {context.call_id}: {e}")
        return ToolResult(NEUTRAL_MESSAGE, ok=False)
