"""create_lead: capture caller details and push them to HubSpot when configured."""

from __future__ import annotations

from typing import Any

from src.db.models import CallEventType, CallOutcome, LeadStatus
from src.errors import IntegrationError, NotFoundError, PersistenceError
from src.logging_config import get_logger, mask_phone
from src.observability.metrics import record_integration_failure
from src.tools.context import CallContext, ToolDependencies
from src.tools.result import ToolResult
from src.tools.schemas import CreateLeadArgs

logger: Any = get_logger(__name__)

MISSING_CONTACT_MESSAGE = (
    "I need either an email address or phone number to save your information. "
    "Could you provide one of those?"
)
FAILURE_MESSAGE = (
    "I apologize, but I had trouble saving your information. Let me make sure our "
    "team gets your details - could you repeat your contact information?"
)


async def create_lead(
    context: CallContext,
    deps: ToolDependencies,
    args: CreateLeadArgs,
) -> ToolResult:
    if not args.email and not args.phone and not context.caller_phone:
        return ToolResult(MISSING_CONTACT_MESSAGE)

    try:
        business = await deps.store.get_business(context.business_id)
        if business is None:
            raise NotFoundError(f"Business {context.business_id} not found")

        phone = args.phone or context.caller_phone
        lead = await deps.store.create_lead(
            business_id=context.business_id,
            call_id=context.call_id,
            name=args.name,
            email=args.email,
            phone=phone,
            company=args.company,
            status=LeadStatus.new,
            interest_level=args.interest_level,
            notes=args.notes,
        )
        logger.info(f"Lead {lead.id} captured on call {context.call_id} ({mask_phone(phone)})")

        if business.hubspot_api_key:
            await _sync_to_hubspot(deps, business.hubspot_api_key, lead.id, args, phone)

        await deps.store.append_call_event(
            context.call_id,
            CallEventType.lead_captured.value,
            {
                "lead_id": lead.id,
                "name": args.name,
                "email": args.email,
                "phone": args.phone,
            },
        )
        await deps.store.update_call(
            context.call_id,
            outcome=CallOutcome.lead_captured,
            caller_name=args.name,
            caller_email=args.email,
        )

    except Exception as e:
        logger.error(f"Failed to capture lead for call {context.call_id}: {e}")
        return ToolResult(FAILURE_MESSAGE, ok=False)

    if args.email:
        follow_up = f"We'll send you more details at {args.email}."
    else:
        follow_up = f"We'll follow up with you at {args.phone or 'the number you called from'}."
    return ToolResult(
        f"Great! I've saved your information, {args.name}. {follow_up} "
        "Is there anything else I can help you with today?",
        outcome=CallOutcome.lead_captured,
    )


async def _sync_to_hubspot(
    deps: ToolDependencies,
    api_key: str,
    lead_id: str,
    args: CreateLeadArgs,
    phone: str | None,
) -> None:
    """Create the CRM contact. Any failure here leaves the lead unsynced."""
    first_name, _, last_name = args.name.partition(" ")
    properties = {
        "email": args.email,
        "firstname": first_name,
        "lastname": last_name.strip(),
        "phone": phone,
        "company": args.company,
        "hs_lead_status": "NEW",
        "lead_source": "AI Voice Agent",
        "interest_level": args.interest_level.value,
        "notes": args.notes,
    }
    try:
        async with deps.crm_factory(api_key) as crm:
            contact_id = await crm.create_contact(properties)
    except IntegrationError as e:
        record_integration_failure(e.integration)
        logger.error(f"HubSpot sync failed for lead {lead_id}, keeping local lead: {e}")
        return

    try:
        await deps.store.update_lead(
            lead_id,
            hubspot_contact_id=contact_id,
            synced_at=deps.clock(),
        )
    except (PersistenceError, NotFoundError) as e:
        logger.warning(
            f"Lead {lead_id} created as HubSpot contact {contact_id} but not marked synced: {e}"
        )
        return
    logger.info(f"Lead {lead_id} synced to HubSpot contact {contact_id}")
