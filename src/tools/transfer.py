"""transfer_to_human: hand the caller to the tenant's forwarding number."""

from __future__ import annotations

from typing import Any

from src.db.models import CallEventType, CallOutcome
from src.errors import IntegrationError, NotFoundError
from src.logging_config import get_logger, mask_phone
from src.observability.metrics import record_integration_failure
from src.tools.context import CallContext, ToolDependencies
from src.tools.result import ToolResult
from src.tools.schemas import TransferToHumanArgs

logger: Any = get_logger(__name__)

NO_FORWARDING_MESSAGE = (
    "I apologize, but I'm unable to complete the transfer at this moment. However, "
    "I'll make sure our team reaches out to you shortly. Can I get the best number "
    "to reach you?"
)
FAILURE_MESSAGE = (
    "I apologize for the difficulty. Let me make sure someone from our team contacts "
    "you directly. Could you confirm the best number to reach you?"
)


async def transfer_to_human(
    context: CallContext,
    deps: ToolDependencies,
    args: TransferToHumanArgs,
) -> ToolResult:
    """Mark the call transferred and ask the carrier to redirect the leg.

    A failed redirect is recorded as its own event; the caller still
    hears that the transfer is under way.
    """
    try:
        logger.info(
            f"Transfer requested on call {context.call_id} "
            f"(reason={args.reason!r}, urgency={args.urgency})"
        )

        call = await deps.store.get_call(context.call_id)
        if call is None:
            raise NotFoundError(f"Call {context.call_id} not found")

        phone_number = None
        if call.phone_number_id:
            phone_number = await deps.store.get_phone_number_by_id(call.phone_number_id)
        forward_to = phone_number.forward_to if phone_number else None

        if not forward_to:
            logger.warning(f"No forwarding number configured for business {context.business_id}")
            return ToolResult(NO_FORWARDING_MESSAGE)

        transfer_note = f"Transfer reason: {args.reason}. {args.notes or ''}".strip()
        notes = f"{call.notes}\n{transfer_note}" if call.notes else transfer_note
        await deps.store.update_call(
            context.call_id,
            transferred_to_human=True,
            outcome=CallOutcome.transferred,
            notes=notes,
        )
        await deps.store.append_call_event(
            context.call_id,
            CallEventType.transfer_initiated.value,
            {
                "reason": args.reason,
                "urgency": args.urgency,
                "notes": args.notes,
                "transfer_number": forward_to,
            },
        )

    except Exception as e:
        logger.error(f"Transfer failed on call {context.call_id}: {e}")
        return ToolResult(FAILURE_MESSAGE, ok=False)

    if await _redirect_leg(context, deps, forward_to, args.reason):
        return ToolResult(
            "Certainly! I'm transferring you now to one of our team members who can "
            f"help with {args.reason}. Please hold for just a moment.",
            outcome=CallOutcome.transferred,
        )

    return ToolResult(
        f"I understand you need help with {args.reason}. I'm going to connect you with "
        "our team right away. Please hold on while I transfer your call.",
        outcome=CallOutcome.transferred,
    )


async def _redirect_leg(
    context: CallContext,
    deps: ToolDependencies,
    forward_to: str,
    reason: str,
) -> bool:
    """Ask the carrier to move the live leg to the forwarding number."""
    telephony = deps.telephony
    call_uuid = context.telephony_call_id
    if telephony is None or not call_uuid:
        return False
    try:
        await telephony.transfer_call(call_uuid, deps.transfer_url(forward_to))
    except Exception as e:
        record_integration_failure(e.integration if isinstance(e, IntegrationError) else "plivo")
        logger.warning(
            f"Carrier redirect to {mask_phone(forward_to)} failed on call "
            f"{context.call_id}; caller was told the transfer is under way: {e}"
        )
        try:
            await deps.store.append_call_event(
                context.call_id,
                CallEventType.transfer_redirect_failed.value,
                {"reason": reason, "error": str(e), "transfer_number": forward_to},
            )
        except Exception as event_error:
            logger.error(f"Could not record redirect failure: {event_error}")
        return False

    logger.info(f"Call {context.call_id} redirected to {mask_phone(forward_to)}")
    return True
