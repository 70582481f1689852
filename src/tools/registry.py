"""Tool registry: schemas for the responder and exhaustive dispatch."""

from __future__ import annotations

from functools import partial
from typing import Any, assert_never

from src.logging_config import get_logger
from src.observability.metrics import record_tool_invocation
from src.services.llm.protocol import ToolSpec
from src.tools.appointment import book_appointment
from src.tools.context import CallContext, ToolDependencies
from src.tools.customer import lookup_customer
from src.tools.hours import check_business_hours
from src.tools.lead import create_lead
from src.tools.result import ToolResult
from src.tools.schemas import (
    TOOL_ARGUMENT_MODELS,
    BookAppointmentArgs,
    CheckBusinessHoursArgs,
    CreateLeadArgs,
    LookupCustomerArgs,
    ToolInvocation,
    TransferToHumanArgs,
    parse_tool_call,
)
from src.tools.transfer import transfer_to_human

logger: Any = get_logger(__name__)

GENERIC_APOLOGY = (
    "I'm sorry, I ran into a problem with that. "
    "Let me make sure our team reaches out to you."
)


class ToolRegistry:
    """The tools one call may use, bound to that call's context.

    The context only changes through `set_telephony_call_id`; tools run
    one at a time and never raise.
    """

    def __init__(self, context: CallContext, deps: ToolDependencies) -> None:
        self._context = context
        self._deps = deps

    @property
    def context(self) -> CallContext:
        return self._context

    def set_telephony_call_id(self, telephony_call_id: str | None) -> None:
        self._context = self._context.with_telephony_call_id(telephony_call_id)

    def schemas(self) -> dict[str, ToolSpec]:
        """Tool name -> spec, with a validator producing typed invocations."""
        return {
            name: ToolSpec(
                description=model.description,
                parameters=model.parameters_schema(),
                validator=partial(parse_tool_call, name),
            )
            for name, model in TOOL_ARGUMENT_MODELS.items()
        }

    async def execute(self, invocation: ToolInvocation) -> ToolResult:
        """Run one tool invocation to completion."""
        context, deps = self._context, self._deps
        try:
            match invocation:
                case BookAppointmentArgs():
                    result = await book_appointment(context, deps, invocation)
                case CreateLeadArgs():
                    result = await create_lead(context, deps, invocation)
                case LookupCustomerArgs():
                    result = await lookup_customer(context, deps, invocation)
                case TransferToHumanArgs():
                    result = await transfer_to_human(context, deps, invocation)
                case CheckBusinessHoursArgs():
                    result = await check_business_hours(context, deps, invocation)
                case _:
                    assert_never(invocation)
        except Exception as e:
            logger.exception(f"Tool {invocation.tool} raised on call {context.call_id}: {e}")
            result = ToolResult(GENERIC_APOLOGY, ok=False)

        record_tool_invocation(invocation.tool, result.ok)
        return result
