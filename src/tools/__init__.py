"""Side-effecting tools the responder can invoke during a call."""

from src.tools.context import CallContext, CallTransferrer, ToolDependencies
from src.tools.registry import ToolRegistry
from src.tools.result import ToolResult
from src.tools.schemas import (
    BookAppointmentArgs,
    CheckBusinessHoursArgs,
    CreateLeadArgs,
    LookupCustomerArgs,
    ToolInvocation,
    TransferToHumanArgs,
    parse_tool_call,
)

__all__ = [
    # Registry
    "ToolRegistry",
    "ToolResult",
    # Context
    "CallContext",
    "CallTransferrer",
    "ToolDependencies",
    # Arguments
    "ToolInvocation",
    "BookAppointmentArgs",
    "CreateLeadArgs",
    "LookupCustomerArgs",
    "TransferToHumanArgs",
    "CheckBusinessHoursArgs",
    "parse_tool_call",
]
