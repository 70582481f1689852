"""check_business_hours: open/closed right now in the tenant's timezone."""

from __future__ import annotations

from typing import Any

from src.errors import NotFoundError
from src.logging_config import get_logger
from src.tools.context import CallContext, ToolDependencies
from src.tools.formatting import spoken_hhmm, tenant_zone
from src.tools.result import ToolResult
from src.tools.schemas import CheckBusinessHoursArgs

logger: Any = get_logger(__name__)

NO_HOURS_MESSAGE = "Our team is available Monday through Friday, 9 AM to 5 PM local time."
CLOSED_TODAY_MESSAGE = (
    "Our office is closed today. We'll be happy to help you during our regular "
    "business hours. Would you like to leave a message or schedule a callback?"
)
FAILURE_MESSAGE = "I can help you schedule a callback with our team. What time works best for you?"


def parse_day_hours(entry: Any) -> tuple[str, str] | None:
    """Normalize one weekday entry to zero-padded ("HH:MM", "HH:MM").

    Accepts {"open": ..., "close": ...} or "HH:MM-HH:MM"; None, "closed"
    or an empty value mean closed that day.
    """
    if not entry:
        return None
    if isinstance(entry, dict):
        open_time, close_time = entry.get("open"), entry.get("close")
    elif isinstance(entry, str):
        if entry.strip().lower() == "closed":
            return None
        open_time, _, close_time = entry.partition("-")
    else:
        raise ValueError(f"Unsupported hours entry: {entry!r}")

    if not open_time or not close_time:
        return None
    return _pad(open_time), _pad(close_time)


def _pad(value: str) -> str:
    hours, minutes = value.strip().split(":")[:2]
    return f"{int(hours):02d}:{int(minutes):02d}"


async def check_business_hours(
    context: CallContext,
    deps: ToolDependencies,
    args: CheckBusinessHoursArgs,
) -> ToolResult:
    try:
        business = await deps.store.get_business(context.business_id)
        if business is None:
            raise NotFoundError(f"Business {context.business_id} not found")

        hours = {day.lower(): value for day, value in business.business_hours.items()}
        if not hours:
            return ToolResult(NO_HOURS_MESSAGE)

        now = deps.clock().astimezone(tenant_zone(business.timezone))
        today = now.strftime("%A").lower()
        today_hours = parse_day_hours(hours.get(today))
        if today_hours is None:
            return ToolResult(CLOSED_TODAY_MESSAGE)

        open_time, close_time = today_hours
        current = now.strftime("%H:%M")
        if open_time <= current < close_time:
            return ToolResult(
                f"Our office is currently open until {spoken_hhmm(close_time)}. "
                "I can transfer you to a team member if needed."
            )
        return ToolResult(
            f"Our office is currently closed. We're open {spoken_hhmm(open_time)} to "
            f"{spoken_hhmm(close_time)} {today}. Would you like to schedule a callback "
            "or leave a message?"
        )

    except Exception as e:
        logger.error(f"Business hours check failed for call {context.call_id}: {e}")
        return ToolResult(FAILURE_MESSAGE, ok=False)
