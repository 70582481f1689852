"""book_appointment: schedule a meeting, optionally on the tenant's Google Calendar."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from src.db.models import AppointmentStatus, CallEventType, CallOutcome
from src.errors import IntegrationError, NotFoundError
from src.logging_config import get_logger, mask_email
from src.observability.metrics import record_integration_failure
from src.tools.context import CallContext, ToolDependencies
from src.tools.formatting import spoken_clock, spoken_date, tenant_zone
from src.tools.result import ToolResult
from src.tools.schemas import BookAppointmentArgs

logger: Any = get_logger(__name__)

# A wall-clock time that has passed at UTC-12 has passed in every timezone
LATEST_UTC_OFFSET = timedelta(hours=12)

PAST_DATE_MESSAGE = (
    "I apologize, but that date and time has already passed. "
    "Could you provide a future date and time for your appointment?"
)
FAILURE_MESSAGE = (
    "I apologize, but I encountered an issue while booking your appointment. "
    "Let me transfer you to our team who can help you schedule this manually."
)


async def book_appointment(
    context: CallContext,
    deps: ToolDependencies,
    args: BookAppointmentArgs,
) -> ToolResult:
    """Book an appointment in the tenant's timezone.

    The appointment row is persisted whether or not the calendar event
    could be created; calendar failures only drop the Meet link.
    """
    try:
        logger.info(
            f"Booking appointment for call {context.call_id}: {args.date} {args.time}"
        )

        wall_clock = datetime.fromisoformat(f"{args.date}T{args.time}")
        if (wall_clock + LATEST_UTC_OFFSET).replace(tzinfo=UTC) <= deps.clock():
            return ToolResult(PAST_DATE_MESSAGE)

        business = await deps.store.get_business(context.business_id)
        if business is None:
            raise NotFoundError(f"Business {context.business_id} not found")

        zone = tenant_zone(business.timezone)
        local_start = wall_clock.replace(tzinfo=zone)
        if local_start <= deps.clock():
            return ToolResult(PAST_DATE_MESSAGE)

        title = args.purpose or f"Meeting with {args.customer_name}"
        meet_link: str | None = None
        calendar_event_id: str | None = None

        if business.google_calendar_connected and business.google_calendar_id:
            if not business.google_calendar_token:
                logger.warning(
                    f"Calendar connected for business {business.id} but no token stored"
                )
            else:
                description = _event_description(context, args)
                try:
                    async with deps.calendar_factory(business.google_calendar_token) as calendar:
                        event = await calendar.create_event(
                            business.google_calendar_id,
                            summary=title,
                            description=description,
                            start=local_start,
                            duration_minutes=args.duration_minutes,
                            timezone=zone.key,
                            attendee_email=args.customer_email,
                            attendee_name=args.customer_name,
                            request_id=f"{context.call_id}-{int(deps.clock().timestamp() * 1000)}",
                        )
                    calendar_event_id = event.event_id or None
                    meet_link = event.meet_link
                    logger.info(f"Calendar event {calendar_event_id} created")
                except IntegrationError as e:
                    record_integration_failure(e.integration)
                    logger.error(f"Calendar event creation failed, continuing: {e}")

        scheduled_at = local_start.astimezone(UTC)
        appointment = await deps.store.create_appointment(
            business_id=context.business_id,
            call_id=context.call_id,
            title=title,
            description=args.purpose,
            scheduled_at=scheduled_at,
            duration_minutes=args.duration_minutes,
            attendee_name=args.customer_name,
            attendee_email=args.customer_email,
            attendee_phone=args.customer_phone or context.caller_phone,
            google_calendar_event_id=calendar_event_id,
            google_meet_link=meet_link,
            status=AppointmentStatus.scheduled,
        )

        await deps.store.append_call_event(
            context.call_id,
            CallEventType.appointment_booked.value,
            {
                "appointment_id": appointment.id,
                "scheduled_at": scheduled_at.isoformat(),
                "customer_name": args.customer_name,
                "customer_email": args.customer_email,
            },
        )
        await deps.store.update_call(context.call_id, outcome=CallOutcome.appointment_booked)

        logger.info(
            f"Appointment {appointment.id} booked for {mask_email(args.customer_email)}"
        )

        message = (
            "Perfect! I've successfully booked your appointment for "
            f"{spoken_date(local_start, weekday=True)} at "
            f"{spoken_clock(local_start.hour, local_start.minute)}."
        )
        if meet_link:
            message += (
                " A calendar invitation with a Google Meet link has been sent to "
                f"{args.customer_email}."
            )
        else:
            message += f" You'll receive a confirmation email at {args.customer_email} shortly."
        return ToolResult(message, outcome=CallOutcome.appointment_booked)

    except Exception as e:
        logger.error(f"Failed to book appointment for call {context.call_id}: {e}")
        return ToolResult(FAILURE_MESSAGE, ok=False)


def _event_description(context: CallContext, args: BookAppointmentArgs) -> str:
    lines = [
        "Appointment booked via AI Voice Agent",
        "",
        f"Customer: {args.customer_name}",
        f"Email: {args.customer_email}",
    ]
    phone = args.customer_phone or context.caller_phone
    if phone:
        lines.append(f"Phone: {phone}")
    if args.purpose:
        lines.append(f"Purpose: {args.purpose}")
    return "\n".join(lines)
