"""System prompt for the SMB receptionist agent.

The tenant's own persona text replaces the default instructions; the
current date, business name and opening hours are always appended so the
model can resolve relative dates ("tomorrow at 3") before booking.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from src.tools.formatting import tenant_zone

if TYPE_CHECKING:
    from src.db.models import Business


DEFAULT_INSTRUCTIONS = """You are a professional, warm receptionist for a small business.

Your responsibilities:
- Greet callers warmly and professionally
- Answer questions about the business, its products and services
- Book appointments using the book_appointment tool
- Capture leads using the create_lead tool
- Look up existing customers using the lookup_customer tool
- Check opening hours using the check_business_hours tool
- Transfer complex queries to a person using the transfer_to_human tool

Communication style:
- Speak naturally, like a human receptionist on the phone
- Keep each response under 20 seconds of speech
- Be warm and show empathy
- Ask clarifying questions when needed
- Never use asterisks, emojis, lists or other formatting in speech

Important guidelines:
- Collect complete information before using a tool (name, email, date and time for appointments)
- Confirm important details with the caller
- If you can't help, offer to transfer to a team member
- Thank callers and offer more help before the call ends"""


class ReceptionistPromptBuilder:
    """Build the system prompt for one call."""

    def __init__(self, default_instructions: str = DEFAULT_INSTRUCTIONS) -> None:
        self._default_instructions = default_instructions

    def build_system_prompt(self, business: Business, now: datetime | None = None) -> str:
        """Tenant instructions followed by call-time facts.

        Args:
            business: Tenant configuration row
            now: Current instant (defaults to wall clock)

        Returns:
            Complete system prompt string
        """
        zone = tenant_zone(business.timezone)
        local_now = (now or datetime.now(UTC)).astimezone(zone)
        instructions = (business.system_prompt or "").strip() or self._default_instructions

        sections = [instructions, ""]
        sections.append("## Call Information")
        sections.append(f"- Business: {business.name}")
        if business.agent_name:
            sections.append(f"- Your name: {business.agent_name}")
        sections.append(
            f"- Current date/time: {local_now.strftime('%A, %B %d, %Y at %I:%M %p')} "
            f"({zone.key})"
        )
        sections.append("- Dates for tools use YYYY-MM-DD and times use 24-hour HH:MM")

        hours_text = self._format_hours(business.business_hours)
        if hours_text:
            sections.append("")
            sections.append("## Opening Hours")
            sections.append(hours_text)

        return "\n".join(sections)

    def _format_hours(self, hours: dict) -> str:
        lines = []
        for day, value in hours.items():
            if isinstance(value, dict):
                value = f"{value.get('open')}-{value.get('close')}"
            lines.append(f"- {day.capitalize()}: {value or 'closed'}")
        return "\n".join(lines)
