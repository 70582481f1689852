"""Business and phone-number repositories for multi-tenant support."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models import Business, PhoneNumber, dump_business_hours


class AsyncBusinessRepository:
    """Async repository for tenant configuration."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, business_id: str) -> Business | None:
        return await self.session.get(Business, business_id)

    async def get_by_phone_number(self, phone_number: str) -> Business | None:
        """Look up business by incoming phone number.

        Called during call routing to resolve which business
        handles the call based on the "To" number.
        """
        line = await self.get_phone_number(phone_number)
        if line:
            return await self.get_by_id(line.business_id)
        return None

    async def get_phone_number(self, phone_number: str) -> PhoneNumber | None:
        """Active inbound line for an E.164 number."""
        query = select(PhoneNumber).where(
            PhoneNumber.phone_number == phone_number,  # type: ignore[arg-type]
            PhoneNumber.is_active == True,  # type: ignore[arg-type]  # noqa: E712
        )
        result = await self.session.execute(query)
        return result.scalars().first()

    async def get_phone_number_by_id(self, phone_number_id: str) -> PhoneNumber | None:
        return await self.session.get(PhoneNumber, phone_number_id)

    async def get_primary_phone_number(self, business_id: str) -> PhoneNumber | None:
        """First active line of a business (caller id for outbound calls)."""
        query = (
            select(PhoneNumber)
            .where(
                PhoneNumber.business_id == business_id,  # type: ignore[arg-type]
                PhoneNumber.is_active == True,  # type: ignore[arg-type]  # noqa: E712
            )
            .order_by(PhoneNumber.created_at)  # type: ignore[arg-type]
            .limit(1)
        )
        result = await self.session.execute(query)
        return result.scalars().first()

    async def create(self, **fields) -> Business:
        """Create a new business."""
        business = Business(**_business_fields(fields))
        self.session.add(business)
        return business

    async def update(self, business_id: str, **fields) -> Business | None:
        """Update a business."""
        business = await self.get_by_id(business_id)
        if not business:
            return None
        for key, value in _business_fields(fields).items():
            setattr(business, key, value)
        business.updated_at = datetime.now(UTC)
        self.session.add(business)
        return business

    async def add_phone_number(
        self,
        business_id: str,
        phone_number: str,
        *,
        forward_to: str | None = None,
        greeting_message: str | None = None,
    ) -> PhoneNumber:
        """Register an inbound line for a business."""
        line = PhoneNumber(
            business_id=business_id,
            phone_number=phone_number,
            forward_to=forward_to,
            greeting_message=greeting_message,
        )
        self.session.add(line)
        return line


def _business_fields(fields: dict) -> dict:
    """Accept `business_hours` as a mapping and validate the stored JSON."""
    if "business_hours" in fields:
        fields["business_hours_json"] = fields.pop("business_hours")
    if "business_hours_json" in fields:
        fields["business_hours_json"] = dump_business_hours(fields["business_hours_json"])
    return fields
