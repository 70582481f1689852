"""Lead and appointment repositories."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models import Appointment, Lead


class AsyncLeadRepository:
    """Async repository for leads captured by the agent."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **fields) -> Lead:
        lead = Lead(**fields)
        self.session.add(lead)
        await self.session.flush()
        return lead

    async def get_by_id(self, lead_id: str) -> Lead | None:
        return await self.session.get(Lead, lead_id)

    async def update(self, lead_id: str, **fields) -> Lead | None:
        lead = await self.get_by_id(lead_id)
        if not lead:
            return None
        for key, value in fields.items():
            setattr(lead, key, value)
        lead.updated_at = datetime.now(UTC)
        self.session.add(lead)
        return lead

    async def find_latest_by_phone(self, business_id: str, phone: str) -> Lead | None:
        """Most recent lead for a tenant with this phone number."""
        result = await self.session.execute(
            select(Lead)
            .where(
                Lead.business_id == business_id,  # type: ignore[arg-type]
                Lead.phone == phone,  # type: ignore[arg-type]
            )
            .order_by(desc(Lead.created_at))  # type: ignore[arg-type]
            .limit(1)
        )
        return result.scalars().first()

    async def list_by_business(self, business_id: str, *, limit: int = 50) -> list[Lead]:
        result = await self.session.execute(
            select(Lead)
            .where(Lead.business_id == business_id)  # type: ignore[arg-type]
            .order_by(desc(Lead.created_at))  # type: ignore[arg-type]
            .limit(limit)
        )
        return list(result.scalars().all())


class AsyncAppointmentRepository:
    """Async repository for appointments booked by the agent."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **fields) -> Appointment:
        appointment = Appointment(**fields)
        self.session.add(appointment)
        await self.session.flush()
        return appointment

    async def get_by_id(self, appointment_id: str) -> Appointment | None:
        return await self.session.get(Appointment, appointment_id)

    async def list_by_business(
        self, business_id: str, *, limit: int = 50
    ) -> list[Appointment]:
        result = await self.session.execute(
            select(Appointment)
            .where(Appointment.business_id == business_id)  # type: ignore[arg-type]
            .order_by(Appointment.scheduled_at)  # type: ignore[arg-type]
            .limit(limit)
        )
        return list(result.scalars().all())
