"""Call record store.

The session orchestrator and the tools only see the `CallStore` protocol.
`SQLCallStore` implements it on top of the async repositories, opening one
short-lived session per operation so every call is an atomic single-row
write (or read) that commits before returning.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from typing import Any, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models import Appointment, Business, Call, Lead, PhoneNumber
from src.db.repositories import (
    AsyncAppointmentRepository,
    AsyncBusinessRepository,
    AsyncCallEventRepository,
    AsyncCallRepository,
    AsyncLeadRepository,
)
from src.db.session import get_session_factory
from src.errors import NotFoundError, PersistenceError
from src.logging_config import get_logger

logger: Any = get_logger(__name__)


class CallStore(Protocol):
    """Operations the call-handling core needs from the datastore."""

    async def create_call(self, **fields: Any) -> Call: ...

    async def update_call(self, call_id: str, **fields: Any) -> Call: ...

    async def get_call(self, call_id: str) -> Call | None: ...

    async def get_call_by_session_name(self, session_name: str) -> Call | None: ...

    async def get_call_by_telephony_id(self, telephony_call_id: str) -> Call | None: ...

    async def create_lead(self, **fields: Any) -> Lead: ...

    async def update_lead(self, lead_id: str, **fields: Any) -> Lead: ...

    async def find_latest_lead_by_phone(self, business_id: str, phone: str) -> Lead | None: ...

    async def create_appointment(self, **fields: Any) -> Appointment: ...

    async def append_call_event(
        self,
        call_id: str,
        event_type: str,
        event_data: dict[str, Any] | None = None,
    ) -> None: ...

    async def get_business(self, business_id: str) -> Business | None: ...

    async def get_phone_number(self, phone_number: str) -> PhoneNumber | None: ...

    async def get_phone_number_by_id(self, phone_number_id: str) -> PhoneNumber | None: ...

    async def get_primary_phone_number(self, business_id: str) -> PhoneNumber | None: ...


class SQLCallStore:
    """CallStore backed by SQLModel/SQLAlchemy async sessions."""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] | None = None,
    ) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncGenerator[AsyncSession, None]:
        """Session scope that commits on success and maps driver errors."""
        if self._session_factory is None:
            self._session_factory = get_session_factory()
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Store operation {operation} failed: {e}")
                raise PersistenceError(f"{operation} failed") from e
            except Exception:
                await session.rollback()
                raise

    # =========================================================================
    # Calls
    # =========================================================================

    async def create_call(self, **fields: Any) -> Call:
        async with self._session("create_call") as session:
            return await AsyncCallRepository(session).create(**fields)

    async def update_call(self, call_id: str, **fields: Any) -> Call:
        async with self._session("update_call") as session:
            call = await AsyncCallRepository(session).update(call_id, **fields)
            if call is None:
                raise NotFoundError(f"Call {call_id} not found")
            return call

    async def get_call(self, call_id: str) -> Call | None:
        async with self._session("get_call") as session:
            return await AsyncCallRepository(session).get_by_id(call_id)

    async def get_call_by_session_name(self, session_name: str) -> Call | None:
        async with self._session("get_call_by_session_name") as session:
            return await AsyncCallRepository(session).get_by_session_name(session_name)

    async def get_call_by_telephony_id(self, telephony_call_id: str) -> Call | None:
        async with self._session("get_call_by_telephony_id") as session:
            return await AsyncCallRepository(session).get_by_telephony_call_id(
                telephony_call_id
            )

    async def append_call_event(
        self,
        call_id: str,
        event_type: str,
        event_data: dict[str, Any] | None = None,
    ) -> None:
        async with self._session("append_call_event") as session:
            await AsyncCallEventRepository(session).append(call_id, event_type, event_data)

    # =========================================================================
    # Tool artifacts
    # =========================================================================

    async def create_lead(self, **fields: Any) -> Lead:
        async with self._session("create_lead") as session:
            return await AsyncLeadRepository(session).create(**fields)

    async def update_lead(self, lead_id: str, **fields: Any) -> Lead:
        async with self._session("update_lead") as session:
            lead = await AsyncLeadRepository(session).update(lead_id, **fields)
            if lead is None:
                raise NotFoundError(f"Lead {lead_id} not found")
            return lead

    async def find_latest_lead_by_phone(self, business_id: str, phone: str) -> Lead | None:
        async with self._session("find_latest_lead_by_phone") as session:
            return await AsyncLeadRepository(session).find_latest_by_phone(business_id, phone)

    async def create_appointment(self, **fields: Any) -> Appointment:
        async with self._session("create_appointment") as session:
            return await AsyncAppointmentRepository(session).create(**fields)

    # =========================================================================
    # Tenant configuration (read-only)
    # =========================================================================

    async def get_business(self, business_id: str) -> Business | None:
        async with self._session("get_business") as session:
            return await AsyncBusinessRepository(session).get_by_id(business_id)

    async def get_phone_number(self, phone_number: str) -> PhoneNumber | None:
        async with self._session("get_phone_number") as session:
            return await AsyncBusinessRepository(session).get_phone_number(phone_number)

    async def get_phone_number_by_id(self, phone_number_id: str) -> PhoneNumber | None:
        async with self._session("get_phone_number_by_id") as session:
            return await AsyncBusinessRepository(session).get_phone_number_by_id(
                phone_number_id
            )

    async def get_primary_phone_number(self, business_id: str) -> PhoneNumber | None:
        async with self._session("get_primary_phone_number") as session:
            return await AsyncBusinessRepository(session).get_primary_phone_number(
                business_id
            )
