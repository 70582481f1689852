"""Tests for the create_lead tool."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from src.db.models import CallOutcome, InterestLevel, Lead
from src.db.repositories import AsyncLeadRepository
from src.errors import IntegrationError, PersistenceError
from src.tools import CallContext, CreateLeadArgs
from src.tools.lead import FAILURE_MESSAGE, MISSING_CONTACT_MESSAGE, create_lead


async def _leads(session_factory, business_id: str) -> list[Lead]:
    async with session_factory() as session:
        return await AsyncLeadRepository(session).list_by_business(business_id)


class FakeCRM:
    """Stands in for HubSpotClient as both factory and context manager."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.keys: list[str] = []
        self.contacts: list[dict] = []

    def __call__(self, api_key: str) -> FakeCRM:
        self.keys.append(api_key)
        return self

    async def __aenter__(self) -> FakeCRM:
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None

    async def create_contact(self, properties: dict) -> str:
        if self.fail:
            raise IntegrationError("hubspot", "connection refused")
        self.contacts.append(properties)
        return "hs-42"


class TestCreateLead:

    @pytest.mark.asyncio
    async def test_missing_contact_asks_for_one(self, tenant, tool_deps, session_factory) -> None:
        context = CallContext(business_id=tenant.business.id, call_id=tenant.call.id)

        result = await create_lead(context, tool_deps, CreateLeadArgs(name="Jane Smith"))

        assert result.message == MISSING_CONTACT_MESSAGE
        assert result.outcome is None
        assert await _leads(session_factory, tenant.business.id) == []

    @pytest.mark.asyncio
    async def test_creates_lead_and_sets_outcome(
        self, tenant, call_context, tool_deps, store, session_factory, list_events
    ) -> None:
        args = CreateLeadArgs(name="Jane Smith", phone="+15557654321", notes="Wants whitening")

        result = await create_lead(call_context, tool_deps, args)

        assert result.ok
        assert result.outcome == CallOutcome.lead_captured
        assert "Jane Smith" in result.message
        assert "+15557654321" in result.message

        leads = await _leads(session_factory, tenant.business.id)
        assert len(leads) == 1
        assert leads[0].phone == "+15557654321"
        assert leads[0].call_id == call_context.call_id
        assert leads[0].interest_level == InterestLevel.medium
        assert leads[0].hubspot_contact_id is None

        call = await store.get_call(call_context.call_id)
        assert call.outcome == CallOutcome.lead_captured
        assert call.caller_name == "Jane Smith"

        events = await list_events(call_context.call_id)
        assert [e.event_type for e in events] == ["lead_captured"]

    @pytest.mark.asyncio
    async def test_falls_back_to_caller_phone(
        self, tenant, call_context, tool_deps, session_factory
    ) -> None:
        result = await create_lead(
            call_context, tool_deps, CreateLeadArgs(name="Sam", email="sam@example.com")
        )

        assert "sam@example.com" in result.message
        leads = await _leads(session_factory, tenant.business.id)
        assert leads[0].phone == call_context.caller_phone

    @pytest.mark.asyncio
    async def test_syncs_to_hubspot(
        self, tenant_factory, call_context, tool_deps, session_factory
    ) -> None:
        await tenant_factory(business_fields={"hubspot_api_key": "pat-123"})
        crm = FakeCRM()
        tool_deps.crm_factory = crm

        await create_lead(
            call_context,
            tool_deps,
            CreateLeadArgs(name="Jane Ann Smith", email="jane@example.com", company="Initech"),
        )

        assert crm.keys == ["pat-123"]
        contact = crm.contacts[0]
        assert contact["firstname"] == "Jane"
        assert contact["lastname"] == "Ann Smith"
        assert contact["company"] == "Initech"
        assert contact["lead_source"] == "AI Voice Agent"

        leads = await _leads(session_factory, call_context.business_id)
        assert leads[0].hubspot_contact_id == "hs-42"
        assert leads[0].synced_at is not None

    @pytest.mark.asyncio
    async def test_hubspot_unreachable_keeps_local_lead(
        self, tenant_factory, call_context, tool_deps, store, session_factory
    ) -> None:
        await tenant_factory(business_fields={"hubspot_api_key": "pat-123"})
        tool_deps.crm_factory = FakeCRM(fail=True)

        result = await create_lead(
            call_context, tool_deps, CreateLeadArgs(name="Jane Smith", phone="+15557654321")
        )

        assert result.ok
        leads = await _leads(session_factory, call_context.business_id)
        assert len(leads) == 1
        assert leads[0].hubspot_contact_id is None

        call = await store.get_call(call_context.call_id)
        assert call.outcome == CallOutcome.lead_captured

    @pytest.mark.asyncio
    async def test_failed_sync_backfill_keeps_result(
        self, tenant_factory, call_context, tool_deps, store, session_factory, list_events
    ) -> None:
        await tenant_factory(business_fields={"hubspot_api_key": "pat-123"})
        tool_deps.crm_factory = FakeCRM()
        store.update_lead = AsyncMock(side_effect=PersistenceError("update_lead failed"))

        result = await create_lead(
            call_context, tool_deps, CreateLeadArgs(name="Jane Smith", phone="+15557654321")
        )

        assert result.ok
        assert result.outcome == CallOutcome.lead_captured
        assert result.message != FAILURE_MESSAGE
        store.update_lead.assert_awaited_once()

        leads = await _leads(session_factory, call_context.business_id)
        assert len(leads) == 1
        assert leads[0].hubspot_contact_id is None

        call = await store.get_call(call_context.call_id)
        assert call.outcome == CallOutcome.lead_captured
        events = [e.event_type for e in await list_events(call_context.call_id)]
        assert "lead_captured" in events

    @pytest.mark.asyncio
    async def test_unknown_business_apologizes(self, call_context, tool_deps) -> None:
        result = await create_lead(
            call_context, tool_deps, CreateLeadArgs(name="Jane", phone="+15557654321")
        )

        assert not result.ok
        assert result.message == FAILURE_MESSAGE
