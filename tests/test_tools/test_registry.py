"""Tests for the tool registry."""

from __future__ import annotations

import pytest

from src.errors import ValidationError
from src.observability.metrics import TOOL_INVOCATIONS
from src.tools import CheckBusinessHoursArgs, LookupCustomerArgs, ToolRegistry
from src.tools.hours import NO_HOURS_MESSAGE
from src.tools.registry import GENERIC_APOLOGY

EXPECTED_TOOLS = {
    "book_appointment",
    "create_lead",
    "lookup_customer",
    "transfer_to_human",
    "check_business_hours",
}


@pytest.fixture
def registry(call_context, tool_deps) -> ToolRegistry:
    return ToolRegistry(call_context, tool_deps)


def _invocations(tool: str, ok: str) -> float:
    return TOOL_INVOCATIONS.labels(tool=tool, ok=ok)._value.get()


class TestSchemas:

    def test_offers_every_tool(self, registry) -> None:
        schemas = registry.schemas()

        assert set(schemas) == EXPECTED_TOOLS
        for spec in schemas.values():
            assert spec.description
            assert spec.parameters["type"] == "object"

    def test_validator_produces_invocation(self, registry) -> None:
        validator = registry.schemas()["lookup_customer"].validator

        assert validator({"phone": "+15550000000"}) == LookupCustomerArgs(phone="+15550000000")
        with pytest.raises(ValidationError):
            validator({"phone": 12})


class TestExecute:

    @pytest.mark.asyncio
    async def test_dispatches_to_tool(self, tenant, registry) -> None:
        before = _invocations("check_business_hours", "true")

        result = await registry.execute(CheckBusinessHoursArgs())

        assert result.message == NO_HOURS_MESSAGE
        assert _invocations("check_business_hours", "true") == before + 1

    @pytest.mark.asyncio
    async def test_raising_tool_becomes_apology(self, tenant, registry, monkeypatch) -> None:
        async def _boom(*args, **kwargs):
            raise RuntimeError("unexpected")

        monkeypatch.setattr("src.tools.registry.check_business_hours", _boom)
        before = _invocations("check_business_hours", "false")

        result = await registry.execute(CheckBusinessHoursArgs())

        assert result.message == GENERIC_APOLOGY
        assert not result.ok
        assert _invocations("check_business_hours", "false") == before + 1

    def test_telephony_call_id_is_replaced(self, registry) -> None:
        original = registry.context

        registry.set_telephony_call_id("plivo-uuid-2")

        assert registry.context.telephony_call_id == "plivo-uuid-2"
        assert registry.context.call_id == original.call_id
        assert original.telephony_call_id == "plivo-uuid-1"
