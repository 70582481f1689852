"""Call and call-event repositories."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models import (
    TERMINAL_CALL_STATUSES,
    Call,
    CallEvent,
    CallOutcome,
    CallStatus,
    dump_json_list,
)
from src.logging_config import get_logger

logger: Any = get_logger(__name__)

COST_FIELDS = ("cost_stt", "cost_llm", "cost_tts", "cost_telephony", "cost_total")


class AsyncCallRepository:
    """Async repository for call rows.

    `update` is the single write path for an existing call and keeps the
    row invariants: status never moves backward, cost columns never
    decrease and every outcome is appended to the outcome history.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **fields) -> Call:
        call = Call(**fields)
        self.session.add(call)
        await self.session.flush()
        return call

    async def get_by_id(self, call_id: str) -> Call | None:
        return await self.session.get(Call, call_id)

    async def get_by_session_name(self, session_name: str) -> Call | None:
        result = await self.session.execute(
            select(Call).where(Call.session_name == session_name)  # type: ignore[arg-type]
        )
        return result.scalars().first()

    async def get_by_telephony_call_id(self, telephony_call_id: str) -> Call | None:
        query = select(Call).where(
            Call.telephony_call_id == telephony_call_id  # type: ignore[arg-type]
        )
        result = await self.session.execute(query)
        return result.scalars().first()

    async def update(self, call_id: str, **fields) -> Call | None:
        call = await self.get_by_id(call_id)
        if not call:
            return None

        if "status" in fields:
            new_status = parse_status(fields["status"])
            if not can_transition(call.status, new_status):
                logger.warning(
                    f"Ignoring backward status change for call {call_id}: "
                    f"{call.status.value} -> {new_status.value}"
                )
                fields.pop("status")
            else:
                fields["status"] = new_status

        if fields.get("outcome") is not None:
            outcome = CallOutcome(fields["outcome"])
            fields["outcome"] = outcome
            fields["outcome_history_json"] = json.dumps(
                [*call.outcome_history, outcome.value]
            )

        for key in COST_FIELDS:
            if key in fields:
                fields[key] = max(int(fields[key]), getattr(call, key))

        if "transcript" in fields:
            fields["transcript_json"] = dump_json_list(fields.pop("transcript"))
        if "tags" in fields:
            fields["tags_json"] = dump_json_list(fields.pop("tags"))

        for key, value in fields.items():
            if not hasattr(call, key):
                raise AttributeError(f"Call has no field {key!r}")
            setattr(call, key, value)
        call.updated_at = datetime.now(UTC)
        self.session.add(call)
        return call


class AsyncCallEventRepository:
    """Append-only access to call events."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(
        self,
        call_id: str,
        event_type: str,
        event_data: dict[str, Any] | None = None,
    ) -> CallEvent:
        event = CallEvent(
            call_id=call_id,
            event_type=event_type,
            event_data_json=json.dumps(event_data or {}, default=str),
        )
        self.session.add(event)
        return event

    async def list_for_call(self, call_id: str) -> list[CallEvent]:
        result = await self.session.execute(
            select(CallEvent)
            .where(CallEvent.call_id == call_id)  # type: ignore[arg-type]
            .order_by(CallEvent.created_at)  # type: ignore[arg-type]
        )
        return list(result.scalars().all())


def can_transition(current: CallStatus, new: CallStatus) -> bool:
    """Status only moves from in_progress to a terminal status."""
    if current == new:
        return True
    return current == CallStatus.in_progress and new in TERMINAL_CALL_STATUSES


def parse_status(value: CallStatus | str) -> CallStatus:
    if isinstance(value, CallStatus):
        return value
    try:
        return CallStatus(value)
    except ValueError as e:
        raise ValueError(f"Unknown call status: {value}") from e
