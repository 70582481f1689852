"""Call session lifecycle.

A CallSession binds one media session to one call row. It loads the
tenant, owns the transcript, usage accounting and background telemetry
for the call, runs tools on behalf of the turn loop, and closes the call
row exactly once at teardown.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from src.config import Settings, get_settings
from src.core.accounting import CostRates, UsageAccountant
from src.core.tasks import BackgroundTasks
from src.core.transcript import Transcript, TranscriptEntry
from src.db.models import (
    Business,
    Call,
    CallEventType,
    CallStatus,
    Speaker,
    as_utc,
)
from src.db.store import CallStore
from src.errors import ConfigurationError, NotFoundError, VoiceAgentError
from src.logging_config import get_logger, mask_phone, sanitize_for_log
from src.observability.metrics import ACTIVE_CALLS, record_call_metrics
from src.prompts.receptionist import ReceptionistPromptBuilder
from src.services.llm.protocol import LLMService
from src.services.stt.protocol import STTService
from src.services.tts.protocol import TTSService
from src.tools import CallContext, ToolDependencies, ToolInvocation, ToolRegistry, ToolResult

logger: Any = get_logger(__name__)


class SessionState(str, Enum):
    """Lifecycle of a call session. Moves forward only."""

    PROVISIONING = "provisioning"  # call row exists, agent not attached
    ACTIVE = "active"  # turn loop running
    FINALIZING = "finalizing"  # teardown in progress
    CLOSED = "closed"


_STATE_ORDER = {state: index for index, state in enumerate(SessionState)}


@dataclass(frozen=True, slots=True)
class SessionMetadata:
    """What the telephony side hands the orchestrator for one call."""

    business_id: str
    call_id: str
    caller_phone: str | None = None
    telephony_call_id: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> SessionMetadata:
        """Parse a session bundle; camelCase and snake_case keys both work.

        Raises:
            ConfigurationError: Tenant or call id missing
        """

        def pick(camel: str, snake: str) -> str | None:
            value = data.get(camel) or data.get(snake)
            return str(value) if value else None

        business_id = pick("businessId", "business_id")
        call_id = pick("callId", "call_id")
        if not business_id or not call_id:
            raise ConfigurationError(
                f"Session metadata needs businessId and callId, got keys {sorted(data)}"
            )
        return cls(
            business_id=business_id,
            call_id=call_id,
            caller_phone=pick("callerPhone", "caller_phone"),
            telephony_call_id=pick("telephonyCallId", "telephony_call_id"),
        )

    def to_mapping(self) -> dict[str, str | None]:
        return {
            "businessId": self.business_id,
            "callId": self.call_id,
            "callerPhone": self.caller_phone,
            "telephonyCallId": self.telephony_call_id,
        }

    def to_context(self) -> CallContext:
        return CallContext(
            business_id=self.business_id,
            call_id=self.call_id,
            caller_phone=self.caller_phone,
            telephony_call_id=self.telephony_call_id,
        )


@dataclass
class CallMetrics:
    """Latency and volume numbers collected during a call."""

    total_turns: int = 0
    failed_turns: int = 0
    tool_calls: int = 0
    stt_first_word_ms: float | None = None
    llm_latencies_ms: list[float] = field(default_factory=list)
    tts_first_chunk_ms: list[float] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_turns": self.total_turns,
            "failed_turns": self.failed_turns,
            "tool_calls": self.tool_calls,
            "stt_first_word_ms": self.stt_first_word_ms,
            "avg_llm_latency_ms": self._avg(self.llm_latencies_ms),
            "avg_tts_first_chunk_ms": self._avg(self.tts_first_chunk_ms),
        }

    def _avg(self, values: list[float]) -> float:
        return sum(values) / len(values) if values else 0.0


class CallSession:
    """State and collaborators for one call.

    Providers, the store and tool dependencies are passed in; nothing is
    looked up from module globals after construction.
    """

    def __init__(
        self,
        metadata: SessionMetadata,
        *,
        store: CallStore,
        stt: STTService,
        llm: LLMService,
        tts: TTSService,
        settings: Settings | None = None,
        tool_deps: ToolDependencies | None = None,
        prompt_builder: ReceptionistPromptBuilder | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._metadata = metadata
        self._store = store
        self.stt = stt
        self.llm = llm
        self.tts = tts

        deps = tool_deps or ToolDependencies(
            store=store,
            public_base_url=self._settings.public_base_url,
            clock=self._clock,
        )
        self.registry = ToolRegistry(metadata.to_context(), deps)
        self.transcript = Transcript(self._clock)
        self.accountant = UsageAccountant(CostRates.from_settings(self._settings))
        self.background = BackgroundTasks(owner=f"call-{metadata.call_id}")
        self.metrics = CallMetrics()
        self._prompt_builder = prompt_builder or ReceptionistPromptBuilder()

        self.session_id = str(uuid4())
        self.business: Business | None = None
        self.call: Call | None = None
        self.greeting = self._settings.default_greeting
        self.system_prompt = ""
        self.voice: str | None = None

        self._state = SessionState.PROVISIONING
        self._state_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._inflight_tool: asyncio.Future[ToolResult] | None = None
        self._counted_active = False

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def metadata(self) -> SessionMetadata:
        return self._metadata

    @property
    def call_id(self) -> str:
        return self._metadata.call_id

    @property
    def business_id(self) -> str:
        return self._metadata.business_id

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def _transition(self, new_state: SessionState) -> bool:
        """Move forward to `new_state`; backward or repeated moves are refused."""
        async with self._state_lock:
            if _STATE_ORDER[new_state] <= _STATE_ORDER[self._state]:
                return False
            logger.debug(f"Session {self.call_id}: {self._state.value} -> {new_state.value}")
            self._state = new_state
            return True

    async def start(self) -> None:
        """Load tenant and call, mark the call answered, go ACTIVE.

        Raises:
            NotFoundError: Tenant or call row missing
            PersistenceError: The store failed while provisioning

        On either error the session is closed and the call, if it exists,
        is marked failed.
        """
        try:
            business = await self._provision()
        except VoiceAgentError as e:
            await self._abort_start(e)
            raise

        await self._transition(SessionState.ACTIVE)
        ACTIVE_CALLS.inc()
        self._counted_active = True

        self.emit(
            CallEventType.session_started,
            {"session_id": self.session_id, "agent_name": business.agent_name},
        )
        logger.info(
            f"Session started for call {self.call_id} "
            f"(business={business.name}, caller={mask_phone(self._metadata.caller_phone)})"
        )

    async def _provision(self) -> Business:
        business = await self._store.get_business(self.business_id)
        if business is None:
            raise NotFoundError(f"Business {self.business_id} not found")
        call = await self._store.get_call(self.call_id)
        if call is None:
            raise NotFoundError(f"Call {self.call_id} not found")

        self.business = business
        self.voice = business.agent_voice
        self.system_prompt = self._prompt_builder.build_system_prompt(business, self._clock())

        if call.phone_number_id:
            phone_number = await self._store.get_phone_number_by_id(call.phone_number_id)
            if phone_number and phone_number.greeting_message:
                self.greeting = phone_number.greeting_message

        self.call = await self._store.update_call(
            self.call_id,
            answered_at=self._clock(),
            session_id=self.session_id,
        )
        return business

    async def _abort_start(self, error: VoiceAgentError) -> None:
        logger.error(f"Could not provision session for call {self.call_id}: {error}")
        async with self._state_lock:
            self._state = SessionState.CLOSED
        self._stop_event.set()
        self.call = None
        try:
            await self._store.update_call(
                self.call_id, status=CallStatus.failed, ended_at=self._clock()
            )
        except VoiceAgentError as e:
            logger.warning(f"Could not mark call {self.call_id} failed: {e}")
        await self._close_providers()

    def stop(self) -> None:
        """Signal the end of the media session. Safe to call repeatedly."""
        if not self._stop_event.is_set():
            logger.info(f"Stop requested for call {self.call_id}")
            self._stop_event.set()

    async def wait_stopped(self) -> None:
        await self._stop_event.wait()

    def set_telephony_call_id(self, telephony_call_id: str | None) -> None:
        """Record the carrier leg id once it is known."""
        if not telephony_call_id or telephony_call_id == self._metadata.telephony_call_id:
            return
        self._metadata = replace(self._metadata, telephony_call_id=telephony_call_id)
        self.registry.set_telephony_call_id(telephony_call_id)

    # =========================================================================
    # Turn-loop helpers
    # =========================================================================

    def emit(self, event_type: CallEventType, data: dict[str, Any] | None = None) -> None:
        """Write an audit event in the background (best effort)."""
        logger.debug(
            f"Call {self.call_id} event {event_type.value}: {sanitize_for_log(data or {})}"
        )
        self.background.spawn(
            self._store.append_call_event(self.call_id, event_type.value, data or {}),
            description=event_type.value,
        )

    async def add_transcript_entry(self, speaker: Speaker, text: str) -> TranscriptEntry:
        """Append to the transcript and persist it before returning."""
        entry = self.transcript.append(speaker, text)
        try:
            await self._store.update_call(self.call_id, transcript=self.transcript.to_list())
        except VoiceAgentError as e:
            # Finalization writes the whole transcript again
            logger.error(f"Transcript write failed for call {self.call_id}: {e}")
        return entry

    async def run_tool(self, invocation: ToolInvocation) -> ToolResult:
        """Run a tool to completion even if the turn loop is cancelled."""
        task = asyncio.ensure_future(self.registry.execute(invocation))
        self._inflight_tool = task
        try:
            return await asyncio.shield(task)
        finally:
            if task.done():
                self._inflight_tool = None

    def flush_costs_in_background(self) -> None:
        if self.call is not None:
            self.background.spawn(
                self.accountant.flush(self._store, self.call_id),
                description="cost flush",
            )

    # =========================================================================
    # Finalization
    # =========================================================================

    async def finalize(self) -> dict[str, Any]:
        """Close the call row exactly once. Never raises.

        Waits for an in-flight tool, writes timing, status, transcript
        and costs, drains background writes and closes the providers.
        """
        if not await self._transition(SessionState.FINALIZING):
            return {}
        self._stop_event.set()

        summary: dict[str, Any] = {"call_id": self.call_id, **self.metrics.to_dict()}
        outcome = "none"
        duration = 0

        await self._wait_for_inflight_tool()

        if self.call is not None:
            try:
                ended_at = self._clock()
                call = await self._store.get_call(self.call_id) or self.call
                started_at = as_utc(call.started_at)
                duration = max(0, math.floor((ended_at - started_at).total_seconds()))
                self.accountant.record_telephony_duration(duration)

                fields: dict[str, Any] = {
                    "ended_at": ended_at,
                    "duration_seconds": duration,
                    "transcript": self.transcript.to_list(),
                }
                if call.status == CallStatus.in_progress:
                    fields["status"] = CallStatus.completed
                call = await self._store.update_call(self.call_id, **fields)
                costs = await self.accountant.flush(self._store, self.call_id)

                outcome = call.outcome.value if call.outcome else "none"
                summary.update(
                    duration_seconds=duration,
                    outcome=outcome,
                    cost_total=costs.total,
                    transcript_entries=len(self.transcript),
                )
                await self._store.append_call_event(
                    self.call_id,
                    CallEventType.call_completed.value,
                    {"duration_seconds": duration, "outcome": outcome, "cost_total": costs.total},
                )
                logger.info(
                    f"Call {self.call_id} completed: {duration}s, outcome={outcome}, "
                    f"cost={costs.total}c"
                )
            except Exception as e:
                logger.error(f"Finalization write failed for call {self.call_id}: {e}")

        await self.background.drain()
        await self._close_providers()

        if self._counted_active:
            ACTIVE_CALLS.dec()
            self._counted_active = False
            metrics = self.metrics.to_dict()
            record_call_metrics(
                outcome=outcome,
                business_id=self.business_id,
                duration_seconds=duration,
                cost_cents=self.accountant.snapshot().total,
                stt_latency_ms=metrics["stt_first_word_ms"],
                llm_latency_ms=metrics["avg_llm_latency_ms"],
                tts_latency_ms=metrics["avg_tts_first_chunk_ms"],
            )

        await self._transition(SessionState.CLOSED)
        return summary

    async def _wait_for_inflight_tool(self) -> None:
        task = self._inflight_tool
        if task is None or task.done():
            return
        logger.info(f"Waiting for in-flight tool before finalizing call {self.call_id}")
        try:
            await task
        except Exception as e:
            logger.error(f"In-flight tool failed during teardown of call {self.call_id}: {e}")

    async def _close_providers(self) -> None:
        for name, service in (("stt", self.stt), ("llm", self.llm), ("tts", self.tts)):
            try:
                await service.close()
            except Exception as e:
                logger.warning(f"Error closing {name} for call {self.call_id}: {e}")
