"""Tests for VoicePipeline orchestrator."""

import asyncio

import pytest
import pytest_asyncio

from src.core.pipeline import (
    APOLOGY_MESSAGE,
    CLARIFY_MESSAGE,
    MAX_STT_RESTARTS,
    AudioBuffer,
    PipelineConfig,
    VoicePipeline,
)
from src.core.session import CallSession, SessionMetadata
from src.db.models import CallOutcome
from src.errors import ValidationError
from src.services.llm.protocol import LLMResponse, Role, ToolCall
from src.services.stt.protocol import TranscriptEvent, TranscriptEventType, TranscriptMetadata

GREETING = "Thanks for calling Acme Dental, this is Ava."


def final(text: str, *, speech_final: bool = True) -> TranscriptEvent:
    return TranscriptEvent(
        type=TranscriptEventType.FINAL, text=text, confidence=0.95, speech_final=speech_final
    )


def stt_error(message: str = "socket closed") -> TranscriptEvent:
    return TranscriptEvent(type=TranscriptEventType.ERROR, error=message)


def tool_response(name: str, arguments: dict, call_id: str = "tc-1") -> LLMResponse:
    return LLMResponse(
        tool_calls=(ToolCall(id=call_id, name=name, arguments=arguments),),
        prompt_tokens=50,
        completion_tokens=20,
    )


class BlockingSTT:
    """Transcriber that consumes audio until the buffer closes."""

    def __init__(self) -> None:
        self.closed = False

    async def transcribe_stream(self, audio_chunks, **kwargs):
        async def _events():
            async for _ in audio_chunks:
                yield TranscriptEvent(type=TranscriptEventType.INTERIM)

        return _events(), TranscriptMetadata()

    async def close(self) -> None:
        self.closed = True


class SlowLLM:
    def __init__(self) -> None:
        self.closed = False

    async def respond(self, messages, tools, **kwargs):
        await asyncio.sleep(5)

    async def close(self) -> None:
        self.closed = True


@pytest_asyncio.fixture
async def build_pipeline(tenant, store, settings, sender, fake_tts, fixed_now):
    """Start a session for the seeded call and wrap it in a pipeline."""
    sessions: list[CallSession] = []

    async def _build(*, stt, llm, tts=None, config=None) -> VoicePipeline:
        session = CallSession(
            SessionMetadata(
                business_id=tenant.business.id,
                call_id=tenant.call.id,
                caller_phone=tenant.call.from_number,
            ),
            store=store,
            stt=stt,
            llm=llm,
            tts=tts or fake_tts,
            settings=settings,
            clock=lambda: fixed_now,
        )
        await session.start()
        sessions.append(session)
        return VoicePipeline(session, sender, config or PipelineConfig())

    yield _build

    for session in sessions:
        await session.finalize()


def session_of(pipeline: VoicePipeline) -> CallSession:
    return pipeline._session


class TestPipelineConfig:

    def test_default_config(self) -> None:
        config = PipelineConfig()

        assert config.input_sample_rate == 16000
        assert config.input_encoding == "linear16"
        assert config.max_tool_rounds == 3

    def test_from_settings(self, settings_factory) -> None:
        settings = settings_factory(
            plivo_sample_rate=8000,
            plivo_audio_format="mulaw",
            llm_timeout_seconds=4.0,
            max_history_messages=10,
        )
        config = PipelineConfig.from_settings(settings)

        assert config.input_sample_rate == 8000
        assert config.input_encoding == "mulaw"
        assert config.llm_timeout == 4.0
        assert config.max_history_messages == 10


class TestAudioBuffer:

    @pytest.mark.asyncio
    async def test_stream_until_closed(self) -> None:
        buffer = AudioBuffer()
        buffer.append(b"one")
        buffer.append(b"two")
        buffer.close()

        chunks = [chunk async for chunk in buffer.stream()]

        assert chunks == [b"one", b"two"]
        assert buffer.closed

    def test_drops_oldest_when_full(self) -> None:
        buffer = AudioBuffer(max_size=2)
        for chunk in (b"a", b"b", b"c"):
            buffer.append(chunk)

        assert buffer.size == 2
        assert buffer._queue.get_nowait() == b"b"

    def test_ignores_audio_after_close(self) -> None:
        buffer = AudioBuffer()
        buffer.close()
        buffer.append(b"late")

        # Only the end-of-stream sentinel is queued
        assert buffer.size == 1


class TestConversation:

    @pytest.mark.asyncio
    async def test_greets_then_answers(
        self, build_pipeline, stt_factory, llm_factory, fake_tts, sender, store
    ) -> None:
        stt = stt_factory([[final("What are your hours?")]])
        llm = llm_factory([LLMResponse(text="We're open nine to five.", prompt_tokens=80)])
        pipeline = await build_pipeline(stt=stt, llm=llm)

        await pipeline.run()

        assert fake_tts.spoken == [GREETING, "We're open nine to five."]
        assert len(sender.chunks) == 4
        assert stt.open_kwargs[0]["sample_rate"] == 16000

        session = session_of(pipeline)
        assert [(e.speaker.value, e.text) for e in session.transcript] == [
            ("agent", GREETING),
            ("user", "What are your hours?"),
            ("agent", "We're open nine to five."),
        ]
        assert session.metrics.total_turns == 1
        assert session.accountant.llm_input_tokens == 80

        request = llm.requests[0]
        assert request[0].role == Role.SYSTEM
        assert request[-1].content == "What are your hours?"
        assert set(llm.tools) == {
            "book_appointment",
            "create_lead",
            "lookup_customer",
            "transfer_to_human",
            "check_business_hours",
        }

        call = await store.get_call(session.call_id)
        assert len(call.transcript) == 3

    @pytest.mark.asyncio
    async def test_finals_are_joined_at_utterance_end(
        self, build_pipeline, stt_factory, llm_factory
    ) -> None:
        stt = stt_factory(
            [
                [
                    TranscriptEvent(type=TranscriptEventType.SPEECH_STARTED),
                    final("I'd like", speech_final=False),
                    final("a cleaning", speech_final=False),
                    TranscriptEvent(type=TranscriptEventType.UTTERANCE_END),
                ]
            ]
        )
        llm = llm_factory()
        pipeline = await build_pipeline(stt=stt, llm=llm)

        await pipeline.run()

        assert len(llm.requests) == 1
        assert llm.requests[0][-1].content == "I'd like a cleaning"

    @pytest.mark.asyncio
    async def test_empty_utterance_is_ignored(
        self, build_pipeline, stt_factory, llm_factory
    ) -> None:
        stt = stt_factory([[TranscriptEvent(type=TranscriptEventType.UTTERANCE_END)]])
        llm = llm_factory()
        pipeline = await build_pipeline(stt=stt, llm=llm)

        await pipeline.run()

        assert llm.requests == []

    @pytest.mark.asyncio
    async def test_stt_usage_accumulates_across_streams(
        self, build_pipeline, stt_factory, llm_factory
    ) -> None:
        stt = stt_factory(
            [[final("hello"), stt_error()], [final("are you there?")]],
            audio_seconds=6.0,
        )
        pipeline = await build_pipeline(stt=stt, llm=llm_factory())

        await pipeline.run()

        session = session_of(pipeline)
        # Two scripted streams, then empty reopens until the restart budget runs out
        assert stt.opened == 2 + MAX_STT_RESTARTS
        assert session.metrics.total_turns == 2
        assert session.accountant.stt_seconds == pytest.approx(12.0)
        assert session.metrics.stt_first_word_ms == 120.0


class TestToolCalls:

    @pytest.mark.asyncio
    async def test_tool_message_is_spoken(
        self, build_pipeline, stt_factory, llm_factory, fake_tts, store, list_events
    ) -> None:
        stt = stt_factory([[final("Book me in for January first 2099 at two")]])
        llm = llm_factory(
            [
                tool_response(
                    "book_appointment",
                    {
                        "date": "2099-01-01",
                        "time": "14:00",
                        "customer_name": "John Doe",
                        "customer_email": "john@example.com",
                    },
                )
            ]
        )
        pipeline = await build_pipeline(stt=stt, llm=llm)

        await pipeline.run()
        session = session_of(pipeline)
        await session.finalize()

        assert "successfully booked" in fake_tts.spoken[-1]
        assert session.metrics.tool_calls == 1

        roles = [m.role for m in pipeline.conversation.messages]
        assert roles == [Role.USER, Role.ASSISTANT, Role.TOOL]
        assert pipeline.conversation.messages[2].tool_call_id == "tc-1"

        call = await store.get_call(session.call_id)
        assert call.outcome == CallOutcome.appointment_booked

        events = [e.event_type for e in await list_events(session.call_id)]
        assert "tool_invoked" in events
        assert "appointment_booked" in events

    @pytest.mark.asyncio
    async def test_tool_calls_in_one_response_run_in_order(
        self, build_pipeline, llm_factory, fake_stt, fake_tts, store
    ) -> None:
        llm = llm_factory(
            [
                LLMResponse(
                    tool_calls=(
                        ToolCall(
                            id="tc-lead",
                            name="create_lead",
                            arguments={"name": "John Doe", "email": "john@example.com"},
                        ),
                        ToolCall(
                            id="tc-appt",
                            name="book_appointment",
                            arguments={
                                "date": "2099-01-01",
                                "time": "14:00",
                                "customer_name": "John Doe",
                                "customer_email": "john@example.com",
                            },
                        ),
                    ),
                    prompt_tokens=60,
                    completion_tokens=40,
                )
            ]
        )
        pipeline = await build_pipeline(stt=fake_stt, llm=llm)

        reply = await pipeline.handle_user_turn("Save my details and book me in")

        session = session_of(pipeline)
        assert reply.index("saved your information") < reply.index("successfully booked")
        assert fake_tts.spoken[-1] == reply
        assert session.metrics.tool_calls == 2

        tool_messages = [m for m in pipeline.conversation.messages if m.role == Role.TOOL]
        assert [m.tool_call_id for m in tool_messages] == ["tc-lead", "tc-appt"]

        call = await store.get_call(session.call_id)
        assert call.outcome == CallOutcome.appointment_booked
        assert call.outcome_history == ["lead_captured", "appointment_booked"]
    @pytest.mark.asyncio
    async def test_invalid_tool_call_is_retried_with_note(
        self, build_pipeline, llm_factory, fake_stt
    ) -> None:
        llm = llm_factory(
            [
                ValidationError("Invalid arguments for create_lead: Field required"),
                LLMResponse(text="Could I get your name?"),
            ]
        )
        pipeline = await build_pipeline(stt=fake_stt, llm=llm)

        reply = await pipeline.handle_user_turn("Please call me back")

        assert reply == "Could I get your name?"
        assert len(llm.requests) == 2
        note = llm.requests[1][-1]
        assert note.role == Role.SYSTEM
        assert "invalid" in note.content
        assert session_of(pipeline).metrics.failed_turns == 0

    @pytest.mark.asyncio
    async def test_persistent_invalid_tool_calls_ask_to_repeat(
        self, build_pipeline, llm_factory, fake_stt, fake_tts
    ) -> None:
        llm = llm_factory([ValidationError("bad arguments") for _ in range(3)])
        pipeline = await build_pipeline(
            stt=fake_stt, llm=llm, config=PipelineConfig(max_tool_rounds=3)
        )

        reply = await pipeline.handle_user_turn("Book me in")

        assert reply == CLARIFY_MESSAGE
        assert fake_tts.spoken[-1] == CLARIFY_MESSAGE
        assert len(llm.requests) == 3
        assert session_of(pipeline).metrics.failed_turns == 1

    @pytest.mark.asyncio
    async def test_unparseable_arguments_are_not_executed(
        self, build_pipeline, llm_factory, fake_stt, store
    ) -> None:
        llm = llm_factory([tool_response("transfer_to_human", {"urgency": "high"})])
        pipeline = await build_pipeline(stt=fake_stt, llm=llm)

        reply = await pipeline.handle_user_turn("Get me a person")

        session = session_of(pipeline)
        assert reply == CLARIFY_MESSAGE
        assert session.metrics.tool_calls == 0
        call = await store.get_call(session.call_id)
        assert call.transferred_to_human is False


class TestFailures:

    @pytest.mark.asyncio
    async def test_llm_error_apologizes(self, build_pipeline, llm_factory, fake_stt) -> None:
        llm = llm_factory([RuntimeError("503 from provider")])
        pipeline = await build_pipeline(stt=fake_stt, llm=llm)

        reply = await pipeline.handle_user_turn("Hello?")

        assert reply == APOLOGY_MESSAGE
        assert session_of(pipeline).metrics.failed_turns == 1

    @pytest.mark.asyncio
    async def test_llm_timeout_apologizes(self, build_pipeline, fake_stt) -> None:
        pipeline = await build_pipeline(
            stt=fake_stt, llm=SlowLLM(), config=PipelineConfig(llm_timeout=0.05)
        )

        reply = await pipeline.handle_user_turn("Hello?")

        assert reply == APOLOGY_MESSAGE

    @pytest.mark.asyncio
    async def test_tts_failure_keeps_transcript(
        self, build_pipeline, llm_factory, tts_factory, fake_stt, sender
    ) -> None:
        pipeline = await build_pipeline(
            stt=fake_stt, llm=llm_factory(), tts=tts_factory(fail=True)
        )

        reply = await pipeline.handle_user_turn("Hello?")

        session = session_of(pipeline)
        assert reply == "Is there anything else?"
        assert sender.chunks == []
        assert session.transcript.entries[-1].text == reply
        assert session.metrics.failed_turns == 1
        assert session.accountant.tts_characters == 0

    @pytest.mark.asyncio
    async def test_stt_restarts_are_bounded(self, build_pipeline, stt_factory, llm_factory) -> None:
        stt = stt_factory([[stt_error()] for _ in range(MAX_STT_RESTARTS + 3)])
        pipeline = await build_pipeline(stt=stt, llm=llm_factory())

        await pipeline.run()

        assert stt.opened == MAX_STT_RESTARTS + 1
        assert session_of(pipeline).metrics.failed_turns == MAX_STT_RESTARTS + 1

    @pytest.mark.asyncio
    async def test_restart_budget_resets_after_caller_is_heard(
        self, build_pipeline, stt_factory, llm_factory
    ) -> None:
        turns = MAX_STT_RESTARTS + 3
        stt = stt_factory([[final(f"turn {i}"), stt_error()] for i in range(turns)])
        llm = llm_factory()
        pipeline = await build_pipeline(stt=stt, llm=llm)

        await pipeline.run()

        session = session_of(pipeline)
        assert [request[-1].content for request in llm.requests] == [
            f"turn {i}" for i in range(turns)
        ]
        assert stt.opened == turns + MAX_STT_RESTARTS
        assert not session.stopped

    @pytest.mark.asyncio
    async def test_stream_closed_without_error_is_reopened(
        self, build_pipeline, stt_factory, llm_factory
    ) -> None:
        stt = stt_factory([[final("I need a cleaning")], [final("next Tuesday please")]])
        llm = llm_factory()
        pipeline = await build_pipeline(stt=stt, llm=llm)

        await pipeline.run()

        assert [request[-1].content for request in llm.requests] == [
            "I need a cleaning",
            "next Tuesday please",
        ]
        assert session_of(pipeline).metrics.failed_turns == 0


class TestStop:

    @pytest.mark.asyncio
    async def test_stop_ends_run(self, build_pipeline, llm_factory, fake_tts) -> None:
        pipeline = await build_pipeline(stt=BlockingSTT(), llm=llm_factory())
        runner = asyncio.create_task(pipeline.run())
        await asyncio.sleep(0.05)
        assert not runner.done()

        session_of(pipeline).stop()
        await asyncio.wait_for(runner, timeout=1)

        assert fake_tts.spoken == [GREETING]

    @pytest.mark.asyncio
    async def test_end_of_audio_ends_run(self, build_pipeline, llm_factory) -> None:
        pipeline = await build_pipeline(stt=BlockingSTT(), llm=llm_factory())
        pipeline.push_audio(b"\x00" * 320)
        pipeline.end_audio()

        await asyncio.wait_for(pipeline.run(), timeout=1)
