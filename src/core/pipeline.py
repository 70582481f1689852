"""Voice pipeline: the per-call turn loop.

Orchestrates one call's conversation:
- Caller audio → STT → responder (with tools) → TTS → caller
- Greets first, then handles one user turn per completed utterance
- Stops promptly when the session is stopped, without cutting short a
  tool that is already writing
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from typing import Any, Protocol

from src.config import Settings, get_settings
from src.core.context import ConversationManager
from src.core.session import CallSession
from src.db.models import CallEventType, Speaker
from src.errors import ValidationError
from src.logging_config import get_logger
from src.observability.metrics import record_turn_failure
from src.services.llm.protocol import LLMResponse, ToolCall
from src.services.stt.protocol import TranscriptEvent, TranscriptEventType, TranscriptMetadata
from src.tools import ToolResult, parse_tool_call

logger: Any = get_logger(__name__)

# Transcription streams reopened in a row without a final transcript before giving up
MAX_STT_RESTARTS = 3

APOLOGY_MESSAGE = "I'm sorry, I'm having a little trouble right now. Could you say that again?"
CLARIFY_MESSAGE = (
    "Sorry, I didn't quite catch all the details. Could you repeat them for me?"
)


class AudioSender(Protocol):
    """Protocol for sending audio back to caller."""

    async def send_audio(self, audio_bytes: bytes) -> None:
        """Send audio bytes to caller."""
        ...


@dataclass
class PipelineConfig:
    """Configuration for voice pipeline."""

    # Audio settings
    input_sample_rate: int = 16000
    input_encoding: str = "linear16"
    language: str = "en-US"

    # Per-step timeout budgets (seconds)
    llm_timeout: float = 8.0
    tts_timeout: float = 15.0

    # Responder
    llm_max_tokens: int = 256
    llm_temperature: float = 0.7
    max_tool_rounds: int = 3
    max_history_messages: int = 20

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> PipelineConfig:
        """Create config from application settings."""
        s = settings or get_settings()
        return cls(
            input_sample_rate=s.plivo_sample_rate,
            input_encoding="linear16" if s.plivo_audio_format == "linear16" else "mulaw",
            language=s.deepgram_language,
            llm_timeout=s.llm_timeout_seconds,
            tts_timeout=s.tts_timeout_seconds,
            llm_max_tokens=s.llm_max_tokens,
            llm_temperature=s.llm_temperature,
            max_tool_rounds=s.max_tool_rounds,
            max_history_messages=s.max_history_messages,
        )


class AudioBuffer:
    """Async queue of caller audio feeding the transcriber."""

    def __init__(self, max_size: int = 200) -> None:
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue(maxsize=max_size)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def append(self, chunk: bytes) -> None:
        """Add audio chunk to buffer."""
        if self._closed:
            return
        try:
            self._queue.put_nowait(chunk)
        except asyncio.QueueFull:
            # Drop oldest chunk to make room
            try:
                self._queue.get_nowait()
                self._queue.put_nowait(chunk)
            except (asyncio.QueueEmpty, asyncio.QueueFull):
                pass

    async def stream(self) -> AsyncGenerator[bytes, None]:
        """Yield chunks until the buffer is closed."""
        while True:
            if self._closed and self._queue.empty():
                return
            chunk = await self._queue.get()
            if chunk is None:
                return
            yield chunk

    def close(self) -> None:
        """Close buffer and signal end of stream."""
        if self._closed:
            return
        self._closed = True
        with contextlib.suppress(asyncio.QueueFull):
            self._queue.put_nowait(None)

    @property
    def size(self) -> int:
        return self._queue.qsize()


class VoicePipeline:
    """Runs the conversation for one CallSession.

    Audio pushed in by the media transport is transcribed; each completed
    utterance becomes a user turn answered by the responder. Tool calls
    are executed through the session and their messages spoken back.
    """

    def __init__(
        self,
        session: CallSession,
        sender: AudioSender,
        config: PipelineConfig | None = None,
    ) -> None:
        self._session = session
        self._sender = sender
        self._config = config or PipelineConfig.from_settings(session.settings)
        self._audio_buffer = AudioBuffer()
        self._conversation = ConversationManager(
            system_prompt=session.system_prompt,
            max_history=self._config.max_history_messages,
        )
        self._tools = session.registry.schemas()
        self._pending_utterance: list[str] = []
        self._turn_lock = asyncio.Lock()

        # STT usage across reopened streams
        self._closed_stt_seconds = 0.0
        self._stt_metadata: TranscriptMetadata | None = None

    @property
    def conversation(self) -> ConversationManager:
        return self._conversation

    @property
    def config(self) -> PipelineConfig:
        return self._config

    def configure(
        self,
        *,
        input_sample_rate: int | None = None,
        input_encoding: str | None = None,
    ) -> None:
        """Adjust the inbound audio format once the media stream announces it."""
        if input_sample_rate:
            self._config.input_sample_rate = input_sample_rate
        if input_encoding:
            self._config.input_encoding = input_encoding
        logger.info(
            f"Pipeline configured: {self._config.input_sample_rate}Hz "
            f"{self._config.input_encoding}"
        )

    # =========================================================================
    # Audio input
    # =========================================================================

    def push_audio(self, audio_bytes: bytes) -> None:
        """Queue caller audio for transcription."""
        self._audio_buffer.append(audio_bytes)

    def end_audio(self) -> None:
        """No more caller audio will arrive."""
        self._audio_buffer.close()

    # =========================================================================
    # Turn loop
    # =========================================================================

    async def run(self) -> None:
        """Greet the caller and run turns until the session stops.

        Returns when the caller's audio ends or the session is stopped.
        Stopping cancels the turn loop; a tool that has started still
        finishes (see CallSession.run_tool).
        """
        turns = asyncio.create_task(self._converse(), name=f"turns-{self._session.call_id}")
        stopped = asyncio.create_task(self._session.wait_stopped())
        try:
            await asyncio.wait({turns, stopped}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (turns, stopped):
                if not task.done():
                    task.cancel()
            await asyncio.gather(turns, stopped, return_exceptions=True)
            self._audio_buffer.close()
            self._record_stt_usage()

        if not turns.cancelled() and turns.exception() is not None:
            logger.error(f"Turn loop crashed for call {self._session.call_id}: {turns.exception()}")

    async def _converse(self) -> None:
        await self.speak(self._session.greeting)

        # Consecutive streams that closed without a final transcript
        restarts = 0
        while not self._session.stopped:
            errored, heard = await self._listen()
            if heard:
                restarts = 0
            if self._session.stopped or self._audio_buffer.closed:
                break
            restarts += 1
            if restarts > MAX_STT_RESTARTS:
                logger.error(
                    f"Transcription closed {restarts} times in a row for call "
                    f"{self._session.call_id}; no longer listening"
                )
                break
            reason = "after an error" if errored else "after it closed"
            logger.warning(f"Reopening transcription for call {self._session.call_id} {reason}")

        logger.info(f"Turn loop finished for call {self._session.call_id}")

    async def _listen(self) -> tuple[bool, bool]:
        """Run one transcription stream.

        Returns whether it ended in error and whether it produced a final
        transcript.
        """
        try:
            generator, metadata = await self._session.stt.transcribe_stream(
                self._audio_buffer.stream(),
                sample_rate=self._config.input_sample_rate,
                encoding=self._config.input_encoding,
                channels=1,
                language=self._config.language,
            )
        except Exception as e:
            self._turn_failed("stt", str(e))
            return True, False

        self._stt_metadata = metadata
        errored = False
        heard = False
        try:
            async for event in generator:
                if event.type is TranscriptEventType.ERROR:
                    errored = True
                elif event.type is TranscriptEventType.FINAL:
                    heard = True
                await self.handle_transcript_event(event)
        finally:
            self._closed_stt_seconds += metadata.total_audio_seconds
            self._stt_metadata = None
            self._record_stt_usage(metadata)
        return errored, heard

    async def handle_transcript_event(self, event: TranscriptEvent) -> None:
        match event.type:
            case TranscriptEventType.SPEECH_STARTED:
                self._session.emit(CallEventType.user_started_speaking)
            case TranscriptEventType.UTTERANCE_END:
                self._session.emit(CallEventType.user_stopped_speaking)
                await self._complete_utterance()
            case TranscriptEventType.FINAL:
                text = event.text.strip()
                if text:
                    self._pending_utterance.append(text)
                if event.speech_final:
                    await self._complete_utterance()
            case TranscriptEventType.ERROR:
                self._turn_failed("stt", event.error or "transcription error")
            case TranscriptEventType.INTERIM:
                pass

        if self._stt_metadata is not None:
            self._record_stt_usage(self._stt_metadata)

    async def _complete_utterance(self) -> None:
        text = " ".join(self._pending_utterance).strip()
        self._pending_utterance = []
        if text:
            await self.handle_user_turn(text)

    async def handle_user_turn(self, text: str) -> str:
        """Answer one caller utterance and speak the reply."""
        async with self._turn_lock:
            self._session.metrics.total_turns += 1
            logger.info(f"Processing turn for call {self._session.call_id}: {text[:50]}...")

            await self._session.add_transcript_entry(Speaker.user, text)
            self._conversation.add_user_message(text)

            reply = await self._respond()
            await self.speak(reply)
            self._session.flush_costs_in_background()
            return reply

    # =========================================================================
    # Responder
    # =========================================================================

    async def _respond(self) -> str:
        """One responder turn: text, or tool calls whose messages are spoken.

        Malformed tool calls are retried with a correction note; after
        `max_tool_rounds` attempts the caller is asked to repeat.
        """
        note: str | None = None
        for attempt in range(1, self._config.max_tool_rounds + 1):
            try:
                response = await asyncio.wait_for(
                    self._session.llm.respond(
                        self._conversation.build_messages(note),
                        self._tools,
                        max_tokens=self._config.llm_max_tokens,
                        temperature=self._config.llm_temperature,
                    ),
                    timeout=self._config.llm_timeout,
                )
            except ValidationError as e:
                logger.warning(
                    f"Rejected tool call on attempt {attempt} for call "
                    f"{self._session.call_id}: {e}"
                )
                note = (
                    f"Your last tool call was invalid ({e}). Call the tool again with "
                    "valid arguments, or ask the caller for the missing details."
                )
                continue
            except TimeoutError:
                self._turn_failed("llm", f"no response within {self._config.llm_timeout}s")
                return self._reply(APOLOGY_MESSAGE)
            except Exception as e:
                self._turn_failed("llm", str(e))
                return self._reply(APOLOGY_MESSAGE)

            self._session.accountant.add_llm_usage(
                response.prompt_tokens, response.completion_tokens
            )
            if response.latency_ms:
                self._session.metrics.llm_latencies_ms.append(response.latency_ms)

            if response.has_tool_calls:
                return await self._run_tools(response)
            return self._reply(response.text or "")

        self._turn_failed("llm", "tool call arguments kept failing validation")
        return self._reply(CLARIFY_MESSAGE)

    def _reply(self, text: str) -> str:
        if text:
            self._conversation.add_assistant_message(text)
        return text

    async def _run_tools(self, response: LLMResponse) -> str:
        self._conversation.add_tool_request(response)
        spoken: list[str] = []
        for call in response.tool_calls:
            result = await self._run_tool(call)
            self._conversation.add_tool_result(call, result.message)
            spoken.append(result.message)
        return " ".join(message for message in spoken if message)

    async def _run_tool(self, call: ToolCall) -> ToolResult:
        invocation = call.invocation
        if invocation is None:
            try:
                invocation = parse_tool_call(call.name, call.arguments)
            except ValidationError as e:
                logger.warning(f"Tool {call.name} arguments invalid: {e}")
                return ToolResult(message=CLARIFY_MESSAGE, ok=False)

        self._session.metrics.tool_calls += 1
        self._session.emit(
            CallEventType.tool_invoked,
            {"tool": call.name, "tool_call_id": call.id, "arguments": call.arguments},
        )
        result = await self._session.run_tool(invocation)
        if not result.ok:
            self._session.emit(CallEventType.tool_failed, {"tool": call.name})
            self._turn_failed("tool", f"{call.name} did not complete")
        return result

    # =========================================================================
    # Speech output
    # =========================================================================

    async def speak(self, text: str) -> None:
        """Synthesize `text` to the caller and add it to the transcript.

        Synthesis failures are logged and counted; the line still goes
        into the transcript.
        """
        if not text:
            return

        self._session.emit(CallEventType.agent_started_speaking)
        try:
            generator, metadata = await asyncio.wait_for(
                self._session.tts.synthesize_stream(text, voice=self._session.voice),
                timeout=self._config.tts_timeout,
            )
            self._session.accountant.add_tts_characters(len(text))
            async with asyncio.timeout(self._config.tts_timeout):
                async for chunk in generator:
                    await self._sender.send_audio(chunk.audio_bytes)
            if metadata.first_chunk_ms is not None:
                self._session.metrics.tts_first_chunk_ms.append(metadata.first_chunk_ms)
        except TimeoutError:
            self._turn_failed("tts", f"synthesis exceeded {self._config.tts_timeout}s")
        except Exception as e:
            self._turn_failed("tts", str(e))
        finally:
            self._session.emit(CallEventType.agent_stopped_speaking)

        await self._session.add_transcript_entry(Speaker.agent, text)

    # =========================================================================
    # Bookkeeping
    # =========================================================================

    def _turn_failed(self, stage: str, error: str) -> None:
        logger.error(f"Turn failed at {stage} for call {self._session.call_id}: {error}")
        self._session.metrics.failed_turns += 1
        record_turn_failure(stage)
        self._session.emit(CallEventType.turn_failed, {"stage": stage, "error": error})

    def _record_stt_usage(self, metadata: TranscriptMetadata | None = None) -> None:
        current = metadata or self._stt_metadata
        open_seconds = 0.0
        if current is not None and current is self._stt_metadata:
            open_seconds = current.total_audio_seconds
        self._session.accountant.record_stt_audio(self._closed_stt_seconds + open_seconds)
        if (
            current is not None
            and current.first_word_ms is not None
            and self._session.metrics.stt_first_word_ms is None
        ):
            self._session.metrics.stt_first_word_ms = current.first_word_ms
