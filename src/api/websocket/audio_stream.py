"""WebSocket handler for Plivo bidirectional audio streaming.

Handles the Plivo stream protocol:
- `start` announces the stream id and audio format; the call session is
  built and started, and the turn loop begins
- `media` carries base64 caller audio
- `stop` (or a disconnect) ends the call; the session is finalized
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import contextlib
import json
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from src.config import Settings, get_settings
from src.core.pipeline import AudioSender, VoicePipeline
from src.core.session import CallSession, SessionMetadata
from src.db.store import CallStore
from src.errors import VoiceAgentError
from src.logging_config import get_logger
from src.services.llm.groq import GroqService
from src.services.stt.deepgram import DeepgramService
from src.services.telephony.plivo import PlivoService
from src.services.tts.elevenlabs import ElevenLabsTTSService
from src.tools import ToolDependencies

logger: Any = get_logger(__name__)

SessionFactory = Callable[..., CallSession]


class CallCapacityError(VoiceAgentError):
    """Raised when the process is already handling its maximum number of calls."""


@dataclass
class CallSessionEntry:
    """Entry in the call session registry."""

    metadata: SessionMetadata
    session: CallSession | None = None
    stream_id: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class CallSessionRegistry:
    """Calls this process has accepted, keyed by call id.

    The answer webhook registers metadata; the media WebSocket attaches
    the live session; the hangup webhook stops it.
    """

    def __init__(self, max_calls: int = 20) -> None:
        self._entries: dict[str, CallSessionEntry] = {}
        self._lock = asyncio.Lock()
        self._max_calls = max_calls

    async def register(self, metadata: SessionMetadata) -> CallSessionEntry:
        """Accept a new call.

        Raises:
            CallCapacityError: If the registry is full
        """
        async with self._lock:
            existing = self._entries.get(metadata.call_id)
            if existing:
                return existing

            if len(self._entries) >= self._max_calls:
                logger.warning(
                    f"Max concurrent calls reached ({self._max_calls}), "
                    f"rejecting call {metadata.call_id}"
                )
                raise CallCapacityError(f"System at capacity ({self._max_calls} concurrent calls)")

            entry = CallSessionEntry(metadata=metadata)
            self._entries[metadata.call_id] = entry
            logger.info(
                f"Registered call {metadata.call_id} (business: {metadata.business_id}, "
                f"active: {len(self._entries)}/{self._max_calls})"
            )
            return entry

    async def get(self, call_id: str) -> CallSessionEntry | None:
        async with self._lock:
            return self._entries.get(call_id)

    async def attach(self, call_id: str, session: CallSession, stream_id: str = "") -> None:
        async with self._lock:
            entry = self._entries.get(call_id)
            if entry:
                entry.session = session
                entry.stream_id = stream_id

    async def remove(self, call_id: str) -> CallSessionEntry | None:
        async with self._lock:
            return self._entries.pop(call_id, None)

    async def close_all(self) -> None:
        """Finalize every live session (for shutdown)."""
        async with self._lock:
            entries = list(self._entries.items())
            self._entries.clear()
        for call_id, entry in entries:
            if entry.session is not None:
                logger.info(f"Closing call {call_id} at shutdown")
                await entry.session.finalize()

    @property
    def active_count(self) -> int:
        return len(self._entries)


def build_call_session(
    metadata: SessionMetadata,
    *,
    settings: Settings,
    store: CallStore,
) -> CallSession:
    """Wire a session to the production providers."""
    tool_deps = ToolDependencies(
        store=store,
        telephony=PlivoService(settings=settings),
        public_base_url=settings.public_base_url,
    )
    return CallSession(
        metadata,
        store=store,
        stt=DeepgramService(settings=settings),
        llm=GroqService(settings=settings),
        tts=ElevenLabsTTSService(settings=settings),
        settings=settings,
        tool_deps=tool_deps,
    )


def parse_media_format(media_format: dict[str, Any], default_rate: int) -> tuple[str, int]:
    """Map Plivo's announced format to (encoding, sample_rate)."""
    encoding = str(media_format.get("encoding", "")).lower()
    sample_rate = int(media_format.get("sampleRate") or default_rate)
    if "mulaw" in encoding or "pcmu" in encoding:
        return "mulaw", sample_rate
    return "linear16", sample_rate


class PlivoAudioSender(AudioSender):
    """Sends synthesized audio back into the Plivo stream."""

    def __init__(
        self,
        websocket: WebSocket,
        stream_id: str,
        *,
        encoding: str = "linear16",
        sample_rate: int = 16000,
    ) -> None:
        self._websocket = websocket
        self._stream_id = stream_id
        self._content_type = "audio/x-mulaw" if encoding == "mulaw" else "audio/x-l16"
        self._sample_rate = sample_rate
        self.chunks_sent = 0

    async def send_audio(self, audio_bytes: bytes) -> None:
        message = {
            "event": "playAudio",
            "media": {
                "contentType": self._content_type,
                "sampleRate": self._sample_rate,
                "payload": base64.b64encode(audio_bytes).decode("ascii"),
            },
        }
        await self._websocket.send_json(message)
        self.chunks_sent += 1


async def audio_stream_endpoint(websocket: WebSocket, call_id: str) -> None:
    """Handle one Plivo media stream.

    Protocol:
    - Receives JSON messages with events: start, media, stop
    - Sends JSON messages with event: playAudio
    """
    state = websocket.app.state
    registry: CallSessionRegistry = state.registry
    settings: Settings = getattr(state, "settings", None) or get_settings()
    store: CallStore = state.store
    session_factory: SessionFactory = getattr(state, "session_factory", build_call_session)

    await websocket.accept()

    entry = await registry.get(call_id)
    if entry is None:
        logger.warning(f"Media stream for unknown call {call_id}; closing")
        await websocket.close(code=1008)
        return

    logger.info(f"WebSocket connected for call {call_id}")
    session: CallSession | None = None
    pipeline: VoicePipeline | None = None
    runner: asyncio.Task[None] | None = None

    try:
        while True:
            try:
                message = json.loads(await websocket.receive_text())
            except json.JSONDecodeError:
                logger.warning(f"Invalid JSON received for call {call_id}")
                continue

            event = message.get("event", "")

            if event == "start":
                if session is not None:
                    continue
                start_data = message.get("start", {})
                stream_id = start_data.get("streamId", call_id)
                encoding, sample_rate = parse_media_format(
                    start_data.get("mediaFormat", {}), settings.plivo_sample_rate
                )
                logger.info(f"Stream started: {stream_id}, {encoding}@{sample_rate}Hz")

                session = session_factory(entry.metadata, settings=settings, store=store)
                await registry.attach(call_id, session, stream_id)
                session.set_telephony_call_id(start_data.get("callId"))
                try:
                    await session.start()
                except VoiceAgentError as e:
                    logger.error(f"Could not start session for call {call_id}: {e}")
                    break

                sender = PlivoAudioSender(
                    websocket, stream_id, encoding=encoding, sample_rate=sample_rate
                )
                pipeline = VoicePipeline(session, sender)
                pipeline.configure(input_sample_rate=sample_rate, input_encoding=encoding)
                runner = asyncio.create_task(pipeline.run(), name=f"pipeline-{call_id}")

            elif event == "media":
                if pipeline is None:
                    continue
                payload = message.get("media", {}).get("payload", "")
                if not payload:
                    continue
                try:
                    pipeline.push_audio(base64.b64decode(payload))
                except (binascii.Error, ValueError):
                    logger.warning(f"Failed to decode audio payload for call {call_id}")

            elif event == "stop":
                logger.info(f"Stream stopped for call {call_id}")
                break

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for call {call_id}")

    except Exception as e:
        logger.error(f"WebSocket error for call {call_id}: {e}")

    finally:
        await _cleanup_call(call_id, registry, session, pipeline, runner)
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close()


async def _cleanup_call(
    call_id: str,
    registry: CallSessionRegistry,
    session: CallSession | None,
    pipeline: VoicePipeline | None,
    runner: asyncio.Task[None] | None,
) -> None:
    """Stop the turn loop, finalize the call and forget it."""
    logger.info(f"Cleaning up call {call_id}")

    if pipeline is not None:
        pipeline.end_audio()
    if session is not None:
        session.stop()
    if runner is not None:
        with contextlib.suppress(asyncio.CancelledError):
            await runner
    if session is not None:
        summary = await session.finalize()
        if summary:
            logger.info(f"Call {call_id} summary: {summary}")

    await registry.remove(call_id)
