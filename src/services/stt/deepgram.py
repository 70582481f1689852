"""Deepgram STT service implementation with WebSocket streaming."""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncGenerator, AsyncIterator
from typing import TYPE_CHECKING, Any

from src.config import Settings, get_settings
from src.logging_config import get_logger
from src.services.stt.exceptions import STTConnectionError, STTServiceError
from src.services.stt.protocol import (
    TranscriptEvent,
    TranscriptEventType,
    TranscriptMetadata,
)

if TYPE_CHECKING:
    from deepgram import DeepgramClient
    from deepgram.clients.live import LiveClient

logger: Any = get_logger(__name__)

# Silence after speech that closes an utterance
UTTERANCE_END_MS = 1000

# Give up when the provider is silent this long
RESULT_TIMEOUT_SECONDS = 30.0

BYTES_PER_SAMPLE = {"linear16": 2, "mulaw": 1, "alaw": 1}


class DeepgramService:
    """Deepgram STT service with WebSocket streaming for real-time transcription.

    Tuned for phone conversations:
    - Interim results for low latency
    - Smart formatting and punctuation
    - Voice activity events for speech boundaries
    """

    def __init__(
        self,
        settings: Settings | None = None,
        model: str | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._model = model or self._settings.deepgram_model
        self._client: DeepgramClient | None = None

    @property
    def client(self) -> DeepgramClient:
        """Lazy initialization of Deepgram client."""
        if self._client is None:
            from deepgram import DeepgramClient

            self._client = DeepgramClient(
                api_key=self._settings.deepgram_api_key.get_secret_value(),
            )
        return self._client

    async def transcribe_stream(
        self,
        audio_chunks: AsyncIterator[bytes],
        *,
        sample_rate: int = 16000,
        encoding: str = "linear16",
        channels: int = 1,
        language: str | None = None,
    ) -> tuple[AsyncGenerator[TranscriptEvent, None], TranscriptMetadata]:
        """Open a Deepgram live transcription.

        Returns:
            Tuple of (event generator, metadata populated while streaming)
        """
        metadata = TranscriptMetadata(model=self._model)
        generator = self._stream_events(
            audio_chunks,
            metadata,
            sample_rate=sample_rate,
            encoding=encoding,
            channels=channels,
            language=language or self._settings.deepgram_language,
        )
        return generator, metadata

    async def _stream_events(
        self,
        audio_chunks: AsyncIterator[bytes],
        metadata: TranscriptMetadata,
        *,
        sample_rate: int,
        encoding: str,
        channels: int,
        language: str,
    ) -> AsyncGenerator[TranscriptEvent, None]:
        from deepgram import LiveOptions, LiveTranscriptionEvents

        # Callbacks fire on the SDK's thread; hop back onto our loop
        loop = asyncio.get_running_loop()
        event_queue: asyncio.Queue[TranscriptEvent | None] = asyncio.Queue()
        start_time = time.perf_counter()
        confidence_total = 0.0

        def emit(event: TranscriptEvent | None) -> None:
            loop.call_soon_threadsafe(event_queue.put_nowait, event)

        def on_transcript(self_live: Any, result: Any, **kwargs: Any) -> None:
            """Handle incoming transcription results."""
            nonlocal confidence_total

            try:
                alternatives = result.channel.alternatives
                if not alternatives:
                    return

                alternative = alternatives[0]
                text = alternative.transcript
                if not text:
                    return

                if metadata.first_word_ms is None:
                    metadata.first_word_ms = (time.perf_counter() - start_time) * 1000
                    logger.debug(f"First word latency: {metadata.first_word_ms:.1f}ms")

                words = alternative.words if hasattr(alternative, "words") else []
                confidence = getattr(alternative, "confidence", 0.0) or 0.0
                languages = getattr(alternative, "languages", None)
                event = TranscriptEvent(
                    type=(
                        TranscriptEventType.FINAL
                        if result.is_final
                        else TranscriptEventType.INTERIM
                    ),
                    text=text,
                    confidence=max(0.0, min(1.0, float(confidence))),
                    language=languages[0] if languages else language,
                    start_time=words[0].start if words else 0.0,
                    end_time=words[-1].end if words else 0.0,
                    speech_final=bool(getattr(result, "speech_final", False)),
                )

                if event.is_final:
                    metadata.total_utterances += 1
                    confidence_total += event.confidence
                    metadata.avg_confidence = confidence_total / metadata.total_utterances

                emit(event)

            except Exception as e:
                logger.error(f"Error processing transcription result: {e}")

        def on_speech_started(self_live: Any, speech_started: Any, **kwargs: Any) -> None:
            emit(TranscriptEvent(type=TranscriptEventType.SPEECH_STARTED))

        def on_utterance_end(self_live: Any, utterance_end: Any, **kwargs: Any) -> None:
            emit(TranscriptEvent(type=TranscriptEventType.UTTERANCE_END))

        def on_error(self_live: Any, error: Any, **kwargs: Any) -> None:
            """Provider errors end the stream."""
            logger.error(f"Deepgram WebSocket error: {error}")
            emit(TranscriptEvent(type=TranscriptEventType.ERROR, error=str(error)))
            emit(None)

        def on_close(self_live: Any, close: Any, **kwargs: Any) -> None:
            logger.debug("Deepgram WebSocket closed")
            emit(None)

        options = LiveOptions(
            model=self._model,
            language=language,
            smart_format=True,  # Punctuation, numbers, dates
            punctuate=True,
            interim_results=True,
            utterance_end_ms=str(UTTERANCE_END_MS),
            vad_events=True,
            encoding=encoding,
            sample_rate=sample_rate,
            channels=channels,
        )

        live: LiveClient = self.client.listen.live.v("1")
        live.on(LiveTranscriptionEvents.Transcript, on_transcript)
        live.on(LiveTranscriptionEvents.SpeechStarted, on_speech_started)
        live.on(LiveTranscriptionEvents.UtteranceEnd, on_utterance_end)
        live.on(LiveTranscriptionEvents.Error, on_error)
        live.on(LiveTranscriptionEvents.Close, on_close)

        bytes_per_second = sample_rate * channels * BYTES_PER_SAMPLE.get(encoding, 2)

        async def send_audio() -> None:
            try:
                async for audio_data in audio_chunks:
                    await asyncio.to_thread(live.send, audio_data)
                    metadata.total_audio_seconds += len(audio_data) / bytes_per_second
            except Exception as e:
                logger.error(f"Error sending audio: {e}")
                emit(TranscriptEvent(type=TranscriptEventType.ERROR, error=str(e)))
            finally:
                await asyncio.to_thread(live.finish)
                emit(None)

        send_task: asyncio.Task | None = None
        try:
            try:
                started = await asyncio.to_thread(live.start, options)
            except Exception as e:
                raise STTConnectionError(f"Failed to connect to Deepgram: {e}") from e
            if not started:
                raise STTConnectionError("Failed to connect to Deepgram")

            logger.debug("Deepgram WebSocket connected")
            send_task = asyncio.create_task(send_audio())

            while True:
                try:
                    event = await asyncio.wait_for(
                        event_queue.get(), timeout=RESULT_TIMEOUT_SECONDS
                    )
                except TimeoutError:
                    logger.warning(
                        f"Transcription timeout - no results for {RESULT_TIMEOUT_SECONDS:.0f}s"
                    )
                    yield TranscriptEvent(
                        type=TranscriptEventType.ERROR, error="transcription timeout"
                    )
                    break
                if event is None:
                    break
                yield event
                if event.type is TranscriptEventType.ERROR:
                    break

        except STTConnectionError as e:
            logger.error(f"Deepgram transcription error: {e}")
            yield TranscriptEvent(type=TranscriptEventType.ERROR, error=str(e))

        finally:
            if send_task is not None and not send_task.done():
                send_task.cancel()
            try:  # noqa: SIM105
                await asyncio.to_thread(live.finish)
            except Exception as e:
                logger.debug(f"Deepgram finish after close: {e}")

    async def transcribe_file(
        self,
        audio_data: bytes,
        *,
        sample_rate: int = 16000,
        encoding: str = "linear16",
        language: str | None = None,
    ) -> tuple[str, TranscriptMetadata]:
        """Transcribe a complete audio buffer (non-streaming).

        Args:
            audio_data: Complete audio bytes
            sample_rate: Audio sample rate
            encoding: Audio encoding
            language: Language code

        Returns:
            Tuple of (full transcript, metadata)

        Raises:
            STTServiceError: When the request fails
        """
        from deepgram import PrerecordedOptions

        options = PrerecordedOptions(
            model=self._model,
            language=language or self._settings.deepgram_language,
            smart_format=True,
            punctuate=True,
        )

        start_time = time.perf_counter()
        try:
            response = await asyncio.to_thread(
                self.client.listen.prerecorded.v("1").transcribe_file,
                {"buffer": audio_data, "mimetype": f"audio/{encoding}"},
                options,
            )
        except Exception as e:
            logger.error(f"Deepgram prerecorded request failed: {e}")
            raise STTServiceError(f"Deepgram request failed: {e}") from e
        latency_ms = (time.perf_counter() - start_time) * 1000

        results = response.results
        channels = results.channels if results else []
        transcript = ""
        metadata = TranscriptMetadata(
            model=self._model,
            first_word_ms=latency_ms,
            total_audio_seconds=len(audio_data)
            / (sample_rate * BYTES_PER_SAMPLE.get(encoding, 2)),
        )

        if channels:
            alternatives = channels[0].alternatives
            if alternatives:
                transcript = alternatives[0].transcript
                metadata.avg_confidence = alternatives[0].confidence
                metadata.total_utterances = 1 if transcript else 0

        return transcript, metadata

    async def close(self) -> None:
        """Close the Deepgram client."""
        self._client = None

    async def health_check(self) -> bool:
        """Check if Deepgram API is accessible."""
        try:
            _ = self.client
            return True
        except Exception as e:
            logger.error(f"Deepgram health check failed: {e}")
            return False
