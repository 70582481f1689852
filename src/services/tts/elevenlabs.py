"""ElevenLabs TTS service implementation for low-latency phone speech."""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncGenerator, Iterator
from typing import Any

from src.config import Settings, get_settings
from src.logging_config import get_logger
from src.services.tts.exceptions import TTSConnectionError, TTSSynthesisError
from src.services.tts.protocol import AudioChunk, SynthesisMetadata

logger: Any = get_logger(__name__)

ELEVENLABS_DEFAULT_VOICE_ID = "pNInz6obpgDQGcFmaJgB"  # Adam
ELEVENLABS_DEFAULT_MODEL_ID = "eleven_turbo_v2_5"
OPTIMIZE_STREAMING_LATENCY = 3
VOICE_STABILITY = 0.5
VOICE_SIMILARITY_BOOST = 0.75


def output_format_for(audio_format: str, sample_rate: int) -> tuple[str, int, int]:
    """Map the telephony stream format to an ElevenLabs output format.

    Returns:
        Tuple of (output_format, sample_rate, sample_width)
    """
    if audio_format == "mulaw":
        return "ulaw_8000", 8000, 1
    return f"pcm_{sample_rate}", sample_rate, 2


class ElevenLabsTTSService:
    """ElevenLabs TTS service with streaming chunk output.

    Requests raw PCM (or mu-law) in the telephony stream's format so
    chunks can be forwarded without decoding or resampling.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        voice_id: str | None = None,
        model_id: str | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._voice_id = voice_id or self._settings.elevenlabs_voice_id
        self._model_id = model_id or self._settings.elevenlabs_model_id
        self._output_format, self._sample_rate, self._sample_width = output_format_for(
            self._settings.plivo_audio_format, self._settings.plivo_sample_rate
        )
        self._cancel_event: asyncio.Event | None = None
        self._client: Any = None

    @property
    def client(self) -> Any:
        """Lazy initialization of the ElevenLabs client."""
        if self._client is None:
            if not self._settings.elevenlabs_api_key:
                raise TTSConnectionError("ElevenLabs API key is not configured")
            from elevenlabs import ElevenLabs

            self._client = ElevenLabs(
                api_key=self._settings.elevenlabs_api_key.get_secret_value()
            )
        return self._client

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    async def synthesize_stream(
        self,
        text: str,
        *,
        voice: str | None = None,
        chunk_size_ms: int = 100,
    ) -> tuple[AsyncGenerator[AudioChunk, None], SynthesisMetadata]:
        """Synthesize text and return streaming audio chunks."""
        self._cancel_event = asyncio.Event()
        voice_id = voice or self._voice_id

        metadata = SynthesisMetadata(
            model=self._model_id,
            voice=voice_id,
            output_format=self._output_format,
            input_chars=len(text),
        )

        generator = self._synthesize_stream_impl(
            text=text,
            voice_id=voice_id,
            chunk_size_ms=chunk_size_ms,
            metadata=metadata,
        )
        return generator, metadata

    async def _synthesize_stream_impl(
        self,
        *,
        text: str,
        voice_id: str,
        chunk_size_ms: int,
        metadata: SynthesisMetadata,
    ) -> AsyncGenerator[AudioChunk, None]:
        start_time = time.perf_counter()
        bytes_per_ms = (self._sample_rate * self._sample_width) / 1000
        target_chunk_bytes = max(self._sample_width, int(chunk_size_ms * bytes_per_ms))
        # Keep chunks sample-aligned
        target_chunk_bytes -= target_chunk_bytes % self._sample_width

        pending = b""
        try:
            stream = await asyncio.to_thread(self._open_stream, text, voice_id)
            while True:
                if self._cancel_event and self._cancel_event.is_set():
                    logger.debug("ElevenLabs synthesis cancelled")
                    return

                data = await asyncio.to_thread(next, stream, None)
                if data is None:
                    break
                pending += data

                while len(pending) >= target_chunk_bytes:
                    chunk_bytes, pending = (
                        pending[:target_chunk_bytes],
                        pending[target_chunk_bytes:],
                    )
                    yield self._make_chunk(chunk_bytes, metadata, start_time, is_final=False)

            if pending:
                yield self._make_chunk(pending, metadata, start_time, is_final=True)
            elif metadata.output_bytes == 0:
                raise TTSSynthesisError("No audio received from ElevenLabs")

            metadata.total_synthesis_ms = (time.perf_counter() - start_time) * 1000

        except TTSSynthesisError:
            raise
        except Exception as e:
            logger.error(f"ElevenLabs synthesis error: {e}")
            raise TTSConnectionError(f"ElevenLabs connection failed: {e}") from e

    def _make_chunk(
        self,
        chunk_bytes: bytes,
        metadata: SynthesisMetadata,
        start_time: float,
        *,
        is_final: bool,
    ) -> AudioChunk:
        if metadata.first_chunk_ms is None:
            metadata.first_chunk_ms = (time.perf_counter() - start_time) * 1000

        duration_ms = (len(chunk_bytes) / self._sample_width / self._sample_rate) * 1000
        metadata.output_bytes += len(chunk_bytes)
        metadata.output_duration_ms += duration_ms
        return AudioChunk(
            audio_bytes=chunk_bytes,
            sample_rate=self._sample_rate,
            sample_width=self._sample_width,
            duration_ms=duration_ms,
            is_final=is_final,
        )

    def _open_stream(self, text: str, voice_id: str) -> Iterator[bytes]:
        from elevenlabs import VoiceSettings

        audio = self.client.text_to_speech.convert(
            text=text,
            voice_id=voice_id,
            model_id=self._model_id,
            output_format=self._output_format,
            optimize_streaming_latency=OPTIMIZE_STREAMING_LATENCY,
            voice_settings=VoiceSettings(
                stability=VOICE_STABILITY,
                similarity_boost=VOICE_SIMILARITY_BOOST,
            ),
        )
        return iter(audio)

    async def synthesize(
        self,
        text: str,
        *,
        voice: str | None = None,
    ) -> tuple[bytes, SynthesisMetadata]:
        generator, metadata = await self.synthesize_stream(text, voice=voice)
        chunks: list[bytes] = []
        async for chunk in generator:
            chunks.append(chunk.audio_bytes)
        return b"".join(chunks), metadata

    def cancel(self) -> None:
        if self._cancel_event:
            self._cancel_event.set()

    async def close(self) -> None:
        self._cancel_event = None
        self._client = None

    async def health_check(self) -> bool:
        return bool(self._settings.elevenlabs_api_key)
