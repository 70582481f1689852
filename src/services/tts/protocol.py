"""TTS (Text-to-Speech) service protocol and data types."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol


@dataclass(frozen=True, slots=True)
class AudioChunk:
    """A chunk of synthesized audio.

    Audio is yielded as chunks for streaming playback.
    Each chunk holds raw audio bytes ready for transmission.
    """

    audio_bytes: bytes
    sample_rate: int = 16000
    sample_width: int = 2  # Bytes per sample (2 for 16-bit PCM, 1 for mu-law)
    channels: int = 1
    duration_ms: float = 0.0  # Duration of this chunk
    is_final: bool = False  # True for last chunk
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class SynthesisMetadata:
    """Metadata collected during/after synthesis."""

    model: str = ""
    voice: str = ""
    output_format: str = ""
    input_chars: int = 0
    output_bytes: int = 0
    output_duration_ms: float = 0.0
    first_chunk_ms: float | None = None  # Latency to first audio
    total_synthesis_ms: float | None = None


class TTSService(Protocol):
    """Synthesizer capability."""

    async def synthesize_stream(
        self,
        text: str,
        *,
        voice: str | None = None,
        chunk_size_ms: int = 100,
    ) -> tuple[AsyncGenerator[AudioChunk, None], SynthesisMetadata]:
        """Synthesize text to streaming audio.

        Args:
            text: Text to speak
            voice: Voice identifier (tenant voice); service default if None
            chunk_size_ms: Target duration per chunk

        Returns:
            Tuple of (audio chunk generator, metadata object).
            Metadata is complete after generator exhaustion.
        """
        ...

    async def synthesize(
        self,
        text: str,
        *,
        voice: str | None = None,
    ) -> tuple[bytes, SynthesisMetadata]:
        """Synthesize text to a complete audio buffer.

        Same bytes as concatenating the streaming chunks.
        """
        ...

    async def close(self) -> None:
        """Close any open connections and clean up resources."""
        ...

    async def health_check(self) -> bool:
        """Check if the service is operational."""
        ...
