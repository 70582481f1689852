"""STT (Speech-to-Text) service protocol and data types."""

from __future__ import annotations

from collections.abc import AsyncGenerator, AsyncIterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, auto
from typing import Protocol


class TranscriptEventType(Enum):
    """Kinds of events a transcription stream produces."""

    INTERIM = auto()  # Partial hypothesis, may still change
    FINAL = auto()  # Committed text for a segment
    SPEECH_STARTED = auto()  # Voice activity began
    UTTERANCE_END = auto()  # Silence after speech
    ERROR = auto()  # Provider failed; the stream ends after this


@dataclass(frozen=True, slots=True)
class TranscriptEvent:
    """One event from a transcription stream.

    Text events carry the recognized words with a confidence in [0, 1]
    and the language tag reported by the provider.
    """

    type: TranscriptEventType
    text: str = ""
    confidence: float = 0.0
    language: str = "en-US"
    start_time: float = 0.0  # seconds from stream start
    end_time: float = 0.0  # seconds from stream start
    speech_final: bool = False  # True when the provider detected an endpoint
    error: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_final(self) -> bool:
        return self.type is TranscriptEventType.FINAL


@dataclass
class TranscriptMetadata:
    """Usage and quality numbers collected during transcription."""

    model: str = ""
    total_audio_seconds: float = 0.0
    total_utterances: int = 0
    avg_confidence: float = 0.0
    first_word_ms: float | None = None  # Time to first word


class STTService(Protocol):
    """Transcriber capability."""

    async def transcribe_stream(
        self,
        audio_chunks: AsyncIterator[bytes],
        *,
        sample_rate: int = 16000,
        encoding: str = "linear16",
        channels: int = 1,
        language: str = "en-US",
    ) -> tuple[AsyncGenerator[TranscriptEvent, None], TranscriptMetadata]:
        """Open a streaming transcription.

        Args:
            audio_chunks: Async iterator yielding raw audio bytes
            sample_rate: Audio sample rate in Hz
            encoding: Audio encoding (linear16, mulaw)
            channels: Number of audio channels (1 for mono)
            language: Language code

        Returns:
            Tuple of (event generator, metadata populated while streaming).
            The generator is single-use; on provider failure it yields one
            ERROR event and stops instead of raising.
        """
        ...

    async def transcribe_file(
        self,
        audio_data: bytes,
        *,
        sample_rate: int = 16000,
        encoding: str = "linear16",
        language: str = "en-US",
    ) -> tuple[str, TranscriptMetadata]:
        """Transcribe a complete audio buffer in one request."""
        ...

    async def close(self) -> None:
        """Close any open connections and clean up resources."""
        ...

    async def health_check(self) -> bool:
        """Check if the service is operational."""
        ...
