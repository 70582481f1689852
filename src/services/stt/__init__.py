"""Speech-to-Text services (Deepgram)."""

from src.services.stt.deepgram import DeepgramService
from src.services.stt.exceptions import STTConnectionError, STTServiceError
from src.services.stt.protocol import (
    STTService,
    TranscriptEvent,
    TranscriptEventType,
    TranscriptMetadata,
)

__all__ = [
    "DeepgramService",
    "STTService",
    "TranscriptEvent",
    "TranscriptEventType",
    "TranscriptMetadata",
    "STTServiceError",
    "STTConnectionError",
]
