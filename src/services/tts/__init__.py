"""Text-to-Speech services (ElevenLabs)."""

from src.services.tts.elevenlabs import ElevenLabsTTSService
from src.services.tts.exceptions import (
    TTSConnectionError,
    TTSServiceError,
    TTSSynthesisError,
)
from src.services.tts.protocol import AudioChunk, SynthesisMetadata, TTSService

__all__ = [
    # Services
    "ElevenLabsTTSService",
    # Protocol
    "TTSService",
    # Data types
    "AudioChunk",
    "SynthesisMetadata",
    # Exceptions
    "TTSServiceError",
    "TTSSynthesisError",
    "TTSConnectionError",
]
