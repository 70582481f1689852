"""WebSocket handlers for real-time audio streaming.

- audio_stream_endpoint: Plivo media stream handler
- CallSessionRegistry: calls accepted by this process
"""

from src.api.websocket.audio_stream import (
    CallCapacityError,
    CallSessionEntry,
    CallSessionRegistry,
    PlivoAudioSender,
    audio_stream_endpoint,
    build_call_session,
    parse_media_format,
)

__all__ = [
    "audio_stream_endpoint",
    "build_call_session",
    "parse_media_format",
    "CallCapacityError",
    "CallSessionRegistry",
    "CallSessionEntry",
    "PlivoAudioSender",
]
