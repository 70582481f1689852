"""Telephony services (Plivo).

- PlivoService: XML generation, outbound calls, live transfer
"""

from src.services.telephony.plivo import (
    TELEPHONY_SAMPLE_RATE,
    WIDEBAND_SAMPLE_RATE,
    PlivoCallInfo,
    PlivoService,
    stream_content_type,
)

__all__ = [
    # Service
    "PlivoService",
    # Data classes
    "PlivoCallInfo",
    # Helpers
    "stream_content_type",
    # Constants
    "TELEPHONY_SAMPLE_RATE",
    "WIDEBAND_SAMPLE_RATE",
]
