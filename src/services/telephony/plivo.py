"""Plivo telephony service.

Handles:
- XML responses for call flow (stream, dial, hangup)
- Outbound calls, hangups and live call transfer via the Plivo SDK
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal
from xml.etree.ElementTree import Element, SubElement, tostring

from src.config import Settings, get_settings
from src.errors import IntegrationError
from src.logging_config import get_logger, mask_phone

if TYPE_CHECKING:
    import plivo

logger: Any = get_logger(__name__)

TELEPHONY_SAMPLE_RATE = 8000
WIDEBAND_SAMPLE_RATE = 16000


@dataclass(frozen=True, slots=True)
class PlivoCallInfo:
    """Information about a Plivo call from webhook form data."""

    call_uuid: str
    from_number: str
    to_number: str
    direction: Literal["inbound", "outbound"]
    status: str = "initiated"
    duration_seconds: int = 0
    hangup_cause: str = ""
    request_uuid: str = ""  # Outbound only: id returned when the call was placed

    @classmethod
    def from_webhook(cls, form_data: dict[str, str]) -> PlivoCallInfo:
        """Create from Plivo webhook form data."""
        duration = form_data.get("Duration", "0") or "0"
        return cls(
            call_uuid=form_data.get("CallUUID", ""),
            from_number=form_data.get("From", ""),
            to_number=form_data.get("To", ""),
            direction=form_data.get("Direction", "inbound"),  # type: ignore[arg-type]
            status=form_data.get("CallStatus", "initiated"),
            duration_seconds=int(duration) if duration.isdigit() else 0,
            hangup_cause=form_data.get("HangupCause", ""),
            request_uuid=form_data.get("RequestUUID", ""),
        )


def stream_content_type(audio_format: str, sample_rate: int) -> str:
    """Plivo stream contentType for the configured audio format."""
    if audio_format == "mulaw":
        return f"audio/x-mulaw;rate={TELEPHONY_SAMPLE_RATE}"
    return f"audio/x-l16;rate={sample_rate}"


def _render(response: Element) -> str:
    xml_str = tostring(response, encoding="unicode")
    return f'<?xml version="1.0" encoding="UTF-8"?>{xml_str}'


class PlivoService:
    """Service for Plivo telephony operations."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._client: plivo.RestClient | None = None

    @property
    def client(self) -> plivo.RestClient:
        """Lazy-initialize Plivo REST client."""
        if self._client is None:
            import plivo

            self._client = plivo.RestClient(
                auth_id=self._settings.plivo_auth_id,
                auth_token=self._settings.plivo_auth_token.get_secret_value(),
            )
        return self._client

    def generate_stream_xml(
        self,
        websocket_url: str,
        *,
        greeting: str | None = None,
        bidirectional: bool = True,
        audio_track: str = "inbound",
        content_type: str = "audio/x-l16;rate=16000",
        stream_timeout: int = 3600,
    ) -> str:
        """Generate Plivo XML that opens the bidirectional audio stream.

        Args:
            websocket_url: WebSocket URL for audio stream
            greeting: Optional line-level greeting spoken before streaming
            bidirectional: Enable bidirectional audio
            audio_track: Which audio track to stream (inbound/outbound/both)
            content_type: Audio content type
            stream_timeout: Stream timeout in seconds
        """
        response = Element("Response")

        if greeting:
            speak = SubElement(response, "Speak")
            speak.text = greeting

        stream = SubElement(response, "Stream")
        stream.set("bidirectional", str(bidirectional).lower())
        stream.set("keepCallAlive", "true")
        stream.set("audioTrack", audio_track)
        stream.set("contentType", content_type)
        stream.set("streamTimeout", str(stream_timeout))
        stream.text = websocket_url

        return _render(response)

    def generate_dial_xml(self, number: str, *, caller_id: str | None = None) -> str:
        """Generate Plivo XML that bridges the caller to a human."""
        response = Element("Response")
        dial = SubElement(response, "Dial")
        if caller_id:
            dial.set("callerId", caller_id)
        target = SubElement(dial, "Number")
        target.text = number
        return _render(response)

    def generate_hangup_xml(self, reason: str = "") -> str:
        """Generate Plivo XML to hang up, optionally speaking a reason first."""
        response = Element("Response")

        if reason:
            speak = SubElement(response, "Speak")
            speak.text = reason

        SubElement(response, "Hangup")
        return _render(response)

    async def make_call(
        self,
        from_number: str,
        to_number: str,
        answer_url: str,
        *,
        hangup_url: str | None = None,
    ) -> str:
        """Place an outbound call.

        Returns:
            Plivo request UUID for the new call

        Raises:
            IntegrationError: When the API rejects the call
        """
        params: dict[str, Any] = {
            "from_": from_number,
            "to_": to_number,
            "answer_url": answer_url,
            "answer_method": "POST",
        }
        if hangup_url:
            params["hangup_url"] = hangup_url
            params["hangup_method"] = "POST"

        try:
            response = await asyncio.to_thread(lambda: self.client.calls.create(**params))
        except Exception as e:
            logger.error(f"Plivo outbound call to {mask_phone(to_number)} failed: {e}")
            raise IntegrationError("plivo", f"outbound call failed: {e}") from e

        return str(response.request_uuid)

    async def transfer_call(self, call_uuid: str, transfer_url: str) -> None:
        """Redirect the caller's leg to XML served at transfer_url.

        Raises:
            IntegrationError: When the redirect fails
        """
        try:
            await asyncio.to_thread(
                lambda: self.client.calls.transfer(
                    call_uuid=call_uuid,
                    legs="aleg",
                    aleg_url=transfer_url,
                    aleg_method="POST",
                )
            )
        except Exception as e:
            logger.warning(f"Plivo transfer of {call_uuid} failed: {e}")
            raise IntegrationError("plivo", f"transfer failed: {e}") from e

        logger.info(f"Call {call_uuid} redirected for transfer")

    async def hangup_call(self, call_uuid: str) -> bool:
        """Hang up an active call.

        Returns:
            True if successful
        """
        try:
            await asyncio.to_thread(lambda: self.client.calls.delete(call_uuid))
            return True
        except Exception as e:
            logger.error(f"Failed to hangup call {call_uuid}: {e}")
            return False

    async def health_check(self) -> bool:
        """Check Plivo API connectivity."""
        try:
            await asyncio.to_thread(lambda: self.client.account.get())
            return True
        except Exception as e:
            logger.warning(f"Plivo health check failed: {e}")
            return False
