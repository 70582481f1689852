"""Plivo webhook handlers for call lifecycle management.

Handles:
- Answer webhook: creates the call row and returns XML that opens the
  bidirectional media stream
- Hangup webhook: records the carrier's view and stops the session
- Transfer XML: bridges a redirected caller to a human
- Fallback webhook: apologizes and hangs up
"""

from __future__ import annotations

from typing import Any
from uuid import uuid4

from fastapi import APIRouter, Depends, Query, Request, Response

from src.api.dependencies import get_app_settings, get_plivo_service, get_registry, get_store
from src.api.websocket.audio_stream import CallCapacityError, CallSessionRegistry
from src.config import Settings
from src.core.session import SessionMetadata
from src.db.models import CallDirection, CallEventType, CallStatus
from src.db.store import CallStore
from src.errors import VoiceAgentError
from src.logging_config import get_logger, mask_phone
from src.services.telephony.plivo import PlivoCallInfo, PlivoService, stream_content_type

router = APIRouter(prefix="/plivo", tags=["Plivo"])
logger: Any = get_logger(__name__)

UNCONFIGURED_MESSAGE = "Sorry, this number is not in service. Goodbye."
BUSY_MESSAGE = "All of our lines are busy right now. Please call back in a few minutes."
ERROR_MESSAGE = "Sorry, we're having technical difficulties. Please call back later."


def _xml(content: str) -> Response:
    return Response(content=content, media_type="application/xml")


async def _form(request: Request) -> dict[str, str]:
    form_data = await request.form()
    return {k: str(v) for k, v in form_data.items()}


def websocket_url(request: Request, settings: Settings, call_id: str) -> str:
    """wss:// URL of the media stream, honoring proxy headers."""
    host = request.headers.get("x-forwarded-host") or request.headers.get("host")
    if host:
        proto = request.headers.get("x-forwarded-proto", request.url.scheme)
    else:
        base = settings.public_base_url.rstrip("/")
        proto, _, host = base.partition("://")
    scheme = "wss" if proto == "https" else "ws"
    return f"{scheme}://{host}/ws/audio/{call_id}"


@router.post("/webhook/answer")
async def plivo_answer_webhook(
    request: Request,
    plivo: PlivoService = Depends(get_plivo_service),
    settings: Settings = Depends(get_app_settings),
    store: CallStore = Depends(get_store),
    registry: CallSessionRegistry = Depends(get_registry),
) -> Response:
    """Handle an answered call.

    Expected form data:
    - CallUUID: Carrier call identifier
    - From: Caller phone number
    - To: Called phone number
    - Direction: inbound/outbound
    """
    call_info = PlivoCallInfo.from_webhook(await _form(request))
    logger.info(
        f"Call answered: {call_info.call_uuid} "
        f"({call_info.direction}, to={mask_phone(call_info.to_number)})"
    )

    # Outbound legs were created by the calls API; reuse that row
    call = None
    request_uuid = call_info.request_uuid or call_info.call_uuid
    if call_info.direction == "outbound" and request_uuid:
        try:
            call = await store.get_call_by_telephony_id(request_uuid)
            if call is not None and call_info.call_uuid:
                call = await store.update_call(
                    call.id,
                    telephony_call_id=call_info.call_uuid,
                    telephony_status=call_info.status,
                )
        except VoiceAgentError as e:
            logger.error(f"Failed to look up outbound call {request_uuid}: {e}")

    if call is None:
        # Never route an unknown number to some default tenant
        number = call_info.from_number if call_info.direction == "outbound" else call_info.to_number
        phone_number = None
        if number:
            try:
                phone_number = await store.get_phone_number(number)
            except VoiceAgentError as e:
                logger.error(f"Failed to resolve phone number: {e}")

        if phone_number is None or not phone_number.is_active:
            logger.error(
                f"Call {call_info.call_uuid} rejected: no business for {mask_phone(number)}"
            )
            return _xml(plivo.generate_hangup_xml(reason=UNCONFIGURED_MESSAGE))

        call_id = str(uuid4())
        try:
            call = await store.create_call(
                id=call_id,
                business_id=phone_number.business_id,
                phone_number_id=phone_number.id,
                direction=CallDirection.inbound,
                from_number=call_info.from_number or None,
                to_number=call_info.to_number or None,
                session_name=f"call-{call_id}",
                telephony_call_id=call_info.call_uuid or None,
                telephony_status=call_info.status,
                status=CallStatus.in_progress,
            )
        except VoiceAgentError as e:
            logger.error(f"Failed to create call row for {call_info.call_uuid}: {e}")
            return _xml(plivo.generate_hangup_xml(reason=ERROR_MESSAGE))

    caller_phone = (
        call.to_number if call.direction == CallDirection.outbound else call.from_number
    )
    metadata = SessionMetadata(
        business_id=call.business_id,
        call_id=call.id,
        caller_phone=caller_phone,
        telephony_call_id=call_info.call_uuid or call.telephony_call_id,
    )

    try:
        await registry.register(metadata)
    except CallCapacityError:
        logger.warning(f"Call {call_info.call_uuid} rejected: system at capacity")
        await store.update_call(call.id, status=CallStatus.abandoned, telephony_status="rejected")
        return _xml(plivo.generate_hangup_xml(reason=BUSY_MESSAGE))

    try:
        await store.append_call_event(
            call.id,
            CallEventType.call_started.value,
            {"direction": call.direction.value, "telephony_call_id": call_info.call_uuid},
        )
    except VoiceAgentError as e:
        logger.warning(f"Failed to record call_started for {call.id}: {e}")

    xml_response = plivo.generate_stream_xml(
        websocket_url=websocket_url(request, settings, call.id),
        bidirectional=True,
        content_type=stream_content_type(settings.plivo_audio_format, settings.plivo_sample_rate),
    )
    logger.debug(f"Returning stream XML for call {call.id}")
    return _xml(xml_response)


@router.post("/webhook/hangup")
async def plivo_hangup_webhook(
    request: Request,
    store: CallStore = Depends(get_store),
    registry: CallSessionRegistry = Depends(get_registry),
) -> dict[str, bool]:
    """Handle the carrier's hangup notification.

    Expected form data:
    - CallUUID: Carrier call identifier
    - Duration: Billed duration in seconds
    - HangupCause: Reason for hangup
    - CallStatus: Final carrier status
    """
    call_info = PlivoCallInfo.from_webhook(await _form(request))
    logger.info(
        f"Call ended: {call_info.call_uuid} "
        f"(duration={call_info.duration_seconds}s, cause={call_info.hangup_cause})"
    )

    call = None
    if call_info.call_uuid:
        call = await store.get_call_by_telephony_id(call_info.call_uuid)
    if call is None:
        logger.warning(f"Hangup for unknown call {call_info.call_uuid}")
        return {"ok": False}

    await store.update_call(call.id, telephony_status=call_info.hangup_cause or call_info.status)

    entry = await registry.get(call.id)
    if entry and entry.session is not None:
        # The media handler finalizes once the stream closes
        entry.session.stop()
        entry.session.accountant.record_telephony_duration(call_info.duration_seconds)
    else:
        # Media never connected
        if entry:
            await registry.remove(call.id)
        if call.status == CallStatus.in_progress:
            await store.update_call(
                call.id,
                status=CallStatus.abandoned,
                duration_seconds=call_info.duration_seconds,
            )

    return {"ok": True}


@router.post("/transfer")
async def plivo_transfer_xml(
    to: str = Query(..., min_length=3),
    plivo: PlivoService = Depends(get_plivo_service),
) -> Response:
    """Bridge the redirected caller leg to the forwarding number."""
    logger.info(f"Serving transfer XML to {mask_phone(to)}")
    return _xml(plivo.generate_dial_xml(to))


@router.post("/webhook/fallback")
async def plivo_fallback_webhook(
    request: Request,
    plivo: PlivoService = Depends(get_plivo_service),
) -> Response:
    """Called by Plivo when the answer webhook fails."""
    form = await _form(request)
    logger.error(
        f"Plivo fallback triggered: {form.get('CallUUID', '')} - "
        f"{form.get('ErrorMessage', 'Unknown error')}"
    )
    return _xml(plivo.generate_hangup_xml(reason=ERROR_MESSAGE))
