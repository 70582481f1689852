"""Call endpoints.

- Place an outbound call answered by the agent
- Read a call record with its transcript and costs
"""

from __future__ import annotations

from typing import Any
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from src.api.dependencies import get_app_settings, get_plivo_service, get_store
from src.config import Settings
from src.db.models import Call, CallDirection, CallStatus
from src.db.store import CallStore
from src.errors import IntegrationError
from src.logging_config import get_logger, mask_phone
from src.observability.metrics import record_integration_failure
from src.services.telephony.plivo import PlivoService

router = APIRouter(prefix="/calls", tags=["Calls"])
logger: Any = get_logger(__name__)


# =============================================================================
# Schemas
# =============================================================================


class OutboundCallRequest(BaseModel):
    business_id: str
    to_number: str = Field(min_length=3, max_length=20)
    from_number: str | None = Field(default=None, max_length=20)


class OutboundCallResponse(BaseModel):
    call_id: str
    telephony_call_id: str
    status: CallStatus


class CallResponse(BaseModel):
    """Call record as exposed over the API."""

    id: str
    business_id: str
    direction: CallDirection
    status: CallStatus
    outcome: str | None
    outcome_history: list[str]
    started_at: str
    ended_at: str | None
    duration_seconds: int | None
    transferred_to_human: bool
    transcript: list[dict[str, Any]]
    costs: dict[str, int]

    @classmethod
    def from_call(cls, call: Call) -> CallResponse:
        return cls(
            id=call.id,
            business_id=call.business_id,
            direction=call.direction,
            status=call.status,
            outcome=call.outcome.value if call.outcome else None,
            outcome_history=call.outcome_history,
            started_at=call.started_at.isoformat(),
            ended_at=call.ended_at.isoformat() if call.ended_at else None,
            duration_seconds=call.duration_seconds,
            transferred_to_human=call.transferred_to_human,
            transcript=call.transcript,
            costs={
                "stt": call.cost_stt,
                "llm": call.cost_llm,
                "tts": call.cost_tts,
                "telephony": call.cost_telephony,
                "total": call.cost_total,
            },
        )


# =============================================================================
# Endpoints
# =============================================================================


@router.post("/outbound", response_model=OutboundCallResponse, status_code=201)
async def place_outbound_call(
    request: OutboundCallRequest,
    store: CallStore = Depends(get_store),
    plivo: PlivoService = Depends(get_plivo_service),
    settings: Settings = Depends(get_app_settings),
) -> OutboundCallResponse:
    """Dial `to_number` from one of the tenant's lines and attach the agent."""
    business = await store.get_business(request.business_id)
    if not business:
        raise HTTPException(status_code=404, detail="Business not found")

    if request.from_number:
        line = await store.get_phone_number(request.from_number)
        if line is None or line.business_id != business.id:
            raise HTTPException(
                status_code=400, detail="from_number is not a line of this business"
            )
    else:
        line = await store.get_primary_phone_number(business.id)
        if line is None:
            raise HTTPException(status_code=400, detail="Business has no active phone number")

    call_id = str(uuid4())
    await store.create_call(
        id=call_id,
        business_id=business.id,
        phone_number_id=line.id,
        direction=CallDirection.outbound,
        from_number=line.phone_number,
        to_number=request.to_number,
        session_name=f"call-{call_id}",
        status=CallStatus.in_progress,
    )

    base = settings.public_base_url.rstrip("/")
    try:
        request_uuid = await plivo.make_call(
            line.phone_number,
            request.to_number,
            f"{base}/api/plivo/webhook/answer",
            hangup_url=f"{base}/api/plivo/webhook/hangup",
        )
    except IntegrationError as e:
        record_integration_failure(e.integration)
        await store.update_call(call_id, status=CallStatus.failed, notes=str(e))
        raise HTTPException(status_code=502, detail="Could not place the call") from e

    call = await store.update_call(call_id, telephony_call_id=request_uuid)
    logger.info(f"Outbound call {call_id} placed to {mask_phone(request.to_number)}")
    return OutboundCallResponse(
        call_id=call.id,
        telephony_call_id=request_uuid,
        status=call.status,
    )


@router.get("/{call_id}", response_model=CallResponse)
async def get_call(
    call_id: str,
    store: CallStore = Depends(get_store),
) -> CallResponse:
    call = await store.get_call(call_id)
    if not call:
        raise HTTPException(status_code=404, detail="Call not found")
    return CallResponse.from_call(call)
