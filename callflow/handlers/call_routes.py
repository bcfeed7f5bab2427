"""
Dashboard call endpoints.

The client status synchronizer polls ``GET /calls/{id}/status`` until the call
is connected or finished, and uses ``POST /calls/{id}/hangup`` to end it.
Responses never include the correlation token, and the signed URL is only
returned while the call is connected.
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query

from callflow.config.constants import LOGGER_NAME
from callflow.config.settings import Settings
from callflow.errors import Failure, InvalidRequestError
from callflow.handlers.dependencies import (
    get_agents,
    get_bridge,
    get_reconciler,
    get_settings_dep,
    get_user_id,
)
from callflow.models.api_schemas import (
    CallListResponse,
    CallStatusResponse,
    CallSummary,
    HangupResponse,
    InitiateCallRequest,
    InitiateCallResponse,
    SignedUrlResponse,
)
from callflow.reconciler.service import CallReconciler
from callflow.services.agent_directory import AgentDirectory
from callflow.services.voice_session_bridge import VoiceSessionBridge

logger = logging.getLogger(LOGGER_NAME)

router = APIRouter(tags=["calls"])


@router.post("/calls", response_model=InitiateCallResponse)
async def initiate_call(
    body: InitiateCallRequest,
    user_id: str = Depends(get_user_id),
    reconciler: CallReconciler = Depends(get_reconciler),
    agents: AgentDirectory = Depends(get_agents),
):
    """
    Place an outbound call with a voice agent.

    Provider failures are not errors here: the call is returned with status
    ``failed`` and a short reason.
    """
    agent = agents.get(body.agentId)
    if agent.disabled:
        raise InvalidRequestError(f"Agent {agent.agent_id} is disabled")

    record = await reconciler.place_call(
        voice_agent_id=agent.agent_id,
        phone_number=body.phoneNumber,
        user_id=user_id,
        agent_name=agent.name,
        contact_name=body.contactName,
        custom_message=body.customMessage,
    )

    message = "Call failed" if record.is_terminal else "Call initiated"
    return InitiateCallResponse(
        message=message,
        callId=record.id,
        externalCallId=record.external_call_id,
        initialStatus=record.status.value,
        failureReason=record.failure_reason,
    )


@router.get("/calls", response_model=CallListResponse)
async def list_calls(
    limit: int = Query(10, ge=1, le=100),
    user_id: str = Depends(get_user_id),
    reconciler: CallReconciler = Depends(get_reconciler),
):
    records = await reconciler.store.list_for_user(user_id, limit=limit)
    return CallListResponse(calls=[CallSummary.from_record(r) for r in records])


@router.get("/calls/{call_id}", response_model=CallSummary)
async def get_call(
    call_id: str,
    user_id: str = Depends(get_user_id),
    reconciler: CallReconciler = Depends(get_reconciler),
):
    record = await reconciler.get_call(call_id, user_id)
    return CallSummary.from_record(record)


@router.get("/calls/{call_id}/status", response_model=CallStatusResponse)
async def get_call_status(
    call_id: str,
    user_id: str = Depends(get_user_id),
    reconciler: CallReconciler = Depends(get_reconciler),
):
    record = await reconciler.get_call(call_id, user_id)
    return CallStatusResponse.from_record(record)


@router.post("/calls/{call_id}/hangup", response_model=HangupResponse)
async def hangup_call(
    call_id: str,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_user_id),
    reconciler: CallReconciler = Depends(get_reconciler),
):
    """
    End a call.

    The record is marked ended right away; the provider is told to terminate
    the call after the response is sent.
    """
    before = await reconciler.get_call(call_id, user_id)
    if before.is_terminal:
        return HangupResponse(accepted=True, message=f"Call already {before.status.value}")

    record = await reconciler.request_hangup(call_id, user_id)
    if record.external_call_id:
        background_tasks.add_task(reconciler.terminate_provider_call, record.external_call_id)
    return HangupResponse(accepted=True, message="Hangup requested")


@router.get("/signed-url", response_model=SignedUrlResponse)
async def get_signed_url(
    agentId: Optional[str] = Query(None),
    settings: Settings = Depends(get_settings_dep),
    bridge: VoiceSessionBridge = Depends(get_bridge),
):
    """Mint a conversation URL for a browser test call without a phone leg."""
    agent_id = agentId or settings.default_agent_id
    if not agent_id:
        raise InvalidRequestError("No agent id given and DEFAULT_AGENT_ID is not set")

    result = await bridge.acquire_stream_credential(agent_id)
    if isinstance(result, Failure):
        raise result.to_exception()
    return SignedUrlResponse(signedUrl=result)
