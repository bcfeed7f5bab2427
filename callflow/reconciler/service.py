"""
Call reconciler service.

Owns every write to call records. Provider callbacks, placement results,
streaming credentials and user hangups all arrive here as LifecycleEvents, are
merged with ``advance`` and persisted with a conditional update. A lost race
with a concurrent delivery for the same call is retried against the fresh
record.
"""

import asyncio
import logging
from typing import Any, Dict, Mapping, Optional

from callflow.config.constants import (
    LOGGER_NAME,
    MAX_UPDATE_ATTEMPTS,
    TELEPHONY_UNREACHABLE_REASON,
)
from callflow.config.settings import Settings
from callflow.errors import (
    CallNotFoundError,
    Failure,
    FailureKind,
    InternalInconsistency,
    StateConflict,
)
from callflow.models.call_record import CallRecord, CallStatus, utcnow
from callflow.models.lifecycle_events import (
    AnsweredEvent,
    BaseEvent,
    CallAcceptedEvent,
    CredentialAcquiredEvent,
    CredentialFailedEvent,
    HangupRequestedEvent,
    TerminalEvent,
)
from callflow.reconciler.state_machine import advance
from callflow.services.call_store import CallRecordStore
from callflow.services.telephony_gateway import ExotelGateway, encode_correlation_token
from callflow.services.voice_session_bridge import (
    VoiceSessionBridge,
    build_hangup_directive,
    build_stream_instruction,
)

logger = logging.getLogger(LOGGER_NAME)


class CallReconciler:
    """
    Applies lifecycle events to call records and drives the provider calls
    around them.

    Attributes:
        store: Call record repository
        gateway: Telephony provider adapter
        bridge: Voice API adapter
        settings: Timeouts and retry backoff
    """

    def __init__(
        self,
        store: CallRecordStore,
        gateway: ExotelGateway,
        bridge: VoiceSessionBridge,
        settings: Settings,
    ):
        self.store = store
        self.gateway = gateway
        self.bridge = bridge
        self.settings = settings
        # In-flight credential requests keyed by call id
        self._credential_tasks: Dict[str, asyncio.Task] = {}

    async def _resolve(self, event: BaseEvent) -> CallRecord:
        """Find the record an event belongs to: correlation token first, then provider call id."""
        if event.internal_call_id:
            try:
                return await self.store.get(event.internal_call_id)
            except CallNotFoundError:
                logger.warning(
                    f"Correlated call {event.internal_call_id} not found, "
                    f"trying provider call id {event.source_call_id}"
                )

        if event.source_call_id:
            record = await self.store.find_by_external_id(event.source_call_id)
            if record is not None:
                return record

        raise InternalInconsistency(
            f"Cannot correlate {event.kind} event (provider call id {event.source_call_id})"
        )

    async def apply(self, event: BaseEvent) -> CallRecord:
        """
        Merge one event into its call record and persist the result.

        Returns:
            The record after the event (unchanged when the event was ignored)

        Raises:
            InternalInconsistency: If the event cannot be correlated to any record
            StateConflict: If the record kept changing underneath us
        """
        record = await self._resolve(event)
        logger.debug(f"Applying {event.kind} event to call {record.id}: {event.model_dump()}")

        for _ in range(MAX_UPDATE_ATTEMPTS):
            updated = advance(record, event)
            if updated is record:
                if record.is_terminal:
                    logger.info(
                        f"Dropped {event.kind} event ({event.raw_status}) for call "
                        f"{record.id} already {record.status.value}"
                    )
                else:
                    logger.info(
                        f"Ignored {event.kind} event ({event.raw_status}) for call "
                        f"{record.id} in status {record.status.value}"
                    )
                return record

            changes = _changed_fields(record, updated)
            result = await self.store.update_status(record.id, {record.status}, changes)
            if result is not None:
                if result.status != record.status:
                    logger.info(
                        f"Call {record.id}: {record.status.value} -> {result.status.value} "
                        f"on {event.kind}"
                    )
                return result

            record = await self.store.get(record.id)

        raise StateConflict(
            f"Call {record.id} changed concurrently {MAX_UPDATE_ATTEMPTS} times; "
            f"{event.kind} event not applied"
        )

    async def get_call(self, call_id: str, user_id: Optional[str] = None) -> CallRecord:
        """Return a call, hiding calls owned by other users."""
        record = await self.store.get(call_id)
        if user_id is not None and record.user_id != user_id:
            raise CallNotFoundError(f"Call not found: {call_id}")
        return record

    async def place_call(
        self,
        *,
        voice_agent_id: str,
        phone_number: str,
        user_id: str = "anonymous",
        agent_name: Optional[str] = None,
        contact_name: Optional[str] = None,
        custom_message: Optional[str] = None,
    ) -> CallRecord:
        """
        Create a call record and ask the provider to dial.

        Provider failures do not raise: the record is persisted as ``failed``
        with a reason. An unreachable provider is retried once after
        ``telephony_retry_backoff`` seconds.
        """
        record = await self.store.create(
            user_id=user_id,
            voice_agent_id=voice_agent_id,
            agent_name=agent_name,
            phone_number=phone_number,
            contact_name=contact_name,
            custom_message=custom_message,
            status=CallStatus.INITIATING,
            call_start_time=utcnow(),
        )
        logger.info(f"Initiating call {record.id} to {phone_number} with agent {voice_agent_id}")

        token = encode_correlation_token(record.id, voice_agent_id)
        result = await self.gateway.place_call(phone_number, token)
        if isinstance(result, Failure) and result.kind == FailureKind.UNREACHABLE:
            logger.warning(
                f"Telephony unreachable for call {record.id}, retrying in "
                f"{self.settings.telephony_retry_backoff}s"
            )
            await asyncio.sleep(self.settings.telephony_retry_backoff)
            result = await self.gateway.place_call(phone_number, token)
            if isinstance(result, Failure) and result.kind == FailureKind.UNREACHABLE:
                result = Failure(kind=FailureKind.UNREACHABLE, reason=TELEPHONY_UNREACHABLE_REASON)

        if isinstance(result, Failure):
            logger.warning(f"Call {record.id} could not be placed: {result.reason}")
            return await self.apply(
                TerminalEvent(
                    internal_call_id=record.id,
                    voice_agent_id=voice_agent_id,
                    raw_status="failed",
                    error_detail=result.reason,
                )
            )

        record = await self.apply(
            CallAcceptedEvent(
                internal_call_id=record.id,
                voice_agent_id=voice_agent_id,
                source_call_id=result,
            )
        )
        if record.is_terminal and record.hangup_requested:
            # Hung up while the provider was still accepting the call
            await self.terminate_provider_call(result)
        return record

    async def handle_answer(self, params: Mapping[str, str]) -> str:
        """
        Handle the provider's answer webhook and return the routing directive.

        Marks the call answered, fetches a streaming credential within
        ``answer_webhook_timeout`` seconds and returns a stream instruction for
        the credential stored on the record. Repeated deliveries for the same
        call share one credential request. Any failure returns the hangup
        directive instead; this method never raises.
        """
        try:
            parsed = self.gateway.parse_callback(params)
            record = await self.apply(
                AnsweredEvent(
                    internal_call_id=parsed.internal_call_id,
                    voice_agent_id=parsed.voice_agent_id,
                    source_call_id=parsed.source_call_id,
                    raw_status=parsed.raw_status,
                )
            )

            if record.status == CallStatus.CONNECTED and record.signed_url:
                logger.info(f"Repeated answer webhook for call {record.id}, reusing credential")
                return build_stream_instruction(record.signed_url)
            if record.status != CallStatus.ANSWERED:
                logger.warning(
                    f"Answer webhook for call {record.id} in status {record.status.value}; "
                    "hanging up"
                )
                return build_hangup_directive()

            task = self._credential_tasks.get(record.id)
            if task is None:
                task = asyncio.create_task(self._connect_stream(record))
                self._credential_tasks[record.id] = task
                task.add_done_callback(
                    lambda _, call_id=record.id: self._credential_tasks.pop(call_id, None)
                )
            else:
                logger.info(f"Repeated answer webhook for call {record.id}, awaiting credential")

            record = await asyncio.shield(task)
            if record.status != CallStatus.CONNECTED or not record.signed_url:
                return build_hangup_directive()
            return build_stream_instruction(record.signed_url)

        except Exception as e:
            # The provider holds the live call on this response
            logger.error(f"Answer webhook failed, returning hangup directive: {e}", exc_info=True)
            return build_hangup_directive()

    async def _connect_stream(self, record: CallRecord) -> CallRecord:
        """Fetch a credential for an answered call and persist the outcome."""
        try:
            credential = await asyncio.wait_for(
                self.bridge.acquire_stream_credential(record.voice_agent_id),
                timeout=self.settings.answer_webhook_timeout,
            )
        except asyncio.TimeoutError:
            credential = Failure(
                kind=FailureKind.UNREACHABLE,
                reason="Voice API did not issue a credential in time",
            )

        if isinstance(credential, Failure):
            logger.error(f"Credential acquisition failed for call {record.id}: {credential.reason}")
            return await self.apply(
                CredentialFailedEvent(internal_call_id=record.id, reason=credential.reason)
            )

        record = await self.apply(
            CredentialAcquiredEvent(internal_call_id=record.id, signed_url=credential)
        )
        if record.status != CallStatus.CONNECTED:
            logger.warning(f"Call {record.id} ended before streaming started; hanging up")
        return record

    async def request_hangup(self, call_id: str, user_id: Optional[str] = None) -> CallRecord:
        """
        Record an explicit hangup.

        The call is marked ``ended`` immediately; the provider is asked to
        terminate separately through ``terminate_provider_call``.
        """
        record = await self.get_call(call_id, user_id)
        if record.is_terminal:
            logger.info(f"Hangup requested for call {call_id} already {record.status.value}")
            return record
        return await self.apply(HangupRequestedEvent(internal_call_id=record.id))

    async def terminate_provider_call(self, external_call_id: str) -> None:
        """Ask the provider to end a call; failures are logged, the record stays ended."""
        result = await self.gateway.request_hangup(external_call_id)
        if isinstance(result, Failure):
            logger.warning(
                f"Provider hangup for {external_call_id} failed ({result.kind.value}): "
                f"{result.reason}"
            )
        else:
            logger.info(f"Provider confirmed hangup request for {external_call_id}")


def _changed_fields(before: CallRecord, after: CallRecord) -> Dict[str, Any]:
    return {
        name: getattr(after, name)
        for name in CallRecord.model_fields
        if getattr(after, name) != getattr(before, name)
    }
