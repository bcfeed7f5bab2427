"""
Telephony gateway adapter for the Exotel voice API.

Places outbound calls, asks the provider to terminate them, and normalizes the
provider's status callbacks into LifecycleEvents. Business failures and network
failures are returned as ``Failure`` values rather than raised, so the caller
decides how to persist them.
"""

import json
import logging
from datetime import datetime
from typing import Mapping, Optional, Tuple, Union

import httpx

from callflow.config.constants import LOGGER_NAME
from callflow.config.settings import Settings
from callflow.errors import Failure, FailureKind, InternalInconsistency
from callflow.models.call_record import utcnow
from callflow.models.lifecycle_events import (
    AnsweredEvent,
    BaseEvent,
    RingingEvent,
    StreamStatusEvent,
    TerminalEvent,
    UnhandledEvent,
)

logger = logging.getLogger(LOGGER_NAME)

# Provider call statuses grouped by the event they produce
RINGING_STATUSES = {"ringing"}
ANSWERED_STATUSES = {"answered", "in-progress"}
TERMINAL_STATUSES = {"completed", "failed", "busy", "no-answer", "canceled", "cancelled"}
STREAM_LIFECYCLE_STATUSES = {"completed", "failed", "cancelled", "canceled"}

# Statuses returned by the call-control endpoint when the call has already ended
ALREADY_ENDED_HTTP_CODES = {404, 409}


def encode_correlation_token(internal_call_id: str, voice_agent_id: str) -> str:
    """Build the opaque token the provider echoes on every callback."""
    return json.dumps(
        {"internalCallId": internal_call_id, "voiceAgentId": voice_agent_id},
        separators=(",", ":"),
    )


def decode_correlation_token(token: Optional[str]) -> Tuple[str, Optional[str]]:
    """
    Recover the internal call id and voice agent id from a correlation token.

    Raises:
        InternalInconsistency: If the token is missing, not JSON, or lacks the call id
    """
    if not token:
        raise InternalInconsistency("Correlation token missing")
    try:
        data = json.loads(token)
    except (TypeError, ValueError) as e:
        raise InternalInconsistency(f"Correlation token is not valid JSON: {e}") from e
    if not isinstance(data, dict) or not data.get("internalCallId"):
        raise InternalInconsistency("Correlation token lacks internalCallId")
    # Older tokens used the provider-specific key name
    agent_id = data.get("voiceAgentId") or data.get("elevenLabsAgentId")
    return str(data["internalCallId"]), agent_id


def _parse_duration(value: Optional[str]) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        duration = int(float(value))
    except (TypeError, ValueError):
        logger.debug(f"Ignoring unparseable duration: {value!r}")
        return None
    return duration if duration >= 0 else None


def parse_callback(
    params: Mapping[str, str], received_at: Optional[datetime] = None
) -> BaseEvent:
    """
    Normalize an Exotel callback (form fields or query parameters) into a LifecycleEvent.

    Stream sub-statuses that end the call take precedence over the call status.
    Statuses we do not recognize produce an UnhandledEvent; this function never
    raises for unknown content. A missing or unreadable correlation token leaves
    ``internal_call_id`` unset so the reconciler can fall back to the provider
    call id.

    Args:
        params: Flat mapping of callback fields, e.g. ``CallStatus``, ``CallSid``,
            ``CustomField``, ``Stream[Status]``
        received_at: Event timestamp; defaults to now

    Returns:
        A LifecycleEvent variant
    """
    timestamp = received_at or utcnow()
    call_status = (params.get("CallStatus") or params.get("Status") or "").strip().lower()
    call_sid = params.get("CallSid") or None
    stream_status = (params.get("Stream[Status]") or "").strip().lower()

    internal_call_id = None
    voice_agent_id = None
    custom_field = params.get("CustomField")
    if custom_field:
        try:
            internal_call_id, voice_agent_id = decode_correlation_token(custom_field)
        except InternalInconsistency as e:
            logger.error(f"Unreadable correlation token on callback for {call_sid}: {e}")

    common = {
        "timestamp": timestamp,
        "internal_call_id": internal_call_id,
        "voice_agent_id": voice_agent_id,
        "source_call_id": call_sid,
    }
    duration = _parse_duration(params.get("Stream[Duration]") or params.get("Duration"))

    if stream_status in STREAM_LIFECYCLE_STATUSES:
        return StreamStatusEvent(
            raw_status=call_status or None,
            stream_status=stream_status,
            disconnected_by=params.get("Stream[DisconnectedBy]") or None,
            duration=duration,
            error_detail=params.get("Stream[Error]") or None,
            **common,
        )

    if call_status in RINGING_STATUSES:
        return RingingEvent(raw_status=call_status, **common)
    if call_status in ANSWERED_STATUSES:
        return AnsweredEvent(raw_status=call_status, **common)
    if call_status in TERMINAL_STATUSES:
        return TerminalEvent(
            raw_status=call_status,
            duration=duration,
            error_detail=params.get("Stream[Error]") or params.get("ErrorMessage") or None,
            **common,
        )

    if stream_status:
        return StreamStatusEvent(
            raw_status=call_status or None,
            stream_status=stream_status,
            disconnected_by=params.get("Stream[DisconnectedBy]") or None,
            duration=duration,
            **common,
        )

    return UnhandledEvent(raw_status=call_status or None, **common)


def _error_message(response: httpx.Response) -> str:
    """Extract a short explanation from an Exotel error response."""
    try:
        data = response.json()
    except ValueError:
        return response.text.strip()[:200] or f"HTTP {response.status_code}"
    exception = data.get("RestException") if isinstance(data, dict) else None
    if isinstance(exception, dict) and exception.get("Message"):
        return str(exception["Message"])
    return f"HTTP {response.status_code}"


class ExotelGateway:
    """
    Client for the Exotel call APIs.

    Each request uses a short-lived ``httpx.AsyncClient``; tests inject a
    transport to stand in for the provider.
    """

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self.transport = transport

    @property
    def base_url(self) -> str:
        return (
            f"https://{self.settings.exotel_subdomain}/v1/Accounts/"
            f"{self.settings.exotel_account_sid}"
        )

    @property
    def answer_webhook_url(self) -> str:
        return f"{self.settings.public_base_url.rstrip('/')}/telephony/answer"

    @property
    def status_webhook_url(self) -> str:
        return f"{self.settings.public_base_url.rstrip('/')}/telephony/status"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            auth=(self.settings.exotel_api_key or "", self.settings.exotel_api_token or ""),
            timeout=self.settings.provider_timeout,
            transport=self.transport,
        )

    async def place_call(
        self, destination_number: str, correlation_token: str
    ) -> Union[str, Failure]:
        """
        Ask the provider to dial ``destination_number``.

        Args:
            destination_number: Cleaned destination phone number
            correlation_token: Opaque token echoed back on every callback

        Returns:
            The provider call id, or a Failure describing why the call was not placed
        """
        if not self.settings.telephony_configured:
            logger.error("Telephony provider credentials are not configured")
            return Failure(kind=FailureKind.REJECTED, reason="Telephony provider not configured")

        payload = {
            "From": self.settings.exotel_caller_id,
            "To": destination_number,
            "CallerId": self.settings.exotel_caller_id,
            "Url": self.answer_webhook_url,
            "Method": "POST",
            "StatusCallback": self.status_webhook_url,
            "StatusCallbackMethod": "POST",
            "CustomField": correlation_token,
        }

        logger.info(f"Placing outbound call to {destination_number}")
        try:
            async with self._client() as client:
                response = await client.post(f"{self.base_url}/Calls.json", data=payload)
        except httpx.RequestError as e:
            logger.warning(f"Network error placing call to {destination_number}: {e}")
            return Failure(kind=FailureKind.UNREACHABLE, reason=f"Network error: {e}")

        if response.status_code >= 500:
            logger.warning(f"Telephony provider error {response.status_code} placing call")
            return Failure(
                kind=FailureKind.UNREACHABLE,
                reason=f"Telephony provider error: HTTP {response.status_code}",
            )
        if response.status_code >= 400:
            message = _error_message(response)
            logger.warning(f"Telephony provider rejected call to {destination_number}: {message}")
            return Failure(
                kind=FailureKind.REJECTED,
                reason=f"Telephony provider rejected the call: {message}",
            )

        try:
            call_sid = response.json()["Call"]["Sid"]
        except (ValueError, KeyError, TypeError):
            logger.error("Telephony provider response is missing the call id")
            return Failure(
                kind=FailureKind.REJECTED,
                reason="Telephony provider response missing call id",
            )

        logger.info(f"Outbound call accepted by provider: {call_sid}")
        return call_sid

    async def request_hangup(self, external_call_id: str) -> Union[bool, Failure]:
        """
        Ask the provider to terminate a call.

        Hanging up a call that has already ended is treated as success.

        Returns:
            True on success, or a Failure
        """
        if not self.settings.telephony_configured:
            return Failure(kind=FailureKind.REJECTED, reason="Telephony provider not configured")

        logger.info(f"Requesting hangup for provider call {external_call_id}")
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.base_url}/Calls/{external_call_id}.json",
                    data={"Status": "completed"},
                )
        except httpx.RequestError as e:
            logger.warning(f"Network error hanging up {external_call_id}: {e}")
            return Failure(kind=FailureKind.UNREACHABLE, reason=f"Network error: {e}")

        if response.status_code in ALREADY_ENDED_HTTP_CODES:
            logger.info(f"Provider call {external_call_id} had already ended")
            return True
        if response.status_code >= 500:
            return Failure(
                kind=FailureKind.UNREACHABLE,
                reason=f"Telephony provider error: HTTP {response.status_code}",
            )
        if response.status_code >= 400:
            return Failure(kind=FailureKind.REJECTED, reason=_error_message(response))

        return True

    def parse_callback(
        self, params: Mapping[str, str], received_at: Optional[datetime] = None
    ) -> BaseEvent:
        return parse_callback(params, received_at)
