"""
Normalized lifecycle events consumed by the call state reconciler.

Provider callbacks are parsed into one of the provider event variants
(ringing, answered, stream-status, terminal, unhandled). The reconciler service
also produces internal variants for things that happen on our side of the call:
the provider accepting the call request, a streaming credential being acquired
or failing, and an explicit hangup. Events are transient and never persisted.
"""

from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from callflow.models.call_record import utcnow

# Stream sub-statuses that carry call lifecycle meaning
STREAM_COMPLETED = "completed"
STREAM_FAILED = "failed"
STREAM_CANCELLED = "cancelled"


class BaseEvent(BaseModel):
    """Fields shared by all lifecycle events."""

    model_config = ConfigDict(frozen=True)

    kind: str
    timestamp: datetime = Field(default_factory=utcnow)
    internal_call_id: Optional[str] = Field(
        None, description="Internal call id recovered from the correlation token"
    )
    voice_agent_id: Optional[str] = None
    source_call_id: Optional[str] = Field(
        None, description="Telephony provider call id"
    )
    raw_status: Optional[str] = Field(None, description="Provider status as received")


# Provider events
class RingingEvent(BaseEvent):
    kind: Literal["ringing"] = "ringing"


class AnsweredEvent(BaseEvent):
    kind: Literal["answered"] = "answered"


class StreamStatusEvent(BaseEvent):
    """Status of the audio stream leg between the provider and the voice API."""

    kind: Literal["stream-status"] = "stream-status"
    stream_status: str
    disconnected_by: Optional[str] = None
    duration: Optional[int] = Field(None, ge=0)
    error_detail: Optional[str] = None


class TerminalEvent(BaseEvent):
    """The provider reports the call itself finished (completed, failed, busy...)."""

    kind: Literal["terminal"] = "terminal"
    raw_status: str
    duration: Optional[int] = Field(None, ge=0)
    error_detail: Optional[str] = None


class UnhandledEvent(BaseEvent):
    """A callback whose status we do not map; logged and otherwise ignored."""

    kind: Literal["unhandled"] = "unhandled"


# Internal events
class CallAcceptedEvent(BaseEvent):
    kind: Literal["call-accepted"] = "call-accepted"
    source_call_id: str


class CredentialAcquiredEvent(BaseEvent):
    kind: Literal["credential-acquired"] = "credential-acquired"
    signed_url: str = Field(..., min_length=1)


class CredentialFailedEvent(BaseEvent):
    kind: Literal["credential-failed"] = "credential-failed"
    reason: str


class HangupRequestedEvent(BaseEvent):
    kind: Literal["hangup-requested"] = "hangup-requested"


LifecycleEvent = Annotated[
    Union[
        RingingEvent,
        AnsweredEvent,
        StreamStatusEvent,
        TerminalEvent,
        UnhandledEvent,
        CallAcceptedEvent,
        CredentialAcquiredEvent,
        CredentialFailedEvent,
        HangupRequestedEvent,
    ],
    Field(discriminator="kind"),
]

lifecycle_event_adapter: TypeAdapter = TypeAdapter(LifecycleEvent)
