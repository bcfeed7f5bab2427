"""
Call record model and call status vocabulary.

A CallRecord describes one outbound call attempt. It is created by the
reconciler service when a call is placed and afterwards only replaced by new
copies produced by ``callflow.reconciler.state_machine.advance``.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field

from callflow.config import constants


class CallStatus(str, Enum):
    """Authoritative status of a call as shown on the dashboard."""

    QUEUED = constants.STATUS_QUEUED
    INITIATING = constants.STATUS_INITIATING
    RINGING = constants.STATUS_RINGING
    ANSWERED = constants.STATUS_ANSWERED
    CONNECTED = constants.STATUS_CONNECTED
    ENDED = constants.STATUS_ENDED
    FAILED = constants.STATUS_FAILED
    BUSY = constants.STATUS_BUSY
    NO_ANSWER = constants.STATUS_NO_ANSWER
    CANCELED = constants.STATUS_CANCELED

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: FrozenSet[CallStatus] = frozenset(
    {
        CallStatus.ENDED,
        CallStatus.FAILED,
        CallStatus.BUSY,
        CallStatus.NO_ANSWER,
        CallStatus.CANCELED,
    }
)

NON_TERMINAL_STATUSES: FrozenSet[CallStatus] = frozenset(CallStatus) - TERMINAL_STATUSES

# Statuses where a failure reason may be recorded
FAILURE_STATUSES: FrozenSet[CallStatus] = frozenset(
    {CallStatus.FAILED, CallStatus.BUSY, CallStatus.NO_ANSWER}
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CallRecord(BaseModel):
    """
    One outbound call attempt and its evolving status.

    Attributes:
        id: Internal identifier owned by the store
        user_id: Owner of the call (the initiating dashboard user)
        voice_agent_id: Voice API agent used for the conversation
        external_call_id: Telephony session id, set once the provider accepts the call
        voice_session_id: Voice API conversation id, when known
        signed_url: Streaming credential, present only while connected
        hangup_requested: Set by an explicit hangup until the provider confirms the end
    """

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str = "anonymous"
    voice_agent_id: str
    agent_name: Optional[str] = None
    phone_number: str
    contact_name: Optional[str] = None
    custom_message: Optional[str] = None

    external_call_id: Optional[str] = None
    voice_session_id: Optional[str] = None

    status: CallStatus = CallStatus.QUEUED
    signed_url: Optional[str] = None
    failure_reason: Optional[str] = None
    hangup_requested: bool = False

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    call_start_time: Optional[datetime] = None
    call_end_time: Optional[datetime] = None
    duration: Optional[int] = Field(None, ge=0, description="Seconds of connected audio")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def active_signed_url(self) -> Optional[str]:
        """The credential, only while the call is connected."""
        if self.status == CallStatus.CONNECTED:
            return self.signed_url
        return None
