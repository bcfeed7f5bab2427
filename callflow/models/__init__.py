"""
Models module for data structures used by the call orchestration service.

Key components:
- call_record: The CallRecord model and the CallStatus vocabulary, including which
  statuses are terminal.
- lifecycle_events: The normalized LifecycleEvent tagged union consumed by the
  reconciler, covering provider callbacks and internal events.
- api_schemas: Request and response models for the dashboard REST API.
- voice_messages: Models for the voice API live conversation channel
  (pings, audio, transcripts, agent responses, interruptions).

Usage examples:
```python
from callflow.models.call_record import CallRecord, CallStatus
from callflow.models.lifecycle_events import RingingEvent

record = CallRecord(
    id="c1", voice_agent_id="agent-1", phone_number="+15551234567",
    status=CallStatus.INITIATING,
)
event = RingingEvent(internal_call_id="c1", raw_status="ringing")
```
"""

from callflow.models.call_record import (
    TERMINAL_STATUSES,
    CallRecord,
    CallStatus,
)
from callflow.models.lifecycle_events import (
    AnsweredEvent,
    CallAcceptedEvent,
    CredentialAcquiredEvent,
    CredentialFailedEvent,
    HangupRequestedEvent,
    LifecycleEvent,
    RingingEvent,
    StreamStatusEvent,
    TerminalEvent,
    UnhandledEvent,
)
