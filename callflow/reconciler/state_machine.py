"""
Call lifecycle state machine.

``advance`` merges one LifecycleEvent into a CallRecord and returns the
resulting record. It performs no I/O and reads no clock: every timestamp it
writes comes from the event, so the same (record, event) pair always yields the
same result. Persistence and provider calls belong to the caller
(``callflow.reconciler.service``).

Terminal statuses are sticky. Once a call is ended, failed, busy, no-answer or
canceled, later events never change its status, end time or credential. A late
provider acceptance may still record the provider call id. An optimistic end
recorded by an explicit hangup is confirmed by the provider's own end callback,
which may fill in the duration.
"""

import logging
from typing import FrozenSet, List, NamedTuple, Optional

from callflow.config.constants import LOGGER_NAME
from callflow.models.call_record import (
    FAILURE_STATUSES,
    NON_TERMINAL_STATUSES,
    CallRecord,
    CallStatus,
)
from callflow.models.lifecycle_events import (
    STREAM_CANCELLED,
    STREAM_COMPLETED,
    STREAM_FAILED,
    StreamStatusEvent,
    TerminalEvent,
)

logger = logging.getLogger(LOGGER_NAME)

S = CallStatus


class Transition(NamedTuple):
    """One row of the transition table."""

    trigger: str
    valid_from: FrozenSet[CallStatus]
    new_status: CallStatus


ANY_NON_TERMINAL = NON_TERMINAL_STATUSES

TRANSITIONS: List[Transition] = [
    Transition("call-accepted", frozenset({S.INITIATING}), S.RINGING),
    Transition("ringing", frozenset({S.INITIATING, S.QUEUED}), S.RINGING),
    Transition("answered", frozenset({S.RINGING, S.INITIATING}), S.ANSWERED),
    Transition("credential-acquired", frozenset({S.ANSWERED}), S.CONNECTED),
    Transition("credential-failed", frozenset({S.ANSWERED}), S.FAILED),
    Transition("terminal:completed", ANY_NON_TERMINAL, S.ENDED),
    Transition("stream:completed", ANY_NON_TERMINAL, S.ENDED),
    Transition("terminal:failed", ANY_NON_TERMINAL, S.FAILED),
    Transition("stream:failed", ANY_NON_TERMINAL, S.FAILED),
    Transition("terminal:busy", frozenset({S.RINGING, S.INITIATING}), S.BUSY),
    Transition("terminal:no-answer", frozenset({S.RINGING, S.INITIATING}), S.NO_ANSWER),
    Transition(
        "terminal:canceled", frozenset({S.QUEUED, S.INITIATING, S.RINGING}), S.CANCELED
    ),
    Transition("terminal:canceled", frozenset({S.ANSWERED, S.CONNECTED}), S.ENDED),
    Transition("stream:cancelled", frozenset({S.CONNECTED}), S.ENDED),
    Transition("stream:cancelled", frozenset({S.RINGING, S.ANSWERED}), S.FAILED),
    Transition("hangup-requested", ANY_NON_TERMINAL, S.ENDED),
]

# Provider spellings folded onto the trigger vocabulary above
_STATUS_ALIASES = {
    "canceled": "canceled",
    "cancelled": "canceled",
    "no_answer": "no-answer",
    "noanswer": "no-answer",
}

_STREAM_STATUS_ALIASES = {
    "canceled": STREAM_CANCELLED,
    "cancelled": STREAM_CANCELLED,
    "completed": STREAM_COMPLETED,
    "failed": STREAM_FAILED,
}


def trigger_for(event) -> Optional[str]:
    """Return the transition-table trigger for an event, or None if it has none."""
    if isinstance(event, TerminalEvent):
        status = (event.raw_status or "").strip().lower()
        return f"terminal:{_STATUS_ALIASES.get(status, status)}"
    if isinstance(event, StreamStatusEvent):
        status = _STREAM_STATUS_ALIASES.get(event.stream_status.strip().lower())
        return f"stream:{status}" if status else None
    if event.kind == "unhandled":
        return None
    return event.kind


def find_transition(status: CallStatus, trigger: Optional[str]) -> Optional[Transition]:
    """Look up the row for ``trigger`` that is valid from ``status``."""
    if trigger is None:
        return None
    for transition in TRANSITIONS:
        if transition.trigger == trigger and status in transition.valid_from:
            return transition
    return None


def advance(record: CallRecord, event) -> CallRecord:
    """
    Apply one lifecycle event to a call record.

    Args:
        record: The current record
        event: A LifecycleEvent variant

    Returns:
        The updated record, or ``record`` itself when the event causes no change
    """
    if record.is_terminal:
        if _is_late_acceptance(record, event):
            return _record_external_call_id(record, event)
        return _confirm_hangup(record, event)

    trigger = trigger_for(event)
    transition = find_transition(record.status, trigger)

    if transition is None:
        # Out-of-order events may still carry the provider call id
        if _is_late_acceptance(record, event):
            return _record_external_call_id(record, event)
        return record

    return _apply(record, event, transition.new_status)


def _apply(record: CallRecord, event, new_status: CallStatus) -> CallRecord:
    update = {"status": new_status, "updated_at": event.timestamp}

    if event.kind == "call-accepted":
        update["external_call_id"] = event.source_call_id
    elif event.source_call_id and record.external_call_id is None:
        update["external_call_id"] = event.source_call_id

    if new_status == S.ANSWERED:
        update["call_start_time"] = event.timestamp

    if new_status == S.CONNECTED:
        update["signed_url"] = event.signed_url
        if record.call_start_time is None:
            update["call_start_time"] = event.timestamp

    if new_status.is_terminal:
        update["signed_url"] = None
        if record.call_end_time is None:
            update["call_end_time"] = event.timestamp
        duration = getattr(event, "duration", None)
        if duration is not None:
            update["duration"] = duration
        if new_status in FAILURE_STATUSES:
            update["failure_reason"] = _failure_reason(record, event, new_status)
        if event.kind == "hangup-requested":
            update["hangup_requested"] = True

    return record.model_copy(update=update)


def _is_late_acceptance(record: CallRecord, event) -> bool:
    return (
        event.kind == "call-accepted"
        and record.external_call_id is None
        and bool(event.source_call_id)
    )


def _record_external_call_id(record: CallRecord, event) -> CallRecord:
    return record.model_copy(
        update={"external_call_id": event.source_call_id, "updated_at": event.timestamp}
    )


def _failure_reason(record: CallRecord, event, new_status: CallStatus) -> str:
    if event.kind == "credential-failed":
        return event.reason
    detail = getattr(event, "error_detail", None)
    if detail:
        return detail
    if isinstance(event, StreamStatusEvent):
        if trigger_for(event) == f"stream:{STREAM_CANCELLED}":
            return f"Stream cancelled by {event.disconnected_by or 'unknown'}"
        return record.failure_reason or "Audio stream failed"
    if new_status == S.BUSY:
        return "Line busy"
    if new_status == S.NO_ANSWER:
        return "No answer"
    return record.failure_reason or f"Telephony provider reported status: {event.raw_status}"


def _confirm_hangup(record: CallRecord, event) -> CallRecord:
    """Let the provider's end callback confirm an optimistic hangup."""
    if not (record.hangup_requested and record.status == S.ENDED):
        return record

    trigger = trigger_for(event)
    if trigger not in (
        "terminal:completed",
        "terminal:canceled",
        "stream:completed",
        "stream:cancelled",
    ):
        return record

    update = {"hangup_requested": False, "updated_at": event.timestamp}
    duration = getattr(event, "duration", None)
    if duration is not None and record.duration is None:
        update["duration"] = duration
    return record.model_copy(update=update)
