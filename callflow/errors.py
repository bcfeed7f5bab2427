"""
Error taxonomy for call orchestration.

Route handlers translate these into HTTP responses; the reconciler service
recovers provider errors into persisted ``failed`` records instead of letting
them reach the dashboard.
"""

from enum import Enum

from pydantic import BaseModel


class CallflowError(Exception):
    """Base class for all errors raised by the call orchestration core."""


class InvalidRequestError(CallflowError):
    """The request shape is invalid; rejected before any record is touched."""


class CallNotFoundError(CallflowError):
    """No call record exists for the given id (or it belongs to another user)."""


class AgentNotFoundError(CallNotFoundError):
    """The requested voice agent is not registered."""


class ProviderRejected(CallflowError):
    """An external API refused the request for a business reason."""


class ProviderUnreachable(CallflowError):
    """An external API could not be reached or answered with a server error."""


class StateConflict(CallflowError):
    """An event arrived for a call already in a terminal state."""


class InternalInconsistency(CallflowError):
    """Correlation data on a provider callback is missing or unparseable."""


class FailureKind(str, Enum):
    REJECTED = "rejected"
    UNREACHABLE = "unreachable"


class Failure(BaseModel):
    """
    Non-raising failure result returned by provider adapters.

    Attributes:
        kind: Whether the provider refused the request or could not be reached
        reason: Short, user-presentable explanation
    """

    kind: FailureKind
    reason: str

    def to_exception(self) -> CallflowError:
        if self.kind == FailureKind.UNREACHABLE:
            return ProviderUnreachable(self.reason)
        return ProviderRejected(self.reason)
