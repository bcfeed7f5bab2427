"""
Pydantic models for the dashboard REST API.

Field names follow the JSON the dashboard exchanges with the server (camelCase),
so the models can be serialized as-is.
"""

import re
from datetime import datetime
from typing import List, Optional, Pattern

from pydantic import BaseModel, Field, field_validator

from callflow.models.call_record import CallRecord

# Digits with an optional leading plus, after cleaning separators
PHONE_PATTERN: Pattern = re.compile(r"^\+?[0-9]{6,15}$")
PHONE_SEPARATORS: Pattern = re.compile(r"[\s()\-]")


def clean_phone_number(value: str) -> str:
    """Strip spaces, dashes and brackets from a dialed number."""
    return PHONE_SEPARATORS.sub("", value)


class InitiateCallRequest(BaseModel):
    """Body of ``POST /calls``."""

    agentId: str = Field(..., description="Voice API agent identifier")
    phoneNumber: str = Field(..., description="Destination number")
    contactName: str = Field(..., description="Name of the person being called")
    customMessage: Optional[str] = Field(
        None, description="Extra context for the agent on this call"
    )

    @field_validator("agentId", "contactName")
    def validate_not_blank(cls, v):
        if not v.strip():
            raise ValueError("Field cannot be empty")
        return v.strip()

    @field_validator("phoneNumber")
    def validate_phone_number(cls, v):
        cleaned = clean_phone_number(v)
        if not PHONE_PATTERN.match(cleaned):
            raise ValueError("Phone number must contain 6 to 15 digits")
        return cleaned


class InitiateCallResponse(BaseModel):
    message: str
    callId: str
    externalCallId: Optional[str] = None
    initialStatus: str
    failureReason: Optional[str] = None


class CallStatusResponse(BaseModel):
    """Body of ``GET /calls/{id}/status``; polled by the client synchronizer."""

    status: str
    signedUrl: Optional[str] = None
    externalCallId: Optional[str] = None
    failureReason: Optional[str] = None

    @classmethod
    def from_record(cls, record: CallRecord) -> "CallStatusResponse":
        return cls(
            status=record.status.value,
            signedUrl=record.active_signed_url,
            externalCallId=record.external_call_id,
            failureReason=record.failure_reason,
        )


class HangupResponse(BaseModel):
    accepted: bool
    message: str


class CallSummary(BaseModel):
    """A call as shown in the recent calls list and call detail dialog."""

    callId: str
    agentId: str
    agentName: Optional[str] = None
    contactName: Optional[str] = None
    phoneNumber: str
    status: str
    failureReason: Optional[str] = None
    createdAt: datetime
    callStartTime: Optional[datetime] = None
    callEndTime: Optional[datetime] = None
    duration: Optional[int] = None

    @classmethod
    def from_record(cls, record: CallRecord) -> "CallSummary":
        return cls(
            callId=record.id,
            agentId=record.voice_agent_id,
            agentName=record.agent_name,
            contactName=record.contact_name,
            phoneNumber=record.phone_number,
            status=record.status.value,
            failureReason=record.failure_reason,
            createdAt=record.created_at,
            callStartTime=record.call_start_time,
            callEndTime=record.call_end_time,
            duration=record.duration,
        )


class CallListResponse(BaseModel):
    calls: List[CallSummary]


class AgentCreateRequest(BaseModel):
    agentId: str = Field(..., description="Voice API agent identifier")
    name: str
    disabled: bool = False

    @field_validator("agentId", "name")
    def validate_not_blank(cls, v):
        if not v.strip():
            raise ValueError("Field cannot be empty")
        return v.strip()


class AgentResponse(BaseModel):
    agentId: str
    name: str
    disabled: bool = False


class AgentListResponse(BaseModel):
    agents: List[AgentResponse]


class SignedUrlResponse(BaseModel):
    signedUrl: str
