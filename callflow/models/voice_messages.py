"""
Pydantic models for the voice API live conversation channel.

The live channel exchanges JSON control messages and audio frames. Inbound
messages are parsed with ``parse_channel_message``; outbound messages are built
from the models below and serialized with ``model_dump_json``.
"""

import base64
import logging
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from callflow.config import constants
from callflow.config.constants import LOGGER_NAME

logger = logging.getLogger(LOGGER_NAME)


# Outbound messages
class ConversationInitiationMessage(BaseModel):
    """First message sent once the channel is open."""

    type: Literal["conversation_initiation_client_data"] = (
        "conversation_initiation_client_data"
    )


class PongMessage(BaseModel):
    type: Literal["pong"] = "pong"
    event_id: int


class UserAudioChunkMessage(BaseModel):
    """A captured microphone frame, base64-encoded PCM16."""

    user_audio_chunk: str

    @field_validator("user_audio_chunk")
    def validate_audio_chunk(cls, v):
        """Validate that the chunk is valid base64."""
        try:
            base64.b64decode(v, validate=True)
        except Exception:
            raise ValueError("user_audio_chunk must be base64 encoded")
        return v


# Inbound payloads
class PingDetails(BaseModel):
    event_id: int
    ping_ms: Optional[int] = Field(None, ge=0)


class AudioDetails(BaseModel):
    audio_base_64: str
    event_id: Optional[int] = None


class UserTranscriptDetails(BaseModel):
    user_transcript: str


class AgentResponseDetails(BaseModel):
    agent_response: str


class AgentResponseCorrectionDetails(BaseModel):
    original_agent_response: str
    corrected_agent_response: str


class InterruptionDetails(BaseModel):
    reason: Optional[str] = None


class ConversationMetadataDetails(BaseModel):
    conversation_id: str
    agent_output_audio_format: Optional[str] = None
    user_input_audio_format: Optional[str] = None


# Inbound messages
class PingMessage(BaseModel):
    type: Literal["ping"]
    ping_event: PingDetails


class AudioMessage(BaseModel):
    type: Literal["audio"]
    audio_event: AudioDetails

    @property
    def audio_bytes(self) -> bytes:
        return base64.b64decode(self.audio_event.audio_base_64)


class UserTranscriptMessage(BaseModel):
    type: Literal["user_transcript"]
    user_transcription_event: Optional[UserTranscriptDetails] = None
    user_transcript_event: Optional[UserTranscriptDetails] = None

    @property
    def text(self) -> str:
        details = self.user_transcription_event or self.user_transcript_event
        return details.user_transcript if details else ""


class AgentResponseMessage(BaseModel):
    type: Literal["agent_response"]
    agent_response_event: AgentResponseDetails

    @property
    def text(self) -> str:
        return self.agent_response_event.agent_response


class AgentResponseCorrectionMessage(BaseModel):
    type: Literal["agent_response_correction"]
    agent_response_correction_event: AgentResponseCorrectionDetails


class InterruptionMessage(BaseModel):
    type: Literal["interruption"]
    interruption_event: InterruptionDetails = Field(default_factory=InterruptionDetails)


class ConversationMetadataMessage(BaseModel):
    type: Literal["conversation_initiation_metadata"]
    conversation_initiation_metadata_event: ConversationMetadataDetails


ChannelMessage = Union[
    PingMessage,
    AudioMessage,
    UserTranscriptMessage,
    AgentResponseMessage,
    AgentResponseCorrectionMessage,
    InterruptionMessage,
    ConversationMetadataMessage,
]

_MESSAGE_MODELS = {
    constants.MESSAGE_TYPE_PING: PingMessage,
    constants.MESSAGE_TYPE_AUDIO: AudioMessage,
    constants.MESSAGE_TYPE_USER_TRANSCRIPT: UserTranscriptMessage,
    constants.MESSAGE_TYPE_AGENT_RESPONSE: AgentResponseMessage,
    constants.MESSAGE_TYPE_AGENT_RESPONSE_CORRECTION: AgentResponseCorrectionMessage,
    constants.MESSAGE_TYPE_INTERRUPTION: InterruptionMessage,
    constants.MESSAGE_TYPE_CONVERSATION_METADATA: ConversationMetadataMessage,
}


def parse_channel_message(data: Dict[str, Any]) -> Optional[ChannelMessage]:
    """
    Parse an inbound JSON message into its typed model.

    Args:
        data: Decoded JSON object received on the live channel

    Returns:
        The typed message, or None for unknown or malformed messages
    """
    message_type = data.get("type")
    model = _MESSAGE_MODELS.get(message_type)
    if model is None:
        logger.debug(f"Ignoring channel message of type: {message_type}")
        return None
    try:
        return model(**data)
    except ValidationError as e:
        logger.warning(f"Invalid {message_type} message on live channel: {e}")
        return None
