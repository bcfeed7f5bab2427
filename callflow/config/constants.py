"""
Constants and configuration values used throughout the application.

This module defines constants that are used across different parts of the application,
providing a centralized location for configuration values and making it easier to
maintain consistent naming throughout the codebase.
"""

# Logger name used throughout the application
LOGGER_NAME = "callflow"

# Call status values
STATUS_QUEUED = "queued"
STATUS_INITIATING = "initiating"
STATUS_RINGING = "ringing"
STATUS_ANSWERED = "answered"
STATUS_CONNECTED = "connected"
STATUS_ENDED = "ended"
STATUS_FAILED = "failed"
STATUS_BUSY = "busy"
STATUS_NO_ANSWER = "no-answer"
STATUS_CANCELED = "canceled"

# Client-side only status shown after a user hangup
LOCAL_STATUS_DISCONNECTED = "disconnected"

# Client polling
POLL_INTERVAL_SECONDS = 3.0
MAX_POLL_DURATION_SECONDS = 300.0
CALL_LIST_REFRESH_DELAY_SECONDS = 1.5
POLL_TIMEOUT_REASON = "timed out awaiting provider"

# Telephony
TELEPHONY_UNREACHABLE_REASON = "telephony unreachable"
DEFAULT_EXOTEL_SUBDOMAIN = "api.exotel.com"
DEFAULT_ELEVENLABS_API_URL = "https://api.elevenlabs.io"

# Number of compare-and-set attempts before a status update is given up
MAX_UPDATE_ATTEMPTS = 5

# Voice API live channel message types
MESSAGE_TYPE_CONVERSATION_METADATA = "conversation_initiation_metadata"
MESSAGE_TYPE_PING = "ping"
MESSAGE_TYPE_AUDIO = "audio"
MESSAGE_TYPE_USER_TRANSCRIPT = "user_transcript"
MESSAGE_TYPE_AGENT_RESPONSE = "agent_response"
MESSAGE_TYPE_AGENT_RESPONSE_CORRECTION = "agent_response_correction"
MESSAGE_TYPE_INTERRUPTION = "interruption"

# Audio format constants
AUDIO_SAMPLE_RATE = 16000
AUDIO_CHANNELS = 1
AUDIO_SAMPLE_WIDTH = 2  # bytes, PCM16
AUDIO_FRAME_SAMPLES = 4000  # 250ms at 16kHz
