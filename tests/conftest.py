import logging
from datetime import datetime, timezone

import pytest

from callflow.config.settings import Settings
from callflow.models.call_record import CallRecord, CallStatus

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def reset_logging():
    """Reset logging configuration before each test"""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    logging.basicConfig(level=logging.NOTSET)
    yield


@pytest.fixture
def settings():
    """Settings with every provider configured and no retry delay."""
    return Settings(
        _env_file=None,
        exotel_account_sid="acme",
        exotel_api_key="exo-key",
        exotel_api_token="exo-token",
        exotel_caller_id="08047112233",
        elevenlabs_api_key="xi-test-key",
        default_agent_id="agent-default",
        public_base_url="https://hooks.example.com",
        telephony_retry_backoff=0,
        answer_webhook_timeout=1,
        log_level="DEBUG",
    )


@pytest.fixture
def make_record():
    """Factory for call records with sensible defaults."""

    def _make(status=CallStatus.INITIATING, **fields):
        values = {
            "id": "call-1",
            "voice_agent_id": "agent-1",
            "phone_number": "+911234567890",
            "status": status,
            "created_at": T0,
            "updated_at": T0,
        }
        values.update(fields)
        return CallRecord(**values)

    return _make
