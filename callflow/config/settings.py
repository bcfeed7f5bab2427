"""
Environment-driven settings for the call orchestration service.

Values are read from the process environment, optionally seeded from a
``.env`` file in the working directory. ``get_settings()`` caches a single
instance; tests construct ``Settings`` directly with the values they need.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from callflow.config.constants import (
    DEFAULT_ELEVENLABS_API_URL,
    DEFAULT_EXOTEL_SUBDOMAIN,
)


class Settings(BaseSettings):
    """Runtime configuration for providers, webhooks and timeouts."""

    exotel_account_sid: Optional[str] = None
    exotel_api_key: Optional[str] = None
    exotel_api_token: Optional[str] = None
    exotel_caller_id: Optional[str] = None
    exotel_subdomain: str = DEFAULT_EXOTEL_SUBDOMAIN

    elevenlabs_api_key: Optional[str] = None
    elevenlabs_api_url: str = DEFAULT_ELEVENLABS_API_URL
    default_agent_id: Optional[str] = None

    public_base_url: str = "http://localhost:8000"
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    telephony_retry_backoff: float = Field(1.0, ge=0)
    provider_timeout: float = Field(10.0, gt=0)
    answer_webhook_timeout: float = Field(5.0, gt=0)

    # Blank variables in .env count as unset
    model_config = SettingsConfigDict(env_file=".env", env_ignore_empty=True, extra="ignore")

    @property
    def telephony_configured(self) -> bool:
        return bool(
            self.exotel_account_sid
            and self.exotel_api_key
            and self.exotel_api_token
            and self.exotel_caller_id
        )

    @property
    def voice_api_configured(self) -> bool:
        return bool(self.elevenlabs_api_key)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings."""
    return Settings()
