"""
Bridge between the telephony leg of a call and the voice API conversation.

When the callee answers, the telephony provider asks us what to do with the
call. We acquire a short-lived signed URL for the voice agent and reply with a
stream instruction pointing at it, so the provider pipes the call audio
straight to the agent.
"""

import logging
from typing import Optional, Union
from xml.etree import ElementTree

import httpx

from callflow.config.constants import LOGGER_NAME
from callflow.config.settings import Settings
from callflow.errors import Failure, FailureKind

logger = logging.getLogger(LOGGER_NAME)

SIGNED_URL_PATH = "/v1/convai/conversation/get-signed-url"


def build_stream_instruction(signed_url: str) -> str:
    """Return the provider markup that streams call audio to ``signed_url``."""
    response = ElementTree.Element("Response")
    ElementTree.SubElement(response, "Stream", {"url": signed_url})
    return ElementTree.tostring(response, encoding="unicode")


def build_hangup_directive() -> str:
    """Return the provider markup that ends the call."""
    response = ElementTree.Element("Response")
    ElementTree.SubElement(response, "Hangup")
    return ElementTree.tostring(response, encoding="unicode")


class VoiceSessionBridge:
    """Acquires streaming credentials from the voice API."""

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self.transport = transport

    async def acquire_stream_credential(self, voice_agent_id: str) -> Union[str, Failure]:
        """
        Request a signed conversation URL for an agent.

        Returns:
            The signed URL, or a Failure. An unknown agent or missing API key is
            a rejection; network errors and server errors are unreachable.
        """
        if not self.settings.voice_api_configured:
            logger.error("Voice API key is not configured")
            return Failure(kind=FailureKind.REJECTED, reason="Voice API key not configured")

        url = f"{self.settings.elevenlabs_api_url.rstrip('/')}{SIGNED_URL_PATH}"
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.provider_timeout, transport=self.transport
            ) as client:
                response = await client.get(
                    url,
                    params={"agent_id": voice_agent_id},
                    headers={"xi-api-key": self.settings.elevenlabs_api_key},
                )
        except httpx.RequestError as e:
            logger.warning(f"Network error requesting signed URL for {voice_agent_id}: {e}")
            return Failure(kind=FailureKind.UNREACHABLE, reason=f"Voice API unreachable: {e}")

        if response.status_code >= 500:
            logger.warning(f"Voice API error {response.status_code} requesting signed URL")
            return Failure(
                kind=FailureKind.UNREACHABLE,
                reason=f"Voice API error: HTTP {response.status_code}",
            )
        if response.status_code >= 400:
            logger.warning(
                f"Voice API rejected signed URL request for {voice_agent_id}: "
                f"HTTP {response.status_code}"
            )
            return Failure(
                kind=FailureKind.REJECTED,
                reason=f"Voice API rejected agent {voice_agent_id}: HTTP {response.status_code}",
            )

        try:
            signed_url = response.json().get("signed_url")
        except (ValueError, AttributeError):
            signed_url = None
        if not signed_url:
            logger.error("Voice API response did not include a signed URL")
            return Failure(kind=FailureKind.REJECTED, reason="Voice API returned no signed URL")

        logger.info(f"Acquired signed URL for agent {voice_agent_id}")
        return signed_url
