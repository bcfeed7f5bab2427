from xml.etree import ElementTree

import httpx
import pytest

from callflow.errors import FailureKind
from callflow.services.voice_session_bridge import (
    VoiceSessionBridge,
    build_hangup_directive,
    build_stream_instruction,
)


def make_bridge(settings, handler):
    return VoiceSessionBridge(settings, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_acquire_stream_credential(settings):
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"signed_url": "wss://api.elevenlabs.io/v1/convai/x?token=abc"})

    result = await make_bridge(settings, handler).acquire_stream_credential("agent-1")

    assert result == "wss://api.elevenlabs.io/v1/convai/x?token=abc"
    request = requests[0]
    assert request.url.path == "/v1/convai/conversation/get-signed-url"
    assert request.url.params["agent_id"] == "agent-1"
    assert request.headers["xi-api-key"] == "xi-test-key"


@pytest.mark.asyncio
async def test_unknown_agent_is_rejected(settings):
    result = await make_bridge(settings, lambda r: httpx.Response(404)).acquire_stream_credential("nope")
    assert result.kind == FailureKind.REJECTED


@pytest.mark.asyncio
async def test_server_error_is_unreachable(settings):
    result = await make_bridge(settings, lambda r: httpx.Response(502)).acquire_stream_credential("a")
    assert result.kind == FailureKind.UNREACHABLE


@pytest.mark.asyncio
async def test_network_error_is_unreachable(settings):
    def handler(request):
        raise httpx.ConnectError("dns failure", request=request)

    result = await make_bridge(settings, handler).acquire_stream_credential("a")
    assert result.kind == FailureKind.UNREACHABLE


@pytest.mark.asyncio
async def test_missing_signed_url_is_rejected(settings):
    result = await make_bridge(settings, lambda r: httpx.Response(200, json={})).acquire_stream_credential("a")
    assert result.kind == FailureKind.REJECTED


@pytest.mark.asyncio
async def test_missing_api_key(settings):
    bridge = VoiceSessionBridge(settings.model_copy(update={"elevenlabs_api_key": None}))
    result = await bridge.acquire_stream_credential("a")
    assert result.kind == FailureKind.REJECTED


def test_stream_instruction_escapes_url():
    url = "wss://voice.example.com/convai?agent=a&token=x<y"
    directive = build_stream_instruction(url)
    root = ElementTree.fromstring(directive)
    assert root.tag == "Response"
    assert root.find("Stream").get("url") == url
    assert "&amp;" in directive


def test_hangup_directive():
    root = ElementTree.fromstring(build_hangup_directive())
    assert root.tag == "Response"
    assert root.find("Hangup") is not None
    assert root.find("Stream") is None
