"""
Tests for the Exotel gateway adapter and callback parsing.
"""

import json
from urllib.parse import parse_qs

import httpx
import pytest

from callflow.errors import FailureKind, InternalInconsistency
from callflow.models.lifecycle_events import (
    AnsweredEvent,
    RingingEvent,
    StreamStatusEvent,
    TerminalEvent,
    UnhandledEvent,
)
from callflow.services.telephony_gateway import (
    ExotelGateway,
    decode_correlation_token,
    encode_correlation_token,
    parse_callback,
)

TOKEN = encode_correlation_token("call-1", "agent-1")


def make_gateway(settings, handler):
    return ExotelGateway(settings, transport=httpx.MockTransport(handler))


def test_correlation_token_round_trip():
    assert decode_correlation_token(TOKEN) == ("call-1", "agent-1")


def test_decode_accepts_legacy_agent_key():
    token = json.dumps({"internalCallId": "call-1", "elevenLabsAgentId": "agent-9"})
    assert decode_correlation_token(token) == ("call-1", "agent-9")


@pytest.mark.parametrize("token", [None, "", "not json", "[]", '{"voiceAgentId": "a"}'])
def test_decode_rejects_bad_tokens(token):
    with pytest.raises(InternalInconsistency):
        decode_correlation_token(token)


@pytest.mark.asyncio
async def test_place_call_success(settings):
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"Call": {"Sid": "exo-123", "Status": "in-progress"}})

    result = await make_gateway(settings, handler).place_call("+911234567890", TOKEN)

    assert result == "exo-123"
    request = requests[0]
    assert request.method == "POST"
    assert str(request.url) == "https://api.exotel.com/v1/Accounts/acme/Calls.json"
    assert request.headers["authorization"].startswith("Basic ")
    form = parse_qs(request.content.decode())
    assert form["To"] == ["+911234567890"]
    assert form["CallerId"] == ["08047112233"]
    assert form["Url"] == ["https://hooks.example.com/telephony/answer"]
    assert form["StatusCallback"] == ["https://hooks.example.com/telephony/status"]
    assert form["CustomField"] == [TOKEN]


@pytest.mark.asyncio
async def test_place_call_rejected(settings):
    def handler(request):
        return httpx.Response(
            403,
            json={"RestException": {"Status": 403, "Message": "Number is on the DND registry"}},
        )

    result = await make_gateway(settings, handler).place_call("+911234567890", TOKEN)

    assert result.kind == FailureKind.REJECTED
    assert "DND registry" in result.reason


@pytest.mark.asyncio
async def test_place_call_server_error_is_unreachable(settings):
    result = await make_gateway(settings, lambda r: httpx.Response(503)).place_call(
        "+911234567890", TOKEN
    )
    assert result.kind == FailureKind.UNREACHABLE


@pytest.mark.asyncio
async def test_place_call_network_error_is_unreachable(settings):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    result = await make_gateway(settings, handler).place_call("+911234567890", TOKEN)
    assert result.kind == FailureKind.UNREACHABLE


@pytest.mark.asyncio
async def test_place_call_without_credentials(settings):
    unconfigured = settings.model_copy(update={"exotel_api_key": None})
    gateway = ExotelGateway(unconfigured, transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    result = await gateway.place_call("+911234567890", TOKEN)
    assert result.kind == FailureKind.REJECTED


@pytest.mark.asyncio
async def test_place_call_response_without_sid(settings):
    result = await make_gateway(settings, lambda r: httpx.Response(200, json={})).place_call(
        "+911234567890", TOKEN
    )
    assert result.kind == FailureKind.REJECTED


@pytest.mark.asyncio
async def test_request_hangup(settings):
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"Call": {"Sid": "exo-123", "Status": "completed"}})

    assert await make_gateway(settings, handler).request_hangup("exo-123") is True
    assert str(requests[0].url).endswith("/Calls/exo-123.json")
    assert parse_qs(requests[0].content.decode()) == {"Status": ["completed"]}


@pytest.mark.asyncio
async def test_request_hangup_already_ended_is_success(settings):
    assert await make_gateway(settings, lambda r: httpx.Response(404)).request_hangup("exo-1") is True


@pytest.mark.asyncio
async def test_request_hangup_network_error(settings):
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    result = await make_gateway(settings, handler).request_hangup("exo-1")
    assert result.kind == FailureKind.UNREACHABLE


def test_parse_ringing_and_answered():
    event = parse_callback({"CallSid": "exo-1", "CallStatus": "ringing", "CustomField": TOKEN})
    assert isinstance(event, RingingEvent)
    assert event.internal_call_id == "call-1"
    assert event.voice_agent_id == "agent-1"
    assert event.source_call_id == "exo-1"

    assert isinstance(parse_callback({"CallSid": "exo-1", "CallStatus": "in-progress"}), AnsweredEvent)


def test_parse_terminal_with_duration():
    event = parse_callback(
        {"CallSid": "exo-1", "Status": "completed", "Duration": "37", "CustomField": TOKEN}
    )
    assert isinstance(event, TerminalEvent)
    assert event.raw_status == "completed"
    assert event.duration == 37


def test_stream_status_takes_precedence():
    event = parse_callback(
        {
            "CallSid": "exo-1",
            "CallStatus": "in-progress",
            "Stream[Status]": "cancelled",
            "Stream[DisconnectedBy]": "user",
            "Stream[Duration]": "12",
            "CustomField": TOKEN,
        }
    )
    assert isinstance(event, StreamStatusEvent)
    assert event.stream_status == "cancelled"
    assert event.disconnected_by == "user"
    assert event.duration == 12


def test_stream_failure_carries_error_detail():
    event = parse_callback({"CallSid": "exo-1", "Stream[Status]": "failed", "Stream[Error]": "WS 1006"})
    assert isinstance(event, StreamStatusEvent)
    assert event.error_detail == "WS 1006"


def test_unknown_status_is_unhandled():
    event = parse_callback({"CallSid": "exo-1", "CallStatus": "teleporting"})
    assert isinstance(event, UnhandledEvent)
    assert event.raw_status == "teleporting"


def test_bad_token_leaves_internal_id_unset():
    event = parse_callback({"CallSid": "exo-1", "CallStatus": "busy", "CustomField": "{oops"})
    assert isinstance(event, TerminalEvent)
    assert event.internal_call_id is None
    assert event.source_call_id == "exo-1"


def test_bad_duration_is_ignored():
    event = parse_callback({"CallSid": "exo-1", "CallStatus": "completed", "Duration": "abc"})
    assert event.duration is None
