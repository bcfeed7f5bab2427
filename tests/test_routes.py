"""
HTTP tests for the dashboard and webhook routes.

Provider APIs are served by httpx MockTransports so the whole flow, from
placing a call to hanging it up, runs through the real application.
"""

from xml.etree import ElementTree

import httpx
import pytest
from fastapi.testclient import TestClient

from callflow.main import create_app
from callflow.services.telephony_gateway import encode_correlation_token

SIGNED_URL = "wss://api.elevenlabs.io/v1/convai/conversation?agent_id=agent-1&token=abc"


class FakeExotel:
    def __init__(self):
        self.requests = []
        self.place_response = httpx.Response(200, json={"Call": {"Sid": "exo-1", "Status": "queued"}})

    def __call__(self, request):
        self.requests.append(request)
        if request.url.path.endswith("/Calls.json"):
            return self.place_response
        return httpx.Response(200, json={"Call": {"Sid": "exo-1", "Status": "completed"}})


class FakeVoiceApi:
    def __init__(self):
        self.requests = []
        self.response = httpx.Response(200, json={"signed_url": SIGNED_URL})

    def __call__(self, request):
        self.requests.append(request)
        return self.response


@pytest.fixture
def exotel():
    return FakeExotel()


@pytest.fixture
def voice_api():
    return FakeVoiceApi()


@pytest.fixture
def client(settings, exotel, voice_api):
    app = create_app(
        settings,
        telephony_transport=httpx.MockTransport(exotel),
        voice_transport=httpx.MockTransport(voice_api),
    )
    client = TestClient(app, headers={"X-User-Id": "user-1"})
    response = client.post("/agents", json={"agentId": "agent-1", "name": "Sales agent"})
    assert response.status_code == 201
    return client


def start_call(client):
    response = client.post(
        "/calls",
        json={"agentId": "agent-1", "phoneNumber": "+91 (123) 456-7890", "contactName": "Asha"},
    )
    assert response.status_code == 200
    return response.json()


def token_for(call_id):
    return encode_correlation_token(call_id, "agent-1")


def test_initiate_call(client, exotel):
    body = start_call(client)

    assert body["initialStatus"] == "ringing"
    assert body["externalCallId"] == "exo-1"
    assert body["failureReason"] is None
    assert len(exotel.requests) == 1
    assert b"To=%2B911234567890" in exotel.requests[0].content


def test_initiate_call_rejected_by_provider(client, exotel):
    exotel.place_response = httpx.Response(
        400, json={"RestException": {"Message": "Invalid destination number"}}
    )

    body = start_call(client)

    assert body["initialStatus"] == "failed"
    assert "Invalid destination number" in body["failureReason"]
    assert body["message"] == "Call failed"


def test_initiate_call_unknown_agent(client):
    response = client.post(
        "/calls", json={"agentId": "ghost", "phoneNumber": "+911234567890", "contactName": "Asha"}
    )
    assert response.status_code == 404
    assert "ghost" in response.json()["message"]


def test_initiate_call_disabled_agent(client):
    client.post("/agents", json={"agentId": "agent-2", "name": "Retired", "disabled": True})
    response = client.post(
        "/calls", json={"agentId": "agent-2", "phoneNumber": "+911234567890", "contactName": "Asha"}
    )
    assert response.status_code == 400


@pytest.mark.parametrize("phone", ["12ab", "123", ""])
def test_initiate_call_invalid_phone(client, phone, exotel):
    response = client.post(
        "/calls", json={"agentId": "agent-1", "phoneNumber": phone, "contactName": "Asha"}
    )
    assert response.status_code == 422
    assert exotel.requests == []


def test_full_call_flow(client, exotel, voice_api):
    call = start_call(client)
    call_id = call["callId"]

    response = client.post(
        "/telephony/status",
        data={"CallSid": "exo-1", "CallStatus": "ringing", "CustomField": token_for(call_id)},
    )
    assert response.status_code == 200

    response = client.post(
        "/telephony/answer",
        data={"CallSid": "exo-1", "CallStatus": "in-progress", "CustomField": token_for(call_id)},
    )
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/xml")
    stream = ElementTree.fromstring(response.text).find("Stream")
    assert stream.get("url") == SIGNED_URL

    status = client.get(f"/calls/{call_id}/status").json()
    assert status == {
        "status": "connected",
        "signedUrl": SIGNED_URL,
        "externalCallId": "exo-1",
        "failureReason": None,
    }

    response = client.post(f"/calls/{call_id}/hangup")
    assert response.status_code == 200
    assert response.json()["accepted"] is True
    assert exotel.requests[-1].url.path.endswith("/Calls/exo-1.json")

    status = client.get(f"/calls/{call_id}/status").json()
    assert status["status"] == "ended"
    assert status["signedUrl"] is None

    response = client.get(
        "/telephony/status",
        params={
            "CallSid": "exo-1",
            "CallStatus": "completed",
            "Duration": "31",
            "CustomField": token_for(call_id),
        },
    )
    assert response.status_code == 200
    detail = client.get(f"/calls/{call_id}").json()
    assert detail["status"] == "ended"
    assert detail["duration"] == 31
    assert detail["agentName"] == "Sales agent"
    assert "signedUrl" not in detail


def test_answer_webhook_hangs_up_when_voice_api_fails(client, voice_api):
    voice_api.response = httpx.Response(500)
    call = start_call(client)

    response = client.get(
        "/telephony/answer", params={"CallSid": "exo-1", "CustomField": token_for(call["callId"])}
    )

    assert response.status_code == 200
    assert ElementTree.fromstring(response.text).find("Hangup") is not None
    status = client.get(f"/calls/{call['callId']}/status").json()
    assert status["status"] == "failed"
    assert status["failureReason"]


def test_answer_webhook_uncorrelated_hangs_up(client):
    response = client.post("/telephony/answer", data={"CallSid": "exo-unknown"})
    assert response.status_code == 200
    assert "<Hangup" in response.text


def test_status_webhook_uncorrelated_is_400(client):
    response = client.post("/telephony/status", data={"CallSid": "exo-unknown", "CallStatus": "completed"})
    assert response.status_code == 400


def test_status_webhook_falls_back_to_external_id(client):
    call = start_call(client)
    response = client.post("/telephony/status", data={"CallSid": "exo-1", "CallStatus": "busy"})
    assert response.json()["status"] == "busy"
    assert client.get(f"/calls/{call['callId']}/status").json()["failureReason"] == "Line busy"


def test_status_webhook_unhandled_status(client):
    response = client.post("/telephony/status", data={"CallSid": "exo-1", "CallStatus": "warping"})
    assert response.status_code == 200
    assert response.json()["applied"] is False


def test_calls_are_scoped_to_user(client):
    call = start_call(client)
    other = {"X-User-Id": "user-2"}

    assert client.get(f"/calls/{call['callId']}", headers=other).status_code == 404
    assert client.get(f"/calls/{call['callId']}/status", headers=other).status_code == 404
    assert client.post(f"/calls/{call['callId']}/hangup", headers=other).status_code == 404
    assert client.get("/calls", headers=other).json() == {"calls": []}


def test_list_calls(client):
    first = start_call(client)
    second = start_call(client)

    calls = client.get("/calls").json()["calls"]
    assert [c["callId"] for c in calls] == [second["callId"], first["callId"]]
    assert len(client.get("/calls", params={"limit": 1}).json()["calls"]) == 1
    assert client.get("/calls", params={"limit": 0}).status_code == 422


def test_unknown_call_is_404(client):
    assert client.get("/calls/nope/status").status_code == 404


def test_hangup_of_finished_call(client, exotel):
    call = start_call(client)
    client.post("/telephony/status", data={"CallSid": "exo-1", "CallStatus": "no-answer"})
    requests_before = len(exotel.requests)

    response = client.post(f"/calls/{call['callId']}/hangup")

    assert response.json() == {"accepted": True, "message": "Call already no-answer"}
    assert len(exotel.requests) == requests_before


def test_signed_url(client, voice_api):
    response = client.get("/signed-url")
    assert response.status_code == 200
    assert response.json() == {"signedUrl": SIGNED_URL}
    assert voice_api.requests[0].url.params["agent_id"] == "agent-default"


def test_signed_url_provider_failure(client, voice_api):
    voice_api.response = httpx.Response(503)
    response = client.get("/signed-url", params={"agentId": "agent-1"})
    assert response.status_code == 502
    assert "message" in response.json()


def test_agent_registry(client):
    agents = client.get("/agents").json()["agents"]
    assert {a["agentId"] for a in agents} == {"agent-default", "agent-1"}

    assert client.get("/agents/agent-1").json()["name"] == "Sales agent"
    assert client.delete("/agents/agent-1").status_code == 204
    assert client.get("/agents/agent-1").status_code == 404
    assert client.delete("/agents/agent-1").status_code == 404


def test_agent_create_validation(client):
    response = client.post("/agents", json={"agentId": "  ", "name": "Blank"})
    assert response.status_code == 422
