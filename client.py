#!/usr/bin/env python3
"""
Command-line dialer.

Places a call through the server, follows its status, and once the call is
connected joins the conversation with the local microphone and speaker.
Press Ctrl+C to hang up.

Usage:
    python client.py --agent-id AGENT --phone +911234567890 --name "Test Contact"
"""

import argparse
import asyncio
import logging
import sys

import httpx

from callflow.client.audio_duplexer import AudioDuplexer, PyAudioMicrophone, PyAudioSpeaker
from callflow.client.conversation_channel import (
    EVENT_AGENT_RESPONSE,
    EVENT_INTERRUPTION,
    EVENT_USER_TRANSCRIPT,
    ConversationChannel,
)
from callflow.client.status_synchronizer import CallSession
from callflow.config.logging_config import configure_logging

logger = logging.getLogger("callflow")


def parse_args():
    parser = argparse.ArgumentParser(description="Place a call and talk to the voice agent")
    parser.add_argument("--server", default="http://localhost:8000", help="Server URL (default: http://localhost:8000)")
    parser.add_argument("--agent-id", required=True, help="Voice agent id")
    parser.add_argument("--phone", required=True, help="Destination phone number")
    parser.add_argument("--name", required=True, help="Contact name")
    parser.add_argument("--message", default=None, help="Custom message for the agent")
    parser.add_argument("--user-id", default="anonymous", help="Dashboard user id")
    parser.add_argument("--no-audio", action="store_true", help="Follow the call without joining the conversation")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser.parse_args()


async def run_client(args) -> int:
    async with httpx.AsyncClient(base_url=args.server, headers={"X-User-Id": args.user_id}, timeout=10.0) as http:
        response = await http.post(
            "/calls",
            json={
                "agentId": args.agent_id,
                "phoneNumber": args.phone,
                "contactName": args.name,
                "customMessage": args.message,
            },
        )
        if response.status_code != 200:
            print(f"Call rejected: {response.json().get('message', response.text)}")
            return 1

        call = response.json()
        print(f"Call {call['callId']}: {call['initialStatus']}")
        if call.get("failureReason"):
            print(f"Reason: {call['failureReason']}")
            return 1

        duplexer = None

        async def on_live(channel: ConversationChannel):
            nonlocal duplexer
            channel.on(EVENT_USER_TRANSCRIPT, lambda text: print(f"You: {text}"))
            channel.on(EVENT_AGENT_RESPONSE, lambda text: print(f"Agent: {text}"))
            channel.on(EVENT_INTERRUPTION, lambda reason: print("(interrupted)"))
            if not args.no_audio:
                duplexer = AudioDuplexer(channel, PyAudioMicrophone(), PyAudioSpeaker())
                duplexer.start()

        async def on_refresh():
            listing = await http.get("/calls", params={"limit": 5})
            for summary in listing.json().get("calls", []):
                print(f"  {summary['callId']}  {summary['status']:<10}  {summary['phoneNumber']}")

        session = CallSession(
            http,
            call["callId"],
            on_status=lambda status: print(f"Status: {status}"),
            on_error=lambda message: print(f"Warning: {message}"),
            on_live=on_live,
            on_refresh=on_refresh,
        )
        session.start()

        try:
            await session.done.wait()
        except asyncio.CancelledError:
            await session.hangup()
        finally:
            if duplexer is not None:
                await duplexer.stop()
            if session.failure_reason:
                print(f"Reason: {session.failure_reason}")
            # Let the delayed call list refresh run
            await asyncio.sleep(session.refresh_delay + 0.5)
            await session.close()
        return 0


def main():
    args = parse_args()
    configure_logging(args.log_level)
    try:
        sys.exit(asyncio.run(run_client(args)))
    except KeyboardInterrupt:
        print("Hung up")


if __name__ == "__main__":
    main()
