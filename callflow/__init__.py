"""
Callflow - outbound phone calls bridged to conversational voice agents

This application places outbound phone calls through a telephony provider
(Exotel) and, once the callee answers, streams the call audio to a
conversational voice API (ElevenLabs) agent. It keeps one authoritative status
per call by reconciling three independently evolving sources: our own call
record, the provider's asynchronous status callbacks, and the voice API
session.

Architecture Overview:
- FastAPI server exposing the dashboard REST API and the provider webhooks
- A pure call lifecycle state machine plus a reconciler service that persists
  its results with conditional updates
- Provider adapters built on httpx for the telephony and voice APIs
- A client package that polls call status, hands off to the live voice channel
  exactly once, and plays agent audio strictly in order

Key Components:
- config: Application-wide constants, settings and logging setup
- models: Call records, lifecycle events, REST schemas and voice channel messages
- reconciler: The state machine and the service applying events to records
- services: Call record store, agent directory and provider adapters
- handlers: FastAPI routes for calls, agents and telephony webhooks
- client: Status synchronizer, live conversation channel and audio duplexer

Getting Started:
1. Set up environment variables (or a .env file):
   - EXOTEL_ACCOUNT_SID, EXOTEL_API_KEY, EXOTEL_API_TOKEN, EXOTEL_CALLER_ID
   - ELEVENLABS_API_KEY
   - PUBLIC_BASE_URL: Public address the provider can reach for webhooks
   - PORT, HOST, LOG_LEVEL

2. Start the server:
   ```bash
   python run.py
   ```

3. Place a call from the command line:
   ```bash
   python client.py --agent-id <agent> --phone +911234567890 --name "Test"
   ```
"""
