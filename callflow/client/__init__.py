"""
Client-side components for following a call and talking to the voice agent.

Key components:
- status_synchronizer: CallSession, which polls a call's status and hands off
  to the live channel exactly once, with explicit idle/polling/live modes.
- conversation_channel: WebSocket client for the voice API conversation,
  including ping/pong keep-alive and listener callbacks for transcripts,
  agent responses and interruptions.
- audio_duplexer: Microphone capture and strictly ordered playback of agent
  audio through a single-consumer queue.
"""
