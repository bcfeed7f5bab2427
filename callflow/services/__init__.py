"""
Services module for storage and external API integrations.

Key components:
- call_store: The CallRecordStore interface and its in-memory implementation with
  compare-and-set status updates.
- agent_directory: Registry of voice agents calls can be placed with.
- telephony_gateway: Exotel adapter placing and terminating calls and parsing
  status callbacks into LifecycleEvents.
- voice_session_bridge: ElevenLabs adapter issuing signed conversation URLs and
  rendering the provider's stream and hangup directives.
"""
