"""
Live conversation channel with the voice API.

Once a call is connected, the client opens the signed URL issued for it and
exchanges JSON control messages and audio with the voice agent. This module
owns that WebSocket: it sends the initiation message, answers keep-alive pings,
forwards captured audio, and dispatches inbound events to registered
listeners.
"""

import asyncio
import base64
import inspect
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Set

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedError, ConnectionClosedOK

from callflow.config.constants import LOGGER_NAME
from callflow.models.voice_messages import (
    AgentResponseCorrectionMessage,
    AgentResponseMessage,
    AudioMessage,
    ConversationInitiationMessage,
    ConversationMetadataMessage,
    InterruptionMessage,
    PingMessage,
    PongMessage,
    UserAudioChunkMessage,
    UserTranscriptMessage,
    parse_channel_message,
)

logger = logging.getLogger(LOGGER_NAME)

# Listener event names
EVENT_AUDIO = "audio"
EVENT_USER_TRANSCRIPT = "user_transcript"
EVENT_AGENT_RESPONSE = "agent_response"
EVENT_AGENT_RESPONSE_CORRECTION = "agent_response_correction"
EVENT_INTERRUPTION = "interruption"
EVENT_METADATA = "metadata"
EVENT_CLOSE = "close"

CHANNEL_EVENTS = {
    EVENT_AUDIO,
    EVENT_USER_TRANSCRIPT,
    EVENT_AGENT_RESPONSE,
    EVENT_AGENT_RESPONSE_CORRECTION,
    EVENT_INTERRUPTION,
    EVENT_METADATA,
    EVENT_CLOSE,
}

WS_MAX_SIZE = 16 * 1024 * 1024  # 16MB - large enough for audio chunks
CONNECTION_TIMEOUT = 30  # seconds


async def invoke_callback(callback: Callable[..., Any], *args: Any) -> None:
    """Call a sync or async callback, logging instead of propagating its errors."""
    try:
        result = callback(*args)
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.error(f"Error in callback {getattr(callback, '__name__', callback)}: {e}", exc_info=True)


class ConversationChannel:
    """
    WebSocket client for one voice API conversation.

    Attributes:
        signed_url: Single-use URL issued for this conversation
        conversation_id: Voice API conversation id, once the server reports it
    """

    def __init__(self, signed_url: str, connect: Callable[..., Any] = websockets.connect):
        self.signed_url = signed_url
        self._connect = connect
        self.ws = None
        self.conversation_id: Optional[str] = None
        self.listeners: Dict[str, List[Callable[..., Any]]] = {name: [] for name in CHANNEL_EVENTS}
        self._recv_task: Optional[asyncio.Task] = None
        self._pong_tasks: Set[asyncio.Task] = set()
        self._is_open = False
        self._is_closing = False

    @property
    def is_open(self) -> bool:
        return self._is_open

    def on(self, event: str, callback: Callable[..., Any]) -> None:
        """
        Register a listener.

        Events and their arguments:
        - audio: ``bytes`` of PCM16 audio
        - user_transcript, agent_response: ``str``
        - agent_response_correction: original ``str``, corrected ``str``
        - interruption: optional reason ``str``
        - metadata: conversation id ``str``
        - close: no arguments
        """
        if event not in self.listeners:
            raise ValueError(f"Unknown channel event: {event}")
        self.listeners[event].append(callback)

    async def _emit(self, event: str, *args: Any) -> None:
        for callback in list(self.listeners[event]):
            await invoke_callback(callback, *args)

    async def open(self) -> None:
        """
        Connect and send the conversation initiation message.

        Raises:
            Exception: Whatever the WebSocket library raises when the connection fails
        """
        if self._is_open or self._is_closing:
            logger.warning("Conversation channel already opened")
            return

        logger.info("Opening voice API conversation channel")
        self.ws = await asyncio.wait_for(
            self._connect(self.signed_url, max_size=WS_MAX_SIZE),
            timeout=CONNECTION_TIMEOUT,
        )
        self._is_open = True
        await self.ws.send(ConversationInitiationMessage().model_dump_json())
        self._recv_task = asyncio.create_task(self._recv_loop())
        logger.info("Conversation channel open")

    async def send_audio(self, pcm: bytes) -> bool:
        """
        Send one captured PCM16 frame.

        Returns:
            True if the frame was sent, False if the channel is not open
        """
        if not self._is_open or self.ws is None:
            logger.debug("Dropping audio frame: conversation channel not open")
            return False

        message = UserAudioChunkMessage(user_audio_chunk=base64.b64encode(pcm).decode("utf-8"))
        try:
            await self.ws.send(message.model_dump_json())
            return True
        except ConnectionClosed as e:
            logger.warning(f"Connection closed while sending audio: {e}")
            return False

    async def _send_pong(self, event_id: int, delay_ms: Optional[int]) -> None:
        if delay_ms:
            await asyncio.sleep(delay_ms / 1000)
        if not self._is_open or self.ws is None:
            return
        try:
            await self.ws.send(PongMessage(event_id=event_id).model_dump_json())
            logger.debug(f"Sent pong for event {event_id}")
        except ConnectionClosed:
            logger.debug(f"Channel closed before pong for event {event_id}")

    def _schedule_pong(self, message: PingMessage) -> None:
        task = asyncio.create_task(
            self._send_pong(message.ping_event.event_id, message.ping_event.ping_ms)
        )
        self._pong_tasks.add(task)
        task.add_done_callback(self._pong_tasks.discard)

    async def _dispatch(self, raw: Any) -> None:
        if isinstance(raw, bytes):
            await self._emit(EVENT_AUDIO, raw)
            return

        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Received invalid JSON on conversation channel: {raw[:100]}...")
            return
        if not isinstance(data, dict):
            logger.warning("Received non-object JSON on conversation channel")
            return

        message = parse_channel_message(data)
        if message is None:
            return

        if isinstance(message, PingMessage):
            self._schedule_pong(message)
        elif isinstance(message, AudioMessage):
            await self._emit(EVENT_AUDIO, message.audio_bytes)
        elif isinstance(message, UserTranscriptMessage):
            await self._emit(EVENT_USER_TRANSCRIPT, message.text)
        elif isinstance(message, AgentResponseMessage):
            await self._emit(EVENT_AGENT_RESPONSE, message.text)
        elif isinstance(message, AgentResponseCorrectionMessage):
            event = message.agent_response_correction_event
            await self._emit(
                EVENT_AGENT_RESPONSE_CORRECTION,
                event.original_agent_response,
                event.corrected_agent_response,
            )
        elif isinstance(message, InterruptionMessage):
            await self._emit(EVENT_INTERRUPTION, message.interruption_event.reason)
        elif isinstance(message, ConversationMetadataMessage):
            self.conversation_id = message.conversation_initiation_metadata_event.conversation_id
            logger.info(f"Conversation started: {self.conversation_id}")
            await self._emit(EVENT_METADATA, self.conversation_id)

    async def _recv_loop(self) -> None:
        """Receive messages until the connection closes."""
        try:
            while self._is_open:
                raw = await self.ws.recv()
                await self._dispatch(raw)
        except ConnectionClosedOK:
            logger.info("Conversation channel closed normally")
        except ConnectionClosedError as e:
            logger.warning(f"Conversation channel closed unexpectedly: {e}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in conversation receive loop: {e}", exc_info=True)

        self._is_open = False
        if not self._is_closing:
            await self._emit(EVENT_CLOSE)

    async def close(self) -> None:
        """Close the channel. Safe to call more than once."""
        if self._is_closing:
            return
        self._is_closing = True
        was_open = self._is_open
        self._is_open = False

        for task in list(self._pong_tasks):
            task.cancel()
        recv_task = self._recv_task
        if recv_task and not recv_task.done() and recv_task is not asyncio.current_task():
            recv_task.cancel()
            try:
                await recv_task
            except asyncio.CancelledError:
                logger.debug("Receive task cancelled")

        if self.ws is not None:
            try:
                await self.ws.close()
            except ConnectionClosed:
                logger.debug("Channel already closed by the server")

        if was_open:
            logger.info("Conversation channel closed")
            await self._emit(EVENT_CLOSE)
