"""
Client status synchronizer.

After a call is placed, ``CallSession`` polls the call's status endpoint until
the call is connected with a credential, then hands off to a live conversation
channel. A session is in exactly one mode at a time:

- idle: not started, or finished
- polling: the poll task owns the call
- live: the conversation channel owns the call

The switch from polling to live happens synchronously, before any await, so
two poll results racing with ``connected`` still open only one channel.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import httpx
from pydantic import ValidationError

from callflow.client.conversation_channel import EVENT_CLOSE, ConversationChannel, invoke_callback
from callflow.config.constants import (
    CALL_LIST_REFRESH_DELAY_SECONDS,
    LOCAL_STATUS_DISCONNECTED,
    LOGGER_NAME,
    MAX_POLL_DURATION_SECONDS,
    POLL_INTERVAL_SECONDS,
    POLL_TIMEOUT_REASON,
    STATUS_CONNECTED,
    STATUS_FAILED,
)
from callflow.models.api_schemas import CallStatusResponse
from callflow.models.call_record import TERMINAL_STATUSES

logger = logging.getLogger(LOGGER_NAME)

TERMINAL_STATUS_VALUES = {status.value for status in TERMINAL_STATUSES}

ChannelFactory = Callable[[str], ConversationChannel]


class SessionMode(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    LIVE = "live"


class CallSession:
    """
    Follows one call from placement to its end.

    Attributes:
        call_id: Internal call id returned by ``POST /calls``
        mode: Current SessionMode
        status: Last known status, ``disconnected`` after a user hangup
        failure_reason: Reason reported by the server or set locally
        error: Last transient error, cleared by the next successful poll
        channel: The live conversation channel, once opened
        done: Set when the session reaches a final local state
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        call_id: str,
        channel_factory: ChannelFactory = ConversationChannel,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        max_poll_duration: float = MAX_POLL_DURATION_SECONDS,
        refresh_delay: float = CALL_LIST_REFRESH_DELAY_SECONDS,
        on_status: Optional[Callable[[str], Any]] = None,
        on_error: Optional[Callable[[str], Any]] = None,
        on_live: Optional[Callable[[ConversationChannel], Any]] = None,
        on_refresh: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self.http = http
        self.call_id = call_id
        self.channel_factory = channel_factory
        self.poll_interval = poll_interval
        self.max_poll_duration = max_poll_duration
        self.refresh_delay = refresh_delay
        self.on_status = on_status
        self.on_error = on_error
        self.on_live = on_live
        self.on_refresh = on_refresh

        self.mode = SessionMode.IDLE
        self.status: Optional[str] = None
        self.failure_reason: Optional[str] = None
        self.error: Optional[str] = None
        self.channel: Optional[ConversationChannel] = None
        self.done = asyncio.Event()

        self._poll_task: Optional[asyncio.Task] = None
        self._open_task: Optional[asyncio.Task] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._hangup_started = False

    def start(self) -> None:
        """Begin polling. Has no effect unless the session is idle and unfinished."""
        if self.mode != SessionMode.IDLE or self.done.is_set():
            return
        self.mode = SessionMode.POLLING
        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info(f"Polling status of call {self.call_id}")

    async def _poll_loop(self) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()
        while self.mode == SessionMode.POLLING:
            if loop.time() - started >= self.max_poll_duration:
                logger.warning(f"Call {self.call_id} polled for {self.max_poll_duration}s; giving up")
                await self._finish(STATUS_FAILED, POLL_TIMEOUT_REASON)
                break
            await self.poll_once()
            if self.mode != SessionMode.POLLING:
                break
            await asyncio.sleep(self.poll_interval)

    async def poll_once(self) -> None:
        """Fetch the status once and act on it."""
        if self.mode != SessionMode.POLLING:
            return
        try:
            response = await self.http.get(f"/calls/{self.call_id}/status")
        except httpx.HTTPError as e:
            await self._transient_error(f"Status poll failed: {e}")
            return

        if self.mode != SessionMode.POLLING:
            # Hung up or handed off while the request was in flight
            return
        if response.status_code == 404:
            self.error = "Call not found"
            await self._notify(self.on_error, self.error)
            await self._finish(self.status, self.error)
            return
        if response.status_code >= 400:
            await self._transient_error(f"Status poll returned HTTP {response.status_code}")
            return

        try:
            body = CallStatusResponse(**response.json())
        except (ValueError, ValidationError) as e:
            await self._transient_error(f"Unreadable status response: {e}")
            return

        self.error = None
        await self._handle_status(body)

    async def _transient_error(self, message: str) -> None:
        logger.warning(f"Call {self.call_id}: {message}")
        self.error = message
        await self._notify(self.on_error, message)

    async def _handle_status(self, body: CallStatusResponse) -> None:
        if body.status != self.status:
            logger.info(f"Call {self.call_id} status: {body.status}")
            self.status = body.status
            self.failure_reason = body.failureReason
            await self._notify(self.on_status, body.status)

        if body.status == STATUS_CONNECTED and body.signedUrl:
            await self._go_live(body.signedUrl)
        elif body.status in TERMINAL_STATUS_VALUES:
            await self._finish(body.status, body.failureReason)

    async def _go_live(self, signed_url: str) -> None:
        if self.mode != SessionMode.POLLING:
            return
        # Claim the call before the first await so no other poll result can
        self.mode = SessionMode.LIVE
        self._cancel_polling()

        channel = self.channel_factory(signed_url)
        self.channel = channel
        channel.on(EVENT_CLOSE, self._on_channel_closed)
        logger.info(f"Call {self.call_id} connected; opening conversation channel")

        self._open_task = asyncio.create_task(channel.open())
        try:
            await self._open_task
        except asyncio.CancelledError:
            logger.info(f"Opening conversation channel for call {self.call_id} was cancelled")
            return
        except Exception as e:
            logger.error(f"Could not open conversation channel for call {self.call_id}: {e}")
            self.error = f"Could not open conversation channel: {e}"
            await self._notify(self.on_error, self.error)
            await self._finish(self.status, self.error)
            return

        if self.mode == SessionMode.LIVE:
            await self._notify(self.on_live, channel)

    async def _on_channel_closed(self) -> None:
        if self.mode != SessionMode.LIVE:
            return
        logger.info(f"Conversation channel for call {self.call_id} closed")
        await self._finish(self.status, self.failure_reason)

    async def hangup(self) -> None:
        """
        End the call from the client side.

        Stops polling, cancels a pending channel open, closes the live channel and
        asks the server to hang up. The session reports ``disconnected`` whatever
        the hangup request returns.
        """
        if self._hangup_started:
            return
        self._hangup_started = True
        self.mode = SessionMode.IDLE
        self._cancel_polling()

        if self._open_task is not None and not self._open_task.done():
            self._open_task.cancel()
        if self.channel is not None:
            await self.channel.close()

        try:
            response = await self.http.post(f"/calls/{self.call_id}/hangup")
            if response.status_code >= 400:
                logger.warning(f"Hangup request for call {self.call_id} returned {response.status_code}")
        except httpx.HTTPError as e:
            logger.warning(f"Hangup request for call {self.call_id} failed: {e}")

        await self._finish(LOCAL_STATUS_DISCONNECTED, None)

    async def close(self) -> None:
        """Stop everything without hanging up; used when the client exits."""
        self.mode = SessionMode.IDLE
        self._cancel_polling()
        if self._open_task is not None and not self._open_task.done():
            self._open_task.cancel()
        if self.channel is not None:
            await self.channel.close()
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
        self.done.set()

    async def _finish(self, status: Optional[str], reason: Optional[str]) -> None:
        if self.done.is_set():
            return
        self.mode = SessionMode.IDLE
        self._cancel_polling()
        if status != self.status:
            self.status = status
            await self._notify(self.on_status, status)
        if reason:
            self.failure_reason = reason
        self.done.set()
        self._schedule_refresh()

    def _schedule_refresh(self) -> None:
        if self.on_refresh is None or self._refresh_task is not None:
            return
        self._refresh_task = asyncio.create_task(self._delayed_refresh())

    async def _delayed_refresh(self) -> None:
        await asyncio.sleep(self.refresh_delay)
        await invoke_callback(self.on_refresh)

    def _cancel_polling(self) -> None:
        task = self._poll_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _notify(self, callback: Optional[Callable[..., Any]], *args: Any) -> None:
        if callback is not None:
            await invoke_callback(callback, *args)
