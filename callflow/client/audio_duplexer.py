"""
Audio capture and playback for a live conversation.

Outbound, microphone frames are encoded to PCM16 and sent as soon as they are
captured, with at most one frame in flight. Inbound, agent audio clips are
played strictly in arrival order: the next clip starts only after the previous
one finishes or fails. Closing discards anything still queued and stops the
clip that is playing.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Optional, Union

import numpy as np

from callflow.client.conversation_channel import EVENT_AUDIO, EVENT_CLOSE, ConversationChannel
from callflow.config.constants import (
    AUDIO_CHANNELS,
    AUDIO_FRAME_SAMPLES,
    AUDIO_SAMPLE_RATE,
    AUDIO_SAMPLE_WIDTH,
    LOGGER_NAME,
)

logger = logging.getLogger(LOGGER_NAME)


def encode_pcm16(samples: Union[bytes, np.ndarray]) -> bytes:
    """
    Encode captured samples as little-endian 16-bit PCM.

    Float arrays are treated as normalized samples in [-1.0, 1.0] and clipped;
    integer arrays and raw bytes are taken as 16-bit samples already.
    """
    if isinstance(samples, (bytes, bytearray)):
        if len(samples) % AUDIO_SAMPLE_WIDTH:
            raise ValueError("PCM16 data must contain whole samples")
        return bytes(samples)

    array = np.asarray(samples)
    if np.issubdtype(array.dtype, np.floating):
        array = np.clip(array, -1.0, 1.0) * 32767.0
    return array.astype("<i2").tobytes()


class AudioSource(ABC):
    """Produces captured audio frames."""

    @abstractmethod
    async def read_frame(self) -> Optional[bytes]:
        """Return the next PCM16 frame, or None when capture has ended."""

    def close(self) -> None:
        pass


class AudioSink(ABC):
    """Plays audio clips one at a time."""

    @abstractmethod
    async def play(self, clip: bytes) -> None:
        """Play a PCM16 clip, returning when playback finishes."""

    def stop(self) -> None:
        """Stop any clip currently playing."""

    def close(self) -> None:
        pass


class PlaybackState(str, Enum):
    IDLE = "idle"
    PLAYING = "playing"


class PlaybackQueue:
    """
    Single-consumer playback queue.

    Clips are appended to an arena and a cursor marks the next one to play.
    One consumer task drains the arena, so at most one clip plays at a time.
    """

    def __init__(self, sink: AudioSink):
        self.sink = sink
        self.clips: List[bytes] = []
        self.cursor = 0
        self.state = PlaybackState.IDLE
        self._consumer: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def pending(self) -> int:
        return len(self.clips) - self.cursor

    def enqueue(self, clip: bytes) -> None:
        """Queue a clip and start the consumer if it is idle."""
        if self._closed:
            logger.debug("Dropping audio clip: playback queue closed")
            return
        if not clip:
            return
        self.clips.append(clip)
        if self.state == PlaybackState.IDLE:
            self.state = PlaybackState.PLAYING
            self._consumer = asyncio.create_task(self._drain())

    async def _drain(self) -> None:
        try:
            while self.cursor < len(self.clips):
                clip = self.clips[self.cursor]
                self.cursor += 1
                try:
                    await self.sink.play(clip)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(f"Error playing audio clip: {e}")
            # Everything before the cursor has been played
            self.clips.clear()
            self.cursor = 0
        finally:
            self.state = PlaybackState.IDLE

    async def wait_idle(self) -> None:
        """Wait until every queued clip has been played."""
        while self._consumer is not None and not self._consumer.done():
            await asyncio.shield(self._consumer)

    async def close(self) -> None:
        """Discard queued clips and stop the clip that is playing."""
        self._closed = True
        discarded = self.pending
        self.clips.clear()
        self.cursor = 0
        if self._consumer is not None and not self._consumer.done():
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                logger.debug("Playback consumer cancelled")
        self.sink.stop()
        self.state = PlaybackState.IDLE
        if discarded:
            logger.info(f"Discarded {discarded} queued audio clips")


class AudioDuplexer:
    """
    Connects an audio source and sink to a live conversation channel.

    Attributes:
        channel: The open conversation channel
        source: Microphone (or any frame producer)
        playback: Queue feeding the sink
    """

    def __init__(self, channel: ConversationChannel, source: AudioSource, sink: AudioSink):
        self.channel = channel
        self.source = source
        self.sink = sink
        self.playback = PlaybackQueue(sink)
        self._capture_task: Optional[asyncio.Task] = None
        self._stopped = False
        channel.on(EVENT_AUDIO, self.playback.enqueue)
        channel.on(EVENT_CLOSE, self.stop)

    def start(self) -> None:
        if self._capture_task is None:
            self._capture_task = asyncio.create_task(self._capture_loop())
            logger.info("Audio capture started")

    async def _capture_loop(self) -> None:
        frames_sent = 0
        while True:
            frame = await self.source.read_frame()
            if frame is None:
                logger.info("Audio source ended")
                break
            if not await self.channel.send_audio(encode_pcm16(frame)):
                break
            frames_sent += 1
        logger.debug(f"Capture loop exited after {frames_sent} frames")

    async def stop(self) -> None:
        """
        Stop capture and playback. Does not close the channel.

        Also runs when the channel closes, so queued agent audio is dropped as
        soon as the conversation ends. Safe to call more than once.
        """
        if self._stopped:
            return
        self._stopped = True
        if self._capture_task is not None and not self._capture_task.done():
            self._capture_task.cancel()
            try:
                await self._capture_task
            except asyncio.CancelledError:
                logger.debug("Capture task cancelled")
        await self.playback.close()
        self.source.close()
        self.sink.close()
        logger.info("Audio duplexer stopped")


class PyAudioMicrophone(AudioSource):
    """Microphone capture through PyAudio (install the ``audio`` extra)."""

    def __init__(self, frames_per_buffer: int = AUDIO_FRAME_SAMPLES):
        import pyaudio

        self.frames_per_buffer = frames_per_buffer
        self.p = pyaudio.PyAudio()
        self.stream = self.p.open(
            format=pyaudio.paInt16,
            channels=AUDIO_CHANNELS,
            rate=AUDIO_SAMPLE_RATE,
            input=True,
            frames_per_buffer=frames_per_buffer,
        )
        self._closed = False
        logger.info(f"Microphone initialized: {AUDIO_SAMPLE_RATE}Hz, {AUDIO_CHANNELS} channel(s)")

    async def read_frame(self) -> Optional[bytes]:
        if self._closed:
            return None
        return await asyncio.to_thread(
            self.stream.read, self.frames_per_buffer, exception_on_overflow=False
        )

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.stream.stop_stream()
        self.stream.close()
        self.p.terminate()
        logger.info("Microphone stopped")


class PyAudioSpeaker(AudioSink):
    """Speaker playback through PyAudio (install the ``audio`` extra)."""

    def __init__(self):
        import pyaudio

        self.p = pyaudio.PyAudio()
        self.stream = self.p.open(
            format=pyaudio.paInt16,
            channels=AUDIO_CHANNELS,
            rate=AUDIO_SAMPLE_RATE,
            output=True,
        )
        self._stopped = False

    async def play(self, clip: bytes) -> None:
        self._stopped = False
        chunk_size = AUDIO_FRAME_SAMPLES * AUDIO_SAMPLE_WIDTH
        for start in range(0, len(clip), chunk_size):
            if self._stopped:
                break
            await asyncio.to_thread(self.stream.write, clip[start : start + chunk_size])

    def stop(self) -> None:
        self._stopped = True

    def close(self) -> None:
        self.stream.stop_stream()
        self.stream.close()
        self.p.terminate()
        logger.info("Speaker stopped")
