import asyncio
from unittest.mock import AsyncMock, MagicMock

import numpy as np
import pytest

from websockets.exceptions import ConnectionClosedOK

from callflow.client.audio_duplexer import (
    AudioDuplexer,
    AudioSink,
    AudioSource,
    PlaybackQueue,
    PlaybackState,
    encode_pcm16,
)
from callflow.client.conversation_channel import ConversationChannel


class RecordingSink(AudioSink):
    def __init__(self, delay=0.01, fail_on=None):
        self.delay = delay
        self.fail_on = fail_on
        self.played = []
        self.active = 0
        self.max_active = 0
        self.stopped = False
        self.closed = False

    async def play(self, clip):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
            if clip == self.fail_on:
                raise IOError("device error")
            self.played.append(clip)
        finally:
            self.active -= 1

    def stop(self):
        self.stopped = True

    def close(self):
        self.closed = True


class ListSource(AudioSource):
    def __init__(self, frames):
        self.frames = list(frames)
        self.closed = False

    async def read_frame(self):
        await asyncio.sleep(0)
        return self.frames.pop(0) if self.frames else None

    def close(self):
        self.closed = True


def test_encode_pcm16_from_floats():
    encoded = encode_pcm16(np.array([0.0, 1.0, -1.0, 2.0], dtype=np.float32))
    assert np.frombuffer(encoded, dtype="<i2").tolist() == [0, 32767, -32767, 32767]


def test_encode_pcm16_from_int16_and_bytes():
    samples = np.array([1, -2, 300], dtype=np.int16)
    assert encode_pcm16(samples) == samples.astype("<i2").tobytes()
    assert encode_pcm16(b"\x01\x00\x02\x00") == b"\x01\x00\x02\x00"


def test_encode_pcm16_rejects_partial_samples():
    with pytest.raises(ValueError):
        encode_pcm16(b"\x01\x00\x02")


@pytest.mark.asyncio
async def test_clips_play_strictly_in_order():
    sink = RecordingSink()
    queue = PlaybackQueue(sink)

    for clip in (b"one", b"two", b"three"):
        queue.enqueue(clip)
    assert queue.state == PlaybackState.PLAYING

    await queue.wait_idle()

    assert sink.played == [b"one", b"two", b"three"]
    assert sink.max_active == 1
    assert queue.state == PlaybackState.IDLE
    assert queue.clips == []
    assert queue.cursor == 0


@pytest.mark.asyncio
async def test_clip_queued_while_playing_waits_its_turn():
    sink = RecordingSink(delay=0.02)
    queue = PlaybackQueue(sink)

    queue.enqueue(b"first")
    await asyncio.sleep(0.005)
    queue.enqueue(b"second")
    await queue.wait_idle()

    assert sink.played == [b"first", b"second"]
    assert sink.max_active == 1


@pytest.mark.asyncio
async def test_failed_clip_does_not_block_the_next():
    sink = RecordingSink(fail_on=b"bad")
    queue = PlaybackQueue(sink)

    queue.enqueue(b"bad")
    queue.enqueue(b"good")
    await queue.wait_idle()

    assert sink.played == [b"good"]


@pytest.mark.asyncio
async def test_close_discards_pending_and_stops_playback():
    sink = RecordingSink(delay=1)
    queue = PlaybackQueue(sink)
    queue.enqueue(b"playing")
    queue.enqueue(b"pending")
    await asyncio.sleep(0.01)

    await queue.close()

    assert sink.stopped
    assert sink.played == []
    assert queue.pending == 0
    assert queue.state == PlaybackState.IDLE

    queue.enqueue(b"late")
    assert queue.pending == 0


@pytest.mark.asyncio
async def test_duplexer_sends_captured_frames_in_order():
    channel = MagicMock()
    channel.send_audio = AsyncMock(return_value=True)
    source = ListSource([b"\x01\x00", b"\x02\x00", b"\x03\x00"])
    sink = RecordingSink()

    duplexer = AudioDuplexer(channel, source, sink)
    channel.on.assert_any_call("audio", duplexer.playback.enqueue)
    channel.on.assert_any_call("close", duplexer.stop)

    duplexer.start()
    await asyncio.wait_for(duplexer._capture_task, 1)

    assert [c.args[0] for c in channel.send_audio.await_args_list] == [b"\x01\x00", b"\x02\x00", b"\x03\x00"]
    await duplexer.stop()
    assert source.closed
    assert sink.closed


@pytest.mark.asyncio
async def test_capture_stops_when_channel_closes():
    channel = MagicMock()
    channel.send_audio = AsyncMock(side_effect=[True, False, True])
    source = ListSource([b"\x01\x00"] * 5)

    duplexer = AudioDuplexer(channel, source, RecordingSink())
    duplexer.start()
    await asyncio.wait_for(duplexer._capture_task, 1)

    assert channel.send_audio.await_count == 2
    await duplexer.stop()


class StubSocket:
    def __init__(self):
        self.incoming = asyncio.Queue()
        self.close = AsyncMock()

    async def send(self, data):
        pass

    async def recv(self):
        item = await self.incoming.get()
        if isinstance(item, Exception):
            raise item
        return item


async def settle():
    for _ in range(5):
        await asyncio.sleep(0)


async def open_channel_with_queued_audio(sink):
    ws = StubSocket()
    channel = ConversationChannel("wss://voice.example.com/s", connect=AsyncMock(return_value=ws))
    duplexer = AudioDuplexer(channel, ListSource([]), sink)
    await channel.open()
    for clip in (b"\x01\x00", b"\x02\x00", b"\x03\x00"):
        ws.incoming.put_nowait(clip)
    await settle()
    assert duplexer.playback.state == PlaybackState.PLAYING
    assert duplexer.playback.pending == 2
    return ws, channel, duplexer


@pytest.mark.asyncio
async def test_closing_channel_discards_queued_audio():
    sink = RecordingSink(delay=1)
    _, channel, duplexer = await open_channel_with_queued_audio(sink)

    await channel.close()

    assert duplexer.playback.pending == 0
    assert duplexer.playback.state == PlaybackState.IDLE
    assert sink.stopped
    assert sink.closed
    assert sink.played == []


@pytest.mark.asyncio
async def test_server_close_discards_queued_audio():
    sink = RecordingSink(delay=1)
    ws, channel, duplexer = await open_channel_with_queued_audio(sink)

    ws.incoming.put_nowait(ConnectionClosedOK(None, None))
    await asyncio.wait_for(channel._recv_task, 1)

    assert not channel.is_open
    assert duplexer.playback.pending == 0
    assert duplexer.playback.state == PlaybackState.IDLE
    assert sink.stopped

    # Stopping again after the channel did it is harmless
    await duplexer.stop()
