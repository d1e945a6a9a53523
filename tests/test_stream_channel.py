import asyncio
import json

import pytest

from exceptions.exceptions import ChannelClosedError
from runtime.streaming.stream_channel import (
    StreamChannel,
    StreamEvent,
    StreamEventType,
    format_event,
)

from fakes import drain_events


def test_format_event_is_a_single_sse_data_line():
    event = StreamEvent(type=StreamEventType.SAVED, committed_id=12)

    line = format_event(event)

    assert line.startswith("data: ")
    assert line.endswith("\n\n")
    assert json.loads(line[len("data: "):]) == {"type": "saved", "committed_id": 12}


def test_send_after_close_is_dropped():
    channel = StreamChannel()
    channel.close()

    assert channel.send(StreamEventType.COMPLETE) is False


def test_close_twice_raises():
    channel = StreamChannel()
    channel.close()

    with pytest.raises(ChannelClosedError):
        channel.close()


@pytest.mark.asyncio
async def test_stream_yields_queued_events_then_ends():
    channel = StreamChannel(heartbeat_interval=3600)
    assert channel.send(StreamEventType.CONNECTED, session_id="s1")
    assert channel.send(StreamEventType.CONTENT, chunk="Hello")

    events = await drain_events(channel)

    assert events == [
        {"type": "connected", "session_id": "s1"},
        {"type": "content", "chunk": "Hello"},
    ]
    assert channel.closed


@pytest.mark.asyncio
async def test_heartbeat_pings_while_streaming():
    channel = StreamChannel(heartbeat_interval=0.01)
    agen = channel.stream()

    first = await asyncio.wait_for(agen.__anext__(), timeout=1)
    await agen.aclose()

    assert json.loads(first[len("data: "):]) == {"type": "ping"}
    assert channel.closed


@pytest.mark.asyncio
async def test_on_close_runs_when_consumer_goes_away():
    calls = []
    channel = StreamChannel(heartbeat_interval=3600)
    channel.send(StreamEventType.CONNECTED, session_id="s1")

    agen = channel.stream(on_close=lambda: calls.append("closed"))
    await agen.__anext__()
    await agen.aclose()

    assert calls == ["closed"]
    assert channel.closed
    assert channel.send(StreamEventType.COMPLETE) is False


@pytest.mark.asyncio
async def test_on_close_runs_once_when_channel_is_closed():
    calls = []
    channel = StreamChannel(heartbeat_interval=3600)
    channel.close()

    items = [item async for item in channel.stream(on_close=lambda: calls.append(1))]

    assert items == []
    assert calls == [1]
