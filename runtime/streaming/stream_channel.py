"""StreamChannel: push-only Server-Sent Events sink for one session.

Events are queued by the workflow with `send()` and drained by the HTTP
response through `stream()`. Each event is written as

    data: {"type": "...", ...}\n\n

While `stream()` is being consumed a heartbeat task queues a `ping` event
every `heartbeat_interval` seconds so that proxies keep the connection open.

When the consumer goes away (client disconnect cancels the response) or the
channel is closed, `stream()` stops the heartbeat and calls `on_close`. The
workflow uses that hook to unbind the channel from its session; the session
itself is left alone.
"""

import asyncio
import logging
from enum import Enum
from typing import AsyncIterator, Callable, Optional

from pydantic import BaseModel, ConfigDict

from exceptions.exceptions import ChannelClosedError


logger = logging.getLogger(__name__)

DEFAULT_HEARTBEAT_INTERVAL = 30.0

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class StreamEventType(str, Enum):
    CONNECTED = "connected"
    GENERATING = "generating"
    CONTENT = "content"
    ARTIFACT = "artifact"
    COMPLETE = "complete"
    SAVED = "saved"
    ERROR = "error"
    PING = "ping"


class StreamEvent(BaseModel):
    """Event envelope: a `type` discriminator plus type-specific fields."""

    model_config = ConfigDict(extra="allow")

    type: StreamEventType


def format_event(event: StreamEvent) -> str:
    return f"data: {event.model_dump_json()}\n\n"


class StreamChannel:
    """Push-only event channel backed by an asyncio.Queue.

    Parameters
    ----------
    heartbeat_interval:
        Seconds between `ping` events while the channel is being streamed.
    """

    def __init__(self, heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL) -> None:
        self.heartbeat_interval = heartbeat_interval
        # None is the end-of-stream marker.
        self._queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, event_type: StreamEventType, **payload) -> bool:
        """Queue one event. Returns False if the channel is already closed."""
        if self._closed:
            # The remote side is gone; nothing to report to anyone.
            logger.debug("[STREAM] Dropping %s event on closed channel", event_type)
            return False

        event = StreamEvent(type=event_type, **payload)
        self._queue.put_nowait(format_event(event))
        return True

    def close(self) -> None:
        """Close the channel and end `stream()` after queued events.

        Raises
        ------
        ChannelClosedError
            If the channel was already closed.
        """
        if self._closed:
            raise ChannelClosedError("Stream channel is already closed")
        self._closed = True
        self._queue.put_nowait(None)

    async def stream(self, on_close: Optional[Callable[[], None]] = None) -> AsyncIterator[str]:
        """Yield formatted events until the channel is closed or cancelled."""
        heartbeat = asyncio.create_task(self._heartbeat())
        try:
            while True:
                item = await self._queue.get()
                if item is None:
                    break
                yield item
        finally:
            heartbeat.cancel()
            self._closed = True
            if on_close is not None:
                on_close()

    async def _heartbeat(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.heartbeat_interval)
            self.send(StreamEventType.PING)
