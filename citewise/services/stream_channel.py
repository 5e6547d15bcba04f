from __future__ import annotations

import asyncio
from enum import Enum
from typing import AsyncIterator

from citewise.errors import StreamClosedError
from citewise.models.events import SSEEvent
from citewise.services import streaming


class ChannelState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    TERMINATED = "terminated"


class EventChannel:
    """Single-producer, single-consumer event stream.

    Events come out in the order they were sent. Exactly one terminal event
    (``end`` or ``error``) is ever delivered; anything sent after it raises
    StreamClosedError, and the consumer's iteration stops right after it.
    """

    def __init__(self, maxsize: int = 0):
        self._queue: asyncio.Queue[SSEEvent] = asyncio.Queue(maxsize=maxsize)
        self.state = ChannelState.IDLE

    @property
    def closed(self) -> bool:
        return self.state is ChannelState.TERMINATED

    async def send(self, event: SSEEvent) -> None:
        if self.closed:
            raise StreamClosedError(f"cannot send '{event.event.value}' after the stream ended")
        self.state = ChannelState.TERMINATED if event.is_terminal else ChannelState.STREAMING
        await self._queue.put(event)

    async def end(self, event: SSEEvent) -> None:
        if not event.is_terminal:
            raise ValueError(f"'{event.event.value}' is not a terminal event")
        await self.send(event)

    async def fail(self, message: str, stage: str | None = None) -> bool:
        """Terminate with an error event. Returns False if already terminated."""
        if self.closed:
            return False
        await self.send(streaming.error(message, stage))
        return True

    async def __aiter__(self) -> AsyncIterator[SSEEvent]:
        while True:
            event = await self._queue.get()
            yield event
            if event.is_terminal:
                return
