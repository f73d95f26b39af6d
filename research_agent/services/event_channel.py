from __future__ import annotations

import asyncio
from typing import AsyncIterator

from research_agent.models.events import PipelineEvent

_CLOSED = object()


class EventChannel:
    """Single-consumer FIFO of pipeline events.

    Producers call `emit` (non-blocking); the consumer iterates with
    `async for` until `close` is called.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, event: PipelineEvent) -> None:
        if self._closed:
            raise RuntimeError("cannot emit on a closed event channel")
        self._queue.put_nowait(event)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    def drain_nowait(self) -> list[PipelineEvent]:
        """Return every event queued so far without waiting."""
        events: list[PipelineEvent] = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is _CLOSED:
                # keep the close marker for a later consumer
                self._queue.put_nowait(_CLOSED)
                break
            events.append(item)  # type: ignore[arg-type]
        return events

    def __aiter__(self) -> AsyncIterator[PipelineEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[PipelineEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item  # type: ignore[misc]
