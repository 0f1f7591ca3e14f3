"""Discovery channel — single-producer/single-consumer handoff with end-of-stream."""

from __future__ import annotations

import asyncio

_CLOSED = object()


class DiscoveryChannel:
    """Unbounded queue of ``(source, metric)`` pairs.

    The producer calls `close()` exactly once after its last `send()`; the
    consumer iterates with ``async for`` until the stream ends.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, source: str, metric: str) -> None:
        if self._closed:
            raise RuntimeError("send on closed discovery channel")
        await self._queue.put((source, metric))

    def close(self) -> None:
        if self._closed:
            raise RuntimeError("discovery channel already closed")
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> DiscoveryChannel:
        return self

    async def __anext__(self) -> tuple[str, str]:
        item = await self._queue.get()
        if item is _CLOSED:
            # Keep the marker so later iterations end immediately too.
            self._queue.put_nowait(_CLOSED)
            raise StopAsyncIteration
        return item
