"""Per-session outbound channel feeding the device transport."""

from __future__ import annotations

import asyncio
from typing import Optional

_CLOSED = object()


class SessionClosedError(RuntimeError):
    """Raised when sending on a channel whose session has ended."""


class SessionChannel:
    """Unbounded FIFO of text frames waiting to be written to a device.

    Any task may :meth:`send`; exactly one relay loop consumes with
    :meth:`receive`. Once closed, sends fail and the consumer sees ``None``
    after the frames already queued.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, frame: str) -> None:
        if self._closed:
            raise SessionClosedError("session channel is closed")
        self._queue.put_nowait(frame)

    def send_many(self, *frames: str) -> None:
        """Queue several frames back to back; they are never interleaved."""

        if self._closed:
            raise SessionClosedError("session channel is closed")
        for frame in frames:
            self._queue.put_nowait(frame)

    async def receive(self) -> Optional[str]:
        if self._closed and self._queue.empty():
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            return None
        return item  # type: ignore[return-value]

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)
