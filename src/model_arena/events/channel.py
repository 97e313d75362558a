"""Single-consumer fan-in channel for normalized events.

Workers and the keepalive task are the producers; the orchestrator is
the only consumer.  Producers never touch shared counters, they only
``put`` events, which keeps the "who emits ``end``" decision in one place.
"""

from __future__ import annotations

import asyncio
import logging
import time

from model_arena.types import NormalizedEvent

_logger = logging.getLogger(__name__)


class EventChannel:
    """Unbounded async queue that remembers when it was last written.

    Features:
    - ``put()`` is safe from any number of concurrent producer tasks.
    - ``idle_for()`` reports seconds since the last put (used by keepalive).
    - ``close()`` makes later puts no-ops; events from workers that
      outlive the response are dropped and counted.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[NormalizedEvent] = asyncio.Queue()
        self._last_put = time.monotonic()
        self._closed = False
        self.put_count = 0
        self.dropped_count = 0

    async def put(self, event: NormalizedEvent) -> None:
        """Enqueue *event* for the consumer (dropped once closed)."""
        if self._closed:
            self.dropped_count += 1
            _logger.debug("Channel closed, dropping %s event", event.type.value)
            return
        self._queue.put_nowait(event)
        self._last_put = time.monotonic()
        self.put_count += 1

    async def get(self) -> NormalizedEvent:
        """Wait for the next event."""
        return await self._queue.get()

    def idle_for(self) -> float:
        """Seconds since the last accepted ``put``."""
        return time.monotonic() - self._last_put

    def close(self) -> None:
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed
