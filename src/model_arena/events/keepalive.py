"""Keepalive pings that stop intermediaries from buffering a quiet stream."""

from __future__ import annotations

import asyncio
import logging

from model_arena.events.channel import EventChannel
from model_arena.types import PingEvent

_logger = logging.getLogger(__name__)


class Keepalive:
    """Put a ``ping`` on *channel* whenever it has been idle too long.

    Every *interval* seconds the channel is checked; if nothing was put
    for at least *stale_after* seconds, a ping is enqueued.  Run it as a
    task and cancel it when the stream ends.
    """

    def __init__(
        self,
        channel: EventChannel,
        interval: float = 15.0,
        stale_after: float = 14.0,
    ) -> None:
        self._channel = channel
        self._interval = interval
        self._stale_after = stale_after
        self.pings_sent = 0

    async def run(self) -> None:
        while not self._channel.closed:
            await asyncio.sleep(self._interval)
            if self._channel.idle_for() >= self._stale_after:
                _logger.debug("Stream idle, sending keepalive ping")
                await self._channel.put(PingEvent())
                self.pings_sent += 1
