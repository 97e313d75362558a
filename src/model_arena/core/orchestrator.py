"""StreamOrchestrator: fans one request out to N model workers.

    start → [model-start … terminal] × N (interleaved) → end

The orchestrator owns no model logic itself; it wires the workers and
the keepalive into one ``EventChannel``, forwards what comes out, and
decides exactly once when the merged stream is finished.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import AsyncIterator

from model_arena.config import StreamSpec, UpstreamSpec
from model_arena.core.worker import ModelTask, ModelWorker
from model_arena.events.channel import EventChannel
from model_arena.events.keepalive import Keepalive
from model_arena.llm.client import UpstreamClient
from model_arena.types import (
    EndEvent,
    GenerationRequest,
    NormalizedEvent,
    StartEvent,
    is_terminal,
)

_logger = logging.getLogger(__name__)


class StreamOrchestrator:
    """Merge the event streams of every requested model.

    Parameters
    ----------
    client:
        Upstream client shared by all workers.
    stream_spec:
        Watchdog and keepalive timers.
    upstream_spec:
        Per-call fetch timeout for the workers (defaults if omitted).
    """

    def __init__(
        self,
        client: UpstreamClient,
        stream_spec: StreamSpec | None = None,
        upstream_spec: UpstreamSpec | None = None,
    ) -> None:
        self._client = client
        self._stream_spec = stream_spec or StreamSpec()
        self._upstream_spec = upstream_spec or UpstreamSpec()
        self.tasks: list[ModelTask] = []
        self.timed_out = False

    async def run(self, request: GenerationRequest) -> AsyncIterator[NormalizedEvent]:
        """Yield the merged event stream for *request*.

        ``end`` is always the last event.  Workers still running when the
        watchdog fires, or when the consumer stops iterating, are cancelled.
        """
        spec = self._stream_spec
        loop = asyncio.get_running_loop()
        started = time.monotonic()
        deadline = loop.time() + spec.watchdog_seconds
        total = len(request.models)

        _logger.info(
            "Generation start: models=%s temperature=%s",
            list(request.models), request.temperature,
        )
        yield StartEvent(models=list(request.models), temperature=request.temperature)

        channel = EventChannel()
        self.tasks = [ModelTask(model_id=m) for m in request.models]
        workers = [
            asyncio.create_task(
                ModelWorker(
                    self._client,
                    task,
                    request.prompt,
                    request.temperature,
                    channel.put,
                    fetch_timeout=self._upstream_spec.fetch_timeout,
                ).run(),
                name=f"worker:{task.model_id}",
            )
            for task in self.tasks
        ]
        keepalive = asyncio.create_task(
            Keepalive(
                channel,
                interval=spec.keepalive_interval,
                stale_after=spec.keepalive_stale_after,
            ).run(),
            name="keepalive",
        )

        finished = 0
        try:
            while finished < total:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    self.timed_out = True
                    break
                try:
                    event = await asyncio.wait_for(channel.get(), timeout=remaining)
                except asyncio.TimeoutError:
                    self.timed_out = True
                    break
                if is_terminal(event):
                    finished += 1
                yield event

            if self.timed_out:
                _logger.warning(
                    "Watchdog fired after %.0fs with %d/%d models finished",
                    spec.watchdog_seconds, finished, total,
                )
            channel.close()
            total_ms = round((time.monotonic() - started) * 1000)
            _logger.info("Generation end: %d/%d models in %dms", finished, total, total_ms)
            yield EndEvent(total_ms=total_ms)
        finally:
            channel.close()
            pending = [t for t in workers if not t.done()]
            for t in (*pending, keepalive):
                t.cancel()
            if pending:
                _logger.info("Cancelling %d outstanding workers", len(pending))
            await asyncio.gather(*workers, keepalive, return_exceptions=True)
