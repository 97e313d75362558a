"""ModelWorker drives one model from first request to terminal event.

    model-start → stream (SSE) → [fallback] → model-done | error

Every failure is caught here and reported as an ``error`` event, so a
broken model can never take its siblings or the response down with it.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from model_arena.llm.client import UpstreamClient
from model_arena.llm.response_parser import (
    extract_completion_text,
    extract_delta,
    extract_usage,
)
from model_arena.llm.sse import SSEMessage, SSEParser
from model_arena.types import (
    DeltaEvent,
    ErrorEvent,
    ModelDoneEvent,
    ModelStartEvent,
    NormalizedEvent,
    TokenUsage,
    TtfbEvent,
    UsageEvent,
)

_logger = logging.getLogger(__name__)

Emit = Callable[[NormalizedEvent], Awaitable[None]]


class TaskState(enum.Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    FALLING_BACK = "falling_back"
    DONE = "done"
    ERRORED = "errored"


@dataclass
class ModelTask:
    """Lifecycle record for one requested model identifier."""

    model_id: str
    started_at: float = field(default_factory=time.monotonic)
    state: TaskState = TaskState.PENDING
    saw_first_token: bool = False
    got_any_token: bool = False
    error: str = ""

    @property
    def terminal(self) -> bool:
        return self.state in (TaskState.DONE, TaskState.ERRORED)

    def elapsed_ms(self) -> int:
        return round((time.monotonic() - self.started_at) * 1000)


def _describe(exc: BaseException, timeout: float) -> str:
    if isinstance(exc, asyncio.TimeoutError):
        return f"Upstream request timed out after {timeout:g}s"
    return str(exc) or type(exc).__name__


class ModelWorker:
    """Run one model's streaming call and report exactly one outcome.

    Parameters
    ----------
    client:
        Shared upstream client.
    task:
        The task record this worker owns.
    prompt / temperature:
        Request parameters, identical for every model.
    emit:
        Coroutine that delivers an event to the orchestrator's channel.
    fetch_timeout:
        Upper bound in seconds for the streaming call and, separately,
        for the fallback call.
    """

    def __init__(
        self,
        client: UpstreamClient,
        task: ModelTask,
        prompt: str,
        temperature: float,
        emit: Emit,
        fetch_timeout: float = 180.0,
    ) -> None:
        self._client = client
        self._task = task
        self._prompt = prompt
        self._temperature = temperature
        self._emit = emit
        self._fetch_timeout = fetch_timeout

    async def run(self) -> None:
        task = self._task
        task.started_at = time.monotonic()
        await self._emit(ModelStartEvent(model_id=task.model_id))

        try:
            task.state = TaskState.STREAMING
            await asyncio.wait_for(self._stream(), timeout=self._fetch_timeout)

            if not task.got_any_token:
                task.state = TaskState.FALLING_BACK
                _logger.info(
                    "No streaming tokens; using non-streaming fallback for %s",
                    task.model_id,
                )
                await asyncio.wait_for(self._fallback(), timeout=self._fetch_timeout)
        except Exception as e:
            _logger.error("Model stream error for %s: %s", task.model_id, e)
            await self._finish(_describe(e, self._fetch_timeout))
            return

        await self._finish()

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def _stream(self) -> None:
        parser = SSEParser()
        async with self._client.stream_chat(
            self._task.model_id, self._prompt, self._temperature,
        ) as resp:
            async for chunk in resp.aiter_bytes():
                for message in parser.feed(chunk):
                    if await self._handle(message):
                        return
            for message in parser.finish():
                if await self._handle(message):
                    return

        if parser.stats["malformed"]:
            _logger.warning(
                "Dropped %d malformed payloads from %s",
                parser.stats["malformed"], self._task.model_id,
            )

    async def _handle(self, message: SSEMessage) -> bool:
        """Emit events for one payload; True when the upstream said [DONE]."""
        if message.done:
            return True
        text = extract_delta(message.data)
        if text:
            await self._on_text(text)
        usage = extract_usage(message.data)
        if usage is not None:
            await self._on_usage(usage)
        return False

    # ------------------------------------------------------------------
    # Fallback
    # ------------------------------------------------------------------

    async def _fallback(self) -> None:
        body = await self._client.chat(
            self._task.model_id, self._prompt, self._temperature,
        )
        text = extract_completion_text(body)
        if text:
            await self._on_text(text)
        usage = extract_usage(body)
        if usage is not None:
            await self._on_usage(usage)

    # ------------------------------------------------------------------
    # Event helpers
    # ------------------------------------------------------------------

    async def _on_text(self, text: str) -> None:
        task = self._task
        if not task.saw_first_token:
            task.saw_first_token = True
            await self._emit(TtfbEvent(model_id=task.model_id, ttfb_ms=task.elapsed_ms()))
        task.got_any_token = True
        await self._emit(DeltaEvent(model_id=task.model_id, text=text))

    async def _on_usage(self, usage: TokenUsage) -> None:
        await self._emit(UsageEvent.from_usage(self._task.model_id, usage))

    async def _finish(self, error: str | None = None) -> None:
        task = self._task
        if task.terminal:
            return
        latency = task.elapsed_ms()
        if error is not None:
            task.state = TaskState.ERRORED
            task.error = error
            await self._emit(
                ErrorEvent(model_id=task.model_id, error=error, latency_ms=latency),
            )
        else:
            task.state = TaskState.DONE
            await self._emit(ModelDoneEvent(model_id=task.model_id, latency_ms=latency))
