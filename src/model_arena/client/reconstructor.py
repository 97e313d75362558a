"""Fold the NDJSON event stream back into per-model state.

The reconstructor is transport-agnostic: feed it bytes in whatever
pieces the network delivers and it keeps ``states`` up to date.  Events
for different models may interleave arbitrarily; each model's own events
are applied in arrival order.
"""

from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass
from typing import Callable, Iterable

from model_arena.types import (
    DeltaEvent,
    EndEvent,
    ErrorEvent,
    EventType,
    ModelDoneEvent,
    ModelStartEvent,
    NormalizedEvent,
    StartEvent,
    TokenUsage,
    TtfbEvent,
    UsageEvent,
    event_from_dict,
)

_logger = logging.getLogger(__name__)


@dataclass
class ModelState:
    """Everything the UI shows for one model."""

    content: str = ""
    ttfb_ms: int | None = None
    latency_ms: int | None = None
    tokens: TokenUsage | None = None
    error: str | None = None
    is_complete: bool = False


class StreamReconstructor:
    """Incremental NDJSON reader and per-model fold.

    Parameters
    ----------
    models:
        Model ids to seed with empty placeholders so they render before
        their first event arrives.
    """

    def __init__(self, models: Iterable[str] = ()) -> None:
        self.states: dict[str, ModelState] = {m: ModelState() for m in models}
        self.requested: list[str] = list(self.states)
        self.total_ms: int | None = None
        self.ended = False
        self.error: str | None = None
        self.stats = {"lines": 0, "malformed": 0, "rejected": 0, "pings": 0}
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._handlers: dict[EventType, Callable[[NormalizedEvent], None]] = {
            EventType.START: self._on_start,
            EventType.MODEL_START: self._on_model_start,
            EventType.TTFB: self._on_ttfb,
            EventType.DELTA: self._on_delta,
            EventType.USAGE: self._on_usage,
            EventType.MODEL_DONE: self._on_model_done,
            EventType.ERROR: self._on_error,
            EventType.PING: self._on_ping,
            EventType.END: self._on_end,
        }

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    def feed(self, chunk: bytes) -> list[NormalizedEvent]:
        """Consume one fragment; return the events it completed and applied."""
        if self.ended:
            return []
        self._buffer += self._decoder.decode(chunk)
        applied: list[NormalizedEvent] = []
        while not self.ended:
            idx = self._buffer.find("\n")
            if idx == -1:
                break
            line = self._buffer[:idx]
            self._buffer = self._buffer[idx + 1:]
            event = self.apply_line(line)
            if event is not None:
                applied.append(event)
        return applied

    def finish(self) -> list[NormalizedEvent]:
        """Apply a trailing line that arrived without its newline."""
        if self.ended:
            return []
        self._buffer += self._decoder.decode(b"", final=True)
        line, self._buffer = self._buffer, ""
        event = self.apply_line(line)
        return [event] if event is not None else []

    def apply_line(self, line: str) -> NormalizedEvent | None:
        """Parse and apply one NDJSON line; malformed lines are dropped."""
        line = line.strip()
        if not line or self.ended:
            return None
        self.stats["lines"] += 1
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            self.stats["malformed"] += 1
            _logger.warning("Failed to parse event line: %.100s", line)
            return None
        try:
            event = event_from_dict(data)
        except (TypeError, ValueError) as e:
            self.stats["rejected"] += 1
            _logger.warning("Ignoring event line: %s", e)
            return None
        self.apply(event)
        return event

    def apply(self, event: NormalizedEvent) -> None:
        """Fold one typed event into ``states``."""
        if self.ended:
            return
        self._handlers[event.type](event)

    # ------------------------------------------------------------------
    # Queries and bulk updates
    # ------------------------------------------------------------------

    @property
    def pending(self) -> list[str]:
        """Model ids that have not reached a terminal state."""
        return [m for m, s in self.states.items() if not s.is_complete]

    def fail_pending(self, reason: str) -> list[str]:
        """Mark every non-terminal model as errored with *reason*."""
        failed = self.pending
        for model_id in failed:
            state = self.states[model_id]
            state.error = reason
            state.is_complete = True
        return failed

    def sorted_model_ids(self) -> list[str]:
        """Model ids ordered by latency; unfinished models last."""
        return sorted(
            self.states,
            key=lambda m: (
                self.states[m].latency_ms is None,
                self.states[m].latency_ms or 0,
            ),
        )

    # ------------------------------------------------------------------
    # Handlers (one per EventType)
    # ------------------------------------------------------------------

    def _state(self, model_id: str) -> ModelState:
        return self.states.setdefault(model_id, ModelState())

    def _on_start(self, event: StartEvent) -> None:
        _logger.debug("Stream started for models: %s", event.models)
        if not self.requested:
            self.requested = list(event.models)
        for model_id in event.models:
            self._state(model_id)

    def _on_model_start(self, event: ModelStartEvent) -> None:
        self._state(event.model_id).is_complete = False

    def _on_ttfb(self, event: TtfbEvent) -> None:
        self._state(event.model_id).ttfb_ms = event.ttfb_ms

    def _on_delta(self, event: DeltaEvent) -> None:
        state = self._state(event.model_id)
        state.content += event.text

    def _on_usage(self, event: UsageEvent) -> None:
        state = self._state(event.model_id)
        state.tokens = event.usage.merged_over(state.tokens)

    def _on_model_done(self, event: ModelDoneEvent) -> None:
        state = self._state(event.model_id)
        state.latency_ms = event.latency_ms
        state.is_complete = True

    def _on_error(self, event: ErrorEvent) -> None:
        state = self._state(event.model_id)
        state.error = event.error
        state.latency_ms = event.latency_ms
        state.is_complete = True

    def _on_ping(self, event: NormalizedEvent) -> None:
        self.stats["pings"] += 1

    def _on_end(self, event: EndEvent) -> None:
        self.total_ms = event.total_ms
        self.ended = True
