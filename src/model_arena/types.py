"""Shared data types for Model Arena."""

from __future__ import annotations

import enum
import math
import time
from dataclasses import dataclass, field, fields
from typing import Any, ClassVar, Union

DEFAULT_TEMPERATURE = 0.7
MIN_TEMPERATURE = 0.0
MAX_TEMPERATURE = 2.0


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def _wire(name: str, **kwargs: Any) -> Any:
    """Dataclass field whose JSON key differs from the attribute name."""
    return field(metadata={"wire": name}, **kwargs)


# ---------------------------------------------------------------------------
# Request types
# ---------------------------------------------------------------------------

def resolve_temperature(
    raw: float | int | str | None,
    default: float = DEFAULT_TEMPERATURE,
) -> float:
    """Resolve a user-supplied temperature and clamp it to [0, 2].

    Numbers are taken as-is, strings are parsed as floats (falling back to
    *default* when they do not parse), anything else yields *default*.
    """
    value = default
    if isinstance(raw, bool):
        value = default
    elif isinstance(raw, (int, float)):
        value = float(raw)
    elif isinstance(raw, str):
        try:
            value = float(raw.strip())
        except ValueError:
            value = default
    if math.isnan(value):
        value = default
    return max(MIN_TEMPERATURE, min(MAX_TEMPERATURE, value))


@dataclass(frozen=True)
class GenerationRequest:
    """A validated fan-out request: one prompt, many models."""

    prompt: str
    models: tuple[str, ...]
    temperature: float = DEFAULT_TEMPERATURE

    def __post_init__(self) -> None:
        if not self.prompt:
            raise ValueError("prompt must not be empty")
        if not self.models:
            raise ValueError("at least one model is required")


@dataclass(frozen=True)
class TokenUsage:
    """Token counts reported by an upstream model (any may be unknown)."""

    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None

    def merged_over(self, previous: TokenUsage | None) -> TokenUsage:
        """Return these counts, keeping *previous* values for unknown fields."""
        if previous is None:
            return self
        return TokenUsage(
            prompt_tokens=(
                self.prompt_tokens if self.prompt_tokens is not None
                else previous.prompt_tokens
            ),
            completion_tokens=(
                self.completion_tokens if self.completion_tokens is not None
                else previous.completion_tokens
            ),
            total_tokens=(
                self.total_tokens if self.total_tokens is not None
                else previous.total_tokens
            ),
        )


# ---------------------------------------------------------------------------
# Normalized events
# ---------------------------------------------------------------------------

class EventType(enum.Enum):
    """Wire tags of the normalized NDJSON protocol."""

    START = "start"
    MODEL_START = "model-start"
    TTFB = "ttfb"
    DELTA = "delta"
    USAGE = "usage"
    MODEL_DONE = "model-done"
    ERROR = "error"
    PING = "ping"
    END = "end"


@dataclass(frozen=True)
class StartEvent:
    models: list[str]
    temperature: float
    ts: int = field(default_factory=now_ms)

    type: ClassVar[EventType] = EventType.START


@dataclass(frozen=True)
class ModelStartEvent:
    model_id: str = _wire("modelId")
    ts: int = field(default_factory=now_ms)

    type: ClassVar[EventType] = EventType.MODEL_START


@dataclass(frozen=True)
class TtfbEvent:
    model_id: str = _wire("modelId")
    ttfb_ms: int = _wire("ttfbMs", default=0)
    ts: int = field(default_factory=now_ms)

    type: ClassVar[EventType] = EventType.TTFB


@dataclass(frozen=True)
class DeltaEvent:
    model_id: str = _wire("modelId")
    text: str = ""
    ts: int = field(default_factory=now_ms)

    type: ClassVar[EventType] = EventType.DELTA


@dataclass(frozen=True)
class UsageEvent:
    model_id: str = _wire("modelId")
    prompt_tokens: int | None = _wire("promptTokens", default=None)
    completion_tokens: int | None = _wire("completionTokens", default=None)
    total_tokens: int | None = _wire("totalTokens", default=None)
    ts: int = field(default_factory=now_ms)

    type: ClassVar[EventType] = EventType.USAGE

    @classmethod
    def from_usage(cls, model_id: str, usage: TokenUsage) -> UsageEvent:
        return cls(
            model_id=model_id,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
        )

    @property
    def usage(self) -> TokenUsage:
        return TokenUsage(
            prompt_tokens=self.prompt_tokens,
            completion_tokens=self.completion_tokens,
            total_tokens=self.total_tokens,
        )


@dataclass(frozen=True)
class ModelDoneEvent:
    model_id: str = _wire("modelId")
    latency_ms: int = _wire("latencyMs", default=0)
    ts: int = field(default_factory=now_ms)

    type: ClassVar[EventType] = EventType.MODEL_DONE


@dataclass(frozen=True)
class ErrorEvent:
    model_id: str = _wire("modelId")
    error: str = ""
    latency_ms: int = _wire("latencyMs", default=0)
    ts: int = field(default_factory=now_ms)

    type: ClassVar[EventType] = EventType.ERROR


@dataclass(frozen=True)
class PingEvent:
    ts: int = field(default_factory=now_ms)

    type: ClassVar[EventType] = EventType.PING


@dataclass(frozen=True)
class EndEvent:
    total_ms: int = _wire("totalMs", default=0)
    ts: int = field(default_factory=now_ms)

    type: ClassVar[EventType] = EventType.END


NormalizedEvent = Union[
    StartEvent,
    ModelStartEvent,
    TtfbEvent,
    DeltaEvent,
    UsageEvent,
    ModelDoneEvent,
    ErrorEvent,
    PingEvent,
    EndEvent,
]

# One class per wire tag; the writer and the reconstructor both dispatch
# through this table.
EVENT_CLASSES: dict[EventType, type] = {
    cls.type: cls
    for cls in (
        StartEvent,
        ModelStartEvent,
        TtfbEvent,
        DeltaEvent,
        UsageEvent,
        ModelDoneEvent,
        ErrorEvent,
        PingEvent,
        EndEvent,
    )
}

if set(EVENT_CLASSES) != set(EventType):  # pragma: no cover
    raise RuntimeError("EVENT_CLASSES does not cover every EventType")

TERMINAL_EVENT_TYPES = frozenset({EventType.MODEL_DONE, EventType.ERROR})


def is_terminal(event: NormalizedEvent) -> bool:
    """True for the per-model terminal events (``model-done`` / ``error``)."""
    return event.type in TERMINAL_EVENT_TYPES


def event_to_dict(event: NormalizedEvent) -> dict[str, Any]:
    """Serialize an event to its wire dict (``type`` first, ``ts`` last)."""
    cls = EVENT_CLASSES.get(getattr(event, "type", None))
    if cls is None or not isinstance(event, cls):
        raise TypeError(f"Not a normalized event: {event!r}")
    data: dict[str, Any] = {"type": event.type.value}
    for f in fields(event):
        data[f.metadata.get("wire", f.name)] = getattr(event, f.name)
    return data


_TEXT_FIELDS = frozenset({"model_id", "text", "error"})
_COUNT_FIELDS = frozenset({
    "ttfb_ms", "latency_ms", "total_ms", "ts",
    "prompt_tokens", "completion_tokens", "total_tokens",
})


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _checked(event_type: EventType, name: str, key: str, value: Any) -> Any:
    """Return *value* in the field's Python type or raise ``ValueError``."""
    if name in _TEXT_FIELDS:
        if isinstance(value, str):
            return value
    elif name in _COUNT_FIELDS:
        if _is_number(value):
            return int(value)
    elif name == "temperature":
        if _is_number(value):
            return float(value)
    elif name == "models":
        if isinstance(value, list) and all(isinstance(m, str) for m in value):
            return list(value)
    else:
        return value
    raise ValueError(f"{event_type.value} event has invalid '{key}': {value!r:.50}")


def event_from_dict(data: dict[str, Any]) -> NormalizedEvent:
    """Build a typed event from a wire dict.

    Raises ``ValueError`` for unknown tags, missing required keys or
    values of the wrong type.
    """
    if not isinstance(data, dict):
        raise ValueError(f"Event must be a JSON object, got {type(data).__name__}")
    try:
        event_type = EventType(data.get("type"))
    except ValueError:
        raise ValueError(f"Unknown event type: {data.get('type')!r}") from None

    cls = EVENT_CLASSES[event_type]
    kwargs: dict[str, Any] = {}
    for f in fields(cls):
        key = f.metadata.get("wire", f.name)
        if key in data and data[key] is not None:
            kwargs[f.name] = _checked(event_type, f.name, key, data[key])
        elif f.name == "model_id":
            raise ValueError(f"{event_type.value} event is missing 'modelId'")
        elif f.name in ("models", "temperature"):
            raise ValueError(f"{event_type.value} event is missing '{key}'")
    return cls(**kwargs)
