"""Field extraction for OpenAI-compatible chat-completion payloads.

Upstream providers disagree on where they put generated text and how
they name token counters.  Every such variance is resolved here through
fixed priority lists, so the rest of the pipeline only ever sees plain
text and ``TokenUsage``.
"""

from __future__ import annotations

from typing import Any

from model_arena.types import TokenUsage

# Paths tried in order for a streamed chunk; first non-empty string wins.
DELTA_PATHS: tuple[tuple[str | int, ...], ...] = (
    ("choices", 0, "delta", "content"),
    ("choices", 0, "delta", "reasoning_content"),
    ("choices", 0, "text"),
    ("choices", 0, "message", "content"),
)

# Paths tried in order for a non-streaming completion body.
COMPLETION_PATHS: tuple[tuple[str | int, ...], ...] = (
    ("choices", 0, "message", "content"),
    ("choices", 0, "text"),
)

# Usage counter names, first present (non-null) wins.
PROMPT_TOKEN_KEYS = ("prompt_tokens", "promptTokens", "input_tokens")
COMPLETION_TOKEN_KEYS = ("completion_tokens", "completionTokens", "output_tokens")
TOTAL_TOKEN_KEYS = ("total_tokens", "totalTokens", "total")


def _dig(data: Any, path: tuple[str | int, ...]) -> Any:
    """Follow *path* through nested dicts/lists, returning None on any miss."""
    node = data
    for step in path:
        if isinstance(step, int):
            if not isinstance(node, list) or len(node) <= step:
                return None
        elif not isinstance(node, dict):
            return None
        node = node[step] if isinstance(step, int) else node.get(step)
        if node is None:
            return None
    return node


def _first_text(data: Any, paths: tuple[tuple[str | int, ...], ...]) -> str:
    for path in paths:
        value = _dig(data, path)
        if isinstance(value, str) and value:
            return value
    return ""


def _first_count(usage: dict[str, Any], keys: tuple[str, ...]) -> int | None:
    for key in keys:
        value = usage.get(key)
        if value is None or isinstance(value, bool):
            continue
        if isinstance(value, (int, float)):
            return int(value)
    return None


def extract_delta(chunk: Any) -> str:
    """Return the text fragment carried by a streamed chunk ("" if none)."""
    return _first_text(chunk, DELTA_PATHS)


def extract_completion_text(body: Any) -> str:
    """Return the full text of a non-streaming completion ("" if none)."""
    return _first_text(body, COMPLETION_PATHS)


def extract_usage(payload: Any) -> TokenUsage | None:
    """Return token usage from a chunk or completion body, if it has any."""
    if not isinstance(payload, dict):
        return None
    usage = payload.get("usage")
    if not isinstance(usage, dict) or not usage:
        return None
    return TokenUsage(
        prompt_tokens=_first_count(usage, PROMPT_TOKEN_KEYS),
        completion_tokens=_first_count(usage, COMPLETION_TOKEN_KEYS),
        total_tokens=_first_count(usage, TOTAL_TOKEN_KEYS),
    )
