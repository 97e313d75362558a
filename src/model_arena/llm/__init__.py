"""Upstream LLM access: HTTP client, SSE parsing and payload decoding."""

from model_arena.llm.client import UpstreamClient, UpstreamError
from model_arena.llm.response_parser import (
    extract_completion_text,
    extract_delta,
    extract_usage,
)
from model_arena.llm.sse import SSEMessage, SSEParser

__all__ = [
    "SSEMessage",
    "SSEParser",
    "UpstreamClient",
    "UpstreamError",
    "extract_completion_text",
    "extract_delta",
    "extract_usage",
]
