"""Shared helpers: a scripted upstream behind ``httpx.MockTransport``."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable

import httpx
import pytest

from model_arena.config import UpstreamSpec
from model_arena.llm.client import UpstreamClient

UPSTREAM_BASE = "http://upstream.test/v1"


# ---------------------------------------------------------------------------
# Payload builders
# ---------------------------------------------------------------------------

def delta_chunk(text: str) -> dict:
    return {"choices": [{"index": 0, "delta": {"content": text}}]}


def usage_chunk(prompt: int = 5, completion: int = 7, total: int = 12) -> dict:
    return {
        "choices": [],
        "usage": {
            "prompt_tokens": prompt,
            "completion_tokens": completion,
            "total_tokens": total,
        },
    }


def completion_body(text: str, usage: dict | None = None) -> dict:
    body: dict[str, Any] = {
        "choices": [{"message": {"role": "assistant", "content": text}}],
    }
    if usage is not None:
        body["usage"] = usage
    return body


def sse_frames(*payloads: Any, done: bool = True) -> bytes:
    """Encode payloads as ``data:`` frames, optionally closed by [DONE]."""
    out = "".join(f"data: {json.dumps(p)}\n\n" for p in payloads)
    if done:
        out += "data: [DONE]\n\n"
    return out.encode("utf-8")


async def byte_stream(*chunks: bytes, hang: bool = False):
    """Async body that yields *chunks* and, with *hang*, then never ends."""
    for chunk in chunks:
        yield chunk
        await asyncio.sleep(0)
    if hang:
        await asyncio.sleep(3600)


# ---------------------------------------------------------------------------
# Scripted upstream
# ---------------------------------------------------------------------------

class ScriptedUpstream:
    """Per-model scripted responses for streaming and non-streaming calls.

    ``streams[model]`` and ``completions[model]`` are callables returning an
    ``httpx.Response``; ``calls`` records ``(model, stream_flag)`` in order.
    """

    def __init__(self) -> None:
        self.streams: dict[str, Callable[[], httpx.Response]] = {}
        self.completions: dict[str, Callable[[], httpx.Response]] = {}
        self.calls: list[tuple[str, bool]] = []
        self.requests: list[httpx.Request] = []
        self.catalog: Callable[[], httpx.Response] = lambda: httpx.Response(200, json=[])

    def stream(self, model: str, *chunks: bytes, status: int = 200, hang: bool = False) -> None:
        self.streams[model] = lambda: httpx.Response(
            status,
            headers={"Content-Type": "text/event-stream"},
            content=byte_stream(*chunks, hang=hang),
        )

    def stream_error(self, model: str, status: int, text: str = "") -> None:
        self.streams[model] = lambda: httpx.Response(status, text=text)

    def completion(self, model: str, body: Any, status: int = 200) -> None:
        self.completions[model] = lambda: httpx.Response(status, json=body)

    def completion_error(self, model: str, status: int, text: str = "") -> None:
        self.completions[model] = lambda: httpx.Response(status, text=text)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "GET":
            return self.catalog()
        payload = json.loads(request.content)
        model = payload["model"]
        is_stream = bool(payload.get("stream"))
        self.calls.append((model, is_stream))
        table = self.streams if is_stream else self.completions
        if model not in table:
            return httpx.Response(404, text=f"unknown model {model}")
        return table[model]()

    def fallback_calls(self, model: str) -> int:
        return self.calls.count((model, False))


@pytest.fixture
def upstream_spec() -> UpstreamSpec:
    return UpstreamSpec(base_url=UPSTREAM_BASE, models_url=f"{UPSTREAM_BASE}/models")


@pytest.fixture
def scripted() -> ScriptedUpstream:
    return ScriptedUpstream()


@pytest.fixture
async def upstream(scripted: ScriptedUpstream, upstream_spec: UpstreamSpec):
    client = UpstreamClient(
        upstream_spec,
        "test-key",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(scripted.handler)),
    )
    yield client
    await client.close()
