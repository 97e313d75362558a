"""NDJSON framing for the merged event stream."""

from __future__ import annotations

import json
from typing import AsyncIterable, AsyncIterator

from model_arena.types import NormalizedEvent, event_to_dict

NDJSON_MEDIA_TYPE = "application/x-ndjson; charset=utf-8"

# Disable caching and proxy buffering so each line reaches the client as
# soon as it is written.
STREAM_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate, proxy-revalidate",
    "X-Accel-Buffering": "no",
    "Connection": "keep-alive",
}


def encode_event(event: NormalizedEvent) -> bytes:
    """One event as one UTF-8 JSON line (``TypeError`` for non-events)."""
    line = json.dumps(event_to_dict(event), ensure_ascii=False, separators=(",", ":"))
    return (line + "\n").encode("utf-8")


async def ndjson_stream(events: AsyncIterable[NormalizedEvent]) -> AsyncIterator[bytes]:
    """Frame *events* as NDJSON, in the order they are produced."""
    async for event in events:
        yield encode_event(event)
