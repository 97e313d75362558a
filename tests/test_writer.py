"""Tests for NDJSON framing and the keepalive/channel plumbing."""

from __future__ import annotations

import asyncio
import json

import pytest

from model_arena.events.channel import EventChannel
from model_arena.events.keepalive import Keepalive
from model_arena.server.writer import STREAM_HEADERS, encode_event, ndjson_stream
from model_arena.types import DeltaEvent, EndEvent, EventType, PingEvent, StartEvent


class TestEncodeEvent:
    def test_one_line_per_event(self):
        line = encode_event(DeltaEvent(model_id="m1", text="a\nb", ts=1))
        assert line.endswith(b"\n")
        assert line.count(b"\n") == 1
        assert json.loads(line) == {"type": "delta", "modelId": "m1", "text": "a\nb", "ts": 1}

    def test_utf8_not_escaped(self):
        line = encode_event(DeltaEvent(model_id="m", text="日本語", ts=1))
        assert "日本語".encode("utf-8") in line

    def test_compact_separators(self):
        assert encode_event(PingEvent(ts=3)) == b'{"type":"ping","ts":3}\n'

    def test_rejects_non_events(self):
        with pytest.raises(TypeError):
            encode_event({"type": "ping"})

    def test_headers_disable_buffering(self):
        assert STREAM_HEADERS["X-Accel-Buffering"] == "no"
        assert "no-cache" in STREAM_HEADERS["Cache-Control"]


class TestNdjsonStream:
    async def test_preserves_order(self):
        async def events():
            yield StartEvent(models=["a"], temperature=0.7)
            yield DeltaEvent(model_id="a", text="x")
            yield EndEvent(total_ms=5)

        lines = [json.loads(chunk) async for chunk in ndjson_stream(events())]
        assert [line["type"] for line in lines] == ["start", "delta", "end"]


class TestEventChannel:
    async def test_put_get(self):
        channel = EventChannel()
        await channel.put(PingEvent())
        event = await channel.get()
        assert event.type is EventType.PING
        assert channel.put_count == 1

    async def test_closed_channel_drops(self):
        channel = EventChannel()
        channel.close()
        await channel.put(PingEvent())
        assert channel.closed
        assert channel.dropped_count == 1
        assert channel.put_count == 0

    async def test_idle_resets_on_put(self):
        channel = EventChannel()
        await asyncio.sleep(0.02)
        assert channel.idle_for() >= 0.02
        await channel.put(PingEvent())
        assert channel.idle_for() < 0.02


class TestKeepalive:
    async def test_pings_when_stale(self):
        channel = EventChannel()
        keepalive = Keepalive(channel, interval=0.01, stale_after=0)
        task = asyncio.create_task(keepalive.run())
        event = await asyncio.wait_for(channel.get(), timeout=1)
        task.cancel()
        assert event.type is EventType.PING
        assert keepalive.pings_sent >= 1

    async def test_no_ping_while_busy(self):
        channel = EventChannel()
        keepalive = Keepalive(channel, interval=0.01, stale_after=10)
        task = asyncio.create_task(keepalive.run())
        await asyncio.sleep(0.05)
        task.cancel()
        assert keepalive.pings_sent == 0

    async def test_stops_when_channel_closed(self):
        channel = EventChannel()
        channel.close()
        await asyncio.wait_for(Keepalive(channel, interval=0.01).run(), timeout=1)
