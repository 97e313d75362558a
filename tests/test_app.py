"""Tests for the FastAPI surface, exercised in-process over ASGI."""

from __future__ import annotations

import json

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import delta_chunk, sse_frames
from model_arena.config import ArenaConfig, ConfigError, StreamSpec, UpstreamSpec
from model_arena.llm.client import UpstreamClient
from model_arena.server.app import create_app


@pytest.fixture
def app(upstream):
    config = ArenaConfig(stream=StreamSpec(watchdog_seconds=5, keepalive_interval=60))
    return create_app(config, upstream=upstream)


@pytest.fixture
async def api(app):
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://arena.test",
    ) as client:
        yield client


def _lines(resp: httpx.Response) -> list[dict]:
    return [json.loads(line) for line in resp.text.splitlines() if line.strip()]


class TestGenerateValidation:
    async def test_invalid_json(self, api):
        resp = await api.post(
            "/api/generate", content=b"{not json", headers={"Content-Type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid JSON body"}

    @pytest.mark.parametrize(
        "body",
        [
            {"models": ["a"]},
            {"prompt": "", "models": ["a"]},
            {"prompt": "hi", "models": []},
            {"prompt": "hi"},
            {"prompt": "hi", "models": [""]},
            {"prompt": "hi", "models": "a"},
            ["not", "an", "object"],
        ],
    )
    async def test_invalid_body(self, api, body):
        resp = await api.post("/api/generate", json=body)
        assert resp.status_code == 400
        data = resp.json()
        assert data["error"] == "Invalid request body"
        assert isinstance(data["details"], list) and data["details"]

    async def test_embedding_model_rejected(self, api, scripted):
        resp = await api.post(
            "/api/generate",
            json={"prompt": "hi", "models": ["chat-1", "text-EMBEDding-3"]},
        )
        assert resp.status_code == 400
        assert resp.json()["models"] == ["text-EMBEDding-3"]
        assert scripted.calls == []


class TestGenerateStream:
    async def test_ndjson_stream(self, api, scripted):
        scripted.stream("a", sse_frames(delta_chunk("Hello")))
        scripted.stream_error("b", 500, "nope")
        resp = await api.post(
            "/api/generate", json={"prompt": "hi", "models": ["a", "b"], "temperature": 0.3},
        )

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("application/x-ndjson")
        assert resp.headers["x-accel-buffering"] == "no"
        assert "no-store" in resp.headers["cache-control"]

        lines = _lines(resp)
        assert lines[0]["type"] == "start"
        assert lines[0]["models"] == ["a", "b"]
        assert lines[0]["temperature"] == 0.3
        assert lines[-1]["type"] == "end"
        assert [line["type"] for line in lines].count("end") == 1
        terminals = {
            line["modelId"]: line["type"]
            for line in lines if line["type"] in ("model-done", "error")
        }
        assert terminals == {"a": "model-done", "b": "error"}
        assert any(line["type"] == "delta" and line["text"] == "Hello" for line in lines)

    @pytest.mark.parametrize(
        "temperature, expected",
        [("1.2", 1.2), (5, 2.0), (None, 0.7), ("warm", 0.7)],
    )
    async def test_temperature_resolution(self, api, scripted, temperature, expected):
        scripted.stream("a", sse_frames(delta_chunk("x")))
        body = {"prompt": "hi", "models": ["a"]}
        if temperature is not None:
            body["temperature"] = temperature
        resp = await api.post("/api/generate", json=body)

        assert _lines(resp)[0]["temperature"] == pytest.approx(expected)
        sent = json.loads(scripted.requests[0].content)
        assert sent["temperature"] == pytest.approx(expected)


class TestModels:
    async def test_normalized_catalog(self, api, scripted):
        scripted.catalog = lambda: httpx.Response(
            200,
            json={"data": [
                {"id": "chat", "name": "Chat"},
                {"id": "emb", "output_modalities": ["embedding"]},
            ]},
        )
        resp = await api.get("/api/models")
        assert resp.status_code == 200
        assert resp.json() == {"models": [{"id": "chat", "name": "Chat"}]}

    async def test_upstream_failure_is_502(self, api, scripted):
        scripted.catalog = lambda: httpx.Response(401, text="bad key")
        resp = await api.get("/api/models")
        assert resp.status_code == 502
        data = resp.json()
        assert data["status"] == 401
        assert data["details"] == "bad key"

    async def test_unexpected_failure_is_500(self, api, scripted):
        scripted.catalog = lambda: httpx.Response(200, text="not json")
        resp = await api.get("/api/models")
        assert resp.status_code == 500
        assert "error" in resp.json()


class TestHealthAndStartup:
    async def test_health(self, api):
        resp = await api.get("/api/health")
        assert resp.json() == {"status": "ok"}

    def test_missing_api_key_fails_at_startup(self, monkeypatch):
        monkeypatch.delenv("GRAVIXLAYER_API_KEY", raising=False)
        with pytest.raises(ConfigError):
            create_app(ArenaConfig())

    def test_cors_preflight_allowed(self):
        app = create_app(ArenaConfig(), upstream=UpstreamClient(UpstreamSpec(), "k"))
        client = TestClient(app)
        resp = client.options(
            "/api/generate",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "POST",
            },
        )
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-origin"] == "http://localhost:3000"
