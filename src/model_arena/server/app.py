"""FastAPI application: generate (NDJSON stream), models catalog, health."""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from model_arena.catalog import normalize_models
from model_arena.config import ArenaConfig, load_config
from model_arena.core.orchestrator import StreamOrchestrator
from model_arena.llm.client import UpstreamClient, UpstreamError
from model_arena.server.schemas import GenerateBody
from model_arena.server.writer import NDJSON_MEDIA_TYPE, STREAM_HEADERS, ndjson_stream

_logger = logging.getLogger(__name__)

router = APIRouter()


def _config(request: Request) -> ArenaConfig:
    return request.app.state.config


def _client(request: Request) -> UpstreamClient:
    return request.app.state.upstream


@router.post("/api/generate")
async def generate(request: Request):
    try:
        raw = await request.json()
    except ValueError:
        _logger.info("Failed to parse JSON body")
        return JSONResponse({"error": "Invalid JSON body"}, status_code=400)

    try:
        body = GenerateBody.model_validate(raw)
    except ValidationError as e:
        _logger.info("Body validation failed: %s", e)
        return JSONResponse(
            {
                "error": "Invalid request body",
                "details": json.loads(e.json(include_url=False)),
            },
            status_code=400,
        )

    bad_models = body.embedding_models()
    if bad_models:
        _logger.info("Embedding models rejected on generate: %s", bad_models)
        return JSONResponse(
            {
                "error": "Embedding models cannot be used for chat generation",
                "models": bad_models,
            },
            status_code=400,
        )

    config = _config(request)
    generation = body.to_request(config.stream.default_temperature)
    orchestrator = StreamOrchestrator(_client(request), config.stream, config.upstream)
    return StreamingResponse(
        ndjson_stream(orchestrator.run(generation)),
        media_type=NDJSON_MEDIA_TYPE,
        headers=STREAM_HEADERS,
    )


@router.get("/api/models")
async def list_models(request: Request):
    try:
        data = await _client(request).list_models()
    except UpstreamError as e:
        return JSONResponse(
            {
                "error": "Failed to fetch models from upstream",
                "status": e.status_code,
                "details": str(e),
            },
            status_code=502,
        )
    except Exception as e:
        _logger.exception("Unexpected error fetching models")
        return JSONResponse(
            {"error": "Unexpected error fetching models", "details": str(e)},
            status_code=500,
        )
    return {"models": normalize_models(data)}


@router.get("/api/health")
def health_check():
    return {"status": "ok"}


def create_app(
    config: ArenaConfig | None = None,
    upstream: UpstreamClient | None = None,
) -> FastAPI:
    """Build the application.

    Raises ``ConfigError`` when no *upstream* is given and the API key
    environment variable is not set, so a misconfigured server fails at
    startup rather than on the first request.
    """
    config = config or load_config()
    if upstream is None:
        upstream = UpstreamClient(config.upstream, config.require_api_key())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await upstream.close()

    app = FastAPI(title="Model Arena API", version="0.1.0", lifespan=lifespan)
    app.state.config = config
    app.state.upstream = upstream

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app
