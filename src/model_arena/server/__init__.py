"""HTTP surface for Model Arena."""

from model_arena.server.app import create_app
from model_arena.server.writer import encode_event, ndjson_stream

__all__ = ["create_app", "encode_event", "ndjson_stream"]
