"""Client side of Model Arena: stream reconstruction and the HTTP session."""

from model_arena.client.reconstructor import ModelState, StreamReconstructor
from model_arena.client.session import ArenaClient, GenerationRequestError

__all__ = [
    "ArenaClient",
    "GenerationRequestError",
    "ModelState",
    "StreamReconstructor",
]
