"""Event plumbing shared by the orchestrator and its producers."""

from model_arena.events.channel import EventChannel
from model_arena.events.keepalive import Keepalive

__all__ = ["EventChannel", "Keepalive"]
