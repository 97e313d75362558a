"""Core fan-out components for Model Arena."""

from model_arena.core.orchestrator import StreamOrchestrator
from model_arena.core.worker import ModelTask, ModelWorker, TaskState

__all__ = [
    "ModelTask",
    "ModelWorker",
    "StreamOrchestrator",
    "TaskState",
]
