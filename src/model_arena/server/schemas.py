"""Request body schema for ``POST /api/generate``."""

from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, Field

from model_arena.types import DEFAULT_TEMPERATURE, GenerationRequest, resolve_temperature


class GenerateBody(BaseModel):
    prompt: str = Field(..., min_length=1)
    models: list[Annotated[str, Field(min_length=1)]] = Field(..., min_length=1)
    temperature: float | str | None = None

    def embedding_models(self) -> list[str]:
        """Model ids that look like embeddings-only models."""
        return [m for m in self.models if "embed" in m.lower()]

    def to_request(self, default_temperature: float = DEFAULT_TEMPERATURE) -> GenerationRequest:
        return GenerationRequest(
            prompt=self.prompt,
            models=tuple(self.models),
            temperature=resolve_temperature(self.temperature, default_temperature),
        )
