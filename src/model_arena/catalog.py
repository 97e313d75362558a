"""Normalization of the upstream model catalog.

The catalog endpoint has shipped several shapes over time (a bare list,
``{"data": [...]}``, ``{"models": [...]}``) and several naming schemes
for each entry.  ``normalize_models`` folds them into ``[{id, name}]``
and drops models that can only produce embeddings.
"""

from __future__ import annotations

from typing import Any

_EMBEDDING_MODALITIES = {"embedding", "embeddings"}


def _raw_entries(data: Any) -> list[Any]:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in ("data", "models"):
            if isinstance(data.get(key), list):
                return data[key]
    return []


def _is_embeddings_only(entry: Any) -> bool:
    if not isinstance(entry, dict):
        return False
    modalities = entry.get("output_modalities")
    if not isinstance(modalities, list) or not modalities:
        return False
    return all(str(m).lower() in _EMBEDDING_MODALITIES for m in modalities)


def normalize_models(data: Any) -> list[dict[str, str]]:
    """Return ``[{"id": ..., "name": ...}]`` for every chat-capable model."""
    models: list[dict[str, str]] = []
    for entry in _raw_entries(data):
        if isinstance(entry, dict):
            model_id = entry.get("id") or entry.get("model_id") or entry.get("name")
            name = entry.get("name") or entry.get("display_name") or model_id
        else:
            model_id = name = entry
        if not model_id:
            continue
        if _is_embeddings_only(entry):
            continue
        models.append({"id": str(model_id), "name": str(name)})
    return models
