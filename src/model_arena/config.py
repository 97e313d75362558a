"""Configuration for Model Arena.

Config discovery (first match wins):
  1. ``--config`` flag
  2. ``./model_arena.yaml``
  3. ``~/.config/model-arena/config.yaml``
  4. Built-in defaults

The upstream API key is never stored in the YAML file; it is read from
the environment variable named by ``upstream.api_key_env``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from model_arena.types import DEFAULT_TEMPERATURE

_logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration is missing or unusable at startup."""


# ---------------------------------------------------------------------------
# Config data structures
# ---------------------------------------------------------------------------

@dataclass
class UpstreamSpec:
    """Where the model backends live and how long to wait for them."""

    base_url: str = "https://api.gravixlayer.com/v1/inference"
    models_url: str = "https://api.gravixlayer.com/v1/models/list/internal/only"
    api_key_env: str = "GRAVIXLAYER_API_KEY"
    system_message: str = "You are a helpful and friendly assistant."
    fetch_timeout: float = 180.0
    models_timeout: float = 15.0


@dataclass
class StreamSpec:
    """Timers that shape the merged NDJSON stream."""

    watchdog_seconds: float = 120.0
    keepalive_interval: float = 15.0
    keepalive_stale_after: float = 14.0
    default_temperature: float = DEFAULT_TEMPERATURE


@dataclass
class ServerSpec:
    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: list[str] = field(
        default_factory=lambda: [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]
    )


@dataclass
class ClientSpec:
    server_url: str = "http://127.0.0.1:8000"
    watchdog_seconds: float = 120.0


@dataclass
class ArenaConfig:
    """Top-level config for Model Arena."""

    upstream: UpstreamSpec = field(default_factory=UpstreamSpec)
    stream: StreamSpec = field(default_factory=StreamSpec)
    server: ServerSpec = field(default_factory=ServerSpec)
    client: ClientSpec = field(default_factory=ClientSpec)

    def require_api_key(self) -> str:
        """Return the upstream bearer token or raise ``ConfigError``."""
        key = os.environ.get(self.upstream.api_key_env, "").strip()
        if not key:
            raise ConfigError(
                f"Missing {self.upstream.api_key_env}. "
                "Export it before starting the server."
            )
        return key


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

_SEARCH_PATHS = [
    Path("./model_arena.yaml"),
    Path.home() / ".config" / "model-arena" / "config.yaml",
]


def _parse_section(cls: type, raw: Any) -> Any:
    """Build dataclass *cls* from a raw mapping, ignoring unknown keys."""
    if raw is None:
        return cls()
    if not isinstance(raw, dict):
        raise ConfigError(
            f"Config section for {cls.__name__} must be a mapping, "
            f"got {type(raw).__name__}"
        )
    known = {f.name for f in fields(cls)}
    unknown = set(raw) - known
    if unknown:
        _logger.warning(
            "Ignoring unknown %s keys: %s", cls.__name__, ", ".join(sorted(unknown)),
        )
    return cls(**{k: v for k, v in raw.items() if k in known and v is not None})


def load_config(path: str | Path | None = None) -> ArenaConfig:
    """Load configuration from YAML.

    Parameters
    ----------
    path:
        Explicit config path.  If *None*, search default locations.

    Returns
    -------
    ArenaConfig
    """
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            _logger.warning("Config file not found: %s; using defaults", path)
            return ArenaConfig()
    else:
        for candidate in _SEARCH_PATHS:
            if candidate.exists():
                config_path = candidate
                break

    if config_path is None:
        _logger.info("No config file found; using defaults")
        return ArenaConfig()

    _logger.info("Loading config from %s", config_path)
    with open(config_path) as f:
        try:
            raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(
            f"Config file must be a YAML mapping, got {type(raw).__name__}"
        )

    return ArenaConfig(
        upstream=_parse_section(UpstreamSpec, raw.get("upstream")),
        stream=_parse_section(StreamSpec, raw.get("stream")),
        server=_parse_section(ServerSpec, raw.get("server")),
        client=_parse_section(ClientSpec, raw.get("client")),
    )
