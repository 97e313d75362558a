"""Tests for YAML config loading and defaults."""

from __future__ import annotations

from pathlib import Path

import pytest

from model_arena import config as config_mod
from model_arena.config import ArenaConfig, ConfigError, load_config


@pytest.fixture
def no_search_paths(monkeypatch, tmp_path: Path):
    monkeypatch.setattr(config_mod, "_SEARCH_PATHS", [tmp_path / "absent.yaml"])


class TestDefaults:
    def test_defaults(self, no_search_paths):
        cfg = load_config()
        assert isinstance(cfg, ArenaConfig)
        assert cfg.upstream.api_key_env == "GRAVIXLAYER_API_KEY"
        assert cfg.upstream.fetch_timeout == 180.0
        assert cfg.stream.watchdog_seconds == 120.0
        assert cfg.stream.keepalive_interval == 15.0
        assert cfg.stream.keepalive_stale_after == 14.0
        assert cfg.client.watchdog_seconds == 120.0

    def test_missing_explicit_path_uses_defaults(self, tmp_path: Path):
        cfg = load_config(tmp_path / "nope.yaml")
        assert cfg.server.port == 8000


class TestLoading:
    def test_sections_loaded(self, tmp_path: Path):
        path = tmp_path / "model_arena.yaml"
        path.write_text(
            "upstream:\n"
            "  base_url: http://local/v1\n"
            "stream:\n"
            "  watchdog_seconds: 5\n"
            "server:\n"
            "  port: 9001\n"
            "client:\n"
            "  server_url: http://arena:9001\n"
        )
        cfg = load_config(path)
        assert cfg.upstream.base_url == "http://local/v1"
        assert cfg.upstream.api_key_env == "GRAVIXLAYER_API_KEY"
        assert cfg.stream.watchdog_seconds == 5
        assert cfg.server.port == 9001
        assert cfg.client.server_url == "http://arena:9001"

    def test_search_path_used(self, monkeypatch, tmp_path: Path):
        path = tmp_path / "found.yaml"
        path.write_text("server:\n  port: 7000\n")
        monkeypatch.setattr(config_mod, "_SEARCH_PATHS", [tmp_path / "absent.yaml", path])
        assert load_config().server.port == 7000

    def test_unknown_keys_ignored(self, tmp_path: Path):
        path = tmp_path / "c.yaml"
        path.write_text("stream:\n  watchdog_seconds: 3\n  bogus: 1\n")
        assert load_config(path).stream.watchdog_seconds == 3

    def test_empty_file(self, tmp_path: Path):
        path = tmp_path / "c.yaml"
        path.write_text("")
        assert load_config(path).server.port == 8000

    def test_invalid_yaml(self, tmp_path: Path):
        path = tmp_path / "c.yaml"
        path.write_text("stream: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(path)

    def test_non_mapping(self, tmp_path: Path):
        path = tmp_path / "c.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_config(path)

    def test_section_must_be_mapping(self, tmp_path: Path):
        path = tmp_path / "c.yaml"
        path.write_text("stream: 5\n")
        with pytest.raises(ConfigError):
            load_config(path)


class TestApiKey:
    def test_present(self, monkeypatch):
        monkeypatch.setenv("GRAVIXLAYER_API_KEY", " secret ")
        assert ArenaConfig().require_api_key() == "secret"

    def test_missing(self, monkeypatch):
        monkeypatch.delenv("GRAVIXLAYER_API_KEY", raising=False)
        with pytest.raises(ConfigError, match="GRAVIXLAYER_API_KEY"):
            ArenaConfig().require_api_key()

    def test_custom_env_name(self, monkeypatch):
        monkeypatch.setenv("MY_KEY", "k")
        cfg = ArenaConfig()
        cfg.upstream.api_key_env = "MY_KEY"
        assert cfg.require_api_key() == "k"
