"""Tests for YAML configuration with BACKBONE_* environment overrides."""

import os
from datetime import time

import pytest

from backbone.actions.models import ActionType
from backbone.config import (
    BackboneConfig,
    EngineSettings,
    _apply_env_overrides,
    _coerce,
    get_config,
    load_config,
    reset_config,
    save_default_config,
)
from backbone.core.errors import ConfigError, ErrorCode
from backbone.engine import QuietHours


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """No stray config files or BACKBONE_* variables leak into a test."""
    for key in list(os.environ):
        if key.startswith("BACKBONE_"):
            monkeypatch.delenv(key)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.chdir(tmp_path)
    reset_config()
    yield
    reset_config()


class TestDefaults:
    """Built-in defaults."""

    def test_load_without_files(self) -> None:
        config = load_config()
        assert config == BackboneConfig()
        assert config.engine.cycle_interval_ms == 900_000
        assert config.engine.quiet_hours == "22:00-07:00"
        assert config.backends.agentic_cli_command == "claude"
        assert config.storage.state_path == ".backbone/state.json"

    def test_get_config_caches(self) -> None:
        first = get_config()
        assert get_config() is first
        reset_config()
        assert get_config() is not first

    def test_engine_config_conversion(self) -> None:
        engine = EngineSettings().to_engine_config()
        assert engine.auto_approve_types == frozenset(
            {ActionType.RESEARCH, ActionType.ANALYZE, ActionType.PLAN}
        )
        assert engine.quiet_hours == QuietHours(time(22, 0), time(7, 0))
        assert engine.rate_limit_rest_ms == 1_800_000
        assert engine.quiet_hours_rest_ms == 3_600_000


class TestConfigFile:
    """YAML loading and lookup order."""

    def test_explicit_path(self, tmp_path) -> None:
        path = tmp_path / "custom.yaml"
        path.write_text(
            "engine:\n"
            "  auto_approve_types: [research]\n"
            "  quiet_hours: null\n"
            "backends:\n"
            "  agentic_cli_enabled: false\n"
        )

        config = load_config(path)

        assert config.engine.auto_approve_types == ["research"]
        assert config.engine.quiet_hours is None
        assert config.engine.cycle_interval_ms == 900_000
        assert config.backends.agentic_cli_enabled is False
        assert config.engine.to_engine_config().quiet_hours is None

    def test_project_file_found(self, tmp_path) -> None:
        (tmp_path / ".backbone").mkdir()
        (tmp_path / ".backbone" / "config.yaml").write_text("verbose: true\n")
        assert load_config().verbose is True

    def test_user_file_used_last(self, tmp_path) -> None:
        home = tmp_path / "home" / ".backbone"
        home.mkdir(parents=True)
        (home / "config.yaml").write_text("model:\n  max_tokens: 1024\n")
        assert load_config().model.max_tokens == 1024

    def test_empty_file_means_defaults(self, tmp_path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path) == BackboneConfig()

    def test_unknown_key(self, tmp_path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("engine:\n  cycle_minutes: 5\n")

        with pytest.raises(ConfigError) as exc_info:
            load_config(path)
        assert exc_info.value.code == ErrorCode.CONFIG_UNKNOWN_KEY
        assert "engine.cycle_minutes" in exc_info.value.message

    def test_unknown_section(self, tmp_path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("telemetry:\n  enabled: true\n")

        with pytest.raises(ConfigError) as exc_info:
            load_config(path)
        assert exc_info.value.code == ErrorCode.CONFIG_UNKNOWN_KEY

    @pytest.mark.parametrize("content", ["engine: [1, 2\n", "- just\n- a list\n", "engine: 5\n"])
    def test_invalid_file(self, tmp_path, content: str) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text(content)

        with pytest.raises(ConfigError) as exc_info:
            load_config(path)
        assert exc_info.value.code == ErrorCode.CONFIG_INVALID

    def test_saved_default_round_trips(self, tmp_path) -> None:
        path = save_default_config(tmp_path / "nested" / "config.yaml")
        assert path.exists()
        assert load_config(path) == BackboneConfig()


class TestEnvOverrides:
    """BACKBONE_SECTION_KEY variables win over files."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("true", True),
            ("False", False),
            ("none", None),
            ("600000", 600000),
            ("-1", -1),
            ("0.25", 0.25),
            ("research, plan", ["research", "plan"]),
            ("claude", "claude"),
        ],
    )
    def test_coerce(self, raw: str, expected) -> None:
        assert _coerce(raw) == expected

    def test_known_keys_only(self) -> None:
        result = _apply_env_overrides(
            {},
            environ={
                "BACKBONE_ENGINE_CYCLE_INTERVAL_MS": "600000",
                "BACKBONE_BACKENDS_AGENTIC_CLI_ENABLED": "false",
                "BACKBONE_LOG_LEVEL": "DEBUG",
                "BACKBONE_ENGINE_NOT_A_KEY": "1",
                "BACKBONE_VERBOSE": "true",
                "OTHER_ENGINE_CYCLE_INTERVAL_MS": "5",
            },
        )
        assert result == {
            "engine": {"cycle_interval_ms": 600000},
            "backends": {"agentic_cli_enabled": False},
            "verbose": True,
        }

    def test_env_beats_file(self, tmp_path, monkeypatch) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("engine:\n  cycle_interval_ms: 120000\n")
        monkeypatch.setenv("BACKBONE_ENGINE_CYCLE_INTERVAL_MS", "60000")
        monkeypatch.setenv("BACKBONE_ENGINE_QUIET_HOURS", "none")

        config = load_config(path)

        assert config.engine.cycle_interval_ms == 60000
        assert config.engine.quiet_hours is None

    def test_single_auto_approve_type_from_env(self, monkeypatch) -> None:
        monkeypatch.setenv("BACKBONE_ENGINE_AUTO_APPROVE_TYPES", "research")
        engine = load_config().engine.to_engine_config()
        assert engine.auto_approve_types == frozenset({ActionType.RESEARCH})


class TestEngineValidation:
    """to_engine_config() rejects values the controller cannot use."""

    @pytest.mark.parametrize(
        "settings",
        [
            EngineSettings(cycle_interval_ms=0),
            EngineSettings(progress_per_action=0),
            EngineSettings(progress_per_action=1.5),
            EngineSettings(auto_approve_types=["research", "teleport"]),
            EngineSettings(quiet_hours="late"),
        ],
    )
    def test_invalid(self, settings: EngineSettings) -> None:
        with pytest.raises(ConfigError):
            settings.to_engine_config()

    def test_empty_auto_approve_gates_everything(self) -> None:
        engine = EngineSettings(auto_approve_types=[]).to_engine_config()
        assert engine.auto_approve_types == frozenset()
