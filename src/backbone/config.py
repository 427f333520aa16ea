"""Backbone configuration management.

Loads configuration from .backbone/config.yaml with sensible defaults.
All settings can be overridden via environment variables (BACKBONE_*).

Config locations (in priority order):
1. Explicit path passed to load_config()
2. .backbone/config.yaml (project-local)
3. ~/.backbone/config.yaml (user-global)
4. Built-in defaults
"""

import copy
import os
import threading
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from backbone.actions.policy import parse_action_types
from backbone.core.errors import ConfigError, ErrorCode
from backbone.engine.config import EngineConfig
from backbone.engine.schedule import MINUTE_MS, QuietHours


@dataclass
class EngineSettings:
    """Loop timing and approval settings."""

    auto_approve_types: list[str] = field(default_factory=lambda: ["research", "analyze", "plan"])
    """Action types that run without human approval."""

    cycle_interval_ms: int = 15 * MINUTE_MS
    """Rest after a normal cycle."""

    rate_limit_rest_ms: int = 30 * MINUTE_MS
    """Rest after a rate-limited cycle."""

    quiet_hours_rest_ms: int = 60 * MINUTE_MS
    """Rest while inside the quiet-hours window."""

    quiet_hours: str | None = "22:00-07:00"
    """Local HH:MM-HH:MM window with no autonomous work. null disables."""

    max_proposed_actions: int = 5
    """Upper bound on actions waiting for approval."""

    progress_per_action: float = 0.1
    """Goal progress credited per completed action."""

    def to_engine_config(self) -> EngineConfig:
        """Validate and convert to the controller's runtime config.

        Raises:
            ConfigError: On an unknown action type or a malformed window.
        """
        if self.cycle_interval_ms <= 0:
            raise ConfigError(
                ErrorCode.CONFIG_INVALID,
                context={"key": "engine.cycle_interval_ms", "detail": "must be positive"},
            )
        if not 0 < self.progress_per_action <= 1:
            raise ConfigError(
                ErrorCode.CONFIG_INVALID,
                context={"key": "engine.progress_per_action", "detail": "must be in (0, 1]"},
            )
        names = self.auto_approve_types or []
        if isinstance(names, str):
            names = [part for part in names.split(",") if part.strip()]
        return EngineConfig(
            auto_approve_types=parse_action_types(names),
            cycle_interval_ms=int(self.cycle_interval_ms),
            rate_limit_rest_ms=int(self.rate_limit_rest_ms),
            quiet_hours_rest_ms=int(self.quiet_hours_rest_ms),
            quiet_hours=QuietHours.parse(self.quiet_hours) if self.quiet_hours else None,
            max_proposed_actions=int(self.max_proposed_actions),
            progress_per_action=float(self.progress_per_action),
        )


@dataclass
class BackendSettings:
    """Execution backends, tried in the order listed here."""

    agentic_cli_enabled: bool = True
    """Use the local agentic CLI (first choice when installed)."""

    agentic_cli_command: str = "claude"
    """Executable for the agentic CLI backend."""

    model_backend_enabled: bool = True
    """Fall back to a direct model call when the CLI is unavailable."""

    timeout_s: float = 300.0
    """Per-action execution timeout."""

    workdir: str | None = None
    """Working directory for the agentic CLI (default: current)."""


@dataclass
class ModelSettings:
    """Model used by the proposer and the model backend."""

    provider: str = "anthropic"
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 4096
    proposer_timeout_s: float = 60.0
    """Timeout for one proposal request."""


@dataclass
class StorageSettings:
    """Where engine state lives between runs."""

    state_path: str = ".backbone/state.json"


@dataclass
class BackboneConfig:
    """Root configuration for Backbone."""

    engine: EngineSettings = field(default_factory=EngineSettings)
    backends: BackendSettings = field(default_factory=BackendSettings)
    model: ModelSettings = field(default_factory=ModelSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)

    verbose: bool = False
    """Enable verbose output by default."""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


_SECTIONS: dict[str, type] = {
    "engine": EngineSettings,
    "backends": BackendSettings,
    "model": ModelSettings,
    "storage": StorageSettings,
}

# Global config instance (lazy-loaded, thread-safe)
_config: BackboneConfig | None = None
_config_lock = threading.Lock()


def _defaults() -> dict[str, Any]:
    return BackboneConfig().to_dict()


def _deep_update(base: dict, updates: dict) -> dict:
    """Recursively update a dict with another dict."""
    for key, value in updates.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_update(base[key], value)
        else:
            base[key] = value
    return base


def _coerce(value: str) -> Any:
    lowered = value.lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    if lowered in ("null", "none", ""):
        return None
    if value.isdigit() or (value.startswith("-") and value[1:].isdigit()):
        return int(value)
    try:
        return float(value)
    except ValueError:
        pass
    if "," in value:
        return [part.strip() for part in value.split(",") if part.strip()]
    return value


def _apply_env_overrides(config_dict: dict, environ: dict[str, str] | None = None) -> dict:
    """Apply environment variable overrides.

    Environment variables follow pattern: BACKBONE_SECTION_KEY

    Examples:
        BACKBONE_ENGINE_CYCLE_INTERVAL_MS=600000
        BACKBONE_ENGINE_QUIET_HOURS=none
        BACKBONE_ENGINE_AUTO_APPROVE_TYPES=research,analyze
        BACKBONE_BACKENDS_AGENTIC_CLI_ENABLED=false
    """
    prefix = "BACKBONE_"
    environ = os.environ if environ is None else environ

    for key, value in environ.items():
        if not key.startswith(prefix):
            continue
        path_str = key[len(prefix):].lower()

        if path_str == "verbose":
            config_dict["verbose"] = _coerce(value)
            continue

        for section, cls in _SECTIONS.items():
            if not path_str.startswith(section + "_"):
                continue
            name = path_str[len(section) + 1:]
            # Only known keys; BACKBONE_LOG_LEVEL and friends are not config
            if name in {f.name for f in fields(cls)}:
                config_dict.setdefault(section, {})[name] = _coerce(value)
            break

    return config_dict


def _dict_to_config(data: dict) -> BackboneConfig:
    """Convert a dict to BackboneConfig.

    Raises:
        ConfigError: On an unknown section or key.
    """
    sections = {}
    for key in data:
        if key not in _SECTIONS and key != "verbose":
            raise ConfigError(ErrorCode.CONFIG_UNKNOWN_KEY, context={"key": key})

    for section, cls in _SECTIONS.items():
        values = data.get(section) or {}
        if not isinstance(values, dict):
            raise ConfigError(
                ErrorCode.CONFIG_INVALID,
                context={"key": section, "detail": "expected a mapping"},
            )
        known = {f.name for f in fields(cls)}
        for key in values:
            if key not in known:
                raise ConfigError(ErrorCode.CONFIG_UNKNOWN_KEY, context={"key": f"{section}.{key}"})
        sections[section] = cls(**values)

    return BackboneConfig(**sections, verbose=bool(data.get("verbose", False)))


def load_config(path: str | Path | None = None) -> BackboneConfig:
    """Load configuration from file with defaults and env overrides.

    Priority (highest to lowest):
    1. Environment variables (BACKBONE_*)
    2. Explicit path if provided
    3. .backbone/config.yaml (project-local)
    4. ~/.backbone/config.yaml (user-global)
    5. Built-in defaults

    Args:
        path: Optional explicit config file path.

    Returns:
        Merged BackboneConfig instance.

    Raises:
        ConfigError: If the chosen file is not valid YAML or has unknown keys.
    """
    global _config

    config_dict = copy.deepcopy(_defaults())

    config_paths = []
    if path:
        config_paths.append(Path(path))
    config_paths.extend([
        Path(".backbone/config.yaml"),
        Path.home() / ".backbone" / "config.yaml",
    ])

    for config_path in config_paths:
        if config_path.exists():
            try:
                with open(config_path) as f:
                    file_config = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                raise ConfigError(
                    ErrorCode.CONFIG_INVALID,
                    context={"key": str(config_path), "detail": str(e)},
                    cause=e,
                ) from e
            if not isinstance(file_config, dict):
                raise ConfigError(
                    ErrorCode.CONFIG_INVALID,
                    context={"key": str(config_path), "detail": "top level must be a mapping"},
                )
            _deep_update(config_dict, file_config)
            break  # Use first found config

    config_dict = _apply_env_overrides(config_dict)

    _config = _dict_to_config(config_dict)
    return _config


def get_config() -> BackboneConfig:
    """Get the current configuration, loading if needed."""
    global _config

    if _config is not None:
        return _config

    with _config_lock:
        if _config is None:
            _config = load_config()
        return _config


def reset_config() -> None:
    """Reset the global config (useful for testing)."""
    global _config
    with _config_lock:
        _config = None


def save_default_config(path: str | Path = ".backbone/config.yaml") -> Path:
    """Save the default configuration to a file.

    Creates a documented config file with all options.

    Args:
        path: Where to save the config.

    Returns:
        Path to the saved config file.
    """
    config_content = '''# Backbone Configuration

# Autonomous loop
engine:
  # Action types that run without approval. Everything else waits for
  # `backbone actions approve`.
  auto_approve_types:
    - research
    - analyze
    - plan

  # Rest after a normal cycle (15 minutes)
  cycle_interval_ms: 900000

  # Rest after hitting a provider rate limit (30 minutes)
  rate_limit_rest_ms: 1800000

  # Rest while inside quiet hours (60 minutes)
  quiet_hours_rest_ms: 3600000

  # Local time window with no autonomous work; null disables
  quiet_hours: "22:00-07:00"

  # Maximum number of actions waiting for approval
  max_proposed_actions: 5

  # Goal progress credited for each completed action (0-1)
  progress_per_action: 0.1

# Execution backends (agentic CLI first, model fallback)
backends:
  agentic_cli_enabled: true
  agentic_cli_command: "claude"
  model_backend_enabled: true
  timeout_s: 300
  workdir: null

# Model for proposals and the model backend
model:
  provider: "anthropic"
  model: "claude-sonnet-4-20250514"
  max_tokens: 4096
  proposer_timeout_s: 60

# Persistent engine state
storage:
  state_path: ".backbone/state.json"

verbose: false
'''

    config_path = Path(path).expanduser()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(config_content)
    return config_path
