"""Logging configuration for the Backbone CLI.

- Default: WARNING level (quiet operation)
- --verbose flag: DEBUG level with timestamps
- BACKBONE_DEBUG=true or BACKBONE_LOG_LEVEL=DEBUG env vars: override for scripting
- Optional log file under .backbone/logs/ for long-running loops

Usage:
    from backbone.core.logging import configure_logging
    configure_logging(debug=verbose)
"""

import logging
import os
import sys
from datetime import datetime
from pathlib import Path

_DEBUG_FORMAT = "%(asctime)s %(name)s [%(levelname)s] %(message)s"
_DEFAULT_FORMAT = "%(name)s: %(message)s"

_NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "anthropic",
    "asyncio",
)

_MAX_LOG_SESSIONS = 10


def configure_logging(
    *,
    debug: bool = False,
    level: int | str | None = None,
    stream: object = None,
    log_dir: Path | str | None = None,
) -> int:
    """Configure the root logger.

    Priority for level resolution (highest to lowest):
        1. Explicit `level` parameter
        2. BACKBONE_LOG_LEVEL env var
        3. BACKBONE_DEBUG=true env var
        4. `debug=True` parameter (--verbose flag)
        5. WARNING

    Args:
        debug: Enable DEBUG level with detailed format.
        level: Explicit level override.
        stream: Console stream (default: stderr).
        log_dir: If set, also write a session log file there.

    Returns:
        The resolved console level.
    """
    if level is not None:
        resolved_level = _parse_level(level)
    elif env_level := os.environ.get("BACKBONE_LOG_LEVEL"):
        resolved_level = _parse_level(env_level)
    elif os.environ.get("BACKBONE_DEBUG", "").lower() in ("true", "1", "yes"):
        resolved_level = logging.DEBUG
    elif debug:
        resolved_level = logging.DEBUG
    else:
        resolved_level = logging.WARNING

    console_format = _DEBUG_FORMAT if resolved_level <= logging.DEBUG else _DEFAULT_FORMAT

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if log_dir else resolved_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(stream or sys.stderr)
    console_handler.setLevel(resolved_level)
    console_handler.setFormatter(logging.Formatter(console_format))
    root_logger.addHandler(console_handler)

    if log_dir:
        try:
            directory = Path(log_dir)
            directory.mkdir(parents=True, exist_ok=True)
            _cleanup_old_logs(directory)
            timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
            file_handler = logging.FileHandler(
                directory / f"session_{timestamp}.log", mode="w", encoding="utf-8"
            )
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(_DEBUG_FORMAT))
            root_logger.addHandler(file_handler)
        except OSError as e:
            # Console logging still works
            sys.stderr.write(f"Warning: Could not enable file logging: {e}\n")

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(
        "Logging configured: level=%s, file=%s",
        logging.getLevelName(resolved_level),
        bool(log_dir),
    )
    return resolved_level


def _cleanup_old_logs(log_dir: Path, max_sessions: int = _MAX_LOG_SESSIONS) -> None:
    """Keep only the newest N session logs."""
    log_files = sorted(
        log_dir.glob("session_*.log"),
        key=lambda p: p.stat().st_mtime,
        reverse=True,
    )
    for old_log in log_files[max_sessions - 1:]:
        old_log.unlink(missing_ok=True)


def _parse_level(level: int | str) -> int:
    """Parse log level from int or string."""
    if isinstance(level, int):
        return level
    numeric = getattr(logging, level.upper(), None)
    if isinstance(numeric, int):
        return numeric
    try:
        return int(level)
    except ValueError:
        return logging.WARNING
