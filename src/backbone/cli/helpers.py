"""Shared helpers for CLI commands."""

import os
import sys
from pathlib import Path
from typing import NoReturn

import click
from rich.console import Console

from backbone.config import BackboneConfig, load_config
from backbone.core.errors import BackboneError

console = Console()


def load_dotenv() -> None:
    """Load .env from the current directory without overriding the environment."""
    env_file = Path.cwd() / ".env"
    if not env_file.exists():
        return
    try:
        with open(env_file) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#") and "=" in line:
                    key, _, value = line.partition("=")
                    value = value.strip().strip("'\"")
                    os.environ.setdefault(key.removeprefix("export ").strip(), value)
    except OSError:
        # Unreadable .env (permissions, sandbox); continue without it
        pass


def get_cli_config(ctx: click.Context) -> BackboneConfig:
    """Load (once per invocation) the config selected by --config."""
    ctx.ensure_object(dict)
    if "config" not in ctx.obj:
        try:
            ctx.obj["config"] = load_config(ctx.obj.get("config_path"))
        except BackboneError as e:
            fail(str(e))
    return ctx.obj["config"]


def load_controller(ctx: click.Context):
    """Build the engine and load persisted state.

    Exits with status 1 if the configuration or the state store is unusable.
    """
    from backbone.app import build_controller

    config = get_cli_config(ctx)
    try:
        controller = build_controller(config)
        controller.initialize()
    except BackboneError as e:
        fail(str(e))
    return controller


def resolve_id(candidates: list, prefix: str, kind: str):
    """Find an item by id or unique id prefix."""
    exact = [c for c in candidates if c.id == prefix]
    if exact:
        return exact[0]
    matches = [c for c in candidates if c.id.startswith(prefix)]
    if len(matches) == 1:
        return matches[0]
    if not matches:
        fail(f"No {kind} matches '{prefix}'")
    fail(f"'{prefix}' is ambiguous: " + ", ".join(m.id for m in matches[:5]))


def fail(message: str) -> NoReturn:
    console.print(f"[red]✗ {message}[/red]")
    sys.exit(1)
