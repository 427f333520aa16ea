"""Config command - Manage Backbone configuration."""

from pathlib import Path

import click
import yaml
from rich.panel import Panel

from backbone.cli.helpers import console, fail, get_cli_config
from backbone.config import save_default_config
from backbone.core.errors import BackboneError


@click.group()
def config() -> None:
    """Manage Backbone configuration.

    Configuration is loaded from (in priority order):
    1. Environment variables (BACKBONE_*)
    2. --config path
    3. .backbone/config.yaml (project-local)
    4. ~/.backbone/config.yaml (user-global)
    5. Built-in defaults

    \b
    Environment overrides:
        BACKBONE_ENGINE_QUIET_HOURS=none backbone run
        BACKBONE_BACKENDS_AGENTIC_CLI_ENABLED=false backbone run
    """


@config.command("show")
@click.pass_context
def show(ctx) -> None:
    """Show the effective configuration."""
    cfg = get_cli_config(ctx)
    try:
        engine = cfg.engine.to_engine_config()
    except BackboneError as e:
        fail(str(e))

    console.print(Panel("[bold]Backbone Configuration[/bold]", border_style="cyan"))
    console.print(yaml.safe_dump(cfg.to_dict(), sort_keys=False).rstrip(), highlight=False)
    console.print(
        f"\n[dim]Auto-approved: {', '.join(engine.approval_policy.names())}; "
        f"quiet hours: {engine.quiet_hours or 'off'}[/dim]"
    )


@config.command("init")
@click.option("--path", type=click.Path(dir_okay=False), default=".backbone/config.yaml",
              help="Where to write the file")
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def init(path: str, force: bool) -> None:
    """Create a documented default config file."""
    if Path(path).expanduser().exists() and not force:
        fail(f"{path} already exists (use --force to overwrite)")
    saved_path = save_default_config(path)
    console.print(f"[green]✓ Config file created:[/green] {saved_path}")
    console.print("\n[dim]Edit this file to customize Backbone behavior.[/dim]")
