"""CLI commands that drive the engine: run, status, observe."""

import asyncio
import contextlib
import json
import signal

import click
from rich.panel import Panel
from rich.table import Table

from backbone.cli.helpers import console, fail, load_controller
from backbone.core.errors import BackboneError
from backbone.engine.controller import AutonomousLoopController
from backbone.events.worklog import EntryStatus, LogEntry

_STATUS_STYLE = {
    EntryStatus.INFO: "dim",
    EntryStatus.STARTED: "cyan",
    EntryStatus.SUCCESS: "green",
    EntryStatus.WARNING: "yellow",
    EntryStatus.ERROR: "red",
}


def print_entry(entry: LogEntry) -> None:
    """Work log subscriber that echoes entries to the console."""
    style = _STATUS_STYLE.get(entry.status, "white")
    console.print(
        f"[dim]{entry.timestamp:%H:%M:%S}[/dim] [{style}]{entry.source:>9}[/{style}] {entry.message}",
        highlight=False,
    )


@click.command()
@click.option("--once", is_flag=True, help="Run a single cycle and exit")
@click.pass_context
def run(ctx, once: bool) -> None:
    """Run the autonomous loop (Ctrl-C to stop).

    \b
    Examples:
        backbone run           # Cycle until stopped
        backbone run --once    # One cycle, then exit
    """
    controller = load_controller(ctx)
    controller.work_log.subscribe(print_entry)
    asyncio.run(_run(controller, once))


async def _run(controller: AutonomousLoopController, once: bool) -> None:
    if once:
        outcome = await controller.run_cycle()
        await controller.work_log.drain()
        console.print(f"\n[bold]Cycle finished:[/bold] {outcome.value}")
        _print_next(controller)
        return

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on every platform; Ctrl-C then ends the process directly
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, controller.stop)

    try:
        controller.start_autonomous_loop()
    except BackboneError as e:
        fail(str(e))
    await controller.join()
    await controller.work_log.drain()


def _print_next(controller: AutonomousLoopController) -> None:
    state = controller.state
    pending = len(controller.queue.pending)
    if state.next_cycle_at is not None:
        console.print(f"[dim]Next cycle at {state.next_cycle_at:%H:%M} ({state.rest_level.value})[/dim]")
    if pending:
        console.print(f"[yellow]{pending} actions await approval[/yellow] (see `backbone actions pending`)")


@click.command()
@click.option("--json", "json_output", is_flag=True, help="Machine-readable output")
@click.pass_context
def status(ctx, json_output: bool) -> None:
    """Show goals, queued actions, handoff and backend availability."""
    controller = load_controller(ctx)
    data = controller.status()

    if json_output:
        click.echo(json.dumps(data, indent=2))
        return

    console.print(Panel("[bold]Backbone Status[/bold]", border_style="cyan"))

    goals = data["goals"]
    actions = data["actions"]
    console.print(f"Goals: {goals['active']} active / {goals['total']} total")
    console.print(
        f"Actions: {actions['pending']} pending, {actions['approved']} approved"
        f" ({actions['waiting']} waiting)"
    )
    if actions["next_scheduled"]:
        nxt = actions["next_scheduled"]
        console.print(f"Next scheduled: {nxt['title']} at {nxt['scheduled_for']}")

    cfg = data["config"]
    console.print(f"Auto-approve: {', '.join(cfg['auto_approve_types']) or 'nothing'}")
    console.print(f"Quiet hours: {cfg['quiet_hours'] or 'off'}")

    backends = Table(title="Backends")
    backends.add_column("Backend", style="cyan")
    backends.add_column("Available")
    for backend_id, available in data["backends"].items():
        backends.add_row(backend_id, "[green]yes[/green]" if available else "[red]no[/red]")
    console.print(backends)

    handoff = data["handoff"]
    if handoff:
        console.print(f"\n[cyan]Handoff[/cyan] (expires {handoff['expires_at']})")
        console.print(f"  Last: {handoff['action_summary']}")
        if handoff.get("next_task"):
            console.print(f"  Next: {handoff['next_task']}")

    if data["last_error"]:
        console.print(f"\n[red]Last error:[/red] {data['last_error']['message']}")


@click.command()
@click.pass_context
def observe(ctx) -> None:
    """Ask the model what matters most right now."""
    controller = load_controller(ctx)
    try:
        text = asyncio.run(controller.observe())
    except BackboneError as e:
        fail(str(e))
    console.print(Panel(text or "[dim]No observation[/dim]", title="Observation", border_style="cyan"))
