"""CLI commands for the approval queue.

These operate on the persisted state; run them while the loop is stopped.
"""

import json

import click
from rich.table import Table

from backbone.actions.models import ActionStatus, ActionType, ProposedAction, Recurrence
from backbone.cli.helpers import console, fail, load_controller, resolve_id
from backbone.core.errors import BackboneError


@click.group()
def actions() -> None:
    """Review actions waiting for approval.

    \b
    Examples:
        backbone actions pending
        backbone actions approve action_1739
        backbone actions reject action_1739
        backbone actions approve-all
        backbone actions schedule "Review budget" --at "2026-11-01 09:00" --every monthly
    """


@actions.command("pending")
@click.option("--json", "json_output", is_flag=True, help="Machine-readable output")
@click.pass_context
def pending(ctx, json_output: bool) -> None:
    """List actions awaiting approval."""
    controller = load_controller(ctx)
    items = controller.queue.pending

    if json_output:
        click.echo(json.dumps([a.to_dict() for a in items], indent=2))
        return

    if not items:
        console.print("Nothing awaiting approval.")
        return

    table = Table(title="Pending actions")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Title", style="white")
    table.add_column("Type", style="yellow")
    table.add_column("Priority", justify="right")
    table.add_column("Goal", style="dim")
    for action in items:
        goal = controller.goal_manager.get_goal(action.goal_id) if action.goal_id else None
        table.add_row(
            action.id,
            action.title,
            action.type.value,
            str(action.priority),
            goal.title if goal else "-",
        )
    console.print(table)


@actions.command("approve")
@click.argument("action_id")
@click.pass_context
def approve(ctx, action_id: str) -> None:
    """Approve a pending action; it runs on the next cycle."""
    controller = load_controller(ctx)
    action = resolve_id(controller.queue.pending, action_id, "pending action")
    try:
        controller.approve_action(action.id)
    except BackboneError as e:
        fail(str(e))
    console.print(f"[green]✓ Approved:[/green] {action.title}")


@actions.command("reject")
@click.argument("action_id")
@click.pass_context
def reject(ctx, action_id: str) -> None:
    """Reject an action; it will not be proposed again."""
    controller = load_controller(ctx)
    candidates = controller.queue.pending + controller.queue.approved
    action = resolve_id(candidates, action_id, "queued action")
    try:
        controller.reject_action(action.id)
    except BackboneError as e:
        fail(str(e))
    console.print(f"[yellow]Rejected:[/yellow] {action.title}")


@actions.command("approve-all")
@click.pass_context
def approve_all(ctx) -> None:
    """Approve every pending action."""
    controller = load_controller(ctx)
    approved = controller.approve_all()
    console.print(f"[green]✓ Approved {len(approved)} actions[/green]")


@actions.command("schedule")
@click.argument("title")
@click.option(
    "--type", "-t", "action_type",
    type=click.Choice([t.value for t in ActionType]),
    default=ActionType.RESEARCH.value,
    show_default=True,
)
@click.option("--priority", "-p", type=click.IntRange(1, 10), default=5, show_default=True)
@click.option(
    "--at", "at",
    type=click.DateTime(formats=["%Y-%m-%d %H:%M", "%Y-%m-%dT%H:%M", "%Y-%m-%d"]),
    help="Not before this local time",
)
@click.option("--every", type=click.Choice([r.value for r in Recurrence]), help="Repeat after each run")
@click.option("--after", "after_id", help="Run only after this action finishes")
@click.option("--goal", "goal_id", help="Goal the action works toward")
@click.pass_context
def schedule(ctx, title: str, action_type: str, priority: int, at, every: str | None, after_id: str | None, goal_id: str | None) -> None:
    """Queue an action directly, optionally for later or on repeat."""
    controller = load_controller(ctx)
    depends_on = []
    if after_id:
        open_actions = controller.queue.pending + controller.queue.approved
        depends_on.append(resolve_id(open_actions, after_id, "queued action").id)
    if goal_id:
        goal_id = resolve_id(controller.goal_manager.get_active_goals(), goal_id, "goal").id

    proposal = ProposedAction(title=title, type=ActionType(action_type), priority=priority, goal_id=goal_id)
    try:
        action = controller.schedule_action(
            proposal,
            at=at,
            depends_on=depends_on,
            recurrence=Recurrence(every) if every else None,
        )
    except BackboneError as e:
        fail(str(e))
    if action is None:
        fail(f"Already queued or previously rejected: {title}")

    state = "awaiting approval" if action.status == ActionStatus.PROPOSED else "approved"
    console.print(f"[green]✓ Scheduled:[/green] {action.title} ({state})")
    if action.scheduled_for:
        console.print(f"  Not before {action.scheduled_for:%Y-%m-%d %H:%M}")
