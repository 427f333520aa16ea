"""CLI commands for goals.

Provides:
- backbone goals list: Goals in selection order
- backbone goals add "title": Add a goal
- backbone goals abandon <id>: Abandon a goal and withdraw its queued actions
- backbone goals reset <id>: Return a goal to zero progress
"""

import json

import click
from rich.table import Table

from backbone.cli.helpers import console, fail, load_controller, resolve_id
from backbone.core.errors import BackboneError
from backbone.goals.models import Goal, GoalCategory, GoalStatus

_STATUS_ICON = {
    GoalStatus.PENDING: "□",
    GoalStatus.ACTIVE: "⏳",
    GoalStatus.COMPLETED: "✓",
    GoalStatus.ABANDONED: "✗",
}


@click.group()
def goals() -> None:
    """Manage the goals Backbone works toward.

    \b
    Examples:
        backbone goals list
        backbone goals add "Run a 10k" --priority 7 --category health
        backbone goals abandon goal_1739
    """


@goals.command("list")
@click.option("--all", "show_all", is_flag=True, help="Include completed and abandoned goals")
@click.option("--json", "json_output", is_flag=True, help="Machine-readable output")
@click.pass_context
def list_goals(ctx, show_all: bool, json_output: bool) -> None:
    """List goals, highest priority first."""
    controller = load_controller(ctx)
    items = sorted(
        controller.goal_manager.goals,
        key=lambda g: (g.is_terminal, -g.priority, g.created_at.timestamp() if g.created_at else 0),
    )
    if not show_all:
        items = [g for g in items if not g.is_terminal]

    if json_output:
        click.echo(json.dumps([g.to_dict() for g in items], indent=2))
        return

    if not items:
        console.print("No goals yet. Add one with `backbone goals add`.")
        return

    table = Table(title="Goals")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Title", style="white")
    table.add_column("Priority", justify="right")
    table.add_column("Category", style="yellow")
    table.add_column("Progress", justify="right", style="green")
    table.add_column("Status", style="magenta")
    for goal in items:
        table.add_row(
            goal.id,
            goal.title,
            str(goal.priority),
            goal.category.value,
            f"{goal.progress:.0%}",
            f"{_STATUS_ICON[goal.status]} {goal.status.value}",
        )
    console.print(table)


@goals.command("add")
@click.argument("title")
@click.option("--priority", "-p", type=click.IntRange(1, 10), default=5, help="1 (low) to 10 (high)")
@click.option(
    "--category", "-c",
    type=click.Choice([c.value for c in GoalCategory]),
    default=GoalCategory.OTHER.value,
)
@click.option("--description", "-d", default="", help="Longer description for the proposer")
@click.option("--activate", is_flag=True, help="Mark the goal active immediately")
@click.pass_context
def add_goal(ctx, title: str, priority: int, category: str, description: str, activate: bool) -> None:
    """Add a goal."""
    controller = load_controller(ctx)
    goal = controller.add_goal(
        Goal(
            title=title,
            priority=priority,
            category=GoalCategory.parse(category),
            description=description,
        ),
        auto_activate=activate,
    )
    console.print(f"[green]✓ Added goal:[/green] {goal.title} [dim]({goal.id})[/dim]")


@goals.command("abandon")
@click.argument("goal_id")
@click.pass_context
def abandon_goal(ctx, goal_id: str) -> None:
    """Abandon a goal; its unstarted actions are withdrawn."""
    controller = load_controller(ctx)
    goal = resolve_id(controller.goal_manager.goals, goal_id, "goal")
    try:
        withdrawn = controller.abandon_goal(goal.id)
    except BackboneError as e:
        fail(str(e))
    console.print(f"[yellow]Abandoned:[/yellow] {goal.title}")
    if withdrawn:
        console.print(f"[dim]{len(withdrawn)} queued actions withdrawn[/dim]")


@goals.command("reset")
@click.argument("goal_id")
@click.pass_context
def reset_goal(ctx, goal_id: str) -> None:
    """Reset a goal's progress to zero."""
    controller = load_controller(ctx)
    goal = resolve_id(controller.goal_manager.goals, goal_id, "goal")
    controller.reset_goal(goal.id)
    console.print(f"[green]✓ Reset progress:[/green] {goal.title}")
