"""Backbone command line entry point."""

import click

from backbone import __version__
from backbone.cli.actions_cmd import actions
from backbone.cli.config_cmd import config
from backbone.cli.engine_cmd import observe, run, status
from backbone.cli.goals_cmd import goals
from backbone.cli.helpers import load_dotenv
from backbone.core.logging import configure_logging


@click.group()
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None,
              help="Config file (default: .backbone/config.yaml)")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
@click.option("--log-dir", type=click.Path(file_okay=False), default=None,
              help="Also write session logs to this directory")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx, config_path: str | None, verbose: bool, log_dir: str | None) -> None:
    """Backbone — a personal autonomous-work engine.

    \b
    Backbone picks your highest-priority goal, asks a model for small
    actions that move it forward, runs the safe ones on its own and queues
    the rest for your approval.

    \b
    Typical session:

        backbone goals add "Build an emergency fund" --priority 8 --category finance
        backbone run --once
        backbone actions pending
        backbone actions approve <id>
        backbone run
    """
    load_dotenv()
    configure_logging(debug=verbose, log_dir=log_dir)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


main.add_command(run)
main.add_command(status)
main.add_command(observe)
main.add_command(goals)
main.add_command(actions)
main.add_command(config)
