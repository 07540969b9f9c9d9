"""Main CLI entry point for Converge."""

import logging
import click
from .commands.apply import apply, destroy
from .commands.force_unlock import force_unlock
from .commands.plan import plan
from .commands.state import state
from .commands.validate import validate
from .commands.version import version
from .. import __version__
from ..utils.logging import get_logger, setup_logging

logger = get_logger("cli.main")


@click.group()
@click.version_option(version=__version__, prog_name="converge", message="%(prog)s version %(version)s")
@click.option('--verbose', '-v', count=True, help='Increase log verbosity (-v info, -vv debug)')
def cli(verbose):
    """Converge - Declarative infrastructure reconciler."""
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose >= 2:
        level = logging.DEBUG
    setup_logging(level=level)


cli.add_command(plan)
cli.add_command(apply)
cli.add_command(destroy)
cli.add_command(validate)
cli.add_command(state)
cli.add_command(force_unlock)
cli.add_command(version)
