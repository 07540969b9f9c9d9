"""Version command - show Converge version."""

import click
from ... import __version__


@click.command()
def version():
    """Show Converge version."""
    click.echo(f"converge version {__version__}")
