"""State commands - inspect recorded resources."""

import json
import sys
import click
from ...ingest.models import ResourceAddress
from ...presentation.human_formatter import format_record, format_state
from ...utils.errors import ConvergeError
from ..utils import EXIT_FAILED, EXIT_INVALID, build_context, echo, exit_code_for, format_error


@click.group()
def state():
    """Inspect the state store."""
    pass


@state.command('list')
@click.option('--state-dir', type=click.Path(), help='State directory (overrides config)')
@click.option('--config', 'config_path', type=click.Path(), help='Path to config YAML file')
def list_command(state_dir, config_path):
    """List every recorded resource and its provider id."""
    try:
        context = build_context(config_path, state_dir)
        echo(format_state(context.store.load()))
    except ConvergeError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(exit_code_for(e))


@state.command('show')
@click.argument('address')
@click.option('--state-dir', type=click.Path(), help='State directory (overrides config)')
@click.option('--config', 'config_path', type=click.Path(), help='Path to config YAML file')
@click.option('--json', 'as_json', is_flag=True, help='Output the record as JSON')
def show(address, state_dir, config_path, as_json):
    """Show one recorded resource, e.g. `converge state show bucket.logs`."""
    try:
        parsed = ResourceAddress.parse(address)
    except ValueError as e:
        click.echo(format_error(str(e), "Addresses look like <type>.<name>"), err=True)
        sys.exit(EXIT_INVALID)

    try:
        context = build_context(config_path, state_dir)
        record = context.store.get(parsed)
    except ConvergeError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(exit_code_for(e))

    if record is None:
        click.echo(format_error(f"No state recorded for {parsed}"), err=True)
        sys.exit(EXIT_FAILED)

    if as_json:
        click.echo(json.dumps(record.model_dump(mode="json"), indent=2, sort_keys=True))
    else:
        echo(format_record(record))
