"""Force-unlock command - remove a stale state lock."""

import sys
import click
from ...utils.errors import ConvergeError
from ..utils import build_context, exit_code_for, format_error


@click.command('force-unlock')
@click.option('--state-dir', type=click.Path(), help='State directory (overrides config)')
@click.option('--config', 'config_path', type=click.Path(), help='Path to config YAML file')
@click.option('--yes', is_flag=True, help='Do not ask for confirmation')
def force_unlock(state_dir, config_path, yes):
    """
    Remove the state lock left behind by a crashed run.

    Only use this when no other run is in progress.
    """
    try:
        context = build_context(config_path, state_dir)
        holder = context.store.lock_holder()
        if holder is None:
            click.echo("State is not locked.")
            return

        click.echo(f"Lock held by run {holder.get('run_id')} (pid {holder.get('pid')} on {holder.get('host')}, "
                   f"since {holder.get('created_at')})")
        if not yes and not click.confirm("Remove this lock?"):
            click.echo("Lock left in place.")
            return

        context.store.force_unlock()
        click.echo("🔓 Lock removed.")
    except ConvergeError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(exit_code_for(e))
