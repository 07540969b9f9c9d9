"""Plan command - show what an apply would change."""

import json as json_module
import sys
from pathlib import Path
import click
from ...presentation.human_formatter import format_plan
from ...report.artifact import generate_artifacts
from ...utils.errors import ConvergeError
from ...utils.logging import get_logger
from ..utils import EXIT_FAILED, build_context, declaration_options, echo, exit_code_for, format_error, read_declarations

logger = get_logger("cli.plan")


@click.command()
@declaration_options
@click.option('--json', 'as_json', is_flag=True, help='Output the plan as JSON instead of human-readable')
@click.option('--quiet', is_flag=True, help='Suppress progress messages')
@click.option('--refresh/--no-refresh', default=False, help='Re-read recorded resources from their providers first')
@click.option('--destroy', is_flag=True, help='Plan the removal of every recorded resource')
@click.option('--show-unchanged', is_flag=True, help='Also list resources that need no change')
@click.option('--report-dir', type=click.Path(), help='Write plan.json and metadata.json to this directory')
def plan(files, var_pairs, state_dir, config_path, as_json, quiet, refresh, destroy, show_unchanged, report_dir):
    """
    Compute and show the changes needed to match the declarations.

    Nothing is mutated: providers are only read when --refresh is given,
    and the state lock is not taken.
    """
    try:
        declarations = read_declarations(files, var_pairs)
        if not quiet:
            click.echo(f"✨ Loaded {len(declarations.resources)} declaration(s)", err=True)

        context = build_context(config_path, state_dir)
        result = context.reconciler.plan(declarations, destroy=destroy, refresh=refresh)

        if as_json:
            click.echo(json_module.dumps(result.to_dict(), indent=2, sort_keys=True, default=str))
        else:
            echo(format_plan(result, show_unchanged=show_unchanged))

        if report_dir:
            generate_artifacts(result, Path(report_dir))
            if not quiet:
                click.echo(f"Artifacts written to: {report_dir}", err=True)

    except ConvergeError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(exit_code_for(e))
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        click.echo(format_error(f"Plan failed: {e}"), err=True)
        sys.exit(EXIT_FAILED)
