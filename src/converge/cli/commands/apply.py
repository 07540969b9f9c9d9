"""Apply and destroy commands - execute a plan against providers and state."""

import json as json_module
import sys
import uuid
from pathlib import Path
import click
from ...presentation.human_formatter import format_plan, format_report
from ...report.artifact import generate_artifacts
from ...utils.errors import ConvergeError
from ...utils.logging import get_logger
from ..utils import (
    EXIT_FAILED,
    build_context,
    cancel_on_interrupt,
    declaration_options,
    echo,
    exit_code_for,
    format_error,
    read_declarations,
)

logger = get_logger("cli.apply")


def _run(files, var_pairs, state_dir, config_path, parallelism, auto_approve, refresh, report_dir,
         as_json, destroy):
    """Plan, confirm and execute while holding the state lock for the whole run."""
    try:
        declarations = read_declarations(files, var_pairs)
        context = build_context(config_path, state_dir, parallelism)
        run_id = uuid.uuid4().hex

        with context.store.locked(run_id):
            plan = context.reconciler.plan(declarations, destroy=destroy, refresh=refresh)
            if not as_json:
                echo(format_plan(plan))

            if plan.is_empty():
                if as_json:
                    click.echo(json_module.dumps({"run_id": run_id, "plan": plan.to_dict(), "report": None},
                                                 indent=2, sort_keys=True, default=str))
                return

            if not auto_approve:
                verb = "destroy" if destroy else "apply"
                if not click.confirm(f"Do you want to {verb} these changes?", err=True):
                    click.echo("Cancelled. No changes were made.", err=True)
                    return

            with cancel_on_interrupt() as token:
                result = context.reconciler.apply_plan(plan, cancel_token=token, run_id=run_id, locked=True)

        if as_json:
            click.echo(json_module.dumps(
                {"run_id": run_id, "plan": plan.to_dict(), "report": result.report.to_dict()},
                indent=2, sort_keys=True, default=str,
            ))
        else:
            echo("")
            echo(format_report(result.report))

        if report_dir:
            generate_artifacts(plan, Path(report_dir), report=result.report, run_id=run_id)

        if not result.success:
            sys.exit(EXIT_FAILED)

    except ConvergeError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(exit_code_for(e))
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        click.echo(format_error(f"Apply failed: {e}"), err=True)
        sys.exit(EXIT_FAILED)


def _apply_options(func):
    options = [
        click.option('--parallelism', type=click.IntRange(min=1), help='Maximum concurrent provider calls'),
        click.option('--auto-approve', is_flag=True, help='Skip the interactive confirmation'),
        click.option('--refresh/--no-refresh', default=False, help='Re-read recorded resources first'),
        click.option('--report-dir', type=click.Path(), help='Write plan, report and metadata JSON here'),
        click.option('--json', 'as_json', is_flag=True, help='Output plan and report as JSON'),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.command()
@declaration_options
@_apply_options
def apply(files, var_pairs, state_dir, config_path, parallelism, auto_approve, refresh, report_dir, as_json):
    """
    Apply the changes needed to match the declarations.

    Exit code is 0 when every change succeeded, 1 when any change failed
    or was skipped, 2 when the declarations are invalid or the state is
    locked by another run.
    """
    _run(files, var_pairs, state_dir, config_path, parallelism, auto_approve, refresh, report_dir,
         as_json, destroy=False)


@click.command()
@declaration_options
@_apply_options
def destroy(files, var_pairs, state_dir, config_path, parallelism, auto_approve, refresh, report_dir, as_json):
    """Delete every recorded resource, dependents first."""
    _run(files, var_pairs, state_dir, config_path, parallelism, auto_approve, refresh, report_dir,
         as_json, destroy=True)
