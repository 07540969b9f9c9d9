"""Validate command - check declarations without reading state."""

import sys
import click
from ...graph.resource_graph import build_graph
from ...utils.errors import ConvergeError
from ...utils.logging import get_logger
from ..utils import EXIT_FAILED, build_context, declaration_options, exit_code_for, format_error, read_declarations

logger = get_logger("cli.validate")


@click.command()
@declaration_options
def validate(files, var_pairs, state_dir, config_path):
    """Check that declarations parse, reference known resources and form no cycle."""
    try:
        declarations = read_declarations(files, var_pairs)
        graph = build_graph(declarations)

        registry = build_context(config_path, state_dir).reconciler.registry
        for resource in graph.resources.values():
            registry.get(resource.type)

        click.echo(f"✅ Declarations are valid: {len(graph)} resource(s), "
                   f"{graph.graph.number_of_edges()} dependency edge(s).")

    except ConvergeError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(exit_code_for(e))
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        click.echo(format_error(f"Validation failed: {e}"), err=True)
        sys.exit(EXIT_FAILED)
