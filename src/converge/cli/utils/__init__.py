"""CLI utilities package."""

import signal
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional, Tuple
import click
from ...config import load_settings
from ...config.settings import Settings
from ...engine import Reconciler
from ...execution.cancellation import CancellationToken
from ...ingest.declaration_loader import load_declarations, parse_var_overrides
from ...ingest.models import DeclarationSet
from ...providers.registry import load_providers
from ...state.store import FileStateStore
from ...utils.errors import ConfigError, CycleError, DeclarationLoadError, LockContentionError, ValidationError
from ...utils.logging import get_logger
from .file_resolver import resolve_file_path, resolve_file_paths

logger = get_logger("cli.utils")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID = 2

DEFAULT_DECLARATION_FILE = "main.yaml"


@dataclass
class CommandContext:
    """Everything a command needs to plan or apply."""
    settings: Settings
    store: FileStateStore
    reconciler: Reconciler


def format_error(message: str, suggestion: Optional[str] = None) -> str:
    """
    Format error message with optional suggestion.

    Args:
        message: Error message
        suggestion: Optional suggestion or help text

    Returns:
        Formatted error string
    """
    error = f"❌ Error: {message}"
    if suggestion:
        error += f"\n💡 Tip: {suggestion}"
    return error


def exit_code_for(error: Exception) -> int:
    """Map an error to the CLI exit code: 2 when nothing was attempted, else 1."""
    if isinstance(error, (ValidationError, CycleError, ConfigError, LockContentionError)):
        return EXIT_INVALID
    return EXIT_FAILED


def echo(text: str, err: bool = False) -> None:
    """Echo text, falling back to ASCII on terminals that cannot encode it."""
    try:
        click.echo(text, err=err)
    except UnicodeEncodeError:
        click.echo(text.encode('ascii', errors='replace').decode('ascii'), err=err)


def declaration_options(func):
    """Options shared by every command that reads declarations and state."""
    options = [
        click.option('--file', '-f', 'files', multiple=True, type=click.Path(),
                     help=f'Declaration file (YAML or JSON); repeatable. Default: {DEFAULT_DECLARATION_FILE}'),
        click.option('--var', 'var_pairs', multiple=True, help='Set a variable: --var name=value (repeatable)'),
        click.option('--state-dir', type=click.Path(), help='State directory (overrides config)'),
        click.option('--config', 'config_path', type=click.Path(), help='Path to config YAML file'),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def build_context(config_path: Optional[str] = None, state_dir: Optional[str] = None,
                  max_parallelism: Optional[int] = None) -> CommandContext:
    """Load settings, providers and the state store."""
    settings = load_settings(config_path, overrides={"state_dir": state_dir, "max_parallelism": max_parallelism})
    store = FileStateStore(settings.state_dir)
    reconciler = Reconciler(load_providers(settings), store, settings)
    return CommandContext(settings=settings, store=store, reconciler=reconciler)


def read_declarations(files: Tuple[str, ...], var_pairs: Tuple[str, ...]) -> DeclarationSet:
    """Resolve declaration files and load them with --var overrides."""
    try:
        paths = resolve_file_paths(files or (DEFAULT_DECLARATION_FILE,))
    except FileNotFoundError as e:
        raise DeclarationLoadError(str(e))
    return load_declarations([str(path) for path in paths], parse_var_overrides(var_pairs))


@contextmanager
def cancel_on_interrupt() -> Iterator[CancellationToken]:
    """Yield a token that is cancelled on Ctrl-C; in-flight changes still finish."""
    token = CancellationToken()

    def handler(signum, frame):
        click.echo("\nInterrupt received: waiting for in-flight changes, dispatching no more.", err=True)
        token.cancel("interrupted")

    installed = False
    previous = None
    try:
        previous = signal.signal(signal.SIGINT, handler)
        installed = True
    except ValueError:
        logger.debug("Not in the main thread; Ctrl-C will not cancel the run gracefully")
    try:
        yield token
    finally:
        if installed:
            signal.signal(signal.SIGINT, previous if previous is not None else signal.SIG_DFL)


__all__ = [
    "EXIT_OK",
    "EXIT_FAILED",
    "EXIT_INVALID",
    "CommandContext",
    "build_context",
    "cancel_on_interrupt",
    "declaration_options",
    "echo",
    "exit_code_for",
    "format_error",
    "read_declarations",
    "resolve_file_path",
]
