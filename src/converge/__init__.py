"""Converge - Declarative infrastructure reconciler."""

from typing import Dict, Any, Iterable, Optional
from .config import load_settings
from .engine import ApplyResult, Reconciler
from .execution.cancellation import CancellationToken
from .ingest.declaration_loader import load_declarations
from .planning.models import Plan
from .providers.registry import load_providers
from .state.store import FileStateStore
from .utils.logging import get_logger
from .utils.errors import ConvergeError

__version__ = "0.1.0"

__all__ = ["plan", "apply", "Reconciler", "ConvergeError", "__version__"]

logger = get_logger("converge")


def plan(paths: Iterable[str], variables: Optional[Dict[str, Any]] = None, config_path: Optional[str] = None,
         destroy: bool = False, refresh: bool = False) -> Plan:
    """Load declarations and config from disk and return the plan for them."""
    return _reconciler(config_path).plan(load_declarations(paths, variables), destroy=destroy, refresh=refresh)


def apply(paths: Iterable[str], variables: Optional[Dict[str, Any]] = None, config_path: Optional[str] = None,
          destroy: bool = False, refresh: bool = False,
          cancel_token: Optional[CancellationToken] = None) -> ApplyResult:
    """Load declarations and config from disk, then plan and apply them."""
    declarations = load_declarations(paths, variables)
    result = _reconciler(config_path).apply(declarations, destroy=destroy, refresh=refresh, cancel_token=cancel_token)
    logger.info(f"Apply complete: {result.report.counts()}")
    return result


def _reconciler(config_path: Optional[str]) -> Reconciler:
    settings = load_settings(config_path)
    return Reconciler(load_providers(settings), FileStateStore(settings.state_dir), settings)
