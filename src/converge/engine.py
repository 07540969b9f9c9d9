"""Reconciler facade: build graph, diff, plan and execute under the state lock."""

import uuid
from dataclasses import dataclass
from typing import Optional
from .config.settings import Settings
from .execution.cancellation import CancellationToken
from .execution.executor import Executor
from .execution.models import RunReport
from .graph.resource_graph import ResourceGraph, build_graph
from .ingest.models import DeclarationSet
from .planning.differ import diff
from .planning.models import Plan
from .planning.planner import build_plan
from .providers.registry import ProviderRegistry
from .state.store import StateStore
from .utils.logging import get_logger

logger = get_logger("engine")


@dataclass
class ApplyResult:
    """Plan and report of one apply run."""
    run_id: str
    plan: Plan
    report: RunReport

    @property
    def success(self) -> bool:
        return self.report.success


class Reconciler:
    """Reconciles declarations against a state store through provider adapters."""

    def __init__(self, registry: ProviderRegistry, store: StateStore, settings: Optional[Settings] = None):
        self.registry = registry
        self.store = store
        self.settings = settings or Settings()

    def plan(self, declarations: DeclarationSet, destroy: bool = False, refresh: bool = False) -> Plan:
        """
        Build a plan without mutating anything.

        Args:
            declarations: Desired resources
            destroy: Plan against an empty desired graph
            refresh: Re-read recorded resources through their providers first

        Raises:
            ValidationError, CycleError: Declarations are invalid
        """
        graph = self._graph(declarations, destroy)
        changes = diff(graph, self.store.load(), self.registry, refresh=refresh)
        return build_plan(changes, max_parallelism=self.settings.execution.max_parallelism, destroy=destroy)

    def apply(self, declarations: DeclarationSet, destroy: bool = False, refresh: bool = False,
              cancel_token: Optional[CancellationToken] = None, run_id: Optional[str] = None) -> ApplyResult:
        """
        Plan and execute while holding the state lock.

        Graph, diff and planning errors abort before any mutation.

        Raises:
            LockContentionError: Another run holds the state lock
            ValidationError, CycleError: Declarations are invalid
        """
        run_id = run_id or uuid.uuid4().hex
        with self.store.locked(run_id):
            plan = self.plan(declarations, destroy=destroy, refresh=refresh)
            return self.apply_plan(plan, cancel_token=cancel_token, run_id=run_id, locked=True)

    def apply_plan(self, plan: Plan, cancel_token: Optional[CancellationToken] = None,
                   run_id: Optional[str] = None, locked: bool = False) -> ApplyResult:
        """Execute an already computed plan, taking the state lock unless the caller holds it."""
        run_id = run_id or uuid.uuid4().hex
        executor = Executor(self.registry, self.store, self.settings.execution)

        if plan.is_empty():
            logger.info("No changes. Infrastructure matches the declarations.")

        if locked:
            report = executor.execute(plan, cancel_token)
        else:
            with self.store.locked(run_id):
                report = executor.execute(plan, cancel_token)

        logger.info(f"Run {run_id} complete: {report.counts()}")
        return ApplyResult(run_id=run_id, plan=plan, report=report)

    def _graph(self, declarations: DeclarationSet, destroy: bool) -> ResourceGraph:
        graph = build_graph(declarations)
        if destroy:
            return ResourceGraph()
        return graph
