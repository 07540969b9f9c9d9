"""Order a change set into a dependency-respecting execution plan."""

from typing import Dict, List
import networkx as nx
from ..ingest.models import ResourceAddress
from ..utils.errors import CycleError
from ..utils.logging import get_logger
from .models import Change, ChangeKind, Plan

logger = get_logger("planning.planner")

DEFAULT_MAX_PARALLELISM = 10

_APPLYING = (ChangeKind.CREATE, ChangeKind.UPDATE, ChangeKind.REPLACE)


def build_plan(changes: List[Change], max_parallelism: int = DEFAULT_MAX_PARALLELISM, destroy: bool = False) -> Plan:
    """
    Build the execution DAG for a change set.

    Creates, updates and replacements wait for the changes of the resources
    they depend on. Deletions run in reverse: a resource is deleted only after
    every resource that depended on it has been deleted, updated or replaced.
    A replacement is one unit; its internal order is its replace mode.

    Args:
        changes: Output of the differ
        max_parallelism: Upper bound on concurrently running changes
        destroy: Whether this plan tears everything down

    Returns:
        Plan

    Raises:
        CycleError: If the ordering constraints are cyclic
    """
    by_address: Dict[ResourceAddress, Change] = {change.address: change for change in changes}
    graph = nx.DiGraph()
    graph.add_nodes_from(by_address)

    for change in changes:
        if change.kind in _APPLYING:
            for dependency in change.dependencies:
                dependency_change = by_address.get(dependency)
                if dependency_change is not None and dependency_change.kind in _APPLYING:
                    graph.add_edge(change.address, dependency)

        for prior in change.prior_dependencies:
            prior_change = by_address.get(prior)
            if prior_change is None:
                continue
            if prior_change.kind == ChangeKind.DELETE and change.kind in (ChangeKind.DELETE, ChangeKind.UPDATE, ChangeKind.REPLACE):
                graph.add_edge(prior, change.address)
            elif prior_change.kind == ChangeKind.REPLACE and change.kind == ChangeKind.DELETE:
                graph.add_edge(prior, change.address)

    try:
        cycle = nx.find_cycle(graph)
    except nx.NetworkXNoCycle:
        cycle = None
    if cycle:
        raise CycleError({edge[0] for edge in cycle} | {edge[1] for edge in cycle},
                         "Execution plan contains a cycle between: "
                         + ", ".join(sorted(str(edge[0]) for edge in cycle)))

    plan = Plan(changes, graph, max_parallelism=max_parallelism, destroy=destroy)
    logger.info(
        f"Planned {len(plan)} changes in {len(plan.stages())} stages "
        f"(max parallelism {max_parallelism})"
    )
    return plan
