"""Build the directed resource graph from declarations."""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple
import networkx as nx
from ..ingest.models import DeclarationSet, LifecycleOptions, ResourceAddress, ResourceDeclaration
from ..utils.errors import CycleError, ValidationError
from ..utils.logging import get_logger
from .values import Value, parse_attributes, references, substitute_variables

logger = get_logger("graph.resource_graph")

REFERENCE_EDGE = "reference"
DEPENDS_ON_EDGE = "depends_on"


@dataclass
class GraphResource:
    """A present resource with parsed attribute values."""
    declaration: ResourceDeclaration
    attributes: Dict[str, Value] = field(default_factory=dict)

    @property
    def address(self) -> ResourceAddress:
        return self.declaration.address

    @property
    def type(self) -> str:
        return self.declaration.type

    @property
    def lifecycle(self) -> LifecycleOptions:
        return self.declaration.lifecycle


class ResourceGraph:
    """Directed dependency graph: nodes=resources, edges=dependent -> dependency."""

    def __init__(self):
        self.graph = nx.DiGraph()
        self._resources: Dict[ResourceAddress, GraphResource] = {}

    def add_resource(self, resource: GraphResource) -> None:
        """Add a resource node."""
        self.graph.add_node(resource.address)
        self._resources[resource.address] = resource

    def add_dependency(self, dependent: ResourceAddress, dependency: ResourceAddress,
                       kind: str, path: Optional[Tuple[str, ...]] = None) -> None:
        """Record that ``dependent`` needs ``dependency`` applied first."""
        if not self.graph.has_edge(dependent, dependency):
            self.graph.add_edge(dependent, dependency, reasons=[])
        reasons = self.graph.edges[dependent, dependency]["reasons"]
        reasons.append((kind, ".".join(path) if path else None))
        logger.debug(f"Added {kind} edge: {dependent} -> {dependency}")

    @property
    def resources(self) -> Dict[ResourceAddress, GraphResource]:
        return dict(self._resources)

    def addresses(self) -> List[ResourceAddress]:
        return sorted(self._resources)

    def get_resource(self, address: ResourceAddress) -> Optional[GraphResource]:
        return self._resources.get(address)

    def __contains__(self, address: ResourceAddress) -> bool:
        return address in self._resources

    def __len__(self) -> int:
        return len(self._resources)

    def dependencies(self, address: ResourceAddress) -> Set[ResourceAddress]:
        """Direct dependencies of a resource."""
        if address not in self.graph:
            return set()
        return set(self.graph.successors(address))

    def dependents(self, address: ResourceAddress) -> Set[ResourceAddress]:
        """Direct dependents of a resource."""
        if address not in self.graph:
            return set()
        return set(self.graph.predecessors(address))

    def edge_kinds(self, dependent: ResourceAddress, dependency: ResourceAddress) -> Set[str]:
        """Kinds of declarations that produced an edge (empty if no edge)."""
        if not self.graph.has_edge(dependent, dependency):
            return set()
        return {kind for kind, _ in self.graph.edges[dependent, dependency]["reasons"]}

    def topological_order(self) -> List[ResourceAddress]:
        """Addresses ordered dependencies first, ties broken by address."""
        return list(nx.lexicographical_topological_sort(self.graph.reverse(copy=False), key=str))


def build_graph(declarations: DeclarationSet) -> ResourceGraph:
    """
    Build a validated resource graph from a declaration set.

    Args:
        declarations: Declared resources and variables

    Returns:
        ResourceGraph containing only resources whose gates are open

    Raises:
        ValidationError: On duplicates, bad gates, malformed or dangling references
        CycleError: If references form a cycle
    """
    declared = _index_declarations(declarations.resources)
    present = {
        address: declaration
        for address, declaration in declared.items()
        if _is_present(declaration, declarations.variables)
    }

    graph = ResourceGraph()
    for address in sorted(present):
        declaration = present[address]
        try:
            attributes = parse_attributes(declaration.attributes, declarations.variables)
        except ValidationError as e:
            raise ValidationError(f"{address}: {e}")
        graph.add_resource(GraphResource(declaration=declaration, attributes=attributes))

    for address in graph.addresses():
        resource = graph.get_resource(address)
        for value in resource.attributes.values():
            for reference in references(value):
                _check_target(address, reference.address, declared, present)
                graph.add_dependency(address, reference.address, REFERENCE_EDGE, reference.path)

        for raw in resource.declaration.depends_on:
            try:
                target = ResourceAddress.parse(raw)
            except ValueError as e:
                raise ValidationError(f"{address}: {e}")
            _check_target(address, target, declared, present)
            graph.add_dependency(address, target, DEPENDS_ON_EDGE)

    _check_cycles(graph)

    skipped = len(declared) - len(present)
    logger.info(
        f"Built resource graph with {graph.graph.number_of_nodes()} nodes and "
        f"{graph.graph.number_of_edges()} edges ({skipped} gated off)"
    )
    return graph


def _index_declarations(resources: Iterable[ResourceDeclaration]) -> Dict[ResourceAddress, ResourceDeclaration]:
    index: Dict[ResourceAddress, ResourceDeclaration] = {}
    for declaration in resources:
        if declaration.address in index:
            raise ValidationError(f"Duplicate resource declaration: {declaration.address}")
        index[declaration.address] = declaration
    return index


def _is_present(declaration: ResourceDeclaration, variables: Dict) -> bool:
    """Evaluate count/enabled gates to a boolean."""
    present = True

    if declaration.count is not None:
        count = substitute_variables(declaration.count, variables) if isinstance(declaration.count, str) else declaration.count
        if isinstance(count, bool):
            present = present and count
        elif isinstance(count, int) and count in (0, 1):
            present = present and count == 1
        else:
            raise ValidationError(
                f"{declaration.address}: count must evaluate to a boolean or 0/1, got {count!r}"
            )

    if declaration.enabled is not None:
        enabled = substitute_variables(declaration.enabled, variables) if isinstance(declaration.enabled, str) else declaration.enabled
        if not isinstance(enabled, bool):
            raise ValidationError(
                f"{declaration.address}: enabled must evaluate to a boolean, got {enabled!r}"
            )
        present = present and enabled

    if not present:
        logger.debug(f"Resource {declaration.address} gated off")
    return present


def _check_target(source: ResourceAddress, target: ResourceAddress,
                  declared: Dict[ResourceAddress, ResourceDeclaration],
                  present: Dict[ResourceAddress, ResourceDeclaration]) -> None:
    if target not in declared:
        raise ValidationError(f"{source} references undeclared resource {target}")
    if target not in present:
        raise ValidationError(f"{source} references {target}, which is disabled by its count/enabled gate")


def _check_cycles(graph: ResourceGraph) -> None:
    try:
        cycle = nx.find_cycle(graph.graph)
    except nx.NetworkXNoCycle:
        return
    members = {edge[0] for edge in cycle} | {edge[1] for edge in cycle}
    raise CycleError(members)
