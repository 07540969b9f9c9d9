"""Change set and execution plan models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set
import networkx as nx
from ..graph.values import UNKNOWN, Value
from ..ingest.models import ResourceAddress
from ..providers.base import ReplaceMode


class ChangeKind(str, Enum):
    """Planned action for one resource."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    REPLACE = "REPLACE"
    DELETE = "DELETE"
    NO_OP = "NO_OP"


@dataclass
class Change:
    """
    One planned action.

    ``new_attributes`` are resolved against predicted values and may contain
    UNKNOWN; ``raw_attributes`` keep the unresolved values so the executor can
    resolve them again once dependencies have been applied.
    """
    kind: ChangeKind
    address: ResourceAddress
    old_attributes: Optional[Dict[str, Any]] = None
    new_attributes: Optional[Dict[str, Any]] = None
    raw_attributes: Optional[Dict[str, Value]] = None
    provider_id: Optional[str] = None
    dependencies: List[ResourceAddress] = field(default_factory=list)
    prior_dependencies: List[ResourceAddress] = field(default_factory=list)
    replace_mode: Optional[ReplaceMode] = None
    changed_keys: List[str] = field(default_factory=list)
    ignore_changes: List[str] = field(default_factory=list)
    prevent_destroy: bool = False
    deposed_provider_ids: List[str] = field(default_factory=list)

    @property
    def resource_type(self) -> str:
        return self.address.type

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": str(self.address),
            "kind": self.kind.value,
            "provider_id": self.provider_id,
            "replace_mode": self.replace_mode.value if self.replace_mode else None,
            "changed_keys": list(self.changed_keys),
            "old_attributes": _jsonable(self.old_attributes),
            "new_attributes": _jsonable(self.new_attributes),
            "dependencies": [str(dep) for dep in self.dependencies],
            "deposed_provider_ids": list(self.deposed_provider_ids),
        }


def _jsonable(data: Any) -> Any:
    if data is UNKNOWN:
        return repr(UNKNOWN)
    if isinstance(data, dict):
        return {k: _jsonable(v) for k, v in data.items()}
    if isinstance(data, (list, tuple)):
        return [_jsonable(v) for v in data]
    return data


class Plan:
    """
    Dependency-respecting set of changes for one run.

    ``graph`` has one node per change and an edge ``a -> b`` when change ``a``
    may only start after change ``b`` has reached a terminal outcome.
    """

    def __init__(self, changes: List[Change], graph: nx.DiGraph, max_parallelism: int = 10, destroy: bool = False):
        self._changes: Dict[ResourceAddress, Change] = {change.address: change for change in changes}
        self.graph = graph
        self.max_parallelism = max_parallelism
        self.destroy = destroy

    @property
    def changes(self) -> List[Change]:
        return [self._changes[address] for address in sorted(self._changes)]

    def get(self, address: ResourceAddress) -> Optional[Change]:
        return self._changes.get(address)

    def __len__(self) -> int:
        return len(self._changes)

    def prerequisites(self, address: ResourceAddress) -> Set[ResourceAddress]:
        """Changes that must finish before this one starts."""
        if address not in self.graph:
            return set()
        return set(self.graph.successors(address))

    def dependents(self, address: ResourceAddress) -> Set[ResourceAddress]:
        """Changes that transitively wait on this one."""
        if address not in self.graph:
            return set()
        return set(nx.ancestors(self.graph, address))

    def stages(self) -> List[List[ResourceAddress]]:
        """Groups of changes that may run concurrently, in execution order."""
        return [sorted(generation) for generation in nx.topological_generations(self.graph.reverse(copy=False))]

    def summary(self) -> Dict[str, int]:
        counts = {kind.value: 0 for kind in ChangeKind}
        for change in self._changes.values():
            counts[change.kind.value] += 1
        return counts

    def is_empty(self) -> bool:
        """True when every change is a no-op."""
        return all(change.kind == ChangeKind.NO_OP for change in self._changes.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "destroy": self.destroy,
            "summary": self.summary(),
            "stages": [[str(address) for address in stage] for stage in self.stages()],
            "changes": [change.to_dict() for change in self.changes],
        }
