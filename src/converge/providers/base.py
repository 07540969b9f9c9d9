"""Provider adapter interface - remote CRUD for opaque resource types."""

import fnmatch
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple
from ..graph.values import contains_unknown

DEFAULT_TIMEOUT_SECONDS = 1800.0

Attributes = Dict[str, Any]


class DiffStrategy(str, Enum):
    """How a provider reconciles an attribute change."""
    NO_OP = "NO_OP"
    UPDATE_IN_PLACE = "UPDATE_IN_PLACE"
    REPLACE = "REPLACE"


class ReplaceMode(str, Enum):
    """Ordering of the two halves of a replacement."""
    DELETE_THEN_CREATE = "DELETE_THEN_CREATE"
    CREATE_THEN_DELETE = "CREATE_THEN_DELETE"


def changed_attributes(old: Mapping[str, Any], new: Mapping[str, Any]) -> List[str]:
    """Sorted attribute names whose values differ (UNKNOWN always differs)."""
    changed = []
    for key in sorted(set(old) | set(new)):
        if key not in old or key not in new:
            changed.append(key)
        elif contains_unknown(new[key]) or old[key] != new[key]:
            changed.append(key)
    return changed


class Provider(ABC):
    """
    Base class for provider adapters.

    Subclasses implement remote create/read/update/delete. Replacement policy
    (immutable attributes, create-before-destroy) and timeouts are declared per
    resource type, so the reconciler core never hardcodes them.
    """

    def __init__(
        self,
        immutable: Optional[Mapping[str, Iterable[str]]] = None,
        create_before_destroy: Optional[Iterable[str]] = None,
        timeout_seconds: Optional[Mapping[str, float]] = None,
        default_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        """
        Args:
            immutable: Resource type pattern -> attributes that force replacement
            create_before_destroy: Resource type patterns replaced create-first
            timeout_seconds: Resource type pattern -> per-change timeout
            default_timeout_seconds: Timeout for types without an override
        """
        self._immutable = {pattern: set(attrs) for pattern, attrs in (immutable or {}).items()}
        self._create_before_destroy = list(create_before_destroy or [])
        self._timeouts = dict(timeout_seconds or {})
        self._default_timeout = float(default_timeout_seconds)

    @abstractmethod
    def create(self, resource_type: str, attrs: Attributes) -> Tuple[str, Attributes]:
        """Create a remote object; return (provider_id, observed attributes)."""

    @abstractmethod
    def read(self, resource_type: str, provider_id: str) -> Attributes:
        """Return observed attributes; raise ResourceNotFound if gone."""

    @abstractmethod
    def update(self, resource_type: str, provider_id: str, old_attrs: Attributes, new_attrs: Attributes) -> Attributes:
        """Update a remote object in place; return observed attributes."""

    @abstractmethod
    def delete(self, resource_type: str, provider_id: str) -> None:
        """Delete a remote object."""

    def immutable_attributes(self, resource_type: str) -> Set[str]:
        """Attributes whose change forces replacement for this type."""
        immutable: Set[str] = set()
        for pattern, attrs in self._immutable.items():
            if fnmatch.fnmatchcase(resource_type, pattern):
                immutable |= attrs
        return immutable

    def diff_strategy(self, resource_type: str, old_attrs: Attributes, new_attrs: Attributes) -> DiffStrategy:
        """Decide whether a change is a no-op, in-place update or replacement."""
        changed = changed_attributes(old_attrs, new_attrs)
        if not changed:
            return DiffStrategy.NO_OP
        if set(changed) & self.immutable_attributes(resource_type):
            return DiffStrategy.REPLACE
        return DiffStrategy.UPDATE_IN_PLACE

    def replace_mode(self, resource_type: str) -> ReplaceMode:
        if any(fnmatch.fnmatchcase(resource_type, p) for p in self._create_before_destroy):
            return ReplaceMode.CREATE_THEN_DELETE
        return ReplaceMode.DELETE_THEN_CREATE

    def timeout_seconds(self, resource_type: str) -> float:
        for pattern, timeout in self._timeouts.items():
            if fnmatch.fnmatchcase(resource_type, pattern):
                return float(timeout)
        return self._default_timeout
