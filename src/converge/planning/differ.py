"""Compare the desired resource graph against recorded state."""

from typing import Any, Dict, List, Mapping, Optional, Tuple
from ..graph.resource_graph import GraphResource, ResourceGraph
from ..graph.values import UNKNOWN, extract_path, resolve_attributes
from ..ingest.models import ResourceAddress
from ..providers.base import DiffStrategy, ReplaceMode, changed_attributes
from ..providers.registry import ProviderRegistry
from ..state.models import StateRecord
from ..utils.errors import ReferenceResolutionError, ResourceNotFound, ValidationError
from ..utils.logging import get_logger
from .models import Change, ChangeKind

logger = get_logger("planning.differ")


class _Prediction:
    """Attribute values a resource is expected to have once its change is applied."""

    def __init__(self, data: Dict[str, Any], complete: bool):
        self.data = data
        self.complete = complete

    def lookup(self, address: ResourceAddress, path: Tuple[str, ...]) -> Any:
        if self.complete:
            return extract_path(self.data, path, address)
        try:
            return extract_path(self.data, path, address)
        except ReferenceResolutionError:
            return UNKNOWN


def diff(graph: ResourceGraph, state: Mapping[ResourceAddress, StateRecord],
         registry: ProviderRegistry, refresh: bool = False) -> List[Change]:
    """
    Produce one change per address in the union of desired graph and state.

    Args:
        graph: Desired resource graph
        state: Snapshot of the state store
        registry: Providers used for diff strategy, replace mode and refresh
        refresh: Re-read every recorded resource through its provider first

    Returns:
        Changes sorted by address

    Raises:
        ValidationError: Unknown resource type, unresolvable reference or
            a destroy blocked by ``prevent_destroy``
    """
    snapshot = dict(state)
    if refresh:
        snapshot = _refresh(snapshot, registry)

    predictions: Dict[ResourceAddress, _Prediction] = {}
    changes: Dict[ResourceAddress, Change] = {}

    def lookup(address: ResourceAddress, path: Tuple[str, ...]) -> Any:
        return predictions[address].lookup(address, path)

    for address in graph.topological_order():
        resource = graph.get_resource(address)
        try:
            new_attrs = resolve_attributes(resource.attributes, lookup)
        except ReferenceResolutionError as e:
            raise ValidationError(f"{address}: {e}")
        change, prediction = _diff_resource(resource, new_attrs, snapshot.get(address), graph, registry)
        changes[address] = change
        predictions[address] = prediction

    for address, record in snapshot.items():
        if address in graph:
            continue
        registry.get(record.resource_type)
        changes[address] = Change(
            kind=ChangeKind.DELETE,
            address=address,
            old_attributes=dict(record.inputs),
            provider_id=record.provider_id,
            prior_dependencies=record.dependency_addresses(),
            prevent_destroy=record.prevent_destroy,
            deposed_provider_ids=list(record.deposed_provider_ids),
        )

    _check_prevent_destroy(changes.values())

    ordered = [changes[address] for address in sorted(changes)]
    counts = {}
    for change in ordered:
        counts[change.kind.value] = counts.get(change.kind.value, 0) + 1
    logger.info(f"Diff produced {len(ordered)} changes: {counts}")
    return ordered


def _diff_resource(resource: GraphResource, new_attrs: Dict[str, Any], record: Optional[StateRecord],
                   graph: ResourceGraph, registry: ProviderRegistry) -> Tuple[Change, _Prediction]:
    address = resource.address
    provider = registry.get(resource.type)
    lifecycle = resource.lifecycle
    change = Change(
        kind=ChangeKind.CREATE,
        address=address,
        new_attributes=new_attrs,
        raw_attributes=dict(resource.attributes),
        dependencies=sorted(graph.dependencies(address)),
        ignore_changes=list(lifecycle.ignore_changes),
        prevent_destroy=lifecycle.prevent_destroy,
    )

    if record is None:
        change.changed_keys = sorted(new_attrs)
        return change, _Prediction(dict(new_attrs), complete=False)

    old_attrs = dict(record.inputs)
    for key in lifecycle.ignore_changes:
        if key in old_attrs:
            new_attrs[key] = old_attrs[key]

    change.old_attributes = old_attrs
    change.provider_id = record.provider_id
    change.prior_dependencies = record.dependency_addresses()
    change.deposed_provider_ids = list(record.deposed_provider_ids)
    change.changed_keys = changed_attributes(old_attrs, new_attrs)

    if not change.changed_keys:
        strategy = DiffStrategy.NO_OP
    else:
        strategy = provider.diff_strategy(resource.type, old_attrs, new_attrs)

    if strategy == DiffStrategy.NO_OP:
        # Leftover objects from an interrupted create-first replacement still need deleting.
        change.kind = ChangeKind.UPDATE if change.deposed_provider_ids else ChangeKind.NO_OP
        return change, _Prediction(dict(record.attributes), complete=True)

    if strategy == DiffStrategy.UPDATE_IN_PLACE:
        change.kind = ChangeKind.UPDATE
        predicted = dict(record.attributes)
        predicted.update(new_attrs)
        return change, _Prediction(predicted, complete=False)

    change.kind = ChangeKind.REPLACE
    change.replace_mode = _replace_mode(resource, provider)
    return change, _Prediction(dict(new_attrs), complete=False)


def _replace_mode(resource: GraphResource, provider) -> ReplaceMode:
    override = resource.lifecycle.create_before_destroy
    if override is None:
        return provider.replace_mode(resource.type)
    return ReplaceMode.CREATE_THEN_DELETE if override else ReplaceMode.DELETE_THEN_CREATE


def _check_prevent_destroy(changes) -> None:
    blocked = [
        f"{change.address} ({change.kind.value.lower()})"
        for change in changes
        if change.prevent_destroy and change.kind in (ChangeKind.DELETE, ChangeKind.REPLACE)
    ]
    if blocked:
        raise ValidationError(
            f"Plan would destroy resources protected by lifecycle.prevent_destroy: {', '.join(sorted(blocked))}"
        )


def _refresh(snapshot: Dict[ResourceAddress, StateRecord], registry: ProviderRegistry) -> Dict[ResourceAddress, StateRecord]:
    """Re-read recorded resources; drop those that no longer exist remotely."""
    refreshed: Dict[ResourceAddress, StateRecord] = {}
    for address in sorted(snapshot):
        record = snapshot[address]
        provider = registry.get(record.resource_type)
        try:
            observed = provider.read(record.resource_type, record.provider_id)
        except ResourceNotFound:
            logger.warning(f"{address} ({record.provider_id}) no longer exists remotely; it will be recreated if declared")
            continue

        inputs = {key: observed.get(key, value) for key, value in record.inputs.items()}
        drifted = changed_attributes(record.inputs, inputs)
        if drifted:
            logger.info(f"Drift detected on {address}: {', '.join(drifted)}")
        refreshed[address] = record.model_copy(update={"attributes": observed, "inputs": inputs})
    return refreshed
