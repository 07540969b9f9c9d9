"""In-memory provider used for tests and dry runs."""

import itertools
import threading
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
from ..utils.errors import ProviderError, ResourceNotFound
from .base import Attributes, Provider


@dataclass
class ProviderCall:
    operation: str
    resource_type: str
    provider_id: Optional[str]
    started_at: float
    finished_at: Optional[float] = None


@dataclass
class _ScriptedFailure:
    remaining: int
    retryable: bool
    message: str


class InMemoryProvider(Provider):
    """
    Thread-safe provider keeping objects in a dictionary.

    Records every call with monotonic timestamps, and can be scripted to fail
    or to stall for a given operation and resource type.
    """

    def __init__(self, delay_seconds: Optional[Dict[str, float]] = None, **kwargs):
        super().__init__(**kwargs)
        self.objects: Dict[str, Tuple[str, Attributes]] = {}
        self.calls: List[ProviderCall] = []
        self._delays = dict(delay_seconds or {})
        self._failures: Dict[Tuple[str, str], _ScriptedFailure] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def fail(self, operation: str, resource_type: str, times: int = 1, retryable: bool = False,
             message: str = "scripted failure") -> None:
        """Make the next ``times`` calls of ``operation`` on ``resource_type`` fail (-1: always)."""
        self._failures[(operation, resource_type)] = _ScriptedFailure(times, retryable, message)

    def set_delay(self, resource_type: str, seconds: float) -> None:
        self._delays[resource_type] = seconds

    def calls_for(self, operation: Optional[str] = None, resource_type: Optional[str] = None) -> List[ProviderCall]:
        with self._lock:
            return [
                call for call in self.calls
                if (operation is None or call.operation == operation)
                and (resource_type is None or call.resource_type == resource_type)
            ]

    def create(self, resource_type: str, attrs: Attributes) -> Tuple[str, Attributes]:
        call = self._begin("create", resource_type, None)
        provider_id = f"{resource_type}-{next(self._ids)}"
        observed = dict(attrs)
        observed["id"] = provider_id
        observed["arn"] = f"arn:memory:{resource_type}:{provider_id}"
        with self._lock:
            self.objects[provider_id] = (resource_type, observed)
        call.provider_id = provider_id
        self._finish(call)
        return provider_id, dict(observed)

    def read(self, resource_type: str, provider_id: str) -> Attributes:
        call = self._begin("read", resource_type, provider_id)
        with self._lock:
            entry = self.objects.get(provider_id)
        self._finish(call)
        if entry is None:
            raise ResourceNotFound(f"{resource_type} {provider_id} does not exist")
        return dict(entry[1])

    def update(self, resource_type: str, provider_id: str, old_attrs: Attributes, new_attrs: Attributes) -> Attributes:
        call = self._begin("update", resource_type, provider_id)
        with self._lock:
            entry = self.objects.get(provider_id)
            if entry is None:
                raise ProviderError(f"Cannot update {resource_type} {provider_id}: object does not exist")
            observed = dict(new_attrs)
            observed["id"] = provider_id
            observed["arn"] = entry[1].get("arn")
            self.objects[provider_id] = (resource_type, observed)
        self._finish(call)
        return dict(observed)

    def delete(self, resource_type: str, provider_id: str) -> None:
        call = self._begin("delete", resource_type, provider_id)
        with self._lock:
            self.objects.pop(provider_id, None)
        self._finish(call)

    def _begin(self, operation: str, resource_type: str, provider_id: Optional[str]) -> ProviderCall:
        call = ProviderCall(operation, resource_type, provider_id, time.monotonic())
        with self._lock:
            self.calls.append(call)
            failure = self._failures.get((operation, resource_type))
            if failure is not None and failure.remaining != 0:
                failure.remaining -= 1
                call.finished_at = time.monotonic()
                raise ProviderError(failure.message, retryable=failure.retryable)
        delay = self._delays.get(resource_type)
        if delay:
            time.sleep(delay)
        return call

    def _finish(self, call: ProviderCall) -> None:
        call.finished_at = time.monotonic()
