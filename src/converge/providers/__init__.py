from .base import DiffStrategy, Provider, ReplaceMode, changed_attributes
from .local import LocalProvider
from .memory import InMemoryProvider
from .registry import ProviderRegistry, load_providers

__all__ = [
    "DiffStrategy",
    "Provider",
    "ReplaceMode",
    "changed_attributes",
    "LocalProvider",
    "InMemoryProvider",
    "ProviderRegistry",
    "load_providers",
]
