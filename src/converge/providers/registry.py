"""Resource type -> provider registry."""

import fnmatch
import importlib
from typing import Dict, List, Optional, Tuple
from ..utils.errors import ConfigError, UnknownResourceTypeError
from ..utils.logging import get_logger
from .base import Provider

logger = get_logger("providers.registry")

BUILTIN_PROVIDERS = {
    "local": "converge.providers.local:LocalProvider",
    "memory": "converge.providers.memory:InMemoryProvider",
}


class ProviderRegistry:
    """Maps resource types to provider adapters by exact type or glob pattern."""

    def __init__(self):
        self._exact: Dict[str, Provider] = {}
        self._patterns: List[Tuple[str, Provider]] = []

    def register(self, pattern: str, provider: Provider) -> None:
        """Register a provider for an exact type or a glob pattern such as ``aws_*``."""
        if any(ch in pattern for ch in "*?["):
            self._patterns = [(p, prov) for p, prov in self._patterns if p != pattern]
            self._patterns.append((pattern, provider))
            self._patterns.sort(key=lambda item: len(item[0]), reverse=True)
        else:
            self._exact[pattern] = provider
        logger.debug(f"Registered provider {type(provider).__name__} for '{pattern}'")

    def find(self, resource_type: str) -> Optional[Provider]:
        if resource_type in self._exact:
            return self._exact[resource_type]
        for pattern, provider in self._patterns:
            if fnmatch.fnmatchcase(resource_type, pattern):
                return provider
        return None

    def get(self, resource_type: str) -> Provider:
        """
        Get the provider for a resource type.

        Raises:
            UnknownResourceTypeError: If no registration matches
        """
        provider = self.find(resource_type)
        if provider is None:
            raise UnknownResourceTypeError(
                f"No provider registered for resource type '{resource_type}'. "
                "Add an entry under 'providers' in your config."
            )
        return provider

    def __contains__(self, resource_type: str) -> bool:
        return self.find(resource_type) is not None


def load_providers(settings) -> ProviderRegistry:
    """
    Build a registry from the ``providers`` config section.

    Each entry maps a type pattern to a provider ``kind``: a builtin name
    (``local``, ``memory``) or a ``package.module:ClassName`` import path.
    With no entries, every type is handled by the builtin local provider.

    Args:
        settings: Loaded Settings

    Returns:
        ProviderRegistry

    Raises:
        ConfigError: If a provider cannot be imported or constructed
    """
    from ..config.settings import ProviderSpec

    registry = ProviderRegistry()
    specs = settings.providers or {"*": ProviderSpec(kind="local")}
    for pattern, spec in specs.items():
        registry.register(pattern, _instantiate(spec, settings))
    logger.info(f"Loaded {len(specs)} provider registration(s)")
    return registry


def _instantiate(spec, settings) -> Provider:
    options = dict(spec.options)
    if spec.kind == "local":
        local = settings.local_provider
        options.setdefault("remote_dir", settings.remote_dir)
        options.setdefault("immutable", local.immutable)
        options.setdefault("create_before_destroy", local.create_before_destroy)
        options.setdefault("timeout_seconds", local.timeout_seconds)
        options.setdefault("default_timeout_seconds", settings.execution.default_timeout_seconds)

    provider_class = _import_provider_class(BUILTIN_PROVIDERS.get(spec.kind, spec.kind))
    try:
        provider = provider_class(**options)
    except TypeError as e:
        raise ConfigError(f"Invalid options for provider '{spec.kind}': {e}")

    if not isinstance(provider, Provider):
        raise ConfigError(f"Provider '{spec.kind}' does not implement converge.providers.base.Provider")
    return provider


def _import_provider_class(path: str):
    if ":" not in path:
        raise ConfigError(f"Invalid provider kind '{path}', expected a builtin name or 'package.module:ClassName'")
    module_name, class_name = path.split(":", 1)
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"Cannot import provider module '{module_name}': {e}")
    try:
        return getattr(module, class_name)
    except AttributeError:
        raise ConfigError(f"Provider class '{class_name}' not found in '{module_name}'")
