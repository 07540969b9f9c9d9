"""Custom exception classes for Converge."""

from typing import Iterable, List, Optional


class ConvergeError(Exception):
    """Base exception for all Converge errors."""
    pass


class ValidationError(ConvergeError):
    """Raised when declarations are malformed or reference unknown resources."""
    pass


class DeclarationLoadError(ValidationError):
    """Raised when declaration files cannot be loaded or parsed."""
    pass


class UnknownResourceTypeError(ValidationError):
    """Raised when no provider is registered for a resource type."""
    pass


class ReferenceResolutionError(ValidationError):
    """Raised when a reference path cannot be resolved against known attributes."""
    pass


class CycleError(ConvergeError):
    """Raised when resource references form a cycle."""

    def __init__(self, members: Iterable[str], message: Optional[str] = None):
        self.members: List[str] = sorted(set(str(m) for m in members))
        if message is None:
            message = f"Dependency cycle detected between: {', '.join(self.members)}"
        super().__init__(message)


class ProviderError(ConvergeError):
    """Raised by provider adapters when a remote operation fails."""

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class ResourceNotFound(ConvergeError):
    """Raised by provider adapters when a remote object no longer exists."""
    pass


class StateError(ConvergeError):
    """Raised when the state store cannot be read or written."""
    pass


class LockContentionError(StateError):
    """Raised when another run already holds the state lock."""

    def __init__(self, message: str, holder: Optional[dict] = None):
        super().__init__(message)
        self.holder = holder or {}


class ConfigError(ConvergeError):
    """Raised when configuration is invalid or missing."""
    pass
