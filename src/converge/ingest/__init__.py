from .models import DeclarationSet, LifecycleOptions, ResourceAddress, ResourceDeclaration
from .declaration_loader import load_declarations, parse_var_overrides

__all__ = [
    "DeclarationSet",
    "LifecycleOptions",
    "ResourceAddress",
    "ResourceDeclaration",
    "load_declarations",
    "parse_var_overrides",
]
