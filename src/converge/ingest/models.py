"""Pydantic models for resource declarations."""

from typing import Any, Dict, List, NamedTuple, Optional, Union
from pydantic import BaseModel, Field

NAME_PATTERN = r"^[a-zA-Z_][a-zA-Z0-9_-]*$"


class ResourceAddress(NamedTuple):
    """Resource identity: (type, logical name)."""
    type: str
    name: str

    def __str__(self) -> str:
        return f"{self.type}.{self.name}"

    @classmethod
    def parse(cls, address: str) -> "ResourceAddress":
        """Parse a ``type.name`` address string."""
        parts = address.split(".")
        if len(parts) != 2 or not all(parts):
            raise ValueError(f"Invalid resource address '{address}', expected 'type.name'")
        return cls(parts[0], parts[1])


class LifecycleOptions(BaseModel):
    """Per-resource lifecycle controls."""
    prevent_destroy: bool = Field(default=False, description="Refuse any plan that deletes or replaces this resource")
    ignore_changes: List[str] = Field(default_factory=list, description="Top-level attributes excluded from diffing")
    create_before_destroy: Optional[bool] = Field(default=None, description="Override provider replacement ordering")

    class Config:
        extra = "forbid"


class ResourceDeclaration(BaseModel):
    """One declared resource: type, logical name, attributes and gates."""
    type: str = Field(..., pattern=NAME_PATTERN, description="Resource type handled by a provider")
    name: str = Field(..., pattern=NAME_PATTERN, description="Logical name, unique per type")
    attributes: Dict[str, Any] = Field(default_factory=dict, description="Literal values or ${...} references")
    count: Optional[Union[bool, int, str]] = Field(default=None, description="Presence gate: bool, 0/1 or ${var.x}")
    enabled: Optional[Union[bool, str]] = Field(default=None, description="Presence gate: bool or ${var.x}")
    depends_on: List[str] = Field(default_factory=list, description="Explicit 'type.name' dependencies")
    lifecycle: LifecycleOptions = Field(default_factory=LifecycleOptions)

    class Config:
        extra = "forbid"

    @property
    def address(self) -> ResourceAddress:
        return ResourceAddress(self.type, self.name)


class DeclarationSet(BaseModel):
    """A complete, coherent set of declarations for one reconciliation run."""
    variables: Dict[str, Any] = Field(default_factory=dict, description="Variable name -> literal value")
    resources: List[ResourceDeclaration] = Field(default_factory=list)

    class Config:
        extra = "forbid"
