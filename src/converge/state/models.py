"""Pydantic models for persisted state records."""

from datetime import datetime, timezone
from typing import Any, Dict, List
from pydantic import BaseModel, Field
from ..ingest.models import ResourceAddress


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StateRecord(BaseModel):
    """Last-known applied state of one resource."""
    resource_type: str = Field(..., description="Resource type")
    name: str = Field(..., description="Logical name")
    provider_id: str = Field(..., description="Opaque identifier assigned by the provider")
    attributes: Dict[str, Any] = Field(default_factory=dict, description="Attributes observed after apply")
    inputs: Dict[str, Any] = Field(default_factory=dict, description="Resolved declared attributes last applied")
    dependencies: List[str] = Field(default_factory=list, description="Addresses this resource depended on")
    prevent_destroy: bool = Field(default=False, description="Lifecycle flag at last apply")
    deposed_provider_ids: List[str] = Field(
        default_factory=list, description="Objects replaced create-first whose delete has not succeeded yet"
    )
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def address(self) -> ResourceAddress:
        return ResourceAddress(self.resource_type, self.name)

    def dependency_addresses(self) -> List[ResourceAddress]:
        return [ResourceAddress.parse(dep) for dep in self.dependencies]
