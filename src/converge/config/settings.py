"""Pydantic settings model for Converge configuration."""

from typing import Any, Dict, List
from pydantic import BaseModel, Field


class RetrySettings(BaseModel):
    """Backoff policy for retryable provider errors."""
    base_delay_seconds: float = Field(default=1.0, ge=0, description="Delay before the second attempt")
    max_delay_seconds: float = Field(default=30.0, ge=0, description="Upper bound on any single delay")
    max_attempts: int = Field(default=5, ge=1, description="Attempts including the first")
    jitter: float = Field(default=0.2, ge=0, le=1, description="Random extra delay as a fraction of the delay")

    class Config:
        extra = "forbid"

    def delay_for(self, attempt: int) -> float:
        """Delay after failed attempt number ``attempt`` (1-based), without jitter."""
        return min(self.base_delay_seconds * (2 ** (attempt - 1)), self.max_delay_seconds)


class ExecutionSettings(BaseModel):
    """Executor settings."""
    max_parallelism: int = Field(default=10, ge=1, description="Concurrently running changes")
    default_timeout_seconds: float = Field(default=1800.0, gt=0, description="Per-change timeout when the provider declares none")
    retry: RetrySettings = Field(default_factory=RetrySettings)

    class Config:
        extra = "forbid"


class ProviderSpec(BaseModel):
    """Provider registration: builtin name or 'package.module:ClassName'."""
    kind: str = Field(default="local")
    options: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        extra = "forbid"


class LocalProviderSettings(BaseModel):
    """Replacement policy for the builtin local provider."""
    immutable: Dict[str, List[str]] = Field(default_factory=dict, description="Type pattern -> attributes forcing replacement")
    create_before_destroy: List[str] = Field(default_factory=list, description="Type patterns replaced create-first")
    timeout_seconds: Dict[str, float] = Field(default_factory=dict, description="Type pattern -> per-change timeout")

    class Config:
        extra = "forbid"


class Settings(BaseModel):
    """Complete, validated configuration."""
    state_dir: str = Field(default=".converge/state")
    remote_dir: str = Field(default=".converge/remote")
    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)
    providers: Dict[str, ProviderSpec] = Field(default_factory=dict)
    local_provider: LocalProviderSettings = Field(default_factory=LocalProviderSettings)

    class Config:
        extra = "forbid"
