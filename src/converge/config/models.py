"""Pydantic models for validated engine configuration."""

from typing import Dict, List, Optional
from pydantic import BaseModel, Field


class ApplySettings(BaseModel):
    parallelism: int = Field(default=10, ge=1, description="Maximum concurrent provider calls")
    timeout_seconds: Optional[float] = Field(default=None, gt=0, description="Cancel scheduling after this long")


class RetrySettings(BaseModel):
    max_attempts: int = Field(default=5, ge=1, description="Attempts per provider call, including the first")
    base_delay_seconds: float = Field(default=1.0, ge=0, description="Backoff multiplier")
    max_delay_seconds: float = Field(default=30.0, ge=0, description="Upper bound for a single backoff wait")


class StateSettings(BaseModel):
    path: str = Field(default=".converge/state.json", description="JSON state file location")
    lock_ttl_seconds: float = Field(default=300.0, gt=0, description="State lock lifetime")


class ResourceTypeSchema(BaseModel):
    """Per-type replacement policy."""
    mutable_attributes: List[str] = Field(default_factory=list, description="Attributes updatable in place")
    create_before_destroy: bool = Field(default=False, description="Create the replacement before deleting the old resource")

    def is_mutable(self, attribute: str) -> bool:
        return "*" in self.mutable_attributes or attribute in self.mutable_attributes


class EngineConfig(BaseModel):
    """Validated configuration tree."""
    apply: ApplySettings = Field(default_factory=ApplySettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    state: StateSettings = Field(default_factory=StateSettings)
    resource_defaults: ResourceTypeSchema = Field(
        default_factory=lambda: ResourceTypeSchema(mutable_attributes=["tags"])
    )
    resource_types: Dict[str, ResourceTypeSchema] = Field(default_factory=dict)

    def schema_for(self, resource_type: str) -> ResourceTypeSchema:
        return self.resource_types.get(resource_type, self.resource_defaults)
