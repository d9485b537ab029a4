"""State snapshot models: last-applied attributes and identifiers per address."""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

STATE_FORMAT_VERSION = 1


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ResourceState(BaseModel):
    """Recorded state of one managed resource."""
    address: str = Field(..., description="Resource address")
    type: str = Field(..., description="Resource type tag")
    id: str = Field(..., description="Provider-assigned identifier")
    inputs: Dict[str, Any] = Field(default_factory=dict, description="Resolved attributes last sent to the provider")
    attributes: Dict[str, Any] = Field(default_factory=dict, description="Attributes returned by the provider")
    dependencies: List[str] = Field(default_factory=list, description="Addresses this resource depended on when applied")
    deposed: List[str] = Field(default_factory=list, description="Identifiers of superseded instances awaiting deletion")
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class StateSnapshot(BaseModel):
    """Mapping from resource address to last-applied state."""
    format_version: int = Field(default=STATE_FORMAT_VERSION)
    serial: int = Field(default=0, ge=0, description="Incremented on every save")
    lineage: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Stable identity of this state history")
    resources: Dict[str, ResourceState] = Field(default_factory=dict)

    def get(self, address: str) -> Optional[ResourceState]:
        return self.resources.get(address)

    def __contains__(self, address: str) -> bool:
        return address in self.resources

    def addresses(self) -> List[str]:
        return sorted(self.resources)

