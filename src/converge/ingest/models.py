"""Pydantic models for resource declarations and expanded resource nodes."""

from enum import Enum
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator
from .values import Value, parse_value


class NodeStatus(str, Enum):
    """Lifecycle status of a resource node during plan and apply."""
    PENDING = "PENDING"
    READY = "READY"
    RUNNING = "RUNNING"
    APPLIED = "APPLIED"
    NO_OP = "NO_OP"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_success(self) -> bool:
        return self in (NodeStatus.APPLIED, NodeStatus.NO_OP)


TERMINAL_STATUSES = frozenset({
    NodeStatus.APPLIED,
    NodeStatus.NO_OP,
    NodeStatus.FAILED,
    NodeStatus.SKIPPED,
    NodeStatus.CANCELLED,
})


class ResourceDeclaration(BaseModel):
    """One resource record as produced by the declarative-syntax parser."""
    type: str = Field(..., description="Resource type tag (e.g. 'aws_vpc')")
    name: str = Field(..., description="Local name, unique per type")
    attributes: Dict[str, Value] = Field(default_factory=dict, description="Desired attribute expressions")
    depends_on: List[str] = Field(default_factory=list, description="Explicit dependency addresses")
    count: Optional[int] = Field(None, description="Expansion count; None means a single unindexed node")

    @field_validator("attributes", mode="before")
    @classmethod
    def _parse_attributes(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(k): parse_value(v) for k, v in value.items()}
        return value

    @property
    def address(self) -> str:
        return f"{self.type}.{self.name}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResourceDeclaration":
        """Build a declaration from plain parser output."""
        return cls(**data)


class ResourceNode(BaseModel):
    """A concrete resource instance after count expansion."""
    address: str = Field(..., description="Unique address: type.name or type.name[index]")
    type: str = Field(..., description="Resource type tag")
    name: str = Field(..., description="Declaration name")
    index: Optional[int] = Field(None, description="Expansion index for counted declarations")
    attributes: Dict[str, Value] = Field(default_factory=dict, description="Desired attributes (count.index substituted)")
    depends_on: List[str] = Field(default_factory=list, description="Explicit dependency addresses as declared")
    status: NodeStatus = Field(default=NodeStatus.PENDING, description="Plan/apply status")

    @property
    def base_address(self) -> str:
        return f"{self.type}.{self.name}"
