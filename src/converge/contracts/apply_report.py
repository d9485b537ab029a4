"""Pydantic model for apply results."""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional
from pydantic import BaseModel, Field
from ..ingest.models import NodeStatus
from .plan import Diagnostic, Operation


class ApplyResult(str, Enum):
    SUCCESS = "SUCCESS"
    PARTIAL_FAILURE = "PARTIAL_FAILURE"
    CANCELLED = "CANCELLED"
    FAILED_VALIDATION = "FAILED_VALIDATION"


class ActionResult(BaseModel):
    """Terminal outcome of one plan action."""
    key: str
    address: str
    operation: Operation
    status: NodeStatus
    attempts: int = Field(default=0, ge=0, description="Provider call attempts made")
    error: Optional[str] = None
    resource_id: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def duration(self) -> Optional[float]:
        """Seconds spent executing, or None if the action never started."""
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()


class ApplyReport(BaseModel):
    """Per-node terminal status plus an overall result."""
    result: ApplyResult
    actions: List[ActionResult] = Field(default_factory=list)
    nodes: Dict[str, NodeStatus] = Field(default_factory=dict)
    diagnostics: List[Diagnostic] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    def get(self, key: str) -> Optional[ActionResult]:
        for result in self.actions:
            if result.key == key:
                return result
        return None

    def nodes_with(self, status: NodeStatus) -> List[str]:
        return sorted(address for address, s in self.nodes.items() if s == status)

    def summary(self) -> Dict[str, int]:
        counts = {s.value: 0 for s in NodeStatus if s.is_terminal}
        for status in self.nodes.values():
            counts[status.value] = counts.get(status.value, 0) + 1
        return counts


def summarize_node_status(statuses: List[NodeStatus]) -> NodeStatus:
    """Fold the statuses of a node's actions into one terminal node status."""
    for status in (NodeStatus.FAILED, NodeStatus.CANCELLED, NodeStatus.SKIPPED, NodeStatus.APPLIED):
        if status in statuses:
            return status
    return NodeStatus.NO_OP
