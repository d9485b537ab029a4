"""Pydantic model for the plan contract (versioned, serializable, explicit)."""

import json
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from ..ingest.values import Value
from ..utils.errors import (
    CycleError,
    DanglingReferenceError,
    PlanLoadError,
    UnresolvedReferenceError,
    ValidationError,
)

PLAN_FORMAT_VERSION = "1.0.0"


class ActionType(str, Enum):
    """Classification of what a node needs."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    REPLACE = "REPLACE"
    DELETE = "DELETE"
    NO_OP = "NO_OP"


class Operation(str, Enum):
    """Provider operation an executable action performs."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    NO_OP = "no-op"


class ReplaceOrder(str, Enum):
    CREATE_BEFORE_DESTROY = "create_before_destroy"
    DESTROY_BEFORE_CREATE = "destroy_before_create"


class Diagnostic(BaseModel):
    """A validation problem that aborted planning."""
    kind: str = Field(..., description="Error kind, e.g. 'cycle' or 'unresolved_reference'")
    message: str = Field(..., description="Human-readable description")
    address: Optional[str] = Field(None, description="Resource address at fault")
    attribute_path: Optional[str] = Field(None, description="Attribute holding the bad expression")
    cycle: List[str] = Field(default_factory=list, description="Cycle path for cycle errors")
    referenced_by: List[str] = Field(default_factory=list, description="Dependents for dangling references")

    @classmethod
    def from_error(cls, error: ValidationError) -> "Diagnostic":
        return cls(
            kind=error.kind,
            message=error.message,
            address=error.address,
            attribute_path=error.attribute_path if isinstance(error, UnresolvedReferenceError) else None,
            cycle=error.cycle if isinstance(error, CycleError) else [],
            referenced_by=error.referenced_by if isinstance(error, DanglingReferenceError) else [],
        )


class AttributeChange(BaseModel):
    name: str
    before: Any = None
    after: Any = None
    requires_replacement: bool = False


class ResourceChange(BaseModel):
    """Per-node classification, one per address (plus leftover deposed instances)."""
    address: str
    resource_type: str
    action: ActionType
    replace_order: Optional[ReplaceOrder] = None
    attribute_changes: List[AttributeChange] = Field(default_factory=list)
    deposed_id: Optional[str] = Field(None, description="Set when the change targets a deposed instance")


class Action(BaseModel):
    """One executable step of a plan."""
    key: str = Field(..., description="Unique step key: '<operation>:<address>'")
    address: str
    resource_type: str
    action: ActionType = Field(..., description="Classification of the owning node")
    operation: Operation = Field(..., description="Provider call this step makes")
    replace_order: Optional[ReplaceOrder] = None
    requires: List[str] = Field(default_factory=list, description="Keys of steps that must succeed first")
    resource_id: Optional[str] = Field(None, description="Existing identifier for update/delete")
    desired: Dict[str, Value] = Field(default_factory=dict, description="Desired attribute expressions")
    dependencies: List[str] = Field(default_factory=list, description="Dependency addresses to record in state")
    deposed: bool = Field(default=False, description="Deletes a superseded instance")


class Plan(BaseModel):
    """Ordered actions converging current state to the declared state."""
    version: str = Field(default=PLAN_FORMAT_VERSION)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    state_lineage: Optional[str] = None
    state_serial: int = 0
    actions: List[Action] = Field(default_factory=list)
    changes: List[ResourceChange] = Field(default_factory=list)
    diagnostics: List[Diagnostic] = Field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.diagnostics

    def is_empty(self) -> bool:
        """True when no action changes anything (NoOps only, or nothing at all)."""
        return all(a.operation == Operation.NO_OP for a in self.actions)

    def get_action(self, key: str) -> Optional[Action]:
        for action in self.actions:
            if action.key == key:
                return action
        return None

    def change_for(self, address: str) -> Optional[ResourceChange]:
        for change in self.changes:
            if change.address == address and change.deposed_id is None:
                return change
        return None

    def summary(self) -> Dict[str, int]:
        counts = {a.value: 0 for a in ActionType}
        for change in self.changes:
            counts[change.action.value] += 1
        return counts

    def raise_for_diagnostics(self) -> None:
        """Raise the first validation problem as an exception."""
        if self.diagnostics:
            first = self.diagnostics[0]
            if first.kind == "cycle":
                raise CycleError(first.cycle)
            raise ValidationError(first.message, first.address)

    def save(self, path: Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = self.model_dump(mode="json")
        path.write_text(json.dumps(data, indent=2, sort_keys=True) + "\n", encoding="utf-8")

    @classmethod
    def load(cls, path: Path) -> "Plan":
        """
        Read a plan written by ``save``.

        Raises:
            PlanLoadError: If the file is unreadable or not a valid plan
        """
        path = Path(path)
        try:
            return cls.model_validate_json(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise PlanLoadError(f"Error reading plan file {path}: {e}")
        except PydanticValidationError as e:
            raise PlanLoadError(f"Invalid plan file {path}: {e}")
