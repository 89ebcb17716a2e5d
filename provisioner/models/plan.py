from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class Action(str, Enum):
    """Change computed for one resource."""

    NOOP = "no-op"
    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"


class Operation(str, Enum):
    """Single provider call executed by the applier."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class ResourceStatus(str, Enum):
    """Progress of a declaration through one apply.

    UNDECLARED -> PLANNED -> APPLYING -> APPLIED | FAILED, with PLANNED
    steps left untouched by a failure reported as PENDING.
    """

    UNDECLARED = "undeclared"
    PLANNED = "planned"
    APPLYING = "applying"
    APPLIED = "applied"
    FAILED = "failed"
    PENDING = "pending"


class ResourceChange(BaseModel):
    """Difference between the declared and live state of one resource."""

    address: str
    kind: str
    action: Action
    before: Dict[str, Any] = Field(default_factory=dict)
    after: Dict[str, Any] = Field(default_factory=dict)
    changed: List[str] = Field(default_factory=list)
    forces_replacement: List[str] = Field(default_factory=list)
    sensitive: List[str] = Field(default_factory=list)
    create_before_destroy: bool = False
    reason: Optional[str] = None


class PlanStep(BaseModel):
    address: str
    kind: str
    operation: Operation
    deposed: bool = False


class Plan(BaseModel):
    """Ordered changes that converge live state to the declared state."""

    changes: List[ResourceChange] = Field(default_factory=list)
    steps: List[PlanStep] = Field(default_factory=list)
    destroy: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.steps

    def change_for(self, address: str) -> Optional[ResourceChange]:
        for change in self.changes:
            if change.address == address:
                return change
        return None

    @property
    def pending_changes(self) -> List[ResourceChange]:
        return [c for c in self.changes if c.action != Action.NOOP]

    def summary(self) -> Dict[str, int]:
        """Counts in the familiar add / change / destroy form."""
        counts = {"add": 0, "change": 0, "destroy": 0}
        for change in self.changes:
            if change.action == Action.CREATE:
                counts["add"] += 1
            elif change.action == Action.UPDATE:
                counts["change"] += 1
            elif change.action == Action.DELETE:
                counts["destroy"] += 1
            elif change.action == Action.REPLACE:
                counts["add"] += 1
                counts["destroy"] += 1
        return counts


class ApplyReport(BaseModel):
    """Per-address outcome of executing a plan."""

    statuses: Dict[str, ResourceStatus] = Field(default_factory=dict)
    outputs: Dict[str, Any] = Field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return all(s == ResourceStatus.APPLIED for s in self.statuses.values())
