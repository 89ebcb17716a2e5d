from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field


class InstanceStatus(str, Enum):
    """Health of a resource instance recorded in state."""

    READY = "ready"
    TAINTED = "tainted"  # created but never reached a terminal state


class ResourceState(BaseModel):
    """A live resource as last recorded by an apply."""

    address: str
    kind: str
    id: str
    inputs: Dict[str, Any] = Field(default_factory=dict)
    attributes: Dict[str, Any] = Field(default_factory=dict)
    dependencies: List[str] = Field(default_factory=list)
    status: InstanceStatus = InstanceStatus.READY
    sensitive_inputs: List[str] = Field(default_factory=list)


class OutputState(BaseModel):
    value: Any = None
    sensitive: bool = False


class StateDocument(BaseModel):
    """Everything the provisioner knows about the live deployment."""

    version: int = 1
    serial: int = 0
    lineage: str = Field(default_factory=lambda: str(uuid4()))
    updated_at: Optional[datetime] = None
    resources: Dict[str, ResourceState] = Field(default_factory=dict)
    deposed: Dict[str, ResourceState] = Field(default_factory=dict)
    outputs: Dict[str, OutputState] = Field(default_factory=dict)

    def put(self, resource: ResourceState) -> None:
        self.resources[resource.address] = resource

    def remove(self, address: str) -> Optional[ResourceState]:
        return self.resources.pop(address, None)

    def touch(self) -> None:
        self.serial += 1
        self.updated_at = datetime.now(timezone.utc)

    @property
    def is_empty(self) -> bool:
        return not self.resources and not self.deposed
