from abc import ABC, abstractmethod
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

from provisioner.core.exceptions import PlanComputationError


class ResourceHandler(ABC):
    """Create, read, update and delete one kind of resource.

    Handlers block until the resource reaches a terminal state, so a
    dependent step never starts against a resource that is still
    provisioning.
    """

    kind: str = ""
    # Inputs that must be present before the resource can be created
    required: FrozenSet[str] = frozenset()
    # Inputs whose change cannot be applied in place
    force_new: FrozenSet[str] = frozenset()
    # False when every input change requires replacement
    supports_update: bool = True
    sensitive_inputs: FrozenSet[str] = frozenset()
    sensitive_attributes: FrozenSet[str] = frozenset()

    def validate(self, inputs: Dict[str, Any]) -> None:
        missing = [
            key for key in sorted(self.required) if inputs.get(key) is None
        ]
        if missing:
            raise PlanComputationError(
                f"{self.kind} is missing required attributes: {', '.join(missing)}",
                {"kind": self.kind, "missing": missing},
            )

    def requires_replacement(self, changed: Iterable[str]) -> List[str]:
        """Changed inputs that force a replacement."""
        changed = list(changed)
        if not self.supports_update:
            return changed
        return [key for key in changed if key in self.force_new]

    @abstractmethod
    def read(self, resource_id: str, attributes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Return live attributes, or None when the resource no longer exists."""

    @abstractmethod
    def create(self, inputs: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        """Create the resource and return its id and attributes."""

    def update(
        self,
        resource_id: str,
        before: Dict[str, Any],
        after: Dict[str, Any],
        attributes: Dict[str, Any],
    ) -> Dict[str, Any]:
        raise NotImplementedError(f"{self.kind} does not support in-place updates")

    @abstractmethod
    def delete(self, resource_id: str, attributes: Dict[str, Any]) -> None:
        """Delete the resource; deleting a missing resource is not an error."""


class ProviderRegistry:
    """Resource handlers indexed by kind."""

    def __init__(self, handlers: Iterable[ResourceHandler] = ()):
        self._handlers: Dict[str, ResourceHandler] = {}
        for handler in handlers:
            self.register(handler)

    def register(self, handler: ResourceHandler) -> None:
        if not handler.kind:
            raise ValueError(f"{type(handler).__name__} does not declare a kind")
        self._handlers[handler.kind] = handler

    def handler_for(self, kind: str) -> ResourceHandler:
        try:
            return self._handlers[kind]
        except KeyError:
            raise PlanComputationError(
                f"No handler registered for resource kind '{kind}'", {"kind": kind}
            )

    def is_sensitive_attribute(self, kind: str, attribute: str) -> bool:
        handler = self._handlers.get(kind)
        return handler is not None and attribute in handler.sensitive_attributes

    @property
    def kinds(self) -> List[str]:
        return sorted(self._handlers)
