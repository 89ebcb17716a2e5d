from typing import Any, Dict, List, Literal, Optional, Set

from pydantic import BaseModel, ConfigDict, Field

from provisioner.core.exceptions import PlanComputationError
from provisioner.models.expressions import Ref, VarRef, walk

IDENTIFIER_PATTERN = r"^[a-z][a-z0-9_]*$"


class Lifecycle(BaseModel):
    """Lifecycle options of a resource declaration."""

    create_before_destroy: bool = False
    prevent_destroy: bool = False


class ResourceDeclaration(BaseModel):
    """A named, typed description of a desired piece of infrastructure."""

    model_config = ConfigDict(frozen=True)

    kind: str = Field(..., pattern=IDENTIFIER_PATTERN)
    name: str = Field(..., pattern=IDENTIFIER_PATTERN)
    attributes: Dict[str, Any] = Field(default_factory=dict)
    depends_on: List[str] = Field(default_factory=list)
    lifecycle: Lifecycle = Field(default_factory=Lifecycle)

    @property
    def address(self) -> str:
        return f"{self.kind}.{self.name}"

    def references(self) -> List[str]:
        """Addresses this declaration depends on, in first-seen order."""
        seen: List[str] = []
        for item in walk(self.attributes):
            if isinstance(item, Ref) and item.address not in seen:
                seen.append(item.address)
        for address in self.depends_on:
            if address not in seen:
                seen.append(address)
        return seen

    def variable_names(self) -> Set[str]:
        return {item.name for item in walk(self.attributes) if isinstance(item, VarRef)}


VariableType = Literal["string", "number", "bool", "list", "map"]


class VariableDeclaration(BaseModel):
    """A named configuration input."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., pattern=IDENTIFIER_PATTERN)
    type: VariableType = "string"
    default: Any = None
    nullable: bool = False
    sensitive: bool = False
    description: str = ""

    def coerce(self, value: Any) -> Any:
        """Convert a supplied value to the declared type."""
        if value is None:
            if self.nullable:
                return None
            raise PlanComputationError(
                f"Variable '{self.name}' is required", {"variable": self.name}
            )

        try:
            if self.type == "string":
                if isinstance(value, (dict, list)):
                    raise ValueError("expected a string")
                return str(value)
            if self.type == "number":
                if isinstance(value, bool):
                    raise ValueError("expected a number")
                if isinstance(value, (int, float)):
                    return value
                text = str(value).strip()
                return int(text) if text.lstrip("-").isdigit() else float(text)
            if self.type == "bool":
                if isinstance(value, bool):
                    return value
                text = str(value).strip().lower()
                if text in ("true", "1", "yes"):
                    return True
                if text in ("false", "0", "no"):
                    return False
                raise ValueError("expected true or false")
            if self.type == "list":
                if not isinstance(value, (list, tuple)):
                    raise ValueError("expected a list")
                return list(value)
            if not isinstance(value, dict):
                raise ValueError("expected a map")
            return dict(value)
        except ValueError as e:
            shown = "(sensitive value)" if self.sensitive else repr(value)
            reason = f"expected a {self.type}" if self.sensitive else str(e)
            raise PlanComputationError(
                f"Invalid value for variable '{self.name}': {reason}",
                {"variable": self.name, "value": shown},
            )


class OutputDeclaration(BaseModel):
    """A named value derived from resource attributes after apply."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., pattern=IDENTIFIER_PATTERN)
    value: Any
    sensitive: bool = False
    description: Optional[str] = None
