"""Evaluate attribute expressions against variables and recorded state."""

import copy
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from provisioner.core.exceptions import PlanComputationError
from provisioner.core.logging import get_service_logger
from provisioner.models.expressions import Coalesce, Join, Ref, VarRef, walk
from provisioner.models.resource import VariableDeclaration

logger = get_service_logger("evaluator")


class _Unknown:
    """Placeholder for a value only known once a dependency is applied."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "(known after apply)"

    def __deepcopy__(self, memo):
        return self


UNKNOWN = _Unknown()


def contains_unknown(value: Any) -> bool:
    if value is UNKNOWN:
        return True
    if isinstance(value, dict):
        return any(contains_unknown(v) for v in value.values())
    if isinstance(value, (list, tuple)):
        return any(contains_unknown(v) for v in value)
    return False


class Evaluator:
    """Resolve expressions using variable values and resource attributes.

    ``attributes`` maps addresses to provider-reported attributes of
    resources that exist. Addresses in ``unknown`` are about to be created
    or replaced, so references to them resolve to ``UNKNOWN``.
    """

    def __init__(
        self,
        variables: Mapping[str, Any],
        attributes: Mapping[str, Mapping[str, Any]],
        unknown: Iterable[str] = (),
        sensitive_variables: Iterable[str] = (),
        is_sensitive_ref: Optional[Callable[[Ref], bool]] = None,
    ):
        self.variables = variables
        self.attributes = attributes
        self.unknown = set(unknown)
        self.sensitive_variables = set(sensitive_variables)
        self.is_sensitive_ref = is_sensitive_ref or (lambda _ref: False)

    def evaluate(self, value: Any) -> Any:
        if isinstance(value, Ref):
            return self._resolve_ref(value)
        if isinstance(value, VarRef):
            if value.name not in self.variables:
                raise PlanComputationError(
                    f"Variable '{value.name}' has no value", {"variable": value.name}
                )
            return copy.deepcopy(self.variables[value.name])
        if isinstance(value, Join):
            parts = [self.evaluate(part) for part in value.parts]
            if any(part is UNKNOWN for part in parts):
                return UNKNOWN
            return value.separator.join("" if p is None else str(p) for p in parts)
        if isinstance(value, Coalesce):
            for option in value.options:
                resolved = self.evaluate(option)
                if resolved is UNKNOWN or resolved is not None:
                    return resolved
            return None
        if isinstance(value, dict):
            return {key: self.evaluate(item) for key, item in value.items()}
        if isinstance(value, (list, tuple)):
            return [self.evaluate(item) for item in value]
        return value

    def _resolve_ref(self, reference: Ref) -> Any:
        if reference.address in self.unknown:
            return UNKNOWN
        if reference.address not in self.attributes:
            raise PlanComputationError(
                f"{reference.address} has not been applied", {"reference": str(reference)}
            )
        attrs = self.attributes[reference.address]
        if reference.attribute not in attrs:
            raise PlanComputationError(
                f"{reference.address} does not export attribute '{reference.attribute}'",
                {"reference": str(reference)},
            )
        return copy.deepcopy(attrs[reference.attribute])

    def is_sensitive(self, value: Any) -> bool:
        """Whether any part of value derives from a sensitive source."""
        for item in walk(value):
            if isinstance(item, VarRef) and item.name in self.sensitive_variables:
                return True
            if isinstance(item, Ref) and self.is_sensitive_ref(item):
                return True
        return False


def resolve_variables(
    declarations: Mapping[str, VariableDeclaration],
    supplied: Mapping[str, Any],
    prompt: Optional[Callable[[VariableDeclaration], Any]] = None,
) -> Dict[str, Any]:
    """Combine supplied values, defaults and operator input.

    Precedence is supplied value, then declared default, then ``prompt``.
    Nullable variables without any value resolve to ``None``.

    Raises:
        PlanComputationError: for unknown, missing or mistyped values.
    """
    unknown = sorted(set(supplied) - set(declarations))
    if unknown:
        raise PlanComputationError(
            f"Values supplied for undeclared variables: {', '.join(unknown)}",
            {"variables": unknown},
        )

    values: Dict[str, Any] = {}
    for name, declaration in declarations.items():
        value = supplied.get(name)
        if value is None:
            value = declaration.default
        if value is None and not declaration.nullable and prompt is not None:
            logger.info("Prompting for variable", variable=name)
            value = prompt(declaration)
        values[name] = declaration.coerce(value)
    return values
