"""Compute the changes that converge live state to the declared graph."""

from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from provisioner.core.exceptions import PlanComputationError
from provisioner.core.logging import get_service_logger
from provisioner.models.expressions import Ref
from provisioner.models.graph import ResourceGraph, topological_sort
from provisioner.models.plan import Action, Operation, Plan, PlanStep, ResourceChange
from provisioner.models.state import InstanceStatus, ResourceState, StateDocument
from provisioner.providers.base import ProviderRegistry
from provisioner.services.evaluator import UNKNOWN, Evaluator, contains_unknown

logger = get_service_logger("planner")

SENSITIVE_PLACEHOLDER = "(sensitive value)"


def display_value(value: Any) -> Any:
    """Replace UNKNOWN markers with their printable form."""
    if value is UNKNOWN:
        return repr(UNKNOWN)
    if isinstance(value, dict):
        return {k: display_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [display_value(v) for v in value]
    return value


def mask(values: Mapping[str, Any], sensitive: Iterable[str]) -> Dict[str, Any]:
    sensitive = set(sensitive)
    return {
        key: SENSITIVE_PLACEHOLDER if key in sensitive and value is not None else display_value(value)
        for key, value in values.items()
    }


def stored_attributes(resource: ResourceState) -> Dict[str, Any]:
    """Inputs overlaid with provider attributes, as handlers expect them."""
    return {**resource.inputs, **resource.attributes}


class Planner:
    """Diff the declared graph against refreshed state."""

    def __init__(self, graph: ResourceGraph, registry: ProviderRegistry):
        self.graph = graph
        self.registry = registry

    def is_sensitive_ref(self, reference: Ref) -> bool:
        kind = reference.address.split(".", 1)[0]
        return self.registry.is_sensitive_attribute(kind, reference.attribute)

    def evaluator(
        self,
        variables: Mapping[str, Any],
        attributes: Mapping[str, Mapping[str, Any]],
        unknown: Iterable[str] = (),
    ) -> Evaluator:
        return Evaluator(
            variables,
            attributes,
            unknown=unknown,
            sensitive_variables=[n for n, v in self.graph.variables.items() if v.sensitive],
            is_sensitive_ref=self.is_sensitive_ref,
        )

    def refresh(self, state: StateDocument) -> StateDocument:
        """Read every recorded resource and forget the ones that are gone."""
        for address, resource in list(state.resources.items()):
            handler = self.registry.handler_for(resource.kind)
            live = handler.read(resource.id, stored_attributes(resource))
            if live is None:
                logger.warning("Resource no longer exists, forgetting it", address=address, id=resource.id)
                state.remove(address)
                continue
            resource.attributes = {**resource.attributes, **live}

        for address, resource in list(state.deposed.items()):
            handler = self.registry.handler_for(resource.kind)
            if handler.read(resource.id, stored_attributes(resource)) is None:
                logger.warning("Deposed resource no longer exists", address=address, id=resource.id)
                del state.deposed[address]
        return state

    def plan(
        self,
        state: StateDocument,
        variables: Mapping[str, Any],
        replace: Iterable[str] = (),
        destroy: bool = False,
        refresh: bool = True,
    ) -> Plan:
        """Refresh state and compute the ordered plan.

        Raises:
            PlanComputationError: on invalid references, unknown resource
                kinds, missing required inputs or a ``prevent_destroy``
                resource that would be deleted.
            ReferenceCycleError: when references form a cycle.
        """
        self.graph.validate()
        replace = set(replace)
        for address in replace:
            if address not in self.graph:
                raise PlanComputationError(
                    f"Cannot replace {address}: no such resource is declared",
                    {"address": address},
                )
        if refresh:
            self.refresh(state)

        if destroy:
            return self._destroy_plan(state)
        return self._apply_plan(state, variables, replace)

    def _apply_plan(
        self, state: StateDocument, variables: Mapping[str, Any], replace: Set[str]
    ) -> Plan:
        order = self.graph.topological_order()
        known = {a: stored_attributes(r) for a, r in state.resources.items()}
        unknown: Set[str] = set()
        changes: Dict[str, ResourceChange] = {}

        for address in order:
            decl = self.graph.resources[address]
            handler = self.registry.handler_for(decl.kind)
            evaluator = self.evaluator(variables, known, unknown)
            after = evaluator.evaluate(decl.attributes)
            handler.validate(after)

            sensitive = sorted(
                key
                for key, value in decl.attributes.items()
                if key in handler.sensitive_inputs or evaluator.is_sensitive(value)
            )
            existing = state.resources.get(address)
            change = ResourceChange(
                address=address,
                kind=decl.kind,
                action=Action.NOOP,
                after=mask(after, sensitive),
                sensitive=sensitive,
                create_before_destroy=decl.lifecycle.create_before_destroy,
            )

            if existing is None:
                change.action = Action.CREATE
            else:
                change.before = mask(existing.inputs, sensitive)
                change.changed = sorted(
                    key
                    for key in set(after) | set(existing.inputs)
                    if contains_unknown(after.get(key)) or after.get(key) != existing.inputs.get(key)
                )
                if existing.status == InstanceStatus.TAINTED:
                    change.action, change.reason = Action.REPLACE, "tainted"
                elif address in replace:
                    change.action, change.reason = Action.REPLACE, "requested"
                elif existing.kind != decl.kind:
                    change.action, change.reason = Action.REPLACE, "kind changed"
                elif change.changed:
                    change.forces_replacement = handler.requires_replacement(change.changed)
                    change.action = Action.REPLACE if change.forces_replacement else Action.UPDATE

            if change.action == Action.REPLACE and decl.lifecycle.prevent_destroy:
                raise PlanComputationError(
                    f"{address} has prevent_destroy set but the plan would replace it",
                    {"address": address, "changed": change.forces_replacement},
                )
            if change.action in (Action.CREATE, Action.REPLACE):
                unknown.add(address)
            changes[address] = change

        for address, resource in state.resources.items():
            if address not in self.graph:
                changes[address] = ResourceChange(
                    address=address,
                    kind=resource.kind,
                    action=Action.DELETE,
                    before=mask(resource.inputs, resource.sensitive_inputs),
                    sensitive=list(resource.sensitive_inputs),
                    reason="no longer declared",
                )

        steps = self._order_steps(state, order, changes)
        plan = Plan(changes=list(changes.values()), steps=steps)
        logger.info("Plan computed", **plan.summary())
        return plan

    def _delete_order(self, state: StateDocument, addresses: Iterable[str]) -> List[str]:
        """Reverse dependency order over declared and recorded resources."""
        nodes = list(self.graph.resources)
        nodes += [a for a in state.resources if a not in self.graph]
        nodes += [a for a in state.deposed if a not in nodes]
        edges: Dict[str, List[str]] = {}
        for address in nodes:
            deps: List[str] = []
            if address in self.graph:
                deps += self.graph.dependencies(address)
            recorded = state.resources.get(address) or state.deposed.get(address)
            if recorded is not None:
                deps += [d for d in recorded.dependencies if d not in deps]
            edges[address] = deps
        wanted = set(addresses)
        return [a for a in reversed(topological_sort(nodes, edges)) if a in wanted]

    def _order_steps(
        self,
        state: StateDocument,
        order: List[str],
        changes: Mapping[str, ResourceChange],
    ) -> List[PlanStep]:
        steps: List[PlanStep] = []

        # Stale copies left by an interrupted create-before-destroy replacement
        for address in self._delete_order(state, state.deposed):
            steps.append(
                PlanStep(address=address, kind=state.deposed[address].kind, operation=Operation.DELETE, deposed=True)
            )

        destroy_first = [
            a
            for a, c in changes.items()
            if c.action == Action.DELETE
            or (c.action == Action.REPLACE and not c.create_before_destroy)
        ]
        for address in self._delete_order(state, destroy_first):
            steps.append(
                PlanStep(address=address, kind=state.resources[address].kind, operation=Operation.DELETE)
            )

        for address in order:
            change = changes[address]
            if change.action in (Action.CREATE, Action.REPLACE):
                steps.append(PlanStep(address=address, kind=change.kind, operation=Operation.CREATE))
            elif change.action == Action.UPDATE:
                steps.append(PlanStep(address=address, kind=change.kind, operation=Operation.UPDATE))

        destroy_last = [
            a
            for a, c in changes.items()
            if c.action == Action.REPLACE and c.create_before_destroy
        ]
        for address in self._delete_order(state, destroy_last):
            steps.append(
                PlanStep(address=address, kind=state.resources[address].kind, operation=Operation.DELETE, deposed=True)
            )
        return steps

    def _destroy_plan(self, state: StateDocument) -> Plan:
        changes: List[ResourceChange] = []
        steps: List[PlanStep] = []
        for address in self._delete_order(state, list(state.resources) + list(state.deposed)):
            decl = self.graph.get(address)
            if decl is not None and decl.lifecycle.prevent_destroy and address in state.resources:
                raise PlanComputationError(
                    f"{address} has prevent_destroy set and cannot be destroyed",
                    {"address": address},
                )
            if address in state.deposed:
                resource = state.deposed[address]
                steps.append(PlanStep(address=address, kind=resource.kind, operation=Operation.DELETE, deposed=True))
            if address in state.resources:
                resource = state.resources[address]
                changes.append(
                    ResourceChange(
                        address=address,
                        kind=resource.kind,
                        action=Action.DELETE,
                        before=mask(resource.inputs, resource.sensitive_inputs),
                        sensitive=list(resource.sensitive_inputs),
                    )
                )
                steps.append(PlanStep(address=address, kind=resource.kind, operation=Operation.DELETE))

        plan = Plan(changes=changes, steps=steps, destroy=True)
        logger.info("Destroy plan computed", **plan.summary())
        return plan


def describe_change(change: ResourceChange) -> Optional[str]:
    """One-line reason shown next to a replacement."""
    if change.action != Action.REPLACE:
        return None
    if change.reason:
        return change.reason
    if change.forces_replacement:
        return f"forced by {', '.join(change.forces_replacement)}"
    return None
