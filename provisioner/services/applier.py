"""Execute plan steps against providers, recording progress in state."""

from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from provisioner.core.exceptions import (
    ApplyFailedError,
    ResourceNotFoundError,
)
from provisioner.core.logging import get_service_logger
from provisioner.models.graph import ResourceGraph
from provisioner.models.plan import ApplyReport, Operation, Plan, PlanStep, ResourceStatus
from provisioner.models.state import InstanceStatus, OutputState, ResourceState, StateDocument
from provisioner.providers.base import ProviderRegistry
from provisioner.services.planner import Planner, stored_attributes

logger = get_service_logger("applier")


class Applier:
    """Run a plan step by step.

    State is handed to ``save`` after every completed step, so an
    interrupted run leaves a document that the next plan resumes from.
    The first failing step stops the run; steps after it are never
    attempted.
    """

    def __init__(
        self,
        graph: ResourceGraph,
        registry: ProviderRegistry,
        save: Callable[[StateDocument], None],
        on_status: Optional[Callable[[str, ResourceStatus], None]] = None,
    ):
        self.graph = graph
        self.registry = registry
        self.save = save
        self.on_status = on_status or (lambda _address, _status: None)
        self.planner = Planner(graph, registry)

    def _set(self, statuses: Dict[str, ResourceStatus], address: str, status: ResourceStatus) -> None:
        statuses[address] = status
        self.on_status(address, status)

    def apply(self, plan: Plan, state: StateDocument, variables: Mapping[str, Any]) -> ApplyReport:
        """Apply plan to state.

        Raises:
            ApplyFailedError: when a step fails; its details carry the
                status of every planned address.
        """
        statuses: Dict[str, ResourceStatus] = {}
        last_step: Dict[str, int] = {}
        for index, step in enumerate(plan.steps):
            statuses[step.address] = ResourceStatus.PLANNED
            last_step[step.address] = index

        for index, step in enumerate(plan.steps):
            if statuses[step.address] != ResourceStatus.APPLYING:
                self._set(statuses, step.address, ResourceStatus.APPLYING)
            log = logger.bind(address=step.address, operation=step.operation.value, deposed=step.deposed)
            log.info("Applying step")
            try:
                self._execute(step, plan, state, variables)
            except Exception as e:
                log.error("Step failed", error=str(e))
                self._record_failure(step, state, variables, e)
                self._set(statuses, step.address, ResourceStatus.FAILED)
                for address, status in statuses.items():
                    if status == ResourceStatus.PLANNED:
                        self._set(statuses, address, ResourceStatus.PENDING)
                self.save(state)
                raise ApplyFailedError(
                    f"Failed to apply {step.address}: {getattr(e, 'message', str(e))}",
                    statuses={a: s.value for a, s in statuses.items()},
                    failed_address=step.address,
                ) from e

            self.save(state)
            if last_step[step.address] == index:
                self._set(statuses, step.address, ResourceStatus.APPLIED)

        report = ApplyReport(statuses=statuses)
        if not plan.destroy:
            report.outputs = self.record_outputs(state, variables)
        else:
            state.outputs = {}
        self.save(state)
        return report

    def _inputs_for(
        self, step: PlanStep, state: StateDocument, variables: Mapping[str, Any]
    ) -> Tuple[Dict[str, Any], List[str]]:
        """Evaluate a declaration's inputs and name the ones to mask."""
        decl = self.graph.resources[step.address]
        handler = self.registry.handler_for(step.kind)
        known = {a: stored_attributes(r) for a, r in state.resources.items()}
        evaluator = self.planner.evaluator(variables, known)
        inputs = evaluator.evaluate(decl.attributes)
        sensitive = sorted(
            key
            for key, value in decl.attributes.items()
            if key in handler.sensitive_inputs or evaluator.is_sensitive(value)
        )
        return inputs, sensitive

    def _execute(
        self, step: PlanStep, plan: Plan, state: StateDocument, variables: Mapping[str, Any]
    ) -> None:
        handler = self.registry.handler_for(step.kind)

        if step.operation == Operation.DELETE:
            resource = state.deposed.get(step.address) if step.deposed else state.resources.get(step.address)
            if resource is None:
                logger.info("Already gone", address=step.address)
                return
            handler.delete(resource.id, stored_attributes(resource))
            if step.deposed:
                del state.deposed[step.address]
            else:
                state.remove(step.address)
            return

        decl = self.graph.resources[step.address]
        inputs, sensitive = self._inputs_for(step, state, variables)
        handler.validate(inputs)

        if step.operation == Operation.UPDATE:
            existing = state.resources.get(step.address)
            if existing is None:
                raise ResourceNotFoundError(step.address)
            attributes = handler.update(
                existing.id, existing.inputs, inputs, stored_attributes(existing)
            )
            existing.inputs = inputs
            existing.attributes = {**existing.attributes, **attributes}
            existing.dependencies = decl.references()
            existing.sensitive_inputs = sensitive
            return

        existing = state.resources.get(step.address)
        if existing is not None:
            change = plan.change_for(step.address)
            if change is not None and change.create_before_destroy:
                state.deposed[step.address] = existing
            state.remove(step.address)

        resource_id, attributes = handler.create(inputs)
        state.put(
            ResourceState(
                address=step.address,
                kind=decl.kind,
                id=resource_id,
                inputs=inputs,
                attributes=attributes,
                dependencies=decl.references(),
                sensitive_inputs=sensitive,
            )
        )

    def _record_failure(
        self,
        step: PlanStep,
        state: StateDocument,
        variables: Mapping[str, Any],
        error: Exception,
    ) -> None:
        """Keep a half-created resource in state so the next plan replaces it."""
        if step.operation != Operation.CREATE:
            return
        details = getattr(error, "details", None) or {}
        resource_id = details.get("resource_id")
        if not resource_id:
            return
        decl = self.graph.resources[step.address]
        inputs, sensitive = self._inputs_for(step, state, variables)
        state.put(
            ResourceState(
                address=step.address,
                kind=decl.kind,
                id=resource_id,
                inputs=inputs,
                dependencies=decl.references(),
                sensitive_inputs=sensitive,
                status=InstanceStatus.TAINTED,
            )
        )
        logger.warning("Recorded partially created resource as tainted", address=step.address, id=resource_id)

    def record_outputs(self, state: StateDocument, variables: Mapping[str, Any]) -> Dict[str, Any]:
        """Evaluate declared outputs against state and store them."""
        known = {a: stored_attributes(r) for a, r in state.resources.items()}
        evaluator = self.planner.evaluator(variables, known)
        outputs: Dict[str, OutputState] = {}
        for name, output in self.graph.outputs.items():
            sensitive = output.sensitive or evaluator.is_sensitive(output.value)
            outputs[name] = OutputState(value=evaluator.evaluate(output.value), sensitive=sensitive)
        state.outputs = outputs
        return {name: o.value for name, o in outputs.items()}
