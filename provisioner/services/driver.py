"""End-to-end provisioning: prerequisites, identity, plan, confirm, apply."""

import shutil
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Sequence

from provisioner.core.exceptions import (
    MissingToolError,
    OperatorAbortedError,
    ProviderCommandError,
    UnauthenticatedError,
)
from provisioner.core.logging import get_driver_logger
from provisioner.models.graph import ResourceGraph
from provisioner.models.plan import ApplyReport, Plan, ResourceStatus
from provisioner.models.resource import VariableDeclaration
from provisioner.models.state import StateDocument
from provisioner.providers.base import ProviderRegistry
from provisioner.services.applier import Applier
from provisioner.services.console import Colors, colored, render_plan, status_icon
from provisioner.services.evaluator import resolve_variables
from provisioner.services.planner import Planner
from provisioner.services.state_store import StateStore

logger = get_driver_logger()

AFFIRMATIVE_ANSWERS = frozenset({"yes"})
DEPLOY_PROMPT = "Do you want to proceed with the deployment? (yes/no): "
DESTROY_PROMPT = "Do you really want to destroy all resources? (yes/no): "


class ProvisioningDriver:
    """Drive one provisioning run of a resource graph.

    Nothing mutating happens before the operator confirms the rendered
    plan, and an empty plan never prompts.
    """

    def __init__(
        self,
        graph: ResourceGraph,
        registry: ProviderRegistry,
        store: StateStore,
        variables: Optional[Mapping[str, Any]] = None,
        required_tools: Sequence[str] = ("aws", "docker"),
        identity_provider: Optional[Callable[[], Dict[str, Any]]] = None,
        input_func: Callable[[str], str] = input,
        echo: Callable[[str], None] = print,
        which: Callable[[str], Optional[str]] = shutil.which,
    ):
        self.graph = graph
        self.registry = registry
        self.store = store
        self.supplied_variables = dict(variables or {})
        self.required_tools = list(required_tools)
        self.identity_provider = identity_provider
        self.input_func = input_func
        self.echo = echo
        self.which = which
        self.planner = Planner(graph, registry)
        self.identity: Optional[Dict[str, Any]] = None

    # =========================================================================
    # Preflight
    # =========================================================================

    def check_prerequisites(self) -> None:
        """Raise MissingToolError for the first required tool not on PATH."""
        for tool in self.required_tools:
            if self.which(tool) is None:
                logger.error("Required tool not found", tool=tool)
                raise MissingToolError(tool)
        logger.info("Prerequisites satisfied", tools=self.required_tools)

    def verify_identity(self) -> Dict[str, Any]:
        if self.identity_provider is None:
            logger.error("No identity check configured")
            raise UnauthenticatedError("Cannot confirm the operator identity: no identity check is configured")
        try:
            self.identity = self.identity_provider()
        except ProviderCommandError as e:
            logger.error("Identity check failed", error=e.message)
            raise UnauthenticatedError(details={"stderr": e.stderr})
        if not self.identity:
            raise UnauthenticatedError()
        logger.info("Operator identity verified", account=self.identity.get("Account"))
        return self.identity

    def _prompt_variable(self, declaration: VariableDeclaration) -> Any:
        label = declaration.description or declaration.name
        try:
            return self.input_func(f"{label}: ")
        except EOFError:
            return None

    def resolve_variables(self) -> Dict[str, Any]:
        return resolve_variables(
            self.graph.variables, self.supplied_variables, prompt=self._prompt_variable
        )

    # =========================================================================
    # Plan / confirm / apply
    # =========================================================================

    def plan(
        self,
        state: StateDocument,
        replace: Iterable[str] = (),
        destroy: bool = False,
    ) -> Plan:
        variables = {} if destroy else self.resolve_variables()
        return self.planner.plan(state, variables, replace=replace, destroy=destroy)

    def confirm(self, prompt: str = DEPLOY_PROMPT, cancel_message: str = "Deployment cancelled") -> None:
        """Ask once; anything but an affirmative answer aborts.

        Raises:
            OperatorAbortedError: on a non-affirmative answer or EOF.
        """
        try:
            answer = self.input_func(prompt)
        except EOFError:
            raise OperatorAbortedError(cancel_message, answer=None)
        if answer.strip().lower() not in AFFIRMATIVE_ANSWERS:
            logger.info("Operator declined", answer=answer.strip())
            raise OperatorAbortedError(cancel_message, answer=answer.strip())

    def _on_status(self, address: str, status: ResourceStatus) -> None:
        if status in (ResourceStatus.APPLYING, ResourceStatus.APPLIED, ResourceStatus.FAILED):
            self.echo(f"  {address:<55} {status_icon(status)}")

    def _applier(self) -> Applier:
        return Applier(self.graph, self.registry, self.store.save, on_status=self._on_status)

    def apply(self, plan: Plan, state: StateDocument, variables: Mapping[str, Any]) -> ApplyReport:
        return self._applier().apply(plan, state, variables)

    def _run(
        self, replace: Iterable[str], destroy: bool, prompt: str, cancel_message: str
    ) -> Optional[ApplyReport]:
        self.check_prerequisites()
        self.verify_identity()

        with self.store.lock():
            state = self.store.load()
            variables = {} if destroy else self.resolve_variables()
            plan = self.planner.plan(state, variables, replace=replace, destroy=destroy)
            self.echo(render_plan(plan))

            if plan.is_empty:
                if not destroy and state.resources:
                    previous = dict(state.outputs)
                    self._applier().record_outputs(state, variables)
                    if state.outputs != previous:
                        self.store.save(state)
                return None

            self.echo("")
            self.confirm(prompt, cancel_message)
            self.echo("")
            self.echo(colored("Applying changes...", Colors.BOLD))
            return self.apply(plan, state, variables)

    def deploy(self, replace: Iterable[str] = ()) -> Optional[ApplyReport]:
        """Converge the deployment; returns None when nothing changed."""
        return self._run(replace, False, DEPLOY_PROMPT, "Deployment cancelled")

    def destroy(self) -> Optional[ApplyReport]:
        return self._run((), True, DESTROY_PROMPT, "Destroy cancelled")

    def preview(self, replace: Iterable[str] = (), destroy: bool = False) -> Plan:
        """Compute and render a plan without prompting or mutating anything."""
        self.check_prerequisites()
        self.verify_identity()
        with self.store.lock():
            plan = self.plan(self.store.load(), replace=replace, destroy=destroy)
        self.echo(render_plan(plan))
        return plan

    def outputs(self) -> StateDocument:
        return self.store.load()
