"""Resource graph: declarations plus the dependency edges between them."""

from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from provisioner.core.exceptions import PlanComputationError, ReferenceCycleError
from provisioner.models.expressions import walk, VarRef
from provisioner.models.resource import (
    OutputDeclaration,
    ResourceDeclaration,
    VariableDeclaration,
)


def topological_sort(
    nodes: Sequence[str], edges: Mapping[str, Iterable[str]]
) -> List[str]:
    """Order nodes so every node comes after the nodes it depends on.

    ``edges[node]`` lists the dependencies of ``node``. Ties are broken by
    the position in ``nodes`` so the result is deterministic. Dependencies
    that are not in ``nodes`` are ignored.

    Raises:
        ReferenceCycleError: if the dependencies contain a cycle.
    """
    position = {node: index for index, node in enumerate(nodes)}
    remaining = {
        node: {dep for dep in edges.get(node, ()) if dep in position and dep != node}
        for node in nodes
    }
    for node in nodes:
        if node in edges.get(node, ()):
            raise ReferenceCycleError([node, node])

    dependents: Dict[str, List[str]] = {node: [] for node in nodes}
    for node, deps in remaining.items():
        for dep in deps:
            dependents[dep].append(node)

    ready = sorted((n for n, deps in remaining.items() if not deps), key=position.get)
    order: List[str] = []
    while ready:
        node = ready.pop(0)
        order.append(node)
        for dependent in dependents[node]:
            remaining[dependent].discard(node)
            if not remaining[dependent]:
                ready.append(dependent)
        ready.sort(key=position.get)

    if len(order) != len(nodes):
        blocked = [n for n in nodes if remaining[n]]
        raise ReferenceCycleError(_find_cycle(blocked, remaining))
    return order


def _find_cycle(blocked: List[str], remaining: Mapping[str, Iterable[str]]) -> List[str]:
    """Walk unresolved dependencies until a node repeats."""
    path: List[str] = []
    node = blocked[0]
    while node not in path:
        path.append(node)
        node = sorted(remaining[node])[0]
    return path[path.index(node):] + [node]


class ResourceGraph:
    """Named, interdependent resource declarations with variables and outputs."""

    def __init__(
        self,
        resources: Iterable[ResourceDeclaration] = (),
        variables: Iterable[VariableDeclaration] = (),
        outputs: Iterable[OutputDeclaration] = (),
    ):
        self.resources: Dict[str, ResourceDeclaration] = {}
        self.variables: Dict[str, VariableDeclaration] = {}
        self.outputs: Dict[str, OutputDeclaration] = {}
        for variable in variables:
            self.add_variable(variable)
        for resource in resources:
            self.add_resource(resource)
        for output in outputs:
            self.add_output(output)

    def add_resource(self, resource: ResourceDeclaration) -> ResourceDeclaration:
        if resource.address in self.resources:
            raise PlanComputationError(
                f"Duplicate resource declaration: {resource.address}",
                {"address": resource.address},
            )
        self.resources[resource.address] = resource
        return resource

    def add_variable(self, variable: VariableDeclaration) -> VariableDeclaration:
        if variable.name in self.variables:
            raise PlanComputationError(
                f"Duplicate variable declaration: {variable.name}",
                {"variable": variable.name},
            )
        self.variables[variable.name] = variable
        return variable

    def add_output(self, output: OutputDeclaration) -> OutputDeclaration:
        if output.name in self.outputs:
            raise PlanComputationError(
                f"Duplicate output declaration: {output.name}",
                {"output": output.name},
            )
        self.outputs[output.name] = output
        return output

    def get(self, address: str) -> Optional[ResourceDeclaration]:
        return self.resources.get(address)

    def dependencies(self, address: str) -> List[str]:
        return self.resources[address].references()

    def edges(self) -> Dict[str, List[str]]:
        return {address: decl.references() for address, decl in self.resources.items()}

    def validate(self) -> None:
        """Check references resolve and the graph is acyclic.

        Raises:
            PlanComputationError: on unknown resource or variable references.
            ReferenceCycleError: on a reference cycle.
        """
        for address, decl in self.resources.items():
            for target in decl.references():
                if target not in self.resources:
                    raise PlanComputationError(
                        f"{address} references undeclared resource {target}",
                        {"address": address, "reference": target},
                    )
            for name in decl.variable_names():
                if name not in self.variables:
                    raise PlanComputationError(
                        f"{address} references undeclared variable {name}",
                        {"address": address, "variable": name},
                    )

        for output in self.outputs.values():
            for item in walk(output.value):
                if isinstance(item, VarRef):
                    if item.name not in self.variables:
                        raise PlanComputationError(
                            f"Output {output.name} references undeclared variable {item.name}",
                            {"output": output.name, "variable": item.name},
                        )
                elif item.address not in self.resources:
                    raise PlanComputationError(
                        f"Output {output.name} references undeclared resource {item.address}",
                        {"output": output.name, "reference": item.address},
                    )

        self.topological_order()

    def topological_order(self) -> List[str]:
        """Resource addresses ordered so dependencies come first."""
        return topological_sort(list(self.resources), self.edges())

    def __len__(self) -> int:
        return len(self.resources)

    def __contains__(self, address: str) -> bool:
        return address in self.resources
