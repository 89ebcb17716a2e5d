"""Data model of the provisioner.

- expressions.py: attribute expressions (references, variables, joins)
- resource.py: resource, variable and output declarations
- graph.py: the resource graph and its topological ordering
- state.py: recorded live state
- plan.py: plans, plan steps and apply reports

Import from this module: `from provisioner.models import ResourceGraph`
"""

from provisioner.models.expressions import (
    Coalesce,
    Join,
    Ref,
    VarRef,
    coalesce,
    join,
    ref,
    var,
)
from provisioner.models.resource import (
    Lifecycle,
    OutputDeclaration,
    ResourceDeclaration,
    VariableDeclaration,
)
from provisioner.models.graph import ResourceGraph, topological_sort
from provisioner.models.state import (
    InstanceStatus,
    OutputState,
    ResourceState,
    StateDocument,
)
from provisioner.models.plan import (
    Action,
    ApplyReport,
    Operation,
    Plan,
    PlanStep,
    ResourceChange,
    ResourceStatus,
)

__all__ = [
    "Action",
    "ApplyReport",
    "Coalesce",
    "InstanceStatus",
    "Join",
    "Lifecycle",
    "Operation",
    "OutputDeclaration",
    "OutputState",
    "Plan",
    "PlanStep",
    "Ref",
    "ResourceChange",
    "ResourceDeclaration",
    "ResourceGraph",
    "ResourceState",
    "ResourceStatus",
    "StateDocument",
    "VarRef",
    "VariableDeclaration",
    "coalesce",
    "join",
    "ref",
    "topological_sort",
    "var",
]
