"""Operator-facing rendering of plans, apply progress and outputs."""

import json
from typing import Any, Dict, List, Mapping

from provisioner.models.plan import Action, Plan, ResourceChange, ResourceStatus
from provisioner.models.state import OutputState
from provisioner.services.planner import describe_change


# ANSI color codes
class Colors:
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    BLUE = "\033[94m"
    BOLD = "\033[1m"
    END = "\033[0m"


def colored(text: str, color: str) -> str:
    """Return colored text."""
    return f"{color}{text}{Colors.END}"


MARKERS = {
    Action.CREATE: ("+", Colors.GREEN),
    Action.UPDATE: ("~", Colors.YELLOW),
    Action.REPLACE: ("-/+", Colors.RED),
    Action.DELETE: ("-", Colors.RED),
}


def status_icon(status: ResourceStatus) -> str:
    """Return colored status with icon."""
    if status == ResourceStatus.APPLIED:
        return colored("APPLIED ✓", Colors.GREEN)
    elif status == ResourceStatus.APPLYING:
        return colored("APPLYING ...", Colors.BLUE)
    elif status == ResourceStatus.FAILED:
        return colored("FAILED ✗", Colors.RED)
    elif status == ResourceStatus.PENDING:
        return colored("PENDING", Colors.YELLOW)
    return str(status.value)


def format_value(value: Any) -> str:
    if isinstance(value, str):
        if value.startswith("(") and value.endswith(")"):
            return value
        return json.dumps(value)
    return json.dumps(value, sort_keys=True, default=str)


def render_change(change: ResourceChange) -> List[str]:
    marker, color = MARKERS[change.action]
    header = f"  {colored(marker, color)} {change.address}"
    reason = describe_change(change)
    if reason:
        header += colored(f" ({reason})", Colors.YELLOW)
    lines = [header]

    if change.action == Action.CREATE:
        for key in sorted(change.after):
            lines.append(f"      {key} = {format_value(change.after[key])}")
    elif change.action in (Action.UPDATE, Action.REPLACE):
        for key in change.changed:
            note = colored(" # forces replacement", Colors.RED) if key in change.forces_replacement else ""
            before = format_value(change.before.get(key))
            after = format_value(change.after.get(key))
            lines.append(f"      {key}: {before} -> {after}{note}")
    return lines


def render_plan(plan: Plan) -> str:
    """Terraform-style listing of pending changes plus a summary line."""
    if plan.is_empty:
        return colored("No changes. Infrastructure is up to date.", Colors.GREEN)

    lines = []
    for change in plan.pending_changes:
        lines.extend(render_change(change))
    summary = plan.summary()
    lines.append("")
    lines.append(
        colored(
            f"Plan: {summary['add']} to add, {summary['change']} to change, "
            f"{summary['destroy']} to destroy.",
            Colors.BOLD,
        )
    )
    return "\n".join(lines)


def render_statuses(statuses: Mapping[str, Any]) -> str:
    lines = []
    for address, status in statuses.items():
        lines.append(f"  {address:<55} {status_icon(ResourceStatus(status))}")
    return "\n".join(lines)


def render_outputs(outputs: Mapping[str, OutputState]) -> str:
    if not outputs:
        return "No outputs recorded."
    width = max(len(name) for name in outputs)
    lines = []
    for name, output in outputs.items():
        value = "(sensitive value)" if output.sensitive else output.value
        lines.append(f"  {name:<{width}} = {colored(str(value), Colors.BLUE)}")
    return "\n".join(lines)


def outputs_as_dict(outputs: Mapping[str, OutputState]) -> Dict[str, Any]:
    return {name: None if o.sensitive else o.value for name, o in outputs.items()}
