"""
Unit tests for plan and output rendering.
"""

import pytest

from provisioner.models import Action, Plan, PlanStep, ResourceChange, ResourceStatus
from provisioner.models.plan import Operation
from provisioner.models.state import OutputState
from provisioner.services.console import render_outputs, render_plan, render_statuses


def change(address, action, **kwargs):
    return ResourceChange(address=address, kind=address.split(".")[0], action=action, **kwargs)


class TestRenderPlan:
    """Tests for render_plan."""

    @pytest.mark.unit
    def test_empty_plan(self):
        assert "No changes" in render_plan(Plan())

    @pytest.mark.unit
    def test_markers_and_summary(self):
        """Test the +, ~, -/+ and - markers and the summary line."""
        plan = Plan(
            changes=[
                change("thing.new", Action.CREATE, after={"name": "n"}),
                change("thing.upd", Action.UPDATE, before={"size": 1}, after={"size": 2}, changed=["size"]),
                change(
                    "thing.rep",
                    Action.REPLACE,
                    before={"cidr": "a"},
                    after={"cidr": "b"},
                    changed=["cidr"],
                    forces_replacement=["cidr"],
                ),
                change("thing.old", Action.DELETE),
                change("thing.same", Action.NOOP),
            ],
            steps=[PlanStep(address="thing.new", kind="thing", operation=Operation.CREATE)],
        )

        text = render_plan(plan)

        assert "+\033[0m thing.new" in text
        assert "~\033[0m thing.upd" in text
        assert "-/+\033[0m thing.rep" in text
        assert "-\033[0m thing.old" in text
        assert "thing.same" not in text
        assert "forces replacement" in text
        assert "Plan: 2 to add, 1 to change, 2 to destroy." in text

    @pytest.mark.unit
    def test_sensitive_placeholder_not_quoted(self):
        plan = Plan(
            changes=[change("thing.db", Action.CREATE, after={"password": "(sensitive value)"})],
            steps=[PlanStep(address="thing.db", kind="thing", operation=Operation.CREATE)],
        )
        assert "password = (sensitive value)" in render_plan(plan)


class TestRenderOutputs:
    """Tests for output and status rendering."""

    @pytest.mark.unit
    def test_sensitive_outputs_hidden(self):
        text = render_outputs(
            {
                "url": OutputState(value="http://example"),
                "password": OutputState(value="s3cret", sensitive=True),
            }
        )
        assert "http://example" in text
        assert "s3cret" not in text

    @pytest.mark.unit
    def test_no_outputs(self):
        assert render_outputs({}) == "No outputs recorded."

    @pytest.mark.unit
    def test_statuses(self):
        text = render_statuses({"thing.a": "applied", "thing.b": ResourceStatus.PENDING})
        assert "APPLIED" in text
        assert "PENDING" in text
