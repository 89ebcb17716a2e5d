"""
Unit tests for state-only resources.
"""

import pytest

from provisioner.core.exceptions import PlanComputationError
from provisioner.models import ResourceDeclaration, ResourceGraph, StateDocument
from provisioner.providers.local import RandomPasswordHandler
from provisioner.services.credentials import is_valid_password
from provisioner.services.evaluator import UNKNOWN
from provisioner.services.planner import Planner


class TestRandomPasswordHandler:
    """Tests for RandomPasswordHandler."""

    @pytest.mark.unit
    def test_create(self):
        resource_id, attributes = RandomPasswordHandler().create({"length": 24})
        assert len(attributes["result"]) == 24
        assert is_valid_password(attributes["result"], 24)
        assert attributes["result"] not in resource_id

    @pytest.mark.unit
    @pytest.mark.parametrize("length", [4, 7, 129])
    def test_validate_rejects_length(self, length):
        with pytest.raises(PlanComputationError) as exc_info:
            RandomPasswordHandler().validate({"length": length})
        assert exc_info.value.details["length"] == length

    @pytest.mark.unit
    @pytest.mark.parametrize("inputs", [{}, {"length": 8}, {"length": 128}, {"length": UNKNOWN}])
    def test_validate_accepts(self, inputs):
        RandomPasswordHandler().validate(inputs)

    @pytest.mark.unit
    def test_bad_length_fails_at_plan_time(self, fake_registry, fake_cloud):
        """Test that an impossible length is rejected before anything is created."""
        graph = ResourceGraph(
            [
                ResourceDeclaration(kind="network_segment", name="a", attributes={"name": "segment-a"}),
                ResourceDeclaration(kind="random_password", name="db", attributes={"length": 4}),
            ]
        )

        with pytest.raises(PlanComputationError, match="between 8 and 128"):
            Planner(graph, fake_registry).plan(StateDocument(), {})

        assert fake_cloud.mutating_calls == []
