"""
Unit tests for the provisioning driver.

Tests preflight checks, the confirmation gate and the deploy / destroy flow.
"""

from unittest.mock import Mock

import pytest

from provisioner.core.exceptions import (
    ApplyFailedError,
    MissingToolError,
    OperatorAbortedError,
    PrerequisiteMissingError,
    ProviderCommandError,
    StateLockedError,
    UnauthenticatedError,
)
from provisioner.services.driver import ProvisioningDriver


def make_driver(graph, registry, store, answers=("yes",), which=None, identity=None, echo=None):
    answers = list(answers)

    def input_func(prompt):
        if not answers:
            raise EOFError
        return answers.pop(0)

    return ProvisioningDriver(
        graph=graph,
        registry=registry,
        store=store,
        required_tools=["aws", "docker"],
        identity_provider=identity or (lambda: {"Account": "123456789012"}),
        input_func=input_func,
        echo=echo or (lambda _line: None),
        which=which or (lambda tool: f"/usr/bin/{tool}"),
    )


class TestPreflight:
    """Tests for prerequisite and identity checks."""

    @pytest.mark.unit
    def test_missing_tool(self, scenario_graph, fake_registry, state_store):
        """Test that a missing executable is reported by name."""
        driver = make_driver(
            scenario_graph,
            fake_registry,
            state_store,
            which=lambda tool: None if tool == "docker" else f"/usr/bin/{tool}",
        )
        with pytest.raises(MissingToolError) as exc_info:
            driver.check_prerequisites()
        assert exc_info.value.tool == "docker"
        assert isinstance(exc_info.value, PrerequisiteMissingError)
        assert "docker is not installed" in exc_info.value.message

    @pytest.mark.unit
    def test_unauthenticated(self, scenario_graph, fake_registry, fake_cloud, state_store):
        """Test that a failed identity check aborts before any mutation."""
        identity = Mock(
            side_effect=ProviderCommandError(
                "sts failed", tool="aws", details={"stderr": "Unable to locate credentials"}
            )
        )
        driver = make_driver(scenario_graph, fake_registry, state_store, identity=identity)

        with pytest.raises(UnauthenticatedError) as exc_info:
            driver.deploy()

        assert "aws configure" in exc_info.value.message
        assert fake_cloud.calls == []

    @pytest.mark.unit
    def test_empty_identity_is_unauthenticated(self, scenario_graph, fake_registry, state_store):
        driver = make_driver(scenario_graph, fake_registry, state_store, identity=lambda: {})
        with pytest.raises(UnauthenticatedError):
            driver.verify_identity()

    @pytest.mark.unit
    def test_no_identity_check_is_unauthenticated(self, scenario_graph, fake_registry, fake_cloud, state_store):
        """Test that a driver without an identity check refuses to deploy."""
        driver = ProvisioningDriver(
            graph=scenario_graph,
            registry=fake_registry,
            store=state_store,
            input_func=lambda _prompt: "yes",
            echo=lambda _line: None,
            which=lambda tool: f"/usr/bin/{tool}",
        )

        with pytest.raises(UnauthenticatedError):
            driver.deploy()

        assert fake_cloud.mutating_calls == []
        assert not state_store.exists()


class TestConfirm:
    """Tests for the confirmation gate."""

    @pytest.mark.unit
    @pytest.mark.parametrize("answer", ["yes", "YES", "Yes", "  yes  "])
    def test_affirmative(self, scenario_graph, fake_registry, state_store, answer):
        driver = make_driver(scenario_graph, fake_registry, state_store, answers=[answer])
        driver.confirm()

    @pytest.mark.unit
    @pytest.mark.parametrize("answer", ["no", "y", "yess", "", "ok"])
    def test_anything_else_aborts(self, scenario_graph, fake_registry, state_store, answer):
        driver = make_driver(scenario_graph, fake_registry, state_store, answers=[answer])
        with pytest.raises(OperatorAbortedError) as exc_info:
            driver.confirm()
        assert exc_info.value.message == "Deployment cancelled"

    @pytest.mark.unit
    def test_eof_aborts(self, scenario_graph, fake_registry, state_store):
        driver = make_driver(scenario_graph, fake_registry, state_store, answers=[])
        with pytest.raises(OperatorAbortedError):
            driver.confirm()


class TestDeploy:
    """Tests for the deploy flow."""

    @pytest.mark.unit
    def test_declined_prompt_makes_no_mutating_calls(
        self, scenario_graph, fake_registry, fake_cloud, state_store
    ):
        """Test that answering no leaves the cloud and state untouched."""
        driver = make_driver(scenario_graph, fake_registry, state_store, answers=["no"])

        with pytest.raises(OperatorAbortedError):
            driver.deploy()

        assert fake_cloud.mutating_calls == []
        assert not state_store.exists()
        assert not state_store.lock_path.exists()

    @pytest.mark.unit
    def test_deploy_then_noop(self, scenario_graph, fake_registry, fake_cloud, state_store):
        """Test that a second deploy finds nothing to do and does not prompt."""
        lines = []
        driver = make_driver(
            scenario_graph, fake_registry, state_store, answers=["yes"], echo=lines.append
        )

        report = driver.deploy()
        assert report.succeeded
        assert len(fake_cloud.mutating_calls) == 3

        lines.clear()
        assert driver.deploy() is None
        assert len(fake_cloud.mutating_calls) == 3
        assert any("No changes" in line for line in lines)

    @pytest.mark.unit
    def test_apply_failure_propagates(self, scenario_graph, fake_registry, fake_cloud, state_store):
        fake_cloud.fail("create", "service")
        driver = make_driver(scenario_graph, fake_registry, state_store)

        with pytest.raises(ApplyFailedError) as exc_info:
            driver.deploy()

        assert exc_info.value.statuses["service.s"] == "failed"
        assert not state_store.lock_path.exists()

    @pytest.mark.unit
    def test_locked_state(self, scenario_graph, fake_registry, state_store):
        driver = make_driver(scenario_graph, fake_registry, state_store)
        with state_store.lock():
            with pytest.raises(StateLockedError):
                driver.deploy()

    @pytest.mark.unit
    def test_preview_does_not_prompt_or_mutate(
        self, scenario_graph, fake_registry, fake_cloud, state_store
    ):
        driver = make_driver(scenario_graph, fake_registry, state_store, answers=[])
        plan = driver.preview()
        assert len(plan.steps) == 3
        assert fake_cloud.mutating_calls == []


class TestDestroy:
    """Tests for the destroy flow."""

    @pytest.mark.unit
    def test_destroy_has_its_own_prompt(self, scenario_graph, fake_registry, fake_cloud, state_store):
        """Test that destroy asks again and deletes in reverse order."""
        prompts = []
        driver = make_driver(scenario_graph, fake_registry, state_store, answers=["yes", "yes"])
        original_input = driver.input_func
        driver.input_func = lambda prompt: prompts.append(prompt) or original_input(prompt)

        driver.deploy()
        driver.destroy()

        assert len(prompts) == 2
        assert "destroy" in prompts[1]
        assert fake_cloud.calls_for("delete") == ["demo-service", "database-d", "segment-a"]
        assert state_store.load().is_empty

    @pytest.mark.unit
    def test_destroy_declined(self, scenario_graph, fake_registry, fake_cloud, state_store):
        driver = make_driver(scenario_graph, fake_registry, state_store, answers=["yes", "no"])
        driver.deploy()

        with pytest.raises(OperatorAbortedError) as exc_info:
            driver.destroy()

        assert exc_info.value.message == "Destroy cancelled"
        assert fake_cloud.calls_for("delete") == []
