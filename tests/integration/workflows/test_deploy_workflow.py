"""
Integration tests for deployment workflows.

Tests complete deploy, failure recovery, re-plan and teardown flows
against the in-memory fake cloud.
"""

from typing import List

import pytest

from provisioner.core.exceptions import ApplyFailedError, OperatorAbortedError
from provisioner.models import InstanceStatus
from provisioner.services.driver import ProvisioningDriver


class Operator:
    """Scripted operator answering prompts in turn."""

    def __init__(self, *answers: str):
        self.answers = list(answers)
        self.prompts: List[str] = []

    def __call__(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self.answers:
            raise EOFError
        return self.answers.pop(0)


@pytest.fixture
def operator():
    return Operator("yes", "yes", "yes")


@pytest.fixture
def console():
    return []


@pytest.fixture
def driver(scenario_graph, fake_registry, state_store, operator, console):
    return ProvisioningDriver(
        graph=scenario_graph,
        registry=fake_registry,
        store=state_store,
        identity_provider=lambda: {"Account": "123456789012"},
        input_func=operator,
        echo=console.append,
        which=lambda tool: f"/usr/bin/{tool}",
    )


class TestDeployWorkflow:
    """Tests for a first deployment and its re-run."""

    @pytest.mark.integration
    def test_deploy_in_dependency_order(self, driver, fake_cloud, state_store):
        """Test that dependencies are created before their dependents."""
        report = driver.deploy()

        assert report.succeeded
        assert fake_cloud.calls_for("create") == ["segment-a", "database-d", "demo-service"]

        state = state_store.load()
        assert list(state.resources) == ["network_segment.a", "database.d", "service.s"]
        assert state.resources["database.d"].dependencies == ["network_segment.a"]
        assert state.outputs["endpoint"].value == state.resources["database.d"].attributes["endpoint"]
        assert state.outputs["service_name"].value == "demo-service"

    @pytest.mark.integration
    def test_second_deploy_is_noop(self, driver, fake_cloud, operator, console):
        """Test that an unchanged deployment neither prompts nor mutates."""
        driver.deploy()
        mutations = len(fake_cloud.mutating_calls)
        prompts = len(operator.prompts)

        assert driver.deploy() is None

        assert len(fake_cloud.mutating_calls) == mutations
        assert len(operator.prompts) == prompts
        assert any("No changes" in line for line in console)

    @pytest.mark.integration
    def test_variable_change_updates_in_place(self, driver, fake_cloud, state_store):
        driver.deploy()
        driver.supplied_variables = {"prefix": "renamed"}

        driver.deploy()

        assert fake_cloud.calls_for("update") == ["renamed-service"]
        assert fake_cloud.calls_for("delete") == []
        assert state_store.load().resources["service.s"].inputs["name"] == "renamed-service"

    @pytest.mark.integration
    def test_rendered_plan_hides_password(self, driver, console):
        """Test that the rendered plan hides the sensitive variable."""
        driver.deploy()
        assert not any("Sup3r-Secret!" in line for line in console)


class TestFailureRecovery:
    """Tests for a deployment failing partway through."""

    @pytest.mark.integration
    def test_failure_leaves_dependents_pending(self, driver, fake_cloud, state_store):
        """Test that a failed database leaves the service untouched."""
        fake_cloud.fail("create", "database")

        with pytest.raises(ApplyFailedError) as exc_info:
            driver.deploy()

        error = exc_info.value
        assert error.failed_address == "database.d"
        assert error.statuses["network_segment.a"] == "applied"
        assert error.statuses["database.d"] == "failed"
        assert error.statuses["service.s"] == "pending"
        assert "demo-service" not in fake_cloud.calls_for("create")

        state = state_store.load()
        assert list(state.resources) == ["network_segment.a"]
        assert not state_store.lock_path.exists()

    @pytest.mark.integration
    def test_rerun_completes_remaining_work(self, driver, fake_cloud, state_store):
        """Test that the next run creates only what is still missing."""
        fake_cloud.fail("create", "database")
        with pytest.raises(ApplyFailedError):
            driver.deploy()

        report = driver.deploy()

        assert report.succeeded
        assert fake_cloud.calls_for("create") == [
            "segment-a",
            "database-d",
            "database-d",
            "demo-service",
        ]
        assert set(state_store.load().resources) == {"network_segment.a", "database.d", "service.s"}

    @pytest.mark.integration
    def test_resource_vanished_out_of_band_is_recreated(self, driver, fake_cloud, state_store):
        driver.deploy()
        service_id = state_store.load().resources["service.s"].id
        fake_cloud.objects.pop(service_id)

        driver.deploy()

        assert fake_cloud.calls_for("create")[-1] == "demo-service"
        state = state_store.load()
        assert state.resources["service.s"].id != service_id
        assert state.resources["service.s"].status == InstanceStatus.READY


class TestConfirmationGate:
    """Tests for the operator confirmation gate."""

    @pytest.mark.integration
    def test_decline_makes_no_changes(self, scenario_graph, fake_registry, fake_cloud, state_store):
        """Test that declining the prompt leaves the cloud and state untouched."""
        driver = ProvisioningDriver(
            graph=scenario_graph,
            registry=fake_registry,
            store=state_store,
            identity_provider=lambda: {"Account": "123456789012"},
            input_func=Operator("no"),
            echo=lambda _line: None,
            which=lambda tool: f"/usr/bin/{tool}",
        )

        with pytest.raises(OperatorAbortedError) as exc_info:
            driver.deploy()

        assert exc_info.value.message == "Deployment cancelled"
        assert fake_cloud.mutating_calls == []
        assert not state_store.exists()
        assert not state_store.lock_path.exists()


class TestDestroyWorkflow:
    """Tests for tearing a deployment down."""

    @pytest.mark.integration
    def test_destroy_in_reverse_order(self, driver, fake_cloud, state_store):
        driver.deploy()

        report = driver.destroy()

        assert report.succeeded
        assert fake_cloud.calls_for("delete") == ["demo-service", "database-d", "segment-a"]
        assert fake_cloud.objects == {}
        state = state_store.load()
        assert state.resources == {}
        assert state.outputs == {}

    @pytest.mark.integration
    def test_destroy_with_nothing_deployed(self, driver, fake_cloud, operator):
        assert driver.destroy() is None
        assert operator.prompts == []
        assert fake_cloud.mutating_calls == []
