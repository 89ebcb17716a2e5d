"""
Unit tests for the SonarQube stack declaration.
"""

import pytest

from provisioner.core.config import Settings
from provisioner.models import Action, Coalesce, StateDocument
from provisioner.providers.docker import build_registry
from provisioner.services.evaluator import resolve_variables
from provisioner.services.planner import Planner
from provisioner.stacks.sonarqube import (
    HEALTH_CHECK_PATH,
    SONARQUBE_PORT,
    build_sonarqube_graph,
    image_tag,
    subnet_cidrs,
    variable_values_from_settings,
)


@pytest.fixture
def config():
    return Settings(_env_file=None, PROJECT_NAME="sonarqube", ENVIRONMENT="dev", AWS_REGION="us-east-1")


@pytest.fixture
def graph(config):
    return build_sonarqube_graph(config)


@pytest.fixture
def initial_plan(config, graph):
    variables = resolve_variables(graph.variables, variable_values_from_settings(config))
    return Planner(graph, build_registry(config)).plan(StateDocument(), variables)


class TestHelpers:
    """Tests for the naming and address helpers."""

    @pytest.mark.unit
    def test_subnet_cidrs(self):
        assert subnet_cidrs("10.0.0.0/16") == [
            "10.0.0.0/24",
            "10.0.1.0/24",
            "10.0.2.0/24",
            "10.0.3.0/24",
        ]

    @pytest.mark.unit
    def test_image_tag(self):
        assert image_tag("sonarqube:community") == "community"
        assert image_tag("sonarqube") == "latest"
        assert image_tag("registry.example.com:5000/sonarqube") == "latest"


class TestGraph:
    """Tests for the declared topology."""

    @pytest.mark.unit
    def test_graph_validates(self, graph):
        graph.validate()
        assert len(graph) == 27

    @pytest.mark.unit
    def test_dependency_order(self, graph):
        order = graph.topological_order()

        def before(first, second):
            return order.index(first) < order.index(second)

        assert before("aws_vpc.main", "aws_subnet.public_a")
        assert before("random_password.db", "aws_db_instance.main")
        assert before("aws_db_instance.main", "aws_ecs_task_definition.sonarqube")
        assert before("aws_secretsmanager_secret_version.db_password", "aws_ecs_task_definition.sonarqube")
        assert before("docker_registry_image.sonarqube", "aws_ecs_task_definition.sonarqube")
        assert before("aws_lb_listener.http", "aws_ecs_service.sonarqube")
        assert order[-1] == "aws_ecs_service.sonarqube"

    @pytest.mark.unit
    def test_health_check(self, graph):
        target_group = graph.get("aws_lb_target_group.sonarqube").attributes
        assert target_group["port"] == SONARQUBE_PORT
        assert target_group["health_check"]["path"] == HEALTH_CHECK_PATH
        assert target_group["health_check"]["matcher"] == "200"
        assert graph.get("aws_lb_listener.http").attributes["port"] == 80

    @pytest.mark.unit
    def test_password_prefers_supplied_value(self, graph):
        password = graph.get("aws_db_instance.main").attributes["password"]
        assert isinstance(password, Coalesce)
        assert str(password.options[0]) == "var.db_password"
        assert str(password.options[1]) == "random_password.db.result"
        assert graph.variables["db_password"].sensitive

    @pytest.mark.unit
    def test_task_receives_secret_reference_only(self, graph):
        """Test that the container gets the secret ARN, not the password."""
        container = graph.get("aws_ecs_task_definition.sonarqube").attributes["container_definitions"][0]
        assert [s["name"] for s in container["secrets"]] == ["SONAR_JDBC_PASSWORD"]
        assert str(container["secrets"][0]["valueFrom"]) == "aws_secretsmanager_secret.db_password.arn"
        assert "SONAR_JDBC_PASSWORD" not in [e["name"] for e in container["environment"]]

    @pytest.mark.unit
    def test_outputs(self, graph):
        assert set(graph.outputs) == {
            "sonarqube_url",
            "database_endpoint",
            "ecs_cluster_name",
            "database_secret_arn",
            "database_password_command",
            "ecr_repository_url",
        }

    @pytest.mark.unit
    def test_database_is_private(self, graph):
        database = graph.get("aws_db_instance.main").attributes
        assert database["publicly_accessible"] is False
        assert database["storage_encrypted"] is True
        subnets = graph.get("aws_db_subnet_group.main").attributes["subnet_ids"]
        assert [str(s) for s in subnets] == ["aws_subnet.private_a.id", "aws_subnet.private_b.id"]

    @pytest.mark.unit
    def test_production_keeps_final_snapshot(self):
        production = build_sonarqube_graph(Settings(_env_file=None, ENVIRONMENT="prod"))
        assert production.get("aws_db_instance.main").attributes["skip_final_snapshot"] is False

    @pytest.mark.unit
    def test_dev_skips_final_snapshot(self, graph):
        assert graph.get("aws_db_instance.main").attributes["skip_final_snapshot"] is True


class TestInitialPlan:
    """Tests for planning the stack against empty state."""

    @pytest.mark.unit
    def test_everything_created(self, initial_plan, graph):
        assert initial_plan.summary() == {"add": len(graph), "change": 0, "destroy": 0}
        assert {c.action for c in initial_plan.changes} == {Action.CREATE}

    @pytest.mark.unit
    def test_password_marked_sensitive(self, initial_plan):
        database = initial_plan.change_for("aws_db_instance.main")
        assert "password" in database.sensitive
        version = initial_plan.change_for("aws_secretsmanager_secret_version.db_password")
        assert "secret_string" in version.sensitive

    @pytest.mark.unit
    def test_names_use_prefix(self, initial_plan):
        assert initial_plan.change_for("aws_vpc.main").after["tags"]["Name"] == "sonarqube-dev-vpc"
        assert initial_plan.change_for("aws_lb.main").after["name"] == "sonarqube-dev-alb"
        assert initial_plan.change_for("aws_ecs_cluster.main").after["name"] == "sonarqube-dev-cluster"
