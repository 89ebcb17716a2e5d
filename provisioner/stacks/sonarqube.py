"""SonarQube on ECS Fargate behind an application load balancer.

Topology:

- VPC with two public subnets (load balancer and tasks) and two private
  subnets (database), an internet gateway and a public route table
- PostgreSQL 15 on RDS, with its password generated once and stored in
  Secrets Manager; the task only ever receives the secret ARN
- The public ``sonarqube`` image mirrored into a private ECR repository
- ECS cluster, task definition and Fargate service registered with the
  load balancer's target group
"""

import ipaddress
from typing import Any, Dict, List

from provisioner.core.config import Settings
from provisioner.models.expressions import coalesce, join, ref, var
from provisioner.models.graph import ResourceGraph
from provisioner.models.resource import (
    Lifecycle,
    OutputDeclaration,
    ResourceDeclaration,
    VariableDeclaration,
)
from provisioner.services.credentials import DEFAULT_SPECIAL

SONARQUBE_PORT = 9000
HTTP_PORT = 80
POSTGRES_PORT = 5432
POSTGRES_ENGINE_VERSION = "15"
DATABASE_NAME = "sonarqube"
CONTAINER_NAME = "sonarqube"
HEALTH_CHECK_PATH = "/api/system/status"

TASK_EXECUTION_POLICY_ARN = (
    "arn:aws:iam::aws:policy/service-role/AmazonECSTaskExecutionRolePolicy"
)


def name(suffix: str):
    """``<project>-<environment>-<suffix>`` as an expression."""
    return join(var("project_name"), "-", var("environment"), "-", suffix)


def tags(suffix: str) -> Dict[str, Any]:
    return {
        "Name": name(suffix),
        "Project": var("project_name"),
        "Environment": var("environment"),
        "ManagedBy": "sonar-provisioner",
    }


def subnet_cidrs(vpc_cidr: str) -> List[str]:
    """First four /24 networks of the VPC: two public, two private."""
    network = ipaddress.ip_network(vpc_cidr)
    subnets = network.subnets(new_prefix=24)
    return [str(next(subnets)) for _ in range(4)]


def image_tag(image: str) -> str:
    last = image.rsplit("/", 1)[-1]
    return last.split(":", 1)[1] if ":" in last else "latest"


def declare_variables(config: Settings) -> List[VariableDeclaration]:
    return [
        VariableDeclaration(name="aws_region", default=config.AWS_REGION, description="AWS region"),
        VariableDeclaration(name="project_name", default=config.PROJECT_NAME, description="Resource name prefix"),
        VariableDeclaration(name="environment", default=config.ENVIRONMENT, description="Environment name"),
        VariableDeclaration(
            name="db_password",
            nullable=True,
            sensitive=True,
            description="Database password (generated when not supplied)",
        ),
        VariableDeclaration(name="db_username", default=config.DB_USERNAME),
        VariableDeclaration(name="db_instance_class", default=config.DB_INSTANCE_CLASS),
        VariableDeclaration(name="db_allocated_storage", type="number", default=config.DB_ALLOCATED_STORAGE),
        VariableDeclaration(name="sonarqube_image", default=config.SONARQUBE_IMAGE),
        VariableDeclaration(name="task_cpu", type="number", default=config.TASK_CPU),
        VariableDeclaration(name="task_memory", type="number", default=config.TASK_MEMORY),
        VariableDeclaration(name="desired_count", type="number", default=config.DESIRED_COUNT),
    ]


def declare_network(config: Settings) -> List[ResourceDeclaration]:
    public_a, public_b, private_a, private_b = subnet_cidrs(config.VPC_CIDR)

    def subnet(resource_name: str, cidr: str, zone: str, public: bool) -> ResourceDeclaration:
        return ResourceDeclaration(
            kind="aws_subnet",
            name=resource_name,
            attributes={
                "vpc_id": ref("aws_vpc.main"),
                "cidr_block": cidr,
                "availability_zone": join(var("aws_region"), zone),
                "map_public_ip_on_launch": public,
                "tags": tags(resource_name.replace("_", "-")),
            },
        )

    return [
        ResourceDeclaration(
            kind="aws_vpc",
            name="main",
            attributes={
                "cidr_block": config.VPC_CIDR,
                "enable_dns_support": True,
                "enable_dns_hostnames": True,
                "tags": tags("vpc"),
            },
        ),
        subnet("public_a", public_a, "a", True),
        subnet("public_b", public_b, "b", True),
        subnet("private_a", private_a, "a", False),
        subnet("private_b", private_b, "b", False),
        ResourceDeclaration(
            kind="aws_internet_gateway",
            name="main",
            attributes={"vpc_id": ref("aws_vpc.main"), "tags": tags("igw")},
        ),
        ResourceDeclaration(
            kind="aws_route_table",
            name="public",
            attributes={
                "vpc_id": ref("aws_vpc.main"),
                "routes": [
                    {"cidr_block": "0.0.0.0/0", "gateway_id": ref("aws_internet_gateway.main")}
                ],
                "subnet_ids": [ref("aws_subnet.public_a"), ref("aws_subnet.public_b")],
                "tags": tags("public-rt"),
            },
        ),
        ResourceDeclaration(
            kind="aws_security_group",
            name="alb",
            attributes={
                "name": name("alb-sg"),
                "description": "SonarQube load balancer",
                "vpc_id": ref("aws_vpc.main"),
                "ingress": [
                    {"from_port": HTTP_PORT, "to_port": HTTP_PORT, "cidr_blocks": ["0.0.0.0/0"]}
                ],
                "tags": tags("alb-sg"),
            },
        ),
        ResourceDeclaration(
            kind="aws_security_group",
            name="ecs",
            attributes={
                "name": name("ecs-sg"),
                "description": "SonarQube tasks",
                "vpc_id": ref("aws_vpc.main"),
                "ingress": [
                    {
                        "from_port": SONARQUBE_PORT,
                        "to_port": SONARQUBE_PORT,
                        "security_groups": [ref("aws_security_group.alb")],
                    }
                ],
                "tags": tags("ecs-sg"),
            },
        ),
        ResourceDeclaration(
            kind="aws_security_group",
            name="rds",
            attributes={
                "name": name("rds-sg"),
                "description": "SonarQube database",
                "vpc_id": ref("aws_vpc.main"),
                "ingress": [
                    {
                        "from_port": POSTGRES_PORT,
                        "to_port": POSTGRES_PORT,
                        "security_groups": [ref("aws_security_group.ecs")],
                    }
                ],
                "tags": tags("rds-sg"),
            },
        ),
    ]


def declare_database(config: Settings) -> List[ResourceDeclaration]:
    password = coalesce(var("db_password"), ref("random_password.db", "result"))
    return [
        ResourceDeclaration(
            kind="aws_db_subnet_group",
            name="main",
            attributes={
                "name": name("db-subnets"),
                "description": "SonarQube database subnets",
                "subnet_ids": [ref("aws_subnet.private_a"), ref("aws_subnet.private_b")],
                "tags": tags("db-subnets"),
            },
        ),
        ResourceDeclaration(
            kind="random_password",
            name="db",
            attributes={"length": 32, "special": True, "override_special": DEFAULT_SPECIAL},
        ),
        ResourceDeclaration(
            kind="aws_db_instance",
            name="main",
            attributes={
                "identifier": name("db"),
                "engine": "postgres",
                "engine_version": POSTGRES_ENGINE_VERSION,
                "instance_class": var("db_instance_class"),
                "allocated_storage": var("db_allocated_storage"),
                "storage_type": "gp3",
                "storage_encrypted": True,
                "db_name": DATABASE_NAME,
                "username": var("db_username"),
                "password": password,
                "db_subnet_group_name": ref("aws_db_subnet_group.main", "name"),
                "vpc_security_group_ids": [ref("aws_security_group.rds")],
                "publicly_accessible": False,
                "backup_retention_period": 7,
                "skip_final_snapshot": not config.is_production,
                "tags": tags("db"),
            },
        ),
        ResourceDeclaration(
            kind="aws_secretsmanager_secret",
            name="db_password",
            attributes={
                "name": name("db-password"),
                "description": "SonarQube database password",
                "recovery_window_in_days": 0,
                "tags": tags("db-password"),
            },
        ),
        ResourceDeclaration(
            kind="aws_secretsmanager_secret_version",
            name="db_password",
            attributes={
                "secret_id": ref("aws_secretsmanager_secret.db_password", "arn"),
                "secret_string": password,
            },
        ),
    ]


def declare_iam_and_logging() -> List[ResourceDeclaration]:
    return [
        ResourceDeclaration(
            kind="aws_cloudwatch_log_group",
            name="sonarqube",
            attributes={
                "name": join("/ecs/", var("project_name"), "-", var("environment")),
                "retention_in_days": 7,
                "tags": tags("logs"),
            },
        ),
        ResourceDeclaration(
            kind="aws_iam_role",
            name="ecs_task_execution",
            attributes={
                "name": name("ecs-task-execution"),
                "assume_role_policy": {
                    "Version": "2012-10-17",
                    "Statement": [
                        {
                            "Effect": "Allow",
                            "Principal": {"Service": "ecs-tasks.amazonaws.com"},
                            "Action": "sts:AssumeRole",
                        }
                    ],
                },
                "tags": tags("ecs-task-execution"),
            },
        ),
        ResourceDeclaration(
            kind="aws_iam_role_policy_attachment",
            name="ecs_task_execution",
            attributes={
                "role": ref("aws_iam_role.ecs_task_execution", "name"),
                "policy_arn": TASK_EXECUTION_POLICY_ARN,
            },
        ),
        ResourceDeclaration(
            kind="aws_iam_role_policy",
            name="ecs_secrets",
            attributes={
                "role": ref("aws_iam_role.ecs_task_execution", "name"),
                "name": "secrets-access",
                "policy": {
                    "Version": "2012-10-17",
                    "Statement": [
                        {
                            "Effect": "Allow",
                            "Action": ["secretsmanager:GetSecretValue"],
                            "Resource": [ref("aws_secretsmanager_secret.db_password", "arn")],
                        }
                    ],
                },
            },
        ),
    ]


def declare_containers(config: Settings) -> List[ResourceDeclaration]:
    container = {
        "name": CONTAINER_NAME,
        "image": ref("docker_registry_image.sonarqube", "image_uri"),
        "essential": True,
        "portMappings": [{"containerPort": SONARQUBE_PORT, "protocol": "tcp"}],
        "environment": [
            {
                "name": "SONAR_JDBC_URL",
                "value": join(
                    "jdbc:postgresql://", ref("aws_db_instance.main", "endpoint"), "/", DATABASE_NAME
                ),
            },
            {"name": "SONAR_JDBC_USERNAME", "value": var("db_username")},
            {"name": "SONAR_ES_BOOTSTRAP_CHECKS_DISABLE", "value": "true"},
        ],
        "secrets": [
            {
                "name": "SONAR_JDBC_PASSWORD",
                "valueFrom": ref("aws_secretsmanager_secret.db_password", "arn"),
            }
        ],
        "ulimits": [{"name": "nofile", "softLimit": 65535, "hardLimit": 65535}],
        "logConfiguration": {
            "logDriver": "awslogs",
            "options": {
                "awslogs-group": ref("aws_cloudwatch_log_group.sonarqube", "name"),
                "awslogs-region": var("aws_region"),
                "awslogs-stream-prefix": CONTAINER_NAME,
            },
        },
        "healthCheck": {
            "command": [
                "CMD-SHELL",
                f"curl -f http://localhost:{SONARQUBE_PORT}{HEALTH_CHECK_PATH} || exit 1",
            ],
            "interval": 30,
            "timeout": 5,
            "retries": 3,
            "startPeriod": 300,
        },
    }

    return [
        ResourceDeclaration(
            kind="aws_ecr_repository",
            name="sonarqube",
            attributes={
                "name": join(var("project_name"), "-", var("environment")),
                "image_tag_mutability": "MUTABLE",
                "scan_on_push": True,
                "tags": tags("ecr"),
            },
        ),
        ResourceDeclaration(
            kind="docker_registry_image",
            name="sonarqube",
            attributes={
                "source_image": var("sonarqube_image"),
                "repository_url": ref("aws_ecr_repository.sonarqube", "repository_url"),
                "tag": image_tag(config.SONARQUBE_IMAGE),
            },
        ),
        ResourceDeclaration(
            kind="aws_ecs_cluster",
            name="main",
            attributes={"name": name("cluster"), "container_insights": True, "tags": tags("cluster")},
        ),
        ResourceDeclaration(
            kind="aws_ecs_task_definition",
            name="sonarqube",
            attributes={
                "family": name("sonarqube"),
                "network_mode": "awsvpc",
                "requires_compatibilities": ["FARGATE"],
                "cpu": var("task_cpu"),
                "memory": var("task_memory"),
                "execution_role_arn": ref("aws_iam_role.ecs_task_execution", "arn"),
                "container_definitions": [container],
                "tags": tags("sonarqube"),
            },
            depends_on=[
                "aws_iam_role_policy_attachment.ecs_task_execution",
                "aws_iam_role_policy.ecs_secrets",
                "aws_secretsmanager_secret_version.db_password",
            ],
            lifecycle=Lifecycle(create_before_destroy=True),
        ),
    ]


def declare_load_balancing() -> List[ResourceDeclaration]:
    return [
        ResourceDeclaration(
            kind="aws_lb",
            name="main",
            attributes={
                "name": name("alb"),
                "internal": False,
                "load_balancer_type": "application",
                "subnets": [ref("aws_subnet.public_a"), ref("aws_subnet.public_b")],
                "security_groups": [ref("aws_security_group.alb")],
                "tags": tags("alb"),
            },
            depends_on=["aws_route_table.public"],
        ),
        ResourceDeclaration(
            kind="aws_lb_target_group",
            name="sonarqube",
            attributes={
                "name": name("tg"),
                "port": SONARQUBE_PORT,
                "protocol": "HTTP",
                "vpc_id": ref("aws_vpc.main"),
                "target_type": "ip",
                "health_check": {
                    "path": HEALTH_CHECK_PATH,
                    "protocol": "HTTP",
                    "matcher": "200",
                    "interval": 30,
                    "timeout": 10,
                    "healthy_threshold": 2,
                    "unhealthy_threshold": 5,
                },
                "tags": tags("tg"),
            },
        ),
        ResourceDeclaration(
            kind="aws_lb_listener",
            name="http",
            attributes={
                "load_balancer_arn": ref("aws_lb.main", "arn"),
                "port": HTTP_PORT,
                "protocol": "HTTP",
                "default_action": {
                    "type": "forward",
                    "target_group_arn": ref("aws_lb_target_group.sonarqube", "arn"),
                },
            },
        ),
        ResourceDeclaration(
            kind="aws_ecs_service",
            name="sonarqube",
            attributes={
                "name": name("service"),
                "cluster": ref("aws_ecs_cluster.main", "name"),
                "task_definition": ref("aws_ecs_task_definition.sonarqube", "arn"),
                "desired_count": var("desired_count"),
                "launch_type": "FARGATE",
                "network_configuration": {
                    "subnets": [ref("aws_subnet.public_a"), ref("aws_subnet.public_b")],
                    "security_groups": [ref("aws_security_group.ecs")],
                    "assign_public_ip": True,
                },
                "load_balancers": [
                    {
                        "target_group_arn": ref("aws_lb_target_group.sonarqube", "arn"),
                        "container_name": CONTAINER_NAME,
                        "container_port": SONARQUBE_PORT,
                    }
                ],
                "health_check_grace_period_seconds": 300,
                "tags": tags("service"),
            },
            depends_on=["aws_lb_listener.http"],
        ),
    ]


def declare_outputs() -> List[OutputDeclaration]:
    return [
        OutputDeclaration(
            name="sonarqube_url",
            value=join("http://", ref("aws_lb.main", "dns_name")),
            description="URL of the SonarQube web interface",
        ),
        OutputDeclaration(
            name="database_endpoint",
            value=ref("aws_db_instance.main", "endpoint"),
            description="PostgreSQL endpoint (host:port)",
        ),
        OutputDeclaration(name="ecs_cluster_name", value=ref("aws_ecs_cluster.main", "name")),
        OutputDeclaration(
            name="database_secret_arn",
            value=ref("aws_secretsmanager_secret.db_password", "arn"),
        ),
        OutputDeclaration(
            name="database_password_command",
            value=join(
                "aws secretsmanager get-secret-value --secret-id ",
                ref("aws_secretsmanager_secret.db_password", "name"),
                " --region ",
                var("aws_region"),
                " --query SecretString --output text",
            ),
            description="Command that prints the database password",
        ),
        OutputDeclaration(
            name="ecr_repository_url",
            value=ref("aws_ecr_repository.sonarqube", "repository_url"),
        ),
    ]


def build_sonarqube_graph(config: Settings) -> ResourceGraph:
    """Declare the complete SonarQube deployment."""
    resources = (
        declare_network(config)
        + declare_database(config)
        + declare_iam_and_logging()
        + declare_containers(config)
        + declare_load_balancing()
    )
    return ResourceGraph(resources, declare_variables(config), declare_outputs())


def variable_values_from_settings(config: Settings) -> Dict[str, Any]:
    """Variable values supplied by the environment."""
    return {
        "aws_region": config.AWS_REGION,
        "project_name": config.PROJECT_NAME,
        "environment": config.ENVIRONMENT,
        "db_password": config.DB_PASSWORD,
        "db_username": config.DB_USERNAME,
        "db_instance_class": config.DB_INSTANCE_CLASS,
        "db_allocated_storage": config.DB_ALLOCATED_STORAGE,
        "sonarqube_image": config.SONARQUBE_IMAGE,
        "task_cpu": config.TASK_CPU,
        "task_memory": config.TASK_MEMORY,
        "desired_count": config.DESIRED_COUNT,
    }
