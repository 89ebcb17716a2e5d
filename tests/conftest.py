"""
Pytest configuration and fixtures for the test suite.

This module provides shared fixtures for unit and integration tests,
including an in-memory fake cloud that records every provider call.
"""

import os
from typing import Any, Dict, List, Optional, Tuple

import pytest
from faker import Faker

# Set test environment before importing provisioner modules
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("AWS_REGION", "us-east-1")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from provisioner.core.exceptions import ProviderCommandError  # noqa: E402
from provisioner.models import (  # noqa: E402
    OutputDeclaration,
    ResourceDeclaration,
    ResourceGraph,
    VariableDeclaration,
    join,
    ref,
    var,
)
from provisioner.providers.base import ProviderRegistry, ResourceHandler  # noqa: E402
from provisioner.providers.local import RandomPasswordHandler  # noqa: E402
from provisioner.services.state_store import StateStore  # noqa: E402

fake = Faker()

MUTATING_OPERATIONS = ("create", "update", "delete")


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (workflows)")
    config.addinivalue_line("markers", "slow: Slow running tests")


# =============================================================================
# Fake Cloud
# =============================================================================

class FakeCloud:
    """In-memory stand-in for a cloud control plane."""

    def __init__(self):
        self.objects: Dict[str, Dict[str, Any]] = {}
        self.calls: List[Tuple[str, str, str]] = []
        self.failures: Dict[Tuple[str, str], Exception] = {}
        self._counter = 0

    def next_id(self, kind: str) -> str:
        self._counter += 1
        return f"{kind}-{self._counter:04d}"

    def fail(self, operation: str, kind: str, error: Optional[Exception] = None) -> None:
        """Make the next ``operation`` on ``kind`` raise."""
        self.failures[(operation, kind)] = error or ProviderCommandError(
            f"{operation} {kind} failed", tool="fake", details={"stderr": "InternalFailure"}
        )

    def check(self, operation: str, kind: str) -> None:
        error = self.failures.pop((operation, kind), None)
        if error is not None:
            raise error

    @property
    def mutating_calls(self) -> List[Tuple[str, str, str]]:
        return [c for c in self.calls if c[0] in MUTATING_OPERATIONS]

    def calls_for(self, operation: str) -> List[str]:
        return [address for op, _kind, address in self.calls if op == operation]


class FakeHandler(ResourceHandler):
    """Handler storing resources in a FakeCloud."""

    def __init__(
        self,
        cloud: FakeCloud,
        kind: str,
        force_new=(),
        required=(),
        supports_update: bool = True,
        sensitive_inputs=(),
    ):
        self.cloud = cloud
        self.kind = kind
        self.force_new = frozenset(force_new)
        self.required = frozenset(required)
        self.supports_update = supports_update
        self.sensitive_inputs = frozenset(sensitive_inputs)

    def read(self, resource_id, attributes):
        self.cloud.calls.append(("read", self.kind, resource_id))
        stored = self.cloud.objects.get(resource_id)
        return dict(stored["attributes"]) if stored else None

    def create(self, inputs):
        self.cloud.calls.append(("create", self.kind, inputs.get("name", "")))
        self.cloud.check("create", self.kind)
        resource_id = self.cloud.next_id(self.kind)
        attributes = {
            "id": resource_id,
            "arn": f"arn:fake:{self.kind}/{resource_id}",
            "endpoint": f"{resource_id}.fake.internal:5432",
            "name": inputs.get("name"),
        }
        self.cloud.objects[resource_id] = {"inputs": dict(inputs), "attributes": attributes}
        return resource_id, dict(attributes)

    def update(self, resource_id, before, after, attributes):
        self.cloud.calls.append(("update", self.kind, after.get("name", "")))
        self.cloud.check("update", self.kind)
        self.cloud.objects[resource_id]["inputs"] = dict(after)
        return dict(self.cloud.objects[resource_id]["attributes"])

    def delete(self, resource_id, attributes):
        self.cloud.calls.append(("delete", self.kind, attributes.get("name") or resource_id))
        self.cloud.check("delete", self.kind)
        self.cloud.objects.pop(resource_id, None)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def fake_cloud() -> FakeCloud:
    return FakeCloud()


@pytest.fixture
def fake_registry(fake_cloud) -> ProviderRegistry:
    """Registry of fake handlers for a segment / database / service topology."""
    return ProviderRegistry(
        [
            FakeHandler(fake_cloud, "network_segment", force_new={"cidr_block"}),
            FakeHandler(
                fake_cloud,
                "database",
                force_new={"engine"},
                required={"segment_id"},
                sensitive_inputs={"password"},
            ),
            FakeHandler(fake_cloud, "service"),
            FakeHandler(fake_cloud, "immutable", supports_update=False),
            RandomPasswordHandler(),
        ]
    )


@pytest.fixture
def scenario_graph() -> ResourceGraph:
    """Segment A, database D depending on A, service S depending on D."""
    return ResourceGraph(
        resources=[
            ResourceDeclaration(
                kind="network_segment",
                name="a",
                attributes={"name": "segment-a", "cidr_block": "10.0.0.0/24"},
            ),
            ResourceDeclaration(
                kind="database",
                name="d",
                attributes={
                    "name": "database-d",
                    "engine": "postgres",
                    "segment_id": ref("network_segment.a"),
                    "password": var("db_password"),
                },
            ),
            ResourceDeclaration(
                kind="service",
                name="s",
                attributes={
                    "name": join(var("prefix"), "-service"),
                    "database_endpoint": ref("database.d", "endpoint"),
                },
            ),
        ],
        variables=[
            VariableDeclaration(name="prefix", default="demo"),
            VariableDeclaration(name="db_password", sensitive=True, default="Sup3r-Secret!"),
        ],
        outputs=[
            OutputDeclaration(name="endpoint", value=ref("database.d", "endpoint")),
            OutputDeclaration(name="service_name", value=ref("service.s", "name")),
        ],
    )


@pytest.fixture
def state_store(tmp_path) -> StateStore:
    return StateStore(tmp_path / "state" / "state.json")


@pytest.fixture
def resource_name() -> str:
    return fake.slug()[:20]
