import threading
import time
import typing as tp

import pytest

from atlas_cluster_tests.cluster_management import manager
from atlas_cluster_tests.cluster_management import registry
from atlas_cluster_tests.utils import configuration
from atlas_cluster_tests.utils import provisioning

PROJECT_ID = "test-project-1"
POLL_INTERVAL = 0.01


class FakeProvisioningClient:
    """In-memory stand-in for a provisioning client of a single kind."""

    def __init__(self, kind: provisioning.ClusterKind) -> None:
        self.kind = kind
        self.clusters: dict[str, provisioning.ClusterInfo] = {}
        # states returned by consecutive `get_cluster` calls, the last one repeats
        self.state_scripts: dict[str, list[str]] = {}
        self.failing_deletes: set[str] = set()
        self.fail_create = False
        self.fail_list = False
        self.create_delay = 0.0

        self.create_calls: list[str] = []
        self.get_calls: list[str] = []
        self.delete_calls: list[str] = []
        self._lock = threading.Lock()

    def add_cluster(self, name: str, state_name: str = "IDLE") -> provisioning.ClusterInfo:
        cluster = provisioning.ClusterInfo(
            name=name, id=f"id-{name}", state_name=state_name, kind=self.kind
        )
        self.clusters[name] = cluster
        return cluster

    def create_cluster(
        self,
        project_id: str,
        name: str,
        instance_size: str,
        mongo_version: str,
        region: str,
        cloud_provider: str,
    ) -> provisioning.ClusterInfo:
        with self._lock:
            self.create_calls.append(name)
        if self.create_delay:
            time.sleep(self.create_delay)
        if self.fail_create:
            msg = f"Failed to create {self.kind.value} cluster '{name}': HTTP 500"
            raise provisioning.ProvisioningError(msg)
        with self._lock:
            if name in self.clusters:
                msg = f"{self.kind.value} cluster '{name}' already exists"
                raise provisioning.DuplicateClusterError(msg)
            return self.add_cluster(name=name, state_name="CREATING")

    def get_cluster(self, project_id: str, name: str) -> provisioning.ClusterInfo:
        self.get_calls.append(name)
        cluster = self.clusters.get(name)
        if cluster is None:
            msg = f"{self.kind.value} cluster '{name}' not found"
            raise provisioning.ClusterNotFoundError(msg)

        script = self.state_scripts.get(name)
        if script:
            state_name = script.pop(0) if len(script) > 1 else script[0]
            cluster = self.add_cluster(name=name, state_name=state_name)
        return cluster

    def list_clusters(self, project_id: str) -> list[provisioning.ClusterInfo]:
        if self.fail_list:
            msg = f"Failed to list {self.kind.value} clusters in project {project_id}"
            raise provisioning.ProvisioningError(msg)
        return list(self.clusters.values())

    def delete_cluster(self, project_id: str, name: str) -> None:
        self.delete_calls.append(name)
        if name in self.failing_deletes:
            msg = f"Failed to delete {self.kind.value} cluster '{name}': HTTP 500"
            raise provisioning.ProvisioningError(msg)
        if name not in self.clusters:
            msg = f"{self.kind.value} cluster '{name}' not found"
            raise provisioning.ClusterNotFoundError(msg)
        del self.clusters[name]


@pytest.fixture
def atlas_config() -> configuration.AtlasTestConfig:
    return configuration.AtlasTestConfig(
        api_public_key="public",
        api_private_key="private",
        project_id=PROJECT_ID,
        cluster_timeout_minutes=1,
    )


@pytest.fixture
def dedicated_client() -> FakeProvisioningClient:
    return FakeProvisioningClient(kind=provisioning.ClusterKind.DEDICATED)


@pytest.fixture
def flex_client() -> FakeProvisioningClient:
    return FakeProvisioningClient(kind=provisioning.ClusterKind.FLEX)


@pytest.fixture
def cluster_registry() -> registry.ClusterRegistry:
    return registry.ClusterRegistry()


@pytest.fixture
def cluster_manager(
    atlas_config: configuration.AtlasTestConfig,
    dedicated_client: FakeProvisioningClient,
    flex_client: FakeProvisioningClient,
    cluster_registry: registry.ClusterRegistry,
) -> manager.ClusterLifecycleManager:
    return manager.ClusterLifecycleManager(
        config=atlas_config,
        dedicated_client=tp.cast(provisioning.ProvisioningClient, dedicated_client),
        flex_client=tp.cast(provisioning.ProvisioningClient, flex_client),
        registry=cluster_registry,
        poll_interval=POLL_INTERVAL,
    )
