import logging
import typing as tp

import pytest
from _pytest.fixtures import FixtureRequest

from atlas_cluster_tests.cluster_management import cluster_management
from atlas_cluster_tests.utils import configuration
from atlas_cluster_tests.utils import helpers

LOGGER = logging.getLogger(__name__)

# Instance size of the shared cluster served by a free / low-cost Flex cluster
SHARED_FLEX_SIZE = "M0"


@pytest.fixture(scope="session")
def atlas_config() -> configuration.AtlasTestConfig:
    """Load Atlas configuration."""
    config = configuration.AtlasTestConfig.load()
    LOGGER.info(config.get_summary())
    return config


@pytest.fixture(scope="session")
def cluster_registry() -> cluster_management.ClusterRegistry:
    """Return registry of clusters tracked during the session."""
    return cluster_management.ClusterRegistry()


@pytest.fixture(scope="session")
def cluster_manager(
    atlas_config: configuration.AtlasTestConfig,
    cluster_registry: cluster_management.ClusterRegistry,
) -> tp.Generator[cluster_management.ClusterLifecycleManager, None, None]:
    """Return instance of `cluster_management.ClusterLifecycleManager`.

    Isolated clusters are deleted when the session finishes. Shared clusters are kept for
    the next run.
    """
    if not (atlas_config.has_required_credentials and atlas_config.project_id):
        pytest.skip("Atlas API credentials or test project ID not configured.")
    if not atlas_config.cluster_reuse_enabled:
        pytest.skip("Cluster management is disabled (clusterReuseEnabled=false).")

    manager_obj = cluster_management.ClusterLifecycleManager.from_config(
        config=atlas_config, registry=cluster_registry
    )

    yield manager_obj

    LOGGER.info(manager_obj.get_summary())
    if not atlas_config.cleanup_isolated_clusters:
        LOGGER.info("Isolated cluster cleanup skipped (cleanupIsolatedClusters=false).")
        return

    with helpers.ignore_interrupt():
        result = manager_obj.cleanup_isolated()
    for err in result.failed.values():
        LOGGER.warning(f"Isolated cluster left behind: {err}")


@pytest.fixture(scope="session")
def shared_flex_cluster(
    atlas_config: configuration.AtlasTestConfig,
    cluster_manager: cluster_management.ClusterLifecycleManager,
) -> str:
    """Return name of a ready shared Flex cluster."""
    if not atlas_config.shared_clusters_enabled:
        pytest.skip("Shared clusters are disabled (sharedClustersEnabled=false).")

    name = cluster_manager.get_or_create_shared(SHARED_FLEX_SIZE, atlas_config.mongo_version)
    if not cluster_manager.wait_ready(name, timeout=atlas_config.cluster_timeout_secs):
        pytest.fail(f"Shared cluster '{name}' is not ready.")
    return name


@pytest.fixture
def isolated_cluster(
    request: FixtureRequest,
    atlas_config: configuration.AtlasTestConfig,
    cluster_manager: cluster_management.ClusterLifecycleManager,
) -> tp.Callable[..., str]:
    """Return function that creates a ready isolated cluster for the current test."""

    def _create(instance_size: str = SHARED_FLEX_SIZE, mongo_version: str = "") -> str:
        name = cluster_manager.create_isolated(
            scope_id=request.node.name,
            instance_size=instance_size,
            mongo_version=mongo_version or atlas_config.mongo_version,
        )
        if not cluster_manager.wait_ready(name, timeout=atlas_config.cluster_timeout_secs):
            pytest.fail(f"Isolated cluster '{name}' is not ready.")
        return name

    return _create
