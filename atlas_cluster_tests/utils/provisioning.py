"""Provisioning clients for dedicated and Flex clusters.

Both kinds share the same contract (create, get, list, update, delete a named cluster) and
differ only in the Atlas sub-API they call.
"""

import abc
import dataclasses
import enum
import logging
import typing as tp

from atlas_cluster_tests.utils import atlas_api

LOGGER = logging.getLogger(__name__)

# Instance sizes that are served by Flex clusters
FLEX_INSTANCE_SIZES: tp.Final[frozenset[str]] = frozenset({"M0", "M2", "M5", "FLEX"})

# Atlas error codes returned when creating a cluster with a name that is already taken
DUPLICATE_NAME_ERROR_CODES: tp.Final[frozenset[str]] = frozenset(
    {"DUPLICATE_CLUSTER_NAME", "CLUSTER_ALREADY_EXISTS"}
)

# Actions addressing an existing cluster, where "404 Not Found" means the cluster is missing
CLUSTER_LOOKUP_ACTIONS: tp.Final[frozenset[str]] = frozenset({"get", "update", "delete"})


class ClusterKind(enum.Enum):
    DEDICATED = "dedicated"
    FLEX = "flex"


class ProvisioningError(Exception):
    pass


class ClusterNotFoundError(ProvisioningError):
    pass


class DuplicateClusterError(ProvisioningError):
    """Cluster with the same name already exists."""


@dataclasses.dataclass(frozen=True)
class ClusterInfo:
    """Cluster record as returned by the provisioning API."""

    name: str
    id: str
    state_name: str
    kind: ClusterKind
    raw: dict = dataclasses.field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_response(cls, data: dict, kind: ClusterKind) -> "ClusterInfo":
        return cls(
            name=data.get("name") or "",
            id=data.get("id") or "",
            state_name=data.get("stateName") or "",
            kind=kind,
            raw=data,
        )


def is_flex_size(instance_size: str) -> bool:
    """Check if the instance size denotes the free / low-cost tier served by Flex clusters."""
    return instance_size.strip().upper() in FLEX_INSTANCE_SIZES


def build_cluster_spec(
    name: str, instance_size: str, mongo_version: str, region: str, cloud_provider: str
) -> dict:
    """Build payload for creating a dedicated replica set cluster."""
    region_config = {
        "providerName": cloud_provider.upper(),
        "priority": 7,
        "regionName": region.upper(),
        "electableSpecs": {"instanceSize": instance_size, "nodeCount": 3},
    }
    return {
        "name": name,
        "mongoDBMajorVersion": mongo_version,
        "clusterType": "REPLICASET",
        "replicationSpecs": [{"regionConfigs": [region_config]}],
    }


def build_flex_cluster_spec(name: str, region: str, cloud_provider: str) -> dict:
    """Build payload for creating a Flex cluster.

    Flex clusters always run the latest MongoDB version, so the version is not part of
    the payload.
    """
    return {
        "name": name,
        "providerSettings": {
            "backingProviderName": cloud_provider.upper(),
            "regionName": region.upper(),
        },
        "terminationProtectionEnabled": False,
    }


class ProvisioningClient(abc.ABC):
    """Create, get, list and delete clusters of a single kind."""

    kind: tp.ClassVar[ClusterKind]
    resource_path: tp.ClassVar[str]

    def __init__(self, api: atlas_api.AtlasApi) -> None:
        self.api = api

    def _collection_path(self, project_id: str) -> str:
        return f"/groups/{project_id}/{self.resource_path}"

    def _cluster_path(self, project_id: str, name: str) -> str:
        return f"{self._collection_path(project_id)}/{name}"

    def _call(
        self,
        action: str,
        name: str,
        func: tp.Callable[..., dict],
        *args: tp.Any,
        **kwargs: tp.Any,
    ) -> dict:
        """Call the API, translate API errors to provisioning errors."""
        try:
            return func(*args, **kwargs)
        except atlas_api.AtlasApiError as exc:
            if isinstance(exc, atlas_api.NotFoundError) and action in CLUSTER_LOOKUP_ACTIONS:
                msg = f"{self.kind.value} cluster '{name}' not found: {exc}"
                raise ClusterNotFoundError(msg) from exc
            if exc.status_code == 409 or exc.error_code in DUPLICATE_NAME_ERROR_CODES:
                msg = f"{self.kind.value} cluster '{name}' already exists: {exc}"
                raise DuplicateClusterError(msg) from exc
            msg = f"Failed to {action} {self.kind.value} cluster '{name}': {exc}"
            raise ProvisioningError(msg) from exc

    @abc.abstractmethod
    def build_spec(
        self, name: str, instance_size: str, mongo_version: str, region: str, cloud_provider: str
    ) -> dict:
        """Build payload for creating a cluster."""

    def create_cluster(
        self,
        project_id: str,
        name: str,
        instance_size: str,
        mongo_version: str,
        region: str,
        cloud_provider: str,
    ) -> ClusterInfo:
        LOGGER.info(f"Creating {self.kind.value} cluster '{name}' in project {project_id}.")
        spec = self.build_spec(
            name=name,
            instance_size=instance_size,
            mongo_version=mongo_version,
            region=region,
            cloud_provider=cloud_provider,
        )
        LOGGER.debug(f"Cluster creation payload: {spec}")
        data = self._call(
            "create",
            name,
            self.api.post,
            self._collection_path(project_id),
            project_id=project_id,
            json_body=spec,
        )
        LOGGER.info(f"Creation of {self.kind.value} cluster '{name}' initiated.")
        return ClusterInfo.from_response(data={"name": name, **data}, kind=self.kind)

    def get_cluster(self, project_id: str, name: str) -> ClusterInfo:
        data = self._call(
            "get",
            name,
            self.api.get,
            self._cluster_path(project_id, name),
            project_id=project_id,
        )
        cluster = ClusterInfo.from_response(data=data, kind=self.kind)
        LOGGER.debug(f"{self.kind.value} cluster '{name}' state: {cluster.state_name}")
        return cluster

    def list_clusters(self, project_id: str) -> list[ClusterInfo]:
        LOGGER.debug(f"Listing {self.kind.value} clusters in project {project_id}.")
        try:
            results = self.api.get_results(
                self._collection_path(project_id), project_id=project_id
            )
        except atlas_api.AtlasApiError as exc:
            msg = f"Failed to list {self.kind.value} clusters in project {project_id}: {exc}"
            raise ProvisioningError(msg) from exc
        return [ClusterInfo.from_response(data=r, kind=self.kind) for r in results]

    def update_cluster(self, project_id: str, name: str, update_spec: dict) -> ClusterInfo:
        LOGGER.info(f"Updating {self.kind.value} cluster '{name}' in project {project_id}.")
        data = self._call(
            "update",
            name,
            self.api.patch,
            self._cluster_path(project_id, name),
            project_id=project_id,
            json_body=update_spec,
        )
        return ClusterInfo.from_response(data={"name": name, **data}, kind=self.kind)

    def delete_cluster(self, project_id: str, name: str) -> None:
        """Initiate deletion of a cluster.

        The API acknowledges the request, the cluster goes to the "DELETING" state.
        """
        LOGGER.info(f"Deleting {self.kind.value} cluster '{name}' in project {project_id}.")
        self._call(
            "delete",
            name,
            self.api.delete,
            self._cluster_path(project_id, name),
            project_id=project_id,
        )
        LOGGER.info(f"Deletion of {self.kind.value} cluster '{name}' initiated.")


class DedicatedClustersClient(ProvisioningClient):
    kind = ClusterKind.DEDICATED
    resource_path = "clusters"

    def build_spec(
        self, name: str, instance_size: str, mongo_version: str, region: str, cloud_provider: str
    ) -> dict:
        if is_flex_size(instance_size):
            msg = f"Instance size '{instance_size}' is not available for dedicated clusters."
            raise ValueError(msg)
        return build_cluster_spec(
            name=name,
            instance_size=instance_size,
            mongo_version=mongo_version,
            region=region,
            cloud_provider=cloud_provider,
        )


class FlexClustersClient(ProvisioningClient):
    kind = ClusterKind.FLEX
    resource_path = "flexClusters"

    def build_spec(
        self,
        name: str,
        instance_size: str,  # noqa: ARG002
        mongo_version: str,  # noqa: ARG002
        region: str,
        cloud_provider: str,
    ) -> dict:
        return build_flex_cluster_spec(name=name, region=region, cloud_provider=cloud_provider)

    def set_termination_protection(
        self, project_id: str, name: str, enabled: bool
    ) -> ClusterInfo:
        return self.update_cluster(
            project_id=project_id,
            name=name,
            update_spec={"terminationProtectionEnabled": enabled},
        )

    def upgrade(self, project_id: str, name: str, instance_size: str) -> ClusterInfo:
        """Upgrade a Flex cluster to a dedicated cluster of the given instance size."""
        if is_flex_size(instance_size):
            msg = f"Cannot upgrade Flex cluster to instance size '{instance_size}'."
            raise ValueError(msg)

        LOGGER.info(f"Upgrading Flex cluster '{name}' to {instance_size}.")
        data = self._call(
            "upgrade",
            name,
            self.api.post,
            f"{self._collection_path(project_id)}:tenantUpgrade",
            project_id=project_id,
            json_body={"name": name, "instanceSize": instance_size},
        )
        return ClusterInfo.from_response(data={"name": name, **data}, kind=ClusterKind.DEDICATED)
