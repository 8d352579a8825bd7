"""Lifecycle management of Atlas clusters used by tests."""

import dataclasses
import datetime
import logging
import re
import threading

from atlas_cluster_tests.cluster_management import common
from atlas_cluster_tests.cluster_management import naming
from atlas_cluster_tests.cluster_management import polling
from atlas_cluster_tests.cluster_management import registry as cregistry
from atlas_cluster_tests.utils import atlas_api
from atlas_cluster_tests.utils import configuration
from atlas_cluster_tests.utils import helpers
from atlas_cluster_tests.utils import locking
from atlas_cluster_tests.utils import provisioning
from atlas_cluster_tests.utils import types as ttypes

LOGGER = logging.getLogger(__name__)


class CleanupError(Exception):
    """Deletion of a single cluster during bulk cleanup failed."""

    def __init__(self, name: str, message: str) -> None:
        super().__init__(f"Failed to delete cluster '{name}': {message}")
        self.name = name


@dataclasses.dataclass
class CleanupResult:
    deleted: list[str] = dataclasses.field(default_factory=list)
    skipped: list[str] = dataclasses.field(default_factory=list)
    failed: dict[str, CleanupError] = dataclasses.field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


def _compile(pattern: ttypes.PatternType) -> re.Pattern[str]:
    return pattern if isinstance(pattern, re.Pattern) else re.compile(pattern)


class ClusterLifecycleManager:
    """Provision, reuse, wait on and tear down clusters used by tests.

    Shared clusters are looked up by a deterministic name and reused for the whole run (and across
    runs). Isolated clusters get a unique name, are never reused and are deleted by
    `cleanup_isolated`.
    """

    def __init__(
        self,
        config: configuration.AtlasTestConfig,
        dedicated_client: provisioning.ProvisioningClient,
        flex_client: provisioning.ProvisioningClient,
        registry: cregistry.ClusterRegistry | None = None,
        poll_interval: float = configuration.CLUSTER_POLL_INTERVAL,
    ) -> None:
        if not config.project_id:
            msg = "Test project ID not configured. Set `testProjectId` or `ATLAS_TEST_PROJECT_ID`."
            raise configuration.ConfigurationError(msg)

        self.config = config
        self.project_id = config.project_id
        self.registry = registry if registry is not None else cregistry.ClusterRegistry()
        self.clients: dict[provisioning.ClusterKind, provisioning.ProvisioningClient] = {
            provisioning.ClusterKind.DEDICATED: dedicated_client,
            provisioning.ClusterKind.FLEX: flex_client,
        }
        self.poller = polling.PollingScheduler(interval=poll_interval)
        self.worker_id = common.get_worker_id()

        self._spec_locks: dict[str, threading.Lock] = {}
        self._spec_locks_guard = threading.Lock()
        self._isolated_lock = threading.Lock()
        self._isolated_names: set[str] = set()

    @classmethod
    def from_config(
        cls,
        config: configuration.AtlasTestConfig,
        registry: cregistry.ClusterRegistry | None = None,
    ) -> "ClusterLifecycleManager":
        """Create manager that talks to the Atlas API using credentials from `config`."""
        api = atlas_api.AtlasApi.from_config(config)
        return cls(
            config=config,
            dedicated_client=provisioning.DedicatedClustersClient(api),
            flex_client=provisioning.FlexClustersClient(api),
            registry=registry,
        )

    def log(self, msg: str) -> None:
        """Log a message to the scheduling log."""
        if not configuration.SCHEDULING_LOG:
            return

        with (
            locking.lock_if_xdist(common.LOG_LOCK),
            open(configuration.SCHEDULING_LOG, "a", encoding="utf-8") as logfile,
        ):
            logfile.write(
                f"{datetime.datetime.now(tz=datetime.timezone.utc)} on {self.worker_id}: {msg}\n"
            )

    def _get_spec_lock(self, spec_key: str) -> threading.Lock:
        with self._spec_locks_guard:
            return self._spec_locks.setdefault(spec_key, threading.Lock())

    @staticmethod
    def get_kind(instance_size: str) -> provisioning.ClusterKind:
        if provisioning.is_flex_size(instance_size):
            return provisioning.ClusterKind.FLEX
        return provisioning.ClusterKind.DEDICATED

    def get_or_create_shared(self, instance_size: str, mongo_version: str) -> str:
        """Return name of a shared cluster for the given size and version.

        The cluster is reused when it is already tracked (even if still provisioning) or when it
        exists in the project, otherwise it is created. The caller is responsible for waiting
        until the cluster is ready.
        """
        if not (instance_size.strip() and mongo_version.strip()):
            msg = "Instance size and MongoDB version must be non-empty."
            raise ValueError(msg)

        spec_key = naming.shared_key(instance_size, mongo_version)
        record = self.registry.get_shared(spec_key)
        if record:
            LOGGER.info(f"Reusing tracked shared cluster '{record.name}'.")
            return record.name

        # Only one caller per spec key can get past this point at a time, so there is
        # at most one create call for the key
        with (
            self._get_spec_lock(spec_key),
            locking.lock_if_xdist(common.get_spec_lock_name(spec_key)),
        ):
            record = self.registry.get_shared(spec_key)
            if record:
                LOGGER.info(f"Reusing tracked shared cluster '{record.name}'.")
                return record.name

            name = naming.shared_name(instance_size, mongo_version)
            stale = self.registry.get(name)
            if stale and not stale.is_live:
                LOGGER.info(
                    f"Dropping record of shared cluster '{name}' in {stale.lifecycle.value} state."
                )
                self.registry.remove(name)

            try:
                record = self._discover_shared(name=name, spec_key=spec_key)
            except provisioning.ProvisioningError as exc:
                msg = f"Discovery of shared cluster for spec '{spec_key}' failed: {exc}"
                raise provisioning.ProvisioningError(msg) from exc
            if record:
                return record.name

            record = self._create(
                name=name,
                instance_size=instance_size,
                mongo_version=mongo_version,
                classification=cregistry.ClusterClass.SHARED,
                spec_key=spec_key,
            )
            return record.name

    def _discover_shared(self, name: str, spec_key: str) -> cregistry.ClusterRecord | None:
        """Find existing shared cluster in the project and start tracking it."""
        found = self.find_by_pattern(re.escape(name))
        if not found:
            return None
        if len(found) > 1:
            LOGGER.warning(f"Found {len(found)} clusters named '{name}', using the first one.")

        cluster = found[0]
        lifecycle = cregistry.get_lifecycle_state(cluster.state_name)
        if lifecycle in cregistry.DEAD_STATES:
            msg = f"Shared cluster '{name}' exists but is in state '{cluster.state_name}'."
            raise provisioning.ProvisioningError(msg)

        record = self.registry.add(
            cregistry.ClusterRecord(
                name=name,
                kind=cluster.kind,
                origin=cregistry.ClusterOrigin.DISCOVERED_EXISTING,
                classification=cregistry.ClusterClass.SHARED,
                spec_key=spec_key,
                resource_id=cluster.id,
                last_known_state=cluster.state_name,
            )
        )
        LOGGER.info(f"Reusing existing {cluster.kind.value} cluster '{name}'.")
        self.log(f"reusing existing shared cluster '{name}'")
        return record

    def _create(
        self,
        name: str,
        instance_size: str,
        mongo_version: str,
        classification: cregistry.ClusterClass,
        spec_key: str,
    ) -> cregistry.ClusterRecord:
        kind = self.get_kind(instance_size)
        client = self.clients[kind]
        try:
            cluster = client.create_cluster(
                project_id=self.project_id,
                name=name,
                instance_size=instance_size,
                mongo_version=mongo_version,
                region=self.config.region,
                cloud_provider=self.config.cloud_provider,
            )
        except provisioning.DuplicateClusterError as exc:
            # Created in the meantime by a process that doesn't share our locks
            if classification != cregistry.ClusterClass.SHARED:
                msg = f"Failed to create isolated {kind.value} cluster '{name}': {exc}"
                raise provisioning.ProvisioningError(msg) from exc
            LOGGER.warning(f"Shared cluster '{name}' was created concurrently, adopting it.")
            record = self._discover_shared(name=name, spec_key=spec_key)
            if not record:
                msg = f"Shared cluster '{name}' reported as existing but cannot be found: {exc}"
                raise provisioning.ProvisioningError(msg) from exc
            return record
        except provisioning.ProvisioningError as exc:
            msg = (
                f"Failed to create {classification.value} {kind.value} cluster '{name}' "
                f"(spec '{spec_key}', size {instance_size}, version {mongo_version}): {exc}"
            )
            raise provisioning.ProvisioningError(msg) from exc

        record = self.registry.add(
            cregistry.ClusterRecord(
                name=name,
                kind=kind,
                origin=cregistry.ClusterOrigin.CREATED_BY_MANAGER,
                classification=classification,
                spec_key=spec_key,
                resource_id=cluster.id,
                last_known_state=cluster.state_name,
            )
        )
        LOGGER.info(f"Created {classification.value} {kind.value} cluster '{name}'.")
        self.log(f"created {classification.value} cluster '{name}'")
        return record

    def _reserve_isolated_name(self, scope_id: str) -> tuple[str, str]:
        with self._isolated_lock:
            timestamp = helpers.get_timestamp_ms()
            while True:
                spec_key = naming.isolated_key(scope_id, timestamp)
                name = naming.isolated_name(scope_id, timestamp)
                if name not in self._isolated_names and name not in self.registry:
                    break
                timestamp += 1
            self._isolated_names.add(name)
        return name, spec_key

    def create_isolated(self, scope_id: str, instance_size: str, mongo_version: str) -> str:
        """Create a cluster with a unique name for a single test scope."""
        if not (instance_size.strip() and mongo_version.strip()):
            msg = "Instance size and MongoDB version must be non-empty."
            raise ValueError(msg)

        name, spec_key = self._reserve_isolated_name(scope_id)
        record = self._create(
            name=name,
            instance_size=instance_size,
            mongo_version=mongo_version,
            classification=cregistry.ClusterClass.ISOLATED,
            spec_key=spec_key,
        )
        return record.name

    def wait_ready(
        self,
        name: str,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> bool:
        """Wait until the cluster is in the "IDLE" state.

        Return False when the cluster didn't get ready in `timeout` seconds or when the wait was
        cancelled. The last seen state of a tracked cluster is recorded in the registry.
        Clusters that are not tracked are looked up as dedicated clusters first and as Flex
        clusters second, until one of the lookups finds them.
        """
        record = self.registry.get(name)
        kinds = (
            [record.kind]
            if record
            else [provisioning.ClusterKind.DEDICATED, provisioning.ClusterKind.FLEX]
        )
        last_state = record.last_known_state if record else ""
        timeout = self.config.cluster_timeout_secs if timeout is None else timeout

        def _get_cluster() -> provisioning.ClusterInfo:
            nonlocal kinds
            for kind in kinds[:-1]:
                try:
                    cluster = self.clients[kind].get_cluster(project_id=self.project_id, name=name)
                except provisioning.ClusterNotFoundError:
                    continue
                kinds = [kind]
                return cluster

            cluster = self.clients[kinds[-1]].get_cluster(project_id=self.project_id, name=name)
            kinds = kinds[-1:]
            return cluster

        def _is_ready() -> bool:
            nonlocal last_state
            try:
                cluster = _get_cluster()
            except provisioning.ClusterNotFoundError:
                LOGGER.warning(f"Cluster '{name}' not found while waiting for it.")
                self.registry.mark_not_found(name)
                return False
            except provisioning.ProvisioningError as exc:
                LOGGER.warning(f"Failed to get state of cluster '{name}': {exc}")
                return False

            last_state = cluster.state_name
            self.registry.update_state(name, state_name=cluster.state_name, resource_id=cluster.id)
            return cluster.state_name == common.READY_STATE

        LOGGER.info(f"Waiting up to {timeout}s for cluster '{name}' to become ready.")
        ready = self.poller.wait_until(_is_ready, timeout=timeout, cancel=cancel)
        if ready:
            LOGGER.info(f"Cluster '{name}' is ready.")
        else:
            LOGGER.warning(
                f"Cluster '{name}' not ready, last known state: {last_state or 'unknown'}."
            )
        self.log(f"waited for cluster '{name}', ready: {ready}")
        return ready

    def find_by_pattern(self, pattern: ttypes.PatternType) -> list[provisioning.ClusterInfo]:
        """Return clusters of both kinds whose whole name matches the pattern."""
        regex = _compile(pattern)
        found = []
        for client in self.clients.values():
            clusters = client.list_clusters(project_id=self.project_id)
            found.extend(c for c in clusters if regex.fullmatch(c.name))
        LOGGER.debug(f"Found {len(found)} clusters matching '{regex.pattern}'.")
        return found

    def _delete_known(
        self, name: str, kind: provisioning.ClusterKind, result: CleanupResult
    ) -> None:
        try:
            self.clients[kind].delete_cluster(project_id=self.project_id, name=name)
        except provisioning.ProvisioningError as exc:
            err = CleanupError(name=name, message=str(exc))
            LOGGER.error(str(err))  # noqa: TRY400
            result.failed[name] = err
            return

        self.registry.remove(name)
        result.deleted.append(name)
        self.log(f"deleted cluster '{name}'")

    def cleanup_isolated(self) -> CleanupResult:
        """Delete all isolated clusters created by this manager.

        Failures are logged and collected, records of clusters that failed to delete are kept.
        """
        result = CleanupResult()
        records = self.registry.records(
            classification=cregistry.ClusterClass.ISOLATED,
            origin=cregistry.ClusterOrigin.CREATED_BY_MANAGER,
        )
        LOGGER.info(f"Cleaning up {len(records)} isolated clusters.")
        for record in records:
            self._delete_known(name=record.name, kind=record.kind, result=result)
        return result

    def cleanup_by_pattern(self, pattern: ttypes.PatternType) -> CleanupResult:
        """Delete all clusters in the project whose name matches the pattern.

        Shared clusters tracked by this manager are never deleted.
        """
        result = CleanupResult()
        clusters = self.find_by_pattern(pattern)
        LOGGER.info(f"Cleaning up {len(clusters)} clusters matching the pattern.")
        for cluster in clusters:
            record = self.registry.get(cluster.name)
            if record and record.is_shared:
                LOGGER.info(f"Skipping shared cluster '{cluster.name}'.")
                result.skipped.append(cluster.name)
                continue
            if cluster.state_name == common.DELETING_STATE:
                LOGGER.info(f"Cluster '{cluster.name}' is already being deleted.")
                result.skipped.append(cluster.name)
                continue
            self._delete_known(name=cluster.name, kind=cluster.kind, result=result)
        return result

    def delete_cluster(self, name: str) -> None:
        """Delete a cluster by name.

        When the cluster is not tracked, its kind is unknown and deletion is attempted as
        a dedicated cluster first and as a Flex cluster second.
        """
        record = self.registry.get(name)
        if record:
            self.clients[record.kind].delete_cluster(project_id=self.project_id, name=name)
            self.registry.remove(name)
            self.log(f"deleted cluster '{name}'")
            return

        dedicated_client = self.clients[provisioning.ClusterKind.DEDICATED]
        flex_client = self.clients[provisioning.ClusterKind.FLEX]
        try:
            dedicated_client.delete_cluster(project_id=self.project_id, name=name)
        except provisioning.ProvisioningError as dedicated_exc:
            LOGGER.debug(f"Deleting '{name}' as dedicated cluster failed, trying Flex.")
            try:
                flex_client.delete_cluster(project_id=self.project_id, name=name)
            except provisioning.ProvisioningError as flex_exc:
                msg = (
                    f"Failed to delete cluster '{name}'. "
                    f"As dedicated cluster: {dedicated_exc}; as Flex cluster: {flex_exc}"
                )
                raise provisioning.ProvisioningError(msg) from flex_exc
        self.log(f"deleted cluster '{name}'")

    def get_summary(self) -> str:
        records = self.registry.records()
        shared = sum(1 for r in records if r.is_shared)
        reused = sum(1 for r in records if r.is_reused)

        lines = [
            "Test Cluster Manager Summary:",
            f"  Total managed: {len(records)}",
            f"  Reused existing: {reused}",
            f"  Shared clusters: {shared}",
            f"  Isolated clusters: {len(records) - shared}",
        ]
        if records:
            lines.append("  Managed clusters:")
            lines.extend(
                f"    - {r.name} ({r.classification.value}, {r.origin.value})" for r in records
            )
        return "\n".join(lines)
