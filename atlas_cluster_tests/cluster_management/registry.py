"""Registry of clusters tracked by the lifecycle manager.

The registry is owned by whoever creates it (usually a session-scoped fixture) and is shared by
all threads using the same manager. Every read and write is serialized by a single lock.
"""

import dataclasses
import enum
import logging
import threading
import typing as tp

from atlas_cluster_tests.cluster_management import common
from atlas_cluster_tests.utils import provisioning

LOGGER = logging.getLogger(__name__)


class ClusterOrigin(enum.Enum):
    CREATED_BY_MANAGER = "created"
    DISCOVERED_EXISTING = "reused"


class ClusterClass(enum.Enum):
    SHARED = "shared"
    ISOLATED = "isolated"


class LifecycleState(enum.Enum):
    PENDING = "pending"
    PROVISIONING = "provisioning"
    READY = "ready"
    FAILED = "failed"
    DELETING = "deleting"
    GONE = "gone"


# Records in these states don't represent a usable cluster
DEAD_STATES: tp.Final[frozenset[LifecycleState]] = frozenset(
    {LifecycleState.FAILED, LifecycleState.DELETING, LifecycleState.GONE}
)


class RegistryError(Exception):
    pass


def get_lifecycle_state(state_name: str, not_found: bool = False) -> LifecycleState:
    """Map remote `stateName` of a cluster to its lifecycle state.

    Unknown states are treated as provisioning in progress, never as terminal states.
    """
    if not_found:
        return LifecycleState.FAILED
    if not state_name:
        return LifecycleState.PENDING
    if state_name == common.READY_STATE:
        return LifecycleState.READY
    if state_name == common.DELETING_STATE:
        return LifecycleState.DELETING
    if state_name == common.DELETED_STATE:
        return LifecycleState.GONE
    return LifecycleState.PROVISIONING


@dataclasses.dataclass
class ClusterRecord:
    """Cluster tracked by the manager."""

    name: str
    kind: provisioning.ClusterKind
    origin: ClusterOrigin
    classification: ClusterClass
    spec_key: str
    resource_id: str = ""
    last_known_state: str = ""
    # the cluster was reported as not found while polling
    not_found: bool = False

    @property
    def lifecycle(self) -> LifecycleState:
        return get_lifecycle_state(state_name=self.last_known_state, not_found=self.not_found)

    @property
    def is_live(self) -> bool:
        return self.lifecycle not in DEAD_STATES

    @property
    def is_shared(self) -> bool:
        return self.classification == ClusterClass.SHARED

    @property
    def is_reused(self) -> bool:
        return self.origin == ClusterOrigin.DISCOVERED_EXISTING


class ClusterRegistry:
    """Thread-safe map of cluster name to cluster record."""

    def __init__(self) -> None:
        self._records: dict[str, ClusterRecord] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._records

    def add(self, record: ClusterRecord) -> ClusterRecord:
        """Start tracking a cluster.

        There can be only one record per name and only one live shared record per spec key.
        """
        with self._lock:
            if record.name in self._records:
                msg = f"Cluster '{record.name}' is already tracked."
                raise RegistryError(msg)
            if record.is_shared:
                existing = self.get_shared(record.spec_key)
                if existing:
                    msg = (
                        f"Shared cluster '{existing.name}' is already tracked for "
                        f"spec '{record.spec_key}'."
                    )
                    raise RegistryError(msg)
            self._records[record.name] = record

        LOGGER.debug(
            f"Tracking {record.classification.value} cluster '{record.name}' "
            f"({record.origin.value})."
        )
        return record

    def get(self, name: str) -> ClusterRecord | None:
        with self._lock:
            return self._records.get(name)

    def get_shared(self, spec_key: str) -> ClusterRecord | None:
        """Return live shared record for the spec key."""
        with self._lock:
            for record in self._records.values():
                if record.is_shared and record.spec_key == spec_key and record.is_live:
                    return record
        return None

    def update_state(
        self, name: str, state_name: str, resource_id: str = ""
    ) -> ClusterRecord | None:
        """Record the last known remote state of a cluster.

        Return the updated record, or None if the cluster is not tracked.
        """
        with self._lock:
            record = self._records.get(name)
            if record is None:
                return None
            record.last_known_state = state_name
            record.not_found = False
            if resource_id:
                record.resource_id = resource_id
            return record

    def mark_not_found(self, name: str) -> ClusterRecord | None:
        with self._lock:
            record = self._records.get(name)
            if record is not None:
                record.not_found = True
            return record

    def remove(self, name: str) -> ClusterRecord | None:
        with self._lock:
            record = self._records.pop(name, None)
        if record is not None:
            LOGGER.debug(f"Stopped tracking cluster '{name}'.")
        return record

    def records(
        self,
        classification: ClusterClass | None = None,
        origin: ClusterOrigin | None = None,
    ) -> list[ClusterRecord]:
        """Return snapshot of tracked records, optionally filtered."""
        with self._lock:
            return [
                r
                for r in self._records.values()
                if (classification is None or r.classification == classification)
                and (origin is None or r.origin == origin)
            ]
