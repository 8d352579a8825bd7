"""Module for exposing useful components of cluster management.

The cluster management system provisions and tracks MongoDB Atlas clusters used by tests. Creating
a cluster takes minutes and costs money, so clusters are reused wherever a test doesn't need
a cluster of its own.

Key concepts:
    - **Shared Clusters**: Clusters identified by instance size and MongoDB version. The name is
      derived deterministically from these two values, so a cluster created by an earlier run is
      found by name and reused instead of creating a new one. Shared clusters are never deleted by
      bulk cleanup.
    - **Isolated Clusters**: Clusters created for a single test scope. The name is derived from
      the scope and a millisecond timestamp, so isolated clusters are never reused. They are
      deleted when the test session finishes.
    - **Registry**: In-memory record of all clusters the manager knows about, owned by the test
      session and shared by all threads.
    - **Polling**: Atlas provisions clusters asynchronously. `wait_ready` checks the cluster state
      in fixed intervals until the cluster is "IDLE", the timeout elapses or the wait is cancelled.
    - **`ClusterLifecycleManager`**: This is the main class that test fixtures interact with.
"""

# flake8: noqa
from atlas_cluster_tests.cluster_management.manager import CleanupError
from atlas_cluster_tests.cluster_management.manager import CleanupResult
from atlas_cluster_tests.cluster_management.manager import ClusterLifecycleManager
from atlas_cluster_tests.cluster_management.naming import ISOLATED_NAME_PATTERN
from atlas_cluster_tests.cluster_management.naming import SHARED_NAME_PATTERN
from atlas_cluster_tests.cluster_management.registry import ClusterClass
from atlas_cluster_tests.cluster_management.registry import ClusterOrigin
from atlas_cluster_tests.cluster_management.registry import ClusterRecord
from atlas_cluster_tests.cluster_management.registry import ClusterRegistry
from atlas_cluster_tests.cluster_management.registry import LifecycleState
