import os

# Remote state of a cluster that is ready to be used
READY_STATE = "IDLE"
DELETING_STATE = "DELETING"
DELETED_STATE = "DELETED"

SHARED_PREFIX = "shared-test-"
ISOLATED_PREFIX = "isolated-test-"

# Maximal length of a cluster name accepted by Atlas
MAX_NAME_LEN = 64

LOG_LOCK = ".manager_log.lock"


def get_worker_id() -> str:
    return os.environ.get("PYTEST_XDIST_WORKER") or "master"


def get_spec_lock_name(spec_key: str) -> str:
    """Return name of the lock guarding creation of a shared cluster for `spec_key`."""
    return f".shared_spec_{spec_key}.lock"
