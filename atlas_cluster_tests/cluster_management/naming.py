"""Deterministic names of shared clusters and unique names of isolated clusters.

Shared clusters are identified by name alone: the same instance size and MongoDB version always
map to the same name, so a cluster left behind by an earlier run can be discovered and reused.
"""

import re

from atlas_cluster_tests.cluster_management import common

_SANITIZE_RE = re.compile("[^a-z0-9]+")

# Room left for the scope part of an isolated name: prefix, "-" and 13 digits of timestamp
_MAX_SCOPE_LEN = common.MAX_NAME_LEN - len(common.ISOLATED_PREFIX) - 14

SHARED_NAME_PATTERN = re.compile(rf"{re.escape(common.SHARED_PREFIX)}[a-z0-9]+-[a-z0-9]+")
ISOLATED_NAME_PATTERN = re.compile(rf"{re.escape(common.ISOLATED_PREFIX)}[a-z0-9-]+-[0-9]+")


def _strip(s: str) -> str:
    return _SANITIZE_RE.sub("", s.lower())


def sanitize_scope(scope_id: str) -> str:
    """Sanitize scope of an isolated cluster to characters allowed in cluster names."""
    sanitized = _SANITIZE_RE.sub("-", scope_id.lower()).strip("-")
    return sanitized[:_MAX_SCOPE_LEN].rstrip("-")


def shared_key(instance_size: str, mongo_version: str) -> str:
    """Return key of a shared cluster, e.g. `m10-70` for `("M10", "7.0")`."""
    size_part = _strip(instance_size)
    version_part = _strip(mongo_version)
    if not (size_part and version_part):
        msg = (
            f"Invalid shared cluster spec: instance size '{instance_size}', "
            f"version '{mongo_version}'"
        )
        raise ValueError(msg)

    spec_key = f"{size_part}-{version_part}"
    if len(common.SHARED_PREFIX) + len(spec_key) > common.MAX_NAME_LEN:
        msg = f"Shared cluster spec '{spec_key}' is too long."
        raise ValueError(msg)
    return spec_key


def shared_name(instance_size: str, mongo_version: str) -> str:
    return f"{common.SHARED_PREFIX}{shared_key(instance_size, mongo_version)}"


def isolated_key(scope_id: str, timestamp_ms: int) -> str:
    scope_part = sanitize_scope(scope_id)
    if not scope_part:
        msg = f"Invalid isolated cluster scope: '{scope_id}'"
        raise ValueError(msg)
    if timestamp_ms < 0:
        msg = f"Invalid timestamp: {timestamp_ms}"
        raise ValueError(msg)
    return f"{scope_part}-{timestamp_ms}"


def isolated_name(scope_id: str, timestamp_ms: int) -> str:
    return f"{common.ISOLATED_PREFIX}{isolated_key(scope_id, timestamp_ms)}"


def is_shared_name(name: str) -> bool:
    return SHARED_NAME_PATTERN.fullmatch(name) is not None


def is_isolated_name(name: str) -> bool:
    return ISOLATED_NAME_PATTERN.fullmatch(name) is not None
