"""Locks shared by all pytest-xdist workers.

When running in a single process, the in-process locks are sufficient and a dummy lock is
returned instead of a file lock.
"""

import contextlib
import logging
import pathlib as pl
import typing as tp

import filelock

from atlas_cluster_tests.utils import configuration

# Suppress messages from filelock
logging.getLogger("filelock").setLevel(logging.WARNING)


def get_lock_path(lock_name: str) -> pl.Path:
    locks_dir = configuration.LOCKS_DIR
    locks_dir.mkdir(parents=True, exist_ok=True)
    return locks_dir / lock_name


def lock_if_xdist(lock_name: str) -> tp.ContextManager:
    """Return file lock named `lock_name` if executing with multiple workers."""
    if not configuration.IS_XDIST:
        return contextlib.nullcontext()
    return filelock.FileLock(get_lock_path(lock_name))
