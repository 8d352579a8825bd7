import argparse
import contextlib
import functools
import inspect
import logging
import os
import pathlib as pl
import shutil
import signal
import subprocess
import time
import types as tt
import typing as tp

from atlas_cluster_tests.utils import types as ttypes

LOGGER = logging.getLogger(__name__)

# Base URL of the repository web UI, used for linking tests to their source
REPO_URL = os.environ.get("REPO_URL") or ""


@contextlib.contextmanager
def ignore_interrupt() -> tp.Iterator[None]:
    """Ignore the KeyboardInterrupt signal."""
    orig_handler = None
    try:
        orig_handler = signal.signal(signal.SIGINT, signal.SIG_IGN)
    except ValueError as exc:
        if "signal only works in main thread" not in str(exc):
            raise

    if orig_handler is None:
        yield
        return

    try:
        yield
    finally:
        signal.signal(signal.SIGINT, orig_handler)


def run_command(
    command: str | list,
    *,
    workdir: ttypes.FileType = "",
    ignore_fail: bool = False,
) -> bytes:
    """Run command."""
    cmd: list
    if isinstance(command, str):
        cmd = command.split()
        cmd_str = command
    else:
        cmd = command
        cmd_str = " ".join(command)

    LOGGER.debug("Running `%s`", cmd_str)

    with subprocess.Popen(
        cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, cwd=workdir or None
    ) as p:
        stdout, stderr = p.communicate()
        retcode = p.returncode

    if not ignore_fail and retcode != 0:
        err_dec = stderr.decode()
        err_dec = err_dec or stdout.decode()
        msg = f"An error occurred while running `{cmd_str}`: {err_dec}"
        raise RuntimeError(msg)

    return stdout


@functools.cache
def get_current_commit() -> str:
    revision = os.environ.get("GIT_REVISION")
    if revision:
        return revision
    if not shutil.which("git"):
        return "HEAD"
    return run_command("git rev-parse HEAD", ignore_fail=True).decode().strip() or "HEAD"


def get_timestamp_ms() -> int:
    """Return current wall-clock time in milliseconds."""
    return time.time_ns() // 1_000_000


def get_line_str_from_frame(frame: tt.FrameType) -> str:
    lineno = frame.f_lineno
    fpath = frame.f_globals["__file__"]
    line_str = f"{fpath}#L{lineno}"
    return line_str


def get_vcs_link() -> str:
    """Return link to the current line in the repository.

    Without `REPO_URL` set, return just the `filename#lineno` of the calling line.
    """
    calling_frame = None
    with contextlib.suppress(AttributeError):
        calling_frame = inspect.currentframe().f_back  # type: ignore

    if not calling_frame:
        msg = "Couldn't get the calling frame."
        raise ValueError(msg)

    line_str = get_line_str_from_frame(frame=calling_frame)
    if not REPO_URL:
        return line_str

    loc_part = line_str[line_str.find("atlas_cluster_tests") :]
    url = f"{REPO_URL}/blob/{get_current_commit()}/{loc_part}"
    return url


def check_file_arg(file_path: str) -> pl.Path | None:
    """Check that the file passed as argparse parameter is a valid existing file."""
    if not file_path:
        return None
    abs_path = pl.Path(file_path).expanduser().resolve()
    if not (abs_path.exists() and abs_path.is_file()):
        msg = f"check_file_arg: file '{file_path}' doesn't exist"
        raise argparse.ArgumentTypeError(msg)
    return abs_path
