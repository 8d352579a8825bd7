import threading
import time

import pytest

from atlas_cluster_tests.cluster_management import polling


class Countdown:
    """Predicate that becomes true after given number of calls."""

    def __init__(self, calls_needed: int) -> None:
        self.calls_needed = calls_needed
        self.calls = 0

    def __call__(self) -> bool:
        self.calls += 1
        return self.calls >= self.calls_needed


def test_ready_immediately():
    predicate = Countdown(calls_needed=1)
    assert polling.PollingScheduler(interval=10).wait_until(predicate, timeout=60)
    assert predicate.calls == 1


def test_ready_after_polls():
    predicate = Countdown(calls_needed=4)
    assert polling.PollingScheduler(interval=0.01).wait_until(predicate, timeout=10)
    assert predicate.calls == 4


def test_timeout():
    predicate = Countdown(calls_needed=1_000_000)
    start = time.monotonic()
    assert not polling.PollingScheduler(interval=0.01).wait_until(predicate, timeout=0.1)
    elapsed = time.monotonic() - start
    assert 0.1 <= elapsed < 5
    assert predicate.calls > 1


def test_zero_timeout_checks_once():
    predicate = Countdown(calls_needed=2)
    assert not polling.PollingScheduler(interval=0.01).wait_until(predicate, timeout=0)
    assert predicate.calls == 1


def test_cancelled_before_start():
    cancel = threading.Event()
    cancel.set()
    predicate = Countdown(calls_needed=1)
    assert not polling.PollingScheduler(interval=0.01).wait_until(
        predicate, timeout=10, cancel=cancel
    )
    assert predicate.calls == 0


def test_cancelled_while_waiting():
    cancel = threading.Event()
    predicate = Countdown(calls_needed=1_000_000)
    timer = threading.Timer(0.1, cancel.set)
    timer.start()

    start = time.monotonic()
    try:
        ready = polling.PollingScheduler(interval=30).wait_until(
            predicate, timeout=60, cancel=cancel
        )
    finally:
        timer.cancel()

    assert not ready
    assert time.monotonic() - start < 10
    assert predicate.calls == 1


@pytest.mark.parametrize("interval", (0, -1))
def test_invalid_interval(interval: float):
    with pytest.raises(ValueError):
        polling.PollingScheduler(interval=interval)
