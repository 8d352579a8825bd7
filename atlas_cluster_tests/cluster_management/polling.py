import logging
import threading
import time
import typing as tp

from atlas_cluster_tests.utils import configuration

LOGGER = logging.getLogger(__name__)


class PollingScheduler:
    """Wait for a condition by checking it in fixed intervals.

    There is no backoff. The wait can be cancelled by setting the `cancel` event.
    """

    def __init__(
        self,
        interval: float = configuration.CLUSTER_POLL_INTERVAL,
        clock: tp.Callable[[], float] = time.monotonic,
    ) -> None:
        if interval <= 0:
            msg = f"Invalid polling interval: {interval}"
            raise ValueError(msg)
        self.interval = interval
        self._clock = clock

    def wait_until(
        self,
        predicate: tp.Callable[[], bool],
        timeout: float,
        cancel: threading.Event | None = None,
    ) -> bool:
        """Wait until `predicate` returns True.

        Return False when `timeout` seconds elapsed or when the wait was cancelled.
        """
        cancel = cancel or threading.Event()
        deadline = self._clock() + max(0.0, timeout)

        while True:
            if cancel.is_set():
                LOGGER.debug("Wait cancelled.")
                return False
            if predicate():
                return True

            remaining = deadline - self._clock()
            if remaining <= 0:
                return False
            if cancel.wait(min(self.interval, remaining)):
                LOGGER.debug("Wait cancelled.")
                return False
