"""
Thread-safe request throttle for the directory provider.

Problem: The generator and enricher fan out several calls at once, and the
directory rate-limits aggressively. Each worker thread throttling on its own
would still let N workers hit the API simultaneously.

Solution: One throttle per client, keyed by endpoint, shared by all worker
threads of that client.

Usage:
    throttle = Throttle(min_interval=0.2)
    throttle.wait("search")
    response = session.get(url)
"""

import threading
import time
from typing import Callable, Dict, Optional


class Throttle:
    """
    Thread-safe minimum spacing between requests to the same endpoint.

    A min_interval of 0 disables throttling.
    """

    def __init__(
        self,
        min_interval: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.min_interval = min_interval
        self._sleep = sleep
        self._clock = clock
        self._locks: Dict[str, threading.Lock] = {}
        self._last_request: Dict[str, Optional[float]] = {}
        self._master_lock = threading.Lock()

    def _get_endpoint_lock(self, endpoint: str) -> threading.Lock:
        """Get or create a lock for an endpoint."""
        with self._master_lock:
            if endpoint not in self._locks:
                self._locks[endpoint] = threading.Lock()
                self._last_request[endpoint] = None
            return self._locks[endpoint]

    def wait(self, endpoint: str, max_wait: Optional[float] = None) -> float:
        """
        Wait until it's safe to make a request to the given endpoint.

        Args:
            endpoint: Endpoint identifier (e.g., "search", "browse", "details")
            max_wait: Upper bound on the wait (remaining request deadline)

        Returns:
            Actual time waited (0 if no wait needed)
        """
        if self.min_interval <= 0:
            return 0.0

        lock = self._get_endpoint_lock(endpoint)

        with lock:
            last = self._last_request[endpoint]
            wait_time = 0.0
            if last is not None:
                elapsed = self._clock() - last
                if elapsed < self.min_interval:
                    wait_time = self.min_interval - elapsed
                    if max_wait is not None:
                        wait_time = min(wait_time, max_wait)
                    self._sleep(wait_time)

            self._last_request[endpoint] = self._clock()
            return wait_time
