"""Worker pool with exception handling for parallel provider calls.

This module provides a ThreadPoolExecutor wrapper that runs a batch of
directory calls with a concurrency cap and a shared request deadline. Work
that has not finished when the deadline expires is abandoned and reported
as a failure instead of blocking the request.
"""

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from typing import Any, Callable, Optional

from ..errors import DeadlineExceeded
from .deadline import Deadline


class WorkerPool:
    """ThreadPoolExecutor wrapper with exception handling for pipeline tasks."""

    def __init__(self, max_workers: int = 8, logger=None, thread_name_prefix: str = "relief-recs"):
        """
        Initialize worker pool.

        Args:
            max_workers: Maximum number of concurrent worker threads (default: 8)
            logger: Optional logger instance for logging
            thread_name_prefix: Prefix for worker thread names
        """
        self.max_workers = max(1, max_workers)
        self.logger = logger or logging.getLogger(__name__)
        self.thread_name_prefix = thread_name_prefix
        self._stats_lock = threading.Lock()
        self.stats = {
            "max_workers": self.max_workers,
            "total_submitted": 0,
            "total_completed": 0,
            "total_successful": 0,
            "total_failed": 0,
            "total_abandoned": 0,
        }

    def map(
        self,
        func: Callable[[Any], Any],
        items: list,
        desc: str = "Processing",
        deadline: Optional[Deadline] = None,
    ) -> list:
        """
        Process items in parallel with exception handling.

        Args:
            func: Worker function to execute
            items: List of items to process
            desc: Description for progress reporting
            deadline: Optional request deadline; unfinished items are abandoned

        Returns:
            List of tuples in input order: (success: bool, item: any, result_or_error: any)
        """
        if not items:
            return []

        deadline = deadline or Deadline.never()
        outcomes: list = [None] * len(items)
        executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix=self.thread_name_prefix)

        try:
            future_to_index = {executor.submit(func, item): index for index, item in enumerate(items)}
            with self._stats_lock:
                self.stats["total_submitted"] += len(items)

            pending = set(future_to_index)
            while pending:
                if deadline.expired():
                    break
                done, pending = wait(pending, timeout=deadline.remaining(), return_when=FIRST_COMPLETED)
                for future in done:
                    index = future_to_index[future]
                    outcomes[index] = self._collect(future, items[index], desc)

            for future in pending:
                index = future_to_index[future]
                future.cancel()
                outcomes[index] = (False, items[index], DeadlineExceeded(f"{desc}: deadline exceeded"))
                with self._stats_lock:
                    self.stats["total_abandoned"] += 1
                    self.stats["total_failed"] += 1

            if pending:
                self.logger.warning(f"{desc}: abandoned {len(pending)} unfinished task(s) at deadline")
        finally:
            # Abandoned calls keep running on their own timeouts; do not block on them.
            executor.shutdown(wait=False, cancel_futures=True)

        successful = sum(1 for outcome in outcomes if outcome[0])
        self.logger.info(f"{desc} complete: {successful} successful, {len(outcomes) - successful} failed")

        return outcomes

    def _collect(self, future, item, desc: str) -> tuple:
        with self._stats_lock:
            self.stats["total_completed"] += 1

        try:
            result = future.result()
            with self._stats_lock:
                self.stats["total_successful"] += 1
            self.logger.debug(f"{desc}: Success for item {item}")
            return True, item, result

        except Exception as e:
            with self._stats_lock:
                self.stats["total_failed"] += 1
            self.logger.warning(f"{desc}: Failed for item {item}: {e}")
            return False, item, e

    def get_stats(self) -> dict:
        """Get worker pool statistics."""
        with self._stats_lock:
            return dict(self.stats)
