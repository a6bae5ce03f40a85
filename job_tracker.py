"""
Job Tracker
Spawns thumbnail jobs on their own threads and keeps count of those still running
"""

import logging
import time
from threading import Condition, Lock, Thread
from typing import Callable, Dict, Optional, Set

logger = logging.getLogger(__name__)


class JobTracker:
    """Thread-safe accounting of in-flight jobs per root"""

    def __init__(self):
        self.counters: Dict[str, int] = {}  # root -> jobs in flight
        self.active_keys: Set[str] = set()  # keys of jobs in flight
        self.rerun_keys: Set[str] = set()  # keys requested again while in flight
        self.lock = Lock()
        self.idle = Condition(self.lock)

    def spawn(self, root: str, name: str, target: Callable, *args, key: Optional[str] = None) -> Optional[Thread]:
        """
        Run target(*args) on a new daemon thread.

        Args:
            root: Root the job belongs to (for accounting only)
            name: Thread name
            target: Job function
            key: If given and a job with the same key is running, that job runs
                target once more when it finishes instead of a second thread
                starting now

        Returns:
            The started thread, or None if the request was folded into a running job
        """
        with self.lock:
            if key is not None:
                if key in self.active_keys:
                    self.rerun_keys.add(key)
                    logger.debug(f"Job in flight, will run again when it finishes: {key}")
                    return None
                self.active_keys.add(key)
            self.counters[root] = self.counters.get(root, 0) + 1

        thread = Thread(target=self._run, args=(root, key, target, args), daemon=True, name=name)
        try:
            thread.start()
        except Exception:
            self._finish(root, key, rerun_allowed=False)
            raise
        return thread

    def _run(self, root: str, key: Optional[str], target: Callable, args: tuple):
        while True:
            try:
                target(*args)
            except Exception as e:
                logger.error(f"Unhandled error in job {key or target}: {e}", exc_info=True)
            except BaseException:
                self._finish(root, key, rerun_allowed=False)
                raise
            if not self._finish(root, key):
                return

    def _finish(self, root: str, key: Optional[str], rerun_allowed: bool = True) -> bool:
        """Account for a finished run. Returns True if the job must run again."""
        with self.lock:
            if key is not None:
                if rerun_allowed and key in self.rerun_keys:
                    self.rerun_keys.discard(key)
                    return True
                self.rerun_keys.discard(key)
                self.active_keys.discard(key)
            count = self.counters.get(root, 0) - 1
            if count > 0:
                self.counters[root] = count
            else:
                self.counters.pop(root, None)
            if not self.counters:
                self.idle.notify_all()
            return False

    def get_count(self, root: str) -> int:
        """Jobs in flight for a root"""
        with self.lock:
            return self.counters.get(root, 0)

    def total(self) -> int:
        with self.lock:
            return sum(self.counters.values())

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no job is running. Returns False if the timeout expired first."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self.idle:
            while self.counters:
                if deadline is None:
                    self.idle.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self.idle.wait(remaining)
            return True
