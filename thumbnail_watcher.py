"""
Thumbnail Watcher
Watches root directories and keeps a thumbnail for every qualifying image in them.
Subdirectories are watched and unwatched automatically as the tree changes.
"""

import dataclasses
import logging
import os
import threading
import time
from queue import Queue
from typing import Callable, Dict, Optional, Set, Tuple, Union

from job_tracker import JobTracker
from notification_source import Subscription, WatchdogSource
from reconciler import Reconciler
from thumbnail_job import ThumbnailJobRunner
from watch_dispatcher import RootDispatcher
from watch_events import (
    EventType,
    RootAlreadyWatched,
    RootNotWatched,
    SubdirAlreadyWatched,
    SubdirNotWatched,
    SubscriptionError,
    WatchEvent,
)
from watch_policy import ResampleAlgorithm, ThumbnailPreferences, WatchPolicy

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]


def _normalize(path: PathLike) -> str:
    return os.path.abspath(os.fspath(path))


class _RootWatch:
    """A registered root: its subscription, event sink, dispatcher and watched subdirectories"""

    def __init__(self, path: str, sink: Queue, subscription: Subscription):
        self.path = path
        self.sink = sink
        self.subscription = subscription
        self.subdirs: Set[str] = set()
        self.dispatcher: Optional[RootDispatcher] = None
        self.retired = False

    def emit(self, event_type: EventType, path: str, error: Optional[BaseException] = None):
        """Report an outcome. Events of a removed root are dropped."""
        if self.retired:
            logger.debug(f"Dropping {event_type} for removed root {self.path}: {path}")
            return
        self.sink.put(WatchEvent(self.path, path, event_type, error))


class ThumbnailWatcher:
    """
    Registry of watched roots and their subdirectories.

    Every registered root gets its own notification subscription and a
    dispatcher thread. Registry state is guarded by a single lock, and events
    are never put on a sink while it is held.
    """

    def __init__(
        self,
        preferences: Optional[ThumbnailPreferences] = None,
        policy: Optional[WatchPolicy] = None,
        source=None,
        imaging=None,
        sleep: Callable[[float], None] = time.sleep,
        poll_interval: float = 1.0,
        join_timeout: float = 5.0,
    ):
        self._preferences = preferences or ThumbnailPreferences()
        self._policy = policy or WatchPolicy()
        self.source = source or WatchdogSource()
        self.poll_interval = poll_interval
        self.join_timeout = join_timeout

        self._roots: Dict[str, _RootWatch] = {}
        self._lock = threading.RLock()

        self.tracker = JobTracker()
        self.jobs = ThumbnailJobRunner(
            self._policy,
            self.preferences,
            imaging=imaging,
            tracker=self.tracker,
            sleep=sleep,
        )

    @property
    def policy(self) -> WatchPolicy:
        return self._policy

    def preferences(self) -> ThumbnailPreferences:
        """Current thumbnail preferences (an immutable snapshot)"""
        return self._preferences

    # Roots

    def add_root(self, path: PathLike, sink: Queue):
        """
        Watch a directory as a new root, reporting its events to sink.

        Raises:
            RootAlreadyWatched: If path is already a root
            SubscriptionError: If the directory cannot be watched
        """
        root_path = _normalize(path)
        with self._lock:
            if root_path in self._roots:
                raise RootAlreadyWatched(root_path)

            try:
                subscription = self.source.subscribe(root_path)
            except OSError as e:
                logger.error(f"Cannot watch root {root_path}: {e}")
                raise SubscriptionError(root_path, e) from e

            root = _RootWatch(root_path, sink, subscription)
            root.dispatcher = RootDispatcher(self, root, poll_interval=self.poll_interval)
            self._roots[root_path] = root
            root.dispatcher.start()

        logger.info(f"Watching root: {root_path}")

    def remove_root(self, path: PathLike):
        """
        Stop watching a root and forget its subdirectories.

        Must be called before the root directory is deleted or renamed.
        Thumbnail jobs already running finish, but their events are dropped.

        Raises:
            RootNotWatched: If path is not a root
        """
        root_path = _normalize(path)
        with self._lock:
            root = self._roots.pop(root_path, None)
            if root is None:
                raise RootNotWatched(root_path)
            root.retired = True
            root.subdirs.clear()

        in_flight = self.tracker.get_count(root_path)
        if in_flight:
            logger.info(f"{in_flight} thumbnail job(s) of {root_path} will finish unreported")

        root.dispatcher.stop()
        root.subscription.close()
        if threading.current_thread() is not root.dispatcher:
            root.dispatcher.join(timeout=self.join_timeout)
            if root.dispatcher.is_alive():
                logger.warning(f"Dispatcher for {root_path} did not stop within {self.join_timeout}s")

        logger.info(f"Stopped watching root: {root_path}")

    def roots(self) -> Set[str]:
        with self._lock:
            return set(self._roots)

    def has_root(self, path: PathLike) -> bool:
        with self._lock:
            return _normalize(path) in self._roots

    # Subdirectories

    def add_subdir(self, root: PathLike, subdir: PathLike):
        """
        Watch a subdirectory of a root and report SUBDIR_WATCHED.

        Raises:
            RootNotWatched: If root is not a root
            SubdirAlreadyWatched: If subdir is already watched
            SubscriptionError: If the directory cannot be watched (also reported as an ERROR event)
        """
        root_path, subdir_path = _normalize(root), _normalize(subdir)
        error = None
        with self._lock:
            root_watch = self._roots.get(root_path)
            if root_watch is None:
                raise RootNotWatched(root_path)
            if subdir_path in root_watch.subdirs:
                raise SubdirAlreadyWatched(root_path, subdir_path)
            try:
                root_watch.subscription.add(subdir_path)
                root_watch.subdirs.add(subdir_path)
            except OSError as e:
                error = e

        if error is not None:
            logger.warning(f"Cannot watch subdirectory {subdir_path}: {error}")
            root_watch.emit(EventType.ERROR, subdir_path, error)
            raise SubscriptionError(subdir_path, error) from error

        logger.info(f"Watching subdirectory: {subdir_path}")
        root_watch.emit(EventType.SUBDIR_WATCHED, subdir_path)

    def remove_subdir(self, root: PathLike, subdir: PathLike):
        """
        Stop watching a subdirectory.

        Raises:
            RootNotWatched: If root is not a root
            SubdirNotWatched: If subdir is not watched
        """
        root_path, subdir_path = _normalize(root), _normalize(subdir)
        with self._lock:
            root_watch = self._roots.get(root_path)
            if root_watch is None:
                raise RootNotWatched(root_path)
            if subdir_path not in root_watch.subdirs:
                raise SubdirNotWatched(root_path, subdir_path)
            root_watch.subdirs.discard(subdir_path)
            root_watch.subscription.remove(subdir_path)
        logger.info(f"Stopped watching subdirectory: {subdir_path}")

    def forget_subdir(self, root: PathLike, path: PathLike) -> bool:
        """
        Drop a deleted directory, and anything watched below it, from a root.

        Returns:
            True if at least one watched subdirectory was dropped
        """
        root_path, path = _normalize(root), _normalize(path)
        prefix = path + os.sep
        with self._lock:
            root_watch = self._roots.get(root_path)
            if root_watch is None:
                return False
            gone = {d for d in root_watch.subdirs if d == path or d.startswith(prefix)}
            for subdir in gone:
                root_watch.subdirs.discard(subdir)
                root_watch.subscription.remove(subdir)

        for subdir in gone:
            logger.info(f"Watched subdirectory deleted: {subdir}")
        return bool(gone)

    def subdirs(self, root: PathLike) -> Set[str]:
        """
        Watched subdirectories of a root.

        Raises:
            RootNotWatched: If root is not a root
        """
        root_path = _normalize(root)
        with self._lock:
            root_watch = self._roots.get(root_path)
            if root_watch is None:
                raise RootNotWatched(root_path)
            return set(root_watch.subdirs)

    # Reconciliation and jobs

    def reconcile(self, root: PathLike) -> int:
        """
        Watch and thumbnail the existing contents of a root as if every entry was just created.
        Files that already have a thumbnail are left alone.

        Returns:
            Number of thumbnail jobs started

        Raises:
            RootNotWatched: If root is not a root
            OSError: If the root directory cannot be listed
        """
        root_path = _normalize(root)
        with self._lock:
            root_watch = self._roots.get(root_path)
            if root_watch is None:
                raise RootNotWatched(root_path)
        return Reconciler(self, root_watch).run()

    def wait_for_jobs(self, timeout: Optional[float] = None) -> bool:
        """Block until no thumbnail job is running. Returns False on timeout."""
        return self.tracker.wait_idle(timeout)

    def close(self):
        """Remove every root. Running thumbnail jobs are not waited for."""
        for root in self.roots():
            try:
                self.remove_root(root)
            except RootNotWatched:
                pass
        running = self.tracker.total()
        if running:
            logger.info(f"Watcher closed with {running} thumbnail job(s) still running")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # Preferences

    def thumb_size(self) -> Tuple[int, int]:
        preferences = self._preferences
        return preferences.width, preferences.height

    def set_thumb_size(self, width: int, height: int):
        """Set thumbnail dimensions. Values below 1 are raised to 1."""
        with self._lock:
            self._preferences = dataclasses.replace(self._preferences, width=width, height=height)

    def thumb_dir_mode(self) -> int:
        return self._preferences.dir_mode

    def set_thumb_dir_mode(self, mode: int):
        with self._lock:
            self._preferences = dataclasses.replace(self._preferences, dir_mode=mode)

    def thumb_algorithm(self) -> ResampleAlgorithm:
        return self._preferences.algorithm

    def set_thumb_algorithm(self, algorithm: Union[ResampleAlgorithm, str]):
        if not isinstance(algorithm, ResampleAlgorithm):
            algorithm = ResampleAlgorithm.from_name(algorithm)
        with self._lock:
            self._preferences = dataclasses.replace(self._preferences, algorithm=algorithm)
