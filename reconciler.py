"""
Reconciler
Brings an already populated root up to date by applying the watch policy to
every existing entry as if it had just been created
"""

import logging
import os
from typing import List, Set

from watch_events import EventType, SubdirAlreadyWatched, SubscriptionError

logger = logging.getLogger(__name__)


def subdirectories(root: str) -> List[str]:
    """
    List the immediate subdirectories of a directory.

    Returns:
        Absolute paths, sorted by name

    Raises:
        OSError: If the directory cannot be read
    """
    root = os.path.abspath(root)
    with os.scandir(root) as entries:
        return sorted(os.path.join(root, entry.name) for entry in entries if entry.is_dir())


def nth_subdir(root: str, path: str, n: int) -> bool:
    """True if path lies exactly n + 1 levels below root (n = 0 is a direct child)"""
    rel = os.path.relpath(os.path.abspath(path), os.path.abspath(root))
    if rel == '.' or rel == os.pardir or rel.startswith(os.pardir + os.sep):
        return False
    return len(rel.split(os.sep)) == n + 1


class Reconciler:
    """Depth-first walk of one root, registering subdirectories and spawning missing thumbnails"""

    def __init__(self, watcher, root):
        self.watcher = watcher
        self.root = root
        self.visited: Set[str] = set()
        self.jobs_started = 0
        self.subdirs_seen = 0

    def run(self) -> int:
        """
        Walk the root.

        Returns:
            Number of thumbnail jobs started

        Raises:
            OSError: If the root itself cannot be listed
        """
        logger.info(f"Reconciling root: {self.root.path}")
        self._walk(self.root.path, top=True)
        logger.info(
            f"Reconciled {self.root.path}: {self.subdirs_seen} subdirectories, "
            f"{self.jobs_started} thumbnail(s) queued"
        )
        return self.jobs_started

    def _walk(self, directory: str, top: bool = False):
        real_path = os.path.realpath(directory)
        if real_path in self.visited:
            logger.debug(f"Already visited, skipping: {directory}")
            return
        self.visited.add(real_path)

        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            if top:
                raise
            logger.warning(f"Cannot list {directory}: {e}")
            self.root.emit(EventType.ERROR, directory, e)
            return

        policy = self.watcher.policy
        for entry in entries:
            path = entry.path
            try:
                is_dir = entry.is_dir()
                is_file = not is_dir and entry.is_file()
            except OSError as e:
                self.root.emit(EventType.ERROR, path, e)
                continue

            if is_dir:
                if not policy.should_watch_subdir(self.root.path, path):
                    continue
                try:
                    self.watcher.add_subdir(self.root.path, path)
                except SubdirAlreadyWatched:
                    pass
                except SubscriptionError:
                    # Already reported as an event
                    continue
                self.subdirs_seen += 1
                self._walk(path)
            elif is_file and policy.should_create_thumb(self.root.path, path):
                if os.path.lexists(policy.thumbnail_path(path)):
                    continue
                if self.watcher.jobs.create(self.root, path) is not None:
                    self.jobs_started += 1
