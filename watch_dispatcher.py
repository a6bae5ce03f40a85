"""
Watch Dispatcher
One thread per root turning raw notifications into watch/thumbnail actions
"""

import logging
import os
import stat
from queue import Empty
from threading import Event, Thread

from notification_source import CLOSED, NotificationKind
from watch_events import EventType, RootNotWatched, SubdirAlreadyWatched, SubscriptionError

logger = logging.getLogger(__name__)


class RootDispatcher(Thread):
    """
    Consume a root's notification inbox strictly in arrival order.

    Created paths are classified (directory or regular file) against the policy;
    anything else that leaves the path missing triggers thumbnail removal.
    Thumbnail work is handed to the job runner and never waited on.
    """

    def __init__(self, watcher, root, poll_interval: float = 1.0):
        super().__init__(daemon=True, name=f"Dispatcher-{os.path.basename(root.path) or root.path}")
        self.watcher = watcher
        self.root = root
        self.poll_interval = poll_interval
        self.stop_event = Event()

    def stop(self):
        self.stop_event.set()

    def run(self):
        logger.info(f"Dispatcher started for root: {self.root.path}")
        inbox = self.root.subscription.inbox

        while not self.stop_event.is_set():
            try:
                item = inbox.get(timeout=self.poll_interval)
            except Empty:
                continue

            if item is CLOSED or self.stop_event.is_set():
                break

            try:
                self.dispatch(item)
            except Exception as e:
                logger.error(f"Error dispatching {item} for root {self.root.path}: {e}", exc_info=True)
                self.root.emit(EventType.ERROR, getattr(item, 'path', ''), e)

        logger.info(f"Dispatcher stopped for root: {self.root.path}")

    def dispatch(self, item):
        """Handle a single inbox item"""
        if isinstance(item, BaseException):
            logger.warning(f"Notification source error for root {self.root.path}: {item}")
            self.root.emit(EventType.ERROR, '', item)
        elif item.kind is NotificationKind.CREATED:
            self._on_created(item.path)
        else:
            self._on_changed(item.path)

    def _on_created(self, path: str):
        logger.debug(f"Created: {path}")
        try:
            mode = os.stat(path).st_mode
        except OSError as e:
            # Gone again between notification and stat
            self.root.emit(EventType.ERROR, path, e)
            return

        policy = self.watcher.policy
        if stat.S_ISDIR(mode):
            if policy.should_watch_subdir(self.root.path, path):
                try:
                    self.watcher.add_subdir(self.root.path, path)
                except SubdirAlreadyWatched:
                    logger.debug(f"Subdirectory already watched: {path}")
                except (SubscriptionError, RootNotWatched) as e:
                    logger.debug(f"Subdirectory not watched: {e}")
        elif stat.S_ISREG(mode):
            if policy.should_create_thumb(self.root.path, path):
                self.watcher.jobs.create(self.root, path)

    def _on_changed(self, path: str):
        logger.debug(f"Changed: {path}")
        try:
            os.stat(path)
            return
        except FileNotFoundError:
            pass
        except OSError as e:
            self.root.emit(EventType.ERROR, path, e)
            return

        self.watcher.forget_subdir(self.root.path, path)
        self.watcher.jobs.remove(self.root, path)
