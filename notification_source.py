"""
Notification Source
Per-root filesystem notification subscriptions backed by watchdog observers
"""

import dataclasses
import errno
import logging
import os
import threading
from abc import ABC, abstractmethod
from enum import Enum
from queue import Queue
from typing import Dict

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

logger = logging.getLogger(__name__)

# Read-only access never changes what should be watched or thumbnailed
_IGNORED_EVENT_TYPES = {'opened', 'closed_no_write'}


class NotificationKind(Enum):
    CREATED = 'created'
    OTHER = 'other'


@dataclasses.dataclass(frozen=True)
class Notification:
    """Something happened to a path under a subscribed directory"""
    path: str
    kind: NotificationKind


# Placed in the inbox once a subscription is closed
CLOSED = object()


class Subscription(ABC):
    """
    A set of watched directories delivering into a single inbox.

    The inbox carries Notification items, exception instances for errors
    raised by the source itself, and finally the CLOSED sentinel.
    """

    def __init__(self, path: str):
        self.path = path
        self.inbox: Queue = Queue()
        self.closed = False
        self._close_lock = threading.Lock()

    def post(self, path: str, kind: NotificationKind):
        self.inbox.put(Notification(path, kind))

    def post_error(self, error: BaseException):
        self.inbox.put(error)

    @abstractmethod
    def add(self, path: str):
        """Start delivering notifications for a directory"""

    @abstractmethod
    def remove(self, path: str):
        """Stop delivering notifications for a directory"""

    def close(self):
        """Stop all delivery and wake whoever is reading the inbox"""
        with self._close_lock:
            if self.closed:
                return
            self.closed = True
        try:
            self._shutdown()
        finally:
            self.inbox.put(CLOSED)

    def _shutdown(self):
        """Release backend resources. Called once, before CLOSED is posted."""


class _NotificationHandler(FileSystemEventHandler):
    """Translate watchdog events into subscription notifications"""

    def __init__(self, subscription: 'WatchdogSubscription'):
        super().__init__()
        self.subscription = subscription

    def on_any_event(self, event: FileSystemEvent):
        try:
            if event.event_type in _IGNORED_EVENT_TYPES:
                return

            src_path = os.fsdecode(event.src_path)
            if event.event_type == EVENT_TYPE_CREATED:
                self.subscription.post(src_path, NotificationKind.CREATED)
            elif event.event_type == EVENT_TYPE_MOVED:
                # The old name is gone, the new name appeared
                self.subscription.post(src_path, NotificationKind.OTHER)
                self.subscription.post(os.fsdecode(event.dest_path), NotificationKind.CREATED)
            else:
                self.subscription.post(src_path, NotificationKind.OTHER)
        except Exception as e:
            logger.error(f"Error translating filesystem event {event}: {e}", exc_info=True)
            self.subscription.post_error(e)


class WatchdogSubscription(Subscription):
    """Subscription running one watchdog observer with a non-recursive watch per directory"""

    def __init__(self, path: str, observer_factory=Observer, join_timeout: float = 5.0):
        super().__init__(path)
        self.join_timeout = join_timeout
        self._handler = _NotificationHandler(self)
        self._watches: Dict[str, object] = {}
        self._lock = threading.Lock()

        self._observer = observer_factory()
        self._observer.daemon = True
        self._observer.start()
        try:
            self.add(path)
        except Exception:
            self._observer.stop()
            raise

    def add(self, path: str):
        # Some observer backends accept a missing path and fail later on their own thread
        if not os.path.isdir(path):
            raise FileNotFoundError(errno.ENOENT, 'Not a directory or does not exist', path)
        with self._lock:
            if path in self._watches:
                return
            self._watches[path] = self._observer.schedule(self._handler, path, recursive=False)
        logger.debug(f"Scheduled watch: {path}")

    def remove(self, path: str):
        with self._lock:
            watch = self._watches.pop(path, None)
        if watch is None:
            return
        try:
            self._observer.unschedule(watch)
            logger.debug(f"Unscheduled watch: {path}")
        except (OSError, KeyError) as e:
            # The directory is usually gone already, taking its watch with it
            logger.debug(f"Error unscheduling watch for {path}: {e}")

    def _shutdown(self):
        with self._lock:
            self._watches.clear()
        self._observer.stop()
        if threading.current_thread() is not self._observer:
            self._observer.join(timeout=self.join_timeout)


class WatchdogSource:
    """Default notification source"""

    def __init__(self, observer_factory=Observer):
        self.observer_factory = observer_factory

    def subscribe(self, path: str) -> WatchdogSubscription:
        return WatchdogSubscription(path, observer_factory=self.observer_factory)
