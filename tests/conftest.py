"""Shared fixtures and fakes for the thumbnail watcher tests."""

import errno
import threading
import time
from pathlib import Path
from queue import Empty, Queue

import pytest
from PIL import Image

from notification_source import NotificationKind, Subscription
from thumbnail_job import PillowImaging
from thumbnail_watcher import ThumbnailWatcher
from watch_policy import ThumbnailPreferences, directory_policy


class FakeSubscription(Subscription):
    """In-memory subscription: records watched paths and lets tests post notifications."""

    def __init__(self, path, fail_paths):
        super().__init__(path)
        self.fail_paths = fail_paths
        self.watched = set()
        self.removed = []
        self.add(path)

    def add(self, path):
        if path in self.fail_paths:
            raise PermissionError(errno.EACCES, 'Permission denied', path)
        self.watched.add(path)

    def remove(self, path):
        self.watched.discard(path)
        self.removed.append(path)

    def created(self, path):
        self.post(str(path), NotificationKind.CREATED)

    def changed(self, path):
        self.post(str(path), NotificationKind.OTHER)


class FakeSource:
    def __init__(self):
        self.subscriptions = {}
        self.subscribe_calls = 0
        self.fail_paths = set()

    def subscribe(self, path):
        self.subscribe_calls += 1
        subscription = FakeSubscription(path, self.fail_paths)
        self.subscriptions[path] = subscription
        return subscription


class GatedImaging(PillowImaging):
    """Pillow imaging whose save blocks until the test releases it."""

    def __init__(self):
        self.entered = threading.Event()
        self.release = threading.Event()

    def save(self, image, path):
        self.entered.set()
        self.release.wait(10)
        super().save(image, path)


class RecordingRoot:
    """Stands in for a registered root when job functions are called directly."""

    def __init__(self, path='/g'):
        self.path = path
        self.events = []

    def emit(self, event_type, path, error=None):
        self.events.append((event_type, path, error))


def make_image(path, size=(64, 48), color=(200, 30, 30), mode='RGB'):
    Image.new(mode, size, color).save(path)
    return str(path)


def collect(sink: Queue, count: int, timeout: float = 5.0) -> list:
    """Read up to count events from a sink, giving up after timeout."""
    events = []
    deadline = time.monotonic() + timeout
    while len(events) < count:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        try:
            events.append(sink.get(timeout=remaining))
        except Empty:
            break
    return events


def drain(sink: Queue) -> list:
    events = []
    while True:
        try:
            events.append(sink.get_nowait())
        except Empty:
            return events


def wait_until(predicate, timeout: float = 5.0, interval: float = 0.02) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def gallery(tmp_path) -> Path:
    """A root /g with one pre-existing album."""
    root = tmp_path / 'g'
    (root / 'album').mkdir(parents=True)
    return root


@pytest.fixture
def make_watcher(source):
    created = []

    def factory(**kwargs):
        kwargs.setdefault('preferences', ThumbnailPreferences(width=16, height=16))
        kwargs.setdefault('policy', directory_policy())
        kwargs.setdefault('source', source)
        kwargs.setdefault('poll_interval', 0.05)
        watcher = ThumbnailWatcher(**kwargs)
        created.append(watcher)
        return watcher

    yield factory

    for watcher in created:
        watcher.close()
        watcher.wait_for_jobs(10)


@pytest.fixture
def watcher(make_watcher):
    return make_watcher()
