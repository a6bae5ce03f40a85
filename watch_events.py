"""
Watch Events
Outcome records reported to a root's event sink, and the registry error taxonomy
"""

import dataclasses
from enum import Enum
from typing import Optional


class EventType(Enum):
    """Kind of outcome reported for a root"""
    ERROR = "Error"
    THUMBNAIL_CREATED = "ThumbnailCreated"
    THUMBNAIL_REMOVED = "ThumbnailRemoved"
    SUBDIR_WATCHED = "SubdirWatched"

    def __str__(self) -> str:
        return self.value


@dataclasses.dataclass(frozen=True)
class WatchEvent:
    """A single watching or thumbnailing outcome"""
    root: str
    path: str
    type: EventType
    error: Optional[BaseException] = None

    def __str__(self) -> str:
        if self.type is EventType.ERROR:
            return f"{self.type}: {self.error} @ {self.path} \\{self.root}"
        return f"{self.type}: {self.path} \\{self.root}"


class WatchError(Exception):
    """Base class for errors raised synchronously by the watcher"""


class RootAlreadyWatched(WatchError):
    def __init__(self, root: str):
        super().__init__(f"root is already watched: {root}")
        self.root = root


class RootNotWatched(WatchError):
    def __init__(self, root: str):
        super().__init__(f"root is not watched: {root}")
        self.root = root


class SubdirAlreadyWatched(WatchError):
    def __init__(self, root: str, subdir: str):
        super().__init__(f"subdirectory is already watched: {subdir} (root {root})")
        self.root = root
        self.subdir = subdir


class SubdirNotWatched(WatchError):
    def __init__(self, root: str, subdir: str):
        super().__init__(f"subdirectory is not watched: {subdir} (root {root})")
        self.root = root
        self.subdir = subdir


class SubscriptionError(WatchError):
    """Subscribing a path to filesystem notifications failed"""

    def __init__(self, path: str, cause: BaseException):
        super().__init__(f"cannot watch {path}: {cause}")
        self.path = path
        self.cause = cause
