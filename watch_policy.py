"""
Watch Policy
Caller-supplied rules deciding which paths are watched or thumbnailed and where
thumbnails live, plus the thumbnail preferences applied to every job
"""

import dataclasses
import logging
import os
import tempfile
from enum import Enum
from typing import Any, Callable, Dict, Iterable

from reconciler import nth_subdir

logger = logging.getLogger(__name__)

DEFAULT_THUMB_DIR_NAME = '.thumbs'
DEFAULT_EXTENSIONS = ['.jpg', '.jpeg', '.png', '.gif', '.bmp', '.webp', '.tif', '.tiff']


class ResampleAlgorithm(Enum):
    """Resampling filter selector, passed through to the image collaborator"""
    NEAREST_NEIGHBOR = 'nearest_neighbor'
    BOX = 'box'
    LINEAR = 'linear'
    HERMITE = 'hermite'
    MITCHELL_NETRAVALI = 'mitchell_netravali'
    CATMULL_ROM = 'catmull_rom'
    BSPLINE = 'bspline'
    GAUSSIAN = 'gaussian'
    BARTLETT = 'bartlett'
    LANCZOS = 'lanczos'
    HANN = 'hann'
    HAMMING = 'hamming'
    BLACKMAN = 'blackman'
    WELCH = 'welch'
    COSINE = 'cosine'

    @classmethod
    def from_name(cls, name: str) -> 'ResampleAlgorithm':
        """Look up an algorithm by name, ignoring case, dashes and spaces"""
        key = str(name).strip().lower().replace('-', '_').replace(' ', '_')
        for algorithm in cls:
            if algorithm.value == key:
                return algorithm
        choices = ', '.join(a.value for a in cls)
        raise ValueError(f"Unknown resample algorithm '{name}' (expected one of: {choices})")


@dataclasses.dataclass(frozen=True)
class ThumbnailPreferences:
    """Per-watcher thumbnail settings. Width and height are clamped to at least 1."""
    width: int = 128
    height: int = 128
    algorithm: ResampleAlgorithm = ResampleAlgorithm.NEAREST_NEIGHBOR
    dir_mode: int = 0o777
    retry_step: float = 2.0
    max_backoff: float = 60.0

    def __post_init__(self):
        object.__setattr__(self, 'width', max(1, int(self.width)))
        object.__setattr__(self, 'height', max(1, int(self.height)))


def _default_thumb_dir(path: str) -> str:
    return tempfile.gettempdir()


def _default_thumb_name(path: str) -> str:
    return os.path.basename(path)


def _never(root: str, path: str) -> bool:
    return False


@dataclasses.dataclass(frozen=True)
class WatchPolicy:
    """
    The four policy functions consulted for every discovered path.

    The defaults do nothing to the watched tree: no subdirectory is watched,
    no file is thumbnailed, and thumbnails would land in the temp directory.
    """
    thumb_dir_getter: Callable[[str], str] = _default_thumb_dir
    thumb_name_getter: Callable[[str], str] = _default_thumb_name
    should_watch_subdir: Callable[[str, str], bool] = _never
    should_create_thumb: Callable[[str, str], bool] = _never

    def thumbnail_path(self, source: str) -> str:
        """Full path of the thumbnail belonging to a source file"""
        return os.path.join(self.thumb_dir_getter(source), self.thumb_name_getter(source))


def _relative_parts(root: str, path: str):
    rel = os.path.relpath(os.path.abspath(path), os.path.abspath(root))
    if rel == '.' or rel == os.pardir or rel.startswith(os.pardir + os.sep):
        return None
    return rel.split(os.sep)


def directory_policy(
    dir_name: str = DEFAULT_THUMB_DIR_NAME,
    extensions: Iterable[str] = DEFAULT_EXTENSIONS,
    max_depth: int = 0,
    skip_hidden: bool = True,
) -> WatchPolicy:
    """
    Build the usual gallery policy: thumbnails beside their sources.

    Args:
        dir_name: Name of the thumbnail directory created next to each image
        extensions: File extensions that get thumbnailed
        max_depth: Deepest subdirectory level watched (0 = direct children of a root)
        skip_hidden: Ignore dot-prefixed files and directories

    Returns:
        WatchPolicy placing thumbnails in <parent>/<dir_name>/<basename>
    """
    allowed = {('.' + e.lstrip('.')).lower() for e in extensions}
    max_depth = max(0, int(max_depth))

    def excluded(name: str) -> bool:
        return name == dir_name or (skip_hidden and name.startswith('.'))

    def should_watch_subdir(root: str, path: str) -> bool:
        parts = _relative_parts(root, path)
        if not parts or any(excluded(part) for part in parts):
            return False
        return any(nth_subdir(root, path, n) for n in range(max_depth + 1))

    def should_create_thumb(root: str, path: str) -> bool:
        name = os.path.basename(path)
        if excluded(name) or os.path.splitext(name)[1].lower() not in allowed:
            return False
        return should_watch_subdir(root, os.path.dirname(path))

    def thumb_dir_getter(path: str) -> str:
        return os.path.join(os.path.dirname(path), dir_name)

    return WatchPolicy(
        thumb_dir_getter=thumb_dir_getter,
        thumb_name_getter=_default_thumb_name,
        should_watch_subdir=should_watch_subdir,
        should_create_thumb=should_create_thumb,
    )


def parse_dir_mode(value: Any) -> int:
    """Accept an integer mode or an octal string such as '755' or '0o755'"""
    if isinstance(value, int):
        return value
    text = str(value).strip().lower()
    if text.startswith('0o'):
        text = text[2:]
    return int(text, 8)


def preferences_from_config(config: Dict) -> ThumbnailPreferences:
    """Build thumbnail preferences from the loaded configuration"""
    thumbs = config.get('thumbnails', {}) or {}
    retry = config.get('retry', {}) or {}
    defaults = ThumbnailPreferences()

    preferences = ThumbnailPreferences(
        width=thumbs.get('width', defaults.width),
        height=thumbs.get('height', defaults.height),
        algorithm=ResampleAlgorithm.from_name(thumbs.get('algorithm', defaults.algorithm.value)),
        dir_mode=parse_dir_mode(thumbs.get('dir_mode', defaults.dir_mode)),
        retry_step=float(retry.get('step_seconds', defaults.retry_step)),
        max_backoff=float(retry.get('max_backoff_seconds', defaults.max_backoff)),
    )
    logger.debug(f"Thumbnail preferences: {preferences}")
    return preferences


def policy_from_config(config: Dict) -> WatchPolicy:
    """Build the gallery policy from the loaded configuration"""
    thumbs = config.get('thumbnails', {}) or {}
    watch = config.get('watch', {}) or {}
    return directory_policy(
        dir_name=thumbs.get('dir_name', DEFAULT_THUMB_DIR_NAME),
        extensions=thumbs.get('extensions', DEFAULT_EXTENSIONS),
        max_depth=watch.get('max_depth', 0),
        skip_hidden=watch.get('skip_hidden', True),
    )
