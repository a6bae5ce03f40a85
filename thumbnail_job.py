"""
Thumbnail Jobs
Creates and removes single thumbnails on independent threads, waiting out
files that are still being written
"""

import errno
import logging
import os
import time
from threading import Thread
from typing import Callable, Optional

from PIL import Image, ImageOps, UnidentifiedImageError

from job_tracker import JobTracker
from watch_events import EventType
from watch_policy import ResampleAlgorithm, ThumbnailPreferences, WatchPolicy

logger = logging.getLogger(__name__)

# Pillow ships a subset of the filters; each algorithm maps to its closest relative
_PIL_FILTERS = {
    ResampleAlgorithm.NEAREST_NEIGHBOR: Image.Resampling.NEAREST,
    ResampleAlgorithm.BOX: Image.Resampling.BOX,
    ResampleAlgorithm.LINEAR: Image.Resampling.BILINEAR,
    ResampleAlgorithm.HERMITE: Image.Resampling.BICUBIC,
    ResampleAlgorithm.MITCHELL_NETRAVALI: Image.Resampling.BICUBIC,
    ResampleAlgorithm.CATMULL_ROM: Image.Resampling.BICUBIC,
    ResampleAlgorithm.BSPLINE: Image.Resampling.BICUBIC,
    ResampleAlgorithm.GAUSSIAN: Image.Resampling.BICUBIC,
    ResampleAlgorithm.BARTLETT: Image.Resampling.LANCZOS,
    ResampleAlgorithm.LANCZOS: Image.Resampling.LANCZOS,
    ResampleAlgorithm.HANN: Image.Resampling.LANCZOS,
    ResampleAlgorithm.HAMMING: Image.Resampling.HAMMING,
    ResampleAlgorithm.BLACKMAN: Image.Resampling.LANCZOS,
    ResampleAlgorithm.WELCH: Image.Resampling.LANCZOS,
    ResampleAlgorithm.COSINE: Image.Resampling.LANCZOS,
}

_NO_ALPHA_EXTENSIONS = {'.jpg', '.jpeg', '.bmp'}


class PillowImaging:
    """Image collaborator: open, resample and save with Pillow"""

    def open(self, path: str) -> Image.Image:
        """Fully decode an image. Raises UnidentifiedImageError for unrecognised data."""
        with Image.open(path) as image:
            image.load()
            return image.copy()

    def resample(self, image: Image.Image, width: int, height: int, algorithm: ResampleAlgorithm) -> Image.Image:
        """Scale to fill width x height, cropping the overflow around the centre"""
        return ImageOps.fit(image, (width, height), method=self.filter_for(algorithm))

    def save(self, image: Image.Image, path: str):
        """Save in the format implied by the file extension"""
        if os.path.splitext(path)[1].lower() in _NO_ALPHA_EXTENSIONS and image.mode not in ('RGB', 'L'):
            image = self._flatten(image)
        image.save(path)

    @staticmethod
    def filter_for(algorithm: ResampleAlgorithm) -> int:
        return _PIL_FILTERS.get(algorithm, Image.Resampling.NEAREST)

    @staticmethod
    def _flatten(image: Image.Image) -> Image.Image:
        if image.mode in ('RGBA', 'LA', 'PA') or (image.mode == 'P' and 'transparency' in image.info):
            image = image.convert('RGBA')
            # White background for transparency
            background = Image.new('RGB', image.size, (255, 255, 255))
            background.paste(image, mask=image.split()[3])
            return background
        return image.convert('RGB')


def open_image_when_ready(
    imaging,
    path: str,
    retry_step: float = 2.0,
    max_backoff: float = 60.0,
    sleep: Callable[[float], None] = time.sleep,
):
    """
    Open an image, retrying while its format is not recognised yet.

    A freshly created file may still be mid-write, so UnidentifiedImageError is
    treated as transient. The Nth retry waits N * retry_step seconds; once the
    total time slept exceeds max_backoff the last error is raised. Any other
    error is raised immediately.
    """
    retry = 0
    waited = 0.0
    while True:
        try:
            return imaging.open(path)
        except UnidentifiedImageError:
            if waited > max_backoff or retry_step <= 0:
                logger.warning(f"Giving up on {path} after {retry} retries ({waited:.0f}s)")
                raise
            retry += 1
            delay = retry * retry_step
            logger.debug(f"Image not readable yet, retry {retry} in {delay:.0f}s: {path}")
            sleep(delay)
            waited += delay


class ThumbnailJobRunner:
    """Spawns create/remove jobs and reports their outcome to the owning root"""

    def __init__(
        self,
        policy: WatchPolicy,
        preferences_getter: Callable[[], ThumbnailPreferences],
        imaging=None,
        tracker: Optional[JobTracker] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.policy = policy
        self.preferences_getter = preferences_getter
        self.imaging = imaging or PillowImaging()
        self.tracker = tracker or JobTracker()
        self.sleep = sleep

    def create(self, root, source: str) -> Optional[Thread]:
        """
        Thumbnail source in the background.

        If a create for source is already running it runs once more when done,
        so the thumbnail always ends up reflecting the latest file content.
        Returns None in that case.
        """
        name = f"ThumbCreate-{os.path.basename(source)}"
        return self.tracker.spawn(root.path, name, self.create_thumbnail, root, source, key=source)

    def remove(self, root, source: str) -> Optional[Thread]:
        """Remove the thumbnail of source in the background"""
        name = f"ThumbRemove-{os.path.basename(source)}"
        return self.tracker.spawn(root.path, name, self.remove_thumbnail, root, source)

    def create_thumbnail(self, root, source: str):
        """Create the thumbnail of source, reporting the outcome to root"""
        try:
            self._create(root, source)
        except Exception as e:
            # Policy and preference callables are caller code
            logger.error(f"Thumbnail job failed for {source}: {e}", exc_info=True)
            root.emit(EventType.ERROR, source, e)

    def remove_thumbnail(self, root, source: str):
        """Remove the thumbnail of source, reporting the outcome to root"""
        try:
            self._remove(root, source)
        except Exception as e:
            logger.error(f"Thumbnail removal failed for {source}: {e}", exc_info=True)
            root.emit(EventType.ERROR, source, e)

    def _create(self, root, source: str):
        preferences = self.preferences_getter()

        try:
            image = open_image_when_ready(
                self.imaging,
                source,
                retry_step=preferences.retry_step,
                max_backoff=preferences.max_backoff,
                sleep=self.sleep,
            )
        except Exception as e:
            logger.warning(f"Cannot open image {source}: {e}")
            root.emit(EventType.ERROR, source, e)
            return

        thumb_dir = self.policy.thumb_dir_getter(source)
        try:
            os.mkdir(thumb_dir, preferences.dir_mode)
            logger.info(f"Created thumbnail directory: {thumb_dir}")
        except FileExistsError:
            pass
        except OSError as e:
            logger.warning(f"Cannot create thumbnail directory {thumb_dir}: {e}")
            root.emit(EventType.ERROR, thumb_dir, e)
            return

        thumb_path = os.path.join(thumb_dir, self.policy.thumb_name_getter(source))
        try:
            thumb = self.imaging.resample(image, preferences.width, preferences.height, preferences.algorithm)
            self.imaging.save(thumb, thumb_path)
        except Exception as e:
            logger.warning(f"Cannot save thumbnail {thumb_path}: {e}")
            root.emit(EventType.ERROR, thumb_path, e)
            return

        if not os.path.exists(source):
            # Deleted while we were writing; the removal may already have run
            self._discard(thumb_path)
            root.emit(
                EventType.ERROR,
                source,
                FileNotFoundError(errno.ENOENT, 'Source removed while thumbnailing', source),
            )
            return

        logger.info(f"Thumbnail created: {thumb_path}")
        root.emit(EventType.THUMBNAIL_CREATED, thumb_path)

    def _remove(self, root, source: str):
        thumb_path = self.policy.thumbnail_path(source)
        try:
            os.remove(thumb_path)
        except FileNotFoundError:
            return
        except OSError as e:
            logger.warning(f"Cannot remove thumbnail {thumb_path}: {e}")
            root.emit(EventType.ERROR, thumb_path, e)
            return

        logger.info(f"Thumbnail removed: {thumb_path}")
        root.emit(EventType.THUMBNAIL_REMOVED, thumb_path)

    def _discard(self, thumb_path: str):
        try:
            os.remove(thumb_path)
            logger.info(f"Discarded thumbnail of removed source: {thumb_path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Cannot discard thumbnail {thumb_path}: {e}")
