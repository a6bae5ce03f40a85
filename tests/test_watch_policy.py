"""Tests for watch policies and thumbnail preferences."""

import os
import tempfile

import pytest

from watch_policy import (
    ResampleAlgorithm,
    ThumbnailPreferences,
    WatchPolicy,
    directory_policy,
    parse_dir_mode,
    policy_from_config,
    preferences_from_config,
)

ROOT = os.path.abspath('/g')


def p(*parts):
    return os.path.join(ROOT, *parts)


def test_default_policy_does_nothing():
    policy = WatchPolicy()
    assert policy.should_watch_subdir(ROOT, p('album')) is False
    assert policy.should_create_thumb(ROOT, p('album', 'photo.png')) is False
    assert policy.thumb_dir_getter(p('album', 'photo.png')) == tempfile.gettempdir()
    assert policy.thumb_name_getter(p('album', 'photo.png')) == 'photo.png'


def test_policy_is_read_only():
    policy = WatchPolicy()
    with pytest.raises(Exception):
        policy.should_watch_subdir = lambda root, path: True


def test_default_preferences():
    preferences = ThumbnailPreferences()
    assert (preferences.width, preferences.height) == (128, 128)
    assert preferences.algorithm is ResampleAlgorithm.NEAREST_NEIGHBOR
    assert preferences.dir_mode == 0o777


def test_preferences_clamp_size():
    preferences = ThumbnailPreferences(width=0, height=-20)
    assert (preferences.width, preferences.height) == (1, 1)


@pytest.mark.parametrize('name, expected', [
    ('lanczos', ResampleAlgorithm.LANCZOS),
    ('Catmull-Rom', ResampleAlgorithm.CATMULL_ROM),
    ('NEAREST_NEIGHBOR', ResampleAlgorithm.NEAREST_NEIGHBOR),
    ('mitchell netravali', ResampleAlgorithm.MITCHELL_NETRAVALI),
])
def test_algorithm_from_name(name, expected):
    assert ResampleAlgorithm.from_name(name) is expected


def test_algorithm_from_unknown_name():
    with pytest.raises(ValueError, match='sinc'):
        ResampleAlgorithm.from_name('sinc')


def test_directory_policy_watches_direct_children_only():
    policy = directory_policy()
    assert policy.should_watch_subdir(ROOT, p('album'))
    assert not policy.should_watch_subdir(ROOT, p('album', 'nested'))
    assert not policy.should_watch_subdir(ROOT, ROOT)
    assert not policy.should_watch_subdir(ROOT, os.path.abspath('/elsewhere/album'))


def test_directory_policy_rejects_hidden_and_thumbnail_dirs():
    policy = directory_policy()
    assert not policy.should_watch_subdir(ROOT, p('.hidden'))
    assert not policy.should_watch_subdir(ROOT, p('.thumbs'))

    visible_thumbs = directory_policy(dir_name='thumbs')
    assert not visible_thumbs.should_watch_subdir(ROOT, p('thumbs'))


def test_directory_policy_max_depth():
    policy = directory_policy(max_depth=1)
    assert policy.should_watch_subdir(ROOT, p('album', 'day1'))
    assert not policy.should_watch_subdir(ROOT, p('album', 'day1', 'raw'))
    assert not policy.should_watch_subdir(ROOT, p('.hidden', 'day1'))


def test_directory_policy_thumbnails_images_in_albums():
    policy = directory_policy()
    assert policy.should_create_thumb(ROOT, p('album', 'photo.png'))
    assert policy.should_create_thumb(ROOT, p('album', 'PHOTO.JPG'))
    assert not policy.should_create_thumb(ROOT, p('photo.png'))
    assert not policy.should_create_thumb(ROOT, p('album', 'notes.txt'))
    assert not policy.should_create_thumb(ROOT, p('album', '.photo.png'))
    assert not policy.should_create_thumb(ROOT, p('album', '.thumbs', 'photo.png'))
    assert not policy.should_create_thumb(ROOT, p('album', 'nested', 'photo.png'))


def test_directory_policy_extensions_without_dot():
    policy = directory_policy(extensions=['webp'])
    assert policy.should_create_thumb(ROOT, p('album', 'photo.webp'))
    assert not policy.should_create_thumb(ROOT, p('album', 'photo.png'))


def test_directory_policy_thumbnail_location():
    policy = directory_policy()
    assert policy.thumbnail_path(p('album', 'photo.png')) == p('album', '.thumbs', 'photo.png')


@pytest.mark.parametrize('value, expected', [
    (0o755, 0o755),
    ('755', 0o755),
    ('0o700', 0o700),
    ('0777', 0o777),
])
def test_parse_dir_mode(value, expected):
    assert parse_dir_mode(value) == expected


def test_preferences_from_config():
    config = {
        'thumbnails': {'width': 200, 'height': 0, 'algorithm': 'lanczos', 'dir_mode': '750'},
        'retry': {'step_seconds': 1, 'max_backoff_seconds': 10},
    }
    preferences = preferences_from_config(config)
    assert (preferences.width, preferences.height) == (200, 1)
    assert preferences.algorithm is ResampleAlgorithm.LANCZOS
    assert preferences.dir_mode == 0o750
    assert preferences.retry_step == 1.0
    assert preferences.max_backoff == 10.0


def test_preferences_from_empty_config():
    assert preferences_from_config({}) == ThumbnailPreferences()


def test_policy_from_config():
    config = {
        'thumbnails': {'dir_name': '_thumbs', 'extensions': ['.png']},
        'watch': {'max_depth': 1, 'skip_hidden': False},
    }
    policy = policy_from_config(config)
    assert policy.should_watch_subdir(ROOT, p('.hidden', 'day1'))
    assert not policy.should_watch_subdir(ROOT, p('_thumbs'))
    assert policy.should_create_thumb(ROOT, p('album', 'a.png'))
    assert not policy.should_create_thumb(ROOT, p('album', 'a.jpg'))
    assert policy.thumbnail_path(p('album', 'a.png')) == p('album', '_thumbs', 'a.png')
