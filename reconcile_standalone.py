#!/usr/bin/env python3
"""
Standalone Thumbnail Reconcile Script
Thumbnails whatever is missing under the configured roots once and exits.
Can be run as a cron job independently of the main application.
Usage: python reconcile_standalone.py [-c config.yaml] [--timeout SECONDS]
"""

import argparse
import logging
import sys
from collections import Counter
from queue import Empty, Queue

from colorama import Fore, init

from app_config import DEFAULT_CONFIG_FILE, load_config, setup_logging
from main import build_watcher
from watch_events import EventType, WatchError

# Initialize colorama
init(autoreset=True)


def drain(events: Queue, logger: logging.Logger) -> Counter:
    """Count queued events by type, logging every error"""
    counts = Counter()
    while True:
        try:
            event = events.get_nowait()
        except Empty:
            return counts
        counts[event.type] += 1
        if event.type is EventType.ERROR:
            logger.warning(str(event))


def run(config: dict, timeout: float) -> int:
    """Reconcile every configured root once; returns the number of errors"""
    logger = logging.getLogger(__name__)
    watcher = build_watcher(config)
    events: Queue = Queue()
    failures = 0

    try:
        for root in config['roots']:
            try:
                watcher.add_root(root, events)
                watcher.reconcile(root)
            except (WatchError, OSError) as e:
                logger.error(f"Cannot reconcile {root}: {e}")
                failures += 1

        if not watcher.wait_for_jobs(timeout):
            logger.warning(f"Thumbnail jobs still running after {timeout:.0f}s, exiting anyway")
    finally:
        counts = drain(events, logger)
        watcher.close()

    logger.info(
        f"Reconcile complete: {counts[EventType.THUMBNAIL_CREATED]} created, "
        f"{counts[EventType.SUBDIR_WATCHED]} subdirectories, {counts[EventType.ERROR]} errors"
    )
    return failures + counts[EventType.ERROR]


def cli(argv=None):
    parser = argparse.ArgumentParser(description='Create missing thumbnails once and exit')
    parser.add_argument('-c', '--config', default=DEFAULT_CONFIG_FILE)
    parser.add_argument('--timeout', type=float, default=600.0, help='Seconds to wait for thumbnail jobs')
    args = parser.parse_args(argv)

    config = load_config(args.config)
    setup_logging(config)
    logging.getLogger(__name__).info("Running standalone reconcile")

    errors = run(config, args.timeout)
    if errors:
        print(f"{Fore.YELLOW}Reconcile finished with {errors} error(s)")
        sys.exit(1)
    print(f"{Fore.GREEN}Reconcile finished")


if __name__ == '__main__':
    cli()
