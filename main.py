#!/usr/bin/env python3
"""
Thumbnail Watcher
Main application entry point: watch the configured roots and print thumbnail events
"""

import argparse
import logging
import signal
import sys
from queue import Empty, Queue
from threading import Event

from colorama import Fore, Style, init

from app_config import DEFAULT_CONFIG_FILE, load_config, setup_logging
from thumbnail_watcher import ThumbnailWatcher
from watch_events import EventType, WatchError, WatchEvent
from watch_policy import policy_from_config, preferences_from_config

# Initialize colorama for colored console output
init(autoreset=True)

EVENT_COLORS = {
    EventType.ERROR: Fore.RED,
    EventType.THUMBNAIL_CREATED: Fore.GREEN,
    EventType.THUMBNAIL_REMOVED: Fore.YELLOW,
    EventType.SUBDIR_WATCHED: Fore.CYAN,
}


def print_event(event: WatchEvent):
    print(f"{EVENT_COLORS.get(event.type, '')}{event}{Style.RESET_ALL}")


def build_watcher(config: dict) -> ThumbnailWatcher:
    """Create a watcher from the thumbnail and watch sections of the configuration"""
    return ThumbnailWatcher(
        preferences=preferences_from_config(config),
        policy=policy_from_config(config),
    )


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='Keep thumbnails in sync with watched image folders')
    parser.add_argument('-c', '--config', default=DEFAULT_CONFIG_FILE, help='Path to the YAML configuration file')
    parser.add_argument('--no-reconcile', action='store_true', help='Skip thumbnailing existing files on startup')
    return parser.parse_args(argv)


def main(argv=None):
    """Main application entry point"""
    args = parse_args(argv)

    print(f"{Fore.CYAN}{'='*60}")
    print(f"{Fore.CYAN}Thumbnail Watcher")
    print(f"{Fore.CYAN}{'='*60}{Style.RESET_ALL}\n")

    config = load_config(args.config)
    setup_logging(config)
    logger = logging.getLogger(__name__)
    logger.info("Starting Thumbnail Watcher")

    try:
        watcher = build_watcher(config)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        print(f"{Fore.RED}Error: Invalid configuration: {e}")
        sys.exit(1)

    events: Queue = Queue()
    for root in config['roots']:
        try:
            watcher.add_root(root, events)
            print(f"{Fore.GREEN}Watching root: {root}")
        except WatchError as e:
            logger.error(f"Failed to watch root {root}: {e}")
            print(f"{Fore.RED}Error: Failed to watch root {root}: {e}")

    if not watcher.roots():
        print(f"{Fore.RED}Error: No root could be watched")
        sys.exit(1)

    if config.get('reconcile_on_start', True) and not args.no_reconcile:
        for root in sorted(watcher.roots()):
            try:
                started = watcher.reconcile(root)
                print(f"{Fore.GREEN}Reconciled {root}: {started} thumbnail(s) queued")
            except OSError as e:
                logger.error(f"Failed to reconcile {root}: {e}", exc_info=True)
                print(f"{Fore.YELLOW}Warning: Failed to reconcile {root}: {e}")

    stop_event = Event()

    def signal_handler(sig, frame):
        print(f"\n{Fore.YELLOW}Shutting down...{Style.RESET_ALL}")
        logger.info("Received shutdown signal")
        stop_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    print(f"{Fore.CYAN}Application running. Press Ctrl+C to stop.{Style.RESET_ALL}\n")
    try:
        while not stop_event.is_set():
            try:
                event = events.get(timeout=0.5)
            except Empty:
                continue
            print_event(event)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        print(f"{Fore.RED}Fatal error: {e}{Style.RESET_ALL}")
        sys.exit(1)
    finally:
        watcher.close()
        logger.info("Application stopped")


if __name__ == '__main__':
    main()
