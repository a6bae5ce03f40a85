"""
Application Configuration
YAML configuration loading and logging setup shared by the entry points
"""

import logging
import sys
from pathlib import Path
from typing import Dict

import yaml
from colorama import Fore

DEFAULT_CONFIG_FILE = 'config.yaml'


def resolve_path(path_str: str, base_dir: Path) -> Path:
    """
    Resolve a path string to an absolute Path.
    Relative paths are resolved against base_dir; absolute paths are used as-is.
    """
    path = Path(path_str).expanduser()
    if path.is_absolute():
        return path
    return (base_dir / path).resolve()


def load_config(config_path: str = DEFAULT_CONFIG_FILE) -> Dict:
    """Load configuration from a YAML file, exiting with a message if it is unusable"""
    config_file = Path(config_path).resolve()

    if not config_file.exists():
        print(f"{Fore.RED}Error: Configuration file not found: {config_path}")
        print(f"{Fore.YELLOW}Please create a config.yaml file. See config.yaml in the project for an example.")
        sys.exit(1)

    config_dir = config_file.parent

    try:
        with open(config_file, 'r') as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        print(f"{Fore.RED}Error: Failed to parse configuration file: {e}")
        sys.exit(1)
    except OSError as e:
        print(f"{Fore.RED}Error: Failed to load configuration: {e}")
        sys.exit(1)

    roots = config.get('roots')
    if not roots:
        print(f"{Fore.RED}Error: Missing required configuration: roots")
        sys.exit(1)
    if isinstance(roots, str):
        roots = [roots]

    # Support both absolute and relative root paths
    config['roots'] = [str(resolve_path(str(root), config_dir)) for root in roots]

    log_config = config.setdefault('logging', {}) or {}
    if log_config.get('file'):
        log_config['file'] = str(resolve_path(log_config['file'], config_dir))

    return config


def setup_logging(config: Dict):
    """Setup logging configuration"""
    log_config = config.get('logging', {}) or {}
    log_level = getattr(logging, str(log_config.get('level', 'INFO')).upper(), logging.INFO)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    log_file = log_config.get('file', 'thumbnail_watcher.log')
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    if log_config.get('console', True):
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    # Pillow logs every plugin it probes at DEBUG
    logging.getLogger('PIL').setLevel(max(log_level, logging.INFO))
    logging.getLogger('watchdog').setLevel(max(log_level, logging.INFO))
