# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Command-line inspection of a file-backed resource cache.

Usage:
    python -m delorean_cache list [--user ID]
    python -m delorean_cache show RESOURCE --user ID
    python -m delorean_cache clear --user ID [--resource NAME]
    python -m delorean_cache --log-dir DIR list
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional, TextIO

from delorean_cache.cache import ResourceCache
from delorean_cache.config import Config, ConfigurationError
from delorean_cache.errors import StorageError
from delorean_cache.log_config import get_storage_file
from delorean_cache.logging_setup import setup_logging
from delorean_cache.models import CacheEntry
from delorean_cache.storage import FileStorage

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        Parsed arguments namespace.
    """
    parser = argparse.ArgumentParser(
        prog="delorean_cache",
        description="Inspect and clear DeLorean resource cache entries",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Configuration file. Default: ./.delorean_cache.yml if present",
    )
    parser.add_argument(
        "--storage",
        type=Path,
        default=None,
        help=(
            "Storage file. Default: storage_path from the configuration, "
            f"else {get_storage_file()}"
        ),
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--log-dir",
        type=Path,
        default=None,
        help="Also write JSON logs to this directory",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    list_parser = subparsers.add_parser("list", help="List cache entries")
    list_parser.add_argument("--user", default=None, help="Only entries of this user")

    show_parser = subparsers.add_parser("show", help="Print one entry as JSON")
    show_parser.add_argument("resource", help="Resource name, e.g. user-settings")
    show_parser.add_argument("--user", required=True, help="User id")

    clear_parser = subparsers.add_parser("clear", help="Clear entries of a user")
    clear_parser.add_argument("--user", required=True, help="User id")
    clear_parser.add_argument("--resource", default=None, help="Only this resource")

    return parser.parse_args(argv)


def load_config(config_path: Optional[Path]) -> Config:
    """Load configuration; an explicitly named file must exist.

    Raises:
        ConfigurationError: If config_path is given but missing.
    """
    if config_path is not None and not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")
    return Config(config_path=config_path)


def open_cache(args: argparse.Namespace, config: Config) -> ResourceCache:
    storage_path = args.storage or config.storage_path or get_storage_file()
    logger.debug(f"Using storage {storage_path}")
    return ResourceCache(FileStorage(storage_path), key_prefix=config.key_prefix)


def _read_raw_entry(cache: ResourceCache, key: str) -> Optional[CacheEntry]:
    # Reads around ResourceCache.get so inspecting never purges mismatched versions
    raw = cache.storage.get_item(key) if cache.storage is not None else None
    if not raw:
        return None
    try:
        return CacheEntry.from_dict(json.loads(raw))
    except (ValueError, KeyError, TypeError):
        return None


def cmd_list(cache: ResourceCache, user: Optional[str], out: TextIO) -> int:
    now = cache.now()
    keys = cache.keys(user)
    for key in keys:
        entry = _read_raw_entry(cache, key)
        if entry is None:
            out.write(f"{key}\t<unreadable>\n")
            continue
        age_s = entry.age_ms(now) / 1000
        out.write(f"{key}\tversion={entry.version}\tage={age_s:.1f}s\n")

    if not keys:
        out.write("No cache entries\n")
    return 0


def cmd_show(cache: ResourceCache, user: str, resource: str, out: TextIO) -> int:
    entry = _read_raw_entry(cache, cache.cache_key(user, resource))
    if entry is None:
        out.write(f"No entry for {resource} (user {user})\n")
        return 1

    out.write(json.dumps(entry.to_dict(), indent=2, sort_keys=True) + "\n")
    return 0


def cmd_clear(cache: ResourceCache, user: str, resource: Optional[str], out: TextIO) -> int:
    if resource:
        cache.clear(user, resource)
        logger.info(f"Cleared {resource} for user {user}")
        out.write(f"Cleared {resource} for user {user}\n")
    else:
        cache.clear_all(user)
        logger.info(f"Cleared all entries for user {user}")
        out.write(f"Cleared all entries for user {user}\n")
    return 0


def main(argv: Optional[List[str]] = None, out: TextIO = sys.stdout) -> int:
    """Main entry point.

    Returns:
        Process exit code.
    """
    args = parse_args(argv)

    if args.log_dir is not None:
        setup_logging(
            log_dir=args.log_dir,
            log_level=logging.DEBUG if args.verbose else logging.INFO,
            console_output=args.verbose,
        )
    else:
        logging.basicConfig(
            level=logging.DEBUG if args.verbose else logging.WARNING,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        sys.stderr.write(f"error: {e}\n")
        return 2

    cache = open_cache(args, config)

    try:
        if args.command == "list":
            return cmd_list(cache, args.user, out)
        if args.command == "show":
            return cmd_show(cache, args.user, args.resource, out)
        return cmd_clear(cache, args.user, args.resource, out)
    except (StorageError, OSError) as e:
        sys.stderr.write(f"error: {e}\n")
        return 1
