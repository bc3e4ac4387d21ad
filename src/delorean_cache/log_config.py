# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Shared filesystem layout for DeLorean Cache.

Centralizes the data root directory (default: ~/.delorean_cache/) and its
subdirectories:
- logs/: Python logging output written by setup_logging()
- storage/: FileStorage files, one per profile name
"""

from pathlib import Path
from typing import Optional

# Default data root directory (user home)
DEFAULT_DATA_ROOT = Path.home() / ".delorean_cache"

# Subdirectory names
LOGS_SUBDIR = "logs"
STORAGE_SUBDIR = "storage"

DEFAULT_STORAGE_NAME = "default"


def get_default_data_root() -> Path:
    """Get the default data root directory.

    Returns:
        Path to ~/.delorean_cache/
    """
    return DEFAULT_DATA_ROOT


def validate_filename_component(value: str, name: str = "value") -> None:
    """Validate a string for safe use in filenames.

    Raises:
        ValueError: If value is empty or contains path separators, parent
                   references, or null bytes.
    """
    if not value:
        raise ValueError(f"{name} must not be empty")
    if "\0" in value:
        raise ValueError(f"{name} contains null bytes: {value}")
    if "/" in value or "\\" in value or ":" in value:
        raise ValueError(f"{name} must not contain path separators: {value}")
    if ".." in value:
        raise ValueError(f"{name} must not contain parent references: {value}")


def get_logs_dir(data_root: Optional[Path] = None) -> Path:
    """Get the log directory: {data_root}/logs/"""
    root = data_root or DEFAULT_DATA_ROOT
    return root / LOGS_SUBDIR


def get_storage_dir(data_root: Optional[Path] = None) -> Path:
    """Get the storage directory: {data_root}/storage/"""
    root = data_root or DEFAULT_DATA_ROOT
    return root / STORAGE_SUBDIR


def get_storage_file(name: str = DEFAULT_STORAGE_NAME, data_root: Optional[Path] = None) -> Path:
    """Get the FileStorage path for a named storage.

    Args:
        name: Storage name, e.g. a browser-profile-like label.
        data_root: Data root directory. If None, uses default.

    Returns:
        Path to {data_root}/storage/{name}.json

    Raises:
        ValueError: If name is not a safe filename component.
    """
    validate_filename_component(name, "name")
    return get_storage_dir(data_root) / f"{name}.json"


def ensure_data_directories(data_root: Optional[Path] = None) -> None:
    """Create the data root and its subdirectories if they don't exist."""
    root = data_root or DEFAULT_DATA_ROOT
    root.mkdir(parents=True, exist_ok=True)
    (root / LOGS_SUBDIR).mkdir(exist_ok=True)
    (root / STORAGE_SUBDIR).mkdir(exist_ok=True)
