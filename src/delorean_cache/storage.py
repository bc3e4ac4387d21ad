# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Storage ports for persisted cache entries.

This module provides the key/value port that ResourceCache writes through,
so the backing store can be swapped without touching cache logic.

Components:
- StoragePort: Abstract interface (string keys, string values)
- InMemoryStorage: Dict-backed store with an optional size quota
- FileStorage: JSON-file-backed store shared between processes

Failure mode: every operation may raise (StorageError, OSError, ...).
Callers treat the port as fully optional and absorb those errors.
"""

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

from delorean_cache.errors import StorageError, StorageQuotaExceededError

logger = logging.getLogger(__name__)

AVAILABILITY_TEST_KEY = "__storage_test__"


class StoragePort(ABC):
    """Abstract synchronous key/value storage.

    Mirrors the getItem/setItem/removeItem contract of browser storage.
    Implementations may raise on any operation (quota exceeded, storage
    disabled, I/O failure).
    """

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        """Get the value stored under key.

        Returns:
            Stored string, or None if the key is absent.
        """
        pass

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        """Store value under key, replacing any previous value."""
        pass

    @abstractmethod
    def remove_item(self, key: str) -> None:
        """Remove key. No-op if absent."""
        pass

    @abstractmethod
    def keys(self) -> List[str]:
        """List all stored keys."""
        pass

    def is_available(self) -> bool:
        """True if the storage can currently be used.

        The default check writes and removes a test key, like the
        browser storage check. Implementations where a write is expensive or
        visible to other processes override this with a read-only check.
        """
        try:
            self.set_item(AVAILABILITY_TEST_KEY, AVAILABILITY_TEST_KEY)
            self.remove_item(AVAILABILITY_TEST_KEY)
            return True
        except Exception as e:
            logger.debug(f"Storage unavailable: {e}")
            return False


class InMemoryStorage(StoragePort):
    """Dict-backed storage.

    Limitations:
    - No persistence across processes
    - NOT thread-safe: designed for a single event loop

    Args:
        quota_bytes: Optional limit on the total UTF-8 size of keys and values.
            Writes that would exceed it raise StorageQuotaExceededError.
    """

    def __init__(self, quota_bytes: Optional[int] = None) -> None:
        self._items: Dict[str, str] = {}
        self._quota_bytes = quota_bytes

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        if self._quota_bytes is not None:
            size_after = self._used_bytes(exclude=key) + _size_of(key, value)
            if size_after > self._quota_bytes:
                raise StorageQuotaExceededError(key, _size_of(key, value), self._quota_bytes)
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._items)

    def clear(self) -> None:
        """Remove every key. Used for testing."""
        self._items.clear()

    def _used_bytes(self, exclude: Optional[str] = None) -> int:
        return sum(_size_of(k, v) for k, v in self._items.items() if k != exclude)


class FileStorage(StoragePort):
    """Storage persisted as a single JSON object on disk.

    Features:
    - Lazy loading on first access
    - Atomic writes (temp file + os.replace)
    - Reloads when the file's mtime changes, so writes from other processes
      become visible (last write wins per key, no cross-process lock)

    Thread Safety:
        All public methods are guarded by a reentrant lock; StorageWatcher
        calls reload() from the watchdog observer thread.

    Usage:
        storage = FileStorage(Path("~/.delorean_cache/storage/cache.json").expanduser())
        storage.set_item("k", "v")
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = threading.RLock()
        self._items: Dict[str, str] = {}
        self._loaded_mtime: Optional[float] = None
        self._loaded = False

    @property
    def path(self) -> Path:
        """Location of the backing file."""
        return self._path

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            self._ensure_current()
            return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            self._ensure_current()
            self._items[key] = value
            self._save()

    def remove_item(self, key: str) -> None:
        with self._lock:
            self._ensure_current()
            if key in self._items:
                del self._items[key]
                self._save()

    def keys(self) -> List[str]:
        with self._lock:
            self._ensure_current()
            return list(self._items)

    def is_available(self) -> bool:
        """Check access to the file, or to the directory it will be created in.

        Never writes, so reads stay invisible to other processes.
        """
        with self._lock:
            if self._path.exists():
                return self._path.is_file() and os.access(self._path, os.R_OK | os.W_OK)

            parent = self._path.parent
            while not parent.exists():
                if parent.parent == parent:
                    return False
                parent = parent.parent
            return parent.is_dir() and os.access(parent, os.W_OK | os.X_OK)

    def has_external_changes(self) -> bool:
        """True if the file changed since this instance last loaded or saved it."""
        with self._lock:
            return self._current_mtime() != self._loaded_mtime

    def reload(self) -> None:
        """Discard in-memory state and re-read the file."""
        with self._lock:
            self._load()

    def _ensure_current(self) -> None:
        if not self._loaded or self._current_mtime() != self._loaded_mtime:
            self._load()

    def _current_mtime(self) -> Optional[float]:
        try:
            return os.path.getmtime(self._path)
        except OSError:
            return None

    def _load(self) -> None:
        """Load items from disk.

        Raises:
            StorageError: If the file exists but is not a JSON object of strings.
        """
        mtime = self._current_mtime()
        if mtime is None:
            self._items = {}
        else:
            with open(self._path, encoding="utf-8") as f:
                try:
                    raw = json.load(f)
                except json.JSONDecodeError as e:
                    raise StorageError(f"Corrupt storage file {self._path}: {e}") from e

            if not isinstance(raw, dict) or not all(
                isinstance(k, str) and isinstance(v, str) for k, v in raw.items()
            ):
                raise StorageError(f"Storage file {self._path} must contain a JSON object of strings")
            self._items = raw

        self._loaded_mtime = mtime
        self._loaded = True
        logger.debug(f"Loaded {len(self._items)} items from {self._path}")

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.", suffix=".tmp", dir=str(self._path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._items, f, indent=2, sort_keys=True)
            os.replace(tmp_name, self._path)
        except BaseException:
            # Leave no partial temp files behind
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

        self._loaded_mtime = self._current_mtime()


def _size_of(key: str, value: str) -> int:
    return len(key.encode("utf-8")) + len(value.encode("utf-8"))
