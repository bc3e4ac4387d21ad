# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""User-scoped resource cache with version and age validity checks.

This module implements the persisted half of stale-while-revalidate: typed
snapshots of remote resources stored through a StoragePort, one entry per
(user, resource) scope key.

Key Features:
- Scope keys namespaced by user identity ("delorean-cache:user:<id>:<resource>")
- Version tags: a mismatched entry is purged and reported as a miss
- Age is reported separately (is_fresh), stale entries are still served
- Fail-open: storage errors are logged and treated as a miss or no-op write

Design Decisions:
- Synchronous and network-free; all async coordination lives in the controller
- Storage availability is checked before each operation, since it can become
  unavailable at any time (disabled, quota, disk errors)
- Reads never write: a shared storage file only changes when data changes
- Time comes from an injectable clock returning epoch milliseconds
"""

import json
import logging
import time
from typing import Any, Callable, List, Optional

from delorean_cache.models import (
    DEFAULT_MAX_AGE_MS,
    DEFAULT_VERSION,
    CacheEntry,
    CacheStatistics,
)
from delorean_cache.storage import StoragePort

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "delorean-cache"

Clock = Callable[[], int]


def epoch_millis() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class ResourceCache:
    """Persisted snapshot cache partitioned by user and resource name.

    A user_id of None maps to the shared "anonymous" namespace.

    Usage:
        cache = ResourceCache(InMemoryStorage())
        cache.set("u1", "user-profile", {"name": "Ana"}, version="1.0.0")
        data = cache.get("u1", "user-profile", version="1.0.0", max_age=5000)
        stale = not cache.is_fresh("u1", "user-profile", max_age=5000)
    """

    def __init__(
        self,
        storage: Optional[StoragePort],
        clock: Clock = epoch_millis,
        key_prefix: str = DEFAULT_KEY_PREFIX,
    ) -> None:
        """Initialize the cache.

        Args:
            storage: Backing key/value port. None means no storage at all
                (every read misses, every write is dropped).
            clock: Returns the current time in epoch milliseconds.
            key_prefix: First component of every storage key.
        """
        self._storage = storage
        self._clock = clock
        self._key_prefix = key_prefix
        self._stats = CacheStatistics()

    def now(self) -> int:
        """Current time according to the cache clock (epoch milliseconds)."""
        return self._clock()

    @property
    def storage(self) -> Optional[StoragePort]:
        """Backing storage port, if any."""
        return self._storage

    # Keys

    def user_prefix(self, user_id: Optional[str]) -> str:
        """Namespace shared by every key of one user."""
        scope = f"user:{user_id}" if user_id else "anonymous"
        return f"{self._key_prefix}:{scope}"

    def cache_key(self, user_id: Optional[str], resource: str) -> str:
        """Storage key for a (user, resource) scope."""
        return f"{self.user_prefix(user_id)}:{resource}"

    # Availability

    def is_available(self) -> bool:
        """Ask the storage port whether it can be used right now."""
        if self._storage is None:
            return False

        try:
            return self._storage.is_available()
        except Exception as e:
            logger.debug(f"Storage unavailable: {e}")
            return False

    # Reads

    def get(
        self,
        user_id: Optional[str],
        resource: str,
        version: str = DEFAULT_VERSION,
        max_age: int = DEFAULT_MAX_AGE_MS,
    ) -> Any:
        """Get cached data for a scope.

        Entries older than max_age are still returned; use is_fresh() to
        decide whether to flag them as stale.

        Returns:
            Cached data, or None if storage is unavailable, the entry is
            missing or unreadable, or its version differs (in which case the
            entry is also deleted).
        """
        entry = self.get_entry(user_id, resource, version=version)
        if entry is None:
            return None

        age = entry.age_ms(self._clock())
        if age > max_age:
            self._stats.stale_hits += 1
            logger.debug(f"Stale data for {resource} (age: {age}ms)")
        else:
            logger.debug(f"Fresh data for {resource}")

        return entry.data

    def get_entry(
        self,
        user_id: Optional[str],
        resource: str,
        version: str = DEFAULT_VERSION,
    ) -> Optional[CacheEntry]:
        """Get the full cache entry for a scope.

        Applies the same validity rules as get() (including the purge on
        version mismatch) but leaves age interpretation to the caller.
        """
        entry = self._read_entry(user_id, resource)
        if entry is None:
            self._stats.misses += 1
            return None

        if entry.version != version:
            logger.debug(
                f"Version mismatch for {resource} "
                f"(stored={entry.version}, expected={version}), invalidating"
            )
            self._stats.version_mismatches += 1
            self._stats.misses += 1
            self.clear(user_id, resource)
            return None

        self._stats.hits += 1
        return entry

    def is_fresh(
        self,
        user_id: Optional[str],
        resource: str,
        max_age: int = DEFAULT_MAX_AGE_MS,
    ) -> bool:
        """True iff an entry exists and its age is at most max_age."""
        entry = self._read_entry(user_id, resource)
        if entry is None:
            return False
        return entry.age_ms(self._clock()) <= max_age

    def keys(self, user_id: Optional[str] = None) -> List[str]:
        """List cache keys, optionally restricted to one user's namespace.

        Keys that do not carry this cache's prefix are ignored.
        """
        if not self.is_available():
            return []

        assert self._storage is not None
        try:
            all_keys = self._storage.keys()
        except Exception as e:
            self._record_storage_error("listing keys", e)
            return []

        if user_id is None:
            return sorted(k for k in all_keys if k.startswith(f"{self._key_prefix}:"))
        prefix = f"{self.user_prefix(user_id)}:"
        return sorted(k for k in all_keys if k.startswith(prefix))

    # Writes

    def set(
        self,
        user_id: Optional[str],
        resource: str,
        data: Any,
        version: str = DEFAULT_VERSION,
    ) -> None:
        """Store data for a scope, stamped with the current time.

        Silently drops the write if storage is unavailable or the data
        cannot be serialized.
        """
        if not self.is_available():
            return

        assert self._storage is not None
        entry = CacheEntry(data=data, timestamp=self._clock(), version=version)
        try:
            payload = json.dumps(entry.to_dict())
            self._storage.set_item(self.cache_key(user_id, resource), payload)
        except Exception as e:
            self._record_storage_error(f"storing {resource}", e)
            return

        self._stats.writes += 1
        logger.debug(f"Stored {resource}")

    def clear(self, user_id: Optional[str], resource: str) -> None:
        """Remove one entry. No-op if absent."""
        if not self.is_available():
            return

        assert self._storage is not None
        try:
            self._storage.remove_item(self.cache_key(user_id, resource))
        except Exception as e:
            self._record_storage_error(f"clearing {resource}", e)
            return

        logger.debug(f"Cleared {resource}")

    def clear_all(self, user_id: Optional[str]) -> None:
        """Remove every entry in a user's namespace.

        Used on logout and account switch so a shared profile never shows
        one user's data to another.
        """
        if not self.is_available():
            return

        assert self._storage is not None
        prefix = f"{self.user_prefix(user_id)}:"
        try:
            for key in self._storage.keys():
                if key.startswith(prefix):
                    self._storage.remove_item(key)
        except Exception as e:
            self._record_storage_error("clearing user cache", e)
            return

        logger.debug(f"Cleared all data for user {user_id}")

    # Statistics

    def get_statistics(self) -> CacheStatistics:
        """Get a copy of the cache statistics."""
        return CacheStatistics(**self._stats.to_dict())

    # Internals

    def _read_entry(self, user_id: Optional[str], resource: str) -> Optional[CacheEntry]:
        if not self.is_available():
            return None

        assert self._storage is not None
        try:
            raw = self._storage.get_item(self.cache_key(user_id, resource))
            if not raw:
                return None
            return CacheEntry.from_dict(json.loads(raw))
        except Exception as e:
            self._record_storage_error(f"reading {resource}", e)
            return None

    def _record_storage_error(self, operation: str, error: Exception) -> None:
        self._stats.storage_errors += 1
        logger.warning(f"Cache error {operation}: {error}")
