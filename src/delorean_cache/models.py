# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Core data models for DeLorean Cache.

- CacheEntry: Timestamped, versioned snapshot stored under one scope key
- CacheStatistics: Counters kept by ResourceCache
- ResourceState: In-memory view of one controller's resource

CacheEntry uses JSON-compatible primitives so it can be written to any
string-valued storage port.
"""

import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Defaults shared by the cache and the controller
DEFAULT_MAX_AGE_MS = 5 * 60 * 1000
DEFAULT_VERSION = "1.0.0"


@dataclass
class CacheEntry:
    """Snapshot of one resource for one user scope.

    Attributes:
        data: The cached value (must be JSON-serializable).
        timestamp: Epoch milliseconds when the entry was written.
        version: Opaque version tag; readers expecting another tag treat the
            entry as absent.
    """

    data: Any
    timestamp: int
    version: str

    def age_ms(self, now_ms: int) -> int:
        """Age of the entry relative to ``now_ms``."""
        return now_ms - self.timestamp

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        return {
            "data": self.data,
            "timestamp": self.timestamp,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        """Deserialize from JSON-compatible dict.

        Raises:
            KeyError: If a required field is missing.
            TypeError: If ``data`` is not a mapping or a field has the wrong type.
        """
        if not isinstance(data, dict):
            raise TypeError(f"Cache entry must be an object, got {type(data).__name__}")

        timestamp = data["timestamp"]
        version = data["version"]
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            raise TypeError(f"Invalid timestamp: {timestamp!r}")
        if not isinstance(version, str):
            raise TypeError(f"Invalid version: {version!r}")

        return cls(data=data["data"], timestamp=int(timestamp), version=version)


@dataclass
class CacheStatistics:
    """Statistics for a ResourceCache instance."""

    hits: int = 0
    misses: int = 0
    stale_hits: int = 0  # Hits on entries older than the requested max_age
    version_mismatches: int = 0
    writes: int = 0
    storage_errors: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "stale_hits": self.stale_hits,
            "version_mismatches": self.version_mismatches,
            "writes": self.writes,
            "storage_errors": self.storage_errors,
        }

    def hit_rate(self) -> float:
        """Hit rate as percentage (0.0-100.0), or 0.0 if no reads."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return (self.hits / total) * 100.0


@dataclass(frozen=True)
class ResourceState(Generic[T]):
    """Immutable snapshot of a controller's resource.

    Attributes:
        data: Last known value, or None before any data is available.
        is_loading: True until the first data (cache or network) is available.
        is_validating: True while a background fetch is in flight.
        is_stale: True while displayed data came from an expired cache entry.
        error: Last fetch failure, cleared by the next success or mutate.
    """

    data: Optional[T] = None
    is_loading: bool = True
    is_validating: bool = False
    is_stale: bool = False
    error: Optional[Exception] = None

    def evolve(self, **changes: Any) -> "ResourceState[T]":
        """Return a copy with ``changes`` applied."""
        return replace(self, **changes)
