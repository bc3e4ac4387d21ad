# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Exception hierarchy for DeLorean Cache.

Storage errors are absorbed at the ResourceCache boundary and fetch errors at
the CachedResourceController boundary. Callers only see them as logged events
or as the ``error`` field of a ResourceState.
"""


class DeloreanCacheError(Exception):
    """Base class for all errors raised by this package."""

    pass


class StorageError(DeloreanCacheError):
    """Raised by a storage port when an operation cannot be completed."""

    pass


class StorageQuotaExceededError(StorageError):
    """Raised when a write would exceed the storage size limit."""

    def __init__(self, key: str, size_bytes: int, quota_bytes: int) -> None:
        super().__init__(
            f"Writing {key!r} ({size_bytes}B) exceeds storage quota of {quota_bytes}B"
        )
        self.key = key
        self.size_bytes = size_bytes
        self.quota_bytes = quota_bytes


class NotAuthenticatedError(DeloreanCacheError):
    """Raised by resource fetchers when no user is signed in."""

    def __init__(self, message: str = "User is not authenticated") -> None:
        super().__init__(message)
