# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""DeLorean Cache: stale-while-revalidate caching of user-scoped resources."""

from .backend import DataBackend, InMemoryBackend
from .cache import ResourceCache
from .config import Config, ConfigurationError
from .controller import CachedResourceController
from .debounce import DebouncedTask
from .errors import (
    DeloreanCacheError,
    NotAuthenticatedError,
    StorageError,
    StorageQuotaExceededError,
)
from .models import CacheEntry, CacheStatistics, ResourceState
from .resources import (
    PREFERENCES_RESOURCE,
    PROFILE_RESOURCE,
    SETTINGS_RESOURCE,
    ResourceBinding,
    ResourceBindings,
    bind_resource,
    cached_user_preferences,
    cached_user_profile,
    cached_user_settings,
)
from .storage import FileStorage, InMemoryStorage, StoragePort
from .storage_watcher import StorageWatcher

__version__ = "0.1.0"

__all__ = [
    "CacheEntry",
    "CacheStatistics",
    "ResourceState",
    "StoragePort",
    "InMemoryStorage",
    "FileStorage",
    "StorageWatcher",
    "ResourceCache",
    "CachedResourceController",
    "DataBackend",
    "InMemoryBackend",
    "ResourceBinding",
    "ResourceBindings",
    "bind_resource",
    "cached_user_profile",
    "cached_user_settings",
    "cached_user_preferences",
    "PROFILE_RESOURCE",
    "SETTINGS_RESOURCE",
    "PREFERENCES_RESOURCE",
    "DebouncedTask",
    "Config",
    "ConfigurationError",
    "DeloreanCacheError",
    "StorageError",
    "StorageQuotaExceededError",
    "NotAuthenticatedError",
]
