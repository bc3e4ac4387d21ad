# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Cached bindings for the user's profile, settings and preferences.

Each binding pairs a resource name and freshness window with a fetcher that
reads the authoritative row from the DataBackend. Settings and preferences
rows are created with defaults the first time a user is seen.

ResourceBindings groups the three controllers of one session and owns the
session-level operations: start, logout (which clears the user's cache
namespace), optimistic preference updates and debounced settings autosave.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from delorean_cache.backend import (
    PREFERENCES_TABLE,
    PROFILES_TABLE,
    SETTINGS_TABLE,
    DataBackend,
    Row,
)
from delorean_cache.cache import ResourceCache
from delorean_cache.config import Config
from delorean_cache.controller import CachedResourceController
from delorean_cache.debounce import DebouncedTask
from delorean_cache.errors import NotAuthenticatedError

logger = logging.getLogger(__name__)

PROFILE_RESOURCE = "user-profile"
SETTINGS_RESOURCE = "user-settings"
PREFERENCES_RESOURCE = "user-preferences"

DEFAULT_SETTINGS: Dict[str, Any] = {
    "daily_goal": 6,
    "weekly_goal": 30,
    "work_start_time": "09:00",
    "work_end_time": "17:00",
    "timezone": "America/Sao_Paulo",
    "hour_format": "24h",
    "date_format": "dd/MM/yyyy",
}

DEFAULT_PREFERENCES: Dict[str, Any] = {
    "theme": "system",
    "language": "pt-BR",
    "week_start_day": 1,
    "notifications_email": True,
    "notifications_push": True,
    "notifications_reminders": True,
    "auto_track": False,
    "show_decimal_hours": True,
    "export_format": "csv",
}


# Fetchers


async def current_user_id(backend: DataBackend) -> Optional[str]:
    """Resolve the signed-in user's id, or None when anonymous."""
    user = await backend.get_current_user()
    if not user:
        return None
    return user.get("id") or None


async def _require_user(backend: DataBackend) -> Row:
    user = await backend.get_current_user()
    if not user or not user.get("id"):
        raise NotAuthenticatedError()
    return user


async def fetch_user_profile(backend: DataBackend) -> Dict[str, Any]:
    """Fetch the signed-in user together with their profile row.

    Returns:
        {"user": <user>, "profile": <profile row or None>}
    """
    user = await _require_user(backend)
    profile = await backend.select_one(PROFILES_TABLE, user["id"])
    return {"user": user, "profile": profile}


async def _fetch_or_create(backend: DataBackend, table: str, defaults: Dict[str, Any]) -> Row:
    user = await _require_user(backend)
    row = await backend.select_one(table, user["id"])
    if row is not None:
        return row

    logger.info(f"Creating default {table} for user {user['id']}")
    return await backend.insert(table, {"user_id": user["id"], **defaults})


async def fetch_user_settings(backend: DataBackend) -> Row:
    """Fetch the settings row, creating it with defaults if missing."""
    return await _fetch_or_create(backend, SETTINGS_TABLE, DEFAULT_SETTINGS)


async def fetch_user_preferences(backend: DataBackend) -> Row:
    """Fetch the preferences row, creating it with defaults if missing."""
    return await _fetch_or_create(backend, PREFERENCES_TABLE, DEFAULT_PREFERENCES)


# Bindings


@dataclass(frozen=True)
class ResourceBinding:
    """Name, fetcher and freshness-window source for one cached resource.

    Bindings without a max_age use the configured default_max_age_ms.
    """

    name: str
    fetch: Callable[[DataBackend], Awaitable[Any]]
    max_age: Optional[Callable[[Config], int]] = None


PROFILE_BINDING = ResourceBinding(
    PROFILE_RESOURCE, fetch_user_profile, lambda config: config.profile_max_age_ms
)
SETTINGS_BINDING = ResourceBinding(
    SETTINGS_RESOURCE, fetch_user_settings, lambda config: config.settings_max_age_ms
)
PREFERENCES_BINDING = ResourceBinding(
    PREFERENCES_RESOURCE, fetch_user_preferences, lambda config: config.preferences_max_age_ms
)


def bind_resource(
    binding: ResourceBinding,
    backend: DataBackend,
    cache: ResourceCache,
    config: Optional[Config] = None,
    **overrides: Any,
) -> CachedResourceController[Any]:
    """Create a controller for a binding.

    Args:
        binding: Which resource to bind.
        backend: Data-access port used by the fetcher and user lookup.
        cache: Shared ResourceCache.
        config: Source of freshness windows and defaults. If None, loads the
            default configuration file.
        **overrides: Controller keyword arguments taking precedence over
            config (e.g. enabled=False).
    """
    if config is None:
        config = Config()

    options: Dict[str, Any] = {
        "max_age": binding.max_age(config) if binding.max_age else config.default_max_age_ms,
        "version": config.default_version,
        "revalidate_on_mount": config.revalidate_on_mount,
        "max_stale_age": config.max_stale_age_ms,
    }
    options.update(overrides)

    return CachedResourceController(
        binding.name,
        fetcher=lambda: binding.fetch(backend),
        cache=cache,
        current_user=lambda: current_user_id(backend),
        **options,
    )


def cached_user_profile(
    backend: DataBackend, cache: ResourceCache, config: Optional[Config] = None, **overrides: Any
) -> CachedResourceController[Any]:
    """Controller for the user's profile (10 minute window by default)."""
    return bind_resource(PROFILE_BINDING, backend, cache, config, **overrides)


def cached_user_settings(
    backend: DataBackend, cache: ResourceCache, config: Optional[Config] = None, **overrides: Any
) -> CachedResourceController[Any]:
    """Controller for the user's settings (15 minute window by default)."""
    return bind_resource(SETTINGS_BINDING, backend, cache, config, **overrides)


def cached_user_preferences(
    backend: DataBackend, cache: ResourceCache, config: Optional[Config] = None, **overrides: Any
) -> CachedResourceController[Any]:
    """Controller for the user's preferences (15 minute window by default)."""
    return bind_resource(PREFERENCES_BINDING, backend, cache, config, **overrides)


class ResourceBindings:
    """Profile, settings and preferences controllers of one session.

    Usage:
        bindings = ResourceBindings(backend, cache, config)
        await bindings.start_all()
        await bindings.update_preferences(theme="dark")
        await bindings.logout()
    """

    def __init__(
        self,
        backend: DataBackend,
        cache: ResourceCache,
        config: Optional[Config] = None,
    ) -> None:
        if config is None:
            config = Config()

        self._backend = backend
        self._cache = cache
        self.profile = cached_user_profile(backend, cache, config)
        self.settings = cached_user_settings(backend, cache, config)
        self.preferences = cached_user_preferences(backend, cache, config)

        self._pending_settings: Dict[str, Any] = {}
        self._settings_autosave = DebouncedTask(
            self._save_settings,
            delay=config.autosave_delay_ms / 1000,
            name="settings autosave",
        )

    @property
    def controllers(self) -> Dict[str, CachedResourceController[Any]]:
        return {
            PROFILE_RESOURCE: self.profile,
            SETTINGS_RESOURCE: self.settings,
            PREFERENCES_RESOURCE: self.preferences,
        }

    async def start_all(self) -> None:
        """Start every controller; they fetch independently."""
        await asyncio.gather(*(c.start() for c in self.controllers.values()))

    async def wait_all(self) -> None:
        """Wait until no controller has a fetch in flight."""
        await asyncio.gather(*(c.wait() for c in self.controllers.values()))

    def dispose_all(self) -> None:
        self._settings_autosave.cancel()
        self._pending_settings = {}
        for controller in self.controllers.values():
            controller.dispose()

    async def logout(self) -> None:
        """Dispose controllers, clear the user's cache namespace and sign out.

        Pending autosave edits are flushed first so they are not lost.
        """
        await self._settings_autosave.flush()

        user_id = await current_user_id(self._backend)
        self.dispose_all()
        if user_id is not None:
            self._cache.clear_all(user_id)
        await self._backend.sign_out()
        logger.info(f"Logged out user {user_id}")

    async def update_preferences(self, **changes: Any) -> Row:
        """Apply preference changes optimistically, then persist them.

        On a failed write the cached copy is revalidated from the backend and
        the error is re-raised.
        """
        user = await _require_user(self._backend)
        current = self.preferences.state.data or {}
        self.preferences.mutate({**current, **changes})

        try:
            stored = await self._backend.upsert(
                PREFERENCES_TABLE, {"user_id": user["id"], **changes}
            )
        except Exception as e:
            logger.error(f"Error saving preferences: {e}")
            await self.preferences.revalidate()
            raise

        self.preferences.mutate(stored)
        return stored

    def autosave_settings(self, **changes: Any) -> None:
        """Show settings edits immediately and write them after a quiet period.

        Edits made within the autosave delay are merged into one write. Before
        the settings have loaded, edits are only queued: they are applied on
        top of the fetched row when the write runs.
        """
        self._pending_settings.update(changes)
        current = self.settings.state.data
        if current is not None:
            self.settings.mutate({**current, **changes})
        self._settings_autosave.schedule()

    async def flush_autosave(self) -> None:
        """Write pending settings edits now."""
        await self._settings_autosave.flush()

    async def _save_settings(self) -> None:
        changes, self._pending_settings = self._pending_settings, {}
        if not changes:
            return

        await self.settings.wait()
        current = self.settings.state.data
        if current is not None:
            self.settings.mutate({**current, **changes})

        user = await _require_user(self._backend)
        try:
            stored = await self._backend.upsert(SETTINGS_TABLE, {**changes, "user_id": user["id"]})
        except Exception:
            # Drop the optimistic copy in favor of the backend's
            await self.settings.revalidate()
            raise

        self.settings.mutate(stored)
        logger.debug(f"Autosaved settings for user {user['id']}")
