# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Stale-while-revalidate lifecycle for one cached resource.

This module implements the asynchronous half of the caching layer: a
controller that shows cached data immediately, refreshes it in the
background, and never blanks the displayed data on a failed refresh.

Lifecycle:
    Uninitialized -> LoadingFromNetwork | LoadedFromCache(fresh|stale)
    LoadedFromCache -> Revalidating -> Fresh | prior freshness + error
    mutate(data) -> Fresh (from any state)

Concurrency (single asyncio event loop):
- At most one fetch in flight per controller; a second request while one is
  pending is dropped, not queued
- Completions arriving after dispose() or an account switch are ignored
- The underlying fetch is never cancelled and has no controller timeout
"""

import asyncio
import logging
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Generic,
    List,
    Optional,
    Set,
    TypeVar,
)

from delorean_cache.cache import ResourceCache
from delorean_cache.models import DEFAULT_MAX_AGE_MS, DEFAULT_VERSION, ResourceState

logger = logging.getLogger(__name__)

T = TypeVar("T")

Fetcher = Callable[[], Awaitable[T]]
CurrentUserLookup = Callable[[], Awaitable[Optional[str]]]
StateListener = Callable[[ResourceState[T]], None]

# Sentinel distinguishing mutate() from mutate(None)
_MISSING: Any = object()


class CachedResourceController(Generic[T]):
    """Per-resource controller over ResourceCache and an async fetcher.

    The controller does nothing until start() resolves the current user,
    since every cache key is scoped by user identity.

    Usage:
        controller = CachedResourceController(
            "user-settings",
            fetcher=fetch_settings,
            cache=cache,
            current_user=current_user_id,
            max_age=15 * 60 * 1000,
        )
        await controller.start()
        controller.state.data        # cached data, possibly stale
        await controller.wait()      # background refresh settled
    """

    def __init__(
        self,
        resource_name: str,
        fetcher: Fetcher[T],
        cache: ResourceCache,
        current_user: CurrentUserLookup,
        max_age: int = DEFAULT_MAX_AGE_MS,
        version: str = DEFAULT_VERSION,
        enabled: bool = True,
        revalidate_on_mount: bool = True,
        max_stale_age: Optional[int] = None,
    ) -> None:
        """Initialize the controller.

        Args:
            resource_name: Unique resource name, part of the cache key.
            fetcher: Coroutine function returning the authoritative value.
            cache: Shared ResourceCache.
            current_user: Coroutine function resolving the active user id,
                or None when nobody is signed in.
            max_age: Freshness window in milliseconds.
            version: Version tag; bump to invalidate existing entries.
            enabled: If False the controller never fetches.
            revalidate_on_mount: Refresh on start even when the cache is fresh.
            max_stale_age: Optional ceiling in milliseconds; cached entries
                older than this are not shown and a foreground fetch runs
                instead. None means stale data is served indefinitely.
        """
        self._resource_name = resource_name
        self._fetcher = fetcher
        self._cache = cache
        self._current_user = current_user
        self._max_age = max_age
        self._version = version
        self._enabled = enabled
        self._revalidate_on_mount = revalidate_on_mount
        self._max_stale_age = max_stale_age

        self._state: ResourceState[T] = ResourceState()
        self._listeners: List[StateListener[T]] = []

        self._user_id: Optional[str] = None
        self._started = False
        self._disposed = False

        # In-flight guard and the task it protects
        self._in_flight = False
        self._fetch_task: Optional["asyncio.Task[None]"] = None
        # Bumped on account switch so late completions for the old scope are dropped
        self._generation = 0
        # Strong references to scheduled tasks
        self._tasks: Set["asyncio.Task[None]"] = set()

    # Properties

    @property
    def resource_name(self) -> str:
        return self._resource_name

    @property
    def state(self) -> ResourceState[T]:
        """Current state snapshot."""
        return self._state

    @property
    def user_id(self) -> Optional[str]:
        """User the controller is bound to, or None while pending."""
        return self._user_id

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    # Lifecycle

    async def start(self) -> None:
        """Bind to the current user and load the resource.

        Safe to call repeatedly: a pending controller retries the user
        lookup, a started controller with the same user is left alone, and a
        different user (account switch) resets state and reloads.
        """
        if self._disposed:
            return

        if not self._enabled:
            self._set_state(data=None, is_loading=False)
            return

        try:
            user_id = await self._current_user()
        except Exception as e:
            logger.warning(f"Could not resolve current user for {self._resource_name}: {e}")
            return

        if self._disposed:
            return

        if user_id is None:
            logger.debug(f"No user for {self._resource_name}, waiting for identity")
            return

        if self._started and user_id == self._user_id:
            return

        if self._started:
            logger.info(f"User changed for {self._resource_name}, reloading")
            self._generation += 1
            self._in_flight = False
            self._fetch_task = None
            self._state = ResourceState()

        self._user_id = user_id
        self._started = True
        self._load()

    def dispose(self) -> None:
        """Stop reacting to completions and drop all listeners.

        In-flight fetches keep running but their results are ignored.
        """
        self._disposed = True
        self._listeners.clear()
        logger.debug(f"Disposed controller for {self._resource_name}")

    def _load(self) -> None:
        user_id = self._user_id
        entry = self._cache.get_entry(user_id, self._resource_name, version=self._version)

        if entry is not None and self._max_stale_age is not None:
            age = entry.age_ms(self._cache.now())
            if age > self._max_stale_age:
                logger.debug(
                    f"Cached {self._resource_name} exceeds staleness ceiling "
                    f"(age: {age}ms), not showing it"
                )
                entry = None

        if entry is None:
            logger.debug(f"No cache for {self._resource_name}, fetching...")
            self._begin_fetch(show_validating=False)
            return

        logger.debug(f"Loaded {self._resource_name} from cache")
        is_fresh = self._cache.is_fresh(user_id, self._resource_name, max_age=self._max_age)
        self._set_state(data=entry.data, is_loading=False, is_stale=not is_fresh)

        if not is_fresh or self._revalidate_on_mount:
            logger.debug(f"Revalidating {self._resource_name} in background")
            self._begin_fetch(show_validating=True)

    # Public operations

    def mutate(self, new_data: Any = _MISSING) -> Optional["asyncio.Task[None]"]:
        """Replace the data optimistically, or revalidate when called bare.

        With new_data, state and cache are overwritten immediately without a
        network call. Without it, a revalidation is scheduled (requires a
        running event loop). Ignored by disabled and disposed controllers.

        Returns:
            The scheduled fetch task for a bare call, otherwise None.
        """
        if new_data is _MISSING:
            return self._begin_fetch(show_validating=True)

        if self._disposed or not self._enabled:
            return None

        self._set_state(data=new_data, is_loading=False, is_stale=False, error=None)
        if self._user_id is not None:
            self._cache.set(self._user_id, self._resource_name, new_data, version=self._version)
        return None

    async def revalidate(self) -> None:
        """Fetch regardless of freshness and wait for it to settle.

        Fetch failures surface through state.error, never as exceptions.
        A call made while another fetch is in flight returns immediately.
        """
        task = self._begin_fetch(show_validating=True)
        if task is not None:
            await asyncio.shield(task)

    def sync_from_cache(self) -> None:
        """Pick up an entry written by another process, without fetching.

        No-op while pending, disposed or fetching (the fetch result wins).
        A missing entry leaves the current data in place.
        """
        if self._disposed or not self._started or self._in_flight:
            return

        entry = self._cache.get_entry(self._user_id, self._resource_name, version=self._version)
        if entry is None or entry.data == self._state.data:
            return

        is_fresh = self._cache.is_fresh(self._user_id, self._resource_name, max_age=self._max_age)
        logger.debug(f"Synced {self._resource_name} from shared storage")
        self._set_state(data=entry.data, is_loading=False, is_stale=not is_fresh)

    async def wait(self) -> None:
        """Wait for the in-flight fetch, if any, to settle."""
        task = self._fetch_task
        if task is not None and not task.done():
            await asyncio.shield(task)

    def subscribe(self, listener: StateListener[T]) -> Callable[[], None]:
        """Register a listener called with every new state.

        Returns:
            Function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # Fetching

    def _begin_fetch(self, show_validating: bool) -> Optional["asyncio.Task[None]"]:
        """Start a fetch unless one is already running.

        The in-flight flag is raised before the task is scheduled so a
        second caller in the same tick is turned away.
        """
        if self._disposed or not self._enabled or self._user_id is None:
            return None

        if self._in_flight:
            logger.debug(f"Fetch already in flight for {self._resource_name}, skipping")
            return None

        self._in_flight = True
        if show_validating:
            self._set_state(is_validating=True, error=None)
        else:
            self._set_state(error=None)

        task = asyncio.get_running_loop().create_task(
            self._fetch_data(self._generation, self._user_id)
        )
        self._fetch_task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _fetch_data(self, generation: int, user_id: str) -> None:
        changes: Dict[str, Any] = {}
        try:
            logger.debug(f"Fetching {self._resource_name}...")
            result = await self._fetcher()
        except Exception as e:
            logger.error(f"Error fetching {self._resource_name}: {e}")
            changes["error"] = e
        else:
            if self._is_current(generation):
                changes.update(data=result, is_stale=False, error=None)
                self._cache.set(user_id, self._resource_name, result, version=self._version)
                logger.debug(f"Fetched {self._resource_name} successfully")
        finally:
            if generation == self._generation:
                self._in_flight = False
                self._fetch_task = None
            if self._is_current(generation):
                changes.update(is_loading=False, is_validating=False)
                self._set_state(**changes)
            else:
                logger.debug(f"Ignoring late result for {self._resource_name}")

    def _is_current(self, generation: int) -> bool:
        return not self._disposed and generation == self._generation

    # State

    def _set_state(self, **changes: Any) -> None:
        new_state = self._state.evolve(**changes)
        if new_state == self._state:
            return
        self._state = new_state

        for listener in list(self._listeners):
            try:
                listener(new_state)
            except Exception as e:
                logger.warning(f"State listener for {self._resource_name} failed: {e}")
