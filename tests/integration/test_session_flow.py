# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""End-to-end session flows over a shared storage file."""

import asyncio
import os
from pathlib import Path
from typing import List

import pytest

from delorean_cache.backend import InMemoryBackend
from delorean_cache.cache import ResourceCache
from delorean_cache.config import Config
from delorean_cache.resources import (
    PREFERENCES_RESOURCE,
    SETTINGS_RESOURCE,
    ResourceBindings,
)
from delorean_cache.storage import FileStorage
from delorean_cache.storage_watcher import StorageWatcher


def open_process(storage_file: Path, backend: InMemoryBackend, config: Config):
    storage = FileStorage(storage_file)
    cache = ResourceCache(storage, key_prefix=config.key_prefix)
    return storage, cache, ResourceBindings(backend, cache, config)


def bump_mtime(path: Path) -> None:
    stat = os.stat(path)
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + 1_000_000_000))


@pytest.mark.integration
class TestSessionFlow:
    """Test cache sharing between sessions."""

    @pytest.mark.asyncio
    async def test_restart_shows_cached_data_immediately(
        self, storage_file: Path, backend: InMemoryBackend, config: Config
    ) -> None:
        _, _, first = open_process(storage_file, backend, config)
        await first.start_all()
        await first.wait_all()
        first.dispose_all()

        _, _, second = open_process(storage_file, backend, config)
        await second.start_all()

        # Served from the file before any fetch has run
        for controller in second.controllers.values():
            assert controller.state.is_loading is False
            assert controller.state.data is not None
        assert second.settings.state.data["daily_goal"] == 6

        await second.wait_all()
        assert second.settings.state.is_validating is False

    @pytest.mark.asyncio
    async def test_write_in_one_session_reaches_the_other(
        self, storage_file: Path, backend: InMemoryBackend, config: Config
    ) -> None:
        _, _, first = open_process(storage_file, backend, config)
        await first.start_all()
        await first.wait_all()

        storage, _, second = open_process(storage_file, backend, config)
        await second.start_all()
        await second.wait_all()

        watcher = StorageWatcher(storage)
        watcher.register_change_callback(second.preferences.sync_from_cache)

        await first.update_preferences(theme="dark")
        bump_mtime(storage_file)
        watcher.handle_file_event(str(storage_file))

        assert second.preferences.state.data["theme"] == "dark"

    @pytest.mark.asyncio
    async def test_logout_clears_shared_file_for_user(
        self, storage_file: Path, backend: InMemoryBackend, config: Config
    ) -> None:
        _, first_cache, first = open_process(storage_file, backend, config)
        first_cache.set("u2", SETTINGS_RESOURCE, {"daily_goal": 3})
        await first.start_all()
        await first.wait_all()

        await first.logout()

        _, cache, _ = open_process(storage_file, backend, config)
        assert cache.keys("u1") == []
        assert cache.get("u2", SETTINGS_RESOURCE) == {"daily_goal": 3}
        assert cache.get("u1", PREFERENCES_RESOURCE) is None

    @pytest.mark.asyncio
    async def test_account_switch_never_shows_previous_user(
        self, storage_file: Path, backend: InMemoryBackend, config: Config
    ) -> None:
        _, _, first = open_process(storage_file, backend, config)
        await first.start_all()
        await first.wait_all()
        await first.update_preferences(theme="dark")

        backend.sign_in({"id": "u2", "email": "bia@example.com"})
        await first.preferences.start()

        assert first.preferences.user_id == "u2"
        assert first.preferences.state.data is None

        await first.preferences.wait()
        assert first.preferences.state.data["theme"] == "system"
        assert first.preferences.state.data["user_id"] == "u2"

    @pytest.mark.slow
    @pytest.mark.asyncio
    async def test_live_watchers_settle_after_one_external_write(
        self, storage_file: Path, backend: InMemoryBackend, config: Config
    ) -> None:
        first_storage, _, first = open_process(storage_file, backend, config)
        second_storage, _, second = open_process(storage_file, backend, config)
        for bindings in (first, second):
            await bindings.start_all()
            await bindings.wait_all()

        loop = asyncio.get_running_loop()
        counts: List[int] = [0, 0]
        watchers = []
        for index, (storage, bindings) in enumerate(
            ((first_storage, first), (second_storage, second))
        ):

            def on_change(index: int = index, bindings: ResourceBindings = bindings) -> None:
                counts[index] += 1
                bindings.preferences.sync_from_cache()

            watcher = StorageWatcher(storage)
            watcher.register_change_callback(on_change, loop=loop)
            watchers.append(watcher)

        try:
            for watcher in watchers:
                watcher.start()
            await asyncio.sleep(0.2)

            writer = ResourceCache(FileStorage(storage_file), key_prefix=config.key_prefix)
            version = config.default_version
            stored = writer.get("u1", PREFERENCES_RESOURCE, version=version)
            writer.set("u1", PREFERENCES_RESOURCE, {**stored, "theme": "dark"}, version=version)

            for _ in range(50):
                if all(count >= 1 for count in counts):
                    break
                await asyncio.sleep(0.1)
            assert all(count >= 1 for count in counts)

            settled = list(counts)
            mtime = os.stat(storage_file).st_mtime_ns
            await asyncio.sleep(1.0)

            assert counts == settled
            assert os.stat(storage_file).st_mtime_ns == mtime
            assert first.preferences.state.data["theme"] == "dark"
            assert second.preferences.state.data["theme"] == "dark"
        finally:
            for watcher in watchers:
                watcher.stop()
