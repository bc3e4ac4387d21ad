# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Shared fixtures for unit tests."""

import pytest

from delorean_cache.cache import ResourceCache
from delorean_cache.storage import InMemoryStorage
from tests.helpers import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(start=1_700_000_000_000)


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def cache(storage: InMemoryStorage, clock: FakeClock) -> ResourceCache:
    return ResourceCache(storage, clock=clock)
