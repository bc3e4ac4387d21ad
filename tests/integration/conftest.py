# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Shared fixtures for integration tests.

Two "processes" are simulated by two FileStorage instances over the same
file, each with its own ResourceCache and ResourceBindings, talking to one
shared backend.
"""

from pathlib import Path

import pytest

from delorean_cache.backend import InMemoryBackend
from delorean_cache.config import Config


@pytest.fixture
def storage_file(tmp_path: Path) -> Path:
    return tmp_path / "storage" / "default.json"


@pytest.fixture
def backend() -> InMemoryBackend:
    backend = InMemoryBackend()
    backend.sign_in({"id": "u1", "email": "ana@example.com"})
    return backend


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(config_path=tmp_path / "missing.yml")
