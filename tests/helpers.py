# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Test doubles shared across test modules."""

import asyncio
from typing import Any, Callable, List, Optional

from delorean_cache.errors import StorageError
from delorean_cache.storage import StoragePort


class FakeClock:
    """Manually advanced clock in epoch milliseconds."""

    def __init__(self, start: int = 0) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FailingStorage(StoragePort):
    """Storage that raises on every operation (disabled browser storage)."""

    def __init__(self) -> None:
        self.calls = 0

    def get_item(self, key: str) -> Optional[str]:
        self.calls += 1
        raise StorageError("storage disabled")

    def set_item(self, key: str, value: str) -> None:
        self.calls += 1
        raise StorageError("storage disabled")

    def remove_item(self, key: str) -> None:
        self.calls += 1
        raise StorageError("storage disabled")

    def keys(self) -> List[str]:
        self.calls += 1
        raise StorageError("storage disabled")


class RecordingFetcher:
    """Async fetcher returning queued results and counting calls.

    Each call pops the next result; exceptions in the queue are raised.
    When gated, calls block until release() is called.
    """

    def __init__(self, *results: Any, gated: bool = False) -> None:
        self.results = list(results)
        self.calls = 0
        self._gate: Optional[asyncio.Event] = asyncio.Event() if gated else None

    def release(self) -> None:
        assert self._gate is not None
        self._gate.set()

    async def __call__(self) -> Any:
        self.calls += 1
        if self._gate is not None:
            await self._gate.wait()
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


def user_lookup(user_id: Optional[str]) -> Callable[[], Any]:
    async def lookup() -> Optional[str]:
        return user_id

    return lookup
