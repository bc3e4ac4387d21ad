# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Debounced task: coalesce rapid calls into one run after a quiet period.

Each schedule() cancels the pending run and starts a new timer, so only the
arguments of the last call within the delay are used. Used for autosaving
form edits without one backend write per keystroke.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional, Tuple

logger = logging.getLogger(__name__)


class DebouncedTask:
    """Cancel-and-reschedule timer on the running event loop.

    Usage:
        save = DebouncedTask(persist_settings, delay=1.0)
        save.schedule({"daily_goal": 7})
        save.schedule({"daily_goal": 8})   # replaces the first call
        await save.flush()                  # or wait for the delay
    """

    def __init__(self, callback: Callable[..., Any], delay: float, name: str = "debounced") -> None:
        """Initialize the task.

        Args:
            callback: Sync function or coroutine function to run.
            delay: Quiet period in seconds.
            name: Label used in log messages.
        """
        if delay < 0:
            raise ValueError(f"delay must be non-negative, got {delay}")

        self._callback = callback
        self._delay = delay
        self._name = name
        self._timer: Optional["asyncio.Task[None]"] = None
        self._args: Optional[Tuple[Any, ...]] = None
        self._running: Optional["asyncio.Future[None]"] = None

    @property
    def pending(self) -> bool:
        """True while a run is scheduled and has not started."""
        return self._args is not None

    def schedule(self, *args: Any) -> None:
        """(Re)start the timer with new arguments."""
        self._cancel_timer()
        self._args = args
        self._timer = asyncio.get_running_loop().create_task(self._run_later())

    def cancel(self) -> None:
        """Drop the pending run, if any."""
        self._cancel_timer()
        self._args = None

    @property
    def running(self) -> bool:
        """True while a call is executing."""
        return self._running is not None and not self._running.done()

    async def flush(self) -> None:
        """Run the pending call now instead of waiting for the delay.

        A call that already started is awaited first, so once flush() returns
        every scheduled call has finished.
        """
        self._cancel_timer()
        while self._running is not None and not self._running.done():
            await asyncio.shield(self._running)
            self._cancel_timer()
        await self._run()

    async def _run_later(self) -> None:
        await asyncio.sleep(self._delay)
        self._timer = None
        await self._run()

    async def _run(self) -> None:
        args = self._args
        if args is None:
            return
        self._args = None

        # A cancelled waiter leaves the call running to completion
        self._running = asyncio.ensure_future(self._invoke(args))
        await asyncio.shield(self._running)

    async def _invoke(self, args: Tuple[Any, ...]) -> None:
        try:
            result = self._callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"{self._name} run failed: {e}")

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None
