# Execution Substrate for caseflow
# Scheduling primitives the process interpreter suspends on

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import timedelta
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class ExecutionSubstrate(ABC):
    """
    Scheduling contract consumed by the process interpreter.

    Every suspension point of a process instance goes through this interface:
    concurrent fan-out, condition waits, durable sleep, calls into external
    task handlers and child process runs. A durable implementation replays
    deterministic progress to reach the same suspension point after a
    restart; AsyncioSubstrate runs everything in memory on one event loop.
    """

    @abstractmethod
    def spawn(self, coro: Awaitable) -> "asyncio.Future":
        """Run a coroutine concurrently and return a handle to await or cancel it."""

    @abstractmethod
    async def await_until(self, predicate: Callable[[], bool]) -> None:
        """Suspend until ``predicate()`` is true, re-checking after every notify()."""

    @abstractmethod
    def notify(self) -> None:
        """Wake every await_until waiter so it re-evaluates its predicate."""

    @abstractmethod
    async def sleep(self, duration: timedelta) -> None:
        """Durable sleep."""

    @abstractmethod
    async def call_activity(self, fn: Callable, *args: Any, timeout: float) -> Any:
        """Run a blocking external call with a maximum duration."""

    @abstractmethod
    async def run_child(
        self,
        runner: Callable[..., Awaitable[Dict[str, Any]]],
        definition: Any,
        variables: Dict[str, Any],
        timeout: float,
    ) -> Dict[str, Any]:
        """Start a child process instance and wait for its final variables."""


class AsyncioSubstrate(ExecutionSubstrate):
    """
    In-process substrate on top of asyncio.

    Waiters block on a shared asyncio.Event. notify() swaps in a fresh event
    before setting the old one, so every waiter wakes exactly once per state
    change and re-checks its own predicate.
    """

    def __init__(self):
        self._changed: Optional[asyncio.Event] = None

    def _event(self) -> asyncio.Event:
        if self._changed is None:
            self._changed = asyncio.Event()
        return self._changed

    def spawn(self, coro: Awaitable) -> "asyncio.Task":
        task = asyncio.ensure_future(coro)
        task.add_done_callback(lambda _: self.notify())
        return task

    async def await_until(self, predicate: Callable[[], bool]) -> None:
        while not predicate():
            await self._event().wait()

    def notify(self) -> None:
        previous = self._changed
        self._changed = asyncio.Event()
        if previous is not None:
            previous.set()

    async def sleep(self, duration: timedelta) -> None:
        seconds = max(duration.total_seconds(), 0.0)
        logger.debug(f"Sleeping {seconds}s")
        await asyncio.sleep(seconds)

    async def call_activity(self, fn: Callable, *args: Any, timeout: float) -> Any:
        loop = asyncio.get_running_loop()
        return await asyncio.wait_for(loop.run_in_executor(None, partial(fn, *args)), timeout)

    async def run_child(self, runner, definition, variables, timeout):
        return await asyncio.wait_for(runner(definition, variables), timeout)
