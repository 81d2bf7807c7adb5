"""Serialized job queue enforcing a minimum spacing between geocoding calls."""
from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
Job = Callable[[], Awaitable[Any]]


class GeocodingQueue:
    """FIFO queue with a single runner and a minimum interval between jobs.

    Producers ``await enqueue(job)`` from any number of tasks; jobs still run
    one at a time, in submission order, and never start sooner than
    ``min_interval`` seconds after the previous job finished. A failed job
    rejects only its own caller and still consumes its time slot.
    """

    def __init__(
        self,
        min_interval: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if min_interval < 0:
            raise ValueError("min_interval must be non-negative")
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._pending: Deque[Tuple[Job, asyncio.Future]] = deque()
        self._running = False
        self._runner: asyncio.Task | None = None
        self._last_completed: float | None = None
        self.completed_jobs = 0

    @property
    def pending(self) -> int:
        return len(self._pending)

    @property
    def running(self) -> bool:
        return self._running

    async def enqueue(self, job: Callable[[], Awaitable[T]]) -> T:
        """Queue ``job`` and wait for its result (or its exception)."""

        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        self._pending.append((job, future))
        self._ensure_runner(loop)
        return await future

    def _ensure_runner(self, loop: asyncio.AbstractEventLoop) -> None:
        if not self._running:
            self._running = True
            self._runner = loop.create_task(self._run())

    async def _run(self) -> None:
        current: asyncio.Future | None = None
        try:
            while self._pending:
                job, current = self._pending.popleft()
                if self._last_completed is not None:
                    wait = self.min_interval - (self._clock() - self._last_completed)
                    if wait > 0:
                        await self._sleep(wait)

                error: BaseException | None = None
                result: Any = None
                try:
                    result = await job()
                except Exception as exc:  # resolved into the caller's future
                    error = exc
                finally:
                    self._last_completed = self._clock()
                    self.completed_jobs += 1

                future, current = current, None
                if future.done():  # caller went away
                    continue
                if error is not None:
                    future.set_exception(error)
                else:
                    future.set_result(result)
        finally:
            # Cancellation mid-job: release that caller, hand the rest to a new runner.
            if current is not None and not current.done():
                current.cancel()
            self._running = False
            if self._pending:
                self._ensure_runner(asyncio.get_running_loop())
            else:
                logger.debug("Geocoding queue drained after %d jobs", self.completed_jobs)
