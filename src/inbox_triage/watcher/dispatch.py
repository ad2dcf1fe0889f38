"""FIFO dispatch of classification work with a concurrency gate."""

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable

from inbox_triage.logging import get_logger
from inbox_triage.models import DispatchUnit

logger = get_logger("dispatch")

# Delay before re-attempting a drain when work is still queued
DEFAULT_RETRY_DELAY = 0.1


class DispatchQueue:
    """Runs queued units through ``worker`` with at most ``max_concurrent`` in flight.

    Units start in enqueue order; completion order depends on the worker.
    The queue itself is unbounded, ``max_concurrent`` is the only
    back-pressure.
    """

    def __init__(
        self,
        worker: Callable[[DispatchUnit], Awaitable[None]],
        max_concurrent: int,
        *,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be at least 1, got {max_concurrent}")
        self._worker = worker
        self._max_concurrent = max_concurrent
        self._retry_delay = retry_delay
        self._loop = loop
        self._queue: deque[DispatchUnit] = deque()
        self._tasks: set[asyncio.Task[None]] = set()
        self._in_flight = 0
        self._draining = False
        self._retry: asyncio.TimerHandle | None = None
        self._running = False

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def queued(self) -> int:
        return len(self._queue)

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        self._running = True
        if self._queue:
            self.drain()

    def stop(self) -> None:
        """Refuse further draining. In-flight work runs to completion."""
        self._running = False
        if self._retry is not None:
            self._retry.cancel()
            self._retry = None
        if self._queue:
            logger.info("Dispatch stopped with queued units: queued=%d", len(self._queue))

    async def join(self) -> None:
        """Wait for every in-flight unit to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def enqueue(self, unit: DispatchUnit) -> None:
        self._queue.append(unit)
        logger.debug(
            "Enqueued unit: path=%s members=%d queued=%d",
            unit.representative_path,
            len(unit.paths),
            len(self._queue),
        )
        self.drain()

    def drain(self) -> None:
        """Start queued units while capacity allows. Re-entrant calls are no-ops."""
        if self._draining or not self._running:
            return

        self._draining = True
        loop = self._loop or asyncio.get_running_loop()
        try:
            while self._queue and self._in_flight < self._max_concurrent:
                unit = self._queue.popleft()
                self._in_flight += 1
                task = loop.create_task(self._run(unit))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
        finally:
            self._draining = False
            if self._queue and self._running and self._retry is None:
                self._retry = loop.call_later(self._retry_delay, self._retry_drain)

    def _retry_drain(self) -> None:
        self._retry = None
        self.drain()

    async def _run(self, unit: DispatchUnit) -> None:
        try:
            await self._worker(unit)
        except Exception:
            logger.exception("Dispatch worker failed: path=%s", unit.representative_path)
        finally:
            self._in_flight -= 1
            self.drain()
