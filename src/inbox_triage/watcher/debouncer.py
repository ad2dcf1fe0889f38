"""Per-path debouncing of file change events."""

import asyncio
from collections.abc import Callable

from inbox_triage.logging import get_logger

logger = get_logger("debouncer")


class ChangeDebouncer:
    """Collapses bursts of change events for the same path into one signal.

    Each path owns at most one live timer. A new event for the path cancels
    the old timer and schedules a fresh one ``delay`` seconds ahead; when a
    timer expires the path is reported to ``on_settled`` exactly once.

    Without ``max_wait`` a path that keeps changing is never reported. With
    ``max_wait`` the signal fires no later than ``max_wait`` seconds after the
    first event of the burst.
    """

    def __init__(
        self,
        delay: float,
        on_settled: Callable[[str], None],
        *,
        max_wait: float | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        if delay < 0:
            raise ValueError(f"delay must be non-negative, got {delay}")
        self._delay = delay
        self._on_settled = on_settled
        self._max_wait = max_wait
        self._loop = loop
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._first_seen: dict[str, float] = {}
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def pending_paths(self) -> list[str]:
        """Paths with a live timer."""
        return list(self._timers)

    def __len__(self) -> int:
        return len(self._timers)

    def start(self) -> None:
        self._running = True

    def stop(self) -> None:
        """Cancel every live timer; later events are ignored until start()."""
        self._running = False
        for handle in self._timers.values():
            handle.cancel()
        cancelled = len(self._timers)
        self._timers.clear()
        self._first_seen.clear()
        if cancelled:
            logger.debug("Cancelled debounce timers: count=%d", cancelled)

    def on_event(self, path: str) -> None:
        """Record that ``path`` changed now."""
        if not self._running:
            return

        loop = self._loop or asyncio.get_running_loop()
        now = loop.time()

        existing = self._timers.pop(path, None)
        if existing is not None:
            existing.cancel()

        delay = self._delay
        if self._max_wait is not None:
            first = self._first_seen.setdefault(path, now)
            delay = min(delay, max(0.0, first + self._max_wait - now))

        self._timers[path] = loop.call_later(delay, self._fire, path)

    def _fire(self, path: str) -> None:
        self._timers.pop(path, None)
        self._first_seen.pop(path, None)
        try:
            self._on_settled(path)
        except Exception:
            logger.exception("Settled callback failed: path=%s", path)
