"""Tests for the change debouncer."""

import asyncio

import pytest

from inbox_triage.watcher.debouncer import ChangeDebouncer


class Recorder:
    """Collects settled paths with the loop time they fired at."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, float]] = []

    def __call__(self, path: str) -> None:
        self.calls.append((path, asyncio.get_running_loop().time()))

    @property
    def paths(self) -> list[str]:
        return [path for path, _ in self.calls]


class TestChangeDebouncer:
    """Tests for ChangeDebouncer."""

    def test_rejects_negative_delay(self) -> None:
        with pytest.raises(ValueError):
            ChangeDebouncer(-1, lambda path: None)

    @pytest.mark.asyncio
    async def test_burst_fires_once_after_last_event(self) -> None:
        """Events at 0, 50 and 80ms with a 100ms delay settle once near 180ms."""
        recorder = Recorder()
        debouncer = ChangeDebouncer(0.1, recorder)
        debouncer.start()
        loop = asyncio.get_running_loop()

        start = loop.time()
        debouncer.on_event("Emails/a.md")
        await asyncio.sleep(0.05)
        debouncer.on_event("Emails/a.md")
        await asyncio.sleep(0.03)
        debouncer.on_event("Emails/a.md")
        await asyncio.sleep(0.25)

        assert recorder.paths == ["Emails/a.md"]
        elapsed = recorder.calls[0][1] - start
        assert 0.17 <= elapsed < 0.3
        assert len(debouncer) == 0

    @pytest.mark.asyncio
    async def test_paths_are_independent(self) -> None:
        recorder = Recorder()
        debouncer = ChangeDebouncer(0.02, recorder)
        debouncer.start()

        debouncer.on_event("Emails/a.md")
        debouncer.on_event("Emails/b.md")
        assert sorted(debouncer.pending_paths) == ["Emails/a.md", "Emails/b.md"]
        await asyncio.sleep(0.1)

        assert sorted(recorder.paths) == ["Emails/a.md", "Emails/b.md"]

    @pytest.mark.asyncio
    async def test_ignores_events_when_not_started(self) -> None:
        recorder = Recorder()
        debouncer = ChangeDebouncer(0.01, recorder)

        debouncer.on_event("Emails/a.md")
        await asyncio.sleep(0.05)

        assert recorder.calls == []
        assert len(debouncer) == 0

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_timers(self) -> None:
        recorder = Recorder()
        debouncer = ChangeDebouncer(0.05, recorder)
        debouncer.start()

        debouncer.on_event("Emails/a.md")
        debouncer.stop()
        await asyncio.sleep(0.1)

        assert recorder.calls == []
        assert len(debouncer) == 0

    @pytest.mark.asyncio
    async def test_max_wait_bounds_continuous_updates(self) -> None:
        recorder = Recorder()
        debouncer = ChangeDebouncer(0.05, recorder, max_wait=0.12)
        debouncer.start()
        loop = asyncio.get_running_loop()

        start = loop.time()
        for _ in range(10):
            debouncer.on_event("Emails/a.md")
            await asyncio.sleep(0.03)

        assert recorder.paths[:1] == ["Emails/a.md"]
        assert recorder.calls[0][1] - start < 0.2

    @pytest.mark.asyncio
    async def test_callback_error_is_contained(self) -> None:
        def failing(path: str) -> None:
            raise RuntimeError("boom")

        debouncer = ChangeDebouncer(0.01, failing)
        debouncer.start()

        debouncer.on_event("Emails/a.md")
        await asyncio.sleep(0.05)

        assert len(debouncer) == 0
