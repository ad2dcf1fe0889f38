"""Bridge from watchdog file-system events to the asyncio pipeline."""

import asyncio
import os
from collections.abc import Callable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from inbox_triage.logging import get_logger
from inbox_triage.watcher.sources import VaultReader

logger = get_logger("events")


class VaultEventHandler(FileSystemEventHandler):
    """Forwards file creation and modification to a loop-side callback.

    watchdog delivers events on its own thread; the callback always runs on
    the event loop via call_soon_threadsafe with the vault-relative path.
    """

    def __init__(
        self,
        reader: VaultReader,
        callback: Callable[[str], None],
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        super().__init__()
        self._reader = reader
        self._callback = callback
        self._loop = loop

    def on_created(self, event: FileSystemEvent) -> None:
        self._forward(event)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._forward(event)

    def _forward(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return

        src_path = event.src_path
        if isinstance(src_path, bytes):
            src_path = os.fsdecode(src_path)

        source_path = self._reader.relative(Path(src_path))
        if source_path is None:
            return

        try:
            self._loop.call_soon_threadsafe(self._callback, source_path)
        except RuntimeError:
            # Loop already closed during shutdown
            logger.debug("Dropped event after loop shutdown: path=%s", source_path)


def start_observer(root: Path, handler: VaultEventHandler) -> Observer:
    """Start a recursive watchdog observer on the vault root."""
    observer = Observer()
    observer.schedule(handler, str(root), recursive=True)
    observer.start()
    logger.info("Watching vault: root=%s", root)
    return observer
