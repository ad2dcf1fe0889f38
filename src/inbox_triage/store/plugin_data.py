"""JSON plugin-data document shared by several components."""

import asyncio
import json
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

from inbox_triage.logging import get_logger

logger = get_logger("plugin_data")


class PluginDataFile:
    """A JSON object on disk where each component owns one top-level key.

    Writes replace a single key and preserve the others. Writes are
    serialized with an asyncio lock and land atomically via a temporary file,
    so concurrent savers never interleave partial documents.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    async def load(self) -> dict[str, Any]:
        """Read the whole document. A missing file is an empty document."""
        return await asyncio.to_thread(self._read)

    async def load_section(self, key: str) -> Any | None:
        data = await self.load()
        return data.get(key)

    async def save_section(self, key: str, value: Any) -> None:
        """Replace one top-level key, keeping every other key intact."""
        await self.update_section(key, lambda current: value)

    async def update_section(self, key: str, merge: Callable[[Any | None], Any]) -> Any:
        """Read-modify-write one key under the lock.

        ``merge`` receives the key's current value and returns the value to
        store. It runs on the event loop between the read and the write, so it
        may touch loop-owned state. An unreadable document raises before
        ``merge`` is called and is never overwritten.

        Returns:
            The value that was written
        """
        async with self._lock:
            data = await asyncio.to_thread(self._read)
            value = merge(data.get(key))
            data[key] = value
            await asyncio.to_thread(self._write, data)
        logger.debug("Saved plugin data section: key=%s path=%s", key, self._path)
        return value

    def _read(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        with open(self._path, encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Plugin data is not a JSON object: {self._path}")
        return data

    def _write(self, data: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_name(f"{self._path.name}.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, self._path)
