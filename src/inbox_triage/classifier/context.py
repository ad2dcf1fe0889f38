"""Loader for the user-maintained triage context file."""

import asyncio
from dataclasses import dataclass
from pathlib import Path

from inbox_triage.logging import get_logger

logger = get_logger("context")

MAX_CONTEXT_SIZE = 10240  # 10KB


@dataclass
class ContextResult:
    content: str | None
    warning: str | None = None


def sanitize_context(content: str) -> str:
    """Escape tag brackets, link brackets and code fences."""
    return (
        content.replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace("[", "&#91;")
        .replace("]", "&#93;")
        .replace("```", "\\`\\`\\`")
    )


class TriageContextLoader:
    """Loads extra classification context from a markdown file.

    The sanitized content is cached until the file's modification time
    changes. Files larger than MAX_CONTEXT_SIZE are truncated.
    """

    def __init__(self, context_path: Path | None) -> None:
        self._path = context_path
        self._cache: tuple[float, str] | None = None

    def clear_cache(self) -> None:
        self._cache = None

    async def load(self) -> ContextResult:
        if self._path is None:
            return ContextResult(content=None)
        return await asyncio.to_thread(self._load_sync, self._path)

    def _load_sync(self, path: Path) -> ContextResult:
        try:
            mtime = path.stat().st_mtime
        except FileNotFoundError:
            return ContextResult(content=None, warning=f"Context file not found: {path}")
        except OSError as e:
            return ContextResult(content=None, warning=f"Failed to load context: {e}")

        if self._cache is not None and self._cache[0] == mtime:
            return ContextResult(content=self._cache[1])

        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.debug("Failed to load triage context: path=%s error=%s", path, e)
            return ContextResult(content=None, warning=f"Failed to load context: {e}")

        warning = None
        if len(content) > MAX_CONTEXT_SIZE:
            content = content[:MAX_CONTEXT_SIZE]
            warning = "Context file truncated (>10KB)"

        sanitized = sanitize_context(content)
        self._cache = (mtime, sanitized)
        return ContextResult(content=sanitized, warning=warning)
