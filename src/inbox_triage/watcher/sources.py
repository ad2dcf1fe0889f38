"""Access to watched sources inside the vault."""

import asyncio
from pathlib import Path, PurePosixPath


def display_name(source_path: str) -> str:
    """Base name of a source without its extension (e.g. 'a' for 'Emails/a.md')."""
    return PurePosixPath(source_path).stem or source_path


def matches_prefix(source_path: str, prefixes: list[str]) -> bool:
    """Check if a source path starts with any of the given folder prefixes."""
    return any(source_path.startswith(prefix) for prefix in prefixes)


class VaultReader:
    """Reads source contents relative to a vault root.

    Sources are identified by vault-relative POSIX paths. Reads run in a
    worker thread so the event loop is never blocked on disk I/O.
    """

    def __init__(self, root: Path) -> None:
        self._root = root

    @property
    def root(self) -> Path:
        return self._root

    def resolve(self, source_path: str) -> Path:
        """Map a vault-relative source path to a filesystem path."""
        return self._root.joinpath(*PurePosixPath(source_path).parts)

    def relative(self, file_path: Path) -> str | None:
        """Map a filesystem path back to a vault-relative source path."""
        try:
            return file_path.relative_to(self._root).as_posix()
        except ValueError:
            return None

    async def read(self, source_path: str) -> str:
        """Read a source as UTF-8 text."""
        path = self.resolve(source_path)
        return await asyncio.to_thread(path.read_text, encoding="utf-8")
