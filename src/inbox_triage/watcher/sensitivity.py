"""Exclusion of sources marked as sensitive."""

import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from inbox_triage.logging import get_logger

logger = get_logger("sensitivity")

FRONTMATTER_RE = re.compile(r"^---\n([\s\S]*?)\n---")


@dataclass(frozen=True)
class ExclusionCheck:
    """Outcome of a sensitivity check; ``error`` is set when the read failed."""

    excluded: bool
    error: Exception | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class SensitivityFilter:
    """Rejects sources whose body or front matter carries an exclusion marker.

    Read failures are fail-open: a source that cannot be read is treated as
    not excluded so ordinary items are not dropped on transient errors.
    """

    def __init__(
        self,
        reader: Callable[[str], Awaitable[str]],
        patterns: list[str],
        skip_tags: list[str],
    ) -> None:
        self._reader = reader
        self._patterns = list(patterns)
        self._skip_tags = list(skip_tags)

    def contains_exclusion(self, content: str) -> bool:
        """Check content for a body marker or a tagged front-matter block."""
        for pattern in self._patterns:
            if pattern and pattern in content:
                return True

        match = FRONTMATTER_RE.match(content)
        if match:
            frontmatter = match.group(1)
            if "tags:" in frontmatter:
                for tag in self._skip_tags:
                    if tag and tag in frontmatter:
                        return True

        return False

    async def check(self, source_path: str) -> ExclusionCheck:
        """Read the source and check it, capturing any read error."""
        try:
            content = await self._reader(source_path)
        except Exception as e:
            return ExclusionCheck(excluded=False, error=e)
        return ExclusionCheck(excluded=self.contains_exclusion(content))

    async def is_excluded(self, source_path: str) -> bool:
        """True if the source must be skipped. Read errors count as not excluded."""
        result = await self.check(source_path)
        if result.failed:
            logger.warning(
                "Could not read source for sensitivity check, treating as not excluded: path=%s error=%s",
                source_path,
                result.error,
            )
            return False
        return result.excluded
