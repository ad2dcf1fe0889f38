"""Conversation-level batching with quiet-period detection."""

import asyncio
import re
from collections.abc import Callable
from pathlib import PurePosixPath

from inbox_triage.config import DEFAULT_CONVERSATION_ID_PATTERN
from inbox_triage.logging import get_logger
from inbox_triage.models import ConversationBuffer, DispatchUnit

logger = get_logger("batcher")


def extract_conversation_id(
    source_path: str,
    pattern: str | re.Pattern[str] = DEFAULT_CONVERSATION_ID_PATTERN,
) -> str:
    """Extract the conversation ID from a chat message path.

    Chat exports are named ``<folder>/19_<conversation>@thread.v2-<timestamp>.md``;
    the ID is the leading ``19_...`` run up to the first ``-``. Names that do
    not match fall back to the whole file name.

    Args:
        source_path: Vault-relative source path
        pattern: Regex whose first group is the conversation ID

    Returns:
        Conversation identifier
    """
    file_name = PurePosixPath(source_path).name or source_path
    match = re.match(pattern, file_name)
    if match and match.group(1):
        return match.group(1)
    return file_name


class ConversationBatcher:
    """Groups settled events by conversation and releases quiet conversations.

    Every append schedules a quiet check ``window`` seconds ahead. A check
    releases the buffer only if nothing was appended during the last
    ``window`` seconds; otherwise it leaves the buffer to the check scheduled
    by the latest append. With ``max_wait`` set, a buffer older than
    ``max_wait`` seconds is released even if it is still active.
    """

    def __init__(
        self,
        window: float,
        on_ready: Callable[[DispatchUnit], None],
        *,
        max_wait: float | None = None,
        id_pattern: str = DEFAULT_CONVERSATION_ID_PATTERN,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        if window < 0:
            raise ValueError(f"window must be non-negative, got {window}")
        self._window = window
        self._on_ready = on_ready
        self._max_wait = max_wait
        self._id_pattern = re.compile(id_pattern)
        self._loop = loop
        self._buffers: dict[str, ConversationBuffer] = {}
        self._checks: dict[str, set[asyncio.TimerHandle]] = {}
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def conversation_ids(self) -> list[str]:
        return list(self._buffers)

    def get_buffer(self, conversation_id: str) -> ConversationBuffer | None:
        return self._buffers.get(conversation_id)

    def __len__(self) -> int:
        return len(self._buffers)

    def start(self) -> None:
        self._running = True

    def stop(self) -> None:
        """Cancel every scheduled quiet check and drop unreleased buffers."""
        self._running = False
        for handles in self._checks.values():
            for handle in handles:
                handle.cancel()
        self._checks.clear()
        if self._buffers:
            logger.info("Dropping unreleased conversations: count=%d", len(self._buffers))
        self._buffers.clear()

    def on_settled_event(self, source_path: str) -> str | None:
        """Add a settled source to its conversation buffer.

        Returns:
            The conversation ID, or None if the batcher is stopped
        """
        if not self._running:
            return None

        loop = self._get_loop()
        now = loop.time()
        conversation_id = extract_conversation_id(source_path, self._id_pattern)

        buffer = self._buffers.get(conversation_id)
        if buffer is None:
            buffer = ConversationBuffer(
                conversation_id=conversation_id,
                created_at=now,
                last_update=now,
            )
            self._buffers[conversation_id] = buffer
            logger.debug("Started conversation buffer: id=%s", conversation_id)

        if source_path not in buffer.members:
            buffer.members.append(source_path)
        buffer.last_update = now

        self._schedule_check(buffer, self._next_check_delay(buffer, now))
        return conversation_id

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def _next_check_delay(self, buffer: ConversationBuffer, now: float) -> float:
        delay = self._window - (now - buffer.last_update)
        if self._max_wait is not None:
            delay = min(delay, buffer.created_at + self._max_wait - now)
        return max(0.0, delay)

    def _schedule_check(self, buffer: ConversationBuffer, delay: float) -> None:
        conversation_id = buffer.conversation_id
        handles = self._checks.setdefault(conversation_id, set())
        handle: asyncio.TimerHandle | None = None

        def run_check() -> None:
            handles.discard(handle)
            self._check(conversation_id)

        handle = self._get_loop().call_later(delay, run_check)
        handles.add(handle)
        buffer.pending_checks += 1

    def _check(self, conversation_id: str) -> None:
        buffer = self._buffers.get(conversation_id)
        if buffer is None:
            return
        buffer.pending_checks -= 1

        now = self._get_loop().time()
        quiet = now - buffer.last_update >= self._window
        expired = self._max_wait is not None and now - buffer.created_at >= self._max_wait

        if not (quiet or expired):
            if buffer.pending_checks <= 0:
                # Timer fired marginally early; make sure one check remains.
                self._schedule_check(buffer, self._next_check_delay(buffer, now))
            return

        del self._buffers[conversation_id]
        for handle in self._checks.pop(conversation_id, set()):
            handle.cancel()

        if expired and not quiet:
            logger.info(
                "Releasing active conversation at max wait: id=%s members=%d",
                conversation_id,
                len(buffer.members),
            )
        else:
            logger.info(
                "Releasing quiet conversation: id=%s members=%d",
                conversation_id,
                len(buffer.members),
            )

        try:
            self._on_ready(buffer.to_unit())
        except Exception:
            logger.exception("Conversation release failed: id=%s", conversation_id)
