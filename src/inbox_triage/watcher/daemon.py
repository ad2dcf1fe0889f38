"""Watcher daemon: wires change events through filtering, batching and classification."""

import asyncio
from collections.abc import Coroutine
from dataclasses import replace
from typing import Any

from inbox_triage.classifier import TriageClassifier
from inbox_triage.config import Config, SensitivityConfig, WatcherConfig
from inbox_triage.errors import DuplicateSourceError
from inbox_triage.logging import get_logger, setup_logging
from inbox_triage.models import DispatchUnit, TriageCategory, TriageSuggestion
from inbox_triage.store import PluginDataFile, StoreChange, TriageStore
from inbox_triage.store.triage_store import ChangeListener
from inbox_triage.watcher.batcher import ConversationBatcher
from inbox_triage.watcher.debouncer import ChangeDebouncer
from inbox_triage.watcher.dispatch import DEFAULT_RETRY_DELAY, DispatchQueue
from inbox_triage.watcher.events import VaultEventHandler, start_observer
from inbox_triage.watcher.sensitivity import SensitivityFilter
from inbox_triage.watcher.sources import VaultReader, display_name, matches_prefix

logger = get_logger("watcher")

# Global flag for graceful shutdown
_shutdown_requested = False

# Separator placed between member contents of a conversation
CONVERSATION_SEPARATOR = "\n---\n"


def request_shutdown() -> None:
    """Request graceful shutdown of the watcher daemon."""
    global _shutdown_requested
    _shutdown_requested = True


def is_shutdown_requested() -> bool:
    """Check if shutdown has been requested."""
    return _shutdown_requested


def reset_shutdown() -> None:
    """Reset shutdown flag (useful for testing)."""
    global _shutdown_requested
    _shutdown_requested = False


class TriagePipeline:
    """Turns raw change events into triage items.

    change -> debounce -> duplicate check -> sensitivity filter ->
    (conversation batching) -> bounded dispatch -> classify -> store

    None of the public entry points raise: failures are logged, and a failed
    classification still produces an UNCLEAR item so the source is never
    silently lost.
    """

    def __init__(
        self,
        config: WatcherConfig,
        sensitivity: SensitivityConfig,
        store: TriageStore,
        classifier: TriageClassifier,
        reader: VaultReader,
        *,
        retry_delay: float = DEFAULT_RETRY_DELAY,
    ) -> None:
        self._config = config
        self._store = store
        self._classifier = classifier
        self._reader = reader
        self._tasks: set[asyncio.Task[None]] = set()
        self._running = False

        self._debouncer = ChangeDebouncer(
            config.debounce_delay,
            self._on_settled,
            max_wait=config.debounce_max_wait,
        )
        self._filter = SensitivityFilter(reader.read, sensitivity.patterns, sensitivity.skip_tags)
        self._dispatch = DispatchQueue(
            self._triage_unit,
            config.max_concurrent,
            retry_delay=retry_delay,
        )
        self._batcher = ConversationBatcher(
            config.batch_window,
            self._dispatch.enqueue,
            max_wait=config.batch_max_wait,
            id_pattern=config.conversation_id_pattern,
        )

    @property
    def running(self) -> bool:
        return self._running

    @property
    def debouncer(self) -> ChangeDebouncer:
        return self._debouncer

    @property
    def batcher(self) -> ConversationBatcher:
        return self._batcher

    @property
    def dispatch(self) -> DispatchQueue:
        return self._dispatch

    def start(self) -> None:
        if self._running:
            return
        if not self._config.enabled:
            logger.info("Auto triage disabled, watcher not started")
            return

        self._running = True
        self._debouncer.start()
        self._batcher.start()
        self._dispatch.start()
        logger.info(
            "Watcher started: folders=%s max_concurrent=%d debounce=%.2fs batch_window=%.0fs",
            self._config.watched_folders,
            self._config.max_concurrent,
            self._config.debounce_delay,
            self._config.batch_window,
        )

    def stop(self) -> None:
        """Cancel timers and quiet checks and stop draining the queue."""
        if not self._running:
            return
        self._running = False
        self._debouncer.stop()
        self._batcher.stop()
        self._dispatch.stop()
        logger.info("Watcher stopped")

    async def join(self) -> None:
        """Wait for in-flight admissions and classifications to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self._dispatch.join()

    def is_watched(self, source_path: str) -> bool:
        return matches_prefix(source_path, self._config.watched_folders)

    def is_conversation(self, source_path: str) -> bool:
        return matches_prefix(source_path, self._config.conversation_prefixes)

    def on_change(self, source_path: str) -> None:
        """Entry point for creation and modification events."""
        if not self._running or not self.is_watched(source_path):
            return
        self._debouncer.on_event(source_path)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _on_settled(self, source_path: str) -> None:
        self._spawn(self._admit(source_path))

    async def _admit(self, source_path: str) -> None:
        try:
            if self._store.has_pending_source_path(source_path):
                logger.debug("Already pending, skipping: path=%s", source_path)
                return

            if await self._filter.is_excluded(source_path):
                logger.info("Skipping sensitive source: path=%s", source_path)
                return

            if not self._running:
                return

            if self.is_conversation(source_path):
                self._batcher.on_settled_event(source_path)
            else:
                self._dispatch.enqueue(DispatchUnit.single(source_path))
        except Exception:
            logger.exception("Failed to admit source: path=%s", source_path)

    async def _classify(self, unit: DispatchUnit) -> TriageSuggestion:
        """Classify a unit, degrading any failure to an UNCLEAR suggestion."""
        title = display_name(unit.representative_path)
        try:
            if unit.is_conversation:
                contents = [await self._reader.read(path) for path in unit.paths]
                count = len(unit.paths)
                suggestion = await self._classifier.classify(
                    CONVERSATION_SEPARATOR.join(contents),
                    f"Conversation ({count} messages)",
                )
                return replace(
                    suggestion,
                    reasoning=f"Conversation with {count} messages: {suggestion.reasoning or ''}",
                )

            content = await self._reader.read(unit.representative_path)
            return await self._classifier.classify(content, title)
        except Exception as e:
            logger.warning(
                "Triage failed, queueing as unclear: path=%s error=%s",
                unit.representative_path,
                e,
            )
            return TriageSuggestion.unclear(title, f"Triage failed: {e}")

    async def _triage_unit(self, unit: DispatchUnit) -> None:
        source_path = unit.representative_path
        suggestion = await self._classify(unit)

        if suggestion.category is TriageCategory.INFORMATIONAL:
            logger.info("Informational, not queued: path=%s", source_path)
            return

        try:
            await self._store.add_item(source_path, suggestion)
        except DuplicateSourceError:
            logger.info("Pending item appeared during triage, skipping: path=%s", source_path)


def _log_store_change(store: TriageStore) -> ChangeListener:
    def listener(change: StoreChange) -> None:
        logger.info("Triage queue changed: kind=%s pending=%d", change.kind, store.get_pending_count())

    return listener


async def serve(config: Config) -> None:
    """Run the watcher until shutdown is requested."""
    store = TriageStore(PluginDataFile(config.data_path))
    await store.load()

    classifier = TriageClassifier.from_config(config.classifier, config.vault_path)
    reader = VaultReader(config.vault_path)
    pipeline = TriagePipeline(config.watcher, config.sensitivity, store, classifier, reader)

    loop = asyncio.get_running_loop()
    handler = VaultEventHandler(reader, pipeline.on_change, loop)
    observer = start_observer(config.vault_path, handler)

    with store.subscribe(_log_store_change(store)):
        pipeline.start()
        try:
            while not is_shutdown_requested():
                await asyncio.sleep(1.0)
        finally:
            observer.stop()
            await asyncio.to_thread(observer.join)
            pipeline.stop()
            await pipeline.join()
            await classifier.aclose()


def run_watcher(config: Config) -> None:
    """Run the watcher daemon main loop.

    Watches the vault for new and modified sources, triages them and
    records the results in the review queue until shutdown is requested.

    Args:
        config: Application configuration
    """
    reset_shutdown()

    setup_logging("watcher")

    logger.info(
        "Starting watcher daemon: vault=%s data=%s model=%s",
        config.vault_path,
        config.data_path,
        config.classifier.model,
    )

    asyncio.run(serve(config))

    logger.info("Watcher daemon stopped")
