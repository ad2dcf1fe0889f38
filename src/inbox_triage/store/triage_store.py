"""Persistent triage queue with a status state machine."""

from collections.abc import Callable
from dataclasses import dataclass
from dataclasses import fields as dataclass_fields
from types import TracebackType
from typing import Any, Self

from inbox_triage.errors import DuplicateSourceError, InvalidTransitionError
from inbox_triage.logging import get_logger
from inbox_triage.models import (
    TriageCategory,
    TriageItem,
    TriageStatus,
    TriageSuggestion,
    now_iso,
)
from inbox_triage.store.plugin_data import PluginDataFile

logger = get_logger("triage_store")

# Key of the queue section inside the plugin data document
QUEUE_KEY = "triageQueue"

UPDATABLE_FIELDS = frozenset({
    "source_path",
    "source_name",
    "triage_time",
    "suggestion",
    "status",
    "user_edits",
    "action_taken",
    "action_time",
    "artifact_path",
})


@dataclass(frozen=True)
class StoreChange:
    """Notification passed to store listeners."""

    kind: str  # added, updated, removed, purged
    item: TriageItem | None = None


ChangeListener = Callable[[StoreChange], None]


def _raw_items(section: Any | None) -> list[Any]:
    if not isinstance(section, dict):
        return []
    items = section.get("items", [])
    return items if isinstance(items, list) else []


def _parse_item(raw: Any) -> TriageItem | None:
    """Parse one persisted item, or None if it is not a valid item."""
    if not isinstance(raw, dict):
        return None
    try:
        return TriageItem.from_dict(raw)
    except (KeyError, TypeError, ValueError):
        return None


def _supersedes(stored: TriageItem, current: TriageItem) -> bool:
    """True if the persisted copy of an item must replace the in-memory one.

    A terminal status on disk beats pending in memory, and the first terminal
    status recorded beats a different one set later.
    """
    if stored.status is current.status:
        return False
    return stored.status is not TriageStatus.PENDING


def _adopt(target: TriageItem, source: TriageItem) -> None:
    for field in dataclass_fields(TriageItem):
        setattr(target, field.name, getattr(source, field.name))


class Subscription:
    """Registration handle for a store listener.

    The registering component owns the handle and ends the registration
    with cancel() or by leaving a ``with`` block.
    """

    def __init__(self, store: "TriageStore", listener: ChangeListener) -> None:
        self._store = store
        self._listener = listener
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        if self._active:
            self._store._remove_listener(self._listener)
            self._active = False

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.cancel()


class TriageStore:
    """Owns every TriageItem and persists the whole queue on each mutation.

    Status moves only forward: pending items may become reviewed or
    dismissed, and those terminal states never change again. At most one
    pending item may reference a given source path.

    Each mutation changes memory without awaiting, then persists, then
    notifies listeners synchronously. Persisting merges with whatever another
    process wrote meanwhile (see save()). A failing save is logged and the
    in-memory queue stays authoritative.
    """

    def __init__(self, data_file: PluginDataFile) -> None:
        self._data_file = data_file
        self._items: list[TriageItem] = []
        self._listeners: list[ChangeListener] = []
        # IDs known to be persisted as of the last successful load or save
        self._synced_ids: set[str] = set()

    async def load(self) -> None:
        """Load the queue from the plugin data document.

        Items that fail to parse are logged and left untouched on disk; the
        rest are loaded.
        """
        try:
            section = await self._data_file.load_section(QUEUE_KEY)
        except Exception:
            logger.exception("Failed to load triage queue: path=%s", self._data_file.path)
            self._items = []
            self._synced_ids = set()
            return

        raw_items = _raw_items(section)
        self._items = [item for item in map(_parse_item, raw_items) if item is not None]
        self._synced_ids = {item.id for item in self._items}
        skipped = len(raw_items) - len(self._items)
        if skipped:
            logger.warning(
                "Skipped unreadable triage items, left as-is on disk: count=%d path=%s",
                skipped,
                self._data_file.path,
            )
        logger.info(
            "Loaded triage queue: items=%d pending=%d",
            len(self._items),
            self.get_pending_count(),
        )

    async def save(self) -> bool:
        """Merge the in-memory queue into the persisted one. Returns False if the write failed.

        Other processes (the review CLI) write the same document, so the
        persisted queue is re-read under the file lock and reconciled item by
        item: status only moves forward, items removed on either side stay
        removed, and items added on either side are kept. Entries that cannot
        be parsed are written back unchanged. A document that cannot be read
        is never overwritten.
        """
        merged_ids: set[str] = set()

        def merge(section: Any | None) -> dict[str, Any]:
            section_items = self._reconcile(_raw_items(section))
            merged_ids.update(item.id for item in self._items)
            return {"items": section_items, "lastUpdated": now_iso()}

        try:
            await self._data_file.update_section(QUEUE_KEY, merge)
        except Exception:
            logger.exception("Failed to save triage queue: path=%s", self._data_file.path)
            return False

        self._synced_ids = merged_ids
        return True

    def _reconcile(self, persisted: list[Any]) -> list[Any]:
        """Fold persisted entries into memory and return the entries to write."""
        memory = {item.id: item for item in self._items}
        merged: list[TriageItem] = []
        output: list[Any] = []
        seen: set[str] = set()

        for raw in persisted:
            stored = _parse_item(raw)
            if stored is None:
                output.append(raw)
                continue
            seen.add(stored.id)
            current = memory.get(stored.id)
            if current is None:
                if stored.id in self._synced_ids:
                    continue  # removed here since the last sync
                current = stored
                logger.debug("Adopted item from another writer: id=%s", stored.id)
            elif _supersedes(stored, current):
                logger.info(
                    "Item changed by another writer: id=%s status=%s",
                    stored.id,
                    stored.status.value,
                )
                _adopt(current, stored)
            merged.append(current)
            output.append(current.to_dict())

        for item in self._items:
            if item.id in seen:
                continue
            if item.id in self._synced_ids:
                logger.debug("Item removed by another writer: id=%s", item.id)
                continue
            merged.append(item)
            output.append(item.to_dict())

        self._items = merged
        return output

    async def add_item(self, source_path: str, suggestion: TriageSuggestion) -> TriageItem:
        """Add a new pending item.

        Raises:
            DuplicateSourceError: A pending item already references source_path
        """
        if self.has_pending_source_path(source_path):
            raise DuplicateSourceError(source_path)

        item = TriageItem.create(source_path, suggestion)
        self._items.append(item)

        await self.save()
        self._notify(StoreChange("added", item))
        logger.info(
            "Added triage item: id=%s path=%s category=%s confidence=%.2f",
            item.id,
            source_path,
            suggestion.category.value,
            suggestion.confidence,
        )
        return item

    async def update_item(self, item_id: str, **fields: Any) -> TriageItem | None:
        """Merge the given fields into an item. Fields passed as None are left unchanged.

        Returns:
            The updated item, or None if no item has that ID

        Raises:
            ValueError: An unknown field name was given
            InvalidTransitionError: The status change is not allowed
            DuplicateSourceError: The item would share its source path with
                another pending item
        """
        invalid = set(fields) - UPDATABLE_FIELDS
        if invalid:
            raise ValueError(f"Invalid attributes: {invalid}")

        item = self.get_item(item_id)
        if item is None:
            return None

        updates = {key: value for key, value in fields.items() if value is not None}
        if "status" in updates:
            target = TriageStatus(updates["status"])
            if not item.status.can_transition_to(target):
                raise InvalidTransitionError(item_id, item.status.value, target.value)
            updates["status"] = target

        source_path = updates.get("source_path", item.source_path)
        status = updates.get("status", item.status)
        if (
            source_path != item.source_path
            and status is TriageStatus.PENDING
            and self.has_pending_source_path(source_path)
        ):
            raise DuplicateSourceError(source_path)

        for key, value in updates.items():
            setattr(item, key, value)

        await self.save()
        self._notify(StoreChange("updated", item))
        return item

    async def mark_reviewed(
        self, item_id: str, action: str, artifact_path: str | None = None
    ) -> TriageItem | None:
        """Mark an item reviewed with the action taken (e.g. 'created_task')."""
        return await self.update_item(
            item_id,
            status=TriageStatus.REVIEWED,
            action_taken=action,
            action_time=now_iso(),
            artifact_path=artifact_path,
        )

    async def dismiss_item(self, item_id: str) -> TriageItem | None:
        """Dismiss an item as needing no action."""
        return await self.update_item(
            item_id,
            status=TriageStatus.DISMISSED,
            action_taken="dismissed",
            action_time=now_iso(),
        )

    async def remove_item(self, item_id: str) -> bool:
        for index, item in enumerate(self._items):
            if item.id == item_id:
                del self._items[index]
                await self.save()
                self._notify(StoreChange("removed", item))
                return True
        return False

    async def purge_non_pending(self) -> int:
        """Remove every reviewed or dismissed item. Returns the count removed."""
        before = len(self._items)
        self._items = [item for item in self._items if item.is_pending]
        removed = before - len(self._items)

        if removed > 0:
            await self.save()
            self._notify(StoreChange("purged"))
            logger.info("Purged processed triage items: count=%d", removed)

        return removed

    def get_item(self, item_id: str) -> TriageItem | None:
        for item in self._items:
            if item.id == item_id:
                return item
        return None

    def get_all_items(self) -> list[TriageItem]:
        return list(self._items)

    def get_pending_items(self) -> list[TriageItem]:
        return [item for item in self._items if item.is_pending]

    def get_pending_count(self) -> int:
        return sum(1 for item in self._items if item.is_pending)

    def get_items_by_category(self, category: TriageCategory | str) -> list[TriageItem]:
        category = TriageCategory(category)
        return [item for item in self._items if item.suggestion.category is category]

    def has_pending_source_path(self, source_path: str) -> bool:
        return any(item.source_path == source_path and item.is_pending for item in self._items)

    def get_stats(self) -> dict[str, int]:
        stats = {"total": len(self._items)}
        for status in TriageStatus:
            stats[status.value] = 0
        for item in self._items:
            stats[item.status.value] += 1
        return stats

    def subscribe(self, listener: ChangeListener) -> Subscription:
        """Register a change listener; cancel the returned handle to unregister."""
        self._listeners.append(listener)
        return Subscription(self, listener)

    def _remove_listener(self, listener: ChangeListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def _notify(self, change: StoreChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception("Triage store listener failed: kind=%s", change.kind)
