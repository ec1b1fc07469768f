"""Local gallery view kept consistent with the shared dataset.

Three producers feed one reducer (`apply`): the bootstrap fetch, a slow poll
that refetches everything, and the record store's change feed. Every mutation
is insert-if-absent, replace-by-id, remove-by-id or wholesale replace, so the
producers never need to coordinate.
"""
from __future__ import annotations

import asyncio
from typing import Callable, Optional

from sharedgallery.core.config import POLL_INTERVAL_SEC, logger
from sharedgallery.models.items import ChangeEvent, ChangeType, GalleryItem
from sharedgallery.utils.records import RecordStore, Subscription

MIN_POLL_INTERVAL_SEC = 5.0


def _sort_key(item: GalleryItem):
    return item.created_at


def _index_of(items: list[GalleryItem], item_id: str) -> int:
    for i, item in enumerate(items):
        if item.id == item_id:
            return i
    return -1


def _insert_sorted(items: list[GalleryItem], item: GalleryItem) -> None:
    # Newest first; lands at index 0 for a fresh upload
    pos = 0
    while pos < len(items) and _sort_key(items[pos]) > _sort_key(item):
        pos += 1
    items.insert(pos, item)


def fold(items: list[GalleryItem], event: ChangeEvent) -> bool:
    """Apply one event to `items` in place. Returns True when the list changed."""
    if event.type == ChangeType.INSERT and event.item is not None:
        if _index_of(items, event.item.id) < 0:
            _insert_sorted(items, event.item)
            return True
    elif event.type == ChangeType.UPDATE and event.item is not None:
        idx = _index_of(items, event.item.id)
        if idx >= 0 and items[idx] != event.item:
            items[idx] = event.item
            return True
    elif event.type == ChangeType.DELETE and event.item_id:
        idx = _index_of(items, event.item_id)
        if idx >= 0:
            del items[idx]
            return True
    elif event.type == ChangeType.SNAPSHOT:
        fresh = sorted(event.items, key=_sort_key, reverse=True)
        if fresh != items:
            items[:] = fresh
            return True
    return False


class GallerySynchronizer:
    def __init__(
        self,
        records: RecordStore,
        poll_interval: float = POLL_INTERVAL_SEC,
        on_change: Optional[Callable[[tuple[GalleryItem, ...]], None]] = None,
        min_poll_interval: float = MIN_POLL_INTERVAL_SEC,
    ):
        if poll_interval < min_poll_interval:
            logger.warning(f"Poll interval {poll_interval}s too short, using {min_poll_interval}s")
            poll_interval = min_poll_interval
        self._records = records
        self.poll_interval = poll_interval
        self._on_change = on_change
        self._items: list[GalleryItem] = []
        self.loading = True
        # Events applied while a refetch is in flight, one list per refetch
        self._journals: list[list[ChangeEvent]] = []
        self._subscription: Optional[Subscription] = None
        self._feed_task: Optional[asyncio.Task] = None
        self._poll_task: Optional[asyncio.Task] = None

    # ── read side ────────────────────────────────────────────────────

    @property
    def items(self) -> tuple[GalleryItem, ...]:
        """Snapshot, newest first."""
        return tuple(self._items)

    def get(self, item_id: str) -> Optional[GalleryItem]:
        for item in self._items:
            if item.id == item_id:
                return item
        return None

    def __len__(self) -> int:
        return len(self._items)

    @property
    def running(self) -> bool:
        return self._poll_task is not None or self._feed_task is not None

    # ── reducer ──────────────────────────────────────────────────────

    def apply(self, event: ChangeEvent) -> bool:
        """Fold one event into the list. Returns True when the list changed."""
        if event.type != ChangeType.SNAPSHOT:
            for journal in self._journals:
                journal.append(event)
        changed = fold(self._items, event)
        if changed and self._on_change is not None:
            try:
                self._on_change(self.items)
            except Exception as ex:
                logger.warning(f"gallery change listener failed: {ex}")
        return changed

    def insert_if_absent(self, item: GalleryItem) -> bool:
        """Local echo entry point for the uploader's own fresh inserts."""
        return self.apply(ChangeEvent.insert(item))

    # ── producers ────────────────────────────────────────────────────

    async def refresh(self) -> bool:
        """Full refetch. Errors are logged and leave the current list alone.

        Events applied while the fetch is in flight are replayed on top of the
        fetched rows, so a slow fetch never rolls back a newer local echo or delete.
        """
        journal: list[ChangeEvent] = []
        self._journals.append(journal)
        try:
            rows = await self._records.select(order_by="created_at", descending=True)
        except Exception as ex:
            logger.error(f"Error fetching images: {ex}")
            return False
        finally:
            self._journals.remove(journal)
            self.loading = False
        fresh = list(rows)
        for event in journal:
            fold(fresh, event)
        self.apply(ChangeEvent.snapshot(fresh))
        return True

    async def _consume_feed(self, subscription: Subscription) -> None:
        async for event in subscription:
            try:
                self.apply(event)
            except Exception as ex:
                logger.warning(f"Dropping change event {event.type}: {ex}")

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            await self.refresh()

    async def start(self) -> None:
        if self.running:
            return
        # Subscribe first so nothing written during the bootstrap fetch is missed
        self._subscription = self._records.subscribe()
        await self.refresh()
        self._feed_task = asyncio.create_task(self._consume_feed(self._subscription))
        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info(f"Gallery sync started: {len(self._items)} item(s), polling every {self.poll_interval}s")

    async def stop(self) -> None:
        """Release the subscription and the poll timer together."""
        tasks = [t for t in (self._poll_task, self._feed_task) if t is not None]
        if self._subscription is not None:
            self._subscription.close()
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._poll_task = None
        self._feed_task = None
        self._subscription = None

    async def __aenter__(self) -> "GallerySynchronizer":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.stop()
