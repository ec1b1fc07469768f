"""Record store: the `images` table behind a narrow async interface, plus its change feed."""

from __future__ import annotations

import asyncio
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from sharedgallery.core.config import logger
from sharedgallery.models.gallery import GalleryImage
from sharedgallery.models.items import ChangeEvent, GalleryItem

ORDERABLE_COLUMNS = ("created_at", "filename", "file_size")
FILTERABLE_COLUMNS = ("id", "filename", "file_size", "mime_type", "uploader_name", "uploader_id", "storage_path")


class RecordStoreError(Exception):
    """Record store query or write failed."""


class Subscription:
    """One consumer's view of a ChangeFeed. Async-iterable until closed."""

    _CLOSED = object()

    def __init__(self, feed: "ChangeFeed"):
        self._feed = feed
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def _push(self, event) -> None:
        if not self.closed:
            self._queue.put_nowait(event)

    async def get(self) -> Optional[ChangeEvent]:
        """Next event, or None once the subscription is closed."""
        event = await self._queue.get()
        if event is self._CLOSED:
            return None
        return event

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    def close(self) -> None:
        if self.closed:
            return
        self._queue.put_nowait(self._CLOSED)
        self.closed = True
        self._feed._subscribers.discard(self)


class ChangeFeed:
    """Fan-out of row-level change events to every open subscription."""

    def __init__(self):
        self._subscribers: set[Subscription] = set()

    def subscribe(self) -> Subscription:
        sub = Subscription(self)
        self._subscribers.add(sub)
        return sub

    def publish(self, event: ChangeEvent) -> None:
        for sub in list(self._subscribers):
            sub._push(event)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)


class RecordStore:
    """Interface consumed by the pipeline. All queries are exact-match on indexed columns."""

    async def select(self, filters: Optional[dict[str, Any]] = None, *, order_by: str = "created_at",
                     descending: bool = True, offset: int = 0, limit: Optional[int] = None,
                     filename_contains: Optional[str] = None) -> list[GalleryItem]:
        raise NotImplementedError

    async def count(self, filters: Optional[dict[str, Any]] = None, *,
                    filename_contains: Optional[str] = None) -> int:
        raise NotImplementedError

    async def insert(self, row: dict[str, Any]) -> GalleryItem:
        raise NotImplementedError

    async def update(self, item_id: str, values: dict[str, Any]) -> Optional[GalleryItem]:
        raise NotImplementedError

    async def delete(self, ids: list[str]) -> int:
        raise NotImplementedError

    def subscribe(self) -> Subscription:
        raise NotImplementedError


def _check_columns(filters: Optional[dict[str, Any]], order_by: str = "created_at") -> None:
    bad = [k for k in (filters or {}) if k not in FILTERABLE_COLUMNS]
    if bad:
        raise ValueError(f"unsupported filter column(s): {', '.join(bad)}")
    if order_by not in ORDERABLE_COLUMNS:
        raise ValueError(f"unsupported order column: {order_by}")


class SqlRecordStore(RecordStore):
    """SQLAlchemy-backed store. Writes made through it are published to its ChangeFeed after commit."""

    def __init__(self, session_factory: Optional[sessionmaker] = None, feed: Optional[ChangeFeed] = None):
        if session_factory is None:
            from sharedgallery.core.database import SessionLocal
            session_factory = SessionLocal
        self._session_factory = session_factory
        self.feed = feed or ChangeFeed()

    def _filtered(self, stmt, filters, filename_contains):
        for column, value in (filters or {}).items():
            stmt = stmt.where(getattr(GalleryImage, column) == value)
        if filename_contains:
            stmt = stmt.where(GalleryImage.filename.ilike(f"%{filename_contains}%"))
        return stmt

    def _select(self, filters, order_by, descending, offset, limit, filename_contains):
        column = getattr(GalleryImage, order_by)
        stmt = self._filtered(select(GalleryImage), filters, filename_contains)
        stmt = stmt.order_by(column.desc() if descending else column.asc())
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._session_factory() as db:
            return [GalleryItem.from_row(r) for r in db.scalars(stmt).all()]

    async def select(self, filters=None, *, order_by="created_at", descending=True, offset=0,
                     limit=None, filename_contains=None):
        _check_columns(filters, order_by)
        try:
            return await asyncio.to_thread(self._select, filters, order_by, descending, offset, limit, filename_contains)
        except SQLAlchemyError as ex:
            raise RecordStoreError(f"select failed: {ex}") from ex

    def _count(self, filters, filename_contains):
        stmt = self._filtered(select(func.count()).select_from(GalleryImage), filters, filename_contains)
        with self._session_factory() as db:
            return int(db.scalar(stmt) or 0)

    async def count(self, filters=None, *, filename_contains=None):
        _check_columns(filters)
        try:
            return await asyncio.to_thread(self._count, filters, filename_contains)
        except SQLAlchemyError as ex:
            raise RecordStoreError(f"count failed: {ex}") from ex

    def _insert(self, row):
        with self._session_factory() as db:
            rec = GalleryImage(**row)
            db.add(rec)
            try:
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                raise
            db.refresh(rec)
            return GalleryItem.from_row(rec)

    async def insert(self, row):
        try:
            item = await asyncio.to_thread(self._insert, dict(row))
        except SQLAlchemyError as ex:
            raise RecordStoreError(f"insert failed: {ex}") from ex
        self.feed.publish(ChangeEvent.insert(item))
        return item

    def _update(self, item_id, values):
        with self._session_factory() as db:
            rec = db.get(GalleryImage, item_id)
            if rec is None:
                return None
            for column, value in values.items():
                setattr(rec, column, value)
            try:
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                raise
            db.refresh(rec)
            return GalleryItem.from_row(rec)

    async def update(self, item_id, values):
        bad = [k for k in values if k == "id" or not hasattr(GalleryImage, k)]
        if bad:
            raise ValueError(f"cannot update column(s): {', '.join(bad)}")
        try:
            item = await asyncio.to_thread(self._update, item_id, dict(values))
        except SQLAlchemyError as ex:
            raise RecordStoreError(f"update failed: {ex}") from ex
        if item is not None:
            self.feed.publish(ChangeEvent.update(item))
        return item

    def _delete(self, ids):
        with self._session_factory() as db:
            found = list(db.scalars(select(GalleryImage.id).where(GalleryImage.id.in_(ids))).all())
            if found:
                db.query(GalleryImage).filter(GalleryImage.id.in_(found)).delete(synchronize_session=False)
                try:
                    db.commit()
                except SQLAlchemyError:
                    db.rollback()
                    raise
            return found

    async def delete(self, ids):
        if not ids:
            return 0
        try:
            removed = await asyncio.to_thread(self._delete, list(ids))
        except SQLAlchemyError as ex:
            raise RecordStoreError(f"delete failed: {ex}") from ex
        for item_id in removed:
            self.feed.publish(ChangeEvent.delete(item_id))
        logger.info(f"Deleted {len(removed)} image record(s)")
        return len(removed)

    def subscribe(self) -> Subscription:
        return self.feed.subscribe()


_default_store: Optional[SqlRecordStore] = None


def get_record_store() -> SqlRecordStore:
    """Process-wide store over the configured database (FastAPI dependency too)."""
    global _default_store
    if _default_store is None:
        _default_store = SqlRecordStore()
    return _default_store
