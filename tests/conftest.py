import asyncio
import io
import itertools
import uuid
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest
from PIL import Image
from sqlalchemy.orm import sessionmaker

from sharedgallery.core.database import Base, make_engine
from sharedgallery.core.session import UploaderSession
from sharedgallery.models.items import ChangeEvent, GalleryItem, SelectedFile
from sharedgallery.utils.ledger import UploadLedger
from sharedgallery.utils.local_store import LocalKeyValueStore
from sharedgallery.utils.records import ChangeFeed, RecordStore, RecordStoreError, SqlRecordStore
from sharedgallery.utils.storage import ObjectExistsError, ObjectStore, StorageError

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def make_item(item_id=None, filename="a.jpg", size=100, uploader="alice", minutes=0, **kw) -> GalleryItem:
    ts = T0 + timedelta(minutes=minutes)
    values = dict(
        id=item_id or str(uuid.uuid4()),
        filename=filename,
        storage_path=f"{uploader}/{uuid.uuid4().hex}.jpg",
        url=f"https://cdn.example/{filename}",
        uploader_id="uid-" + uploader,
        uploader_name=uploader,
        file_size=size,
        mime_type="image/jpeg",
        width=None,
        height=None,
        created_at=ts,
        updated_at=ts,
    )
    values.update(kw)
    return GalleryItem(**values)


def jpeg_bytes(width=64, height=48, color=(200, 30, 30), quality=95) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


def big_bmp_bytes(width=2400, height=1600) -> bytes:
    # Uncompressed and smooth: far above the size threshold, tiny as JPEG
    img = Image.linear_gradient("L").resize((width, height)).convert("RGB")
    buf = io.BytesIO()
    img.save(buf, format="BMP")
    return buf.getvalue()


def noise_jpeg_bytes(width=600, height=600, quality=30) -> bytes:
    img = Image.effect_noise((width, height), 100).convert("RGB")
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


def image_file(name="photo.jpg", data=None, content_type="image/jpeg") -> SelectedFile:
    return SelectedFile(name=name, data=data if data is not None else jpeg_bytes(), content_type=content_type)


class MemoryRecordStore(RecordStore):
    """In-process stand-in for the remote table."""

    def __init__(self):
        self.rows: dict[str, GalleryItem] = {}
        self.feed = ChangeFeed()
        self.fail_count = False
        self.fail_insert_for: set[str] = set()
        self._clock = itertools.count(1)

    def _match(self, item, filters, filename_contains):
        for k, v in (filters or {}).items():
            if getattr(item, k) != v:
                return False
        if filename_contains and filename_contains.lower() not in item.filename.lower():
            return False
        return True

    async def select(self, filters=None, *, order_by="created_at", descending=True, offset=0,
                     limit=None, filename_contains=None):
        await asyncio.sleep(0)
        rows = [r for r in self.rows.values() if self._match(r, filters, filename_contains)]
        rows.sort(key=lambda r: getattr(r, order_by), reverse=descending)
        rows = rows[offset:]
        return rows if limit is None else rows[:limit]

    async def count(self, filters=None, *, filename_contains=None):
        await asyncio.sleep(0)
        if self.fail_count:
            raise RecordStoreError("store unreachable")
        return len([r for r in self.rows.values() if self._match(r, filters, filename_contains)])

    async def insert(self, row):
        await asyncio.sleep(0)
        if row["filename"] in self.fail_insert_for:
            raise RecordStoreError("insert rejected")
        ts = T0 + timedelta(seconds=next(self._clock))
        item = GalleryItem(id=str(uuid.uuid4()), created_at=ts, updated_at=ts, **row)
        self.rows[item.id] = item
        self.feed.publish(ChangeEvent.insert(item))
        return item

    async def update(self, item_id, values):
        if item_id not in self.rows:
            return None
        item = replace(self.rows[item_id], **values)
        self.rows[item_id] = item
        self.feed.publish(ChangeEvent.update(item))
        return item

    async def delete(self, ids):
        removed = [i for i in ids if self.rows.pop(i, None) is not None]
        for i in removed:
            self.feed.publish(ChangeEvent.delete(i))
        return len(removed)

    def subscribe(self):
        return self.feed.subscribe()


class MemoryObjectStore(ObjectStore):
    """Blob store that records how many puts overlap."""

    def __init__(self, delay: float = 0.01):
        self.blobs: dict[str, bytes] = {}
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0
        self.fail_data: set[bytes] = set()
        self.exists_data: set[bytes] = set()

    async def put(self, key, data, content_type="image/jpeg", cache_control=None, overwrite=False):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if data in self.exists_data:
                raise ObjectExistsError(f"object already exists: {key}")
            if data in self.fail_data:
                raise StorageError("network down")
            if key in self.blobs and not overwrite:
                raise ObjectExistsError(f"object already exists: {key}")
            self.blobs[key] = data
        finally:
            self.in_flight -= 1

    def public_url(self, key):
        return f"https://cdn.example/{key}"

    async def get(self, key):
        await asyncio.sleep(0)
        if key not in self.blobs:
            raise StorageError(f"missing: {key}")
        return self.blobs[key]

    async def delete(self, keys):
        for k in keys:
            self.blobs.pop(k, None)


async def passthrough(file):
    return file


@pytest.fixture
def kv(tmp_path):
    return LocalKeyValueStore(str(tmp_path / "profile" / "local_storage.json"))


@pytest.fixture
def session(kv):
    s = UploaderSession(kv)
    s.set_name("alice")
    return s


@pytest.fixture
def ledger(kv):
    return UploadLedger(kv)


@pytest.fixture
def records():
    return MemoryRecordStore()


@pytest.fixture
def objects():
    return MemoryObjectStore()


@pytest.fixture
def sql_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'gallery.db'}")
    Base.metadata.create_all(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def sql_store(sql_factory):
    return SqlRecordStore(sql_factory)
