import asyncio

import pytest

from sharedgallery.models.items import ChangeType
from sharedgallery.utils.records import RecordStoreError


def row(filename="a.jpg", size=100, uploader="alice", path=None):
    return {
        "filename": filename,
        "storage_path": path or f"{uploader}/{filename}-{size}",
        "url": f"https://cdn.example/{filename}",
        "uploader_id": "uid-" + uploader,
        "uploader_name": uploader,
        "file_size": size,
        "mime_type": "image/jpeg",
        "width": 10,
        "height": 20,
    }


def test_insert_then_select_and_count(sql_store):
    async def scenario():
        first = await sql_store.insert(row("a.jpg"))
        await sql_store.insert(row("b.jpg", uploader="bob"))
        await sql_store.insert(row("Beach.JPG", size=7))
        return (
            first,
            await sql_store.select(),
            await sql_store.select({"uploader_name": "bob"}),
            await sql_store.count({"filename": "a.jpg", "file_size": 100, "uploader_name": "alice"}),
            await sql_store.count(filename_contains="bea"),
            await sql_store.select(order_by="file_size", descending=False, limit=1),
        )

    first, everything, bobs, exact, search, smallest = asyncio.run(scenario())

    assert first.id and first.created_at is not None
    assert len(everything) == 3
    assert [i.filename for i in bobs] == ["b.jpg"]
    assert exact == 1
    assert search == 1
    assert smallest[0].file_size == 7


def test_select_pages_with_offset(sql_store):
    async def scenario():
        for n in range(5):
            await sql_store.insert(row(f"{n}.jpg", size=n))
        return await sql_store.select(order_by="file_size", descending=False, offset=2, limit=2)

    page = asyncio.run(scenario())
    assert [i.file_size for i in page] == [2, 3]


def test_unknown_columns_are_rejected(sql_store):
    with pytest.raises(ValueError):
        asyncio.run(sql_store.select({"url": "x"}))
    with pytest.raises(ValueError):
        asyncio.run(sql_store.select(order_by="url"))
    with pytest.raises(ValueError):
        asyncio.run(sql_store.update("some-id", {"id": "other"}))


def test_update_and_delete(sql_store):
    async def scenario():
        item = await sql_store.insert(row("a.jpg"))
        renamed = await sql_store.update(item.id, {"filename": "renamed.jpg"})
        missing = await sql_store.update("nope", {"filename": "x"})
        removed = await sql_store.delete([item.id, "nope"])
        return renamed, missing, removed, await sql_store.count()

    renamed, missing, removed, remaining = asyncio.run(scenario())

    assert renamed.filename == "renamed.jpg"
    assert missing is None
    assert removed == 1
    assert remaining == 0


def test_writes_are_published_to_subscribers(sql_store):
    async def scenario():
        sub = sql_store.subscribe()
        item = await sql_store.insert(row("a.jpg"))
        await sql_store.update(item.id, {"width": 99})
        await sql_store.delete([item.id])
        events = [await sub.get() for _ in range(3)]
        sub.close()
        return item, events, await sub.get()

    item, events, after_close = asyncio.run(scenario())

    assert [e.type for e in events] == [ChangeType.INSERT, ChangeType.UPDATE, ChangeType.DELETE]
    assert {e.item_id for e in events} == {item.id}
    assert events[1].item.width == 99
    assert after_close is None
    assert sql_store.feed.subscriber_count == 0


def test_constraint_violation_becomes_record_store_error(sql_store):
    async def scenario():
        await sql_store.insert(row("a.jpg", path="alice/same.jpg"))
        await sql_store.insert(row("b.jpg", path="alice/same.jpg"))

    with pytest.raises(RecordStoreError):
        asyncio.run(scenario())
