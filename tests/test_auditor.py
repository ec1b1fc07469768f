import asyncio
import logging

from conftest import MemoryRecordStore, make_item
from sharedgallery.pipeline.auditor import DuplicateAuditor, group_duplicates
from sharedgallery.utils.notifier import NotifierError


class RecordingNotifier:
    def __init__(self, fail_on=()):
        self.messages = []
        self.fail_on = set(fail_on)
        self.calls = 0

    async def post(self, message):
        self.calls += 1
        if self.calls in self.fail_on:
            raise NotifierError("webhook returned 500")
        self.messages.append(message)


def seeded_store(items):
    store = MemoryRecordStore()
    for item in items:
        store.rows[item.id] = item
    return store


def many_groups(n):
    items = []
    for g in range(n):
        items.append(make_item(f"g{g}-a", filename=f"f{g}.jpg", size=10 + g, minutes=1))
        items.append(make_item(f"g{g}-b", filename=f"f{g}.jpg", size=10 + g, minutes=2))
    return items


def test_groups_by_name_and_size_oldest_first():
    a = make_item("A", "x.jpg", 500, minutes=1)
    b = make_item("B", "x.jpg", 500, minutes=2)
    c = make_item("C", "x.jpg", 501, minutes=3)
    d = make_item("D", "y.jpg", 500, minutes=4)

    groups = group_duplicates([d, c, b, a])

    assert len(groups) == 1
    group = groups[0]
    assert (group.filename, group.file_size) == ("x.jpg", 500)
    assert group.original.id == "A"
    assert [m.id for m in group.removable] == ["B"]
    assert "'B'" in group.delete_statement()
    assert "'A'" not in group.delete_statement()


def test_delete_statement_keeps_user_filenames_inside_the_comment():
    name = "x.jpg\nDROP TABLE images;\r\n--"
    groups = group_duplicates([make_item("A", name, 1, minutes=1), make_item("it's", name, 1, minutes=2)])

    lines = groups[0].delete_statement().splitlines()

    assert len(lines) == 2
    assert lines[0].startswith("-- remove duplicates of: x.jpg DROP TABLE images;")
    assert lines[1] == "DELETE FROM images WHERE id IN ('it''s');"


def test_three_copies_form_one_group_and_other_sizes_are_excluded():
    items = [
        make_item("C", "x.jpg", 100, minutes=3),
        make_item("A", "x.jpg", 100, minutes=1),
        make_item("D", "x.jpg", 250, minutes=0),
        make_item("B", "x.jpg", 100, minutes=2),
    ]

    groups = group_duplicates(items)

    assert [[m.id for m in g.members] for g in groups] == [["A", "B", "C"]]
    assert groups[0].original.id == "A"


def test_equal_timestamps_keep_input_order_without_tie_breaker():
    p = make_item("p", "x.jpg", 1, minutes=0)
    q = make_item("q", "x.jpg", 1, minutes=0)

    assert [m.id for m in group_duplicates([q, p])[0].members] == ["q", "p"]
    assert [m.id for m in group_duplicates([q, p], tie_breaker=lambda i: i.id)[0].members] == ["p", "q"]


def test_report_caps_groups_and_adds_an_overflow_embed():
    auditor = DuplicateAuditor(MemoryRecordStore(), max_groups=10, embeds_per_message=10, batch_delay=0)
    groups = group_duplicates(many_groups(12))

    embeds = auditor.build_embeds(groups)

    assert len(embeds) == 1 + 10 + 1
    assert embeds[0]["description"].startswith("Found **24** images in **12**")
    assert embeds[-1]["title"] == "More duplicates"
    assert "2 more group(s)" in embeds[-1]["description"]

    messages = auditor.build_messages(groups)
    assert [len(m["embeds"]) for m in messages] == [10, 2]


def test_long_values_are_clipped_to_field_limit():
    long_name = "n" * 2000 + ".jpg"
    groups = group_duplicates([make_item("a", long_name, 1, minutes=1), make_item("b", long_name, 1, minutes=2)])

    embed = DuplicateAuditor(MemoryRecordStore()).build_embeds(groups)[1]

    assert len(embed["title"]) <= 256
    assert all(len(f["value"]) <= 1024 for f in embed["fields"])


def test_failed_message_does_not_stop_the_rest(caplog):
    notifier = RecordingNotifier(fail_on={1})
    auditor = DuplicateAuditor(MemoryRecordStore(), notifier, embeds_per_message=3, batch_delay=0)
    groups = group_duplicates(many_groups(5))

    with caplog.at_level(logging.ERROR, logger="sharedgallery"):
        delivered = asyncio.run(auditor.send_report(groups))

    assert notifier.calls == 2
    assert delivered == 1
    assert "message 1/2 failed" in caplog.text


def test_audit_reports_in_background_and_drain_waits():
    a = make_item("A", "x.jpg", 500, minutes=1)
    b = make_item("B", "x.jpg", 500, minutes=2)
    notifier = RecordingNotifier()
    auditor = DuplicateAuditor(seeded_store([a, b]), notifier, batch_delay=0)

    async def scenario():
        groups = await auditor.audit(report=True)
        await auditor.drain()
        return groups

    groups = asyncio.run(scenario())

    assert [g.original.id for g in groups] == ["A"]
    assert len(notifier.messages) == 1
    assert notifier.messages[0]["embeds"][1]["fields"][3]["value"].startswith("ID: `A`")


def test_audit_without_duplicates_sends_nothing():
    notifier = RecordingNotifier()
    auditor = DuplicateAuditor(seeded_store([make_item("A", "x.jpg"), make_item("B", "y.jpg")]), notifier)

    async def scenario():
        groups = await auditor.audit(report=True)
        await auditor.drain()
        return groups

    assert asyncio.run(scenario()) == []
    assert notifier.calls == 0


def test_no_notifier_means_nothing_is_sent():
    auditor = DuplicateAuditor(MemoryRecordStore())
    assert asyncio.run(auditor.send_report(group_duplicates(many_groups(1)))) == 0


def test_periodic_audit_survives_a_failed_run(caplog):
    store = seeded_store([make_item("A", "x.jpg", 500, minutes=1), make_item("B", "x.jpg", 500, minutes=2)])
    fetch = store.select
    calls = []

    async def flaky_select(*args, **kwargs):
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("database is locked")
        return await fetch(*args, **kwargs)

    store.select = flaky_select
    notifier = RecordingNotifier()
    auditor = DuplicateAuditor(store, notifier, batch_delay=0)

    async def scenario():
        # One run every 30 ms
        loop = asyncio.create_task(auditor.run_periodically(interval_minutes=0.0005))
        await asyncio.sleep(0.1)
        loop.cancel()
        await asyncio.gather(loop, return_exceptions=True)
        await auditor.drain()

    with caplog.at_level(logging.ERROR, logger="sharedgallery"):
        asyncio.run(scenario())

    assert "Error detecting duplicates: database is locked" in caplog.text
    assert len(calls) >= 2
    assert notifier.messages
