"""Dataset-wide duplicate detection and webhook reporting.

Items sharing (filename, file_size) form a group; the oldest member is the
original and the rest are removable. Reports go out as Discord-style embeds,
a limited number of groups per run, paced between webhook messages.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from sharedgallery.core.config import (
    AUDIT_BATCH_DELAY_SEC,
    AUDIT_EMBEDS_PER_MESSAGE,
    AUDIT_MAX_GROUPS,
    IMAGES_TABLE,
    logger,
)
from sharedgallery.models.items import DuplicateGroup, GalleryItem
from sharedgallery.utils.notifier import WebhookNotifier
from sharedgallery.utils.records import RecordStore

COLOR_SUMMARY = 0xFF6B6B
COLOR_GROUP = 0xFECA57
COLOR_OVERFLOW = 0xFFA502
FIELD_LIMIT = 1024

TieBreaker = Callable[[GalleryItem], Any]


def _clip(text: str, limit: int = FIELD_LIMIT) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


def _when(dt: Optional[datetime]) -> str:
    return dt.strftime("%Y-%m-%d %H:%M:%S") if dt else "unknown"


def _describe(item: GalleryItem) -> str:
    return f"ID: `{item.id}`\nUploader: **{item.uploader_name or 'Unknown'}**\nDate: {_when(item.created_at)}\n{item.url}"


def group_duplicates(items: list[GalleryItem], tie_breaker: Optional[TieBreaker] = None) -> list[DuplicateGroup]:
    """Groups of 2+ items per (filename, file_size), members oldest first.

    Equal timestamps keep their input order unless `tie_breaker` gives a
    secondary sort key.
    """
    buckets: dict[tuple, list[GalleryItem]] = {}
    for item in items:
        buckets.setdefault((item.filename, item.file_size), []).append(item)

    def order(item: GalleryItem):
        if tie_breaker is None:
            return (item.created_at,)
        return (item.created_at, tie_breaker(item))

    groups = []
    for (filename, size), members in buckets.items():
        if len(members) < 2:
            continue
        groups.append(DuplicateGroup(filename=filename, file_size=size, members=sorted(members, key=order)))
    return groups


class DuplicateAuditor:
    def __init__(
        self,
        records: RecordStore,
        notifier: Optional[WebhookNotifier] = None,
        max_groups: int = AUDIT_MAX_GROUPS,
        embeds_per_message: int = AUDIT_EMBEDS_PER_MESSAGE,
        batch_delay: float = AUDIT_BATCH_DELAY_SEC,
        tie_breaker: Optional[TieBreaker] = None,
    ):
        self._records = records
        self._notifier = notifier
        self.max_groups = max_groups
        self.embeds_per_message = max(1, embeds_per_message)
        self.batch_delay = batch_delay
        self.tie_breaker = tie_breaker
        self._pending: set[asyncio.Task] = set()

    async def audit(self, report: bool = False) -> list[DuplicateGroup]:
        items = await self._records.select(order_by="created_at", descending=True)
        groups = group_duplicates(items, self.tie_breaker)
        if not groups:
            logger.info("No duplicates found")
            return groups
        logger.info(f"Found {len(groups)} duplicate group(s) across {len(items)} image(s)")
        if report:
            self.report_in_background(groups)
        return groups

    # ── report building ──────────────────────────────────────────────

    def build_embeds(self, groups: list[DuplicateGroup]) -> list[dict]:
        total_images = sum(len(g.members) for g in groups)
        embeds: list[dict] = [{
            "title": "Duplicate image report",
            "description": f"Found **{total_images}** images in **{len(groups)}** duplicate group(s)",
            "color": COLOR_SUMMARY,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "footer": {"text": "Shared Gallery - Duplicate Detection"},
        }]

        for i, group in enumerate(groups[: self.max_groups]):
            size_mb = (group.file_size or 0) / 1024 / 1024
            fields = [
                {"name": "File name", "value": _clip(f"`{group.filename}`"), "inline": False},
                {"name": "File size", "value": f"{size_mb:.2f} MB", "inline": True},
                {"name": "Copies", "value": f"{len(group.members)}", "inline": True},
                {"name": "Original (keep)", "value": _clip(_describe(group.original)), "inline": False},
            ]
            for n, item in enumerate(group.removable, start=1):
                fields.append({"name": f"Duplicate #{n} (remove)", "value": _clip(_describe(item)), "inline": False})
            fields.append({
                "name": "SQL to remove duplicates",
                "value": _clip(f"```sql\n{group.delete_statement(IMAGES_TABLE)}\n```"),
                "inline": False,
            })
            embeds.append({
                "title": _clip(f"Group {i + 1}: {group.filename}", 256),
                "color": COLOR_GROUP,
                "fields": fields,
                "thumbnail": {"url": group.original.url},
            })

        if len(groups) > self.max_groups:
            embeds.append({
                "title": "More duplicates",
                "description": f"{len(groups) - self.max_groups} more group(s) not shown in this report",
                "color": COLOR_OVERFLOW,
            })
        return embeds

    def build_messages(self, groups: list[DuplicateGroup]) -> list[dict]:
        embeds = self.build_embeds(groups)
        n = self.embeds_per_message
        return [{"embeds": embeds[i:i + n]} for i in range(0, len(embeds), n)]

    # ── delivery ─────────────────────────────────────────────────────

    async def send_report(self, groups: list[DuplicateGroup]) -> int:
        """Post every message; failures are logged and skipped. Returns messages delivered."""
        if self._notifier is None:
            logger.warning("No notifier configured; duplicate report not sent")
            return 0
        messages = self.build_messages(groups)
        delivered = 0
        for i, message in enumerate(messages):
            try:
                await self._notifier.post(message)
                delivered += 1
            except Exception as ex:
                logger.error(f"Duplicate report message {i + 1}/{len(messages)} failed: {ex}")
            if i + 1 < len(messages):
                await asyncio.sleep(self.batch_delay)
        logger.info(f"Sent duplicate report: {len(groups)} group(s), {delivered}/{len(messages)} message(s)")
        return delivered

    def report_in_background(self, groups: list[DuplicateGroup]) -> asyncio.Task:
        task = asyncio.create_task(self.send_report(groups))
        self._pending.add(task)
        task.add_done_callback(self._report_done)
        return task

    def _report_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        ex = task.exception()
        if ex is not None:
            logger.error(f"Duplicate report task failed: {ex}")

    async def drain(self) -> None:
        """Wait for background reports still in flight."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def run_periodically(self, interval_minutes: float = 60) -> None:
        while True:
            try:
                await self.audit(report=True)
            except Exception as ex:
                logger.error(f"Error detecting duplicates: {ex}")
            await asyncio.sleep(interval_minutes * 60)
