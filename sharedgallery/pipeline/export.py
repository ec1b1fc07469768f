"""Bulk export of gallery items to a local folder.

Items are fetched one at a time. Cancellation is checked between items only,
so the item being transferred always finishes (or fails) cleanly.
"""
from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from sharedgallery.core.config import logger
from sharedgallery.models.items import GalleryItem
from sharedgallery.utils.storage import ObjectStore


class CancelToken:
    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class ExportResult:
    saved: list[str] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)
    cancelled: bool = False

    def status_message(self) -> str:
        if self.cancelled:
            return f"Download cancelled • saved {len(self.saved)} file(s)"
        if self.failed:
            return f"Downloaded {len(self.saved)} file(s) • {len(self.failed)} failed"
        return f"Downloaded {len(self.saved)} file(s)"


def _unique_path(folder: str, filename: str) -> str:
    base, ext = os.path.splitext(os.path.basename(filename) or "image")
    path = os.path.join(folder, base + ext)
    n = 1
    while os.path.exists(path):
        path = os.path.join(folder, f"{base} ({n}){ext}")
        n += 1
    return path


def _write(path: str, data: bytes) -> None:
    with open(path, "wb") as f:
        f.write(data)


async def download_item(item: GalleryItem, objects: ObjectStore, dest_dir: str) -> str:
    data = await objects.get(item.storage_path)
    os.makedirs(dest_dir, exist_ok=True)
    path = _unique_path(dest_dir, item.filename)
    await asyncio.to_thread(_write, path, data)
    return path


async def export_items(
    items: Iterable[GalleryItem],
    objects: ObjectStore,
    dest_dir: str,
    cancel: Optional[CancelToken] = None,
    on_progress: Optional[Callable[[int, int], None]] = None,
    pause: float = 0.3,
) -> ExportResult:
    items = list(items)
    result = ExportResult()
    for i, item in enumerate(items):
        if cancel is not None and cancel.cancelled:
            result.cancelled = True
            break
        try:
            result.saved.append(await download_item(item, objects, dest_dir))
        except Exception as ex:
            logger.error(f"Error downloading {item.filename}: {ex}")
            result.failed.append((item.filename, str(ex)))
        if on_progress is not None:
            on_progress(i + 1, len(items))
        if pause and i + 1 < len(items):
            await asyncio.sleep(pause)
    logger.info(f"Export finished: {result.status_message()}")
    return result
