"""Upload scheduler: a batch of selected files -> compressed, deduplicated uploads.

Files are uploaded in groups of `width`; a group starts only after every file
of the previous group has settled, which bounds in-flight transfers to `width`.
Per-file failures are counted, never raised; only a failed preflight aborts
the batch, and then the ledger entry stays for a later resume.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable, Optional

from sharedgallery.core.config import UPLOAD_CONCURRENCY, STORAGE_CACHE_CONTROL, logger
from sharedgallery.core.session import UploaderSession
from sharedgallery.models.items import GalleryItem, PendingBatch, SelectedFile
from sharedgallery.pipeline.dedup import DuplicateChecker, dedup_key
from sharedgallery.pipeline.synchronizer import GallerySynchronizer
from sharedgallery.utils.compression import compress_image_async
from sharedgallery.utils.ledger import UploadLedger
from sharedgallery.utils.records import RecordStore
from sharedgallery.utils.storage import ObjectExistsError, ObjectStore, build_storage_key

ProgressCallback = Callable[[int, int, int], None]
Compressor = Callable[[SelectedFile], Awaitable[SelectedFile]]


class EmptyBatchError(Exception):
    """No image files in the submitted selection."""


class UploadInProgressError(Exception):
    """Another batch is still running for this client."""


class BatchAbortedError(Exception):
    """The store was unreachable before any file started."""


@dataclass
class BatchResult:
    total: int = 0
    uploaded: list[GalleryItem] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)
    held: bool = False

    def counts(self) -> dict[str, int]:
        return {"uploaded": len(self.uploaded), "skipped": len(self.skipped), "failed": len(self.failed)}

    @property
    def done(self) -> int:
        return len(self.uploaded) + len(self.skipped) + len(self.failed)

    def status_message(self) -> str:
        """Short user-facing summary."""
        if self.held:
            return f"Enter your name to upload {self.total} file(s)"
        parts = [f"Uploaded {len(self.uploaded)} file(s)"]
        if self.skipped:
            parts.append(f"skipped {len(self.skipped)} duplicate(s)")
        if self.failed:
            parts.append(f"{len(self.failed)} failed")
        return " • ".join(parts)


def progress_percent(done: int, total: int) -> int:
    """Floor percentage; 100 only when done == total."""
    if total <= 0:
        return 100
    return (done * 100) // total


class UploadScheduler:
    def __init__(
        self,
        session: UploaderSession,
        objects: ObjectStore,
        records: RecordStore,
        ledger: UploadLedger,
        synchronizer: Optional[GallerySynchronizer] = None,
        width: int = UPLOAD_CONCURRENCY,
        checker: Optional[DuplicateChecker] = None,
        compressor: Compressor = compress_image_async,
        cache_control: str = STORAGE_CACHE_CONTROL,
    ):
        if width < 1:
            raise ValueError("width must be at least 1")
        self._session = session
        self._objects = objects
        self._records = records
        self._ledger = ledger
        self._sync = synchronizer
        self.width = width
        self._checker = checker or DuplicateChecker(records)
        self._compress = compressor
        self._cache_control = cache_control
        self._busy = False
        self._held: Optional[tuple[list[SelectedFile], bool]] = None

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def held_files(self) -> Optional[list[SelectedFile]]:
        return list(self._held[0]) if self._held else None

    async def submit(
        self,
        files: Iterable[SelectedFile],
        on_progress: Optional[ProgressCallback] = None,
        resume: bool = False,
    ) -> BatchResult:
        images = [f for f in files if f.is_image]
        if not images:
            raise EmptyBatchError("Please select image files only")

        if not self._session.has_identity:
            # Keep the exact batch until the uploader names themselves
            self._held = (images, resume)
            logger.info(f"Holding {len(images)} file(s) until an uploader name is set")
            return BatchResult(total=len(images), held=True)

        if self._busy:
            raise UploadInProgressError("An upload is already in progress")

        self._busy = True
        try:
            return await self._run(images, on_progress, resume)
        finally:
            self._busy = False

    async def provide_identity(self, name: str, on_progress: Optional[ProgressCallback] = None) -> Optional[BatchResult]:
        """Set the uploader name and run the held batch, if any."""
        self._session.set_name(name)
        held, self._held = self._held, None
        if not held:
            return None
        files, resume = held
        return await self.submit(files, on_progress=on_progress, resume=resume)

    def discard_held(self) -> None:
        self._held = None

    async def _run(self, images: list[SelectedFile], on_progress, resume: bool) -> BatchResult:
        total = len(images)
        logger.info(f"Starting upload of {total} file(s) as {self._session.uploader_name}")
        if not resume:
            self._ledger.save(PendingBatch.from_files(images))

        try:
            await self._records.count()
        except Exception as ex:
            logger.error(f"Upload aborted, record store unreachable: {ex}")
            raise BatchAbortedError("Upload failed, please try again") from ex

        result = BatchResult(total=total)
        self._report(on_progress, 0, total)

        compressed = await asyncio.gather(*(self._compress(f) for f in images))

        seen: dict[tuple, asyncio.Future] = {}
        done = 0
        for start in range(0, total, self.width):
            group = compressed[start:start + self.width]
            await asyncio.gather(*(self._upload_one(f, result, seen) for f in group))
            done += len(group)
            self._report(on_progress, done, total)

        self._ledger.clear()
        c = result.counts()
        logger.info(f"Upload completed: {c['uploaded']} uploaded, {c['skipped']} skipped (duplicates), {c['failed']} failed")
        return result

    def _report(self, on_progress: Optional[ProgressCallback], done: int, total: int) -> None:
        if on_progress is None:
            return
        try:
            on_progress(progress_percent(done, total), done, total)
        except Exception as ex:
            logger.warning(f"progress callback failed: {ex}")

    async def _upload_one(self, file: SelectedFile, result: BatchResult, seen: dict) -> None:
        name = self._session.uploader_name
        key = dedup_key(file, name)
        # Repeats inside one batch follow the first copy's outcome
        first = seen.get(key)
        if first is not None:
            if await first:
                result.skipped.append(file.name)
            else:
                result.failed.append((file.name, "an identical file in this batch failed to upload"))
            return
        outcome = asyncio.get_running_loop().create_future()
        seen[key] = outcome
        stored = False
        try:
            stored = await self._store_one(file, name, result)
        finally:
            outcome.set_result(stored)

    async def _store_one(self, file: SelectedFile, name: str, result: BatchResult) -> bool:
        """Upload one file and record its outcome. True when the file is in the gallery."""
        try:
            if await self._checker.is_duplicate(file, name):
                logger.info(f"Duplicate file detected in database: {file.name} ({file.size} bytes)")
                result.skipped.append(file.name)
                return True

            path = build_storage_key(name, file.name)
            try:
                await self._objects.put(path, file.data, content_type=file.content_type,
                                        cache_control=self._cache_control, overwrite=False)
            except ObjectExistsError:
                logger.info(f"File already exists in storage: {path}")
                result.skipped.append(file.name)
                return True

            url = self._objects.public_url(path)
            item = await self._records.insert({
                "filename": file.name,
                "storage_path": path,
                "url": url,
                "uploader_id": self._session.uploader_id,
                "uploader_name": name,
                "file_size": file.size,
                "mime_type": file.content_type,
                "width": file.width,
                "height": file.height,
            })
        except Exception as ex:
            logger.warning(f"Upload failed for {file.name}: {ex}")
            result.failed.append((file.name, str(ex)))
            return False

        result.uploaded.append(item)
        if self._sync is not None:
            self._sync.insert_if_absent(item)
        return True
