import json
from typing import Optional

from sharedgallery.core.config import logger
from sharedgallery.models.items import PendingBatch, SelectedFile
from sharedgallery.utils.local_store import LocalKeyValueStore

LEDGER_KEY = "pendingUpload"


def format_size(num_bytes: int) -> str:
    """Return a human-readable file size string."""
    size = float(num_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if abs(size) < 1024:
            return f"{int(size)} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


class UploadLedger:
    """Single-slot durable record of the upload batch in progress.

    Only metadata is kept; after a reload the user has to re-select the same
    files to resume.
    """

    def __init__(self, store: LocalKeyValueStore, key: str = LEDGER_KEY):
        self._store = store
        self._key = key

    def save(self, batch: PendingBatch) -> None:
        # Overwrites whatever was there: one batch in flight per profile
        self._store.set(self._key, json.dumps(batch.to_dict(), ensure_ascii=False))

    def load(self) -> Optional[PendingBatch]:
        raw = self._store.get(self._key)
        if raw is None:
            return None
        try:
            return PendingBatch.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as ex:
            logger.warning(f"Discarding corrupt pending upload record: {ex}")
            self.clear()
            return None

    def clear(self) -> None:
        self._store.remove(self._key)

    def describe(self, batch: Optional[PendingBatch] = None) -> Optional[str]:
        """Resume prompt text, or None when nothing is pending."""
        batch = batch or self.load()
        if batch is None:
            return None
        when = batch.created_at.strftime("%Y-%m-%d %H:%M")
        return (
            f"An upload of {batch.file_count} file(s) ({format_size(batch.total_size)}) "
            f"started {when} did not finish. Select the same files again to resume, or discard it."
        )

    @staticmethod
    def matches(batch: PendingBatch, files: list[SelectedFile]) -> bool:
        """True when the re-selected files carry exactly the recorded metadata."""
        selected = sorted((f.name, f.size, f.content_type) for f in files)
        recorded = sorted((d.name, d.size, d.mime_type) for d in batch.files)
        return selected == recorded
