"""Duplicate check for a single upload candidate.

The dedup key is (filename, file_size, mime_type, uploader_name) of the bytes
that would be stored. No content hash is compared, so two different files
sharing those four values count as the same upload.
"""
from typing import Tuple

from sharedgallery.models.items import GalleryItem, SelectedFile
from sharedgallery.utils.records import RecordStore

DedupKey = Tuple[str, int, str, str]


def dedup_key(file: SelectedFile, uploader_name: str) -> DedupKey:
    return (file.name, file.size, file.content_type, uploader_name)


def _filters(filename: str, size: int, mime_type: str, uploader_name: str) -> dict:
    return {
        "filename": filename,
        "file_size": size,
        "mime_type": mime_type,
        "uploader_name": uploader_name,
    }


class DuplicateChecker:
    def __init__(self, records: RecordStore):
        self._records = records

    async def exists(self, filename: str, size: int, mime_type: str, uploader_name: str) -> bool:
        return await self._records.count(_filters(filename, size, mime_type, uploader_name)) > 0

    async def find(self, filename: str, size: int, mime_type: str, uploader_name: str) -> list[GalleryItem]:
        return await self._records.select(_filters(filename, size, mime_type, uploader_name))

    async def is_duplicate(self, file: SelectedFile, uploader_name: str) -> bool:
        return await self.exists(*dedup_key(file, uploader_name))
