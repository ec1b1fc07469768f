"""Plain domain types shared by the upload and sync pipeline."""

from __future__ import annotations

import mimetypes
import os
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


@dataclass(frozen=True)
class GalleryItem:
    """A single uploaded image record as seen by the pipeline."""

    id: str
    filename: str
    storage_path: str
    url: str
    uploader_id: Optional[str]
    uploader_name: Optional[str]
    file_size: Optional[int]
    mime_type: Optional[str]
    width: Optional[int]
    height: Optional[int]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row) -> "GalleryItem":
        """Build from a `GalleryImage` ORM row (or anything with the same attributes)."""
        return cls(
            id=row.id,
            filename=row.filename,
            storage_path=row.storage_path,
            url=row.url,
            uploader_id=row.uploader_id,
            uploader_name=row.uploader_name,
            file_size=row.file_size,
            mime_type=row.mime_type,
            width=row.width,
            height=row.height,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "filename": self.filename,
            "storage_path": self.storage_path,
            "url": self.url,
            "uploader_id": self.uploader_id,
            "uploader_name": self.uploader_name,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "width": self.width,
            "height": self.height,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(frozen=True)
class FileDescriptor:
    """Metadata of a selected file; what the ledger can durably keep."""

    name: str
    size: int
    mime_type: str

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "size": self.size, "type": self.mime_type}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FileDescriptor":
        return cls(name=str(data["name"]), size=int(data["size"]), mime_type=str(data["type"]))


@dataclass(frozen=True)
class SelectedFile:
    """A user-selected file: bytes plus declared metadata."""

    name: str
    data: bytes = field(repr=False)
    content_type: str
    width: Optional[int] = None
    height: Optional[int] = None

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def is_image(self) -> bool:
        return (self.content_type or "").startswith("image/")

    def descriptor(self) -> FileDescriptor:
        return FileDescriptor(self.name, self.size, self.content_type)

    def with_dimensions(self, width: Optional[int], height: Optional[int]) -> "SelectedFile":
        return replace(self, width=width, height=height)

    @classmethod
    def from_path(cls, path: str) -> "SelectedFile":
        with open(path, "rb") as f:
            data = f.read()
        ctype = mimetypes.guess_type(path)[0] or "application/octet-stream"
        return cls(name=os.path.basename(path), data=data, content_type=ctype)


@dataclass
class PendingBatch:
    """Durable intent record for a not-yet-completed upload batch."""

    files: list[FileDescriptor]
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_files(cls, files: list[SelectedFile]) -> "PendingBatch":
        return cls(files=[f.descriptor() for f in files])

    @property
    def file_count(self) -> int:
        return len(self.files)

    @property
    def total_size(self) -> int:
        return sum(f.size for f in self.files)

    def to_dict(self) -> dict[str, Any]:
        return {
            "files": [f.to_dict() for f in self.files],
            "createdAt": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PendingBatch":
        files = [FileDescriptor.from_dict(d) for d in data["files"]]
        return cls(files=files, created_at=datetime.fromisoformat(data["createdAt"]))


@dataclass
class DuplicateGroup:
    """Items sharing (filename, file_size); the oldest one is the original."""

    filename: str
    file_size: Optional[int]
    members: list[GalleryItem]

    @property
    def original(self) -> GalleryItem:
        return self.members[0]

    @property
    def removable(self) -> list[GalleryItem]:
        return self.members[1:]

    def delete_statement(self, table: str = "images") -> str:
        ids = ", ".join("'" + str(m.id).replace("'", "''") + "'" for m in self.removable)
        # Filenames are user input; keep them on the comment line
        label = " ".join(str(self.filename).splitlines())
        return f"-- remove duplicates of: {label}\nDELETE FROM {table} WHERE id IN ({ids});"


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    SNAPSHOT = "SNAPSHOT"


@dataclass(frozen=True)
class ChangeEvent:
    """Change-feed notification. SNAPSHOT carries a full refetch in `items`."""

    type: ChangeType
    item: Optional[GalleryItem] = None
    item_id: Optional[str] = None
    items: tuple[GalleryItem, ...] = ()

    @classmethod
    def insert(cls, item: GalleryItem) -> "ChangeEvent":
        return cls(ChangeType.INSERT, item=item, item_id=item.id)

    @classmethod
    def update(cls, item: GalleryItem) -> "ChangeEvent":
        return cls(ChangeType.UPDATE, item=item, item_id=item.id)

    @classmethod
    def delete(cls, item_id: str) -> "ChangeEvent":
        return cls(ChangeType.DELETE, item_id=item_id)

    @classmethod
    def snapshot(cls, items) -> "ChangeEvent":
        return cls(ChangeType.SNAPSHOT, items=tuple(items))
