"""
Gallery image model
One row per uploaded image in the shared pool
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Integer, Text, DateTime, Index
from sqlalchemy.sql import func

from sharedgallery.core.config import IMAGES_TABLE
from sharedgallery.core.database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GalleryImage(Base):
    __tablename__ = IMAGES_TABLE

    # Assigned by the store at insert time, never by the uploader
    id = Column(String(36), primary_key=True, default=_new_id)

    filename = Column(Text, nullable=False)
    storage_path = Column(Text, unique=True, nullable=False)
    url = Column(Text, nullable=False)

    # Self-declared display name (free text) and the locally generated pseudo-identity
    uploader_id = Column(String(64), nullable=True, index=True)
    uploader_name = Column(String(255), nullable=True, index=True)

    file_size = Column(Integer, nullable=True)
    mime_type = Column(String(128), nullable=True)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), onupdate=_utcnow, nullable=False)

    # Dedup lookups filter on all four of these
    __table_args__ = (
        Index("ix_images_dedup_key", "filename", "file_size", "mime_type", "uploader_name"),
    )

    def to_dict(self):
        """Convert to dict for API responses"""
        return {
            "id": self.id,
            "filename": self.filename,
            "url": self.url,
            "uploader_name": self.uploader_name,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "width": self.width,
            "height": self.height,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
