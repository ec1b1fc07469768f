import uuid
from typing import Optional

from sharedgallery.core.config import logger
from sharedgallery.utils.local_store import LocalKeyValueStore

NAME_KEY = "userName"
ID_KEY = "uploaderId"


class UploaderSession:
    """Who is uploading from this local profile.

    The uploader id is generated once and kept in the local store; the display
    name is self-declared and may still be missing, in which case uploads are
    held until set_name() is called.
    """

    def __init__(self, store: LocalKeyValueStore):
        self._store = store
        uploader_id = store.get(ID_KEY)
        if not uploader_id:
            uploader_id = uuid.uuid4().hex
            store.set(ID_KEY, uploader_id)
        self.uploader_id: str = uploader_id
        self.uploader_name: Optional[str] = (store.get(NAME_KEY) or "").strip() or None

    @property
    def has_identity(self) -> bool:
        return bool(self.uploader_name)

    def set_name(self, name: str) -> None:
        name = (name or "").strip()
        if not name:
            raise ValueError("uploader name must not be empty")
        self._store.set(NAME_KEY, name)
        self.uploader_name = name
        logger.info(f"Uploader name set: {name}")
