import os
import json
import tempfile
from typing import Optional

from sharedgallery.core.config import LOCAL_STORE_PATH, logger


class LocalKeyValueStore:
    """Small string values in one JSON file, per local profile.

    Every call reads the file again, so several stores (or processes) sharing a
    profile see each other's keys. Writes go through a temp file and os.replace
    so a crash never leaves it half-written.
    """

    def __init__(self, path: str = ""):
        self._path = os.path.abspath(path or LOCAL_STORE_PATH)

    @property
    def path(self) -> str:
        return self._path

    def _read(self) -> dict:
        if not os.path.isfile(self._path):
            return {}
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as ex:
            logger.warning(f"local store unreadable, starting empty: {self._path}: {ex}")
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _write(self, data: dict) -> None:
        folder = os.path.dirname(self._path)
        os.makedirs(folder, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=folder, prefix=".local_storage.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False)
            os.replace(tmp, self._path)
        except BaseException:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise

    def get(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = str(value)
        self._write(data)

    def remove(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)
