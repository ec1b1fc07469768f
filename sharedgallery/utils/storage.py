import os
import re
import time
import asyncio
import secrets
import unicodedata
from typing import Optional
from urllib.parse import quote

from botocore.exceptions import ClientError

from sharedgallery.core.config import s3, R2_BUCKET, R2_PUBLIC_BASE_URL, STATIC_DIR, STORAGE_CACHE_CONTROL, logger


class StorageError(Exception):
    """Object store operation failed."""


class ObjectExistsError(StorageError):
    """A put with overwrite disabled hit an existing key."""


def safe_uploader_segment(name: str) -> str:
    """ASCII-only path segment for an uploader display name ('user' if nothing survives)."""
    ascii_name = unicodedata.normalize("NFKD", name or "").encode("ascii", "ignore").decode("ascii")
    return re.sub(r"[^a-zA-Z0-9]", "", ascii_name).lower() or "user"


def build_storage_key(uploader_name: str, filename: str) -> str:
    """Collision-free key: millisecond timestamp plus randomness, never the original stem."""
    ext = os.path.splitext(filename or "")[1].lower().lstrip(".")
    if not ext or len(ext) > 5 or not ext.isalnum():
        ext = "bin"
    stamp = int(time.time() * 1000)
    return f"{safe_uploader_segment(uploader_name)}/{stamp}-{secrets.token_hex(5)}.{ext}"


class ObjectStore:
    """Binary blob storage with public URL issuance."""

    async def put(self, key: str, data: bytes, content_type: str = "image/jpeg",
                  cache_control: Optional[str] = None, overwrite: bool = False) -> None:
        raise NotImplementedError

    def public_url(self, key: str) -> str:
        raise NotImplementedError

    async def get(self, key: str) -> bytes:
        raise NotImplementedError

    async def delete(self, keys: list[str]) -> None:
        raise NotImplementedError


class S3ObjectStore(ObjectStore):
    """R2/S3 bucket via boto3. Blocking client calls run in worker threads."""

    def __init__(self, client=None, bucket: str = "", public_base_url: str = ""):
        self._client = client or s3
        self._bucket = bucket or R2_BUCKET
        self._public_base = (public_base_url or R2_PUBLIC_BASE_URL).rstrip("/")
        if self._client is None or not self._bucket:
            raise StorageError("S3 storage is not configured")

    def _put(self, key, data, content_type, cache_control, overwrite):
        kwargs = {
            "Bucket": self._bucket,
            "Key": key,
            "Body": data,
            "ContentType": content_type,
            "CacheControl": f"max-age={cache_control or STORAGE_CACHE_CONTROL}",
        }
        if not overwrite:
            # Conditional write: fail instead of replacing an existing object
            kwargs["IfNoneMatch"] = "*"
        try:
            self._client.put_object(**kwargs)
        except ClientError as ce:
            code = ce.response.get("Error", {}).get("Code")
            if code in ("PreconditionFailed", "ConditionalRequestConflict", "412"):
                raise ObjectExistsError(f"object already exists: {key}") from ce
            raise StorageError(f"put failed for {key}: {ce}") from ce

    async def put(self, key, data, content_type="image/jpeg", cache_control=None, overwrite=False):
        await asyncio.to_thread(self._put, key, data, content_type, cache_control, overwrite)
        logger.info(f"Stored object: {self._bucket}/{key} ({len(data)} bytes)")

    def public_url(self, key: str) -> str:
        if self._public_base:
            return f"{self._public_base}/{quote(key, safe='/')}"
        try:
            return self._client.generate_presigned_url(
                ClientMethod="get_object",
                Params={"Bucket": self._bucket, "Key": key},
                ExpiresIn=7 * 24 * 3600,
            )
        except Exception as ex:
            raise StorageError(f"public url failed for {key}: {ex}") from ex

    def _get(self, key: str) -> bytes:
        try:
            obj = self._client.get_object(Bucket=self._bucket, Key=key)
            return obj["Body"].read()
        except ClientError as ce:
            raise StorageError(f"get failed for {key}: {ce}") from ce

    async def get(self, key: str) -> bytes:
        return await asyncio.to_thread(self._get, key)

    def _delete(self, keys: list[str]) -> None:
        # delete_objects takes at most 1000 keys per call
        for i in range(0, len(keys), 1000):
            chunk = keys[i:i + 1000]
            try:
                self._client.delete_objects(
                    Bucket=self._bucket,
                    Delete={"Objects": [{"Key": k} for k in chunk], "Quiet": True},
                )
            except ClientError as ce:
                raise StorageError(f"delete failed: {ce}") from ce

    async def delete(self, keys: list[str]) -> None:
        if keys:
            await asyncio.to_thread(self._delete, list(keys))


class LocalObjectStore(ObjectStore):
    """Files under STATIC_DIR, served by the app at /static."""

    def __init__(self, root: str = "", url_prefix: str = "/static"):
        self._root = os.path.abspath(root or STATIC_DIR)
        self._prefix = url_prefix.rstrip("/")

    def _path(self, key: str) -> str:
        path = os.path.abspath(os.path.join(self._root, key))
        if not path.startswith(self._root + os.sep):
            raise StorageError(f"invalid key: {key}")
        return path

    def _put(self, key: str, data: bytes, overwrite: bool) -> None:
        path = self._path(key)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        try:
            with open(path, "wb" if overwrite else "xb") as f:
                f.write(data)
        except FileExistsError as ex:
            raise ObjectExistsError(f"object already exists: {key}") from ex
        except OSError as ex:
            raise StorageError(f"put failed for {key}: {ex}") from ex

    async def put(self, key, data, content_type="image/jpeg", cache_control=None, overwrite=False):
        await asyncio.to_thread(self._put, key, data, overwrite)
        logger.info(f"Saved locally: {key} ({len(data)} bytes)")

    def public_url(self, key: str) -> str:
        return f"{self._prefix}/{quote(key, safe='/')}"

    def _get(self, key: str) -> bytes:
        try:
            with open(self._path(key), "rb") as f:
                return f.read()
        except OSError as ex:
            raise StorageError(f"get failed for {key}: {ex}") from ex

    async def get(self, key: str) -> bytes:
        return await asyncio.to_thread(self._get, key)

    def _delete(self, keys: list[str]) -> None:
        for key in keys:
            try:
                os.remove(self._path(key))
            except FileNotFoundError:
                continue
            except OSError as ex:
                raise StorageError(f"delete failed for {key}: {ex}") from ex

    async def delete(self, keys: list[str]) -> None:
        await asyncio.to_thread(self._delete, list(keys))


def get_object_store() -> ObjectStore:
    """R2/S3 when credentials are configured, local disk otherwise."""
    if s3 and R2_BUCKET:
        return S3ObjectStore()
    logger.warning("R2 not configured - storing uploads under STATIC_DIR")
    return LocalObjectStore()
