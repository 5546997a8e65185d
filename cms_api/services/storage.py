# cms_api/services/storage.py
"""
Upload artifact storage.

Every entity route that accepts an image or PDF goes through
UploadArtifactManager with its own category ("carousel",
"board-of-directors", ...). The manager owns key generation, the verified
write, public URL construction, and best-effort deletion; backends only move
bytes.

Layout: <category>/<epoch-ms>-<hex><original extension>
"""

import asyncio
import os
import re
import secrets
import time
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional, Protocol
from urllib.parse import unquote, urlsplit

import aiofiles
import aiofiles.os
import boto3
from botocore.config import Config
from botocore.exceptions import ClientError
import structlog

from cms_api.config import settings

logger = structlog.get_logger()

UPLOADS_URL_PREFIX = "/uploads"

_CATEGORY_RE = re.compile(r"^[a-z0-9][a-z0-9_-]*$")
_KEY_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_EXT_RE = re.compile(r"^\.[A-Za-z0-9]{1,10}$")


class StorageWriteError(Exception):
    """Payload could not be written to, or verified in, the content store."""


class StorageNotFoundError(Exception):
    """Artifact to read or delete does not exist."""


@dataclass
class UploadPayload:
    content: bytes
    original_name: str
    mime_type: str


@dataclass
class Artifact:
    storage_key: str
    public_locator: str
    size_bytes: int
    mime_type: str
    original_name: str
    category: str


class StorageBackend(Protocol):
    async def write(self, category: str, key: str, content: bytes, content_type: str) -> None:
        ...

    async def exists(self, category: str, key: str) -> bool:
        ...

    async def read(self, category: str, key: str) -> bytes:
        ...

    async def delete(self, category: str, key: str) -> None:
        ...

    def locator(self, category: str, key: str, base_url: str) -> str:
        ...


class LocalDiskBackend:
    """Files under `root/<category>/`, served by the app at /uploads."""

    def __init__(self, root: str):
        self.root = Path(root)

    def _path(self, category: str, key: str) -> Path:
        return self.root / category / key

    async def write(self, category: str, key: str, content: bytes, content_type: str) -> None:
        await aiofiles.os.makedirs(self.root / category, exist_ok=True)
        async with aiofiles.open(self._path(category, key), "wb") as f:
            await f.write(content)

    async def exists(self, category: str, key: str) -> bool:
        return await aiofiles.os.path.isfile(self._path(category, key))

    async def read(self, category: str, key: str) -> bytes:
        try:
            async with aiofiles.open(self._path(category, key), "rb") as f:
                return await f.read()
        except FileNotFoundError as e:
            raise StorageNotFoundError(f"{category}/{key}") from e

    async def delete(self, category: str, key: str) -> None:
        try:
            await aiofiles.os.remove(self._path(category, key))
        except FileNotFoundError as e:
            raise StorageNotFoundError(f"{category}/{key}") from e

    def locator(self, category: str, key: str, base_url: str) -> str:
        return f"{base_url}{UPLOADS_URL_PREFIX}/{category}/{key}"


class R2StorageBackend:
    """Cloudflare R2 (S3 API). boto3 is blocking, so calls run in a worker thread."""

    def __init__(self):
        self.s3 = boto3.client(
            "s3",
            endpoint_url=settings.R2_ENDPOINT_URL,
            aws_access_key_id=settings.R2_ACCESS_KEY_ID,
            aws_secret_access_key=settings.R2_SECRET_ACCESS_KEY,
            config=Config(signature_version="s3v4"),
            region_name="auto",
        )
        self.bucket = settings.R2_BUCKET_NAME
        self.public_base_url = settings.R2_PUBLIC_BASE_URL.rstrip("/")

    async def write(self, category: str, key: str, content: bytes, content_type: str) -> None:
        await asyncio.to_thread(
            self.s3.put_object,
            Bucket=self.bucket,
            Key=f"{category}/{key}",
            Body=content,
            ContentType=content_type,
        )

    async def exists(self, category: str, key: str) -> bool:
        try:
            await asyncio.to_thread(
                self.s3.head_object, Bucket=self.bucket, Key=f"{category}/{key}"
            )
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise
        return True

    async def read(self, category: str, key: str) -> bytes:
        try:
            obj = await asyncio.to_thread(
                self.s3.get_object, Bucket=self.bucket, Key=f"{category}/{key}"
            )
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                raise StorageNotFoundError(f"{category}/{key}") from e
            raise
        return await asyncio.to_thread(obj["Body"].read)

    async def delete(self, category: str, key: str) -> None:
        # S3 deletes succeed for missing keys; check first so callers can tell
        if not await self.exists(category, key):
            raise StorageNotFoundError(f"{category}/{key}")
        await asyncio.to_thread(
            self.s3.delete_object, Bucket=self.bucket, Key=f"{category}/{key}"
        )

    def locator(self, category: str, key: str, base_url: str) -> str:
        return f"{self.public_base_url or base_url}/{category}/{key}"


def _check_category(category: str) -> str:
    if not _CATEGORY_RE.match(category or ""):
        raise ValueError(f"Invalid upload category: {category!r}")
    return category


class UploadArtifactManager:
    def __init__(self, backend: StorageBackend, public_base_url: Optional[str] = None):
        self.backend = backend
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None

    @staticmethod
    def generate_key(original_name: str) -> str:
        """Millisecond timestamp plus a random suffix, keeping the original extension."""
        ext = os.path.splitext(original_name or "")[1]
        if not _EXT_RE.match(ext):
            ext = ""
        return f"{int(time.time() * 1000)}-{secrets.token_hex(4)}{ext}"

    def base_url(self, request_base_url: Optional[str] = None) -> str:
        if self.public_base_url:
            return self.public_base_url
        if request_base_url:
            return request_base_url.rstrip("/")
        return f"http://localhost:{settings.PORT}"

    @staticmethod
    def resolve_key(locator: Optional[str], category: str) -> Optional[str]:
        """
        Map a public locator back to its storage key.

        Only the URL path is used, so locators minted under any host resolve
        (configured base URL or the request host of an older upload). Relative
        paths and bare keys are accepted too. Returns None when the locator
        does not point into `category`.
        """
        if not locator:
            return None
        path = urlsplit(locator).path
        segments = [unquote(s) for s in path.split("/") if s]
        if not segments:
            return None
        key = segments[-1]
        if len(segments) >= 2 and segments[-2] != category:
            return None
        if not _KEY_RE.match(key) or ".." in key:
            return None
        return key

    async def _discard(self, category: str, key: str) -> None:
        try:
            await self.backend.delete(category, key)
        except StorageNotFoundError:
            pass
        except Exception as e:
            logger.error("upload_cleanup_failed", category=category, key=key, error=str(e))

    async def store(
        self,
        payload: UploadPayload,
        category: str,
        request_base_url: Optional[str] = None,
    ) -> Artifact:
        _check_category(category)
        key = self.generate_key(payload.original_name)
        try:
            await self.backend.write(category, key, payload.content, payload.mime_type)
            if not await self.backend.exists(category, key):
                raise StorageWriteError(f"{category}/{key} missing after write")
        except StorageWriteError:
            await self._discard(category, key)
            logger.error("upload_verify_failed", category=category, key=key)
            raise
        except Exception as e:
            await self._discard(category, key)
            logger.error("upload_write_failed", category=category, key=key, error=str(e))
            raise StorageWriteError(f"Failed to store {category}/{key}: {e}") from e

        artifact = Artifact(
            storage_key=key,
            public_locator=self.backend.locator(
                category, key, self.base_url(request_base_url)
            ),
            size_bytes=len(payload.content),
            mime_type=payload.mime_type,
            original_name=payload.original_name,
            category=category,
        )
        logger.info(
            "upload_stored",
            category=category,
            key=key,
            size=artifact.size_bytes,
            mime_type=artifact.mime_type,
        )
        return artifact

    async def replace(
        self,
        existing_locator: Optional[str],
        payload: UploadPayload,
        category: str,
        request_base_url: Optional[str] = None,
    ) -> Artifact:
        """Store the new payload, then retire the old artifact (best effort)."""
        artifact = await self.store(payload, category, request_base_url)
        if existing_locator:
            await self.delete(existing_locator, category)
        return artifact

    async def delete(self, locator: Optional[str], category: str) -> None:
        """Remove the artifact behind `locator`. Missing files and delete errors are logged, never raised."""
        _check_category(category)
        key = self.resolve_key(locator, category)
        if key is None:
            if locator:
                logger.warning("upload_locator_unresolved", category=category, locator=locator)
            return
        try:
            await self.backend.delete(category, key)
        except StorageNotFoundError:
            logger.info("upload_already_absent", category=category, key=key)
            return
        except Exception as e:
            logger.error("upload_delete_failed", category=category, key=key, error=str(e))
            return
        logger.info("upload_deleted", category=category, key=key)

    async def read(self, locator: str, category: str) -> bytes:
        _check_category(category)
        key = self.resolve_key(locator, category)
        if key is None:
            raise StorageNotFoundError(locator)
        return await self.backend.read(category, key)


def _build_backend() -> StorageBackend:
    if settings.STORAGE_BACKEND == "r2":
        return R2StorageBackend()
    return LocalDiskBackend(settings.UPLOAD_DIR)


@lru_cache()
def get_upload_manager() -> UploadArtifactManager:
    return UploadArtifactManager(_build_backend(), settings.PUBLIC_BASE_URL)
