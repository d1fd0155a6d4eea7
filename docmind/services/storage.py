# docmind/services/storage.py
"""
Object storage for raw uploads.

Two backends share one contract: `upload(data, locator)`, `download(locator)`
and `delete(locator)`. Every call is bounded by a timeout; a timeout or I/O
error is a TransientProviderError, a missing object is NotFound.
"""

import asyncio
import logging
import re
import time
from pathlib import Path
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from docmind.core.config import settings
from docmind.core.errors import NotFound, PermanentProviderError, TransientProviderError, ValidationError

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 255


def sanitize_file_name(name: str) -> str:
    """Strip path separators and control characters from a user supplied file name."""
    sanitized = re.sub(r"[/\\]", "_", name or "")
    sanitized = re.sub(r"[\x00-\x1f\x7f]", "", sanitized)
    sanitized = sanitized[:MAX_NAME_LENGTH]
    if not sanitized.strip():
        sanitized = f"file_{int(time.time() * 1000)}"
    return sanitized


def build_locator(user_id: str, file_name: str) -> str:
    safe = re.sub(r"[^a-zA-Z0-9.-]", "_", sanitize_file_name(file_name))
    return f"{user_id}/{int(time.time() * 1000)}_{safe}"


class StorageBackend:
    def __init__(self, timeout: float):
        self.timeout = timeout

    async def upload(self, data: bytes, locator: str) -> str:
        return await self._bounded(self._upload(data, locator), "upload", locator)

    async def download(self, locator: str) -> bytes:
        return await self._bounded(self._download(locator), "download", locator)

    async def delete(self, locator: str) -> None:
        await self._bounded(self._delete(locator), "delete", locator)

    async def _bounded(self, coro, op: str, locator: str):
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise TransientProviderError(f"Storage {op} timed out for {locator}") from exc

    async def _upload(self, data: bytes, locator: str) -> str:
        raise NotImplementedError

    async def _download(self, locator: str) -> bytes:
        raise NotImplementedError

    async def _delete(self, locator: str) -> None:
        raise NotImplementedError


class LocalStorage(StorageBackend):
    """Files on local disk under `root`. Used for development and tests."""

    def __init__(self, root: str, timeout: float = 30.0):
        super().__init__(timeout)
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, locator: str) -> Path:
        path = (self.root / locator).resolve()
        if self.root not in path.parents:
            raise ValidationError(f"Invalid storage locator: {locator}")
        return path

    async def _upload(self, data: bytes, locator: str) -> str:
        path = self._path(locator)

        def _write():
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as exc:
            raise TransientProviderError(f"Could not write {locator}: {exc}") from exc
        return locator

    async def _download(self, locator: str) -> bytes:
        path = self._path(locator)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as exc:
            raise NotFound(f"Stored object not found: {locator}") from exc
        except OSError as exc:
            raise TransientProviderError(f"Could not read {locator}: {exc}") from exc

    async def _delete(self, locator: str) -> None:
        path = self._path(locator)
        await asyncio.to_thread(path.unlink, True)


class S3Storage(StorageBackend):
    """S3 compatible bucket; boto3 is blocking so calls run in a worker thread."""

    def __init__(
        self,
        bucket: str,
        endpoint_url: Optional[str] = None,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        timeout: float = 30.0,
        client=None,
    ):
        super().__init__(timeout)
        if not bucket:
            raise RuntimeError("S3 not configured")
        self.bucket = bucket
        self.client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
        )

    @staticmethod
    def _translate(exc: Exception, locator: str) -> Exception:
        if isinstance(exc, ClientError):
            code = exc.response.get("Error", {}).get("Code", "")
            status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
            if code in ("NoSuchKey", "404", "NotFound"):
                return NotFound(f"Stored object not found: {locator}")
            if status >= 500 or code in ("SlowDown", "RequestTimeout", "InternalError"):
                return TransientProviderError(f"S3 error {code} for {locator}")
            return PermanentProviderError(f"S3 error {code} for {locator}")
        return TransientProviderError(f"S3 request failed for {locator}: {exc}")

    async def _upload(self, data: bytes, locator: str) -> str:
        try:
            await asyncio.to_thread(self.client.put_object, Bucket=self.bucket, Key=locator, Body=data)
        except (BotoCoreError, ClientError) as exc:
            raise self._translate(exc, locator) from exc
        return locator

    async def _download(self, locator: str) -> bytes:
        def _get() -> bytes:
            resp = self.client.get_object(Bucket=self.bucket, Key=locator)
            return resp["Body"].read()

        try:
            return await asyncio.to_thread(_get)
        except (BotoCoreError, ClientError) as exc:
            raise self._translate(exc, locator) from exc

    async def _delete(self, locator: str) -> None:
        try:
            await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket, Key=locator)
        except (BotoCoreError, ClientError) as exc:
            raise self._translate(exc, locator) from exc


def build_storage() -> StorageBackend:
    if settings.STORAGE_BACKEND == "s3":
        return S3Storage(
            bucket=settings.S3_BUCKET,
            endpoint_url=settings.S3_ENDPOINT,
            access_key=settings.S3_ACCESS_KEY,
            secret_key=settings.S3_SECRET_KEY,
            timeout=settings.STORAGE_TIMEOUT_SECONDS,
        )
    return LocalStorage(settings.UPLOAD_DIR, timeout=settings.STORAGE_TIMEOUT_SECONDS)
