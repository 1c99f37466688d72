"""
Photo object storage.

Handles storage of uploaded photos on the local filesystem or through the
backend platform's bucket API, and fetching them back for moderation.
"""

import logging
import mimetypes
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import quote

import aiofiles
import httpx

from .exceptions import StorageError
from .retry import convert_http_error, NetworkError, exponential_backoff

logger = logging.getLogger(__name__)

DEFAULT_BUCKET = "photos"


@dataclass
class StoredObject:
    path: str
    url: Optional[str]


@dataclass
class DownloadedObject:
    data: bytes
    content_type: str


class StorageProvider(ABC):
    """Abstract base class for photo storage providers"""

    @abstractmethod
    async def upload(self, path: str, data: bytes, content_type: Optional[str] = None) -> StoredObject:
        """Store bytes under the given key"""
        pass

    @abstractmethod
    async def download(self, path: str) -> DownloadedObject:
        """Fetch stored bytes; raises StorageError on failure"""
        pass

    @abstractmethod
    def public_url(self, path: str) -> Optional[str]:
        """URL clients can fetch the object from, if any"""
        pass


def guess_content_type(path: str) -> str:
    content_type, _ = mimetypes.guess_type(path)
    return content_type or "image/jpeg"


class LocalStorageProvider(StorageProvider):
    """Local filesystem storage provider"""

    def __init__(self, base_path: str, base_url: Optional[str] = None):
        self.base_path = Path(base_path)
        self.base_url = base_url.rstrip("/") if base_url else None
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        full_path = (self.base_path / path).resolve()
        if not str(full_path).startswith(str(self.base_path.resolve())):
            raise StorageError(f"Invalid storage path: {path}")
        return full_path

    async def upload(self, path: str, data: bytes, content_type: Optional[str] = None) -> StoredObject:
        full_path = self._resolve(path)
        try:
            full_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(full_path, 'wb') as f:
                await f.write(data)
        except OSError as e:
            raise StorageError(f"Failed to store {path}: {e}") from e
        logger.info(f"Stored photo at {path}", extra={"bytes": len(data)})
        return StoredObject(path=path, url=self.public_url(path))

    async def download(self, path: str) -> DownloadedObject:
        full_path = self._resolve(path)
        try:
            async with aiofiles.open(full_path, 'rb') as f:
                data = await f.read()
        except OSError as e:
            raise StorageError(f"Storage download failed: {e}") from e
        return DownloadedObject(data=data, content_type=guess_content_type(path))

    def public_url(self, path: str) -> Optional[str]:
        if not self.base_url:
            return None
        return f"{self.base_url}/{quote(path)}"


class BucketStorageProvider(StorageProvider):
    """Backend platform bucket API (``/api/storage/buckets/{bucket}/objects/{path}``)"""

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        bucket: str = DEFAULT_BUCKET,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        max_retries: int = 2,
    ):
        self.base_url = base_url.rstrip("/")
        self.anon_key = anon_key
        self.bucket = bucket
        self.http_client = http_client
        self.timeout = timeout
        self.max_retries = max_retries

    def _object_url(self, path: str) -> str:
        return f"{self.base_url}/api/storage/buckets/{self.bucket}/objects/{quote(path, safe='')}"

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.anon_key}"}

    async def _request(self, method: str, path: str, extra_headers: Optional[dict] = None, **kwargs) -> httpx.Response:
        headers = {**self._headers(), **(extra_headers or {})}

        @exponential_backoff(max_retries=self.max_retries, base_delay=1.0, max_delay=10.0)
        async def send(client: httpx.AsyncClient) -> httpx.Response:
            try:
                resp = await client.request(method, self._object_url(path), headers=headers, **kwargs)
            except httpx.RequestError as e:
                raise NetworkError(f"Network error calling storage: {e}")
            if resp.status_code >= 400:
                raise convert_http_error(resp.status_code, resp.text[:200])
            return resp

        if self.http_client is not None:
            return await send(self.http_client)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await send(client)

    async def upload(self, path: str, data: bytes, content_type: Optional[str] = None) -> StoredObject:
        try:
            resp = await self._request(
                "PUT", path, content=data,
                extra_headers={"Content-Type": content_type or guess_content_type(path)},
            )
        except Exception as e:
            raise StorageError(f"Storage upload failed: {e}") from e
        body = resp.json() if resp.content else {}
        return StoredObject(path=body.get("key") or path, url=body.get("url") or self.public_url(path))

    async def download(self, path: str) -> DownloadedObject:
        try:
            resp = await self._request("GET", path)
        except Exception as e:
            raise StorageError(f"Storage download failed: {e}") from e
        return DownloadedObject(
            data=resp.content,
            content_type=resp.headers.get("content-type") or "image/jpeg",
        )

    def public_url(self, path: str) -> Optional[str]:
        return self._object_url(path)
