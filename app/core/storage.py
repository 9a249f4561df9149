"""
Blob storage for report exports.

``BlobStore`` is the capability the export code depends on. The concrete
store is chosen once at startup from configuration:

* ``LocalBlobStore`` writes under a directory served at a public URL prefix
* ``HttpBlobStore`` PUTs/DELETEs objects on an object-storage HTTP endpoint
"""
import asyncio
from pathlib import Path
from typing import Optional, Protocol

import httpx

from app.core.config import Settings
from app.core.logging import logger
from app.core.exceptions import InvalidIdentifierError


class BlobStore(Protocol):
    async def put(self, key: str, data: bytes, content_type: str) -> str:
        """Store ``data`` under ``key`` and return its URL."""
        ...

    async def delete(self, key: str) -> None:
        ...


def _check_key(key: str) -> str:
    parts = key.split("/")
    if not key or key.startswith("/") or any(part in ("", ".", "..") for part in parts):
        raise InvalidIdentifierError(key)
    return key


class LocalBlobStore:
    def __init__(self, root: str, public_url: str = "/exports"):
        self.root = Path(root)
        self.public_url = public_url.rstrip("/")

    @staticmethod
    def _write(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        path = self.root / _check_key(key)
        await asyncio.to_thread(self._write, path, data)
        logger.debug(f"Stored {len(data)} bytes at {path}")
        return f"{self.public_url}/{key}"

    async def delete(self, key: str) -> None:
        path = self.root / _check_key(key)
        await asyncio.to_thread(path.unlink, missing_ok=True)


class HttpBlobStore:
    def __init__(self, endpoint: str, token: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        self.endpoint = endpoint.rstrip("/")
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = client or httpx.AsyncClient(headers=headers, timeout=30.0)

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        url = f"{self.endpoint}/{_check_key(key)}"
        response = await self._client.put(url, content=data, headers={"Content-Type": content_type})
        response.raise_for_status()
        logger.debug(f"Uploaded {len(data)} bytes to {url}")
        return url

    async def delete(self, key: str) -> None:
        url = f"{self.endpoint}/{_check_key(key)}"
        response = await self._client.delete(url)
        if response.status_code != 404:
            response.raise_for_status()

    async def aclose(self) -> None:
        await self._client.aclose()


def build_blob_store(settings: Settings) -> BlobStore:
    """Create the blob store selected by configuration."""
    storage = settings.storage
    if storage.backend == "http":
        if not storage.http_endpoint:
            raise ValueError("STORAGE_HTTP_ENDPOINT must be set for the http storage backend")
        logger.info(f"HTTP blob store initialized: {storage.http_endpoint}")
        return HttpBlobStore(storage.http_endpoint, storage.http_token_str)

    logger.info(f"Local blob store initialized at {storage.local_path}")
    return LocalBlobStore(storage.local_path, storage.public_url)
