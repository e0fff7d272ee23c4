from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path

import httpx

from watermark_studio.core.errors import StorageError

BLOB_API_URL = "https://blob.vercel-storage.com"


class ObjectStorage(ABC):
    @abstractmethod
    async def put(self, path: str, data: bytes, content_type: str) -> str:
        """Store ``data`` and return a publicly fetchable URL."""
        raise NotImplementedError


class BlobStorage(ObjectStorage):
    def __init__(self, token: str, client: httpx.AsyncClient, base_url: str = BLOB_API_URL):
        self.token = token
        self.client = client
        self.base_url = base_url.rstrip("/")

    async def put(self, path: str, data: bytes, content_type: str) -> str:
        headers = {
            "Authorization": f"Bearer {self.token}",
            "x-api-version": "7",
            "x-content-type": content_type,
        }
        try:
            resp = await self.client.put(f"{self.base_url}/uploads/{path}", content=data, headers=headers)
            resp.raise_for_status()
            return resp.json()["url"]
        except (httpx.HTTPError, ValueError, KeyError) as exc:
            raise StorageError(f"Blob upload failed for {path}: {exc}") from exc


class LocalStorage(ObjectStorage):
    """Writes into the directory served by the app's ``/uploads`` mount."""

    def __init__(self, uploads_dir: str, public_base_url: str):
        self.root = Path(uploads_dir)
        self.public_base_url = public_base_url.rstrip("/")

    async def put(self, path: str, data: bytes, content_type: str) -> str:
        target = self.root / path
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(target.write_bytes, data)
        except OSError as exc:
            raise StorageError(f"Could not write {target}: {exc}") from exc
        return f"{self.public_base_url}/uploads/{path}"


class UnavailableStorage(ObjectStorage):
    async def put(self, path: str, data: bytes, content_type: str) -> str:
        raise StorageError("No object storage configured")


def build_storage(token: str, uploads_dir: str, public_base_url: str, client: httpx.AsyncClient) -> ObjectStorage:
    if token:
        return BlobStorage(token, client)
    if public_base_url:
        return LocalStorage(uploads_dir, public_base_url)
    return UnavailableStorage()
