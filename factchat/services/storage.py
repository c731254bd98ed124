"""Local-directory object storage."""

import asyncio
import logging
import uuid
from pathlib import Path
from typing import Optional

from factchat.config import settings
from factchat.errors import AppError, ErrorCode

logger = logging.getLogger(__name__)


class ObjectStorage:
    """Stores uploaded blobs under opaque ids and serves them by URL."""

    def __init__(self, base_dir: Optional[str] = None, public_base_url: Optional[str] = None):
        """Initialize storage."""
        self.base_dir = Path(base_dir or settings.STORAGE_DIR)
        self.public_base_url = (public_base_url or settings.PUBLIC_BASE_URL).rstrip("/")

    def _path(self, storage_id: str) -> Path:
        # Ids are generated here; reject anything that could escape base_dir
        if not storage_id or "/" in storage_id or "\\" in storage_id or storage_id.startswith("."):
            raise AppError(ErrorCode.FILE_NOT_FOUND)
        return self.base_dir / storage_id

    async def put(self, data: bytes) -> str:
        """Store bytes and return their storage id."""
        storage_id = uuid.uuid4().hex
        path = self._path(storage_id)

        def write() -> None:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        await asyncio.to_thread(write)
        logger.info(f"Stored object {storage_id} ({len(data)} bytes)")
        return storage_id

    async def read(self, storage_id: str) -> bytes:
        """Read a stored object."""
        path = self._path(storage_id)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as e:
            raise AppError(ErrorCode.FILE_NOT_FOUND) from e

    async def delete(self, storage_id: str) -> None:
        """Delete a stored object if it exists."""
        path = self._path(storage_id)
        await asyncio.to_thread(path.unlink, True)

    async def get_download_url(self, storage_id: str) -> Optional[str]:
        """URL of a stored object, or None when it no longer exists."""
        path = self._path(storage_id)
        exists = await asyncio.to_thread(path.exists)
        if not exists:
            return None
        return f"{self.public_base_url}/storage/{storage_id}"
